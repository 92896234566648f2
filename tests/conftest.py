"""Pytest 共用 fixtures"""

import pytest
from flask import Flask

import config_loader
from config_loader import ExportConfig


@pytest.fixture
def export_config():
    """Order / User 兩個 kind、不附加時間戳記的設定"""
    return ExportConfig(
        config_id="daily",
        queue_name="backup-queue",
        backup_name_prefix="daily_backup_",
        bigquery_project_id="bq-project",
        bigquery_dataset_id="backups",
        entity_kinds=("Order", "User"),
        bucket_name="b",
        append_timestamp_to_tables=False,
    )


@pytest.fixture
def flask_app():
    return Flask(__name__)


@pytest.fixture(autouse=True)
def clear_config_loaders():
    """每個測試使用新的 BigQuery 設定載入器"""
    config_loader._config_loaders.clear()
    yield
    config_loader._config_loaders.clear()
