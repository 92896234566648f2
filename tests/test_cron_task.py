"""排程啟動任務測試"""

from unittest.mock import Mock, patch

import cron_task
from ingester_main import IngestionManager


def _manager(export_config):
    scheduler = Mock()
    scheduler.enqueue_datastore_admin_backup.return_value = "tasks/backup"
    scheduler.enqueue_ingester.return_value = "tasks/ingest"
    manager = IngestionManager({'gcp_project_id': 'p'}, registry={"daily": export_config},
                               checker=Mock(), scheduler=scheduler)
    return manager, scheduler


def test_start_backup_enqueues_backup_and_ingester(export_config):
    manager, scheduler = _manager(export_config)

    body, status = cron_task.handle_start_request(
        manager, {'timestamp': '1700', 'builtinDatastoreExportConfig': 'daily'}, "https://fn.example/ingest"
    )

    assert status == 200
    assert body['data']['backup_name'] == "daily_backup_1700_"
    scheduler.enqueue_datastore_admin_backup.assert_called_once_with(
        "backup-queue", "daily_backup_1700_", "b", ["Order", "User"]
    )
    scheduler.enqueue_ingester.assert_called_once_with(
        "https://fn.example/ingest", "backup-queue", "daily", 1700
    )


@patch("cron_task.time.time", return_value=1700.5)
def test_start_backup_defaults_timestamp_to_now(mock_time, export_config):
    manager, scheduler = _manager(export_config)

    body, status = cron_task.handle_start_request(manager, {'builtinDatastoreExportConfig': 'daily'}, "u")

    assert status == 200
    assert body['data']['timestamp'] == 1700500


def test_start_backup_requires_config(export_config):
    manager, scheduler = _manager(export_config)

    body, status = cron_task.handle_start_request(manager, {'timestamp': '1700'}, "u")

    assert status == 400
    assert body['message'] == "Missing required param: builtinDatastoreExportConfig"
    scheduler.enqueue_datastore_admin_backup.assert_not_called()


def test_start_backup_unknown_config(export_config):
    manager, _ = _manager(export_config)
    body, status = cron_task.handle_start_request(manager, {'builtinDatastoreExportConfig': 'weekly'}, "u")
    assert status == 400


@patch.dict("os.environ", {"GCP_PROJECT_ID": "p"}, clear=True)
def test_entry_point_requires_ingester_url(flask_app):
    with flask_app.test_request_context("/start?builtinDatastoreExportConfig=daily"):
        from flask import request
        body, status = cron_task.start_datastore_backup(request)

    assert status == 500
    assert "INGESTER_URL" in body['message']


@patch.dict("os.environ", {"GCP_PROJECT_ID": "p", "RETRY_BASE_SECONDS": "soon"}, clear=True)
def test_entry_point_bad_numeric_env_returns_json_500(flask_app):
    with flask_app.test_request_context("/start?builtinDatastoreExportConfig=daily"):
        from flask import request
        body, status = cron_task.start_datastore_backup(request)

    assert status == 500
    assert body['status'] == 'error'
