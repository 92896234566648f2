# -*- coding: utf-8 -*-
"""
Datastore 備份 → BigQuery 匯入主程式
輪詢 Datastore Admin 備份狀態，完成後為每個實體種類送出 BigQuery 載入工作
"""

import os
import re
import logging
from typing import Dict, Any, Optional, Tuple, Callable

import functions_framework
from google.cloud import logging as cloud_logging

from config_loader import ExportConfig, load_registry_with_fallback
from backup_checker import BackupChecker, create_checker
from bigquery_loader import BigQueryLoader, create_loader
from task_scheduler import (
    TaskScheduler,
    create_scheduler,
    retry_delay_seconds,
    TIMESTAMP_PARAM,
    EXPORT_CONFIG_PARAM,
    ATTEMPT_PARAM,
)
from email_notifier import send_ingestion_notification


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

TIMESTAMP_PATTERN = re.compile(r"-?[0-9]+")

_cloud_logging_attached = False


class RequestValidationError(ValueError):
    """請求參數不合法（回應 HTTP 400）"""


def setup_logging(level: str = 'INFO', use_cloud_logging: bool = False):
    """設定日誌格式；於 GCP 上可改用 Cloud Logging handler"""
    global _cloud_logging_attached

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()]
    )
    if use_cloud_logging and not _cloud_logging_attached:
        cloud_logging.Client().setup_logging(log_level=getattr(logging, level.upper(), logging.INFO))
        _cloud_logging_attached = True


def load_config_from_env() -> Dict[str, Any]:
    """
    從環境變數載入設定

    Returns:
        Dict[str, Any]: 設定字典
    """
    return {
        'gcp_project_id': os.environ.get('GCP_PROJECT_ID') or os.environ.get('GOOGLE_CLOUD_PROJECT'),
        'tasks_location': os.environ.get('TASKS_LOCATION', 'us-central1'),
        'ingester_url': os.environ.get('INGESTER_URL'),
        'tasks_service_account': os.environ.get('TASKS_SERVICE_ACCOUNT'),
        'retry_base_seconds': int(os.environ.get('RETRY_BASE_SECONDS', 60)),
        'retry_max_seconds': int(os.environ.get('RETRY_MAX_SECONDS', 3600)),
        # 0 表示不限次數
        'max_attempts': int(os.environ.get('MAX_ATTEMPTS', 0)),
        'datastore_location_prefix': os.environ.get('DATASTORE_LOCATION_PREFIX', 's~'),
        'log_level': os.environ.get('LOG_LEVEL', 'INFO'),
        'use_cloud_logging': os.environ.get('USE_CLOUD_LOGGING', 'false').lower() == 'true',

        # 電子郵件通知設定
        'notification_email': os.environ.get('NOTIFICATION_EMAIL'),
        'smtp_from_email': os.environ.get('SMTP_FROM_EMAIL'),
        'smtp_from_password': os.environ.get('SMTP_FROM_PASSWORD'),
        'smtp_server': os.environ.get('SMTP_SERVER', 'smtp.gmail.com'),
        'smtp_port': int(os.environ.get('SMTP_PORT', 587)),
    }


def parse_timestamp(value: Optional[str]) -> int:
    """時間戳記需為非零整數（僅數字，可有負號），否則視為缺少參數"""
    timestamp = 0
    if value and TIMESTAMP_PATTERN.fullmatch(value):
        timestamp = int(value)
    if timestamp == 0:
        raise RequestValidationError(f"Missing required param: {TIMESTAMP_PARAM}")
    return timestamp


def parse_config_id(value: Optional[str]) -> str:
    if not value or not value.strip():
        raise RequestValidationError(f"Missing required param: {EXPORT_CONFIG_PARAM}")
    return value.strip()


def parse_attempt(value: Optional[str]) -> int:
    try:
        return max(int(value), 0) if value else 0
    except ValueError:
        return 0


def success_json(message: str, data: Optional[Dict[str, Any]] = None, status: str = 'success') -> Dict[str, Any]:
    body: Dict[str, Any] = {'status': status, 'message': message}
    if data is not None:
        body['data'] = data
    return body


def failure_json(message: str) -> Dict[str, Any]:
    return {'status': 'error', 'message': message}


class IngestionManager:
    """Datastore 備份匯入管理器"""

    def __init__(self,
                 config: Dict[str, Any],
                 registry: Optional[Dict[str, ExportConfig]] = None,
                 checker: Optional[BackupChecker] = None,
                 scheduler: Optional[TaskScheduler] = None,
                 loader_factory: Optional[Callable[[str], BigQueryLoader]] = None):
        """
        初始化匯入管理器

        Args:
            config: 設定字典（見 load_config_from_env）
            registry: 匯出設定註冊表；None 時依環境載入
            checker: 備份狀態查詢器；None 時於需要時建立
            scheduler: Cloud Tasks 排程器；None 時於需要時建立
            loader_factory: 以 BigQuery 專案 ID 建立載入器的函數
        """
        self.config = config
        self._registry = registry
        self._checker = checker
        self._scheduler = scheduler
        self.loader_factory = loader_factory or create_loader

    @property
    def registry(self) -> Dict[str, ExportConfig]:
        if self._registry is None:
            self._registry = load_registry_with_fallback(self.config.get('gcp_project_id'))
        return self._registry

    @property
    def checker(self) -> BackupChecker:
        if self._checker is None:
            self._checker = create_checker(
                self.config.get('gcp_project_id'),
                location_prefix=self.config.get('datastore_location_prefix', 's~')
            )
        return self._checker

    @property
    def scheduler(self) -> TaskScheduler:
        if self._scheduler is None:
            self._scheduler = create_scheduler(
                self.config.get('gcp_project_id'),
                location=self.config.get('tasks_location', 'us-central1'),
                service_account_email=self.config.get('tasks_service_account')
            )
        return self._scheduler

    def get_export_config(self, config_id: str) -> ExportConfig:
        export_config = self.registry.get(config_id)
        if export_config is None:
            raise RequestValidationError(f"Unknown export config: {config_id}")
        return export_config

    def run_ingestion(self, timestamp: int, config_id: str, base_url: str, attempt: int = 0) -> Dict[str, Any]:
        """
        檢查備份是否完成；未完成則重新排程，完成則送出載入工作

        Args:
            timestamp: 邏輯時間戳記
            config_id: 匯出設定 ID
            base_url: ingester 端點 URL（重新排程時使用）
            attempt: 已重試次數

        Returns:
            Dict: 回應內容（status / message / data）
        """
        export_config = self.get_export_config(config_id)
        data: Dict[str, Any] = {'config_id': config_id, 'timestamp': timestamp, 'attempt': attempt}

        backup_key = self.checker.find_completed_backup(export_config.backup_name(timestamp))
        if backup_key is None:
            return self._schedule_retry(export_config, timestamp, base_url, attempt, data)

        logging.info("backup complete, starting bigquery ingestion")
        loader = self.loader_factory(export_config.bigquery_project_id)
        data['backup_key'] = backup_key
        data['jobs'] = loader.ingest_backup(export_config, backup_key, timestamp)
        return success_json("backup complete, started bigquery ingestion", data)

    def _schedule_retry(self, export_config: ExportConfig, timestamp: int, base_url: str,
                        attempt: int, data: Dict[str, Any]) -> Dict[str, Any]:
        max_attempts = self.config.get('max_attempts', 0)
        if max_attempts and attempt >= max_attempts:
            logging.error(f"備份 {export_config.backup_name(timestamp)} 在 {attempt} 次重試後仍未完成，停止輪詢")
            return success_json(f"backup incomplete after {attempt} attempts, giving up", data, status='gave_up')

        delay = retry_delay_seconds(
            attempt,
            base_seconds=self.config.get('retry_base_seconds', 60),
            max_seconds=self.config.get('retry_max_seconds', 3600)
        )
        self.scheduler.enqueue_ingester(
            base_url,
            export_config.queue_name,
            export_config.config_id,
            timestamp,
            countdown_seconds=delay,
            attempt=attempt + 1
        )
        data['retry_in_seconds'] = delay
        return success_json(f"backup incomplete, retrying in {delay} seconds", data)

    def handle_request(self, args, base_url: str) -> Tuple[Dict[str, Any], int]:
        """
        驗證 query 參數並執行

        Returns:
            Tuple: (回應內容, HTTP 狀態碼)
        """
        try:
            timestamp = parse_timestamp(args.get(TIMESTAMP_PARAM))
            config_id = parse_config_id(args.get(EXPORT_CONFIG_PARAM))
            attempt = parse_attempt(args.get(ATTEMPT_PARAM))
            result = self.run_ingestion(timestamp, config_id, base_url, attempt)
        except RequestValidationError as e:
            logging.warning(str(e))
            return failure_json(str(e)), 400

        if result['status'] != 'success' or 'jobs' in result.get('data', {}):
            self._notify(result)
        return result, 200

    def _should_send_notification(self) -> bool:
        return bool(
            self.config.get('notification_email')
            and self.config.get('smtp_from_email')
            and self.config.get('smtp_from_password')
        )

    def _notify(self, result: Dict[str, Any]):
        if not self._should_send_notification():
            return
        smtp_config = {
            'from_email': self.config.get('smtp_from_email'),
            'from_password': self.config.get('smtp_from_password'),
            'smtp_server': self.config.get('smtp_server'),
            'smtp_port': self.config.get('smtp_port'),
        }
        try:
            send_ingestion_notification(self.config['notification_email'], result, smtp_config)
        except Exception as e:
            logging.warning(f"發送電子郵件通知失敗: {e}")


# Cloud Function 入口點
@functions_framework.http
def ingest_datastore_backup(request):
    """
    Google Cloud Function 入口點
    由 Cloud Tasks 以 GET 觸發，query 參數為 timestamp 與 builtinDatastoreExportConfig

    Args:
        request: HTTP 請求物件

    Returns:
        Tuple: (回應內容, HTTP 狀態碼)
    """
    try:
        config = load_config_from_env()
        setup_logging(config['log_level'], config['use_cloud_logging'])

        base_url = config.get('ingester_url')
        if not base_url:
            base_url = request.base_url
            logging.warning(f"未設定 INGESTER_URL，重新排程將使用請求網址 {base_url}")

        manager = IngestionManager(config)
        return manager.handle_request(request.args, base_url)
    except Exception as e:
        logging.exception(f"Cloud Function 執行失敗: {e}")
        return failure_json(str(e)), 500
