# -*- coding: utf-8 -*-
"""
Cloud Tasks 排程模組
負責將 ingester 觸發重新排入佇列（輪詢），以及為 cron 建立 Datastore Admin 備份任務
"""

import datetime
import logging
from typing import Dict, Any, List, Optional, Tuple
from urllib.parse import urlencode
from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2


TIMESTAMP_PARAM = "timestamp"
EXPORT_CONFIG_PARAM = "builtinDatastoreExportConfig"
ATTEMPT_PARAM = "attempt"

DATASTORE_ADMIN_BACKUP_PATH = "/_ah/datastore_admin/backup.create"
DATASTORE_ADMIN_VERSION = "ah-builtin-python-bundle"


def retry_delay_seconds(attempt: int, base_seconds: int = 60, max_seconds: int = 3600) -> int:
    """
    計算第 attempt 次重試的延遲秒數（指數退避，上限 max_seconds）

    attempt 從 0 開始，因此第一次重試延遲為 base_seconds。
    """
    if attempt < 0:
        attempt = 0
    # 避免超大次方
    if attempt > 32:
        return max_seconds
    return min(base_seconds * (2 ** attempt), max_seconds)


def build_trigger_params(config_id: str, timestamp: int, attempt: int = 0) -> Dict[str, str]:
    """組出 ingester 觸發的 query 參數"""
    params = {
        TIMESTAMP_PARAM: str(timestamp),
        EXPORT_CONFIG_PARAM: config_id,
    }
    if attempt > 0:
        params[ATTEMPT_PARAM] = str(attempt)
    return params


class TaskScheduler:
    """Cloud Tasks 排程器"""

    def __init__(self, project_id: str, location: str = "us-central1",
                 service_account_email: Optional[str] = None,
                 client: Optional[tasks_v2.CloudTasksClient] = None):
        """
        初始化排程器

        Args:
            project_id: Cloud Tasks 所在的 GCP 專案
            location: Cloud Tasks 佇列所在區域
            service_account_email: 若提供，HTTP 任務會附帶 OIDC token
            client: 可注入的 Cloud Tasks 客戶端
        """
        if not project_id:
            raise ValueError("專案 ID 不可為空")

        self.project_id = project_id
        self.location = location
        self.service_account_email = service_account_email
        self.client = client or tasks_v2.CloudTasksClient()

    def _queue_path(self, queue_name: str) -> str:
        return self.client.queue_path(self.project_id, self.location, queue_name)

    @staticmethod
    def _schedule_time(countdown_seconds: int) -> timestamp_pb2.Timestamp:
        ts = timestamp_pb2.Timestamp()
        ts.FromDatetime(datetime.datetime.now(datetime.timezone.utc)
                        + datetime.timedelta(seconds=countdown_seconds))
        return ts

    def enqueue_ingester(self,
                         url: str,
                         queue_name: str,
                         config_id: str,
                         timestamp: int,
                         countdown_seconds: int = 0,
                         attempt: int = 0) -> str:
        """
        將 ingester 觸發排入佇列（GET 方法）

        Args:
            url: ingester 端點 URL（不含 query string）
            queue_name: 佇列名稱
            config_id: 匯出設定 ID
            timestamp: 邏輯時間戳記
            countdown_seconds: 延遲秒數，0 表示立即
            attempt: 已重試次數

        Returns:
            str: 建立的任務名稱
        """
        query = urlencode(build_trigger_params(config_id, timestamp, attempt))
        http_request: Dict[str, Any] = {
            "http_method": tasks_v2.HttpMethod.GET,
            "url": f"{url}?{query}",
        }
        if self.service_account_email:
            http_request["oidc_token"] = {"service_account_email": self.service_account_email}

        task: Dict[str, Any] = {"http_request": http_request}
        if countdown_seconds > 0:
            task["schedule_time"] = self._schedule_time(countdown_seconds)

        response = self.client.create_task(parent=self._queue_path(queue_name), task=task)
        logging.info(f"已排入 ingester 任務 {response.name}（延遲 {countdown_seconds} 秒，第 {attempt} 次重試）")
        return response.name

    def enqueue_datastore_admin_backup(self,
                                       queue_name: str,
                                       backup_name: str,
                                       bucket_name: str,
                                       kinds: List[str]) -> str:
        """
        建立 App Engine 任務，呼叫 Datastore Admin 的 backup.create

        Args:
            queue_name: 佇列名稱（同時作為 Datastore Admin 的工作佇列）
            backup_name: 備份名稱
            bucket_name: GCS bucket
            kinds: 要備份的實體種類

        Returns:
            str: 建立的任務名稱
        """
        params: List[Tuple[str, str]] = [
            ("name", backup_name),
            ("filesystem", "gs"),
            ("gs_bucket_name", bucket_name),
            ("queue", queue_name),
        ]
        params.extend(("kind", kind) for kind in kinds)

        task = {
            "app_engine_http_request": {
                "http_method": tasks_v2.HttpMethod.GET,
                "relative_uri": f"{DATASTORE_ADMIN_BACKUP_PATH}?{urlencode(params)}",
                "app_engine_routing": {"version": DATASTORE_ADMIN_VERSION},
            }
        }
        response = self.client.create_task(parent=self._queue_path(queue_name), task=task)
        logging.info(f"已排入 Datastore Admin 備份任務 {response.name}（備份名稱 {backup_name}）")
        return response.name


def create_scheduler(project_id: str, **kwargs) -> TaskScheduler:
    """建立排程器的工廠函數"""
    return TaskScheduler(project_id, **kwargs)
