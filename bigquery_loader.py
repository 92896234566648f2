# -*- coding: utf-8 -*-
"""
BigQuery 載入模組
將 Datastore 備份（.backup_info）以載入工作匯入 BigQuery 資料表
"""

import logging
from typing import List, Dict, Any, Optional
from google.cloud import bigquery
from google.cloud.exceptions import NotFound

from config_loader import ExportConfig


class BigQueryLoader:
    """BigQuery 載入器類別"""

    def __init__(self, project_id: str, client: Optional[bigquery.Client] = None):
        """
        初始化 BigQuery 載入器

        Args:
            project_id: 執行載入工作的 GCP 專案 ID
            client: 可注入的 BigQuery 客戶端

        Raises:
            Exception: 當無法建立 BigQuery 客戶端時
        """
        if not project_id:
            raise ValueError("專案 ID 不可為空")

        self.project_id = project_id

        if client is not None:
            self.client = client
            return
        try:
            self.client = bigquery.Client(project=project_id)
            logging.info(f"BigQuery 客戶端初始化完成 - 專案: {project_id}")
        except Exception as e:
            raise Exception(f"無法建立 BigQuery 客戶端連線: {e}")

    def delete_table_if_exists(self, dataset_id: str, table_id: str) -> bool:
        """
        資料表存在時刪除

        Args:
            dataset_id: 資料集 ID
            table_id: 資料表 ID

        Returns:
            bool: 有刪除回傳 True，資料表不存在回傳 False
        """
        table_ref = f"{self.project_id}.{dataset_id}.{table_id}"
        try:
            self.client.get_table(table_ref)
        except NotFound:
            logging.info(f"資料表 {table_ref} 不存在，略過刪除")
            return False

        self.client.delete_table(table_ref)
        logging.info(f"已刪除舊資料表 {table_ref}")
        return True

    def submit_backup_load(self, source_uri: str, dataset_id: str, table_id: str) -> str:
        """
        送出 Datastore 備份載入工作（不等待完成）

        Args:
            source_uri: gs:// 開頭的 .backup_info 路徑
            dataset_id: 目的資料集
            table_id: 目的資料表

        Returns:
            str: 載入工作 ID
        """
        job_config = bigquery.LoadJobConfig()
        job_config.source_format = bigquery.SourceFormat.DATASTORE_BACKUP
        job_config.allow_quoted_newlines = True

        destination = bigquery.TableReference(
            bigquery.DatasetReference(self.project_id, dataset_id), table_id
        )
        job = self.client.load_table_from_uri(
            source_uri, destination, job_config=job_config, project=self.project_id
        )
        logging.info(f"Uri: {source_uri}, JobId: {job.job_id}")
        return job.job_id

    def ingest_backup(self, export_config: ExportConfig, backup_key: str, timestamp: int) -> List[Dict[str, Any]]:
        """
        依設定中的每個 kind 送出載入工作

        未附加時間戳記時，先刪除所有同名舊資料表，再依序送出載入工作。
        任一 kind 失敗即中止並向上拋出例外。

        Args:
            export_config: 匯出設定
            backup_key: 已完成備份的金鑰字串
            timestamp: 邏輯時間戳記

        Returns:
            List[Dict]: 每個 kind 的 {kind, table_id, source_uri, job_id}
        """
        dataset_id = export_config.bigquery_dataset_id

        if not export_config.append_timestamp_to_tables:
            for kind in export_config.entity_kinds:
                self.delete_table_if_exists(dataset_id, kind)

        jobs = []
        for kind in export_config.entity_kinds:
            source_uri = export_config.source_uri_for(backup_key, kind)
            table_id = export_config.table_id_for(kind, timestamp)
            job_id = self.submit_backup_load(source_uri, dataset_id, table_id)
            jobs.append({
                "kind": kind,
                "table_id": table_id,
                "source_uri": source_uri,
                "job_id": job_id,
            })

        logging.info(f"已送出 {len(jobs)} 個載入工作")
        return jobs

    def check_connection(self, dataset_id: str) -> bool:
        """
        確認目的資料集可存取

        Args:
            dataset_id: 目的資料集 ID

        Returns:
            bool: 可存取返回 True
        """
        try:
            self.client.get_dataset(f"{self.project_id}.{dataset_id}")
            logging.info(f"BigQuery 資料集 {self.project_id}.{dataset_id} 可存取")
            return True
        except Exception as e:
            logging.error(f"BigQuery 連線測試失敗: {e}")
            return False


def create_loader(project_id: str, **kwargs) -> BigQueryLoader:
    """
    建立 BigQuery 載入器的工廠函數

    Args:
        project_id: GCP 專案 ID
        **kwargs: 其他參數

    Returns:
        BigQueryLoader: 載入器實例
    """
    return BigQueryLoader(project_id, **kwargs)
