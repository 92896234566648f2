# -*- coding: utf-8 -*-
"""Datastore Admin 備份完成狀態查詢模組"""

import logging
from typing import Optional
from google.cloud import datastore
from google.cloud.datastore.query import PropertyFilter


BACKUP_INFO_KIND = "_AE_Backup_Information"

# Datastore Admin 會在備份名稱後附加日期，因此以範圍查詢代替完全比對
NAME_RANGE_SENTINEL = "Z"


class BackupChecker:
    """查詢 _AE_Backup_Information 判斷備份是否完成"""

    def __init__(self, project_id: Optional[str] = None, location_prefix: str = "s~",
                 client: Optional[datastore.Client] = None):
        """
        初始化備份查詢器

        Args:
            project_id: GCP 專案 ID（None 時由環境推斷）
            location_prefix: 舊版 App Engine 金鑰字串的 app id 前綴
            client: 可注入的 Datastore 客戶端
        """
        self.location_prefix = location_prefix
        self.client = client or datastore.Client(project=project_id)

    def find_completed_backup(self, backup_name: str) -> Optional[str]:
        """
        查詢名稱落在 [backup_name, backup_name + 'Z'] 範圍內的第一筆備份紀錄

        Args:
            backup_name: 推導出的備份名稱前綴

        Returns:
            Optional[str]: 已完成備份的 websafe 金鑰字串；未完成或找不到時為 None
        """
        logging.info(f"backupName: {backup_name}")

        query = self.client.query(kind=BACKUP_INFO_KIND)
        query.add_filter(filter=PropertyFilter("name", ">=", backup_name))
        query.add_filter(filter=PropertyFilter("name", "<=", backup_name + NAME_RANGE_SENTINEL))
        results = list(query.fetch(limit=1))

        if not results:
            logging.warning(f"找不到備份紀錄: {backup_name}")
            return None

        result = results[0]
        if backup_name not in str(result.get("name", "")):
            logging.warning(f"備份紀錄名稱不符: {result.get('name')} (預期包含 {backup_name})")

        completion = result.get("complete_time")
        key_result = None
        if completion is not None:
            key_result = self.key_to_string(result.key)

        logging.info(f"result: {result.get('name')}")
        logging.info(f"complete_time: {completion}")
        logging.info(f"Backup complete: {completion is not None}")
        logging.info(f"keyResult: {key_result}")
        return key_result

    def key_to_string(self, key: datastore.Key) -> str:
        """轉為與 App Engine KeyFactory.keyToString 相容的 websafe 字串"""
        return key.to_legacy_urlsafe(location_prefix=self.location_prefix or None).decode("utf-8")


def create_checker(project_id: Optional[str] = None, **kwargs) -> BackupChecker:
    """建立備份查詢器的工廠函數"""
    return BackupChecker(project_id, **kwargs)
