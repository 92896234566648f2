"""
Cloud Function 入口點檔案
此檔案為 Google Cloud Functions 部署所需的標準入口檔案 (main.py)
實際業務邏輯在 ingester_main.py 與 cron_task.py 中實作
"""

from ingester_main import ingest_datastore_backup
from cron_task import start_datastore_backup

# 匯出 Cloud Function 入口點
__all__ = ['ingest_datastore_backup', 'start_datastore_backup']
