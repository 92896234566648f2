#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
手動觸發 Datastore 備份匯入

用法：
  # 排入 ingester 任務（由 Cloud Tasks 呼叫 --url）
  python scripts/enqueue_ingestion.py --config daily --timestamp 1700000000000 --url https://.../ingest_datastore_backup

  # 在本機直接檢查一次備份狀態並送出載入工作（備份未完成時仍會以 --url 重新排程）
  python scripts/enqueue_ingestion.py --config daily --timestamp 1700000000000 --run-now

  # 確認目的資料集可存取
  python scripts/enqueue_ingestion.py --config daily --check
"""

import argparse
import json
import logging
import os
import sys

# 確保從 scripts/ 執行時能找到專案根目錄的模組
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from bigquery_loader import create_loader
from ingester_main import IngestionManager, load_config_from_env, setup_logging


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="手動排入或執行 Datastore 備份 → BigQuery 匯入")
    parser.add_argument("--config", required=True, help="匯出設定 ID")
    parser.add_argument("--timestamp", type=int, help="備份的邏輯時間戳記（--check 以外必填）")
    parser.add_argument("--url", help="ingester 端點 URL（預設讀取 INGESTER_URL）")
    parser.add_argument("--run-now", action="store_true", help="在本機直接執行一次，而非排入佇列")
    parser.add_argument("--check", action="store_true", help="只確認設定中的 BigQuery 資料集可存取")
    parser.add_argument("--log-level", default="INFO", help="日誌等級")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    config = load_config_from_env()
    manager = IngestionManager(config)

    if args.check:
        export_config = manager.get_export_config(args.config)
        loader = create_loader(export_config.bigquery_project_id)
        return 0 if loader.check_connection(export_config.bigquery_dataset_id) else 1

    if not args.timestamp:
        logging.error("需提供 --timestamp")
        return 2

    url = args.url or config.get('ingester_url')
    if not url:
        logging.error("需提供 --url 或 INGESTER_URL")
        return 2

    if args.run_now:
        result = manager.run_ingestion(args.timestamp, args.config, url)
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return 0 if result['status'] == 'success' else 1

    export_config = manager.get_export_config(args.config)
    task_name = manager.scheduler.enqueue_ingester(url, export_config.queue_name, args.config, args.timestamp)
    print(f"已排入任務: {task_name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
