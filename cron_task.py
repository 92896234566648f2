# -*- coding: utf-8 -*-
"""
排程啟動任務
請 Datastore Admin 建立備份，並立即排入第一個 ingester 觸發
"""

import logging
import time
from typing import Dict, Any, Tuple

import functions_framework

from ingester_main import (
    IngestionManager,
    RequestValidationError,
    load_config_from_env,
    setup_logging,
    parse_timestamp,
    parse_config_id,
    success_json,
    failure_json,
)
from task_scheduler import TIMESTAMP_PARAM, EXPORT_CONFIG_PARAM


def start_backup(manager: IngestionManager, config_id: str, timestamp: int, ingester_url: str) -> Dict[str, Any]:
    """
    建立 Datastore Admin 備份任務，再排入 ingester 觸發（無延遲）

    Args:
        manager: 匯入管理器（提供設定註冊表與排程器）
        config_id: 匯出設定 ID
        timestamp: 邏輯時間戳記
        ingester_url: ingester 端點 URL

    Returns:
        Dict: 回應內容
    """
    export_config = manager.get_export_config(config_id)
    backup_name = export_config.backup_name(timestamp)

    backup_task = manager.scheduler.enqueue_datastore_admin_backup(
        export_config.queue_name,
        backup_name,
        export_config.bucket_name,
        list(export_config.entity_kinds)
    )
    ingester_task = manager.scheduler.enqueue_ingester(
        ingester_url,
        export_config.queue_name,
        config_id,
        timestamp
    )
    logging.info(f"已啟動備份 {backup_name}，kinds: {', '.join(export_config.entity_kinds)}")

    return success_json("backup started, ingester enqueued", {
        'config_id': config_id,
        'timestamp': timestamp,
        'backup_name': backup_name,
        'backup_task': backup_task,
        'ingester_task': ingester_task,
    })


def handle_start_request(manager: IngestionManager, args, ingester_url: str) -> Tuple[Dict[str, Any], int]:
    """驗證參數；未提供 timestamp 時使用目前毫秒時間"""
    try:
        config_id = parse_config_id(args.get(EXPORT_CONFIG_PARAM))
        raw_ts = args.get(TIMESTAMP_PARAM)
        timestamp = parse_timestamp(raw_ts) if raw_ts else int(time.time() * 1000)
        return start_backup(manager, config_id, timestamp, ingester_url), 200
    except RequestValidationError as e:
        logging.warning(str(e))
        return failure_json(str(e)), 400


# Cloud Function 入口點（由 Cloud Scheduler 觸發）
@functions_framework.http
def start_datastore_backup(request):
    try:
        config = load_config_from_env()
        setup_logging(config['log_level'], config['use_cloud_logging'])

        ingester_url = config.get('ingester_url')
        if not ingester_url:
            logging.error("未設定 INGESTER_URL，無法排入 ingester 任務")
            return failure_json("INGESTER_URL is not configured"), 500

        manager = IngestionManager(config)
        return handle_start_request(manager, request.args, ingester_url)
    except Exception as e:
        logging.exception(f"Cloud Function 執行失敗: {e}")
        return failure_json(str(e)), 500
