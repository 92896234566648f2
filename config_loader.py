# -*- coding: utf-8 -*-
"""
匯出設定載入模組
以設定 ID 查找 Datastore 備份匯出設定（佇列、備份名稱前綴、BigQuery 目的地、實體種類等）

設定來源依序為：BigQuery 設定表（選用）→ EXPORT_CONFIGS_JSON 環境變數 → EXPORT_CONFIGS_FILE 檔案
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Tuple
from google.cloud import bigquery


REQUIRED_FIELDS = [
    "config_id",
    "queue_name",
    "backup_name_prefix",
    "bigquery_project_id",
    "bigquery_dataset_id",
    "entity_kinds",
    "bucket_name",
]


@dataclass(frozen=True)
class ExportConfig:
    """單一匯出設定（不可變）"""

    config_id: str
    queue_name: str
    backup_name_prefix: str
    bigquery_project_id: str
    bigquery_dataset_id: str
    entity_kinds: Tuple[str, ...]
    bucket_name: str
    append_timestamp_to_tables: bool = False

    def backup_name(self, timestamp: int) -> str:
        """由時間戳記推導 Datastore Admin 備份名稱前綴"""
        return f"{self.backup_name_prefix}{timestamp}_"

    def table_id_for(self, kind: str, timestamp: int) -> str:
        """目的資料表名稱：kind，或 kind + 時間戳記"""
        if self.append_timestamp_to_tables:
            return f"{kind}{timestamp}"
        return kind

    def source_uri_for(self, backup_key: str, kind: str) -> str:
        """每個 kind 的 backup_info 物件路徑"""
        return f"gs://{self.bucket_name}/{backup_key}.{kind}.backup_info"


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "y")


def parse_export_config(raw: Dict[str, Any]) -> ExportConfig:
    """
    將字典轉換為 ExportConfig

    Args:
        raw: 設定字典；entity_kinds 可為列表或以逗號分隔的字串

    Returns:
        ExportConfig: 設定物件

    Raises:
        ValueError: 當必要欄位缺失或格式錯誤時
    """
    if not isinstance(raw, dict):
        raise ValueError(f"匯出設定格式錯誤（需為物件）: {raw!r}")

    missing = [f for f in REQUIRED_FIELDS if not raw.get(f)]
    if missing:
        raise ValueError(f"匯出設定缺少必要欄位: {', '.join(missing)}")

    kinds = raw["entity_kinds"]
    if isinstance(kinds, str):
        kinds = [k.strip() for k in kinds.split(",")]
    if not isinstance(kinds, (list, tuple)):
        raise ValueError(f"entity_kinds 格式錯誤: {kinds!r}")
    kinds = tuple(str(k) for k in kinds if str(k).strip())
    if not kinds:
        raise ValueError(f"匯出設定 {raw['config_id']} 未指定任何 entity_kinds")

    return ExportConfig(
        config_id=str(raw["config_id"]),
        queue_name=str(raw["queue_name"]),
        backup_name_prefix=str(raw["backup_name_prefix"]),
        bigquery_project_id=str(raw["bigquery_project_id"]),
        bigquery_dataset_id=str(raw["bigquery_dataset_id"]),
        entity_kinds=kinds,
        bucket_name=str(raw["bucket_name"]),
        append_timestamp_to_tables=_parse_bool(raw.get("append_timestamp_to_tables")),
    )


def build_registry(entries: List[Dict[str, Any]]) -> Dict[str, ExportConfig]:
    """
    將設定列表轉為 {config_id: ExportConfig}

    Raises:
        ValueError: 當設定 ID 重複時
    """
    registry: Dict[str, ExportConfig] = {}
    for raw in entries:
        cfg = parse_export_config(raw)
        if cfg.config_id in registry:
            raise ValueError(f"匯出設定 ID 重複: {cfg.config_id}")
        registry[cfg.config_id] = cfg
    return registry


def _entries_from_json(payload: Any) -> List[Dict[str, Any]]:
    # 同時接受列表，或 {config_id: {...}} 形式的物件
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        entries = []
        for config_id, body in payload.items():
            if not isinstance(body, dict):
                raise ValueError(f"匯出設定 {config_id} 格式錯誤")
            entries.append({"config_id": config_id, **body})
        return entries
    raise ValueError("匯出設定 JSON 需為列表或物件")


class ExportConfigLoader:
    """從 BigQuery 設定表載入匯出設定"""

    def __init__(self, project_id: str, dataset_id: str, table_id: str = "export_config"):
        """
        初始化設定載入器

        Args:
            project_id: GCP 專案 ID
            dataset_id: 設定表所在的 Dataset
            table_id: 設定表名稱，預設 export_config
        """
        self.project_id = project_id
        self.dataset_id = dataset_id
        self.table_id = table_id
        self.client = bigquery.Client(project=project_id)
        self._cache: Optional[Dict[str, ExportConfig]] = None
        logging.info(f"匯出設定載入器初始化完成（專案：{project_id}，Dataset：{dataset_id}）")

    def load_registry(self) -> Dict[str, ExportConfig]:
        """
        讀取所有啟用中的匯出設定（同一載入器只查詢一次）

        Returns:
            Dict[str, ExportConfig]: 設定 ID 對應設定物件
        """
        if self._cache is not None:
            return self._cache

        query = f"""
        SELECT
            config_id,
            queue_name,
            backup_name_prefix,
            bigquery_project_id,
            bigquery_dataset_id,
            entity_kinds,
            bucket_name,
            append_timestamp_to_tables
        FROM `{self.project_id}.{self.dataset_id}.{self.table_id}`
        WHERE enabled = TRUE
        ORDER BY config_id
        """
        try:
            rows = self.client.query(query).result()
            entries = [dict(row.items()) for row in rows]
            self._cache = build_registry(entries)
            logging.info(f"成功載入 {len(self._cache)} 個匯出設定")
            return self._cache
        except Exception as e:
            logging.error(f"載入匯出設定失敗: {e}")
            raise


# 以 (project_id, dataset_id) 保留載入器，讓同一執行個體的後續請求沿用快取
_config_loaders: Dict[Tuple[str, str], ExportConfigLoader] = {}


def get_config_loader(project_id: str, dataset_id: str) -> ExportConfigLoader:
    key = (project_id, dataset_id)
    if key not in _config_loaders:
        _config_loaders[key] = ExportConfigLoader(project_id, dataset_id)
    return _config_loaders[key]


def load_registry_from_env() -> Dict[str, ExportConfig]:
    """
    從 EXPORT_CONFIGS_JSON 或 EXPORT_CONFIGS_FILE 載入設定

    Raises:
        ValueError: 兩者皆未設定或內容非法時
    """
    raw_json = os.environ.get("EXPORT_CONFIGS_JSON")
    if raw_json:
        try:
            payload = json.loads(raw_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"EXPORT_CONFIGS_JSON 非合法 JSON: {e}")
        return build_registry(_entries_from_json(payload))

    path = os.environ.get("EXPORT_CONFIGS_FILE")
    if path:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        return build_registry(_entries_from_json(payload))

    raise ValueError("未設定匯出設定來源（EXPORT_CONFIGS_JSON 或 EXPORT_CONFIGS_FILE）")


def load_registry_with_fallback(project_id: Optional[str] = None) -> Dict[str, ExportConfig]:
    """
    智慧設定載入：有 EXPORT_CONFIG_DATASET 時優先 BigQuery，失敗則回退到環境變數

    Args:
        project_id: GCP 專案 ID

    Returns:
        Dict[str, ExportConfig]: 設定註冊表
    """
    dataset_id = os.environ.get("EXPORT_CONFIG_DATASET")
    if dataset_id and project_id:
        try:
            logging.info("嘗試從 BigQuery 載入匯出設定...")
            return get_config_loader(project_id, dataset_id).load_registry()
        except Exception as e:
            logging.warning(f"BigQuery 匯出設定載入失敗: {e}，回退到環境變數")

    return load_registry_from_env()
