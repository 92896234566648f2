"""備份完成狀態查詢測試"""

import datetime
from unittest.mock import Mock

from google.cloud import datastore

from backup_checker import BACKUP_INFO_KIND, BackupChecker


def _entity(name, complete_time=None):
    key = datastore.Key(BACKUP_INFO_KIND, 42, project="my-app")
    entity = datastore.Entity(key=key)
    entity["name"] = name
    if complete_time is not None:
        entity["complete_time"] = complete_time
    return entity


def _checker(results):
    client = Mock()
    client.query.return_value.fetch.return_value = iter(results)
    return BackupChecker(client=client), client


def test_completed_backup_returns_websafe_key():
    entity = _entity("daily_backup_1700_2024_01_01", datetime.datetime(2024, 1, 1))
    checker, client = _checker([entity])

    key = checker.find_completed_backup("daily_backup_1700_")

    assert key == entity.key.to_legacy_urlsafe(location_prefix="s~").decode("utf-8")
    client.query.assert_called_once_with(kind=BACKUP_INFO_KIND)
    client.query.return_value.fetch.assert_called_once_with(limit=1)


def test_name_range_filters():
    checker, client = _checker([])
    checker.find_completed_backup("daily_backup_1700_")

    filters = [c.kwargs["filter"] for c in client.query.return_value.add_filter.call_args_list]
    assert [(f.property_name, f.operator, f.value) for f in filters] == [
        ("name", ">=", "daily_backup_1700_"),
        ("name", "<=", "daily_backup_1700_Z"),
    ]


def test_incomplete_backup_returns_none():
    checker, _ = _checker([_entity("daily_backup_1700_2024_01_01")])
    assert checker.find_completed_backup("daily_backup_1700_") is None


def test_missing_backup_returns_none():
    checker, _ = _checker([])
    assert checker.find_completed_backup("daily_backup_1700_") is None


def test_mismatched_name_still_uses_first_result(caplog):
    entity = _entity("other_backup", datetime.datetime(2024, 1, 1))
    checker, _ = _checker([entity])

    assert checker.find_completed_backup("daily_backup_1700_") is not None
    assert "名稱不符" in caplog.text
