"""Cloud Tasks 排程器測試"""

from unittest.mock import Mock
from urllib.parse import parse_qs, urlsplit

import pytest
from google.cloud import tasks_v2

from task_scheduler import TaskScheduler, build_trigger_params, retry_delay_seconds


def _scheduler(**kwargs):
    client = Mock()
    client.queue_path.side_effect = lambda p, l, q: f"projects/{p}/locations/{l}/queues/{q}"
    response = Mock()
    response.name = "projects/p/locations/us-central1/queues/q/tasks/1"
    client.create_task.return_value = response
    return TaskScheduler("p", client=client, **kwargs), client


@pytest.mark.parametrize("attempt,expected", [(0, 60), (1, 120), (2, 240), (6, 3600), (100, 3600), (-1, 60)])
def test_retry_delay_seconds(attempt, expected):
    assert retry_delay_seconds(attempt, 60, 3600) == expected


def test_build_trigger_params_omits_zero_attempt():
    assert build_trigger_params("daily", 1700) == {"timestamp": "1700", "builtinDatastoreExportConfig": "daily"}
    assert build_trigger_params("daily", 1700, 3)["attempt"] == "3"


def test_enqueue_ingester_immediate():
    scheduler, client = _scheduler()
    name = scheduler.enqueue_ingester("https://fn.example/ingest", "backup-queue", "daily", 1700)

    assert name.endswith("/tasks/1")
    kwargs = client.create_task.call_args.kwargs
    assert kwargs["parent"] == "projects/p/locations/us-central1/queues/backup-queue"
    task = kwargs["task"]
    assert "schedule_time" not in task
    assert task["http_request"]["http_method"] == tasks_v2.HttpMethod.GET
    url = urlsplit(task["http_request"]["url"])
    assert f"{url.scheme}://{url.netloc}{url.path}" == "https://fn.example/ingest"
    assert parse_qs(url.query) == {"timestamp": ["1700"], "builtinDatastoreExportConfig": ["daily"]}
    assert "oidc_token" not in task["http_request"]


def test_enqueue_ingester_delayed_with_oidc():
    scheduler, client = _scheduler(service_account_email="tasks@p.iam.gserviceaccount.com")
    scheduler.enqueue_ingester("https://fn.example/ingest", "backup-queue", "daily", 1700,
                               countdown_seconds=60, attempt=1)

    task = client.create_task.call_args.kwargs["task"]
    assert task["schedule_time"].seconds > 0
    assert task["http_request"]["oidc_token"] == {"service_account_email": "tasks@p.iam.gserviceaccount.com"}
    assert parse_qs(urlsplit(task["http_request"]["url"]).query)["attempt"] == ["1"]


def test_enqueue_datastore_admin_backup():
    scheduler, client = _scheduler()
    scheduler.enqueue_datastore_admin_backup("backup-queue", "daily_backup_1700_", "b", ["Order", "User"])

    request = client.create_task.call_args.kwargs["task"]["app_engine_http_request"]
    assert request["app_engine_routing"] == {"version": "ah-builtin-python-bundle"}
    path, query = request["relative_uri"].split("?", 1)
    assert path == "/_ah/datastore_admin/backup.create"
    assert parse_qs(query) == {
        "name": ["daily_backup_1700_"],
        "filesystem": ["gs"],
        "gs_bucket_name": ["b"],
        "queue": ["backup-queue"],
        "kind": ["Order", "User"],
    }


def test_empty_project_rejected():
    with pytest.raises(ValueError):
        TaskScheduler("", client=Mock())
