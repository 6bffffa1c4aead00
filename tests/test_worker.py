import pytest

from app.models.failed_job import FailedJob
from app.worker import tasks
from app.worker.cron import run_reconciliation_retry


async def _boom():
    raise RuntimeError("redis went away")


async def test_failed_cron_run_is_dead_lettered_once_per_job(db):
    for _ in range(2):
        with pytest.raises(RuntimeError):
            await tasks._run_with_dlq("retry_failed_reconciliations", "cron:retry:1", [], {}, _boom())

    rows = await FailedJob.find(FailedJob.job_name == "retry_failed_reconciliations").to_list()
    assert len(rows) == 1
    assert rows[0].failures == 2
    assert rows[0].error_type == "RuntimeError"
    assert rows[0].reason == "redis went away"


async def test_successful_run_returns_result(db):
    async def ok():
        return 7

    assert await tasks._run_with_dlq("expire_pending_deposits", None, [], {}, ok()) == 7
    assert await FailedJob.find_all().count() == 0


async def test_retry_pass_with_nothing_to_do(db):
    assert await run_reconciliation_retry() == {"released": 0, "candidates": 0, "processed": 0}


def test_redis_settings_from_url(monkeypatch):
    from app.core.config import get_settings

    monkeypatch.setenv("REDIS_URL", "redis://:pw@cache.internal:6380/2")
    get_settings.cache_clear()
    try:
        rs = tasks.get_redis_settings()
    finally:
        get_settings.cache_clear()
    assert (rs.host, rs.port, rs.database, rs.password) == ("cache.internal", 6380, 2, "pw")
