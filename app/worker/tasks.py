"""ARQ job definitions."""

import uuid
from datetime import datetime
from typing import Any

from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import get_logger

log = get_logger(__name__)


async def _run_with_dlq(
    job_name: str,
    job_id: str | None,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
) -> Any:
    """Run coroutine; on exception record it in the FailedJob dead-letter, then re-raise."""
    try:
        return await coro
    except Exception as e:
        from app.models.failed_job import FailedJob
        fid = job_id or str(uuid.uuid4())
        now = datetime.utcnow()
        await FailedJob.find_one(FailedJob.job_name == job_name, FailedJob.job_id == fid).upsert(
            {
                "$set": {"error_type": type(e).__name__, "reason": str(e)[:2000], "last_failed_at": now},
                "$inc": {"failures": 1},
            },
            on_insert=FailedJob(
                job_name=job_name,
                job_id=fid,
                args=args,
                kwargs=kwargs,
                error_type=type(e).__name__,
                reason=str(e)[:2000],
                first_failed_at=now,
                last_failed_at=now,
            ),
        )
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


def _job_id(ctx: dict[str, Any]) -> str | None:
    return ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None


async def retry_failed_reconciliations(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: retry OraclePay callbacks whose reconciliation failed after the ack."""
    from app.worker.cron import run_reconciliation_retry
    return await _run_with_dlq("retry_failed_reconciliations", _job_id(ctx), [], {}, run_reconciliation_retry())


async def expire_pending_deposits(ctx: dict[str, Any]) -> int:
    """Cron job: pending deposits whose payment link lapsed become expired."""
    from app.worker.cron import run_expire_pending_deposits
    return await _run_with_dlq("expire_pending_deposits", _job_id(ctx), [], {}, run_expire_pending_deposits())


async def startup(ctx: dict) -> None:
    from app.core.logging import configure_logging
    from app.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()


async def shutdown(ctx: dict) -> None:
    pass


def get_redis_settings() -> RedisSettings:
    return RedisSettings.from_dsn(get_settings().redis_url)
