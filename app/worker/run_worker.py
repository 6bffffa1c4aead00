"""Run ARQ worker. Usage: python -m app.worker.run_worker (or `arq app.worker.run_worker.WorkerSettings`)"""

from arq import run_worker
from arq.cron import cron

from app.worker.tasks import (
    expire_pending_deposits,
    get_redis_settings,
    retry_failed_reconciliations,
    shutdown,
    startup,
)


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [retry_failed_reconciliations, expire_pending_deposits]
    cron_jobs = [
        cron(retry_failed_reconciliations, minute=set(range(0, 60, 5)), second=0),  # every 5 minutes
        cron(expire_pending_deposits, second=30),  # every minute at :30
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
