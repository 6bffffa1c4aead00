"""Dead-letter for ARQ cron runs (reconciliation retries, expiry sweeps) that raised."""

from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel


class FailedJob(Document):
    """One row per (job_name, job_id); a cron run that keeps failing bumps `failures`."""

    job_name: str
    job_id: str
    args: list[Any] = Field(default_factory=list)
    kwargs: dict[str, Any] = Field(default_factory=dict)
    error_type: str = ""
    reason: str = ""
    failures: int = 1
    first_failed_at: datetime = Field(default_factory=datetime.utcnow)
    last_failed_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "failed_jobs"
        indexes = [
            IndexModel([("job_name", ASCENDING), ("job_id", ASCENDING)], unique=True),
            IndexModel([("last_failed_at", DESCENDING)]),
        ]
