"""Cron: retry OraclePay reconciliations that failed after the ack, expire lapsed deposits."""

from app.core.config import get_settings
from app.core.exceptions import AppError
from app.core.logging import get_logger
from app.models.webhook_event import REASON_RECONCILIATION_FAILED, WebhookEvent
from app.services import reconciliation, transactions, webhook_intake

log = get_logger(__name__)

STALE_CLAIM_REASON = "STALE_CLAIM"
RETRYABLE_REASONS = [REASON_RECONCILIATION_FAILED, STALE_CLAIM_REASON]


async def run_reconciliation_retry() -> dict[str, int]:
    """One retry pass: free stale claims, then re-run failed reconciliations under the attempt cap."""
    settings = get_settings()
    released = await webhook_intake.release_stale_claims(settings.reconcile_stale_claim_minutes)
    candidates = (
        await WebhookEvent.find(
            {
                "processed": False,
                "processing": False,
                "reason": {"$in": RETRYABLE_REASONS},
                "attempts": {"$lt": settings.reconcile_max_attempts},
            }
        )
        .sort(+WebhookEvent.received_at)
        .limit(settings.reconcile_retry_batch)
        .to_list()
    )
    processed = 0
    for event in candidates:
        try:
            out = await reconciliation.reprocess_event(event.id, retry_reasons=RETRYABLE_REASONS)
        except AppError as e:
            # claimed by someone else or no longer reconcilable
            log.info("reconcile_retry_skipped", event_id=str(event.id), reason=e.code)
            continue
        processed += int(out["processed"])
    log.info("reconcile_retry_done", released=released, candidates=len(candidates), processed=processed)
    return {"released": released, "candidates": len(candidates), "processed": processed}


async def run_expire_pending_deposits() -> int:
    return await transactions.expire_overdue_deposits()
