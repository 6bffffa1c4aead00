"""
OraclePay deposit reconciliation.

A claimed intake record is turned into exactly one ledger credit:
resolve the player, claim the pending deposit, derive the bonus, apply the
atomic credit, complete the deposit record, then mark the intake record
processed with a balance snapshot. Runs after the provider has been
acknowledged, so failures are logged and written to the record, never raised.
"""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId

from app.core.config import get_settings
from app.core.exceptions import ConflictError, NotFoundError
from app.core.logging import bind_webhook_context, get_logger
from app.models.transaction import Transaction
from app.models.webhook_event import (
    REASON_RECONCILIATION_FAILED,
    REASON_USER_NOT_FOUND,
    WebhookEvent,
)
from app.services import identity, ledger, transactions, webhook_intake
from app.services.bonus import compute_bonus

log = get_logger(__name__)

REASON_PROCESSED = "PROCESSED"
RECONCILE_FIELDS = {"status", "transaction_id", "user_identity", "amount"}


async def _release(event: WebhookEvent, reason: str, **fields: Any) -> None:
    await event.set({"processed": False, "processing": False, "reason": reason, **fields})


async def _complete_claimed(event: WebhookEvent, deposit: Transaction) -> None:
    completed = await deposit.mark_completed(
        event.transaction_id,
        event.bank,
        footprint=event.footprint or deposit.footprint,
        webhook_response=event.payload,
    )
    if completed:
        log.info("deposit_completed", deposit_id=str(deposit.id))
    else:
        log.warning("deposit_not_completed", deposit_id=str(deposit.id), status=deposit.status)


async def _apply_credit(event: WebhookEvent, credit: ledger.DepositCredit) -> ledger.CreditOutcome:
    # The history guard only reaches back TRANSACTION_HISTORY_LIMIT entries; the record remembers the rest.
    if event.credited_at is not None:
        balances = await ledger.get_balances(credit.user_id)
        return ledger.CreditOutcome(False, balances["balance"], balances["bonus_balance"])
    outcome = await ledger.apply_deposit_credit(credit)
    await event.set({"credited_at": datetime.utcnow()})
    return outcome


async def _reconcile(event: WebhookEvent) -> bool:
    user = await identity.resolve(event.user_identity, event.invoice_number, event.checkout_items)
    if user is None:
        log.error("oraclepay_user_not_found", user_identity=event.user_identity, invoice_number=event.invoice_number)
        await _release(event, REASON_USER_NOT_FOUND, checked_at=datetime.utcnow())
        return False

    # A retry after a partial run finds the deposit it already claimed or recorded.
    deposit = await Transaction.find_one(Transaction.transaction_id == event.transaction_id)
    if deposit is None:
        deposit = await transactions.claim_pending_deposit(
            user.id, event.transaction_id, event.checkout_items, event.invoice_number, event.session_code
        )
    bonus = compute_bonus(event.checkout_items, deposit)

    unsaved = None
    if deposit is None:
        # Built before the credit so a record that cannot be stored never strands one.
        unsaved = transactions.build_completed_deposit(
            user,
            amount=event.amount,
            bonus=bonus,
            transaction_id=event.transaction_id,
            session_code=event.session_code,
            invoice_number=event.invoice_number,
            bank=event.bank,
            footprint=event.footprint,
            webhook_response=event.payload,
        )

    credit = ledger.DepositCredit(
        user_id=user.id,
        amount=event.amount,
        bonus=bonus,
        transaction_id=event.transaction_id,
        session_code=event.session_code,
        invoice_number=event.invoice_number,
        bank=event.bank,
        footprint=event.footprint,
        balance_before=user.balance,
        player_balance=deposit.player_balance if deposit else user.balance,
    )
    outcome = await _apply_credit(event, credit)
    if outcome.applied:
        log.info(
            "oraclepay_credit_applied",
            user_id=str(user.id),
            amount=credit.amount,
            bonus_amount=bonus.bonus_amount,
            total_credit=credit.total,
        )
    else:
        log.info("oraclepay_credit_already_applied", user_id=str(user.id))

    if unsaved is not None:
        deposit = await transactions.save_completed_deposit(unsaved)
    elif deposit.status != "completed":
        await _complete_claimed(event, deposit)

    await event.set(
        {
            "processed": True,
            "processing": False,
            "reason": REASON_PROCESSED,
            "processed_at": datetime.utcnow(),
            "user_id": user.id,
            "username": user.username,
            "amount": credit.amount,
            "bonus_amount": bonus.bonus_amount,
            "total_credit": credit.total,
            "user_data": {
                "previous_balance": outcome.balance - credit.total,
                "new_balance": outcome.balance,
                "previous_bonus_balance": outcome.bonus_balance - bonus.bonus_amount,
                "new_bonus_balance": outcome.bonus_balance,
            },
            "bonus_details": bonus.model_dump(),
            "deposit_id": deposit.id,
            "last_error": None,
        }
    )
    log.info("oraclepay_payment_processed", username=user.username, amount=credit.amount, bank=event.bank)
    return True


async def reconcile(event: WebhookEvent) -> bool:
    """Reconcile a claimed event. Returns True when it ends processed."""
    bind_webhook_context(transaction_id=event.transaction_id, session_code=event.session_code)
    try:
        return await _reconcile(event)
    except Exception as exc:
        log.exception("oraclepay_reconciliation_failed", event_id=str(event.id))
        try:
            await _release(event, REASON_RECONCILIATION_FAILED, last_error=str(exc)[:500])
        except Exception:
            log.exception("oraclepay_release_failed", event_id=str(event.id))
        return False


async def handle_callback(payload: dict[str, Any]) -> None:
    """Background task scheduled after the provider got its OK."""
    bind_webhook_context(
        transaction_id=payload.get("transaction_id") if isinstance(payload, dict) else None,
    )
    try:
        result = await webhook_intake.intake(payload)
    except Exception:
        log.exception("oraclepay_intake_failed")
        return
    if result.proceed and result.event is not None:
        await reconcile(result.event)


async def reprocess_event(
    event_id: PydanticObjectId,
    retry_reasons: list[str] | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Re-run reconciliation from a persisted payload. Raises when the record cannot be claimed."""
    event = await webhook_intake.claim_event(event_id, retry_reasons)
    if event is None:
        if await WebhookEvent.get(event_id) is None:
            raise NotFoundError("Webhook record not found")
        raise ConflictError("Webhook record is already processed or in progress")
    callback = webhook_intake.OraclePayCallback.from_payload(event.model_dump(include=RECONCILE_FIELDS))
    if event.status != get_settings().oraclepay_completed_status or not callback.has_required_fields():
        await _release(event, event.reason or REASON_RECONCILIATION_FAILED)
        raise ConflictError("Webhook record cannot be reconciled", details={"reason": event.reason})
    processed = await reconcile(event)
    if actor_id:
        from app.core.audit import log_event
        await log_event(actor_id, "webhook_reprocessed", "oraclepay_deposit", str(event.id), {"processed": processed})
    return {"id": str(event.id), "processed": processed, "reason": event.reason}
