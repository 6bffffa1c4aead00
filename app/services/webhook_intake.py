"""OraclePay callback intake: parse, persist, deduplicate, and query raw records."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from beanie import UpdateResponse
from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo.errors import DuplicateKeyError

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.webhook_event import (
    REASON_MISSING_REQUIRED_FIELDS,
    STATUS_REASON_PREFIX,
    WebhookEvent,
)
from app.services.bonus import to_number

log = get_logger(__name__)

USER_PROJECTION_EXCLUDE = ("password_hash", "two_factor_secret")


class OraclePayCallback(BaseModel):
    """Named view over the provider body; unknown keys are kept (extra="allow")."""

    model_config = ConfigDict(extra="allow")

    status: str | None = None
    invoice_number: str | None = None
    amount: float | None = None
    transaction_id: str | None = None
    session_code: str | None = None
    user_identity: str | None = None
    checkout_items: dict[str, Any] = Field(default_factory=dict)
    footprint: str | None = None
    bank: str | None = None

    @field_validator(
        "status", "invoice_number", "transaction_id", "session_code", "user_identity", "footprint", "bank",
        mode="before",
    )
    @classmethod
    def _scalar_to_str(cls, v: Any) -> str | None:
        if v is None or isinstance(v, (dict, list, bool)):
            return None
        s = str(v)
        return s if s.strip() else None

    @field_validator("amount", mode="before")
    @classmethod
    def _lenient_amount(cls, v: Any) -> float | None:
        if v is None or v == "":
            return None
        n = to_number(v)
        if n == 0 and str(v).strip() not in ("0", "0.0", "0.00"):
            return None
        return n

    @field_validator("checkout_items", mode="before")
    @classmethod
    def _checkout_dict(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "OraclePayCallback":
        return cls.model_validate(payload if isinstance(payload, dict) else {})

    def has_required_fields(self) -> bool:
        return bool(self.transaction_id and self.user_identity and self.amount and self.amount > 0)


@dataclass
class IntakeResult:
    event: WebhookEvent | None
    proceed: bool
    reason: str | None = None


def status_reason(status: str | None) -> str:
    return f"{STATUS_REASON_PREFIX}{status if status is not None else 'MISSING'}"


def _event_fields(callback: OraclePayCallback, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "status": callback.status,
        "invoice_number": callback.invoice_number,
        "amount": callback.amount,
        "transaction_id": callback.transaction_id,
        "session_code": callback.session_code,
        "user_identity": callback.user_identity,
        "checkout_items": callback.checkout_items,
        "footprint": callback.footprint,
        "bank": callback.bank or "unknown",
        "payload": payload,
    }


async def record_unprocessed(callback: OraclePayCallback, payload: dict[str, Any], reason: str) -> WebhookEvent | None:
    """Keep a payload that will not be reconciled; a repeat delivery is simply dropped."""
    event = WebhookEvent(**_event_fields(callback, payload), processed=False, reason=reason)
    try:
        await event.insert()
    except DuplicateKeyError:
        log.info("oraclepay_callback_duplicate", reason=reason)
        return None
    return event


async def _take_over_status_record(callback: OraclePayCallback, payload: dict[str, Any]) -> WebhookEvent | None:
    """A completed delivery may follow an earlier non-completed notice for the same transaction id."""
    now = datetime.utcnow()
    return await WebhookEvent.find_one(
        {
            "transaction_id": callback.transaction_id,
            "processed": False,
            "processing": False,
            "reason": {"$regex": f"^{STATUS_REASON_PREFIX}"},
        }
    ).update(
        {
            "$set": {
                **_event_fields(callback, payload),
                "reason": None,
                "processing": True,
                "processing_started_at": now,
                "received_at": now,
            },
            "$inc": {"attempts": 1},
        },
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def intake(payload: dict[str, Any]) -> IntakeResult:
    """
    Persist the callback and decide whether it proceeds to reconciliation.

    Only a completed, well-formed, first-seen delivery proceeds, and it does so
    holding the record's processing claim. Never raises on duplicates.
    """
    callback = OraclePayCallback.from_payload(payload)
    settings = get_settings()

    if callback.status != settings.oraclepay_completed_status:
        reason = status_reason(callback.status)
        log.info("oraclepay_payment_not_completed", status=callback.status)
        event = await record_unprocessed(callback, payload, reason)
        return IntakeResult(event, False, reason)

    if not callback.has_required_fields():
        log.error(
            "oraclepay_missing_required_fields",
            transaction_id=callback.transaction_id,
            user_identity=callback.user_identity,
            amount=callback.amount,
        )
        event = await record_unprocessed(callback, payload, REASON_MISSING_REQUIRED_FIELDS)
        return IntakeResult(event, False, REASON_MISSING_REQUIRED_FIELDS)

    existing = await WebhookEvent.find_one(WebhookEvent.transaction_id == callback.transaction_id)
    if existing and existing.processed:
        log.info("oraclepay_callback_duplicate", reason="already_processed")
        return IntakeResult(existing, False)

    now = datetime.utcnow()
    event = WebhookEvent(
        **_event_fields(callback, payload),
        processed=False,
        processing=True,
        processing_started_at=now,
        attempts=1,
    )
    try:
        await event.insert()
    except DuplicateKeyError:
        taken = await _take_over_status_record(callback, payload)
        if taken is None:
            log.info("oraclepay_callback_duplicate", reason="already_exists")
            return IntakeResult(None, False)
        event = taken
    log.info("oraclepay_callback_saved", event_id=str(event.id))
    return IntakeResult(event, True)


async def claim_event(event_id: ObjectId, retry_reasons: list[str] | None = None) -> WebhookEvent | None:
    """Atomically take the processing claim on an unprocessed record (operator or retry job)."""
    query: dict[str, Any] = {"_id": event_id, "processed": False, "processing": False}
    if retry_reasons is not None:
        query["reason"] = {"$in": retry_reasons}
    return await WebhookEvent.find_one(query).update(
        {
            "$set": {"processing": True, "processing_started_at": datetime.utcnow()},
            "$inc": {"attempts": 1},
        },
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def release_stale_claims(older_than_minutes: int) -> int:
    """Free claims held by a worker that died mid-reconciliation."""
    cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
    result = await WebhookEvent.get_motor_collection().update_many(
        {"processed": False, "processing": True, "processing_started_at": {"$lt": cutoff}},
        {"$set": {"processing": False, "reason": "STALE_CLAIM"}},
    )
    return result.modified_count


def _jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {("id" if k == "_id" else k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def build_event_filter(
    username: str | None = None,
    bank: str | None = None,
    processed: bool | None = None,
    transaction_id: str | None = None,
    session_code: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
) -> dict[str, Any]:
    """Mongo filter for the audit listing; `date_to` includes the whole day."""
    query: dict[str, Any] = {}
    if username:
        query["$or"] = [{"username": username}, {"user_identity": username}]
    if bank:
        query["bank"] = bank
    if processed is not None:
        query["processed"] = processed
    if transaction_id:
        query["transaction_id"] = transaction_id
    if session_code:
        query["session_code"] = session_code
    received: dict[str, Any] = {}
    for raw, op, shift in ((date_from, "$gte", timedelta(0)), (date_to, "$lt", timedelta(days=1))):
        if not raw:
            continue
        try:
            received[op] = datetime.fromisoformat(raw) + shift
        except ValueError:
            continue
    if received:
        query["received_at"] = received
    return query


async def list_events(query: dict[str, Any], skip: int, limit: int) -> tuple[list[dict[str, Any]], int]:
    """Intake records joined with a minimal user profile (secrets excluded)."""
    pipeline = [
        {"$match": query},
        {"$sort": {"processed_at": -1, "received_at": -1}},
        {"$skip": skip},
        {"$limit": limit},
        {"$lookup": {"from": "users", "localField": "user_id", "foreignField": "_id", "as": "user_info"}},
        {"$unwind": {"path": "$user_info", "preserveNullAndEmptyArrays": True}},
        {"$project": {f"user_info.{f}": 0 for f in USER_PROJECTION_EXCLUDE}},
    ]
    collection = WebhookEvent.get_motor_collection()
    items = await collection.aggregate(pipeline).to_list(length=None)
    total = await collection.count_documents(query)
    return [_jsonable(i) for i in items], total


async def get_event(identifier: str) -> dict[str, Any] | None:
    """Find by transaction id or session code, with the user profile attached."""
    from app.models.user import User

    doc = await WebhookEvent.get_motor_collection().find_one(
        {"$or": [{"transaction_id": identifier}, {"session_code": identifier}]}
    )
    if not doc:
        return None
    user_info = None
    if doc.get("user_id"):
        user_info = await User.get_motor_collection().find_one(
            {"_id": doc["user_id"]},
            projection={f: 0 for f in USER_PROJECTION_EXCLUDE},
        )
    return _jsonable({**doc, "user_info": user_info})
