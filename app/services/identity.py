"""
Map an OraclePay identity to a player account.

Strategies run in a fixed order and the first one that yields a user wins:
identity-token id prefix, invoice id, checkout userId, then exact username,
email and phone matches. Each strategy only proposes a (field, value)
candidate; the lookup is injected so the ordering can be exercised without Mongo.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from beanie import PydanticObjectId
from bson import ObjectId

from app.core.logging import get_logger
from app.models.user import User

log = get_logger(__name__)

ID_FIELD = "_id"
INVOICE_PREFIX = "INV-"

Candidate = tuple[str, str]
UserLookup = Callable[[str, str], Awaitable[Any]]


@dataclass(frozen=True)
class ResolutionContext:
    identity_token: str | None = None
    invoice_number: str | None = None
    checkout_items: dict[str, Any] = field(default_factory=dict)


def identity_token_id(ctx: ResolutionContext) -> Candidate | None:
    """`<userId>-<timestamp>-<random>`"""
    token = ctx.identity_token
    if not token or "-" not in token:
        return None
    return ID_FIELD, token.split("-")[0]


def invoice_number_id(ctx: ResolutionContext) -> Candidate | None:
    """`INV-<userId>-<timestamp>`"""
    invoice = ctx.invoice_number
    if not invoice or not invoice.startswith(INVOICE_PREFIX):
        return None
    parts = invoice.split("-")
    if len(parts) < 2:
        return None
    return ID_FIELD, parts[1]


def checkout_user_id(ctx: ResolutionContext) -> Candidate | None:
    user_id = (ctx.checkout_items or {}).get("userId")
    if not user_id:
        return None
    return ID_FIELD, str(user_id)


def _exact(field_name: str) -> Callable[[ResolutionContext], Candidate | None]:
    def strategy(ctx: ResolutionContext) -> Candidate | None:
        if not ctx.identity_token:
            return None
        return field_name, ctx.identity_token

    strategy.__name__ = f"identity_token_as_{field_name}"
    return strategy


identity_token_as_username = _exact("username")
identity_token_as_email = _exact("email")
identity_token_as_phone = _exact("phone")

STRATEGIES: list[Callable[[ResolutionContext], Candidate | None]] = [
    identity_token_id,
    invoice_number_id,
    checkout_user_id,
    identity_token_as_username,
    identity_token_as_email,
    identity_token_as_phone,
]


async def find_user(field_name: str, value: str) -> User | None:
    if field_name == ID_FIELD:
        return await User.get(PydanticObjectId(value))
    return await User.find_one({field_name: value})


async def resolve(
    identity_token: str | None,
    invoice_number: str | None = None,
    checkout_items: dict[str, Any] | None = None,
    lookup: UserLookup = find_user,
    strategies: list[Callable[[ResolutionContext], Candidate | None]] | None = None,
) -> Any:
    """Return the first user matched by the ordered strategies, or None."""
    ctx = ResolutionContext(identity_token, invoice_number, checkout_items or {})
    for strategy in strategies or STRATEGIES:
        candidate = strategy(ctx)
        if candidate is None:
            continue
        field_name, value = candidate
        if field_name == ID_FIELD and not ObjectId.is_valid(value):
            continue
        user = await lookup(field_name, value)
        if user is not None:
            log.info("identity_resolved", strategy=strategy.__name__, user_id=str(user.id))
            return user
    return None
