"""Identity resolution order, without a database."""

from types import SimpleNamespace

from app.services import identity
from app.services.identity import ResolutionContext

USER_A = "64b7f0c2a1b2c3d4e5f60718"
USER_B = "64b7f0c2a1b2c3d4e5f60719"


def _fake_lookup(records: dict[tuple[str, str], str]):
    calls = []

    async def lookup(field, value):
        calls.append((field, value))
        user_id = records.get((field, value))
        return SimpleNamespace(id=user_id) if user_id else None

    return lookup, calls


def test_identity_token_prefix_is_an_id_candidate():
    ctx = ResolutionContext(identity_token=f"{USER_A}-1712345678-999")
    assert identity.identity_token_id(ctx) == ("_id", USER_A)


def test_identity_token_without_dash_is_not_an_id_candidate():
    assert identity.identity_token_id(ResolutionContext(identity_token="alice")) is None


def test_invoice_number_candidate():
    ctx = ResolutionContext(invoice_number=f"INV-{USER_B}-1712345678")
    assert identity.invoice_number_id(ctx) == ("_id", USER_B)
    assert identity.invoice_number_id(ResolutionContext(invoice_number="ORDER-1")) is None


def test_checkout_user_id_candidate():
    ctx = ResolutionContext(checkout_items={"userId": USER_A})
    assert identity.checkout_user_id(ctx) == ("_id", USER_A)
    assert identity.checkout_user_id(ResolutionContext()) is None


async def test_id_strategy_wins_over_username_of_another_user():
    token = f"{USER_A}-171-999"
    lookup, _ = _fake_lookup({("_id", USER_A): USER_A, ("username", token): USER_B})
    user = await identity.resolve(token, lookup=lookup)
    assert user.id == USER_A


async def test_malformed_id_is_skipped_and_falls_through_to_username():
    lookup, calls = _fake_lookup({("username", "bob-the-player"): USER_B})
    user = await identity.resolve("bob-the-player", lookup=lookup)
    assert user.id == USER_B
    # "bob" is not a valid ObjectId, so no id lookup was attempted
    assert ("_id", "bob") not in calls


async def test_invoice_used_when_token_prefix_has_no_user():
    lookup, calls = _fake_lookup({("_id", USER_B): USER_B})
    user = await identity.resolve(f"{USER_A}-1-2", invoice_number=f"INV-{USER_B}-1", lookup=lookup)
    assert user.id == USER_B
    assert calls[:2] == [("_id", USER_A), ("_id", USER_B)]


async def test_email_then_phone_order():
    lookup, calls = _fake_lookup({("phone", "01700000000"): USER_A})
    user = await identity.resolve("01700000000", lookup=lookup)
    assert user.id == USER_A
    assert [c[0] for c in calls] == ["username", "email", "phone"]


async def test_no_match_returns_none():
    lookup, calls = _fake_lookup({})
    assert await identity.resolve("nobody@example.com", checkout_items={"userId": "not-an-id"}, lookup=lookup) is None
    assert [c[0] for c in calls] == ["username", "email", "phone"]
