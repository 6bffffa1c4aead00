"""Deposit record lifecycle (needs MongoDB)."""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from app.core.exceptions import BadRequestError
from app.core.security import create_session_cookie, session_payload_for_user
from app.models.transaction import Transaction
from app.services import transactions
from app.services.bonus import BonusInfo

pytestmark = pytest.mark.asyncio


async def test_pending_deposit_carries_checkout_identity(make_user):
    user = await make_user("alice", balance=20)
    deposit = await transactions.create_pending_deposit(user.id, 100, session_code="S1")

    assert deposit.status == "pending"
    assert deposit.player_balance == 20
    assert deposit.invoice_number.startswith(f"INV-{user.id}-")
    assert deposit.user_identify_address.startswith(f"{user.id}-")
    assert deposit.checkout_items == {"userId": str(user.id), "method": "oraclepay"}
    assert deposit.can_be_processed()


async def test_pending_deposit_rejects_non_positive_amount(make_user):
    user = await make_user("alice")
    with pytest.raises(BadRequestError):
        await transactions.create_pending_deposit(user.id, 0)


async def test_mobile_wallet_requires_phone(make_user):
    user = await make_user("alice")
    with pytest.raises(ValidationError):
        Transaction(user=user, method="bkash", amount=10)


async def test_completed_wallet_record_needs_no_phone(make_user):
    user = await make_user("alice")
    deposit = transactions.build_completed_deposit(user, 100, BonusInfo(method="nagad"), "TXN1", bank="nagad")
    assert deposit.method == "nagad"
    assert deposit.status == "completed"


async def test_mark_completed_only_once(make_user):
    user = await make_user("alice")
    deposit = await transactions.create_pending_deposit(user.id, 100)

    assert await deposit.mark_completed("TXN1", "Nagad") is True
    assert deposit.status == "completed"
    assert deposit.bank == "nagad"

    again = await Transaction.get(deposit.id)
    assert await again.mark_completed("TXN2", "bkash") is False
    stored = await Transaction.get(deposit.id)
    assert stored.transaction_id == "TXN1"
    assert stored.bank == "nagad"


async def test_mark_failed_sets_reason(make_user):
    user = await make_user("alice")
    deposit = await transactions.create_pending_deposit(user.id, 100)
    assert await deposit.mark_failed("cancelled by player") is True

    stored = await Transaction.get(deposit.id)
    assert stored.status == "failed"
    assert stored.failure_reason == "cancelled by player"
    assert stored.failed_at is not None
    assert await stored.mark_completed("TXN1") is False


async def test_total_amount_and_expiry(make_user):
    user = await make_user("alice")
    deposit = Transaction(
        user=user,
        method="oraclepay",
        amount=100,
        bonus_amount=25,
        expires_at=datetime.utcnow() - timedelta(minutes=1),
    )
    assert deposit.total_amount == 125
    assert deposit.is_expired
    assert not deposit.can_be_processed()


async def test_expire_overdue_deposits(make_user):
    user = await make_user("alice")
    overdue = await transactions.create_pending_deposit(user.id, 100)
    await overdue.set({"expires_at": datetime.utcnow() - timedelta(minutes=1)})
    fresh = await transactions.create_pending_deposit(user.id, 50)

    assert await transactions.expire_overdue_deposits() == 1
    assert (await Transaction.get(overdue.id)).status == "expired"
    assert (await Transaction.get(fresh.id)).status == "pending"


async def test_find_pending_deposit_prefers_session_over_newest(make_user):
    user = await make_user("alice")
    older = await transactions.create_pending_deposit(user.id, 100, session_code="OLD")
    newer = await transactions.create_pending_deposit(user.id, 50)

    assert (await transactions.find_pending_deposit(user.id, session_code="OLD")).id == older.id
    assert (await transactions.find_pending_deposit(user.id)).id == newer.id


async def test_record_completed_deposit_is_idempotent(make_user):
    user = await make_user("alice")
    first = await transactions.record_completed_deposit(user, 100, BonusInfo(), "TXN1", session_code="S1", bank="bkash")
    second = await transactions.record_completed_deposit(user, 100, BonusInfo(), "TXN1", session_code="S1", bank="bkash")
    assert first.id == second.id
    assert await Transaction.find(Transaction.transaction_id == "TXN1").count() == 1


async def test_many_pending_deposits_without_transaction_id(make_user):
    user = await make_user("alice")
    for _ in range(3):
        await transactions.create_pending_deposit(user.id, 10)
    assert await Transaction.find({"transaction_id": None}).count() == 3


async def test_stats_group_by_status(make_user):
    user = await make_user("alice")
    done = await transactions.create_pending_deposit(user.id, 100, bonus=BonusInfo(bonus_type="reload_bonus", bonus_amount=5))
    await done.mark_completed("TXN1")
    await transactions.create_pending_deposit(user.id, 40)

    stats = await Transaction.get_stats(user.id, days=1)
    assert stats == [
        {"status": "completed", "count": 1, "totalAmount": 100, "totalBonus": 5},
        {"status": "pending", "count": 1, "totalAmount": 40, "totalBonus": 0},
    ]


async def test_deposit_routes_with_session(client, make_user):
    user = await make_user("alice")
    client.cookies.set("cashier_session", create_session_cookie(session_payload_for_user(user)))

    r = await client.post(
        "/v1/deposits",
        json={"amount": 100, "selected_bonus": {"type": "reload_bonus", "code": "RL", "calculatedAmount": 10}},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "pending"
    assert body["bonus_type"] == "reload_bonus"
    assert body["total_amount"] == 110

    r = await client.get("/v1/deposits")
    assert [d["id"] for d in r.json()["items"]] == [body["id"]]

    r = await client.get("/v1/deposits/stats")
    assert r.json()["stats"][0]["status"] == "pending"


async def test_oraclepay_lookups(make_user):
    user = await make_user("alice")
    with_session = await transactions.create_pending_deposit(user.id, 100, session_code="S1")
    await transactions.create_pending_deposit(user.id, 50)

    found = await Transaction.find_by_user_identify_address(with_session.user_identify_address)
    assert found.id == with_session.id
    assert [d.id for d in await Transaction.find_pending_oraclepay()] == [with_session.id]
