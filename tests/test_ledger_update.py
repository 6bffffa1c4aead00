from datetime import datetime, timedelta

from beanie import PydanticObjectId

from app.core.config import Settings
from app.services.bonus import BonusInfo
from app.services.ledger import DepositCredit, build_credit_update

NOW = datetime(2024, 3, 1, 12, 0, 0)
USER_ID = PydanticObjectId("64b7f0c2a1b2c3d4e5f60718")


def _credit(**overrides) -> DepositCredit:
    fields = dict(
        user_id=USER_ID,
        amount=100,
        bonus=BonusInfo(),
        transaction_id="TXN1",
        session_code="S1",
        invoice_number="INV-1",
        bank="bkash",
        footprint="https://pay.example/fp/1",
        balance_before=40,
    )
    fields.update(overrides)
    return DepositCredit(**fields)


def test_filter_guards_against_repeat_credit():
    query, _ = build_credit_update(_credit(), now=NOW, settings=Settings())
    assert query == {"_id": USER_ID, "transaction_history.reference_id": {"$ne": "TXN1"}}


def test_plain_deposit_update():
    _, update = build_credit_update(_credit(), now=NOW, settings=Settings())
    assert update["$inc"] == {
        "balance": 100,
        "total_deposit": 100,
        "lifetime_deposit": 100,
        "affiliate_deposit": 100,
    }
    assert update["$set"] == {"deposit_amount": 100, "wagering_need": 0, "total_bet": 0, "updated_at": NOW}
    assert set(update["$push"]) == {"transaction_history", "deposit_history"}

    tx = update["$push"]["transaction_history"]
    assert tx["$position"] == 0
    assert tx["$slice"] == 200
    entry = tx["$each"][0]
    assert entry["reference_id"] == "TXN1"
    assert entry["balance_before"] == 40
    assert entry["balance_after"] == 140
    assert entry["description"] == "Deposit via OraclePay (bkash)"

    dep = update["$push"]["deposit_history"]
    assert dep["$slice"] == 20
    row = dep["$each"][0]
    assert row["method"] == "oraclepay"
    assert row["bank"] == "bkash"
    assert row["status"] == "completed"
    assert row["bonus_applied"] is False
    assert row["order_id"].startswith("DEP-")


def test_first_deposit_bonus_update():
    bonus = BonusInfo(bonus_type="first_deposit", bonus_code="WELCOME", bonus_amount=50)
    _, update = build_credit_update(_credit(amount=200, bonus=bonus), now=NOW, settings=Settings())

    assert update["$inc"]["balance"] == 250
    assert update["$inc"]["bonus_balance"] == 50
    assert update["$inc"]["total_deposit"] == 200
    assert update["$set"]["wagering_need"] == 30
    assert update["$set"]["bonus_info.first_deposit_bonus_claimed"] is True

    activity = update["$push"]["bonus_activity_logs"]
    assert activity["bonus_code"] == "WELCOME"
    assert activity["status"] == "active"

    active = update["$push"]["bonus_info.active_bonuses"]
    assert active["amount"] == 50
    assert active["wagering_requirement"] == 30
    assert active["expires_at"] == NOW + timedelta(days=30)
    assert update["$push"]["transaction_history"]["$each"][0]["description"].endswith("with first_deposit bonus")


def test_reload_bonus_uses_low_wagering_and_no_claim_flag():
    bonus = BonusInfo(bonus_type="reload_bonus", bonus_amount=10)
    _, update = build_credit_update(_credit(bonus=bonus), now=NOW, settings=Settings())
    assert update["$set"]["wagering_need"] == 3
    assert "bonus_info.first_deposit_bonus_claimed" not in update["$set"]
    assert "bonus_code" not in update["$push"]["bonus_activity_logs"]


def test_history_caps_follow_settings():
    settings = Settings(DEPOSIT_HISTORY_LIMIT=5, TRANSACTION_HISTORY_LIMIT=7)
    _, update = build_credit_update(_credit(), now=NOW, settings=settings)
    assert update["$push"]["deposit_history"]["$slice"] == 5
    assert update["$push"]["transaction_history"]["$slice"] == 7
