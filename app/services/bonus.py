"""Deposit bonus derivation from checkout metadata or the pending deposit."""

import math
from typing import Any

from pydantic import BaseModel

from app.core.config import Settings, get_settings

DEFAULT_METHOD = "oraclepay"


class BonusInfo(BaseModel):
    bonus_type: str = "none"
    bonus_code: str = ""
    bonus_amount: float = 0
    wagering_requirement: float = 0
    method: str = DEFAULT_METHOD


def to_number(value: Any) -> float:
    """Lenient numeric coercion: anything non-numeric (or NaN/inf) becomes 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0.0
    return n if math.isfinite(n) else 0.0


def compute_bonus(checkout_items: dict[str, Any] | None, pending_deposit: Any = None) -> BonusInfo:
    """
    Selected bonus in checkout metadata wins, then the matched pending deposit's bonus,
    else no bonus. `pending_deposit` is a Transaction (or anything with the same attributes).
    The provider bank is recorded separately; `method` is the cashier channel.
    """
    checkout_items = checkout_items or {}
    selected = checkout_items.get("selectedBonus")
    if isinstance(selected, dict) and selected:
        return BonusInfo(
            bonus_type=selected.get("type") or selected.get("bonusType") or "none",
            bonus_code=selected.get("code") or selected.get("bonusCode") or "",
            bonus_amount=to_number(selected.get("calculatedAmount")),
            wagering_requirement=to_number(selected.get("wageringRequirement")),
            method=checkout_items.get("method") or DEFAULT_METHOD,
        )
    if pending_deposit is not None:
        return BonusInfo(
            bonus_type=getattr(pending_deposit, "bonus_type", None) or "none",
            bonus_code=getattr(pending_deposit, "bonus_code", None) or "",
            bonus_amount=to_number(getattr(pending_deposit, "bonus_amount", 0)),
            wagering_requirement=to_number(getattr(pending_deposit, "wagering_requirement", 0)),
            method=getattr(pending_deposit, "method", None) or DEFAULT_METHOD,
        )
    return BonusInfo()


def effective_wagering_requirement(bonus: BonusInfo, settings: Settings | None = None) -> float:
    """Supplied requirement, or the configured default for the bonus type."""
    if bonus.wagering_requirement > 0:
        return bonus.wagering_requirement
    settings = settings or get_settings()
    if bonus.bonus_type in settings.bonus_high_wagering_types:
        return settings.bonus_wagering_high
    return settings.bonus_wagering_low


def total_credit(amount: float, bonus: BonusInfo) -> float:
    return amount + bonus.bonus_amount
