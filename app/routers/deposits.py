from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.deps import get_current_user
from app.models.transaction import Transaction
from app.models.user import User
from app.services import transactions as transactions_service
from app.services.bonus import BonusInfo, compute_bonus

router = APIRouter()


class SelectedBonus(BaseModel):
    type: str = "none"
    code: str = ""
    calculatedAmount: float = Field(default=0, ge=0)
    wageringRequirement: float = Field(default=0, ge=0)


class CreateDepositRequest(BaseModel):
    amount: float = Field(gt=0)
    method: str = "oraclepay"
    session_code: str | None = None
    phone_number: str | None = None
    payment_url: str | None = None
    selected_bonus: SelectedBonus | None = None


def _deposit_out(d: Transaction) -> dict:
    return {
        "id": str(d.id),
        "type": d.type,
        "method": d.method,
        "amount": d.amount,
        "bonus_type": d.bonus_type,
        "bonus_amount": d.bonus_amount,
        "total_amount": d.total_amount,
        "status": d.status,
        "bank": d.bank,
        "transaction_id": d.transaction_id,
        "invoice_number": d.invoice_number,
        "session_code": d.oraclepay_session_code,
        "user_identity": d.user_identify_address,
        "expires_at": d.expires_at.isoformat() if d.expires_at else None,
        "completed_at": d.completed_at.isoformat() if d.completed_at else None,
        "created_at": d.created_at.isoformat(),
    }


@router.post("")
async def deposit_create(body: CreateDepositRequest, user: User = Depends(get_current_user)):
    """Open a pending OraclePay deposit; its invoice number and user identity go to the checkout."""
    bonus = BonusInfo()
    if body.selected_bonus:
        bonus = compute_bonus({"selectedBonus": body.selected_bonus.model_dump(), "method": body.method})
    deposit = await transactions_service.create_pending_deposit(
        user.id,
        body.amount,
        method=body.method,
        session_code=body.session_code,
        bonus=bonus,
        phone_number=body.phone_number,
        payment_url=body.payment_url,
    )
    return _deposit_out(deposit)


@router.get("")
async def deposit_list(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Current user's deposits, newest first."""
    items = await transactions_service.list_user_deposits(user.id, limit=limit, offset=offset)
    return {"items": [_deposit_out(d) for d in items], "limit": limit, "offset": offset}


@router.get("/stats")
async def deposit_stats(user: User = Depends(get_current_user), days: int = Query(30, ge=1, le=365)):
    """Per-status totals over the last `days` days."""
    return {"days": days, "stats": await Transaction.get_stats(user.id, days)}
