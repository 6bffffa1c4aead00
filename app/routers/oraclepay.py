from typing import Any

from beanie import PydanticObjectId
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import ORJSONResponse, PlainTextResponse
from pydantic import BaseModel

from app.core.audit import log_event
from app.core.encryption import mask_secret
from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.core.pagination import page_info, paginate
from app.deps import get_license_gateway, require_admin
from app.models.user import User
from app.services import reconciliation, webhook_intake
from app.services.license_gateway import LicenseGateway

router = APIRouter()
log = get_logger(__name__)

LOGGED_CALLBACK_FIELDS = ("status", "invoice_number", "amount", "transaction_id", "session_code", "user_identity", "bank")


class ValidateRequest(BaseModel):
    apiKey: str | None = None


class RunningRequest(BaseModel):
    running: Any = None


def _reason(status_code: int, reason: str, message: str, **extra: Any) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content={"success": False, "reason": reason, "message": message, **extra},
    )


async def _read_payload(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/oraclepay-callback", response_class=PlainTextResponse)
async def oraclepay_callback(request: Request, background_tasks: BackgroundTasks):
    """OraclePay webhook: always answer OK first; reconciliation runs after the response."""
    payload = await _read_payload(request)
    log.info("oraclepay_callback_received", **{k: payload.get(k) for k in LOGGED_CALLBACK_FIELDS})
    background_tasks.add_task(reconciliation.handle_callback, payload)
    return "OK"


@router.get("/settings")
async def oraclepay_settings(
    cached: bool = Query(False),
    user: User = Depends(require_admin),
    gateway: LicenseGateway = Depends(get_license_gateway),
):
    """Stored API key, validation state and running flag; re-validates unless cached=true."""
    try:
        return ORJSONResponse(await gateway.snapshot(cached=cached))
    except Exception:
        log.exception("oraclepay_settings_read_failed")
        return _reason(500, "READ_FAILED", "Failed to read OraclePay settings")


@router.post("/validate")
async def oraclepay_validate(
    body: ValidateRequest | None = None,
    user: User = Depends(require_admin),
    gateway: LicenseGateway = Depends(get_license_gateway),
):
    """Validate the given (or stored) API key upstream, check the domain, persist the outcome."""
    api_key = (body.apiKey if body else None) or gateway.state.api_key
    if not api_key:
        return _reason(400, "MISSING_API_KEY", "API key is required", valid=False)
    try:
        result = await gateway.validate(api_key, persist=True)
    except Exception:
        log.exception("oraclepay_validate_failed")
        return _reason(500, "SERVER_ERROR", "Validation could not be completed", valid=False)
    await log_event(
        str(user.id), "oraclepay_api_key_validated", "integration_settings", gateway.state.key,
        {"api_key": mask_secret(api_key), "valid": result.valid, "reason": result.body.get("reason")},
    )
    return ORJSONResponse(status_code=result.status_code, content=result.body)


@router.patch("/running")
async def oraclepay_running(
    body: RunningRequest,
    user: User = Depends(require_admin),
    gateway: LicenseGateway = Depends(get_license_gateway),
):
    """Administratively enable or disable the integration."""
    if not isinstance(body.running, bool):
        return _reason(400, "INVALID_RUNNING_VALUE", "Running must be a boolean value")
    try:
        running = await gateway.set_running(body.running)
    except Exception:
        log.exception("oraclepay_running_update_failed")
        return _reason(500, "RUNNING_UPDATE_FAILED", "Failed to update running state")
    await log_event(str(user.id), "oraclepay_running_changed", "integration_settings", gateway.state.key, {"running": running})
    return {"success": True, "running": running}


@router.get("/oraclepay-deposits")
async def oraclepay_deposits(
    user: User = Depends(require_admin),
    username: str | None = None,
    bank: str | None = None,
    processed: str | None = None,
    transaction_id: str | None = None,
    session_code: str | None = None,
    date_from: str | None = Query(None, alias="dateFrom"),
    date_to: str | None = Query(None, alias="dateTo"),
    page: int = 1,
    limit: int = 20,
):
    """Audit listing of raw callbacks, newest processed first, with the matched user profile."""
    query = webhook_intake.build_event_filter(
        username=username,
        bank=bank,
        processed=None if processed is None else processed.lower() == "true",
        transaction_id=transaction_id,
        session_code=session_code,
        date_from=date_from,
        date_to=date_to,
    )
    page, limit, skip = paginate(page, limit)
    items, total = await webhook_intake.list_events(query, skip, limit)
    return ORJSONResponse(
        {
            "success": True,
            "data": items,
            "pagination": page_info(page, limit, skip, len(items), total).model_dump(),
        }
    )


@router.get("/oraclepay-deposit/{identifier}")
async def oraclepay_deposit(identifier: str, user: User = Depends(require_admin)):
    """One raw callback by transaction id or session code."""
    data = await webhook_intake.get_event(identifier)
    if data is None:
        raise NotFoundError("Deposit not found")
    return ORJSONResponse({"success": True, "data": data})


@router.post("/oraclepay-deposit/{event_id}/reprocess")
async def oraclepay_reprocess(event_id: PydanticObjectId, user: User = Depends(require_admin)):
    """Operator retry of an unprocessed callback from its stored payload."""
    out = await reconciliation.reprocess_event(event_id, actor_id=str(user.id))
    return {"success": True, **out}
