"""Shared FastAPI dependencies: cookie sessions issued by the auth service, and the license gateway."""

from typing import Any

from fastapi import Depends, Request

from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.core.security import load_session_cookie
from app.models.user import User
from app.services.license_gateway import LicenseGateway

SESSION_COOKIE_NAME = "cashier_session"


def _session_payload(request: Request) -> dict[str, Any]:
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload or not payload.get("user_id"):
        raise UnauthorizedError("Invalid or expired session")
    return payload


async def get_current_user(request: Request) -> User:
    payload = _session_payload(request)
    user = await User.get(payload["user_id"])
    # bumping session_version on the user revokes every issued cookie
    if user is None or payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Operator endpoints: integration settings, callback audit, manual reprocess."""
    if user.role != "admin":
        raise ForbiddenError("Admin only")
    return user


async def get_license_gateway() -> LicenseGateway:
    """Gateway bound to the persisted OraclePay integration state for this request."""
    return await LicenseGateway.create()
