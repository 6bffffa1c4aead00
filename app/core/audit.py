from typing import Any

import structlog

from app.models.audit_log import AuditLog


async def log_event(
    actor_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    """Record an operator action, tagged with the request id bound for this request."""
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
        request_id=structlog.contextvars.get_contextvars().get("request_id"),
    )
    await entry.insert()
    return entry
