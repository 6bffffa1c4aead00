import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob
from app.models.integration_settings import IntegrationSettings
from app.models.transaction import Transaction
from app.models.user import User
from app.models.webhook_event import WebhookEvent

DOCUMENT_MODELS = [
    User,
    Transaction,
    WebhookEvent,
    IntegrationSettings,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def create_client(uri: str | None = None, **overrides) -> AsyncIOMotorClient:
    uri = uri or get_settings().mongodb_uri
    kwargs = {}
    if _use_tls(uri):
        # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    kwargs.update(overrides)
    return AsyncIOMotorClient(uri, **kwargs)


async def init_db(db_name: str | None = None) -> None:
    """Connect Motor and register documents; creates the unique indexes the intake relies on."""
    settings = get_settings()
    client = create_client(settings.mongodb_uri)
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
