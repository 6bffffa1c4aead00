import os
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Use test DB
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "cashier_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.pop("DOMAIN", None)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def db():
    """Fresh Beanie database per test; skipped when no MongoDB answers."""
    from beanie import init_beanie
    from pymongo.errors import PyMongoError

    from app.core.config import get_settings
    from app.db.init import DOCUMENT_MODELS, create_client

    mongo = create_client(get_settings().mongodb_uri, serverSelectionTimeoutMS=1500)
    try:
        await mongo.admin.command("ping")
    except PyMongoError:
        mongo.close()
        pytest.skip("MongoDB not available")
    name = f"{get_settings().mongodb_db_name}_{uuid.uuid4().hex[:8]}"
    database = mongo[name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    yield database
    await mongo.drop_database(name)
    mongo.close()


@pytest_asyncio.fixture
async def make_user(db):
    from app.models.user import User

    async def _make(username: str = "player1", **fields) -> User:
        user = User(username=username, **fields)
        await user.insert()
        return user

    return _make


@pytest.fixture
def oraclepay_payload():
    """Factory for OraclePay callback bodies."""

    def _payload(**overrides) -> dict:
        payload = {
            "status": "COMPLETED",
            "invoice_number": None,
            "amount": 100,
            "transaction_id": "TXN1",
            "session_code": None,
            "user_identity": None,
            "checkout_items": {},
            "footprint": "https://pay.example/fp/1",
            "bank": "bkash",
        }
        payload.update(overrides)
        return payload

    return _payload
