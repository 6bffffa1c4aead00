"""License gateway against a mocked upstream and an in-memory state store."""

import httpx
import pytest

from app.services.license_gateway import (
    REASON_DOMAIN_MISMATCH,
    REASON_NETWORK_ERROR,
    REASON_TIMEOUT,
    IntegrationState,
    LicenseGateway,
)

pytestmark = pytest.mark.asyncio

VALIDATE_URL = "https://licensing.test/api/external/key/validate"
VALID_PAYLOAD = {
    "valid": True,
    "subscriptionId": "sub_1",
    "domains": ["casino.example"],
    "primaryDomain": "casino.example",
}


class MemoryRepository:
    def __init__(self, state: IntegrationState | None = None):
        self.state = state or IntegrationState(key="opay")
        self.saves = 0

    async def load(self, key: str) -> IntegrationState:
        return IntegrationState(**vars(self.state))

    async def save(self, state: IntegrationState) -> None:
        self.saves += 1
        self.state = IntegrationState(**vars(state))


def _gateway(handler, repository=None, allowed_domain="casino.example"):
    repository = repository or MemoryRepository()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    gateway = LicenseGateway(
        IntegrationState(key="opay"),
        repository,
        validate_url=VALIDATE_URL,
        allowed_domain=allowed_domain,
        timeout=5,
        client=client,
    )
    return gateway, repository


def _ok(request: httpx.Request) -> httpx.Response:
    assert request.headers["X-API-Key"] == "key-1"
    assert request.headers["User-Agent"] == "Opay-Integration/1.0"
    return httpx.Response(200, json=VALID_PAYLOAD)


async def test_valid_key_is_stored():
    gateway, repo = _gateway(_ok)
    result = await gateway.validate("key-1")
    assert result.status_code == 200
    assert result.valid
    assert result.body["success"] is True
    assert repo.state.api_key == "key-1"
    assert repo.state.validation["valid"] is True
    assert repo.state.last_valid_validation["subscriptionId"] == "sub_1"
    assert repo.state.updated_at is not None


async def test_primary_domain_alone_is_enough():
    def handler(request):
        return httpx.Response(200, json={"valid": True, "domains": [], "primaryDomain": "casino.example"})

    gateway, _ = _gateway(handler)
    assert (await gateway.validate("key-1")).status_code == 200


async def test_domain_mismatch_is_rejected_and_stored():
    def handler(request):
        return httpx.Response(200, json={**VALID_PAYLOAD, "domains": ["other.example"], "primaryDomain": "other.example"})

    gateway, repo = _gateway(handler)
    result = await gateway.validate("key-1")
    assert result.status_code == 400
    assert result.body["reason"] == REASON_DOMAIN_MISMATCH
    assert result.body["allowedDomain"] == "casino.example"
    assert result.body["domains"] == ["other.example"]
    assert repo.state.validation["valid"] is False
    assert repo.state.validation["reason"] == REASON_DOMAIN_MISMATCH
    assert repo.state.last_valid_validation is None


async def test_timeout_maps_to_timeout_reason():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    gateway, repo = _gateway(handler)
    result = await gateway.validate("key-1")
    assert result.status_code == 500
    assert result.body == {
        "success": False,
        "valid": False,
        "reason": REASON_TIMEOUT,
        "message": "OraclePay API timeout - please try again",
    }
    assert repo.state.last_error_at is not None


async def test_connect_error_maps_to_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    gateway, _ = _gateway(handler)
    result = await gateway.validate("key-1")
    assert result.status_code == 500
    assert result.body["reason"] == REASON_NETWORK_ERROR


async def test_upstream_rejection_keeps_status_and_reason():
    def handler(request):
        return httpx.Response(403, json={"reason": "KEY_REVOKED", "message": "Key revoked", "secret": "x"})

    gateway, _ = _gateway(handler)
    result = await gateway.validate("key-1")
    assert result.status_code == 403
    assert result.body == {"success": False, "valid": False, "reason": "KEY_REVOKED", "message": "Key revoked"}


async def test_cached_snapshot_makes_no_upstream_call():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=VALID_PAYLOAD)

    repo = MemoryRepository(IntegrationState(key="opay", api_key="key-1", validation={"valid": True}, running=True))
    gateway, _ = _gateway(handler, repository=repo)
    snap = await gateway.snapshot(cached=True)
    assert calls == []
    assert snap["apiKey"] == "key-1"
    assert snap["validation"] == {"valid": True}
    assert snap["running"] is True
    assert snap["refreshed"] is False


async def test_refresh_failure_is_returned_but_not_stored():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    stored = {"valid": True, "subscriptionId": "sub_1"}
    repo = MemoryRepository(IntegrationState(key="opay", api_key="key-1", validation=stored))
    gateway, _ = _gateway(handler, repository=repo)
    snap = await gateway.snapshot()
    assert snap["refreshed"] is True
    assert snap["validation"]["reason"] == REASON_NETWORK_ERROR
    assert repo.saves == 0
    assert repo.state.validation == stored


async def test_snapshot_without_key_skips_refresh():
    def handler(request):
        raise AssertionError("no upstream call expected")

    gateway, _ = _gateway(handler)
    snap = await gateway.snapshot()
    assert snap["apiKey"] == ""
    assert snap["refreshed"] is False


async def test_set_running_keeps_validation():
    repo = MemoryRepository(IntegrationState(key="opay", api_key="key-1", validation={"valid": True}))
    gateway, _ = _gateway(_ok, repository=repo)
    assert await gateway.set_running(True) is True
    assert repo.state.running is True
    assert repo.state.validation == {"valid": True}
    assert repo.state.api_key == "key-1"
