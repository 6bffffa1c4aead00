"""
OraclePay API key validation against the upstream licensing service.

State lives in one IntegrationSettings document; the gateway is built with an
explicit IntegrationState and re-reads it only through reload().
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx

from app.core.config import Settings, get_settings
from app.core.encryption import decrypt_secret, encrypt_secret, mask_secret
from app.core.logging import get_logger
from app.models.integration_settings import IntegrationSettings

log = get_logger(__name__)

USER_AGENT = "Opay-Integration/1.0"

REASON_DOMAIN_MISMATCH = "DOMAIN_MISMATCH"
REASON_UPSTREAM_ERROR = "UPSTREAM_ERROR"
REASON_TIMEOUT = "TIMEOUT"
REASON_NETWORK_ERROR = "NETWORK_ERROR"
REASON_REQUEST_FAILED = "REQUEST_FAILED"


@dataclass
class IntegrationState:
    key: str
    api_key: str = ""
    validation: dict[str, Any] | None = None
    last_valid_validation: dict[str, Any] | None = None
    last_error_at: datetime | None = None
    running: bool = False
    updated_at: datetime | None = None


@dataclass
class ValidationResult:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return bool(self.body.get("valid"))


class StateRepository(Protocol):
    async def load(self, key: str) -> IntegrationState: ...

    async def save(self, state: IntegrationState) -> None: ...


class MongoStateRepository:
    """IntegrationSettings-backed storage; the API key is Fernet-encrypted at rest."""

    async def load(self, key: str) -> IntegrationState:
        doc = await IntegrationSettings.find_one(IntegrationSettings.key == key)
        if doc is None:
            return IntegrationState(key=key)
        return IntegrationState(
            key=key,
            api_key=decrypt_secret(doc.api_key_encrypted),
            validation=doc.validation,
            last_valid_validation=doc.last_valid_validation,
            last_error_at=doc.last_error_at,
            running=doc.running,
            updated_at=doc.updated_at,
        )

    async def save(self, state: IntegrationState) -> None:
        await IntegrationSettings.find_one(IntegrationSettings.key == state.key).upsert(
            {
                "$set": {
                    "api_key_encrypted": encrypt_secret(state.api_key),
                    "validation": state.validation,
                    "last_valid_validation": state.last_valid_validation,
                    "last_error_at": state.last_error_at,
                    "running": state.running,
                    "updated_at": state.updated_at,
                }
            },
            on_insert=IntegrationSettings(
                key=state.key,
                api_key_encrypted=encrypt_secret(state.api_key),
                validation=state.validation,
                last_valid_validation=state.last_valid_validation,
                last_error_at=state.last_error_at,
                running=state.running,
                updated_at=state.updated_at,
            ),
        )


def _error_body(reason: str, message: str) -> dict[str, Any]:
    return {"success": False, "valid": False, "reason": reason, "message": message}


def domain_matches(allowed: str, payload: dict[str, Any]) -> bool:
    domains = payload.get("domains") if isinstance(payload.get("domains"), list) else []
    return allowed in domains or (payload.get("primaryDomain") or "") == allowed


class LicenseGateway:
    def __init__(
        self,
        state: IntegrationState,
        repository: StateRepository,
        validate_url: str,
        allowed_domain: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.state = state
        self.repository = repository
        self.validate_url = validate_url
        self.allowed_domain = allowed_domain
        self.timeout = timeout
        self._client = client

    @classmethod
    async def create(
        cls,
        settings: Settings | None = None,
        repository: StateRepository | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> "LicenseGateway":
        settings = settings or get_settings()
        repository = repository or MongoStateRepository()
        state = await repository.load(settings.oraclepay_settings_key)
        return cls(
            state,
            repository,
            validate_url=settings.oraclepay_validate_url,
            allowed_domain=settings.domain,
            timeout=settings.oraclepay_timeout_seconds,
            client=client,
        )

    async def reload(self) -> IntegrationState:
        self.state = await self.repository.load(self.state.key)
        return self.state

    async def _persist(self, **changes: Any) -> None:
        for name, value in changes.items():
            setattr(self.state, name, value)
        self.state.updated_at = datetime.utcnow()
        await self.repository.save(self.state)

    async def _fetch(self, api_key: str) -> httpx.Response:
        headers = {"X-API-Key": api_key, "User-Agent": USER_AGENT}
        if self._client is not None:
            return await self._client.get(self.validate_url, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(self.validate_url, headers=headers)

    async def _call_upstream(self, api_key: str) -> tuple[dict[str, Any] | None, ValidationResult | None]:
        """Return (payload, None) on success or (None, failure result). Fails closed."""
        try:
            response = await self._fetch(api_key)
            response.raise_for_status()
            payload = response.json() if response.content else {}
            return (payload if isinstance(payload, dict) else {}), None
        except httpx.TimeoutException:
            return None, ValidationResult(500, _error_body(REASON_TIMEOUT, "OraclePay API timeout - please try again"))
        except httpx.HTTPStatusError as exc:
            try:
                upstream = exc.response.json()
            except ValueError:
                upstream = {}
            upstream = upstream if isinstance(upstream, dict) else {}
            body = _error_body(
                upstream.get("reason") or REASON_UPSTREAM_ERROR,
                upstream.get("message") if isinstance(upstream.get("message"), str) else "OraclePay rejected the API key",
            )
            return None, ValidationResult(exc.response.status_code, body)
        except httpx.ConnectError:
            return None, ValidationResult(
                500,
                _error_body(REASON_NETWORK_ERROR, "Cannot connect to OraclePay API - check your internet connection"),
            )
        except (httpx.HTTPError, ValueError):
            return None, ValidationResult(
                500, _error_body(REASON_REQUEST_FAILED, "Failed to validate API key with OraclePay")
            )

    async def validate(self, api_key: str, persist: bool = True) -> ValidationResult:
        """
        Validate `api_key` upstream and check the deployment domain.

        A successful validation is always stored; domain mismatches and upstream
        failures are stored only when `persist` is set (explicit validate calls).
        """
        log.info("license_validation_started", url=self.validate_url, api_key=mask_secret(api_key))
        payload, failure = await self._call_upstream(api_key)
        if failure is not None:
            log.warning(
                "license_validation_failed",
                reason=failure.body.get("reason"),
                status_code=failure.status_code,
            )
            if persist:
                await self._persist(api_key=api_key, validation=failure.body, last_error_at=datetime.utcnow())
            return failure

        if self.allowed_domain and not domain_matches(self.allowed_domain, payload):
            log.warning("license_domain_mismatch", allowed_domain=self.allowed_domain)
            if persist:
                await self._persist(
                    api_key=api_key,
                    validation={**payload, "valid": False, "reason": REASON_DOMAIN_MISMATCH},
                )
            return ValidationResult(
                400,
                {
                    "success": False,
                    "valid": False,
                    "reason": REASON_DOMAIN_MISMATCH,
                    "message": "Your domain is not whitelisted for this API key",
                    "allowedDomain": self.allowed_domain,
                    "domains": payload.get("domains") if isinstance(payload.get("domains"), list) else [],
                    "primaryDomain": payload.get("primaryDomain") or "",
                },
            )

        validation = {**payload, "valid": True}
        await self._persist(api_key=api_key, validation=validation, last_valid_validation=validation)
        log.info("license_validation_succeeded", subscription_id=payload.get("subscriptionId"))
        return ValidationResult(200, {**payload, "success": True, "valid": True})

    async def snapshot(self, cached: bool = False) -> dict[str, Any]:
        """Dashboard view; re-validates live unless `cached` or no key is stored."""
        await self.reload()
        validation = self.state.validation
        refreshed = not cached and bool(self.state.api_key)
        if refreshed:
            result = await self.validate(self.state.api_key, persist=False)
            validation = result.body
        return {
            "apiKey": self.state.api_key,
            "validation": validation,
            "lastValidValidation": self.state.last_valid_validation,
            "updatedAt": self.state.updated_at,
            "running": self.state.running is True,
            "refreshed": refreshed,
        }

    async def set_running(self, running: bool) -> bool:
        await self.reload()
        await self._persist(running=running)
        return running
