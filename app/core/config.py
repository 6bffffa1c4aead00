from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_csv_list(v: Any, default: List[str]) -> List[str]:
    try:
        if v is None or v == "":
            return default.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return default.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or default.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or default.copy()
    except Exception:
        return default.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="cashier", alias="MONGODB_DB_NAME")

    # Redis (ARQ worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # API key encryption at rest (Fernet key, base64)
    token_encryption_key: str = Field(default="", alias="TOKEN_ENCRYPTION_KEY")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_csv_list(getattr(self, "cors_origins_raw", None), _DEFAULT_CORS)

    # OraclePay
    domain: str | None = Field(default=None, alias="DOMAIN")
    oraclepay_validate_url: str = Field(
        default="https://api.oraclepay.org/api/external/key/validate",
        alias="ORACLEPAY_VALIDATE_URL",
    )
    oraclepay_timeout_seconds: float = Field(default=30.0, alias="ORACLEPAY_TIMEOUT_SECONDS")
    oraclepay_completed_status: str = Field(default="COMPLETED", alias="ORACLEPAY_COMPLETED_STATUS")
    oraclepay_settings_key: str = Field(default="opay", alias="ORACLEPAY_SETTINGS_KEY")

    # Bonus policy
    bonus_wagering_high: float = Field(default=30, alias="BONUS_WAGERING_HIGH")
    bonus_wagering_low: float = Field(default=3, alias="BONUS_WAGERING_LOW")
    bonus_high_wagering_types_raw: str = Field(
        default="first_deposit,special_bonus",
        alias="BONUS_HIGH_WAGERING_TYPES",
    )
    bonus_expiry_days: int = Field(default=30, alias="BONUS_EXPIRY_DAYS")

    @property
    def bonus_high_wagering_types(self) -> List[str]:
        return _parse_csv_list(self.bonus_high_wagering_types_raw, ["first_deposit", "special_bonus"])

    # Ledger history caps
    deposit_history_limit: int = Field(default=20, alias="DEPOSIT_HISTORY_LIMIT")
    # Also the reach of the ledger's per-transaction idempotency check on the user document.
    transaction_history_limit: int = Field(default=200, alias="TRANSACTION_HISTORY_LIMIT")

    # Reconciliation retry job
    reconcile_retry_batch: int = Field(default=50, alias="RECONCILE_RETRY_BATCH")
    reconcile_stale_claim_minutes: int = Field(default=10, alias="RECONCILE_STALE_CLAIM_MINUTES")
    reconcile_max_attempts: int = Field(default=5, alias="RECONCILE_MAX_ATTEMPTS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
