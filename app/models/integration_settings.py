from datetime import datetime
from typing import Any

from beanie import Document, Indexed
from pydantic import Field


class IntegrationSettings(Document):
    """One document per payment integration (key "opay")."""

    key: Indexed(str, unique=True)
    api_key_encrypted: str = ""
    validation: dict[str, Any] | None = None
    last_valid_validation: dict[str, Any] | None = None
    last_error_at: datetime | None = None
    running: bool = False
    updated_at: datetime | None = None

    class Settings:
        name = "integration_settings"
