"""
API key records and validation outcomes.
"""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def mask_key(key: str) -> str:
    """Redacted form of a key for listings and logs."""
    if not key:
        return ""
    return f"{key[:8]}...{key[-4:]}"


class CustomLimits(BaseModel):
    """Per-key overrides of the default window limits."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    per_10min: Optional[int] = Field(default=None, ge=0, alias="per10Min")
    per_day: Optional[int] = Field(default=None, ge=0, alias="perDay")
    per_month: Optional[int] = Field(default=None, ge=0, alias="perMonth")

    def overrides(self) -> Dict[str, int]:
        """Set fields keyed by window field name."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ApiKeyRecord(BaseModel):
    """A single API key as persisted in the key file."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    name: str
    created_at: int = Field(alias="createdAt")
    last_used_at: Optional[int] = Field(default=None, alias="lastUsedAt")
    is_active: bool = Field(default=True, alias="isActive")
    custom_limits: Optional[CustomLimits] = Field(default=None, alias="customLimits")
    metadata: Optional[Dict[str, str]] = None

    @property
    def masked_key(self) -> str:
        return mask_key(self.key)

    def overrides(self) -> Dict[str, int]:
        return self.custom_limits.overrides() if self.custom_limits else {}

    def to_dict(self) -> dict:
        """Persisted/full representation with camelCase fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_masked_dict(self) -> dict:
        """External representation with the key redacted."""
        data = self.to_dict()
        data["key"] = self.masked_key
        return data


class KeyErrorKind(str, Enum):
    """Reasons a key fails validation."""

    MISSING_KEY = "MISSING_API_KEY"
    UNKNOWN_KEY = "UNKNOWN_API_KEY"
    DEACTIVATED = "API_KEY_DEACTIVATED"

    @property
    def message(self) -> str:
        return _KEY_ERROR_MESSAGES[self]


_KEY_ERROR_MESSAGES = {
    KeyErrorKind.MISSING_KEY: "API key is required. Provide it in the x-api-key header.",
    KeyErrorKind.UNKNOWN_KEY: "Invalid API key",
    KeyErrorKind.DEACTIVATED: "API key is deactivated",
}


class ValidationResult(BaseModel):
    """Outcome of ApiKeyStore.validate."""

    valid: bool
    record: Optional[ApiKeyRecord] = None
    error: Optional[KeyErrorKind] = None
