"""
API key storage for the Gateway.
"""

from .models import ApiKeyRecord, CustomLimits, KeyErrorKind, ValidationResult, mask_key
from .store import ApiKeyStore, generate_key

__all__ = [
    "ApiKeyRecord",
    "ApiKeyStore",
    "CustomLimits",
    "KeyErrorKind",
    "ValidationResult",
    "generate_key",
    "mask_key",
]
