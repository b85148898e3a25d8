"""
Durable API key store.

Keys are kept in memory and mirrored to a single JSON file that maps each
key to its record. Every mutation rewrites the whole file through a temporary
sibling and an atomic rename, so a crash never leaves a half-written store.
"""

import json
import os
import secrets
import tempfile
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger

from .models import ApiKeyRecord, CustomLimits, KeyErrorKind, ValidationResult, mask_key

KEY_PREFIX = "eth_"


def generate_key() -> str:
    """128 random bits, hex encoded, with the gateway prefix."""
    return KEY_PREFIX + secrets.token_hex(16)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ApiKeyStore:
    """Thread-safe API key store backed by a JSON file."""

    def __init__(self, path: str, rate_limiter=None, clock: Callable[[], int] = _now_ms):
        self.path = path
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.logger = get_logger("gateway.keystore")
        self._keys: Dict[str, ApiKeyRecord] = {}
        self._lock = threading.RLock()
        self.load()

    def load(self) -> int:
        """(Re)load the key file. Returns the number of keys loaded."""
        with self._lock:
            self._keys = {}
            if not os.path.exists(self.path):
                self.logger.info("No API key file found, starting empty", path=self.path)
                return 0

            try:
                with open(self.path, "r", encoding="utf-8") as fh:
                    raw = json.load(fh)
                if not isinstance(raw, dict):
                    raise ValueError("key file must contain a JSON object")
                keys = {key: ApiKeyRecord.model_validate(value) for key, value in raw.items()}
            except (OSError, ValueError, PydanticValidationError) as e:
                self.logger.error("Failed to load API keys, starting empty", path=self.path, error=str(e))
                return 0

            self._keys = keys
            self.logger.info("Loaded API keys", path=self.path, count=len(keys))
            return len(keys)

    def _persist(self, keys: Mapping[str, ApiKeyRecord]):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        payload = {key: record.to_dict() for key, record in keys.items()}
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".api-keys.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _commit(self, keys: Dict[str, ApiKeyRecord]):
        """Write the next state and only then make it current.

        Callers hold the lock. A failed write raises OSError and leaves the
        in-memory state as it was.
        """
        self._persist(keys)
        self._keys = keys

    def _replace(self, record: ApiKeyRecord) -> Dict[str, ApiKeyRecord]:
        keys = dict(self._keys)
        keys[record.key] = record
        return keys

    def create(self, name: str,
               custom_limits: Optional[Union[CustomLimits, Mapping[str, Any]]] = None,
               metadata: Optional[Dict[str, str]] = None) -> ApiKeyRecord:
        """Issue a new key. The returned record is the only place the full key is exposed."""
        if custom_limits is not None and not isinstance(custom_limits, CustomLimits):
            custom_limits = CustomLimits.model_validate(custom_limits)

        with self._lock:
            key = generate_key()
            while key in self._keys:
                key = generate_key()

            record = ApiKeyRecord(
                key=key,
                name=name,
                created_at=self.clock(),
                is_active=True,
                custom_limits=custom_limits,
                metadata=metadata,
            )
            self._commit(self._replace(record))

        self.logger.info("API key created", api_key=record.masked_key, name=name)
        return record.model_copy(deep=True)

    def get(self, key: str) -> Optional[ApiKeyRecord]:
        with self._lock:
            record = self._keys.get(key)
            return record.model_copy(deep=True) if record else None

    def validate(self, key: Optional[str]) -> ValidationResult:
        """Check a presented key and stamp its last use on success.

        Raises OSError when the stamp cannot be written.
        """
        if not key:
            return ValidationResult(valid=False, error=KeyErrorKind.MISSING_KEY)

        with self._lock:
            record = self._keys.get(key)
            if record is None:
                return ValidationResult(valid=False, error=KeyErrorKind.UNKNOWN_KEY)
            if not record.is_active:
                return ValidationResult(valid=False, error=KeyErrorKind.DEACTIVATED)

            stamped = record.model_copy(update={"last_used_at": self.clock()}, deep=True)
            self._commit(self._replace(stamped))
            return ValidationResult(valid=True, record=stamped.model_copy(deep=True))

    def activate(self, key: str) -> bool:
        return self._set_active(key, True)

    def deactivate(self, key: str) -> bool:
        return self._set_active(key, False)

    def _set_active(self, key: str, active: bool) -> bool:
        with self._lock:
            record = self._keys.get(key)
            if record is None:
                return False
            self._commit(self._replace(record.model_copy(update={"is_active": active}, deep=True)))

        self.logger.info("API key activated" if active else "API key deactivated", api_key=mask_key(key))
        return True

    def delete(self, key: str) -> bool:
        """Remove a key and purge its rate limit counters.

        Counters are only purged once the removal is on disk.
        """
        with self._lock:
            if key not in self._keys:
                return False
            keys = dict(self._keys)
            del keys[key]
            self._commit(keys)
            if self.rate_limiter is not None:
                self.rate_limiter.reset(key)

        self.logger.info("API key deleted", api_key=mask_key(key))
        return True

    def list(self) -> List[ApiKeyRecord]:
        """All records, newest first."""
        with self._lock:
            records = [record.model_copy(deep=True) for record in self._keys.values()]
        return sorted(records, key=lambda record: record.created_at, reverse=True)

    def update_limits(self, key: str, limits: Union[CustomLimits, Mapping[str, Any]]) -> bool:
        """Merge the provided limit fields into the key's overrides.

        A field explicitly set to null clears that override.
        """
        if not isinstance(limits, CustomLimits):
            limits = CustomLimits.model_validate(limits)
        provided = limits.model_dump(exclude_unset=True)

        with self._lock:
            record = self._keys.get(key)
            if record is None:
                return False
            current = record.custom_limits.model_dump() if record.custom_limits else {}
            current.update(provided)
            merged = CustomLimits(**current)
            self._commit(self._replace(record.model_copy(update={"custom_limits": merged}, deep=True)))

        self.logger.info("API key limits updated", api_key=mask_key(key), limits=merged.overrides())
        return True

    def count(self) -> int:
        with self._lock:
            return len(self._keys)
