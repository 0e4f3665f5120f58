"""
Local State Store - durable key-value persistence for entitlement state

Holds the trial start timestamp, the cached premium flag and per-day usage
counters. Survives restarts; never synchronized across devices.

Both implementations give read-your-writes consistency inside one process.
Unreadable or corrupt data is reported as absent, never raised.
"""

import copy
import json
import os
import base64
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from entitlements.errors import StateStoreError
from utils.logger import logger


# Keys used by the engine
TRIAL_START_KEY = "trial_start"
CACHED_ENTITLEMENT_KEY = "cached_entitlement"
TRIAL_HISTORY_KEY = "trial_history"
USAGE_KEY_PREFIX = "usage:"
USAGE_STATS_KEY = "usage_stats"


class LocalStateStore(ABC):
    """Synchronous, durable key-value store"""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None when absent"""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value"""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key; missing keys are ignored"""

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with ``prefix``"""


class InMemoryStateStore(LocalStateStore):
    """Process-local store, used in tests and when no storage is available"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [k for k in self._data if k.startswith(prefix)]


class JsonFileStateStore(LocalStateStore):
    """
    Single JSON document on disk, optionally Fernet-encrypted.

    Security features when ``encryption_key`` is given:
    - AES-128-CBC + HMAC-SHA256 via Fernet
    - Tampered or foreign files fail to decrypt and read as empty

    Writes go to a temp file in the same directory and are moved into place,
    so a crash mid-write leaves the previous document intact.
    """

    _ENCRYPTED_PREFIX = "v2:"

    def __init__(self, path: str, encryption_key: Optional[str] = None):
        self.path = Path(path)
        self._fernet = Fernet(encryption_key) if encryption_key else None
        self._lock = threading.Lock()
        self._cache: Optional[Dict[str, Any]] = None

    # ========== Persistence ==========

    def _load(self) -> Dict[str, Any]:
        """Load the document, treating any failure as an empty store"""
        if self._cache is not None:
            return self._cache

        data: Dict[str, Any] = {}
        if self.path.exists():
            try:
                raw = self.path.read_text(encoding="utf-8")
                data = self._decode(raw)
            except (OSError, ValueError, StateStoreError) as e:
                logger.warning(f"Could not load entitlement state from {self.path}: {e}")
                data = {}

        self._cache = data
        return self._cache

    def _decode(self, raw: str) -> Dict[str, Any]:
        if not raw.strip():
            return {}

        if self._fernet:
            if not raw.startswith(self._ENCRYPTED_PREFIX):
                raise StateStoreError("state file is not encrypted")
            try:
                ciphertext = base64.b64decode(raw[len(self._ENCRYPTED_PREFIX):])
                raw = self._fernet.decrypt(ciphertext).decode("utf-8")
            except (InvalidToken, ValueError) as e:
                raise StateStoreError(f"decryption failed: {e}") from e

        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise StateStoreError("state root is not an object")
        return payload

    def _encode(self, data: Dict[str, Any]) -> str:
        raw = json.dumps(data, indent=2, sort_keys=True)
        if self._fernet:
            token = self._fernet.encrypt(raw.encode("utf-8"))
            return self._ENCRYPTED_PREFIX + base64.b64encode(token).decode()
        return raw

    def _flush(self, data: Dict[str, Any]) -> None:
        """Atomically replace the document on disk"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".state_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self._encode(data))
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    # ========== Key-value API ==========

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._load().get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = dict(self._load())
            data[key] = copy.deepcopy(value)
            try:
                self._flush(data)
            except OSError as e:
                # Keep serving the new value from memory so reads see the write
                logger.error(f"Could not persist entitlement state to {self.path}: {e}")
            self._cache = data

    def delete(self, key: str) -> None:
        with self._lock:
            data = dict(self._load())
            if key not in data:
                return
            del data[key]
            try:
                self._flush(data)
            except OSError as e:
                logger.error(f"Could not persist entitlement state to {self.path}: {e}")
            self._cache = data

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [k for k in self._load() if k.startswith(prefix)]

    def reload(self) -> None:
        """Drop the in-memory copy; next read goes to disk"""
        with self._lock:
            self._cache = None


def generate_encryption_key() -> str:
    """Generate a key suitable for STATE_ENCRYPTION_KEY"""
    return Fernet.generate_key().decode()


def create_state_store(settings) -> LocalStateStore:
    """Build the file-backed store described by settings"""
    settings.create_directories()
    return JsonFileStateStore(settings.STATE_FILE, encryption_key=settings.STATE_ENCRYPTION_KEY)
