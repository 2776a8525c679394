"""
Credential Store

Per-identity secrets (GitHub token, Vercel token) persisted to a JSON file,
encrypted at rest with Fernet. The Fernet key is derived from the configured
ENCRYPTION_SECRET, so rotating the secret makes existing values unreadable;
unreadable values are treated exactly like missing ones.

HARD CONSTRAINTS:
- Plaintext secrets are never logged (only lengths)
- Saving overwrites the previous value, no history is kept
- get() never raises on corrupted or tampered data
"""

import base64
import hashlib
import json
import logging
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger("credential_store")


class CredentialKind(str, Enum):
    """Credential slots an identity can own."""
    GITHUB = "github"
    VERCEL = "vercel"


def derive_key(secret: str) -> bytes:
    """Hash the configured secret into a 32-byte urlsafe Fernet key."""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def validate_token(secret: Optional[str], min_length: int = 1) -> bool:
    """Format-only check: long enough, no embedded whitespace. No network."""
    if not secret or not isinstance(secret, str):
        return False
    token = secret.strip()
    if len(token) < min_length:
        return False
    if any(ch.isspace() for ch in token):
        return False
    return True


class CredentialStore:
    """Encrypted key/value store keyed by (identity, kind)."""

    def __init__(self, path: Path, encryption_secret: str):
        self._path = Path(path)
        self._fernet = Fernet(derive_key(encryption_secret))
        self._lock = threading.Lock()
        self._data: Dict[str, Dict[str, str]] = {}
        self._load()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        if not self._path.exists():
            logger.info("No existing credential file, starting fresh")
            return
        try:
            data = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Failed to load credential file: {e}")
            return
        credentials = data.get("credentials", {}) if isinstance(data, dict) else {}
        if not isinstance(credentials, dict):
            logger.warning("Credential file has invalid structure, ignoring it")
            return
        self._data = {
            identity: dict(slots)
            for identity, slots in credentials.items()
            if isinstance(slots, dict)
        }
        logger.info(f"Loaded credentials for {len(self._data)} identities")

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": "1.0",
            "updated_at": datetime.utcnow().isoformat(),
            "credentials": self._data,
        }
        temp_file = self._path.with_suffix(".tmp")
        temp_file.write_text(json.dumps(payload, indent=2))
        temp_file.replace(self._path)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def save(self, identity: str, secret: str, kind: CredentialKind = CredentialKind.GITHUB) -> None:
        """Encrypt and persist, overwriting any prior value for this slot."""
        kind = CredentialKind(kind)
        encrypted = self._fernet.encrypt(secret.encode("utf-8")).decode("ascii")
        with self._lock:
            self._data.setdefault(identity, {})[kind.value] = encrypted
            self._save()
        logger.info(f"Saved {kind.value} credential for {identity} (length={len(secret)})")

    def get(self, identity: str, kind: CredentialKind = CredentialKind.GITHUB) -> Optional[str]:
        """Decrypt on read. Missing, tampered or undecryptable values return None."""
        kind = CredentialKind(kind)
        with self._lock:
            encrypted = self._data.get(identity, {}).get(kind.value)
        if not encrypted or not isinstance(encrypted, str):
            return None
        try:
            return self._fernet.decrypt(encrypted.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError, TypeError, UnicodeError):
            logger.warning(f"Failed to decrypt {kind.value} credential for {identity}")
            return None

    def has(self, identity: str, kind: CredentialKind = CredentialKind.GITHUB) -> bool:
        return self.get(identity, kind) is not None

