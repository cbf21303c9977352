"""
Credential storage and retrieval for authflow.

Stores credentials in <authflow_home>/auth.json
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, TypedDict

from authflow.login.base import TokenData


logger = logging.getLogger(__name__)

AUTH_FILE_NAME = "auth.json"
OPENAI_API_KEY_ENV_VAR = "OPENAI_API_KEY"


class AuthMode(str, Enum):
    """How the current session is authenticated."""

    CHATGPT = "chatgpt"
    API_KEY = "api_key"


class StoredTokens(TypedDict, total=False):
    id_token: str | None
    access_token: str | None
    refresh_token: str | None
    account_id: str | None


class AuthRecord(TypedDict, total=False):
    """Stored credential structure."""

    OPENAI_API_KEY: str | None
    tokens: StoredTokens | None
    last_refresh: str | None


class CredentialStoreError(Exception):
    """Raised when the credential file cannot be written or removed."""

    def __init__(self, message: str, path: Path | None = None):
        super().__init__(message)
        self.message = message
        self.path = path


class CredentialStore:
    """
    Owner of the local auth.json record.

    Reads are cached until reload() is called; login listeners write from
    their own threads, so the cache is guarded by a lock.
    """

    def __init__(self, home: Path):
        self.home = home
        self.auth_file = home / AUTH_FILE_NAME
        self._lock = threading.Lock()
        self._cached: AuthRecord | None = None
        self._loaded = False

    def _ensure_dir(self) -> None:
        self.home.mkdir(parents=True, exist_ok=True)

    def _read_file(self) -> AuthRecord | None:
        if not self.auth_file.exists():
            return None
        try:
            with self.auth_file.open(encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("Ignoring unreadable credential file %s", self.auth_file)
            return None
        if not isinstance(data, dict):
            return None
        return data  # type: ignore[return-value]

    def _write_file(self, record: AuthRecord) -> None:
        try:
            self._ensure_dir()
            with self.auth_file.open("w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
            # Set file permissions to owner-only (Unix)
            if os.name != "nt":
                os.chmod(self.auth_file, 0o600)
        except OSError as exc:
            raise CredentialStoreError(str(exc), self.auth_file) from exc

    def load(self) -> AuthRecord | None:
        """Return the cached record, reading the file on first use."""
        with self._lock:
            if not self._loaded:
                self._cached = self._read_file()
                self._loaded = True
            return self._cached

    def reload(self) -> None:
        """Drop the cached record so the next read re-derives the auth mode."""
        with self._lock:
            self._cached = None
            self._loaded = False

    def auth_mode(self) -> AuthMode | None:
        record = self.load()
        if not record:
            return None
        tokens = record.get("tokens")
        if isinstance(tokens, dict) and tokens.get("access_token"):
            return AuthMode.CHATGPT
        if record.get("OPENAI_API_KEY"):
            return AuthMode.API_KEY
        return None

    def write_api_key(self, api_key: str) -> None:
        """Persist an API key, replacing any ChatGPT tokens."""
        record: AuthRecord = {
            "OPENAI_API_KEY": api_key,
            "tokens": None,
            "last_refresh": None,
        }
        self._write_file(record)
        logger.info("Saved API key credentials to %s", self.auth_file)

    def save_tokens(self, tokens: TokenData) -> None:
        """Persist ChatGPT tokens obtained by a browser or device-code login."""
        record: AuthRecord = {
            "OPENAI_API_KEY": None,
            "tokens": {
                "id_token": tokens.id_token,
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token,
                "account_id": tokens.account_id,
            },
            "last_refresh": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
        }
        self._write_file(record)
        logger.info("Saved ChatGPT credentials to %s", self.auth_file)

    def logout(self) -> bool:
        """Remove stored credentials."""
        if not self.auth_file.exists():
            return False
        try:
            self.auth_file.unlink()
        except OSError as exc:
            raise CredentialStoreError(str(exc), self.auth_file) from exc
        self.reload()
        return True

    @staticmethod
    def read_env_prefill() -> str | None:
        """Best-effort read of an API key supplied through the environment."""
        value = os.environ.get(OPENAI_API_KEY_ENV_VAR, "").strip()
        return value or None

    def describe(self) -> dict[str, Any]:
        record = self.load() or {}
        tokens = record.get("tokens") or {}
        return {
            "auth_mode": self.auth_mode(),
            "account_id": tokens.get("account_id") if isinstance(tokens, dict) else None,
            "last_refresh": record.get("last_refresh"),
            "path": self.auth_file,
        }


@dataclass(frozen=True, slots=True)
class LoginStatus:
    """Authentication status the sign-in step is seeded from."""

    auth_mode: AuthMode | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.auth_mode is not None

    @classmethod
    def from_store(cls, store: CredentialStore) -> LoginStatus:
        return cls(auth_mode=store.auth_mode())
