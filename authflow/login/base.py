"""
Shared types for the ChatGPT login flows.
"""

from dataclasses import dataclass
from pathlib import Path


# OpenAI OAuth configuration
CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
ISSUER = "https://auth.openai.com"
DEFAULT_PORT = 1455


class LoginError(Exception):
    """Base class for failures of a ChatGPT login attempt."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class LoginCancelledError(LoginError):
    """Raised when the user abandons a login that is still running."""

    def __init__(self, message: str = "Login was cancelled"):
        super().__init__(message)


class LoginStartError(LoginError):
    """Raised when a login flow fails before the user could act on it."""


class LoginServerStartError(LoginStartError):
    """Raised when the local callback listener cannot be started."""


class DeviceCodeExpiredError(LoginError):
    """Raised when a device code is not approved before it expires."""


class WorkspaceMismatchError(LoginError):
    """Raised when the signed-in account is outside the forced workspace."""


@dataclass(frozen=True, slots=True)
class ServerOptions:
    """Identifiers and knobs shared by the browser and device-code flows."""

    authflow_home: Path
    client_id: str = CLIENT_ID
    forced_chatgpt_workspace_id: str | None = None
    port: int = DEFAULT_PORT
    open_browser: bool = True
    issuer: str = ISSUER


@dataclass(frozen=True, slots=True)
class DeviceCode:
    """One-time code the user enters on another device."""

    verification_url: str
    user_code: str
    device_auth_id: str
    interval: float = 5.0


@dataclass(frozen=True, slots=True)
class TokenData:
    """Tokens returned by a successful authorization-code exchange."""

    access_token: str
    refresh_token: str | None = None
    id_token: str | None = None
    account_id: str | None = None
