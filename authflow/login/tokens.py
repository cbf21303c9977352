"""
Token exchange and JWT claim helpers shared by both ChatGPT login flows.
"""

import base64
import json
import logging
from typing import Any

import httpx

from authflow.login.base import LoginError, TokenData, WorkspaceMismatchError

logger = logging.getLogger(__name__)

TOKEN_TIMEOUT = 30


def decode_jwt_payload(token: str) -> dict[str, Any] | None:
    """Decode JWT payload without verification."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    try:
        # Add padding if needed
        payload = parts[1]
        padding = 4 - len(payload) % 4
        if padding != 4:
            payload += "=" * padding
        decoded = base64.urlsafe_b64decode(payload)
        claims = json.loads(decoded)
    except (ValueError, UnicodeDecodeError):
        return None
    return claims if isinstance(claims, dict) else None


def extract_account_id(tokens: dict[str, Any]) -> str | None:
    """Extract ChatGPT account ID from JWT tokens."""
    for token_key in ["id_token", "access_token"]:
        token = tokens.get(token_key)
        if not token:
            continue
        claims = decode_jwt_payload(token)
        if not claims:
            continue
        auth_claims = claims.get("https://api.openai.com/auth")
        if not isinstance(auth_claims, dict):
            auth_claims = {}
        account_id = claims.get("chatgpt_account_id") or auth_claims.get("chatgpt_account_id")
        if account_id:
            return account_id
        orgs = claims.get("organizations", [])
        if orgs and isinstance(orgs, list) and isinstance(orgs[0], dict) and orgs[0].get("id"):
            return orgs[0]["id"]
    return None


def ensure_workspace_allowed(token_data: TokenData, forced_workspace_id: str | None) -> None:
    """Reject tokens that belong to a different workspace than the forced one."""
    if not forced_workspace_id:
        return
    if token_data.account_id != forced_workspace_id:
        raise WorkspaceMismatchError(
            f"Login is restricted to workspace {forced_workspace_id}",
        )


def build_token_data(tokens: dict[str, Any]) -> TokenData:
    access_token = tokens.get("access_token")
    if not access_token:
        raise LoginError("Token response missing 'access_token' field")
    return TokenData(
        access_token=access_token,
        refresh_token=tokens.get("refresh_token"),
        id_token=tokens.get("id_token"),
        account_id=extract_account_id(tokens),
    )


def exchange_code_for_tokens(
    *,
    issuer: str,
    client_id: str,
    code: str,
    code_verifier: str,
    redirect_uri: str,
    client: httpx.Client | None = None,
) -> TokenData:
    """Exchange an authorization code for tokens (blocking)."""
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "code_verifier": code_verifier,
    }
    owns_client = client is None
    http = client or httpx.Client(timeout=TOKEN_TIMEOUT)
    try:
        response = http.post(
            f"{issuer}/oauth/token",
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.HTTPError as exc:
        raise LoginError(f"Token exchange error: {exc}") from exc
    finally:
        if owns_client:
            http.close()

    if not response.is_success:
        raise LoginError(f"Token exchange failed: {response.status_code}")
    try:
        tokens = response.json()
    except ValueError as exc:
        raise LoginError("Token exchange returned invalid JSON") from exc
    return build_token_data(tokens)


async def exchange_code_for_tokens_async(
    client: httpx.AsyncClient,
    *,
    issuer: str,
    client_id: str,
    code: str,
    code_verifier: str,
    redirect_uri: str,
) -> TokenData:
    """Exchange an authorization code for tokens from async code."""
    try:
        response = await client.post(
            f"{issuer}/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": client_id,
                "code_verifier": code_verifier,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=TOKEN_TIMEOUT,
        )
    except httpx.HTTPError as exc:
        raise LoginError(f"Token exchange error: {exc}") from exc

    if not response.is_success:
        raise LoginError(f"Token exchange failed: {response.status_code}")
    try:
        tokens = response.json()
    except ValueError as exc:
        raise LoginError("Token exchange returned invalid JSON") from exc
    return build_token_data(tokens)
