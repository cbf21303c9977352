"""
Device-code login for terminals without a local browser.

The user enters a one-time code on another device while this side polls the
token endpoint. Cancellation is cooperative: the caller sets an asyncio.Event
which is checked before every poll and also wakes the wait between polls.
"""

import asyncio
import logging
import time
from collections.abc import Callable

import httpx

from authflow.auth.credentials import CredentialStore, CredentialStoreError
from authflow.login.base import (
    DeviceCode,
    DeviceCodeExpiredError,
    LoginCancelledError,
    LoginError,
    LoginStartError,
    ServerOptions,
    TokenData,
)
from authflow.login.tokens import ensure_workspace_allowed, exchange_code_for_tokens_async

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
# Device codes are valid for 15 minutes
DEVICE_CODE_LIFETIME_S = 15 * 60
USER_AGENT = "authflow/1.0"


class DeviceCodeLogin:
    """Requests a device code and polls until it is approved, expires or is cancelled."""

    def __init__(
        self,
        store: CredentialStore,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._transport = transport
        self._clock = clock

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=REQUEST_TIMEOUT)

    async def request_device_code(self, opts: ServerOptions) -> DeviceCode:
        """Ask the issuer for a user code. Raises LoginStartError on failure."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{opts.issuer}/api/accounts/deviceauth/usercode",
                    json={"client_id": opts.client_id},
                    headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
                )
        except httpx.RequestError as exc:
            raise LoginStartError(f"Failed to request a device code: {exc}") from exc

        if not response.is_success:
            raise LoginStartError(
                f"Failed to initiate device authorization: {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise LoginStartError("Device authorization response was not valid JSON") from exc
        if not isinstance(data, dict):
            data = {}
        device_auth_id = data.get("device_auth_id")
        user_code = data.get("user_code") or data.get("usercode")
        if not device_auth_id or not user_code:
            raise LoginStartError("Device authorization response is missing the user code")

        try:
            interval = max(float(data.get("interval", 5)), 1.0)
        except (TypeError, ValueError):
            interval = 5.0

        return DeviceCode(
            verification_url=f"{opts.issuer}/codex/device",
            user_code=user_code,
            device_auth_id=device_auth_id,
            interval=interval,
        )

    async def complete(
        self,
        opts: ServerOptions,
        device_code: DeviceCode,
        cancel: asyncio.Event,
    ) -> TokenData:
        """Poll until the code is approved, then persist and return the tokens."""
        deadline = self._clock() + DEVICE_CODE_LIFETIME_S

        async with self._client() as client:
            while True:
                if cancel.is_set():
                    logger.info("Device code login cancelled")
                    raise LoginCancelledError()
                if self._clock() >= deadline:
                    raise DeviceCodeExpiredError("Device code expired before it was approved")

                try:
                    response = await client.post(
                        f"{opts.issuer}/api/accounts/deviceauth/token",
                        json={
                            "device_auth_id": device_code.device_auth_id,
                            "user_code": device_code.user_code,
                        },
                        headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
                    )
                except httpx.RequestError as exc:
                    logger.warning("Device token polling failed: %s", exc)
                    raise LoginError(f"Network error: {exc}") from exc

                if response.status_code in (403, 404):
                    # Authorization still pending
                    await self._wait_for_next_poll(cancel, device_code.interval)
                    continue

                if not response.is_success:
                    raise LoginError(f"Authorization failed: {response.status_code}")

                try:
                    data = response.json()
                except ValueError as exc:
                    raise LoginError("Device token response was not valid JSON") from exc
                token_data = await exchange_code_for_tokens_async(
                    client,
                    issuer=opts.issuer,
                    client_id=opts.client_id,
                    code=data.get("authorization_code", ""),
                    code_verifier=data.get("code_verifier", ""),
                    redirect_uri=f"{opts.issuer}/deviceauth/callback",
                )
                ensure_workspace_allowed(token_data, opts.forced_chatgpt_workspace_id)
                try:
                    self._store.save_tokens(token_data)
                except CredentialStoreError as exc:
                    raise LoginError(f"Could not save credentials: {exc.message}") from exc
                logger.info("Device code login completed")
                return token_data

    @staticmethod
    async def _wait_for_next_poll(cancel: asyncio.Event, interval: float) -> None:
        try:
            await asyncio.wait_for(cancel.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
