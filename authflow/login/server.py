"""
Local callback listener for the ChatGPT browser login.

The listener binds a localhost port, hands out the authorization URL, and
resolves a completion future once the browser redirect has been exchanged
for tokens (or the attempt fails or is shut down).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import html
import logging
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from authflow.auth.credentials import CredentialStore, CredentialStoreError
from authflow.login.base import (
    LoginCancelledError,
    LoginError,
    LoginServerStartError,
    ServerOptions,
)
from authflow.login.pkce import generate_pkce, generate_state
from authflow.login.tokens import ensure_workspace_allowed, exchange_code_for_tokens

logger = logging.getLogger(__name__)

# Seconds handle_request() waits before re-checking the shutdown flag
SERVE_POLL_INTERVAL = 0.25


HTML_SUCCESS = """<!doctype html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Signed in</title>
    <style>
      body {
        font-family: system-ui, -apple-system, sans-serif;
        display: flex;
        justify-content: center;
        align-items: center;
        height: 100vh;
        margin: 0;
        background: #0f0f0f;
        color: #e5e5e5;
      }
      .container { text-align: center; padding: 2rem; }
      h1 { color: #22c55e; margin-bottom: 1rem; }
      p { color: #737373; }
    </style>
  </head>
  <body>
    <div class="container">
      <h1>✓ Signed in</h1>
      <p>You can close this window and return to your terminal.</p>
    </div>
    <script>setTimeout(() => window.close(), 2000)</script>
  </body>
</html>"""


HTML_ERROR = """<!doctype html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Sign-in failed</title>
  </head>
  <body>
    <h1>✗ Sign-in failed</h1>
    <p>{error}</p>
  </body>
</html>"""


def build_authorize_url(
    opts: ServerOptions, redirect_uri: str, code_challenge: str, state: str
) -> str:
    params = {
        "response_type": "code",
        "client_id": opts.client_id,
        "redirect_uri": redirect_uri,
        "scope": "openid profile email offline_access",
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "id_token_add_organizations": "true",
        "codex_cli_simplified_flow": "true",
        "state": state,
    }
    if opts.forced_chatgpt_workspace_id:
        params["allowed_workspace_id"] = opts.forced_chatgpt_workspace_id
    return f"{opts.issuer}/oauth/authorize?{urlencode(params)}"


class OAuthCallbackHandler(BaseHTTPRequestHandler):
    """HTTP handler for the OAuth redirect."""

    server: OAuthCallbackServer

    def log_message(self, format: str, *args: Any) -> None:
        """Suppress HTTP server logs."""
        pass

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path == "/cancel":
            self._send_html(HTML_ERROR.format(error="Login cancelled"))
            self.server.login.shutdown()
            return
        if parsed.path != "/auth/callback":
            self.send_error(404)
            return

        params = parse_qs(parsed.query)
        login = self.server.login

        state = params.get("state", [None])[0]
        if state != login.expected_state:
            # Stray or forged redirect; keep waiting for the real one.
            self._send_html(HTML_ERROR.format(error="Invalid state"), 400)
            return

        error = params.get("error", [None])[0]
        if error:
            error_desc = params.get("error_description", [error])[0]
            self._send_html(HTML_ERROR.format(error=html.escape(error_desc)), 400)
            login.fail(LoginError(f"Authorization failed: {error_desc}"))
            return

        code = params.get("code", [None])[0]
        if not code:
            self._send_html(HTML_ERROR.format(error="Missing authorization code"), 400)
            login.fail(LoginError("Missing authorization code"))
            return

        try:
            login.complete_with_code(code)
        except LoginError as exc:
            self._send_html(HTML_ERROR.format(error=html.escape(exc.message)), 400)
            login.fail(exc)
            return
        self._send_html(HTML_SUCCESS)

    def _send_html(self, html: str, status: int = 200) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(html.encode())


class OAuthCallbackServer(HTTPServer):
    """HTTP server bound to the login attempt it serves."""

    allow_reuse_address = True

    def __init__(self, port: int, login: LoginServer):
        super().__init__(("127.0.0.1", port), OAuthCallbackHandler)
        self.login = login
        self.timeout = SERVE_POLL_INTERVAL


class ShutdownHandle:
    """Cancellation handle held by the sign-in state while the listener runs."""

    def __init__(self, login: LoginServer):
        self._login = login

    def shutdown(self) -> None:
        self._login.shutdown()


class LoginServer:
    """A running browser login: authorization URL plus completion future."""

    def __init__(
        self,
        opts: ServerOptions,
        store: CredentialStore,
        *,
        http_client: httpx.Client | None = None,
    ):
        self.opts = opts
        self._store = store
        self._http_client = http_client
        self._done: concurrent.futures.Future[None] = concurrent.futures.Future()
        self._stop = threading.Event()
        try:
            self._httpd = OAuthCallbackServer(opts.port, self)
        except OSError as exc:
            raise LoginServerStartError(
                f"Could not start login server on port {opts.port}: {exc.strerror or exc}"
            ) from exc
        self.port = self._httpd.server_address[1]
        self.redirect_uri = f"http://localhost:{self.port}/auth/callback"
        self._verifier, challenge = generate_pkce()
        self.expected_state = generate_state()
        self.auth_url = build_authorize_url(opts, self.redirect_uri, challenge, self.expected_state)
        self._thread = threading.Thread(
            target=self._serve, name="authflow-login-server", daemon=True
        )

    def start(self) -> None:
        self._thread.start()
        if self.opts.open_browser:
            threading.Thread(target=self._open_browser, daemon=True).start()

    def _open_browser(self) -> None:
        try:
            webbrowser.open(self.auth_url)
        except webbrowser.Error:
            logger.info("Could not open a browser; the URL is shown on screen")

    def _serve(self) -> None:
        try:
            while not self._stop.is_set():
                self._httpd.handle_request()
        finally:
            self._httpd.server_close()
            logger.debug("Login server on port %s stopped", self.port)

    def _resolve(self, error: BaseException | None) -> bool:
        try:
            if error is None:
                self._done.set_result(None)
            else:
                self._done.set_exception(error)
        except concurrent.futures.InvalidStateError:
            return False
        finally:
            self._stop.set()
        return True

    @property
    def done(self) -> bool:
        return self._done.done()

    def complete_with_code(self, code: str) -> None:
        """Exchange the redirect's code, persist the tokens and finish the flow."""
        token_data = exchange_code_for_tokens(
            issuer=self.opts.issuer,
            client_id=self.opts.client_id,
            code=code,
            code_verifier=self._verifier,
            redirect_uri=self.redirect_uri,
            client=self._http_client,
        )
        ensure_workspace_allowed(token_data, self.opts.forced_chatgpt_workspace_id)
        try:
            self._store.save_tokens(token_data)
        except CredentialStoreError as exc:
            raise LoginError(f"Could not save credentials: {exc.message}") from exc
        if self._resolve(None):
            logger.info("Browser login completed")

    def fail(self, error: LoginError) -> None:
        if self._resolve(error):
            logger.warning("Browser login failed: %s", error.message)

    def shutdown(self) -> None:
        """Stop serving; a flow that has not finished resolves as cancelled."""
        if self._resolve(LoginCancelledError()):
            logger.info("Browser login cancelled")

    def cancel_handle(self) -> ShutdownHandle:
        return ShutdownHandle(self)

    async def wait_until_done(self) -> None:
        """Wait for the remote exchange to finish; raises LoginError on failure."""
        await asyncio.wrap_future(self._done)


def run_login_server(opts: ServerOptions, store: CredentialStore) -> LoginServer:
    """Bind and start a callback listener for one browser login attempt."""
    server = LoginServer(opts, store)
    server.start()
    logger.info("Login server listening on port %s", server.port)
    return server
