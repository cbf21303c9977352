"""
Flow driver for the onboarding sign-in step.

SignInFlow receives foreground input (key presses, pastes) and the results
of the background login tasks, and applies both to a SignInStateCell.
Background work runs as asyncio tasks on the UI loop; each task reports back
through its done-callback, which only transitions the state if it still
holds the variant the task was started for.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from enum import Enum
from typing import Any

from authflow.auth.credentials import (
    AuthMode,
    CredentialStore,
    CredentialStoreError,
    LoginStatus,
)
from authflow.config import Config, ForcedLoginMethod
from authflow.i18n import tr
from authflow.login.base import (
    CLIENT_ID,
    DEFAULT_PORT,
    DeviceCodeExpiredError,
    LoginCancelledError,
    LoginError,
    LoginStartError,
    ServerOptions,
)
from authflow.login.device_code import DeviceCodeLogin
from authflow.login.server import LoginServer, run_login_server
from authflow.onboarding.state import (
    TERMINAL_STATES,
    ApiKeyConfigured,
    ApiKeyEntry,
    Authenticated,
    BrowserFlowPending,
    BrowserFlowSucceeded,
    DeviceCodePending,
    PickMode,
    SignInState,
    SignInStateCell,
)

logger = logging.getLogger(__name__)

LoginServerFactory = Callable[[ServerOptions, CredentialStore], LoginServer]

_MODIFIER_PREFIXES = ("ctrl+", "alt+", "super+", "meta+")


class SignInOption(str, Enum):
    CHATGPT = "chatgpt"
    DEVICE_CODE = "device_code"
    API_KEY = "api_key"


class StepState(str, Enum):
    """Progress of the sign-in step as seen by the onboarding sequence."""

    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


def api_key_disabled_message() -> str:
    return tr("API key login is disabled.", "API key 登录已禁用。")


def chatgpt_disabled_message() -> str:
    return tr("ChatGPT login is disabled.", "ChatGPT 登录已禁用。")


def api_key_empty_message() -> str:
    return tr("API key cannot be empty", "API key 不能为空")


def sign_in_failed_message() -> str:
    return tr("Sign-in failed. Please try again.", "登录失败，请重试。")


def device_code_expired_message() -> str:
    return tr(
        "The device code expired. Please start again.",
        "设备码已过期，请重新开始。",
    )


def sign_in_start_failed_message(detail: str) -> str:
    return tr("Could not start sign-in: ", "无法开始登录：") + detail


@dataclass(frozen=True, slots=True)
class SignInSnapshot:
    """Read-only view handed to the renderer."""

    state: SignInState
    highlighted: SignInOption
    error: str | None
    displayed_options: tuple[SignInOption, ...]
    selectable_options: tuple[SignInOption, ...]
    chatgpt_login_allowed: bool
    api_login_allowed: bool


class SignInFlow:
    """Drives one sign-in attempt for a single UI session.

    Methods that start a ChatGPT flow spawn asyncio tasks and therefore must
    be called from the running UI event loop.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        login_status: LoginStatus | None = None,
        forced_login_method: ForcedLoginMethod | None = None,
        forced_chatgpt_workspace_id: str | None = None,
        login_port: int = DEFAULT_PORT,
        open_browser: bool = True,
        request_redraw: Callable[[], None] | None = None,
        login_server_factory: LoginServerFactory = run_login_server,
        device_code_login: DeviceCodeLogin | None = None,
    ):
        self._store = store
        self.login_status = login_status if login_status is not None else LoginStatus.from_store(store)
        self.forced_login_method = forced_login_method
        self.forced_chatgpt_workspace_id = forced_chatgpt_workspace_id
        self.login_port = login_port
        self.open_browser = open_browser
        self.request_redraw = request_redraw
        self._login_server_factory = login_server_factory
        self._device_code_login = device_code_login or DeviceCodeLogin(store)
        self._cell = SignInStateCell(PickMode())
        self._task: asyncio.Task[Any] | None = None
        self.error: str | None = None
        selectable = self.selectable_options()
        self.highlighted = selectable[0] if selectable else SignInOption.CHATGPT

    @classmethod
    def from_config(
        cls,
        store: CredentialStore | None = None,
        request_redraw: Callable[[], None] | None = None,
    ) -> SignInFlow:
        return cls(
            store or CredentialStore(Config.home_dir()),
            forced_login_method=Config.get_forced_login_method(),
            forced_chatgpt_workspace_id=Config.get_forced_workspace_id(),
            login_port=Config.get_login_port(),
            open_browser=Config.should_open_browser(),
            request_redraw=request_redraw,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> SignInState:
        return self._cell.read()

    @property
    def background_task(self) -> asyncio.Task[Any] | None:
        return self._task

    def is_api_login_allowed(self) -> bool:
        return self.forced_login_method is not ForcedLoginMethod.CHATGPT

    def is_chatgpt_login_allowed(self) -> bool:
        return self.forced_login_method is not ForcedLoginMethod.API

    def displayed_options(self) -> list[SignInOption]:
        # ChatGPT stays visible (marked disabled) so users see why it is missing.
        options = [SignInOption.CHATGPT]
        if self.is_chatgpt_login_allowed():
            options.append(SignInOption.DEVICE_CODE)
        if self.is_api_login_allowed():
            options.append(SignInOption.API_KEY)
        return options

    def selectable_options(self) -> list[SignInOption]:
        options: list[SignInOption] = []
        if self.is_chatgpt_login_allowed():
            options.extend([SignInOption.CHATGPT, SignInOption.DEVICE_CODE])
        if self.is_api_login_allowed():
            options.append(SignInOption.API_KEY)
        return options

    def snapshot(self) -> SignInSnapshot:
        return SignInSnapshot(
            state=self._cell.read(),
            highlighted=self.highlighted,
            error=self.error,
            displayed_options=tuple(self.displayed_options()),
            selectable_options=tuple(self.selectable_options()),
            chatgpt_login_allowed=self.is_chatgpt_login_allowed(),
            api_login_allowed=self.is_api_login_allowed(),
        )

    def get_step_state(self) -> StepState:
        if isinstance(self._cell.read(), TERMINAL_STATES):
            return StepState.COMPLETE
        return StepState.IN_PROGRESS

    def _redraw(self) -> None:
        if self.request_redraw is not None:
            self.request_redraw()

    # ------------------------------------------------------------------
    # Foreground input
    # ------------------------------------------------------------------

    def handle_key(self, key: str, character: str | None = None) -> bool:
        """Apply a key press; returns False when the key means nothing here."""
        if isinstance(self._cell.read(), ApiKeyEntry):
            return self._handle_api_key_entry_key(key, character)

        if key in ("up", "k"):
            self.move_highlight(-1)
        elif key in ("down", "j"):
            self.move_highlight(1)
        elif key in ("1", "2", "3"):
            if isinstance(self._cell.read(), PickMode):
                self.select_option_by_index(int(key) - 1)
        elif key == "enter":
            self.confirm()
        elif key == "escape":
            self.cancel()
        else:
            return False
        return True

    def handle_paste(self, pasted: str) -> bool:
        trimmed = pasted.strip()
        if not trimmed:
            return False

        def _paste(current: SignInState) -> SignInState | None:
            if not isinstance(current, ApiKeyEntry):
                return None
            if current.prefilled_from_env:
                return ApiKeyEntry(buffer=trimmed, prefilled_from_env=False)
            return ApiKeyEntry(buffer=current.buffer + trimmed, prefilled_from_env=False)

        if not self._cell.modify(_paste):
            return False
        self.error = None
        self._redraw()
        return True

    def move_highlight(self, delta: int) -> None:
        options = self.selectable_options()
        if not options:
            return
        try:
            current_index = options.index(self.highlighted)
        except ValueError:
            current_index = 0
        self.highlighted = options[(current_index + delta) % len(options)]
        self._redraw()

    def select_option_by_index(self, index: int) -> None:
        options = self.displayed_options()
        if 0 <= index < len(options):
            self.select_option(options[index])

    def select_option(self, option: SignInOption) -> None:
        if option is SignInOption.API_KEY:
            if self.is_api_login_allowed():
                self.start_api_key_entry()
            else:
                self._reject_option(api_key_disabled_message())
            return

        if not self.is_chatgpt_login_allowed():
            self._reject_option(chatgpt_disabled_message())
            return
        if option is SignInOption.CHATGPT:
            self.start_chatgpt_login()
        else:
            self.start_device_code_login()

    def _reject_option(self, message: str) -> None:
        logger.info("Rejected disallowed sign-in option: %s", message)
        selectable = self.selectable_options()
        self.highlighted = selectable[0] if selectable else SignInOption.CHATGPT
        self.error = message
        self._cell.transition(PickMode())
        self._redraw()

    def confirm(self) -> None:
        state = self._cell.read()
        if isinstance(state, PickMode):
            self.select_option(self.highlighted)
        elif isinstance(state, BrowserFlowSucceeded):
            if self._cell.transition_if(
                lambda current: isinstance(current, BrowserFlowSucceeded), Authenticated()
            ):
                self._redraw()

    def cancel(self) -> None:
        """Abandon a running ChatGPT flow; the replaced state releases its task."""

        def _leave(current: SignInState) -> SignInState | None:
            if isinstance(current, (BrowserFlowPending, DeviceCodePending)):
                return PickMode()
            return None

        if self._cell.modify(_leave):
            logger.info("Sign-in flow cancelled by user")
            self.error = None
            self._redraw()

    # ------------------------------------------------------------------
    # ChatGPT flows
    # ------------------------------------------------------------------

    def _server_options(self) -> ServerOptions:
        return ServerOptions(
            authflow_home=self._store.home,
            client_id=CLIENT_ID,
            forced_chatgpt_workspace_id=self.forced_chatgpt_workspace_id,
            port=self.login_port,
            open_browser=self.open_browser,
        )

    def _handle_existing_chatgpt_login(self) -> bool:
        if self.login_status.auth_mode is AuthMode.CHATGPT:
            self._cell.transition(Authenticated())
            self._redraw()
            return True
        return False

    def _spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        on_done: Callable[[asyncio.Task[Any]], None],
    ) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._task = task
        task.add_done_callback(on_done)

    def start_chatgpt_login(self) -> None:
        """Start the browser flow, or skip straight to success when already signed in."""
        if self._handle_existing_chatgpt_login():
            return

        self.error = None
        try:
            server = self._login_server_factory(self._server_options(), self._store)
        except LoginError as exc:
            logger.warning("Could not start browser login: %s", exc.message)
            self._cell.transition(PickMode())
            self.error = self._describe_login_error(exc)
            self._redraw()
            return

        pending = BrowserFlowPending(auth_url=server.auth_url, cancel_handle=server.cancel_handle())
        if not self._cell.transition(pending):
            pending.release(None)
            return
        logger.info("Browser login started")
        self._redraw()
        self._spawn(
            server.wait_until_done(),
            functools.partial(self._finish_chatgpt_login, lambda current: current is pending),
        )

    def start_device_code_login(self) -> None:
        if self._handle_existing_chatgpt_login():
            return

        self.error = None
        cancel = asyncio.Event()
        if not self._cell.transition(DeviceCodePending(device_code=None, cancel=cancel)):
            return
        logger.info("Device code login started")
        self._redraw()

        def _owns(current: SignInState) -> bool:
            return isinstance(current, DeviceCodePending) and current.cancel is cancel

        self._spawn(
            self._run_device_code_login(self._server_options(), cancel, _owns),
            functools.partial(self._finish_chatgpt_login, _owns),
        )

    async def _run_device_code_login(
        self,
        opts: ServerOptions,
        cancel: asyncio.Event,
        owns: Callable[[SignInState], bool],
    ) -> None:
        device_code = await self._device_code_login.request_device_code(opts)
        if not self._cell.transition_if(
            owns, DeviceCodePending(device_code=device_code, cancel=cancel)
        ):
            raise LoginCancelledError()
        self._redraw()
        await self._device_code_login.complete(opts, device_code, cancel)

    def _finish_chatgpt_login(
        self,
        owns: Callable[[SignInState], bool],
        task: asyncio.Task[Any],
    ) -> None:
        if self._task is task:
            self._task = None
        error = LoginCancelledError() if task.cancelled() else task.exception()

        if error is None:
            self._store.reload()
            self.login_status = LoginStatus(auth_mode=AuthMode.CHATGPT)
            if self._cell.transition_if(owns, BrowserFlowSucceeded()):
                self.error = None
                logger.info("ChatGPT sign-in succeeded")
        elif isinstance(error, LoginCancelledError):
            self._cell.transition_if(owns, PickMode())
        elif isinstance(error, LoginError):
            logger.warning("ChatGPT sign-in failed: %s", error.message)
            if self._cell.transition_if(owns, PickMode()):
                self.error = self._describe_login_error(error)
        else:
            logger.error("ChatGPT sign-in crashed", exc_info=error)
            if self._cell.transition_if(owns, PickMode()):
                self.error = sign_in_failed_message()
        self._redraw()

    @staticmethod
    def _describe_login_error(error: LoginError) -> str:
        if isinstance(error, LoginStartError):
            return sign_in_start_failed_message(error.message)
        if isinstance(error, DeviceCodeExpiredError):
            return device_code_expired_message()
        return sign_in_failed_message()

    # ------------------------------------------------------------------
    # API key entry
    # ------------------------------------------------------------------

    def start_api_key_entry(self) -> None:
        if not self.is_api_login_allowed():
            self._reject_option(api_key_disabled_message())
            return

        self.error = None
        prefill = self._store.read_env_prefill()

        def _enter(current: SignInState) -> SignInState | None:
            if isinstance(current, ApiKeyEntry):
                if current.buffer or prefill is None:
                    return None
                return ApiKeyEntry(buffer=prefill, prefilled_from_env=True)
            return ApiKeyEntry(buffer=prefill or "", prefilled_from_env=prefill is not None)

        self._cell.modify(_enter)
        self._redraw()

    def _handle_api_key_entry_key(self, key: str, character: str | None) -> bool:
        if key == "escape":
            if self._cell.transition_if(
                lambda current: isinstance(current, ApiKeyEntry), PickMode()
            ):
                self.error = None
        elif key == "enter":
            self.submit_api_key()
            return True
        elif key == "backspace":
            self._cell.modify(_delete_backward)
            self.error = None
        elif (
            character
            and len(character) == 1
            and character.isprintable()
            and not key.startswith(_MODIFIER_PREFIXES)
        ):
            self._cell.modify(functools.partial(_append_character, character))
            self.error = None
        else:
            return False
        self._redraw()
        return True

    def submit_api_key(self) -> None:
        state = self._cell.read()
        if not isinstance(state, ApiKeyEntry):
            return
        trimmed = state.buffer.strip()
        if not trimmed:
            self.error = api_key_empty_message()
            self._redraw()
            return
        self.save_api_key(trimmed)

    def save_api_key(self, api_key: str) -> None:
        if not self.is_api_login_allowed():
            self._reject_option(api_key_disabled_message())
            return

        try:
            self._store.write_api_key(api_key)
        except CredentialStoreError as exc:
            logger.warning("Failed to save API key: %s", exc.message)
            self.error = f"{tr('Failed to save API key:', '保存 API key 失败：')} {exc.message}"

            def _restore(current: SignInState) -> SignInState:
                if isinstance(current, ApiKeyEntry):
                    return ApiKeyEntry(buffer=current.buffer or api_key, prefilled_from_env=False)
                return ApiKeyEntry(buffer=api_key, prefilled_from_env=False)

            self._cell.modify(_restore)
        else:
            self.error = None
            self.login_status = LoginStatus(auth_mode=AuthMode.API_KEY)
            self._store.reload()
            self._cell.transition(ApiKeyConfigured())
            logger.info("API key configured")
        self._redraw()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """End the UI session: release the live flow and stop its task."""
        self._cell.close()
        task = self._task
        if task is not None and not task.done():
            task.cancel()


def _delete_backward(current: SignInState) -> SignInState | None:
    if not isinstance(current, ApiKeyEntry):
        return None
    if current.prefilled_from_env:
        # The env value is one suggestion; backspace discards it whole.
        return ApiKeyEntry(buffer="", prefilled_from_env=False)
    return ApiKeyEntry(buffer=current.buffer[:-1], prefilled_from_env=False)


def _append_character(character: str, current: SignInState) -> SignInState | None:
    if not isinstance(current, ApiKeyEntry):
        return None
    if current.prefilled_from_env:
        return ApiKeyEntry(buffer=character, prefilled_from_env=False)
    return ApiKeyEntry(buffer=current.buffer + character, prefilled_from_env=False)
