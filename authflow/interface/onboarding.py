from dataclasses import dataclass
from typing import Any, ClassVar

from rich.style import Style
from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.widgets import Static

from authflow.i18n import tr
from authflow.onboarding.auth import SignInFlow, SignInOption, SignInSnapshot, StepState
from authflow.onboarding.state import (
    ApiKeyConfigured,
    ApiKeyEntry,
    Authenticated,
    BrowserFlowPending,
    BrowserFlowSucceeded,
    DeviceCodePending,
    PickMode,
)


@dataclass(slots=True)
class OnboardingResult:
    action: str


@dataclass(frozen=True, slots=True)
class _Palette:
    accent: str
    text: str
    dim: str
    status: str
    error: str
    success: str


_PALETTE = _Palette(
    accent="#22d3ee",
    text="#d6f9ff",
    dim="#6b7f85",
    status="#7cb9c4",
    error="#f87171",
    success="#22c55e",
)

_SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")


def _option_label(option: SignInOption) -> str:
    if option is SignInOption.CHATGPT:
        return tr("Sign in with ChatGPT", "使用 ChatGPT 登录")
    if option is SignInOption.DEVICE_CODE:
        return tr("Sign in with a device code", "使用设备码登录")
    return tr("Provide your own API key", "使用自己的 API key")


def _option_hint(option: SignInOption) -> str:
    if option is SignInOption.CHATGPT:
        return tr("usage included with Plus, Pro and Team plans", "Plus、Pro 和 Team 计划包含用量")
    if option is SignInOption.DEVICE_CODE:
        return tr("for machines without a local browser", "适用于没有本地浏览器的机器")
    return tr("pay for what you use", "按用量付费")


def _mask_key(buffer: str) -> str:
    if len(buffer) <= 8:
        return "*" * len(buffer)
    return f"{buffer[:3]}{'*' * (len(buffer) - 7)}{buffer[-4:]}"


class OnboardingApp(App[OnboardingResult | None]):  # type: ignore[misc]
    CSS_PATH = "assets/onboarding_styles.tcss"

    BINDINGS: ClassVar[list[Binding]] = [  # type: ignore[assignment]
        Binding("ctrl+c", "quit_app", "Quit", show=False, priority=True),
        Binding("ctrl+q", "quit_app", "Quit", show=False),
    ]

    def __init__(self, flow: SignInFlow | None = None) -> None:
        super().__init__()
        self._flow = flow
        self._animation_step = 0
        self._spinner_timer: Any | None = None

    @property
    def flow(self) -> SignInFlow:
        if self._flow is None:
            self._flow = SignInFlow.from_config(request_redraw=self.request_redraw)
        return self._flow

    def request_redraw(self) -> None:
        self.call_later(self._render_panel)

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("", id="onboarding_brand"),
            Static("", id="onboarding_title"),
            Static("", id="onboarding_body"),
            Static("", id="onboarding_status"),
            Static("", id="onboarding_hint"),
            id="onboarding_root",
        )

    def on_mount(self) -> None:
        self.title = "authflow sign-in"
        if self.flow.request_redraw is None:
            self.flow.request_redraw = self.request_redraw
        self._spinner_timer = self.set_interval(0.1, self._tick_spinner)
        self._render_panel()

    def on_unmount(self) -> None:
        if self._spinner_timer is not None:
            self._spinner_timer.stop()
        self.flow.close()

    def _tick_spinner(self) -> None:
        if isinstance(self.flow.state, (BrowserFlowPending, DeviceCodePending)):
            self._animation_step += 1
            self._render_panel()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def on_key(self, event: events.Key) -> None:
        state = self.flow.state
        if event.key == "enter" and self.flow.get_step_state() is StepState.COMPLETE:
            event.stop()
            self.exit(OnboardingResult(action="completed"))
            return
        if event.key == "escape" and isinstance(state, PickMode):
            event.stop()
            self.exit(OnboardingResult(action="exit"))
            return
        if self.flow.handle_key(event.key, event.character):
            event.stop()

    def on_paste(self, event: events.Paste) -> None:
        if self.flow.handle_paste(event.text):
            event.stop()

    def action_quit_app(self) -> None:
        self.exit(OnboardingResult(action="exit"))

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _build_brand_text(self) -> Text:
        brand = Text()
        brand.append(tr("Welcome to ", "欢迎使用 "), style=Style(color=_PALETTE.dim))
        brand.append("AUTHFLOW", style=Style(color=_PALETTE.accent, bold=True))
        return brand

    def _spinner(self) -> str:
        return _SPINNER_FRAMES[self._animation_step % len(_SPINNER_FRAMES)]

    def _render_panel(self) -> None:
        snapshot = self.flow.snapshot()
        title, body, hint = self._build_view(snapshot)
        self.query_one("#onboarding_brand", Static).update(self._build_brand_text())
        self.query_one("#onboarding_title", Static).update(
            Text(title, style=Style(color=_PALETTE.accent, bold=True))
        )
        self.query_one("#onboarding_body", Static).update(body if body else " ")
        self.query_one("#onboarding_status", Static).update(
            Text(snapshot.error or " ", style=Style(color=_PALETTE.error))
        )
        self.query_one("#onboarding_hint", Static).update(
            Text(hint or " ", style=Style(color=_PALETTE.dim, italic=True))
        )

    def _build_view(self, snapshot: SignInSnapshot) -> tuple[str, Text, str]:  # noqa: PLR0911
        state = snapshot.state
        if isinstance(state, PickMode):
            return (
                tr("Sign in", "登录"),
                self._build_option_menu(snapshot),
                tr("↑/↓ or 1-3 to choose  enter to continue  esc to quit", "↑/↓ 或 1-3 选择  回车继续  esc 退出"),
            )
        if isinstance(state, BrowserFlowPending):
            body = Text()
            body.append(f"{self._spinner()} ", style=Style(color=_PALETTE.accent))
            body.append(
                tr("Finish signing in via your browser", "请在浏览器中完成登录"),
                style=Style(color=_PALETTE.text),
            )
            body.append("\n\n")
            body.append(
                tr("If the link doesn't open automatically, open this one:", "如果链接没有自动打开，请访问："),
                style=Style(color=_PALETTE.dim),
            )
            body.append("\n")
            body.append(state.auth_url, style=Style(color=_PALETTE.accent, underline=True))
            return (tr("Browser sign-in", "浏览器登录"), body, tr("esc to cancel", "esc 取消"))
        if isinstance(state, DeviceCodePending):
            body = Text()
            body.append(f"{self._spinner()} ", style=Style(color=_PALETTE.accent))
            if state.device_code is None:
                body.append(
                    tr("Requesting a device code...", "正在请求设备码..."),
                    style=Style(color=_PALETTE.text),
                )
            else:
                body.append(tr("Open ", "打开 "), style=Style(color=_PALETTE.text))
                body.append(
                    state.device_code.verification_url,
                    style=Style(color=_PALETTE.accent, underline=True),
                )
                body.append(tr(" and enter this code:", " 并输入以下代码："), style=Style(color=_PALETTE.text))
                body.append("\n\n    ")
                body.append(state.device_code.user_code, style=Style(color=_PALETTE.accent, bold=True))
            return (tr("Device code sign-in", "设备码登录"), body, tr("esc to cancel", "esc 取消"))
        if isinstance(state, BrowserFlowSucceeded):
            body = Text(
                tr("✓ Signed in with your ChatGPT account", "✓ 已使用 ChatGPT 账户登录"),
                style=Style(color=_PALETTE.success, bold=True),
            )
            return (tr("Signed in", "已登录"), body, tr("enter to continue", "回车继续"))
        if isinstance(state, Authenticated):
            body = Text(
                tr("✓ Signed in with ChatGPT", "✓ 已通过 ChatGPT 登录"),
                style=Style(color=_PALETTE.success, bold=True),
            )
            return (tr("Signed in", "已登录"), body, tr("enter to finish", "回车完成"))
        if isinstance(state, ApiKeyEntry):
            return (
                tr("API key", "API key"),
                self._build_api_key_body(state),
                tr("paste or type your key  enter to save  esc to go back", "粘贴或输入 key  回车保存  esc 返回"),
            )
        if isinstance(state, ApiKeyConfigured):
            body = Text(
                tr("✓ API key configured", "✓ API key 已配置"),
                style=Style(color=_PALETTE.success, bold=True),
            )
            return (tr("API key", "API key"), body, tr("enter to finish", "回车完成"))
        return ("", Text(), "")

    def _build_option_menu(self, snapshot: SignInSnapshot) -> Text:
        menu_text = Text()
        for idx, option in enumerate(snapshot.displayed_options):
            selectable = option in snapshot.selectable_options
            selected = selectable and option is snapshot.highlighted
            label = f"{idx + 1}. {_option_label(option)}"
            if not selectable:
                menu_text.append("  ", style=Style(color=_PALETTE.dim))
                menu_text.append(label, style=Style(color=_PALETTE.dim, strike=True))
                menu_text.append(f"  {tr('disabled', '已禁用')}", style=Style(color=_PALETTE.dim))
            elif selected:
                menu_text.append("> ", style=Style(color=_PALETTE.accent, bold=True))
                menu_text.append(label, style=Style(color=_PALETTE.accent, bold=True))
                menu_text.append(f"  {_option_hint(option)}", style=Style(color=_PALETTE.text))
            else:
                menu_text.append("  ", style=Style(color=_PALETTE.text))
                menu_text.append(label, style=Style(color=_PALETTE.text))
                menu_text.append(f"  {_option_hint(option)}", style=Style(color=_PALETTE.dim))
            if idx < len(snapshot.displayed_options) - 1:
                menu_text.append("\n")
        return menu_text

    def _build_api_key_body(self, state: ApiKeyEntry) -> Text:
        body = Text()
        if state.prefilled_from_env:
            body.append(
                tr(
                    "Detected OPENAI_API_KEY in your environment. Press enter to use it.",
                    "检测到环境变量 OPENAI_API_KEY，按回车使用。",
                ),
                style=Style(color=_PALETTE.status),
            )
            body.append("\n\n")
        body.append("> ", style=Style(color=_PALETTE.accent, bold=True))
        if state.buffer:
            body.append(_mask_key(state.buffer), style=Style(color=_PALETTE.text))
        else:
            body.append("sk-...", style=Style(color=_PALETTE.dim))
        body.append("▏", style=Style(color=_PALETTE.accent))
        return body


async def run_onboarding(flow: SignInFlow | None = None) -> OnboardingResult | None:
    app = OnboardingApp(flow)
    return await app.run_async()
