import io
import logging
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from authflow.auth.credentials import CredentialStore
from authflow.interface import main as interface_main
from authflow.login.base import TokenData


@pytest.fixture
def store(tmp_path) -> CredentialStore:
    return CredentialStore(tmp_path)


def test_parse_arguments_login_flags() -> None:
    args = interface_main.parse_arguments(["login", "--no-browser", "--port", "8123"])
    assert args.command == "login"
    assert args.no_browser is True
    assert args.port == 8123
    assert args.with_api_key is False


def test_status_when_signed_out(store, capsys) -> None:
    assert interface_main.cmd_status(store) == 1
    assert "Not signed in" in capsys.readouterr().out


def test_status_shows_chatgpt_account(store, capsys) -> None:
    store.save_tokens(TokenData(access_token="at", account_id="acct_42"))

    assert interface_main.cmd_status(store) == 0
    out = capsys.readouterr().out
    assert "ChatGPT" in out
    assert "acct_42" in out


def test_logout_removes_credentials(store, capsys) -> None:
    store.write_api_key("sk-test")

    assert interface_main.cmd_logout(store) == 0
    assert "Logged out" in capsys.readouterr().out
    assert not store.auth_file.exists()


def test_login_with_api_key_reads_stdin(store, monkeypatch) -> None:
    monkeypatch.delenv("FORCED_LOGIN_METHOD", raising=False)
    monkeypatch.setattr("sys.stdin", io.StringIO("  sk-piped\n"))

    assert interface_main.cmd_login_with_api_key(store) == 0
    assert store.load()["OPENAI_API_KEY"] == "sk-piped"


def test_login_with_api_key_respects_forced_chatgpt(store, monkeypatch) -> None:
    monkeypatch.setenv("FORCED_LOGIN_METHOD", "chatgpt")
    monkeypatch.setattr("sys.stdin", io.StringIO("sk-piped"))

    assert interface_main.cmd_login_with_api_key(store) == 1
    assert not store.auth_file.exists()


def test_login_marks_onboarding_completed(store) -> None:
    with (
        patch("authflow.interface.main.run_onboarding", new=lambda: "ignored"),
        patch(
            "authflow.interface.main.asyncio.run",
            return_value=SimpleNamespace(action="completed"),
        ),
        patch("authflow.interface.main.Config.mark_onboarding_completed") as mark_completed,
        patch("authflow.interface.main.Config.mark_onboarding_skipped") as mark_skipped,
        patch("authflow.interface.main.cmd_status", return_value=0),
    ):
        assert interface_main.cmd_login(store) == 0
        mark_completed.assert_called_once_with()
        mark_skipped.assert_not_called()


def test_login_exit_marks_onboarding_skipped(store) -> None:
    with (
        patch("authflow.interface.main.run_onboarding", new=lambda: "ignored"),
        patch(
            "authflow.interface.main.asyncio.run",
            return_value=SimpleNamespace(action="exit"),
        ),
        patch("authflow.interface.main.Config.mark_onboarding_completed") as mark_completed,
        patch("authflow.interface.main.Config.mark_onboarding_skipped") as mark_skipped,
    ):
        assert interface_main.cmd_login(store) == 1
        mark_skipped.assert_called_once_with()
        mark_completed.assert_not_called()


def test_bare_invocation_shows_status_once_onboarded(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("AUTHFLOW_HOME", str(tmp_path))
    with (
        patch("authflow.interface.main.Config.is_onboarding_required", return_value=False),
        patch("authflow.interface.main._ensure_file_logger"),
        patch("authflow.interface.main.cmd_status", return_value=0) as status,
        patch("authflow.interface.main.cmd_login") as login,
        pytest.raises(SystemExit) as exc_info,
    ):
        interface_main.main([])
    assert exc_info.value.code == 0
    status.assert_called_once()
    login.assert_not_called()


def test_file_logger_is_attached_once(tmp_path) -> None:
    authflow_logger = logging.getLogger("authflow")
    before = list(authflow_logger.handlers)
    try:
        interface_main._ensure_file_logger(tmp_path)
        interface_main._ensure_file_logger(tmp_path)

        added = [h for h in authflow_logger.handlers if h not in before]
        assert len(added) == 1
        assert isinstance(added[0], logging.FileHandler)
        assert (tmp_path / "log" / "authflow.log").exists()
    finally:
        for handler in authflow_logger.handlers[:]:
            if handler not in before:
                authflow_logger.removeHandler(handler)
                handler.close()
