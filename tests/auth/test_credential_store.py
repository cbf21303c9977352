import json
import os
import stat

import pytest

from authflow.auth.credentials import (
    AuthMode,
    CredentialStore,
    CredentialStoreError,
    LoginStatus,
)
from authflow.login.base import TokenData


@pytest.fixture
def store(tmp_path) -> CredentialStore:
    return CredentialStore(tmp_path / "home")


def test_empty_store_is_not_authenticated(store) -> None:
    assert store.load() is None
    assert store.auth_mode() is None
    assert LoginStatus.from_store(store).is_authenticated is False


def test_write_api_key_record_shape(store) -> None:
    store.write_api_key("sk-test")

    saved = json.loads(store.auth_file.read_text(encoding="utf-8"))
    assert saved == {"OPENAI_API_KEY": "sk-test", "tokens": None, "last_refresh": None}
    assert store.auth_mode() is AuthMode.API_KEY


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions only")
def test_credential_file_is_owner_only(store) -> None:
    store.write_api_key("sk-test")

    mode = stat.S_IMODE(store.auth_file.stat().st_mode)
    assert mode == 0o600


def test_save_tokens_switches_to_chatgpt_mode(store) -> None:
    store.write_api_key("sk-old")
    assert store.auth_mode() is AuthMode.API_KEY

    store.save_tokens(TokenData(access_token="at", refresh_token="rt", account_id="acct_1"))
    # Cached until reload().
    assert store.auth_mode() is AuthMode.API_KEY
    store.reload()

    assert store.auth_mode() is AuthMode.CHATGPT
    saved = json.loads(store.auth_file.read_text(encoding="utf-8"))
    assert saved["OPENAI_API_KEY"] is None
    assert saved["tokens"]["account_id"] == "acct_1"
    assert isinstance(saved["last_refresh"], str)


def test_unreadable_file_is_treated_as_signed_out(store) -> None:
    store.home.mkdir(parents=True)
    store.auth_file.write_text("{broken", encoding="utf-8")

    assert store.auth_mode() is None


def test_write_failure_is_wrapped(tmp_path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = CredentialStore(blocker)

    with pytest.raises(CredentialStoreError) as exc_info:
        store.write_api_key("sk-test")
    assert exc_info.value.path == blocker / "auth.json"


def test_logout_removes_file(store) -> None:
    assert store.logout() is False
    store.write_api_key("sk-test")
    store.load()

    assert store.logout() is True
    assert not store.auth_file.exists()
    assert store.auth_mode() is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [("  sk-env  ", "sk-env"), ("", None), ("   ", None)],
)
def test_env_prefill(monkeypatch, value, expected) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", value)
    assert CredentialStore.read_env_prefill() == expected


def test_env_prefill_missing(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert CredentialStore.read_env_prefill() is None


def test_describe_reports_account(store) -> None:
    store.save_tokens(TokenData(access_token="at", account_id="acct_9"))

    info = store.describe()
    assert info["auth_mode"] is AuthMode.CHATGPT
    assert info["account_id"] == "acct_9"
    assert info["path"] == store.auth_file
