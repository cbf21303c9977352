import json
import os

import pytest

from authflow.config import Config, ForcedLoginMethod, apply_saved_config


@pytest.fixture
def config_root(monkeypatch, tmp_path):
    root = tmp_path / ".authflow"
    monkeypatch.setattr(Config, "config_dir", classmethod(lambda _cls: root))
    monkeypatch.setattr(Config, "_config_file_override", None)
    # apply_saved writes os.environ directly; give each test its own copy.
    monkeypatch.setattr(os, "environ", os.environ.copy())
    for name in Config.tracked_vars():
        monkeypatch.delenv(name, raising=False)
    return root


class TestForcedLoginMethod:
    def test_unset_means_no_restriction(self, config_root) -> None:
        assert Config.get_forced_login_method() is None

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("chatgpt", ForcedLoginMethod.CHATGPT),
            ("API", ForcedLoginMethod.API),
            ("  api  ", ForcedLoginMethod.API),
        ],
    )
    def test_parses_known_values(self, config_root, monkeypatch, raw, expected) -> None:
        monkeypatch.setenv("FORCED_LOGIN_METHOD", raw)
        assert Config.get_forced_login_method() is expected

    def test_unknown_value_is_ignored_with_warning(self, config_root, monkeypatch, caplog) -> None:
        monkeypatch.setenv("FORCED_LOGIN_METHOD", "sso")
        with caplog.at_level("WARNING", logger="authflow.config.config"):
            assert Config.get_forced_login_method() is None
        assert "sso" in caplog.text


class TestSignInKnobs:
    def test_workspace_id_blank_is_none(self, config_root, monkeypatch) -> None:
        monkeypatch.setenv("FORCED_CHATGPT_WORKSPACE_ID", "   ")
        assert Config.get_forced_workspace_id() is None
        monkeypatch.setenv("FORCED_CHATGPT_WORKSPACE_ID", "ws_123")
        assert Config.get_forced_workspace_id() == "ws_123"

    def test_login_port_defaults_and_rejects_garbage(self, config_root, monkeypatch) -> None:
        assert Config.get_login_port() == 1455
        monkeypatch.setenv("AUTHFLOW_LOGIN_PORT", "8123")
        assert Config.get_login_port() == 8123
        monkeypatch.setenv("AUTHFLOW_LOGIN_PORT", "not-a-port")
        assert Config.get_login_port() == 1455
        monkeypatch.setenv("AUTHFLOW_LOGIN_PORT", "70000")
        assert Config.get_login_port() == 1455

    def test_open_browser_switch(self, config_root, monkeypatch) -> None:
        assert Config.should_open_browser() is True
        monkeypatch.setenv("AUTHFLOW_OPEN_BROWSER", "off")
        assert Config.should_open_browser() is False

    def test_home_dir_override(self, config_root, monkeypatch, tmp_path) -> None:
        assert Config.home_dir() == config_root
        monkeypatch.setenv("AUTHFLOW_HOME", str(tmp_path / "elsewhere"))
        assert Config.home_dir() == tmp_path / "elsewhere"


class TestSavedEnvironment:
    def test_apply_saved_does_not_override_existing_env(self, config_root, monkeypatch) -> None:
        config_root.mkdir(parents=True)
        (config_root / "cli-config.json").write_text(
            json.dumps({"env": {"FORCED_LOGIN_METHOD": "api", "AUTHFLOW_LOGIN_PORT": "9000"}}),
            encoding="utf-8",
        )
        monkeypatch.setenv("AUTHFLOW_LOGIN_PORT", "9100")

        applied = apply_saved_config()

        assert applied == {"FORCED_LOGIN_METHOD": "api"}
        assert Config.get_forced_login_method() is ForcedLoginMethod.API
        assert Config.get_login_port() == 9100

    def test_apply_saved_force_overrides(self, config_root, monkeypatch) -> None:
        config_root.mkdir(parents=True)
        (config_root / "cli-config.json").write_text(
            json.dumps({"env": {"AUTHFLOW_LOGIN_PORT": "9000"}}), encoding="utf-8"
        )
        monkeypatch.setenv("AUTHFLOW_LOGIN_PORT", "9100")

        apply_saved_config(force=True)

        assert Config.get_login_port() == 9000
