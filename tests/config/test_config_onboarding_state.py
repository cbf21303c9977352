import json

from authflow.config import Config


def _configure_temp_config_dir(monkeypatch, tmp_path):
    config_root = tmp_path / ".authflow"
    monkeypatch.setattr(Config, "config_dir", classmethod(lambda _cls: config_root))
    monkeypatch.setattr(Config, "_config_file_override", None)
    return config_root


def test_onboarding_state_defaults(monkeypatch, tmp_path) -> None:
    _configure_temp_config_dir(monkeypatch, tmp_path)

    state = Config.get_onboarding_state()

    assert state == {
        "version": 1,
        "state": "pending",
        "completed_at": None,
        "last_seen_at": None,
        "skip_count": 0,
    }
    assert Config.is_onboarding_required() is True


def test_mark_onboarding_completed_writes_ui_section(monkeypatch, tmp_path) -> None:
    config_root = _configure_temp_config_dir(monkeypatch, tmp_path)

    assert Config.mark_onboarding_completed() is True
    assert Config.is_onboarding_required() is False

    saved = json.loads((config_root / "cli-config.json").read_text(encoding="utf-8"))
    onboarding = saved["ui"]["onboarding"]
    assert onboarding["state"] == "completed"
    assert isinstance(onboarding["completed_at"], str)
    assert onboarding["completed_at"] == onboarding["last_seen_at"]


def test_skipping_keeps_sign_in_pending_and_counts(monkeypatch, tmp_path) -> None:
    _configure_temp_config_dir(monkeypatch, tmp_path)

    Config.mark_onboarding_skipped()
    Config.mark_onboarding_skipped()

    state = Config.get_onboarding_state()
    assert state["state"] == "skipped"
    assert state["skip_count"] == 2
    assert Config.is_onboarding_required() is True


def test_completion_after_skips_preserves_skip_count(monkeypatch, tmp_path) -> None:
    _configure_temp_config_dir(monkeypatch, tmp_path)

    Config.mark_onboarding_skipped()
    Config.mark_onboarding_completed()

    assert Config.get_onboarding_state()["skip_count"] == 1


def test_newer_onboarding_version_requires_rerun(monkeypatch, tmp_path) -> None:
    _configure_temp_config_dir(monkeypatch, tmp_path)
    Config.mark_onboarding_completed(version=1)

    assert Config.is_onboarding_required(version=2) is True


def test_corrupt_config_file_falls_back_to_defaults(monkeypatch, tmp_path) -> None:
    config_root = _configure_temp_config_dir(monkeypatch, tmp_path)
    config_root.mkdir(parents=True)
    (config_root / "cli-config.json").write_text("{not json", encoding="utf-8")

    assert Config.get_onboarding_state()["state"] == "pending"
