import pytest

from authflow.i18n import tr, use_zh_cn


@pytest.fixture(autouse=True)
def _clean_locale(monkeypatch):
    for name in ("AUTHFLOW_UI_LANG", "LC_ALL", "LC_MESSAGES", "LANG", "LANGUAGE"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_to_english() -> None:
    assert use_zh_cn() is False
    assert tr("API key cannot be empty", "API key 不能为空") == "API key cannot be empty"


def test_locale_selects_chinese(monkeypatch) -> None:
    monkeypatch.setenv("LANG", "zh_CN.UTF-8")
    assert tr("API key cannot be empty", "API key 不能为空") == "API key 不能为空"


def test_explicit_setting_overrides_locale(monkeypatch) -> None:
    monkeypatch.setenv("LANG", "zh_CN.UTF-8")
    monkeypatch.setenv("AUTHFLOW_UI_LANG", "en")
    assert use_zh_cn() is False

    monkeypatch.setenv("LANG", "en_US.UTF-8")
    monkeypatch.setenv("AUTHFLOW_UI_LANG", "zh-CN")
    assert use_zh_cn() is True
