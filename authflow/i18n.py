"""
Minimal two-language string selection for user-facing text.
"""

import os

from authflow.config import Config


_ZH_CODES = {"zh", "zh-cn", "zh_cn", "zh-hans", "zh_hans"}
_EN_CODES = {"en", "en-us", "en_us"}
_LOCALE_VARS = ("LC_ALL", "LC_MESSAGES", "LANG", "LANGUAGE")


def use_zh_cn() -> bool:
    explicit = Config.get("authflow_ui_lang")
    if explicit is not None:
        value = explicit.strip().lower()
        if value in _ZH_CODES:
            return True
        if value in _EN_CODES:
            return False

    return any("zh" in (os.environ.get(key) or "").lower() for key in _LOCALE_VARS)


def tr(en: str, zh_cn: str) -> str:
    """Return the string matching the active UI language."""
    return zh_cn if use_zh_cn() else en
