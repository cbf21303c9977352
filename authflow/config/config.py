import contextlib
import json
import logging
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)


class ForcedLoginMethod(str, Enum):
    """Administrative restriction on which sign-in strategies are offered."""

    CHATGPT = "chatgpt"
    API = "api"


class Config:
    """Configuration Manager for authflow."""

    # Sign-in Configuration
    authflow_home = None
    forced_login_method = None
    forced_chatgpt_workspace_id = None
    authflow_login_port = "1455"
    authflow_open_browser = "true"

    # Interface Configuration
    authflow_ui_lang = None

    # Config file override (set via --config CLI arg)
    _config_file_override: Path | None = None
    _UI_SECTION_KEY = "ui"
    _ONBOARDING_SECTION_KEY = "onboarding"
    _ONBOARDING_STATE_KEY = "state"
    _ONBOARDING_VERSION_KEY = "version"
    _ONBOARDING_LAST_SEEN_AT_KEY = "last_seen_at"
    _ONBOARDING_COMPLETED_AT_KEY = "completed_at"
    _ONBOARDING_SKIP_COUNT_KEY = "skip_count"
    _ONBOARDING_STATE_PENDING = "pending"
    _ONBOARDING_STATE_SKIPPED = "skipped"
    _ONBOARDING_STATE_COMPLETED = "completed"
    _DEFAULT_ONBOARDING_VERSION = 1
    _DEFAULT_LOGIN_PORT = 1455

    @classmethod
    def _tracked_names(cls) -> list[str]:
        return [
            k
            for k, v in vars(cls).items()
            if not k.startswith("_") and k[0].islower() and (v is None or isinstance(v, str))
        ]

    @classmethod
    def tracked_vars(cls) -> list[str]:
        return [name.upper() for name in cls._tracked_names()]

    @classmethod
    def get(cls, name: str) -> str | None:
        env_name = name.upper()
        default = getattr(cls, name, None)
        return os.getenv(env_name, default)

    @classmethod
    def config_dir(cls) -> Path:
        return Path.home() / ".authflow"

    @classmethod
    def config_file(cls) -> Path:
        if cls._config_file_override is not None:
            return cls._config_file_override
        return cls.config_dir() / "cli-config.json"

    @classmethod
    def home_dir(cls) -> Path:
        """Directory holding auth.json and the log folder."""
        override = cls.get("authflow_home")
        if override:
            return Path(override).expanduser()
        return cls.config_dir()

    @classmethod
    def get_forced_login_method(cls) -> ForcedLoginMethod | None:
        raw = (cls.get("forced_login_method") or "").strip().lower()
        if not raw:
            return None
        try:
            return ForcedLoginMethod(raw)
        except ValueError:
            logger.warning("Ignoring unknown forced_login_method %r", raw)
            return None

    @classmethod
    def get_forced_workspace_id(cls) -> str | None:
        value = (cls.get("forced_chatgpt_workspace_id") or "").strip()
        return value or None

    @classmethod
    def get_login_port(cls) -> int:
        value = cls.get("authflow_login_port")
        try:
            port = int(value) if value is not None else cls._DEFAULT_LOGIN_PORT
        except (TypeError, ValueError):
            return cls._DEFAULT_LOGIN_PORT
        if not 0 <= port <= 65535:
            return cls._DEFAULT_LOGIN_PORT
        return port

    @classmethod
    def should_open_browser(cls) -> bool:
        return (cls.get("authflow_open_browser") or "").strip().lower() not in {
            "0",
            "false",
            "no",
            "off",
        }

    @classmethod
    def load(cls) -> dict[str, Any]:
        path = cls.config_file()
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as f:
                data: dict[str, Any] = json.load(f)
                return data
        except (json.JSONDecodeError, OSError):
            return {}

    @classmethod
    def save(cls, config: dict[str, Any]) -> bool:
        try:
            config_path = cls.config_file()
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with config_path.open("w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
        except OSError:
            return False
        with contextlib.suppress(OSError):
            config_path.chmod(0o600)  # may fail on Windows
        return True

    @classmethod
    def apply_saved(cls, force: bool = False) -> dict[str, str]:
        saved = cls.load()
        if not isinstance(saved, dict):
            saved = {}
        env_vars = saved.get("env", {})
        if not isinstance(env_vars, dict):
            env_vars = {}
        applied = {}

        for var_name, var_value in env_vars.items():
            if var_name in cls.tracked_vars() and (force or var_name not in os.environ):
                os.environ[var_name] = var_value
                applied[var_name] = var_value

        return applied

    @classmethod
    def _utc_now_iso(cls) -> str:
        return datetime.now(timezone.utc).replace(microsecond=0).isoformat()

    @classmethod
    def get_onboarding_state(cls) -> dict[str, Any]:
        saved = cls.load()
        if not isinstance(saved, dict):
            saved = {}
        ui = saved.get(cls._UI_SECTION_KEY, {})
        if not isinstance(ui, dict):
            ui = {}
        raw_state = ui.get(cls._ONBOARDING_SECTION_KEY, {})
        if not isinstance(raw_state, dict):
            raw_state = {}

        version = raw_state.get(cls._ONBOARDING_VERSION_KEY)
        if not isinstance(version, int):
            version = cls._DEFAULT_ONBOARDING_VERSION

        state = raw_state.get(cls._ONBOARDING_STATE_KEY)
        if not isinstance(state, str):
            state = cls._ONBOARDING_STATE_PENDING

        completed_at = raw_state.get(cls._ONBOARDING_COMPLETED_AT_KEY)
        if not isinstance(completed_at, str):
            completed_at = None

        last_seen_at = raw_state.get(cls._ONBOARDING_LAST_SEEN_AT_KEY)
        if not isinstance(last_seen_at, str):
            last_seen_at = None

        skip_count = raw_state.get(cls._ONBOARDING_SKIP_COUNT_KEY)
        if not isinstance(skip_count, int) or skip_count < 0:
            skip_count = 0

        return {
            cls._ONBOARDING_VERSION_KEY: version,
            cls._ONBOARDING_STATE_KEY: state,
            cls._ONBOARDING_COMPLETED_AT_KEY: completed_at,
            cls._ONBOARDING_LAST_SEEN_AT_KEY: last_seen_at,
            cls._ONBOARDING_SKIP_COUNT_KEY: skip_count,
        }

    @classmethod
    def _save_onboarding_state(cls, onboarding_state: dict[str, Any]) -> bool:
        saved = cls.load()
        if not isinstance(saved, dict):
            saved = {}
        ui = saved.get(cls._UI_SECTION_KEY, {})
        if not isinstance(ui, dict):
            ui = {}
        ui[cls._ONBOARDING_SECTION_KEY] = onboarding_state
        saved[cls._UI_SECTION_KEY] = ui
        return cls.save(saved)

    @classmethod
    def _target_version(cls, version: int | None) -> int:
        if isinstance(version, int) and version > 0:
            return version
        return cls._DEFAULT_ONBOARDING_VERSION

    @classmethod
    def is_onboarding_required(cls, version: int | None = None) -> bool:
        target_version = cls._target_version(version)
        state = cls.get_onboarding_state()

        state_value = str(
            state.get(cls._ONBOARDING_STATE_KEY) or cls._ONBOARDING_STATE_PENDING
        ).lower()
        completed = state_value == cls._ONBOARDING_STATE_COMPLETED
        seen_version = state.get(cls._ONBOARDING_VERSION_KEY)
        if not isinstance(seen_version, int):
            seen_version = cls._DEFAULT_ONBOARDING_VERSION

        return not completed or seen_version < target_version

    @classmethod
    def mark_onboarding_completed(cls, version: int | None = None) -> bool:
        now_iso = cls._utc_now_iso()
        existing = cls.get_onboarding_state()

        onboarding_state = {
            cls._ONBOARDING_VERSION_KEY: cls._target_version(version),
            cls._ONBOARDING_STATE_KEY: cls._ONBOARDING_STATE_COMPLETED,
            cls._ONBOARDING_COMPLETED_AT_KEY: now_iso,
            cls._ONBOARDING_LAST_SEEN_AT_KEY: now_iso,
            cls._ONBOARDING_SKIP_COUNT_KEY: int(existing.get(cls._ONBOARDING_SKIP_COUNT_KEY, 0)),
        }
        return cls._save_onboarding_state(onboarding_state)

    @classmethod
    def mark_onboarding_skipped(cls, version: int | None = None) -> bool:
        now_iso = cls._utc_now_iso()
        existing = cls.get_onboarding_state()
        skip_count = int(existing.get(cls._ONBOARDING_SKIP_COUNT_KEY, 0)) + 1

        onboarding_state = {
            cls._ONBOARDING_VERSION_KEY: cls._target_version(version),
            cls._ONBOARDING_STATE_KEY: cls._ONBOARDING_STATE_SKIPPED,
            cls._ONBOARDING_COMPLETED_AT_KEY: existing.get(cls._ONBOARDING_COMPLETED_AT_KEY),
            cls._ONBOARDING_LAST_SEEN_AT_KEY: now_iso,
            cls._ONBOARDING_SKIP_COUNT_KEY: skip_count,
        }
        return cls._save_onboarding_state(onboarding_state)


def apply_saved_config(force: bool = False) -> dict[str, str]:
    return Config.apply_saved(force=force)

