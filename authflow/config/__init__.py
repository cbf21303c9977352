from .config import Config, ForcedLoginMethod, apply_saved_config


__all__ = [
    "Config",
    "ForcedLoginMethod",
    "apply_saved_config",
]
