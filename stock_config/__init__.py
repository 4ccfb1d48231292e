"""
stock_config -- single public entrypoint for runtime settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_settings()``.  Other packages never read configuration files or
    environment variables themselves.

Architecture position:
    Configuration.  Sits beside ``stock_kernel``; the kernel MUST NEVER
    import from ``stock_config``.  ``stock_api`` reads settings and passes
    plain values (database URL, TTLs) down to the kernel.

Failure modes:
    - ``FileNotFoundError`` -- an explicit settings file does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` -- unknown keys or values that do not fit a field.
"""

import threading

from stock_config.loader import CONFIG_PATH_ENV, ENV_PREFIX, load_settings
from stock_config.schema import Settings

__all__ = [
    "CONFIG_PATH_ENV",
    "ENV_PREFIX",
    "Settings",
    "get_settings",
    "load_settings",
    "reset_settings",
]

_settings: Settings | None = None
_lock = threading.Lock()


def get_settings() -> Settings:
    """Load settings once per process and return the cached instance."""
    global _settings
    with _lock:
        if _settings is None:
            _settings = load_settings()
        return _settings


def reset_settings() -> None:
    """Drop the cached settings. FOR TESTING ONLY."""
    global _settings
    with _lock:
        _settings = None
