"""
Settings loader (``stock_config.loader``).

Responsibility
--------------
Builds a ``Settings`` from, in increasing precedence: defaults, a YAML file,
and ``STOCK_KERNEL_<FIELD>`` environment variables.

Failure modes
-------------
* Missing YAML file given explicitly  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys, or a value that does not fit its field  -> ``ValueError``.
"""

import logging
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from stock_config.schema import SETTINGS_FIELDS, Settings

_logger = logging.getLogger("stock_kernel.config")

ENV_PREFIX = "STOCK_KERNEL_"
CONFIG_PATH_ENV = "STOCK_KERNEL_CONFIG"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML settings file.

    Returns an empty dict for an empty file.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: settings file must contain a mapping")
    return data


def _coerce(name: str, value: Any) -> Any:
    field_type = SETTINGS_FIELDS[name].type
    if field_type in (bool, "bool"):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"{name}: expected a boolean, got {value!r}")
    if field_type in (int, "int"):
        if isinstance(value, bool):
            raise ValueError(f"{name}: expected an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name}: expected an integer, got {value!r}") from exc
    return str(value)


def load_settings(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Build settings from defaults, YAML, then environment overrides.

    Args:
        path: YAML file; falls back to ``$STOCK_KERNEL_CONFIG`` when None.
        environ: Environment mapping; ``os.environ`` when None.
    """
    environ = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    sources = ["defaults"]

    if path is None and environ.get(CONFIG_PATH_ENV):
        path = environ[CONFIG_PATH_ENV]
    if path is not None:
        raw = load_yaml_file(Path(path))
        unknown = sorted(set(raw) - set(SETTINGS_FIELDS))
        if unknown:
            raise ValueError(f"Unknown settings keys: {', '.join(unknown)}")
        values.update({k: _coerce(k, v) for k, v in raw.items()})
        sources.append(str(path))

    for name in SETTINGS_FIELDS:
        env_name = f"{ENV_PREFIX}{name.upper()}"
        if env_name in environ:
            values[name] = _coerce(name, environ[env_name])
            sources.append(env_name)

    settings = Settings(**values)
    _logger.info(
        "settings_loaded",
        extra={
            "environment": settings.environment,
            "sources": sources,
            "echo_sql": settings.echo_sql,
        },
    )
    return settings
