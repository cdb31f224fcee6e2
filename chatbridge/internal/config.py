"""
Builds an EngineConfiguration from layered sources.

Precedence, lowest first: built-in defaults, a JSON config file, CHATBRIDGE_*
environment variables, explicit keyword overrides. Values are passed
through as found; the engine facade validates them before use.
"""
import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from chatbridge.internal import paths
from chatbridge.internal.constants import (
    CONFIG_ENV_PREFIX,
    CONFIG_FILE_ENV_VAR,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    DEFAULT_THREAD_COUNT,
)
from chatbridge.internal.logging import get_logger
from chatbridge.kernel.contracts import BackendType, EngineConfiguration

logger = get_logger(__name__)

CONFIG_FIELDS = ("model_path", "backend", "max_tokens", "temperature", "thread_count")

DEFAULTS = {
    "model_path": "",
    "backend": BackendType.CPU,
    "max_tokens": DEFAULT_MAX_TOKENS,
    "temperature": DEFAULT_TEMPERATURE,
    "thread_count": DEFAULT_THREAD_COUNT,
}


class ConfigError(Exception):
    """Raised when a configuration file cannot be read or parsed."""


def parse_backend(value: Any) -> Any:
    """
    Accepts "cpu"/"gpu" (any case) and digit strings; anything else is
    returned untouched so validation can report it.
    """
    if isinstance(value, str):
        name = value.strip().upper()
        if name in BackendType.__members__:
            return BackendType[name]
        if name.isdigit():
            return int(name)
    return value


def _decode_env_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def read_config_file(path: Path) -> dict:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except ValueError as e:
        raise ConfigError(f"Config file {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    unknown = sorted(set(data) - set(CONFIG_FIELDS))
    if unknown:
        logger.warning("Ignoring unknown config keys", path=str(path), keys=unknown)
    return {key: data[key] for key in CONFIG_FIELDS if key in data}


def read_environment(environ: Optional[Mapping[str, str]] = None) -> dict:
    environ = os.environ if environ is None else environ
    values = {}
    for key in CONFIG_FIELDS:
        raw = environ.get(f"{CONFIG_ENV_PREFIX}{key.upper()}")
        if raw is None:
            continue
        values[key] = raw if key == "model_path" else _decode_env_value(raw)
    return values


def _resolve_config_path(path: Optional[Path], environ: Mapping[str, str]) -> Optional[Path]:
    if path is not None:
        return Path(path)
    from_env = environ.get(CONFIG_FILE_ENV_VAR)
    if from_env:
        return Path(from_env)
    default = paths.get_default_config_file()
    return default if default.exists() else None


def load_engine_configuration(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> EngineConfiguration:
    environ = os.environ if environ is None else environ
    values = dict(DEFAULTS)

    config_path = _resolve_config_path(path, environ)
    if config_path is not None:
        values.update(read_config_file(config_path))
        logger.debug("Loaded config file", path=str(config_path))

    values.update(read_environment(environ))

    for key, value in overrides.items():
        if key not in CONFIG_FIELDS:
            raise TypeError(f"Unknown configuration field: {key}")
        if value is not None:
            values[key] = value

    values["backend"] = parse_backend(values["backend"])
    return EngineConfiguration(**values)
