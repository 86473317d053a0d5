"""Configuration loader for the agent runtime.

Loads an AgentConfig from a file:
- JSON5 parsing (comments, trailing commas, unquoted keys)
- $include directives: {"$include": "./profiles.json"}
- ${ENV_VAR} environment variable substitution
- optional .env file loaded before substitution

Search order when no path is given: $RIYAAN_CONFIG, ./riyaan.json,
./riyaan.json5, ~/.riyaan/config.json. No file at all yields the defaults.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import json5
from dotenv import load_dotenv
from pydantic import ValidationError

from ..agents.errors import ConfigError
from ..agents.types import AgentConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RIYAAN_CONFIG"
MAX_INCLUDE_DEPTH = 10

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _parse_json5(text: str, source: Path) -> Any:
    try:
        return json5.loads(text)
    except ValueError as exc:
        raise ConfigError(f"Invalid JSON5 in {source}: {exc}") from exc


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively replace ${VAR} with os.environ values (unset tokens are kept)"""
    if isinstance(obj, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), m.group(0)), obj)
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(v) for v in obj]
    return obj


def _resolve_includes(obj: Any, base_dir: Path, depth: int = 0) -> Any:
    """Resolve {"$include": "./path.json"} directives recursively."""
    if depth > MAX_INCLUDE_DEPTH:
        raise ConfigError("$include depth limit exceeded (circular?)")

    if isinstance(obj, dict):
        if "$include" in obj and len(obj) == 1:
            include_path = base_dir / obj["$include"]
            if not include_path.exists():
                raise ConfigError(f"$include target not found: {include_path}")
            included = _parse_json5(include_path.read_text(encoding="utf-8"), include_path)
            return _resolve_includes(included, include_path.parent, depth + 1)
        return {k: _resolve_includes(v, base_dir, depth) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_resolve_includes(v, base_dir, depth) for v in obj]
    return obj


def resolve_config_path(config_path: Optional[str | Path] = None) -> Optional[Path]:
    if config_path:
        return Path(config_path)

    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)

    candidates = [
        Path.cwd() / "riyaan.json",
        Path.cwd() / "riyaan.json5",
        Path.home() / ".riyaan" / "config.json",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def load_config_raw(path: Path) -> dict[str, Any]:
    """
    Load a config file with JSON5 parsing, $include resolution, and env-var substitution.

    Returns the resolved config dict (ready for schema validation).
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    obj = _parse_json5(path.read_text(encoding="utf-8"), path)
    obj = _resolve_includes(obj, path.parent)
    obj = _substitute_env_vars(obj)
    if not isinstance(obj, dict):
        raise ConfigError(f"Config root must be an object: {path}")
    return obj


def load_config(
    config_path: Optional[str | Path] = None,
    env_file: Optional[str | Path] = None,
) -> AgentConfig:
    """Load the runtime configuration.

    Args:
        config_path: Optional path to config file. Supports JSON5.
        env_file: Optional .env file loaded (without overriding) before ${VAR} substitution.

    Returns:
        AgentConfig

    Raises:
        ConfigError: The file is unreadable, malformed or fails validation
    """
    if env_file:
        load_dotenv(env_file, override=False)

    path = resolve_config_path(config_path)
    if path is None:
        logger.debug("No config file found, using defaults")
        return AgentConfig()

    config_dict = load_config_raw(path)
    try:
        config = AgentConfig.model_validate(config_dict)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {path}: {exc}") from exc

    logger.info(f"Loaded config from {path} ({config.provider}/{config.model})")
    return config
