"""Utilities for loading the nodebuild configuration from the environment directory."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ValidationError

from ..errors import ConfigurationError
from .models import BuildConfig, MirrorSettings

EXCLUDED_ENV_VARS = frozenset(
    {"PATH", "GIT_DIR", "CPATH", "CPPATH", "LD_PRELOAD", "LIBRARY_PATH", "LD_LIBRARY_PATH"}
)

DEFAULT_ENV = {
    "NODE_ENV": "production",
    "NPM_CONFIG_PRODUCTION": "true",
    "NODE_MODULES_CACHE": "true",
    "NODE_VERBOSE": "false",
}


def read_env_dir(env_dir: Path) -> dict[str, str]:
    """Read every regular file in ``env_dir`` as an environment variable."""
    if not env_dir.is_dir():
        return {}

    exported: dict[str, str] = {}
    for entry in sorted(env_dir.iterdir()):
        if not entry.is_file() or entry.name in EXCLUDED_ENV_VARS:
            continue
        exported[entry.name] = entry.read_text().strip()
    return exported


def build_environment(env_dir: Path, base_env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Merge the process environment, the exported env dir, and build defaults."""
    env = dict(os.environ if base_env is None else base_env)
    env.update(read_env_dir(env_dir))
    for key, value in DEFAULT_ENV.items():
        env.setdefault(key, value)
    return env


def load_config(env: Mapping[str, str], config_path: Path | None = None) -> BuildConfig:
    """Validate the recognised options, layering ``env`` over an optional YAML file."""
    payload: dict[str, Any] = {}
    if config_path is not None:
        if not config_path.exists():
            msg = f"Configuration file not found: {config_path}"
            raise FileNotFoundError(msg)
        payload = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(payload, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping of settings")

    payload.update(_from_env(BuildConfig, env))
    mirrors = dict(payload.get("mirrors") or {})
    mirrors.update(_from_env(MirrorSettings, env))
    payload["mirrors"] = mirrors

    try:
        return BuildConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid build configuration:\n{exc}") from exc


def _from_env(model: type[BaseModel], env: Mapping[str, str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for name, field in model.model_fields.items():
        if field.alias and field.alias in env:
            values[name] = env[field.alias]
    return values
