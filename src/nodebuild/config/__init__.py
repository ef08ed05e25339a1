"""Configuration package exports."""
from .loader import DEFAULT_ENV, EXCLUDED_ENV_VARS, build_environment, load_config, read_env_dir
from .models import BuildConfig, MirrorSettings, detect_platform

__all__ = [
    "BuildConfig",
    "DEFAULT_ENV",
    "EXCLUDED_ENV_VARS",
    "MirrorSettings",
    "build_environment",
    "detect_platform",
    "load_config",
    "read_env_dir",
]
