"""
Configuration loading for the cross-venue arbitrage engine.

Loads a YAML file, applies environment overrides, validates it against the
pydantic schema and resolves secrets from the environment (``.env`` files are
honoured through python-dotenv).
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from .config_schema import EngineConfig, validate_engine_config
from .exceptions import ConfigurationError

# Environment variables that override scalar config keys
ENV_OVERRIDES = {
    "ARB_CYCLE_INTERVAL_SEC": ("cycle_interval_sec",),
    "ARB_MIN_PROFIT_BPS": ("strategy", "min_profit_bps"),
    "ARB_MAX_SLIPPAGE_BPS": ("strategy", "max_slippage_bps"),
    "ARB_READ_API_URL": ("read_api", "base_url"),
    "ARB_LEDGER_PATH": ("ledger", "path"),
    "ARB_METRICS_PORT": ("metrics_port",),
    "ARB_ONCE": ("once",),
}


@dataclass(frozen=True)
class Secrets:
    """Credentials resolved from the environment, never from the YAML file."""

    rpc_url: Optional[str] = None
    sponsor_api_key: Optional[str] = None
    oracle_api_key: Optional[str] = None
    read_api_key: Optional[str] = None


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}") from e

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    return config_dict


def apply_env_overrides(
    config_dict: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Return a copy of ``config_dict`` with ARB_* environment overrides applied."""
    environ = os.environ if environ is None else environ
    merged = dict(config_dict)

    for env_name, key_path in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        target = merged
        for key in key_path[:-1]:
            target[key] = dict(target.get(key) or {})
            target = target[key]
        target[key_path[-1]] = value

    return merged


def load_config(
    config_path: Union[str, Path], environ: Optional[Mapping[str, str]] = None
) -> EngineConfig:
    """
    Load, merge and validate an engine configuration.

    Args:
        config_path: Path to YAML configuration file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated EngineConfig

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    config_dict = apply_env_overrides(load_yaml_config(config_path), environ)
    try:
        return validate_engine_config(config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration in {config_path}: {e}",
            details={"errors": e.errors()},
        ) from e


def load_secrets(
    config: EngineConfig,
    environ: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[Union[str, Path]] = None,
) -> Secrets:
    """
    Resolve the credentials named by the config from the environment.

    A ``.env`` file is loaded first (without overriding variables already set)
    unless an explicit ``environ`` mapping is given.
    """
    if environ is None:
        load_dotenv(dotenv_path)
        environ = os.environ

    def get(name: Optional[str]) -> Optional[str]:
        return environ.get(name) or None if name else None

    return Secrets(
        rpc_url=get(config.rpc_url_env),
        sponsor_api_key=get(config.relay.sponsor_key_env),
        oracle_api_key=get(config.oracle.api_key_env),
        read_api_key=get(config.read_api.api_key_env),
    )
