"""Provides functions for loading and accessing configuration settings.

Supports loading from a YAML configuration file (~/.apiorch/config.yaml),
.env files and environment variables, plus an override layer for tests.
"""

import logging
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".apiorch"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "APIORCH_"

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False

def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Turns nested YAML sections into dotted keys ('a': {'b': 1} -> 'a.b')."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat

def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None, force: bool = False) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Test overrides
    2. Environment Variables (APIORCH_ prefixed)
    3. .env file
    4. YAML configuration file
    5. Default values passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (override=False: real environment variables win)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    _loaded = True
    logger.info("Configuration loading process completed.")

def env_var_name(key: str) -> str:
    """'orchestrator.max_concurrent' -> 'APIORCH_ORCHESTRATOR_MAX_CONCURRENT'."""
    return ENV_PREFIX + key.upper().replace('.', '_')

def _coerce(value: str) -> Any:
    """Converts environment strings to bool/int/float where they look like one."""
    lowered = value.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    try:
        return float(value) if '.' in value else int(value)
    except ValueError:
        return value

def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by dotted key.

    Args:
        key: The configuration key (e.g. 'orchestrator.max_concurrent')
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if key in _config:
        return _config[key]

    return default

def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None

def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)

@dataclass(frozen=True)
class OrchestratorSettings:
    """Effective orchestrator tuning, resolved from configuration."""
    max_concurrent: int = 4
    cache_ttl_seconds: float = 60.0
    cache_max_entries: int = 200
    sweep_interval_seconds: float = 30.0
    max_retries: int = 5
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 16.0
    retry_transient: bool = False
    strict_release: bool = False
    tenant_key: str = "tenant"
    stats_window_seconds: float = 60.0
    stats_max_events: int = 500

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

def get_orchestrator_settings() -> OrchestratorSettings:
    """Reads every orchestrator knob, falling back to the defaults above."""
    load_configuration()
    defaults = OrchestratorSettings()
    return OrchestratorSettings(
        max_concurrent=int(get_config('orchestrator.max_concurrent', defaults.max_concurrent)),
        cache_ttl_seconds=float(get_config('orchestrator.cache.ttl_seconds', defaults.cache_ttl_seconds)),
        cache_max_entries=int(get_config('orchestrator.cache.max_entries', defaults.cache_max_entries)),
        sweep_interval_seconds=float(get_config('orchestrator.cache.sweep_interval_seconds', defaults.sweep_interval_seconds)),
        max_retries=int(get_config('orchestrator.retry.max_retries', defaults.max_retries)),
        base_delay_seconds=float(get_config('orchestrator.retry.base_delay_seconds', defaults.base_delay_seconds)),
        max_delay_seconds=float(get_config('orchestrator.retry.max_delay_seconds', defaults.max_delay_seconds)),
        retry_transient=_as_bool(get_config('orchestrator.retry.retry_transient', defaults.retry_transient)),
        strict_release=_as_bool(get_config('orchestrator.gate.strict_release', defaults.strict_release)),
        tenant_key=str(get_config('orchestrator.tenant_key', defaults.tenant_key)),
        stats_window_seconds=float(get_config('orchestrator.stats.window_seconds', defaults.stats_window_seconds)),
        stats_max_events=int(get_config('orchestrator.stats.max_events', defaults.stats_max_events)),
    )

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")

def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
