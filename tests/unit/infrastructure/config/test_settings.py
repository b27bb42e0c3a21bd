from pathlib import Path

import pytest

from apiorch.infrastructure.config import settings as settings_module
from apiorch.infrastructure.config.settings import (
    OrchestratorSettings, env_var_name, get_config, get_orchestrator_settings,
    load_configuration, set_config_for_testing,
)

ENV_KEYS = [
    "APIORCH_ORCHESTRATOR_MAX_CONCURRENT",
    "APIORCH_ORCHESTRATOR_RETRY_MAX_RETRIES",
    "APIORCH_ORCHESTRATOR_RETRY_RETRY_TRANSIENT",
    "APIORCH_ORCHESTRATOR_CACHE_TTL_SECONDS",
]


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch):
    """Empty configuration: no YAML, no .env, no APIORCH_ variables."""
    for key in ENV_KEYS:
        # setenv first so teardown also removes values loaded from .env
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    monkeypatch.setattr(settings_module, "_config", {})
    monkeypatch.setattr(settings_module, "_loaded", False)
    monkeypatch.chdir(tmp_path)
    load_configuration(config_file=tmp_path / "missing.yaml", force=True)
    return tmp_path


def test_env_var_name():
    assert env_var_name("orchestrator.retry.max_retries") == "APIORCH_ORCHESTRATOR_RETRY_MAX_RETRIES"


def test_defaults(isolated_config):
    assert get_orchestrator_settings() == OrchestratorSettings()
    settings = OrchestratorSettings()
    assert settings.max_concurrent == 4
    assert settings.cache_ttl_seconds == 60.0
    assert settings.max_retries == 5
    assert settings.max_delay_seconds == 16.0


def test_yaml_sections_become_dotted_keys(isolated_config):
    config_file = isolated_config / "config.yaml"
    config_file.write_text(
        "orchestrator:\n"
        "  max_concurrent: 8\n"
        "  cache:\n"
        "    ttl_seconds: 30\n"
        "logging:\n"
        "  level: DEBUG\n"
    )
    load_configuration(config_file=config_file, force=True)

    assert get_config("logging.level") == "DEBUG"
    settings = get_orchestrator_settings()
    assert settings.max_concurrent == 8
    assert settings.cache_ttl_seconds == 30.0


def test_environment_overrides_yaml(isolated_config, monkeypatch):
    config_file = isolated_config / "config.yaml"
    config_file.write_text("orchestrator:\n  retry:\n    max_retries: 2\n")
    load_configuration(config_file=config_file, force=True)
    monkeypatch.setenv("APIORCH_ORCHESTRATOR_RETRY_MAX_RETRIES", "9")
    monkeypatch.setenv("APIORCH_ORCHESTRATOR_RETRY_RETRY_TRANSIENT", "true")

    settings = get_orchestrator_settings()

    assert settings.max_retries == 9
    assert settings.retry_transient is True


def test_dotenv_file_is_loaded(isolated_config):
    (isolated_config / ".env").write_text("APIORCH_ORCHESTRATOR_MAX_CONCURRENT=2\n")
    load_configuration(config_file=isolated_config / "missing.yaml", force=True)

    assert get_orchestrator_settings().max_concurrent == 2


def test_test_overrides_win(isolated_config, monkeypatch):
    monkeypatch.setenv("APIORCH_ORCHESTRATOR_CACHE_TTL_SECONDS", "5.5")
    set_config_for_testing({"orchestrator.cache.ttl_seconds": 1.0})
    assert get_orchestrator_settings().cache_ttl_seconds == 1.0


def test_invalid_yaml_is_logged_not_raised(isolated_config):
    config_file = isolated_config / "config.yaml"
    config_file.write_text("orchestrator: [unclosed\n")
    load_configuration(config_file=config_file, force=True)
    assert get_orchestrator_settings() == OrchestratorSettings()


def test_as_dict_lists_every_setting():
    data = OrchestratorSettings().as_dict()
    assert data["tenant_key"] == "tenant"
    assert data["stats_max_events"] == 500
