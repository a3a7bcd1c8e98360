"""Tests for claims_config: YAML loading, environment overrides and validation."""

from pathlib import Path

import pytest

from claims_config import (
    CONFIG_FILE_ENV,
    ConfigError,
    PersistenceSettings,
    get_active_settings,
)
from claims_config.loader import apply_env_overrides, load_yaml_file, parse_settings

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "config" / "claims.example.yaml"

FULL_YAML = """
environment: staging
reference_prefix: MRC
logging:
  level: debug
dashboard:
  recent_limit: 10
persistence:
  provider: PostgreSQL
  database_url: postgresql://claims@db/claims
  echo: true
  pool_size: 8
  mongodb:
    database: claims
"""


@pytest.fixture
def write_config(tmp_path):
    def _write(text: str, name: str = "claims.yaml") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write


class TestLoadYamlFile:

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_yaml_file(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, write_config):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_yaml_file(write_config("persistence: [unclosed"))

    def test_non_mapping_document(self, write_config):
        with pytest.raises(ConfigError, match="mapping"):
            load_yaml_file(write_config("- memory\n- sqlite\n"))

    def test_empty_file(self, write_config):
        assert load_yaml_file(write_config("")) == {}


class TestParseSettings:

    def test_full_document(self, write_config):
        settings = parse_settings(load_yaml_file(write_config(FULL_YAML)))
        assert settings.environment == "staging"
        assert settings.reference_prefix == "MRC"
        assert settings.logging.level == "DEBUG"
        assert settings.dashboard_recent_limit == 10
        assert settings.persistence == PersistenceSettings(
            provider="postgresql",
            database_url="postgresql://claims@db/claims",
            echo=True,
            create_schema=True,
            pool_size=8,
            mongodb_uri=None,
            mongodb_database="claims",
            server_selection_timeout_ms=5000,
        )

    def test_defaults(self):
        settings = parse_settings({"persistence": {"provider": "memory"}})
        assert settings.environment == "development"
        assert settings.logging.level == "INFO"
        assert settings.dashboard_recent_limit == 5
        assert settings.reference_prefix == "MR"

    def test_provider_required(self):
        with pytest.raises(ConfigError, match="persistence.provider is required"):
            parse_settings({"persistence": {"database_url": "sqlite://"}})

    @pytest.mark.parametrize("data, key", [
        ({"persistence": {"provider": "memory", "echo": "yes"}}, "persistence.echo"),
        ({"persistence": {"provider": "memory", "pool_size": True}}, "persistence.pool_size"),
        ({"persistence": {"provider": "memory", "mongodb": {"uri": 27017}}}, "persistence.mongodb.uri"),
        ({"persistence": {"provider": "memory"}, "environment": 3}, "settings.environment"),
    ])
    def test_wrong_types_name_the_key(self, data, key):
        with pytest.raises(ConfigError, match=key.replace(".", r"\.")):
            parse_settings(data)

    @pytest.mark.parametrize("data", [
        {"persistence": {"provider": "memory", "pool_size": 0}},
        {"persistence": {"provider": "memory", "mongodb": {"server_selection_timeout_ms": 0}}},
        {"persistence": {"provider": "memory"}, "dashboard": {"recent_limit": -1}},
    ])
    def test_non_positive_numbers(self, data):
        with pytest.raises(ConfigError, match="must be positive"):
            parse_settings(data)

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigError, match="'persistence' must be a mapping"):
            parse_settings({"persistence": "memory"})

    def test_example_file_parses(self):
        settings = parse_settings(load_yaml_file(EXAMPLE_CONFIG))
        assert settings.persistence.provider == "sqlite"


class TestEnvOverrides:

    def test_environment_wins(self):
        merged = apply_env_overrides(
            {"persistence": {"provider": "sqlite", "mongodb": {"database": "claims"}}},
            {
                "CLAIMS_PERSISTENCE_PROVIDER": " mongodb ",
                "CLAIMS_MONGODB_URI": "mongodb://db:27017",
                "CLAIMS_LOG_LEVEL": "warning",
            },
        )
        assert merged["persistence"]["provider"] == "mongodb"
        assert merged["persistence"]["mongodb"] == {"database": "claims", "uri": "mongodb://db:27017"}
        assert merged["logging"] == {"level": "warning"}

    def test_blank_values_ignored(self):
        merged = apply_env_overrides({"environment": "prod"}, {"CLAIMS_ENVIRONMENT": "  "})
        assert merged == {"environment": "prod"}

    def test_source_not_mutated(self):
        data = {"persistence": {"provider": "sqlite"}}
        apply_env_overrides(data, {"CLAIMS_PERSISTENCE_PROVIDER": "memory"})
        assert data == {"persistence": {"provider": "sqlite"}}


class TestGetActiveSettings:

    def test_environment_only(self):
        settings = get_active_settings(environ={"CLAIMS_PERSISTENCE_PROVIDER": "memory"})
        assert settings.persistence.provider == "memory"

    def test_file_plus_environment(self, write_config):
        path = write_config(FULL_YAML)
        settings = get_active_settings(path, environ={"CLAIMS_ENVIRONMENT": "production"})
        assert settings.environment == "production"
        assert settings.persistence.provider == "postgresql"

    def test_config_file_from_environment(self, write_config):
        path = write_config(FULL_YAML)
        settings = get_active_settings(environ={CONFIG_FILE_ENV: str(path)})
        assert settings.reference_prefix == "MRC"

    def test_nothing_configured(self):
        with pytest.raises(ConfigError):
            get_active_settings(environ={})

    def test_dotenv_loaded_only_without_mapping(self, monkeypatch):
        calls = []
        monkeypatch.setattr("claims_config.load_dotenv", lambda: calls.append("loaded"))
        monkeypatch.setenv("CLAIMS_PERSISTENCE_PROVIDER", "memory")
        monkeypatch.delenv(CONFIG_FILE_ENV, raising=False)

        assert get_active_settings().persistence.provider == "memory"
        get_active_settings(environ={"CLAIMS_PERSISTENCE_PROVIDER": "memory"})
        assert calls == ["loaded"]

    def test_settings_logged(self, captured_logs):
        get_active_settings(environ={"CLAIMS_PERSISTENCE_PROVIDER": "memory"})
        loaded = [r for r in captured_logs() if r["message"] == "claims_settings_loaded"]
        assert loaded[0]["provider"] == "memory"
        assert loaded[0]["config_file"] is None
