"""Settings loading: defaults, YAML, environment overrides and caching."""

import pytest
import yaml

import stock_config
from stock_config import CONFIG_PATH_ENV, Settings, get_settings, load_settings, reset_settings


@pytest.fixture
def settings_file(tmp_path):
    def _write(data) -> str:
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump(data) if data is not None else "", encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    reset_settings()
    yield
    reset_settings()


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings(environ={})
        assert settings == Settings()
        assert settings.default_page_size == 20
        assert settings.max_page_size == 100

    def test_yaml_values(self, settings_file):
        path = settings_file({"database_url": "sqlite:///:memory:", "echo_sql": True, "max_page_size": 50})
        settings = load_settings(path, environ={})

        assert settings.database_url == "sqlite:///:memory:"
        assert settings.echo_sql is True
        assert settings.max_page_size == 50

    def test_empty_yaml_is_defaults(self, settings_file):
        assert load_settings(settings_file(None), environ={}) == Settings()

    def test_environment_overrides_yaml(self, settings_file):
        path = settings_file({"log_level": "INFO", "idempotency_ttl_minutes": 10})
        settings = load_settings(
            path,
            environ={"STOCK_KERNEL_LOG_LEVEL": "DEBUG", "STOCK_KERNEL_ECHO_SQL": "yes"},
        )
        assert settings.log_level == "DEBUG"
        assert settings.echo_sql is True
        assert settings.idempotency_ttl_minutes == 10

    def test_path_from_environment(self, settings_file):
        path = settings_file({"environment": "staging"})
        assert load_settings(environ={CONFIG_PATH_ENV: path}).environment == "staging"

    def test_unknown_key_rejected(self, settings_file):
        with pytest.raises(ValueError, match="colour"):
            load_settings(settings_file({"colour": "red"}), environ={})

    def test_non_mapping_rejected(self, settings_file):
        with pytest.raises(ValueError):
            load_settings(settings_file(["a", "b"]), environ={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml", environ={})

    @pytest.mark.parametrize(
        "env",
        [
            {"STOCK_KERNEL_ECHO_SQL": "maybe"},
            {"STOCK_KERNEL_MAX_PAGE_SIZE": "lots"},
        ],
    )
    def test_bad_values(self, env):
        with pytest.raises(ValueError):
            load_settings(environ=env)

    def test_boolean_is_not_an_integer(self, settings_file):
        with pytest.raises(ValueError):
            load_settings(settings_file({"max_page_size": True}), environ={})

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            load_settings(environ={"STOCK_KERNEL_IDEMPOTENCY_TTL_MINUTES": "0"})

    def test_page_size_bounds(self):
        with pytest.raises(ValueError):
            Settings(default_page_size=200, max_page_size=100)


class TestGetSettings:
    def test_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("STOCK_KERNEL_ENVIRONMENT", "test")
        first = get_settings()
        assert first.environment == "test"

        monkeypatch.setenv("STOCK_KERNEL_ENVIRONMENT", "other")
        assert get_settings() is first

        reset_settings()
        assert get_settings().environment == "other"

    def test_public_surface(self):
        assert set(stock_config.__all__) >= {"Settings", "get_settings", "load_settings", "reset_settings"}
