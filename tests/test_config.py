"""Tests for TOML configuration loading.

These tests verify:
- Stores and limiters are registered from [stores.*] / [limiters.*]
- Environment variable expansion (with defaults and scalar conversion)
- Structural errors raise ConfigValidationError
- Auto-loading from RATE_WINDOW_CONFIG and the working directory
- The [fastapi] section
"""

import textwrap

import pytest

from ratewindow.config import (
    CONFIG_ENV_VAR,
    _auto_load_config,
    _expand_env_vars,
    configure_fastapi,
    get_fastapi_config,
    load_config,
)
from ratewindow.exceptions import ConfigValidationError
from ratewindow.registry import get_registry


def _write(path, content: str):
    path.write_text(textwrap.dedent(content))
    return path


class TestLoadConfig:
    """load_config() registers stores and limiters."""

    def test_loads_stores_and_limiters(self, tmp_path):
        config_file = _write(
            tmp_path / "rate-window.toml",
            """
            [stores.local]
            engine = "memory"
            max_keys = 1000

            [stores.main]
            engine = "redis"
            url = "redis://localhost:6379/0"

            [limiters.api]
            store = "main"
            limit = 100
            window_seconds = 60

            [limiters.login]
            store = "local"
            limit = 5
            window_seconds = 300
            fail_closed = true
            timeout = 0.5
            """,
        )

        load_config(config_file)

        registry = get_registry()
        stores = registry.list_stores()
        assert stores["local"]["engine"] == "memory"
        assert stores["local"]["max_keys"] == 1000
        assert stores["main"]["url"] == "redis://localhost:6379/0"

        login = registry.get_limiter("login")
        assert login.limit == 5
        assert login.window_seconds == 300
        assert login.fail_closed is True
        assert login.timeout == 0.5
        assert registry.list_limiters()["api"]["store"] == "main"

    async def test_loaded_limiter_decides(self, tmp_path):
        config_file = _write(
            tmp_path / "limits.toml",
            """
            [stores.local]
            engine = "memory"

            [limiters.api]
            store = "local"
            limit = 1
            window_seconds = 60
            """,
        )
        load_config(config_file)

        registry = get_registry()
        assert await registry.allow("api", "client") is True
        assert await registry.allow("api", "client") is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.toml")

    def test_invalid_toml(self, tmp_path):
        config_file = _write(tmp_path / "bad.toml", "[stores.local\nengine = ")

        with pytest.raises(ConfigValidationError, match="Failed to parse TOML"):
            load_config(config_file)

    def test_store_without_engine(self, tmp_path):
        config_file = _write(
            tmp_path / "c.toml",
            """
            [stores.local]
            max_keys = 10
            """,
        )

        with pytest.raises(ConfigValidationError, match="missing required field 'engine'"):
            load_config(config_file)

    def test_invalid_store_field(self, tmp_path):
        config_file = _write(
            tmp_path / "c.toml",
            """
            [stores.local]
            engine = "memory"
            max_size = 10
            """,
        )

        with pytest.raises(ConfigValidationError, match="Failed to configure store 'local'"):
            load_config(config_file)

    def test_invalid_limiter(self, tmp_path):
        config_file = _write(
            tmp_path / "c.toml",
            """
            [stores.local]
            engine = "memory"

            [limiters.api]
            store = "local"
            limit = -3
            window_seconds = 60
            """,
        )

        with pytest.raises(ConfigValidationError, match="Failed to validate limiter 'api'"):
            load_config(config_file)

    def test_limiter_with_unknown_store(self, tmp_path):
        config_file = _write(
            tmp_path / "c.toml",
            """
            [limiters.api]
            store = "elsewhere"
            limit = 10
            window_seconds = 60
            """,
        )

        with pytest.raises(ConfigValidationError, match="unknown store 'elsewhere'") as exc_info:
            load_config(config_file)

        assert exc_info.value.field == "limiters.api.store"

    def test_section_must_be_table(self, tmp_path):
        config_file = _write(tmp_path / "c.toml", 'stores = "memory"\n')

        with pytest.raises(ConfigValidationError, match="stores section must be a dictionary"):
            load_config(config_file)


class TestEnvVarExpansion:
    """${VAR} and ${VAR:-default} expansion."""

    def test_variable_from_environment(self, monkeypatch):
        monkeypatch.setenv("RW_REDIS_HOST", "cache.internal")

        assert _expand_env_vars("redis://${RW_REDIS_HOST}:6379/0") == (
            "redis://cache.internal:6379/0"
        )

    def test_default_value(self, monkeypatch):
        monkeypatch.delenv("RW_REDIS_HOST", raising=False)

        assert _expand_env_vars("redis://${RW_REDIS_HOST:-localhost}:6379/0") == (
            "redis://localhost:6379/0"
        )

    def test_environment_wins_over_default(self, monkeypatch):
        monkeypatch.setenv("RW_LIMIT", "250")

        assert _expand_env_vars("${RW_LIMIT:-100}") == 250

    @pytest.mark.parametrize(
        "raw, expected",
        [("${RW_UNSET:-60}", 60), ("${RW_UNSET:-0.5}", 0.5), ("${RW_UNSET:-true}", True)],
    )
    def test_scalar_conversion(self, monkeypatch, raw, expected):
        monkeypatch.delenv("RW_UNSET", raising=False)

        assert _expand_env_vars(raw) == expected

    def test_plain_strings_untouched(self):
        assert _expand_env_vars({"limit": "100", "items": ["42", 7]}) == {
            "limit": "100",
            "items": ["42", 7],
        }

    def test_keys_are_expanded(self, monkeypatch):
        monkeypatch.setenv("RW_ENV", "prod")

        assert _expand_env_vars({"api_${RW_ENV}": {"limit": 1}}) == {"api_prod": {"limit": 1}}

    def test_expansion_in_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RW_API_LIMIT", "42")
        config_file = _write(
            tmp_path / "c.toml",
            """
            [stores.local]
            engine = "memory"

            [limiters.api]
            store = "local"
            limit = "${RW_API_LIMIT:-100}"
            window_seconds = "${RW_API_WINDOW:-30}"
            """,
        )

        load_config(config_file)

        limiter = get_registry().get_limiter("api")
        assert limiter.limit == 42
        assert limiter.window_seconds == 30


class TestAutoLoad:
    """_auto_load_config() search order."""

    def test_env_var_path(self, tmp_path, monkeypatch):
        config_file = _write(
            tmp_path / "custom.toml",
            """
            [stores.from_env]
            engine = "memory"
            """,
        )
        monkeypatch.setenv(CONFIG_ENV_VAR, str(config_file))
        monkeypatch.chdir(tmp_path)

        _auto_load_config()

        assert get_registry().has_store("from_env")

    def test_working_directory(self, tmp_path, monkeypatch):
        _write(
            tmp_path / "rate-window.toml",
            """
            [stores.from_cwd]
            engine = "memory"
            """,
        )
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)

        _auto_load_config()

        assert get_registry().has_store("from_cwd")

    def test_config_subdirectory(self, tmp_path, monkeypatch):
        (tmp_path / "config").mkdir()
        _write(
            tmp_path / "config" / "rate-window.toml",
            """
            [stores.from_subdir]
            engine = "memory"
            """,
        )
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)

        _auto_load_config()

        assert get_registry().has_store("from_subdir")

    def test_invalid_file_is_logged(self, tmp_path, monkeypatch, caplog):
        _write(tmp_path / "rate-window.toml", "[stores.broken]\nmax_keys = 1\n")
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)

        _auto_load_config()

        assert "Failed to auto-load config" in caplog.text
        assert not get_registry().has_store("broken")

    def test_missing_env_file_is_logged(self, tmp_path, monkeypatch, caplog):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "nope.toml"))
        monkeypatch.chdir(tmp_path)

        _auto_load_config()

        assert "non-existent file" in caplog.text

    def test_nothing_found(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)

        _auto_load_config()

        assert get_registry().list_stores() == {}


class TestFastAPISection:
    """[fastapi] configuration."""

    def test_trusted_proxy_networks(self, tmp_path):
        config_file = _write(
            tmp_path / "c.toml",
            """
            [fastapi]
            trusted_proxy_networks = ["10.0.0.0/8", "192.168.0.0/16"]
            """,
        )

        load_config(config_file)

        assert get_fastapi_config().trusted_proxy_networks == ["10.0.0.0/8", "192.168.0.0/16"]

    def test_trusted_proxy_networks_must_be_list(self, tmp_path):
        config_file = _write(
            tmp_path / "c.toml",
            """
            [fastapi]
            trusted_proxy_networks = "10.0.0.0/8"
            """,
        )

        with pytest.raises(ConfigValidationError, match="must be a list"):
            load_config(config_file)

    def test_configure_programmatically(self):
        configure_fastapi(trusted_proxy_networks=["172.16.0.0/12"])

        assert get_fastapi_config().trusted_proxy_networks == ["172.16.0.0/12"]
