from __future__ import annotations

from pathlib import Path

import pytest

from userapi.config import PoolConfig, load_settings, parse_trusted_proxies, resolve_config_path
from userapi.errors import StartupError

URL = "postgresql://app:secret@db:5432/app"


def test_defaults_follow_the_environment() -> None:
    settings = load_settings({"DATABASE_URL": URL})

    assert settings.database_url == URL
    assert settings.host == "0.0.0.0"
    assert settings.port == 3000
    assert settings.environment is None
    assert settings.trusted_proxies == "*"
    assert settings.migrations_dir.name == "migrations"
    assert settings.pool == PoolConfig(min_size=1, max_size=20, max_idle=30.0, timeout=2.0, open_timeout=30.0)


def test_missing_database_url_is_fatal() -> None:
    with pytest.raises(StartupError, match="DATABASE_URL"):
        load_settings({"PORT": "8080"})


def test_environment_overrides(tmp_path: Path) -> None:
    settings = load_settings(
        {
            "DATABASE_URL": URL,
            "PORT": "8080",
            "HOST": "127.0.0.1",
            "APP_ENV": "production",
            "MIGRATIONS_DIR": str(tmp_path),
            "TRUSTED_PROXIES": "10.0.0.1, 10.0.0.2",
            "DB_POOL_MAX_SIZE": "5",
            "DB_POOL_IDLE_TIMEOUT": "10",
            "DB_POOL_TIMEOUT": "0.5",
        }
    )

    assert settings.port == 8080
    assert settings.host == "127.0.0.1"
    assert settings.environment == "production"
    assert settings.migrations_dir == tmp_path.resolve()
    assert settings.trusted_proxies == ["10.0.0.1", "10.0.0.2"]
    assert settings.pool.max_size == 5
    assert settings.pool.max_idle == 10.0
    assert settings.pool.timeout == 0.5


def test_yaml_file_supplies_values_below_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "userapi.yaml"
    config_path.write_text(
        "\n".join(
            [
                f"database_url: {URL}",
                "port: 4000",
                "environment: staging",
                "migrations_dir: sql",
                "trusted_proxies: [192.168.1.10]",
                "pool:",
                "  max_size: 8",
                "  timeout: 3",
            ]
        ),
        encoding="utf-8",
    )

    settings = load_settings({"PORT": "5000"}, config_path=config_path)

    assert settings.database_url == URL
    assert settings.port == 5000
    assert settings.environment == "staging"
    assert settings.migrations_dir == (tmp_path / "sql").resolve()
    assert settings.trusted_proxies == ["192.168.1.10"]
    assert settings.pool.max_size == 8
    assert settings.pool.timeout == 3.0


def test_absent_yaml_file_is_ignored(tmp_path: Path) -> None:
    settings = load_settings({"DATABASE_URL": URL}, config_path=tmp_path / "missing.yaml")

    assert settings.port == 3000


def test_yaml_must_be_a_mapping(tmp_path: Path) -> None:
    config_path = tmp_path / "userapi.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_settings({"DATABASE_URL": URL}, config_path=config_path)


@pytest.mark.parametrize(
    "env",
    [
        {"PORT": "not-a-number"},
        {"PORT": "70000"},
        {"DB_POOL_MAX_SIZE": "0"},
        {"DB_POOL_MIN_SIZE": "30"},
        {"DB_POOL_TIMEOUT": "-1"},
    ],
)
def test_invalid_values_are_rejected(env) -> None:
    with pytest.raises(ValueError):
        load_settings({"DATABASE_URL": URL, **env})


def test_parse_trusted_proxies() -> None:
    assert parse_trusted_proxies(None) == "*"
    assert parse_trusted_proxies(" , ") == "*"
    assert parse_trusted_proxies("a,b") == ["a", "b"]


def test_resolve_config_path_prefers_explicit_value(tmp_path: Path) -> None:
    assert resolve_config_path(str(tmp_path / "x.yaml")) == (tmp_path / "x.yaml").resolve()
    assert resolve_config_path(None).name == "userapi.yaml"
