"""Configuration management for the users API service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import yaml

from .errors import StartupError

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

TrustedProxies = Union[List[str], str]


@dataclass(frozen=True)
class PoolConfig:
    """Sizing and timeouts for the shared connection pool."""

    min_size: int = 1
    max_size: int = 20
    max_idle: float = 30.0
    timeout: float = 2.0
    open_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.min_size < 0:
            raise ValueError("Pool min_size must not be negative")
        if self.max_size < 1:
            raise ValueError("Pool max_size must be at least 1")
        if self.min_size > self.max_size:
            raise ValueError("Pool min_size must not exceed max_size")
        for name in ("max_idle", "timeout", "open_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"Pool {name} must be positive")

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "PoolConfig":
        """Create a :class:`PoolConfig` from raw dictionary data."""
        defaults = PoolConfig()
        return PoolConfig(
            min_size=int(data.get("min_size", defaults.min_size)),
            max_size=int(data.get("max_size", defaults.max_size)),
            max_idle=float(data.get("max_idle", defaults.max_idle)),
            timeout=float(data.get("timeout", defaults.timeout)),
            open_timeout=float(data.get("open_timeout", defaults.open_timeout)),
        )


@dataclass(frozen=True)
class Settings:
    """Process-wide settings resolved at startup."""

    database_url: str
    host: str = "0.0.0.0"
    port: int = 3000
    environment: Optional[str] = None
    migrations_dir: Path = _PROJECT_ROOT / "migrations"
    trusted_proxies: TrustedProxies = "*"
    pool: PoolConfig = field(default_factory=PoolConfig)

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"Port must be between 1 and 65535, got {self.port}")


def parse_trusted_proxies(raw: Optional[str]) -> TrustedProxies:
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (_PROJECT_ROOT / "config" / "userapi.yaml").resolve(strict=False)


def _load_yaml(config_path: Optional[Path]) -> Dict[str, object]:
    if config_path is None or not config_path.is_file():
        return {}
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    return raw


def _resolve_path(value: object, base_path: Path) -> Path:
    candidate = Path(str(value)).expanduser()
    if not candidate.is_absolute():
        candidate = base_path / candidate
    return candidate.resolve(strict=False)


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    config_path: Optional[Path] = None,
) -> Settings:
    """Build :class:`Settings` from the YAML file (if any) overridden by the environment."""

    env = os.environ if environ is None else environ
    raw = _load_yaml(config_path)
    base_path = config_path.parent if config_path is not None else _PROJECT_ROOT

    database_url = env.get("DATABASE_URL") or raw.get("database_url")
    if not database_url:
        raise StartupError("DATABASE_URL must be set to a PostgreSQL connection string")

    pool_raw = raw.get("pool") or {}
    if not isinstance(pool_raw, dict):
        raise ValueError("The 'pool' configuration section must be a mapping")
    pool_values: Dict[str, object] = dict(pool_raw)
    for key, env_name in (
        ("min_size", "DB_POOL_MIN_SIZE"),
        ("max_size", "DB_POOL_MAX_SIZE"),
        ("max_idle", "DB_POOL_IDLE_TIMEOUT"),
        ("timeout", "DB_POOL_TIMEOUT"),
        ("open_timeout", "DB_POOL_OPEN_TIMEOUT"),
    ):
        if env.get(env_name):
            pool_values[key] = env[env_name]

    migrations_raw = env.get("MIGRATIONS_DIR") or raw.get("migrations_dir")
    if migrations_raw:
        migrations_dir = _resolve_path(migrations_raw, base_path)
    else:
        migrations_dir = _PROJECT_ROOT / "migrations"

    proxies_raw = env.get("TRUSTED_PROXIES")
    if proxies_raw:
        trusted_proxies = parse_trusted_proxies(proxies_raw)
    elif isinstance(raw.get("trusted_proxies"), list):
        trusted_proxies = [str(item) for item in raw["trusted_proxies"]] or "*"
    else:
        trusted_proxies = parse_trusted_proxies(raw.get("trusted_proxies"))  # type: ignore[arg-type]

    return Settings(
        database_url=str(database_url),
        host=str(env.get("HOST") or raw.get("host") or "0.0.0.0"),
        port=int(env.get("PORT") or raw.get("port") or 3000),
        environment=env.get("APP_ENV") or raw.get("environment"),  # type: ignore[arg-type]
        migrations_dir=migrations_dir,
        trusted_proxies=trusted_proxies,
        pool=PoolConfig.from_dict(pool_values),
    )


__all__ = [
    "PoolConfig",
    "Settings",
    "load_settings",
    "parse_trusted_proxies",
    "resolve_config_path",
]
