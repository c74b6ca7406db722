"""Application configuration loaded via python-decouple with typed helpers."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final, Protocol, cast

from decouple import (
    Config as DecoupleConfig,
    RepositoryEmpty,
    RepositoryEnv,
)

_DOTENV_PATH: Final[Path] = Path(".env")

DEFAULT_INSTALL_DIR: Final[str] = "~/.local/share/vault-backup/bin"
DEFAULT_LAST_CHECK_FILE: Final[str] = "~/.local/share/vault-backup/last_update_check"
DEFAULT_DOWNLOAD_URL: Final[str] = "https://vault.bitwarden.com/download/?app=cli&platform=linux"
DEFAULT_VERSION_URL: Final[str] = "https://registry.npmjs.org/@bitwarden/cli/latest"


def _build_decouple_config() -> DecoupleConfig:
    # Missing .env (CI, tests, fresh checkouts) falls back to os.environ only.
    try:
        return DecoupleConfig(RepositoryEnv(str(_DOTENV_PATH)))
    except FileNotFoundError:
        return DecoupleConfig(RepositoryEmpty())


_decouple_config: Final[DecoupleConfig] = _build_decouple_config()


@dataclass(slots=True, frozen=True)
class AgentSettings:
    """Where the vault agent lives and how it is kept up to date."""

    binary: Path
    install_dir: Path
    download_url: str
    version_url: str
    update_check_enabled: bool
    update_check_interval_days: int
    last_check_file: Path
    command_timeout_seconds: int | None


@dataclass(slots=True, frozen=True)
class BackupSettings:
    """Backup output location."""

    export_base: Path


@dataclass(slots=True, frozen=True)
class Settings:
    """Top-level application settings."""

    environment: str
    agent: AgentSettings
    backup: BackupSettings
    # Logging
    log_level: str
    log_json_enabled: bool
    log_rich_enabled: bool


def _bool(value: str, *, default: bool) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    return default


def _int(value: str, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _int_optional(value: str) -> int | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return int(text)
    except (TypeError, ValueError):
        return None


def _path(value: str) -> Path:
    return Path(value).expanduser()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    environment = _decouple_config("APP_ENVIRONMENT", default="production")

    install_dir = _path(_decouple_config("BW_INSTALL_DIR", default=DEFAULT_INSTALL_DIR))
    binary_raw = _decouple_config("BW_BIN", default="").strip()
    interval_days = _int(_decouple_config("BW_UPDATE_CHECK_INTERVAL_DAYS", default="10"), default=10)

    agent_settings = AgentSettings(
        binary=_path(binary_raw) if binary_raw else install_dir / "bw",
        install_dir=install_dir,
        download_url=_decouple_config("BW_DOWNLOAD_URL", default=DEFAULT_DOWNLOAD_URL),
        version_url=_decouple_config("BW_VERSION_URL", default=DEFAULT_VERSION_URL),
        update_check_enabled=_bool(_decouple_config("BW_UPDATE_CHECK_ENABLED", default="true"), default=True),
        update_check_interval_days=interval_days if interval_days > 0 else 10,
        last_check_file=_path(_decouple_config("BW_LAST_CHECK_FILE", default=DEFAULT_LAST_CHECK_FILE)),
        command_timeout_seconds=_int_optional(_decouple_config("BW_COMMAND_TIMEOUT_SECONDS", default="")),
    )

    backup_settings = BackupSettings(
        export_base=_path(_decouple_config("BACKUP_EXPORT_DIR", default=".")),
    )

    return Settings(
        environment=environment,
        agent=agent_settings,
        backup=backup_settings,
        log_level=_decouple_config("LOG_LEVEL", default="WARNING"),
        log_json_enabled=_bool(_decouple_config("LOG_JSON_ENABLED", default="false"), default=False),
        log_rich_enabled=_bool(_decouple_config("LOG_RICH_ENABLED", default="true"), default=True),
    )


class _CacheClearable(Protocol):
    def cache_clear(self) -> None: ...


def clear_settings_cache() -> None:
    """Clear the lru_cache for get_settings in a type-checker-friendly way."""
    cache_clear = getattr(cast(_CacheClearable, get_settings), "cache_clear", None)
    if callable(cache_clear):
        cache_clear()
