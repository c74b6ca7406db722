"""Keep the vault agent binary installed and reasonably current."""

from __future__ import annotations

import io
import os
import stat
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional, Protocol
from zipfile import BadZipFile, ZipFile

import httpx
import structlog

from .agent import AgentClient
from .config import AgentSettings
from .errors import AgentCommandError, InstallError

__all__ = [
    "AgentInstaller",
    "AgentUpdateChecker",
    "HttpAgentInstaller",
    "read_last_checked",
    "record_check",
    "should_check_remote_version",
]

DEFAULT_CHECK_INTERVAL = timedelta(days=10)

log = structlog.get_logger("updater")


def _parse_iso_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 with Z/offset support and normalize to UTC."""
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def should_check_remote_version(
    now: datetime,
    last_checked_at: Optional[datetime],
    interval: timedelta = DEFAULT_CHECK_INTERVAL,
) -> bool:
    """Decide whether the remote agent version is due for a check.

    ``last_checked_at`` is None when nothing was recorded or the record could
    not be parsed; both cases are due.
    """
    if last_checked_at is None:
        return True
    return now - last_checked_at > interval


def read_last_checked(path: Path) -> datetime | None:
    try:
        return _parse_iso_datetime(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError):
        return None


def record_check(path: Path, now: datetime) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(now.astimezone(timezone.utc).isoformat() + "\n", encoding="utf-8")


class AgentInstaller(Protocol):
    def fetch_remote_version(self) -> str: ...

    def install(self) -> None: ...


class HttpAgentInstaller:
    """Downloads the agent's release zip and unpacks the binary into place."""

    def __init__(self, settings: AgentSettings, *, client: Optional[httpx.Client] = None) -> None:
        self._settings = settings
        self._client = client

    def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            resp = self._client.get(url)
        else:
            with httpx.Client(timeout=60.0, follow_redirects=True) as client:
                resp = client.get(url)
        resp.raise_for_status()
        return resp

    def fetch_remote_version(self) -> str:
        data = self._get(self._settings.version_url).json()
        version = str((data or {}).get("version") or "").strip()
        if not version:
            raise ValueError(f"no version published at {self._settings.version_url}")
        return version

    def install(self) -> None:
        target = self._settings.binary
        try:
            payload = self._get(self._settings.download_url).content
            with ZipFile(io.BytesIO(payload)) as archive:
                member = next(
                    (name for name in archive.namelist() if Path(name).name in {target.name, "bw", "bw.exe"}),
                    None,
                )
                if member is None:
                    raise InstallError(f"downloaded archive does not contain {target.name}")
                data = archive.read(member)
        except (httpx.HTTPError, BadZipFile) as exc:
            raise InstallError(f"could not download the vault agent: {exc}") from exc

        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.chmod(tmp_name, stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH)
            os.replace(tmp_name, target)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise InstallError(f"could not install the vault agent to {target}: {exc}") from exc
        log.info("agent_installed", path=str(target))


class AgentUpdateChecker:
    """Installs the agent when missing and reinstalls it when a newer one is published."""

    def __init__(self, agent: AgentClient, installer: AgentInstaller, settings: AgentSettings) -> None:
        self._agent = agent
        self._installer = installer
        self._settings = settings

    @property
    def interval(self) -> timedelta:
        return timedelta(days=self._settings.update_check_interval_days)

    def is_agent_installed(self) -> bool:
        return self._agent.is_installed()

    def _install(self) -> None:
        try:
            self._installer.install()
        except InstallError:
            raise
        except Exception as exc:
            raise InstallError(f"could not install the vault agent: {exc}") from exc
        if not self._agent.is_installed():
            raise InstallError(f"vault agent not found at {self._settings.binary} after install")

    def reconcile(self, now: Optional[datetime] = None) -> bool:
        """Make sure a usable agent is present. Returns True when an install happened."""
        now = now or datetime.now(timezone.utc)
        stamp = self._settings.last_check_file

        if not self.is_agent_installed():
            log.info("agent_missing", path=str(self._settings.binary))
            self._install()
            try:
                record_check(stamp, now)
            except OSError as exc:
                raise InstallError(f"agent installed but the check time could not be saved to {stamp}: {exc}") from exc
            return True

        if not self._settings.update_check_enabled:
            return False
        if not should_check_remote_version(now, read_last_checked(stamp), self.interval):
            return False

        # Recorded before the network round-trip so a crash here waits out the interval.
        try:
            record_check(stamp, now)
        except OSError as exc:
            log.warning("agent_check_time_not_saved", path=str(stamp), error=str(exc))
        try:
            remote = self._installer.fetch_remote_version()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("agent_version_check_failed", error=str(exc))
            return False
        try:
            local = self._agent.version()
        except AgentCommandError as exc:
            log.warning("agent_local_version_failed", error=str(exc))
            local = ""
        if local == remote:
            log.debug("agent_up_to_date", version=local)
            return False
        log.info("agent_outdated", local=local, remote=remote)
        self._install()
        return True
