"""Vault agent client: the capability interface and its ``bw`` subprocess backend."""

from __future__ import annotations

import json
import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Sequence

import structlog

from .config import AgentSettings
from .credentials import Secret
from .errors import AgentCommandError

__all__ = [
    "AgentClient",
    "AttachmentRef",
    "BwCliAgent",
    "ExportFormat",
    "Item",
    "Organization",
    "VaultStatus",
]

SESSION_ENV = "BW_SESSION"
PASSWORD_ENV = "VAULT_BACKUP_PASSWORD"
_REDACTED = "***"
# Flags whose following argument is a secret and must never reach logs or errors.
_SECRET_FLAGS = frozenset({"--password", "--session"})

log = structlog.get_logger("agent")


class VaultStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class ExportFormat(str, Enum):
    JSON = "json"
    ENCRYPTED_JSON = "encrypted_json"


@dataclass(slots=True, frozen=True)
class Organization:
    id: str
    name: str


@dataclass(slots=True, frozen=True)
class AttachmentRef:
    file_name: str
    item_id: str


@dataclass(slots=True, frozen=True)
class Item:
    id: str
    name: str
    attachments: tuple[AttachmentRef, ...] = ()


class AgentClient(Protocol):
    """Operations the backup needs from the vault agent.

    Every call after unlock receives the session key explicitly; implementations
    must not stash it in process-wide state.
    """

    def is_installed(self) -> bool: ...

    def version(self) -> str: ...

    def status(self) -> VaultStatus: ...

    def account_email(self) -> str: ...

    def login(self, email: str, password: Secret) -> int: ...

    def unlock(self, password: Secret) -> str: ...

    def export(
        self,
        session: Secret,
        fmt: ExportFormat,
        output: Path,
        organization_id: Optional[str] = None,
        password: Optional[Secret] = None,
    ) -> None: ...

    def list_organizations(self, session: Secret) -> list[Organization]: ...

    def list_items(self, session: Secret, *, trash: bool = False) -> list[Item]: ...

    def get_attachment(self, session: Secret, file_name: str, item_id: str, output: Path) -> None: ...

    def lock(self, session: Secret) -> None: ...

    def logout(self, session: Secret) -> None: ...


def redact_argv(argv: Sequence[str]) -> list[str]:
    """Return *argv* with the value after each secret-bearing flag masked."""
    redacted: list[str] = []
    hide_next = False
    for part in argv:
        if hide_next:
            redacted.append(_REDACTED)
            hide_next = False
            continue
        redacted.append(part)
        if part in _SECRET_FLAGS:
            hide_next = True
    return redacted


def _records(payload: Any) -> list[dict[str, Any]]:
    if payload is None:
        return []
    if not isinstance(payload, list) or not all(isinstance(raw, dict) for raw in payload):
        raise ValueError("expected a JSON list of objects")
    return payload


def _parse_items(payload: Any) -> list[Item]:
    items: list[Item] = []
    for raw in _records(payload):
        if not raw.get("id"):
            raise ValueError("item without an id")
        item_id = str(raw["id"])
        attachments = tuple(
            AttachmentRef(file_name=str(att["fileName"]), item_id=item_id)
            for att in _records(raw.get("attachments"))
            if att.get("fileName")
        )
        items.append(Item(id=item_id, name=str(raw.get("name") or item_id), attachments=attachments))
    return items


def _parse_organizations(payload: Any) -> list[Organization]:
    organizations: list[Organization] = []
    for raw in _records(payload):
        if not raw.get("id"):
            raise ValueError("organization without an id")
        organizations.append(Organization(id=str(raw["id"]), name=str(raw.get("name") or raw["id"])))
    return organizations


class BwCliAgent:
    """``AgentClient`` backed by the Bitwarden ``bw`` command-line client.

    Secrets reach the child process through its own environment (``BW_SESSION``,
    ``--passwordenv``) rather than argv wherever ``bw`` allows it. The export
    password has no environment form, so it goes on argv and is redacted from
    every log line and error message.
    """

    def __init__(self, settings: AgentSettings) -> None:
        self._settings = settings

    @property
    def binary(self) -> Path:
        return self._settings.binary

    def _run(
        self,
        args: Sequence[str],
        *,
        session: Optional[Secret] = None,
        password: Optional[Secret] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        argv = [str(self.binary), *args]
        safe_argv = redact_argv(argv)
        env = dict(os.environ)
        # Never inherit a session from the parent; only the explicit one counts.
        env.pop(SESSION_ENV, None)
        env["BW_NOINTERACTION"] = "true"
        if session is not None:
            env[SESSION_ENV] = session.reveal()
        if password is not None:
            env[PASSWORD_ENV] = password.reveal()
        log.debug("agent_call", argv=safe_argv)
        try:
            cp = subprocess.run(
                argv,
                env=env,
                capture_output=True,
                text=True,
                check=False,
                timeout=self._settings.command_timeout_seconds,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise AgentCommandError(safe_argv, None, str(exc)) from exc
        if check and cp.returncode != 0:
            log.warning("agent_call_failed", argv=safe_argv, returncode=cp.returncode)
            raise AgentCommandError(safe_argv, cp.returncode, cp.stderr or cp.stdout or "")
        return cp

    def _malformed(self, args: Sequence[str], returncode: int, detail: str) -> AgentCommandError:
        log.warning("agent_output_malformed", argv=redact_argv([str(self.binary), *args]), detail=detail)
        return AgentCommandError(redact_argv([str(self.binary), *args]), returncode, f"unexpected output: {detail}")

    def _json(self, args: Sequence[str], *, session: Optional[Secret] = None, empty: str = "[]") -> Any:
        cp = self._run(args, session=session)
        try:
            return json.loads(cp.stdout or empty)
        except json.JSONDecodeError as exc:
            raise self._malformed(args, cp.returncode, f"invalid JSON: {exc}") from exc

    def _parsed(self, args: Sequence[str], parse: Callable[[Any], Any], *, session: Secret) -> Any:
        try:
            return parse(self._json(args, session=session))
        except ValueError as exc:
            raise self._malformed(args, 0, str(exc)) from exc

    def is_installed(self) -> bool:
        return self.binary.is_file() and os.access(self.binary, os.X_OK)

    def version(self) -> str:
        return self._run(["--version"]).stdout.strip()

    def _status_payload(self) -> dict[str, Any]:
        payload = self._json(["status"], empty="{}")
        if not isinstance(payload, dict):
            raise self._malformed(["status"], 0, "expected a JSON object")
        return payload

    def status(self) -> VaultStatus:
        payload = self._status_payload()
        try:
            return VaultStatus(str(payload.get("status", "")).lower())
        except ValueError:
            return VaultStatus.UNAUTHENTICATED

    def account_email(self) -> str:
        """Email of the account the agent is logged in as, empty when none."""
        return str(self._status_payload().get("userEmail") or "")

    def login(self, email: str, password: Secret) -> int:
        cp = self._run(["login", email, "--passwordenv", PASSWORD_ENV], password=password, check=False)
        log.debug("agent_login_exit", returncode=cp.returncode)
        return cp.returncode

    def unlock(self, password: Secret) -> str:
        cp = self._run(["unlock", "--passwordenv", PASSWORD_ENV, "--raw"], password=password, check=False)
        if cp.returncode != 0:
            log.debug("agent_unlock_exit", returncode=cp.returncode)
            return ""
        return cp.stdout

    def export(
        self,
        session: Secret,
        fmt: ExportFormat,
        output: Path,
        organization_id: Optional[str] = None,
        password: Optional[Secret] = None,
    ) -> None:
        args = ["export", "--format", fmt.value, "--output", str(output)]
        if organization_id:
            args += ["--organizationid", organization_id]
        if password is not None:
            args += ["--password", password.reveal()]
        self._run(args, session=session)

    def list_organizations(self, session: Secret) -> list[Organization]:
        return self._parsed(["list", "organizations"], _parse_organizations, session=session)

    def list_items(self, session: Secret, *, trash: bool = False) -> list[Item]:
        args = ["list", "items"]
        if trash:
            args.append("--trash")
        return self._parsed(args, _parse_items, session=session)

    def get_attachment(self, session: Secret, file_name: str, item_id: str, output: Path) -> None:
        self._run(["get", "attachment", file_name, "--itemid", item_id, "--output", str(output)], session=session)

    def lock(self, session: Secret) -> None:
        self._run(["lock"], session=session)

    def logout(self, session: Secret) -> None:
        self._run(["logout"], session=session)
