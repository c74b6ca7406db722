"""Export planning and sequencing for the personal vault and every organization."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog

from .agent import AgentClient, ExportFormat
from .credentials import CredentialManager, Secret
from .errors import AgentCommandError, ExportError, UserAbort, ValidationError
from .rich_logger import log_info
from .session import SessionController
from .utils import safe_component

__all__ = [
    "ExportJob",
    "ExportMode",
    "ExportOrchestrator",
    "TargetKind",
    "VaultTarget",
]

PERSONAL_EXPORT_NAME = "personal.json"

log = structlog.get_logger("export")


class TargetKind(str, Enum):
    PERSONAL = "personal"
    ORGANIZATION = "organization"


@dataclass(slots=True, frozen=True)
class VaultTarget:
    kind: TargetKind
    id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def personal(cls) -> VaultTarget:
        return cls(kind=TargetKind.PERSONAL)

    @property
    def label(self) -> str:
        if self.kind is TargetKind.PERSONAL:
            return "personal vault"
        return f"organization {self.name or self.id}"

    def filename(self) -> str:
        if self.kind is TargetKind.PERSONAL:
            return PERSONAL_EXPORT_NAME
        return f"organization_{safe_component(self.id or self.name or 'unknown')}.json"


@dataclass(slots=True, frozen=True)
class ExportMode:
    encrypted: bool
    secret: Optional[Secret] = None

    @property
    def format(self) -> ExportFormat:
        return ExportFormat.ENCRYPTED_JSON if self.encrypted else ExportFormat.JSON


PLAIN = ExportMode(encrypted=False)


@dataclass(slots=True, frozen=True)
class ExportJob:
    target: VaultTarget
    mode: ExportMode
    output: Path


class ExportOrchestrator:
    """Decides the export mode once and exports each vault target in order."""

    def __init__(self, agent: AgentClient, session: SessionController, credentials: CredentialManager) -> None:
        self._agent = agent
        self._session = session
        self._credentials = credentials

    def decide_encryption(self, encrypt: bool) -> ExportMode:
        if not encrypt:
            if not self._credentials.confirm("Continue with an unencrypted backup?", default=False):
                raise UserAbort("backup cancelled: unencrypted export declined")
            return PLAIN
        first = self._credentials.prompt_secret("Encryption password", strip=True)
        second = self._credentials.prompt_secret("Confirm encryption password", strip=True)
        if first.is_empty():
            raise ValidationError("encryption password must not be empty")
        if not first.matches(second):
            raise ValidationError("encryption passwords do not match")
        return ExportMode(encrypted=True, secret=first)

    def discover_targets(self) -> list[VaultTarget]:
        """Personal vault first, then organizations in the order the agent lists them."""
        session = self._session.require_session()
        try:
            organizations = self._agent.list_organizations(session)
        except AgentCommandError as exc:
            raise ExportError("organizations", f"organization discovery failed: {exc}") from exc
        if not organizations:
            log_info("No organization vaults found; nothing to export for organizations.")
        targets = [VaultTarget.personal()]
        targets.extend(VaultTarget(kind=TargetKind.ORGANIZATION, id=org.id, name=org.name) for org in organizations)
        log.info("export_targets_discovered", organizations=len(organizations))
        return targets

    def plan(self, mode: ExportMode, targets: list[VaultTarget], export_root: Path) -> list[ExportJob]:
        seen: set[VaultTarget] = set()
        jobs: list[ExportJob] = []
        for target in targets:
            if target in seen:
                continue
            seen.add(target)
            jobs.append(ExportJob(target=target, mode=mode, output=export_root / target.filename()))
        return jobs

    def run_exports(self, mode: ExportMode, targets: list[VaultTarget], export_root: Path) -> list[ExportJob]:
        """Issue one export per target; the first failure aborts the run."""
        jobs = self.plan(mode, targets, export_root)
        completed: list[ExportJob] = []
        for job in jobs:
            session = self._session.require_session()
            organization_id = job.target.id if job.target.kind is TargetKind.ORGANIZATION else None
            try:
                self._agent.export(
                    session,
                    job.mode.format,
                    job.output,
                    organization_id=organization_id,
                    password=job.mode.secret if job.mode.encrypted else None,
                )
            except AgentCommandError as exc:
                raise ExportError(job.target.label, str(exc)) from exc
            log.info("export_ok", target=job.target.kind.value, target_id=job.target.id, format=job.mode.format.value)
            completed.append(job)
        return completed
