"""Top-level backup run.

Phase order is fixed: update check, credentials, login, unlock, export mode,
exports, attachments, trash audit, lock and logout, optional archive. Secrets
are zeroed when the credential scope closes, on every exit path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from .agent import AgentClient
from .archive import ArchiveFinalizer
from .attachments import AttachmentFetcher
from .config import Settings
from .credentials import CredentialManager, Prompter
from .errors import ArchiveError, AttachmentError, ExportError, UserAbort, VaultBackupError
from .exporter import ExportJob, ExportOrchestrator
from .rich_logger import console, log_error, log_info, log_step, log_success, log_warning, render_summary
from .session import SessionController
from .trash import TrashAuditor, TrashSummary
from .updater import AgentInstaller, AgentUpdateChecker, HttpAgentInstaller
from .utils import export_root_for

__all__ = ["BackupReport", "run_backup"]

log = structlog.get_logger("backup")


@dataclass(slots=True)
class BackupReport:
    exit_code: int = 0
    export_root: Optional[Path] = None
    exported: list[ExportJob] = field(default_factory=list)
    organizations: int = 0
    attachments_saved: int = 0
    attachment_errors: list[AttachmentError] = field(default_factory=list)
    trash: Optional[TrashSummary] = None
    archive_path: Optional[Path] = None
    error: Optional[VaultBackupError] = None


def _fail(report: BackupReport, exc: VaultBackupError) -> BackupReport:
    report.exit_code = exc.exit_code
    report.error = exc
    if isinstance(exc, UserAbort):
        log_warning(str(exc))
    else:
        log_error(str(exc))
    log.info("backup_aborted", error_type=type(exc).__name__)
    return report


def _backup_vault(
    agent: AgentClient,
    settings: Settings,
    credentials: CredentialManager,
    session: SessionController,
    report: BackupReport,
) -> None:
    email = credentials.prompt_email()
    password = credentials.prompt_secret("Vault master password")

    log_step("Signing in")
    session.login(email, password)
    session.unlock(password)
    log_success(f"Vault unlocked for {email}")

    orchestrator = ExportOrchestrator(agent, session, credentials)
    mode = orchestrator.decide_encryption(credentials.confirm("Encrypt the backup?", default=True))

    export_root = export_root_for(settings.backup.export_base, email)
    try:
        export_root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ExportError(str(export_root), f"cannot create export directory: {exc}") from exc
    report.export_root = export_root

    log_step("Exporting vaults")
    targets = orchestrator.discover_targets()
    report.organizations = len(targets) - 1
    report.exported = orchestrator.run_exports(mode, targets, export_root)
    log_success(f"Exported {len(report.exported)} vault(s) to {export_root}")

    log_step("Downloading attachments")
    fetcher = AttachmentFetcher(agent, session, export_root)
    fetched = fetcher.fetch_all(fetcher.list_items_with_attachments())
    report.attachments_saved = len(fetched.saved)
    report.attachment_errors = fetched.errors
    if fetched.errors:
        log_error(f"{len(fetched.errors)} attachment(s) could not be downloaded")

    report.trash = TrashAuditor(agent, session).audit()


def _offer_archive(credentials: CredentialManager, report: BackupReport) -> None:
    if report.export_root is None:
        return
    if not credentials.confirm("Compress the backup directory?", default=False):
        log_info(f"Backup left uncompressed in {report.export_root}")
        return
    try:
        report.archive_path = ArchiveFinalizer().bundle(report.export_root)
    except ArchiveError as exc:
        _fail(report, exc)
        return
    log_success(f"Backup archived to {report.archive_path}")


def run_backup(
    agent: AgentClient,
    settings: Settings,
    prompter: Optional[Prompter] = None,
    *,
    installer: Optional[AgentInstaller] = None,
    now: Optional[datetime] = None,
) -> BackupReport:
    """Run one complete backup and return what happened. Never raises ``VaultBackupError``."""
    report = BackupReport()

    log_step("Checking vault agent")
    checker = AgentUpdateChecker(agent, installer or HttpAgentInstaller(settings.agent), settings.agent)
    try:
        checker.reconcile(now)
    except VaultBackupError as exc:
        return _fail(report, exc)

    with CredentialManager(prompter) as credentials:
        session = SessionController(agent, credentials)
        try:
            _backup_vault(agent, settings, credentials, session, report)
        except VaultBackupError as exc:
            _fail(report, exc)
        finally:
            session.teardown()

        if report.exit_code == 0:
            _offer_archive(credentials, report)

    console.print(
        render_summary(
            export_root=None if report.archive_path else report.export_root,
            exported=[job.target.label for job in report.exported],
            attachments_saved=report.attachments_saved,
            attachment_errors=len(report.attachment_errors),
            trash_count=report.trash.count if report.trash else None,
            archive_path=report.archive_path,
        )
    )
    log.info("backup_finished", exit_code=report.exit_code)
    return report
