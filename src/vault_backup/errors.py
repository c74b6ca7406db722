"""Error taxonomy for backup runs.

Every error carries the process exit code it maps to. Errors that abort a run
still pass through session teardown and secret zeroing before the process exits.
"""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "AgentCommandError",
    "ArchiveError",
    "AttachmentError",
    "AuthError",
    "ExportError",
    "InstallError",
    "SessionError",
    "UnlockError",
    "UserAbort",
    "ValidationError",
    "VaultBackupError",
]


class VaultBackupError(RuntimeError):
    """Base class for failures surfaced to the operator."""

    exit_code: int = 1


class ValidationError(VaultBackupError):
    """Operator input failed validation (malformed email, mismatched passwords)."""


class UserAbort(VaultBackupError):
    """Operator declined to continue at a confirmation point."""


class InstallError(VaultBackupError):
    """The vault agent is missing and could not be installed or updated."""


class AuthError(VaultBackupError):
    """Login did not leave the agent in an authenticated state."""


class UnlockError(VaultBackupError):
    """Unlock returned no usable session key."""


class SessionError(VaultBackupError):
    """A vault call was attempted without an unlocked session."""


class ExportError(VaultBackupError):
    """Exporting a single vault target failed."""

    def __init__(self, target: str, cause: str) -> None:
        super().__init__(f"export of {target} failed: {cause}")
        self.target = target
        self.cause = cause


class AttachmentError(VaultBackupError):
    """Retrieving one attachment failed. Recorded, never fatal to the run."""

    def __init__(self, item: str, file_name: str, cause: str) -> None:
        super().__init__(f"attachment {file_name!r} of item {item!r} failed: {cause}")
        self.item = item
        self.file_name = file_name
        self.cause = cause


class ArchiveError(VaultBackupError):
    """Bundling the export directory into one archive failed."""


class AgentCommandError(VaultBackupError):
    """The agent process exited non-zero or could not be started."""

    def __init__(self, command: Sequence[str], returncode: int | None, stderr: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr.splitlines()[-1] if self.stderr else "no output"
        if returncode is None:
            message = f"{self.command[0] if self.command else 'agent'} could not be executed: {detail}"
        else:
            message = f"{' '.join(self.command[:3])} exited with status {returncode}: {detail}"
        super().__init__(message)
