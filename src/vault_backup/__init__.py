"""Interactive backups of Bitwarden vaults through the ``bw`` command-line client."""

from __future__ import annotations

from typing import Any


def run_backup(*args: Any, **kwargs: Any) -> Any:
    """Lazily import the backup runner to keep ``import vault_backup`` cheap."""
    from .backup import run_backup as _run_backup
    return _run_backup(*args, **kwargs)

__all__ = ["run_backup"]
