"""Report items sitting in the trash, which the agent never exports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from .agent import AgentClient
from .errors import AgentCommandError
from .rich_logger import log_warning
from .session import SessionController

__all__ = ["TrashAuditor", "TrashSummary"]

log = structlog.get_logger("trash")


@dataclass(slots=True, frozen=True)
class TrashSummary:
    count: int


class TrashAuditor:
    def __init__(self, agent: AgentClient, session: SessionController) -> None:
        self._agent = agent
        self._session = session

    def count_trashed_items(self) -> int:
        return len(self._agent.list_items(self._session.require_session(), trash=True))

    def audit(self) -> Optional[TrashSummary]:
        """Warn about trashed items. Informational only; listing failures are not fatal."""
        try:
            count = self.count_trashed_items()
        except AgentCommandError as exc:
            log_warning("Could not count items in the trash.")
            log.warning("trash_count_failed", error=str(exc))
            return None
        if count > 0:
            log_warning(
                f"{count} item(s) in the trash were not exported. "
                "Restore them before the backup if you want to keep them."
            )
        return TrashSummary(count=count)
