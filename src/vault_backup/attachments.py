"""Download every file attachment in the vault next to the exports."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

from .agent import AgentClient, Item
from .errors import AgentCommandError, AttachmentError
from .rich_logger import log_info, log_warning
from .session import SessionController
from .utils import safe_component

__all__ = ["AttachmentFetcher", "FetchResult", "attachment_path"]

ATTACHMENTS_DIRNAME = "attachments"

log = structlog.get_logger("attachments")


def attachment_path(export_root: Path, item_name: str, file_name: str) -> Path:
    return export_root / ATTACHMENTS_DIRNAME / safe_component(item_name) / safe_component(file_name)


@dataclass(slots=True)
class FetchResult:
    saved: list[Path] = field(default_factory=list)
    errors: list[AttachmentError] = field(default_factory=list)


class AttachmentFetcher:
    """Retrieves attachments one by one; a failed download never stops the rest."""

    def __init__(self, agent: AgentClient, session: SessionController, export_root: Path) -> None:
        self._agent = agent
        self._session = session
        self._export_root = export_root

    def list_items_with_attachments(self) -> list[Item]:
        items = self._agent.list_items(self._session.require_session())
        return [item for item in items if item.attachments]

    def _destination(self, item: Item, file_name: str, claimed: set[Path]) -> Path:
        """Deterministic path for one attachment, never one already used in this run.

        Item names are not unique, so a later item whose name collides gets its id
        appended to the directory; a file name repeated inside that directory gets
        a numeric suffix.
        """
        preferred = destination = attachment_path(self._export_root, item.name, file_name)
        if destination in claimed:
            destination = attachment_path(self._export_root, f"{item.name}_{item.id}", file_name)
        base, n = destination, 2
        while destination in claimed:
            destination = base.with_name(f"{base.stem}_{n}{base.suffix}")
            n += 1
        if destination != preferred:
            log.info("attachment_path_disambiguated", item_id=item.id, path=str(destination))
        claimed.add(destination)
        return destination

    def fetch_all(self, items: list[Item]) -> FetchResult:
        result = FetchResult()
        claimed: set[Path] = set()
        if not items:
            log_info("No attachments to download.")
            return result
        for item in items:
            for attachment in item.attachments:
                destination = self._destination(item, attachment.file_name, claimed)
                try:
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    self._agent.get_attachment(
                        self._session.require_session(),
                        attachment.file_name,
                        attachment.item_id,
                        destination,
                    )
                except (AgentCommandError, OSError) as exc:
                    error = AttachmentError(item.name, attachment.file_name, str(exc))
                    result.errors.append(error)
                    log_warning(str(error))
                    log.warning("attachment_failed", item_id=item.id, file=attachment.file_name)
                    continue
                result.saved.append(destination)
        log.info("attachments_done", saved=len(result.saved), failed=len(result.errors))
        return result
