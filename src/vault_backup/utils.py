"""Utility helpers for building backup paths."""

from __future__ import annotations

import re
from pathlib import Path

_UNSAFE_COMPONENT_RE = re.compile(r"[\\/\x00-\x1f]+")


def safe_component(value: str, *, fallback: str = "unnamed") -> str:
    """Reduce *value* to a single path component that cannot escape its parent."""
    cleaned = _UNSAFE_COMPONENT_RE.sub("_", value.strip())
    if cleaned in {"", ".", ".."}:
        return fallback
    return cleaned[:255]


def export_root_for(base: Path, email: str) -> Path:
    """Directory holding one operator's backup, named after their email address."""
    return base / safe_component(email)
