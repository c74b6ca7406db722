"""Command-line entry point for interactive vault backups."""

from __future__ import annotations

import logging
import re
from collections.abc import MutableMapping
from typing import Any

import structlog
import typer

from .agent import BwCliAgent
from .backup import run_backup
from .config import Settings, get_settings
from .credentials import Prompter

_LOGGING_CONFIGURED = False

# Event keys whose values are never rendered, whatever logger emits them.
_SECRET_KEYS = frozenset({"password", "session", "session_key", "secret", "key", "token"})
_SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)(--password|--session)(\s+|=)\S+"), r"\1\2***"),
    (re.compile(r"(?i)(bw_session=)\S+"), r"\1***"),
)

app = typer.Typer(
    help="Back up a Bitwarden vault: personal and organization exports plus attachments.",
    add_completion=False,
    invoke_without_command=True,
)


def _redact_secrets(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    for key in list(event_dict):
        if key.lower() in _SECRET_KEYS:
            event_dict[key] = "***"
            continue
        value = event_dict[key]
        if isinstance(value, str):
            for pattern, replacement in _SECRET_PATTERNS:
                value = pattern.sub(replacement, value)
            event_dict[key] = value
    return event_dict


def _configure_logging(settings: Settings) -> None:
    """Initialize structlog and stdlib logging formatting."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    level = getattr(logging, settings.log_level.upper(), logging.WARNING)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        _redact_secrets,
    ]
    if settings.log_json_enabled:
        processors.append(structlog.processors.JSONRenderer())
    elif settings.log_rich_enabled:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.KeyValueRenderer(key_order=["event"]))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level)
    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _LOGGING_CONFIGURED = True


@app.callback()
def backup() -> None:
    """Back up a Bitwarden vault into a directory named after your email."""
    settings = get_settings()
    _configure_logging(settings)
    report = run_backup(BwCliAgent(settings.agent), settings, Prompter())
    raise typer.Exit(code=report.exit_code)


def main() -> None:
    app()
