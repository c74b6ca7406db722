"""Operator credentials held as zeroable secret handles."""

from __future__ import annotations

import hmac
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Optional

import structlog
import typer

from .errors import ValidationError

__all__ = [
    "CredentialManager",
    "Prompter",
    "Secret",
    "validate_email",
]

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}")

log = structlog.get_logger("credentials")


def validate_email(value: str) -> bool:
    """Return True when *value* is a full ``local@domain.tld`` address."""
    return _EMAIL_RE.fullmatch(value or "") is not None


class Secret:
    """A secret value kept in a mutable buffer so it can be overwritten.

    ``reveal()`` hands out the text only at the agent boundary. Python strings
    produced that way cannot be wiped, so callers must not keep them around.
    """

    __slots__ = ("_buffer",)

    def __init__(self, value: str = "") -> None:
        self._buffer = bytearray(value.encode("utf-8"))

    def reveal(self) -> str:
        return self._buffer.decode("utf-8")

    def is_empty(self) -> bool:
        return not self._buffer.strip()

    def matches(self, other: Secret) -> bool:
        """Constant-time comparison of the trimmed values."""
        return hmac.compare_digest(bytes(self._buffer.strip()), bytes(other._buffer.strip()))

    def zeroize(self) -> None:
        for index in range(len(self._buffer)):
            self._buffer[index] = 0
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)

    def __bool__(self) -> bool:
        return bool(self._buffer)

    def __repr__(self) -> str:
        return "Secret('***')" if self._buffer else "Secret('')"

    __str__ = __repr__


@dataclass(slots=True)
class Prompter:
    """Interactive input functions; tests swap in scripted callables."""

    prompt: Callable[..., Any] = field(default=typer.prompt)
    confirm: Callable[..., bool] = field(default=typer.confirm)


class CredentialManager:
    """Collects operator identity and secrets and zeroes them on exit.

    Use as a context manager around the whole run::

        with CredentialManager() as credentials:
            email = credentials.prompt_email()
            ...

    Every secret issued or adopted inside the block is zeroed when the block
    exits, whether it returns normally or raises.
    """

    def __init__(self, prompter: Optional[Prompter] = None) -> None:
        self._prompter = prompter or Prompter()
        self._secrets: list[Secret] = []
        self._closed = False

    def __enter__(self) -> CredentialManager:
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.zeroize()

    def prompt_email(self) -> str:
        value = str(self._prompter.prompt("Vault email address")).strip()
        if not validate_email(value):
            raise ValidationError(f"{value!r} is not a valid email address")
        return value

    def prompt_secret(self, label: str, *, strip: bool = False) -> Secret:
        raw = str(self._prompter.prompt(label, hide_input=True))
        return self.adopt(raw.strip() if strip else raw)

    def confirm(self, question: str, *, default: bool = False) -> bool:
        return bool(self._prompter.confirm(question, default=default))

    def adopt(self, raw: str) -> Secret:
        """Wrap a secret produced elsewhere (e.g. a session key) so it is zeroed with the rest."""
        if self._closed:
            raise RuntimeError("credential manager already released its secrets")
        secret = Secret(raw)
        self._secrets.append(secret)
        return secret

    @property
    def issued(self) -> tuple[Secret, ...]:
        return tuple(self._secrets)

    def zeroize(self) -> None:
        if self._closed:
            return
        for secret in self._secrets:
            secret.zeroize()
        log.debug("secrets_zeroized", count=len(self._secrets))
        self._closed = True
