"""Session lifecycle: authenticate, unlock, and always lock and log out."""

from __future__ import annotations

from enum import Enum
from typing import Optional

import structlog

from .agent import AgentClient, VaultStatus
from .credentials import CredentialManager, Secret
from .errors import AgentCommandError, AuthError, SessionError, UnlockError

__all__ = ["SessionController", "SessionState"]

log = structlog.get_logger("session")


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    UNLOCKED = "unlocked"
    LOCKED = "locked"
    LOGGED_OUT = "logged_out"


class SessionController:
    """Drives the agent through login → unlock → lock → logout.

    The controller is the only owner of the session key. Other components ask
    for it through ``require_session()`` and pass it explicitly to the agent.
    """

    def __init__(self, agent: AgentClient, credentials: CredentialManager) -> None:
        self._agent = agent
        self._credentials = credentials
        self._key: Optional[Secret] = None
        self._torn_down = False
        self.state = SessionState.UNAUTHENTICATED

    @property
    def authorization(self) -> str:
        """Current session key text, empty when no session is held."""
        if self._key is None:
            return ""
        return self._key.reveal()

    def require_session(self) -> Secret:
        if self._key is None or self._key.is_empty() or self.state is not SessionState.UNLOCKED:
            raise SessionError("vault is not unlocked; no session available")
        return self._key

    def login(self, email: str, password: Secret) -> None:
        if self.state is not SessionState.UNAUTHENTICATED:
            return
        if self._agent.status() is not VaultStatus.UNAUTHENTICATED:
            if self._agent.account_email().casefold() == email.casefold():
                log.info("login_skipped_already_authenticated")
                self.state = SessionState.AUTHENTICATED
                return
            # Another account holds the agent; the export directory is named after *email*.
            log.info("login_switching_account")
            self._agent.logout(Secret())
        returncode = self._agent.login(email, password)
        if self._agent.status() is VaultStatus.UNAUTHENTICATED:
            raise AuthError(f"login failed for {email} (agent exit status {returncode})")
        self.state = SessionState.AUTHENTICATED
        log.info("login_ok")

    def unlock(self, password: Secret) -> Secret:
        if self.state is SessionState.UNAUTHENTICATED:
            raise AuthError("cannot unlock before logging in")
        raw = self._agent.unlock(password)
        if not raw or not raw.strip():
            raise UnlockError("unlock returned an empty session key")
        self._key = self._credentials.adopt(raw.strip())
        self.state = SessionState.UNLOCKED
        log.info("unlock_ok")
        return self._key

    def _session_for_teardown(self) -> Secret:
        return self._key if self._key is not None else Secret()

    def lock(self) -> None:
        if self.state is not SessionState.UNLOCKED:
            return
        try:
            self._agent.lock(self._session_for_teardown())
        finally:
            self.state = SessionState.LOCKED

    def logout(self) -> None:
        if self.state in (SessionState.UNAUTHENTICATED, SessionState.LOGGED_OUT):
            return
        try:
            self._agent.logout(self._session_for_teardown())
        finally:
            self.state = SessionState.LOGGED_OUT

    def teardown(self) -> None:
        """Lock then log out, once. Agent failures here are logged, never raised."""
        if self._torn_down:
            return
        self._torn_down = True
        for step in (self.lock, self.logout):
            try:
                step()
            except AgentCommandError as exc:
                log.warning("teardown_step_failed", step=step.__name__, error=str(exc))
        if self._key is not None:
            self._key.zeroize()
        log.debug("teardown_complete", state=self.state.value)
