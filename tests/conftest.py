from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Optional

import pytest

from vault_backup.agent import ExportFormat, Item, Organization, VaultStatus
from vault_backup.config import clear_settings_cache, get_settings
from vault_backup.credentials import Prompter, Secret
from vault_backup.errors import AgentCommandError

SESSION_KEY = "c2Vzc2lvbi1rZXk="


class FakeAgent:
    """In-memory ``AgentClient`` that records every vault call it receives.

    ``is_installed`` is not recorded: it only inspects the local filesystem.
    """

    def __init__(
        self,
        *,
        organizations: Iterable[Organization] = (),
        items: Iterable[Item] = (),
        trash: Iterable[Item] = (),
        status: VaultStatus = VaultStatus.UNAUTHENTICATED,
        account: str = "ops@example.com",
        session_key: str = SESSION_KEY,
        login_ok: bool = True,
        installed: bool = True,
        version: str = "2024.6.0",
        failing_exports: Iterable[Optional[str]] = (),
        failing_attachments: Iterable[str] = (),
        failing_calls: Iterable[str] = (),
    ) -> None:
        self.organizations = list(organizations)
        self.items = list(items)
        self.trash = list(trash)
        self._status = status
        self.account = account
        self.session_key = session_key
        self.login_ok = login_ok
        self.installed = installed
        self._version = version
        self.failing_exports = set(failing_exports)
        self.failing_attachments = set(failing_attachments)
        self.failing_calls = set(failing_calls)
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.received_passwords: list[str] = []

    # helpers -------------------------------------------------------------
    def _record(self, name: str, **details: Any) -> None:
        self.calls.append((name, details))
        if name in self.failing_calls:
            raise AgentCommandError(["bw", name], 1, f"{name} failed")

    def _check_session(self, session: Secret) -> None:
        assert session.reveal() == self.session_key, "agent call issued without the unlocked session"

    @property
    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    @property
    def export_calls(self) -> list[dict[str, Any]]:
        return [details for name, details in self.calls if name == "export"]

    # AgentClient ----------------------------------------------------------
    def is_installed(self) -> bool:
        return self.installed

    def version(self) -> str:
        self._record("version")
        return self._version

    def status(self) -> VaultStatus:
        self._record("status")
        return self._status

    def account_email(self) -> str:
        self._record("account_email")
        return self.account

    def login(self, email: str, password: Secret) -> int:
        self._record("login", email=email)
        self.received_passwords.append(password.reveal())
        if not self.login_ok:
            return 1
        self._status = VaultStatus.LOCKED
        self.account = email
        return 0

    def unlock(self, password: Secret) -> str:
        self._record("unlock")
        self.received_passwords.append(password.reveal())
        if self.session_key.strip():
            self._status = VaultStatus.UNLOCKED
        return self.session_key

    def export(
        self,
        session: Secret,
        fmt: ExportFormat,
        output: Path,
        organization_id: Optional[str] = None,
        password: Optional[Secret] = None,
    ) -> None:
        self._check_session(session)
        self._record(
            "export",
            format=fmt,
            output=output,
            organization_id=organization_id,
            password=password.reveal() if password is not None else None,
        )
        if organization_id in self.failing_exports:
            raise AgentCommandError(["bw", "export"], 1, "export failed")
        output.write_text(json.dumps({"encrypted": fmt is ExportFormat.ENCRYPTED_JSON, "org": organization_id}))

    def list_organizations(self, session: Secret) -> list[Organization]:
        self._check_session(session)
        self._record("list_organizations")
        return list(self.organizations)

    def list_items(self, session: Secret, *, trash: bool = False) -> list[Item]:
        self._check_session(session)
        self._record("list_items", trash=trash)
        return list(self.trash if trash else self.items)

    def get_attachment(self, session: Secret, file_name: str, item_id: str, output: Path) -> None:
        self._check_session(session)
        self._record("get_attachment", file_name=file_name, item_id=item_id, output=output)
        if file_name in self.failing_attachments:
            raise AgentCommandError(["bw", "get", "attachment"], 1, "Not found.")
        output.write_bytes(f"{item_id}:{file_name}".encode())

    def lock(self, session: Secret) -> None:
        self._record("lock")
        self._status = VaultStatus.LOCKED

    def logout(self, session: Secret) -> None:
        self._record("logout")
        self._status = VaultStatus.UNAUTHENTICATED
        self.account = ""


class FakeInstaller:
    def __init__(self, agent: FakeAgent, *, remote_version: str = "2024.6.0", fail: bool = False) -> None:
        self.agent = agent
        self.remote_version = remote_version
        self.fail = fail
        self.installs = 0
        self.version_checks = 0

    def fetch_remote_version(self) -> str:
        self.version_checks += 1
        return self.remote_version

    def install(self) -> None:
        if self.fail:
            raise RuntimeError("download failed")
        self.installs += 1
        self.agent.installed = True
        self.agent._version = self.remote_version


class ScriptedPrompter(Prompter):
    """Answers prompts from fixed scripts and remembers the questions asked."""

    def __init__(self, answers: Iterable[str] = (), decisions: Iterable[bool] = ()) -> None:
        answer_iter = iter(list(answers))
        decision_iter = iter(list(decisions))
        self.asked: list[str] = []

        def _prompt(label: str, **_kwargs: Any) -> str:
            self.asked.append(label)
            return next(answer_iter)

        def _confirm(question: str, **_kwargs: Any) -> bool:
            self.asked.append(question)
            return next(decision_iter)

        super().__init__(prompt=_prompt, confirm=_confirm)


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Point every persisted path at tmp_path and reset the settings cache."""
    monkeypatch.setenv("APP_ENVIRONMENT", "test")
    monkeypatch.setenv("BACKUP_EXPORT_DIR", str(tmp_path / "exports"))
    monkeypatch.setenv("BW_INSTALL_DIR", str(tmp_path / "bin"))
    monkeypatch.setenv("BW_LAST_CHECK_FILE", str(tmp_path / "state" / "last_update_check"))
    monkeypatch.setenv("BW_UPDATE_CHECK_ENABLED", "false")
    monkeypatch.delenv("BW_BIN", raising=False)
    monkeypatch.delenv("BW_SESSION", raising=False)
    clear_settings_cache()
    try:
        yield get_settings()
    finally:
        clear_settings_cache()


@pytest.fixture
def fake_agent() -> FakeAgent:
    return FakeAgent()
