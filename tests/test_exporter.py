from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeAgent, ScriptedPrompter

from vault_backup.agent import ExportFormat, Organization
from vault_backup.credentials import CredentialManager, Secret
from vault_backup.errors import ExportError, SessionError, UserAbort, ValidationError
from vault_backup.exporter import PLAIN, ExportMode, ExportOrchestrator, TargetKind, VaultTarget
from vault_backup.session import SessionController

ORGS = [Organization(id="org-a", name="Acme"), Organization(id="org-b", name="Beta"), Organization(id="org-c", name="Ceta")]


def _orchestrator(agent: FakeAgent, prompter: ScriptedPrompter | None = None, *, unlocked: bool = True):
    credentials = CredentialManager(prompter or ScriptedPrompter())
    session = SessionController(agent, credentials)
    if unlocked:
        session.login("ops@example.com", Secret("master"))
        session.unlock(Secret("master"))
    return ExportOrchestrator(agent, session, credentials)


def test_decline_then_confirm_unencrypted_returns_plain():
    orchestrator = _orchestrator(FakeAgent(), ScriptedPrompter(decisions=[True]))
    assert orchestrator.decide_encryption(False) is PLAIN


def test_decline_unencrypted_aborts():
    orchestrator = _orchestrator(FakeAgent(), ScriptedPrompter(decisions=[False]))
    with pytest.raises(UserAbort):
        orchestrator.decide_encryption(False)


def test_matching_encryption_passwords_produce_encrypted_mode():
    orchestrator = _orchestrator(FakeAgent(), ScriptedPrompter(answers=["s3cret ", " s3cret"]))
    mode = orchestrator.decide_encryption(True)
    assert mode.encrypted is True
    assert mode.format is ExportFormat.ENCRYPTED_JSON
    assert mode.secret is not None and mode.secret.reveal() == "s3cret"


@pytest.mark.parametrize("answers", [["one", "two"], ["", ""], ["abc", "abcd"]])
def test_mismatched_or_empty_encryption_passwords_rejected(answers):
    agent = FakeAgent()
    orchestrator = _orchestrator(agent, ScriptedPrompter(answers=answers))
    with pytest.raises(ValidationError):
        orchestrator.decide_encryption(True)
    assert agent.export_calls == []


def test_discover_targets_personal_first_then_orgs_in_order():
    orchestrator = _orchestrator(FakeAgent(organizations=ORGS))
    targets = orchestrator.discover_targets()
    assert targets[0] == VaultTarget.personal()
    assert [t.id for t in targets[1:]] == ["org-a", "org-b", "org-c"]
    assert all(t.kind is TargetKind.ORGANIZATION for t in targets[1:])


def test_discover_targets_empty_is_informational(capsys):
    orchestrator = _orchestrator(FakeAgent())
    assert orchestrator.discover_targets() == [VaultTarget.personal()]
    assert "nothing to export" in capsys.readouterr().err


def test_discover_targets_failure_is_distinct_error():
    orchestrator = _orchestrator(FakeAgent(failing_calls={"list_organizations"}))
    with pytest.raises(ExportError) as excinfo:
        orchestrator.discover_targets()
    assert excinfo.value.target == "organizations"


def test_run_exports_issues_n_plus_one_calls_with_shared_mode(tmp_path: Path):
    agent = FakeAgent(organizations=ORGS)
    orchestrator = _orchestrator(agent)
    mode = ExportMode(encrypted=True, secret=Secret("enc"))
    jobs = orchestrator.run_exports(mode, orchestrator.discover_targets(), tmp_path)

    assert len(jobs) == len(ORGS) + 1
    calls = agent.export_calls
    assert len(calls) == len(ORGS) + 1
    assert [c["organization_id"] for c in calls] == [None, "org-a", "org-b", "org-c"]
    assert {c["format"] for c in calls} == {ExportFormat.ENCRYPTED_JSON}
    assert {c["password"] for c in calls} == {"enc"}
    assert calls[0]["output"] == tmp_path / "personal.json"
    assert calls[1]["output"] == tmp_path / "organization_org-a.json"


def test_plain_exports_pass_no_password(tmp_path: Path):
    agent = FakeAgent(organizations=ORGS[:1])
    orchestrator = _orchestrator(agent)
    orchestrator.run_exports(PLAIN, orchestrator.discover_targets(), tmp_path)
    assert [c["password"] for c in agent.export_calls] == [None, None]
    assert {c["format"] for c in agent.export_calls} == {ExportFormat.JSON}


def test_plan_has_one_job_per_target(tmp_path: Path):
    orchestrator = _orchestrator(FakeAgent())
    org = VaultTarget(kind=TargetKind.ORGANIZATION, id="org-a", name="Acme")
    jobs = orchestrator.plan(PLAIN, [VaultTarget.personal(), org, org], tmp_path)
    assert [job.target for job in jobs] == [VaultTarget.personal(), org]


def test_export_failure_fails_fast_with_target(tmp_path: Path):
    agent = FakeAgent(organizations=ORGS, failing_exports={"org-b"})
    orchestrator = _orchestrator(agent)
    with pytest.raises(ExportError) as excinfo:
        orchestrator.run_exports(PLAIN, orchestrator.discover_targets(), tmp_path)
    assert "Beta" in excinfo.value.target
    assert [c["organization_id"] for c in agent.export_calls] == [None, "org-a", "org-b"]


def test_exports_require_unlocked_session(tmp_path: Path):
    agent = FakeAgent()
    orchestrator = _orchestrator(agent, unlocked=False)
    with pytest.raises(SessionError):
        orchestrator.run_exports(PLAIN, [VaultTarget.personal()], tmp_path)
    assert agent.export_calls == []
