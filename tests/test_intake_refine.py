from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import GovernedRepo, ScriptedProvider
from governor.errors import ExitCode
from governor.flows.base import FlowContext
from governor.flows.intake import IntakeFlow
from governor.flows.refine import RefineFlow
from governor.flows.technical_readiness import TechnicalReadinessFlow
from governor.models.stub import StubProvider
from governor.policy.definition_of_ready import definition_of_ready_problems
from governor.state.decisions import DecisionLog
from governor.state.layout import DECISION_LOG_HEADER, RepoPaths
from governor.state.schema import WorkItem


def _refinable(repo: GovernedRepo) -> None:
    repo.write_backlog([{**repo.items[0], "owner": "PO", "size": "S"}])


def _refine(repo: GovernedRepo, *, approve: bool, provider=None, item_id: int = 1):
    flow = RefineFlow(repo.context(), item_id=item_id, approve=approve, provider=provider or StubProvider())
    return flow.execute()


def test_intake_appends_a_candidate_with_the_next_id(governed_repo: GovernedRepo) -> None:
    flow = IntakeFlow(
        governed_repo.context(), title="  Print a farewell ", story="As a user I want a goodbye.", epic_id="EPIC-1"
    )

    result = flow.execute()

    assert result.exit_code is ExitCode.SUCCESS
    assert result.run_id == "20261019_123000_intake_item-2"
    first, created = governed_repo.read_backlog()
    assert first["labels"] == ["demo"]
    assert created == {
        "id": 2,
        "title": "Print a farewell",
        "status": "candidate",
        "priority": 1,
        "size": "S",
        "owner": "PO",
        "story": "As a user I want a goodbye.",
        "acceptance_criteria": [],
        "non_goals": [],
        "dependencies": [],
        "risks": [],
        "epic_id": "EPIC-1",
    }
    record = json.loads((result.run_dir / "run.json").read_text(encoding="utf-8"))
    assert record["status"] == "completed"
    assert record["item_id"] == 2
    assert "- Title: Print a farewell" in (result.run_dir / "intake.md").read_text(encoding="utf-8")
    assert "refine --item 2" in (result.run_dir / "summary.md").read_text(encoding="utf-8")
    assert governed_repo.paths.decision_log_path.read_text(encoding="utf-8") == DECISION_LOG_HEADER


def test_intake_into_an_empty_backlog_starts_at_one(governed_repo: GovernedRepo) -> None:
    governed_repo.write_backlog([])

    result = IntakeFlow(governed_repo.context(), title="First").execute()

    assert result.details["item_id"] == 1
    assert [item["id"] for item in governed_repo.read_backlog()] == [1]


def test_intake_requires_a_title(governed_repo: GovernedRepo) -> None:
    backlog_before = governed_repo.paths.backlog_path.read_text(encoding="utf-8")

    result = IntakeFlow(governed_repo.context(), title="   ").execute()

    assert result.exit_code is ExitCode.PRECONDITION_FAILED
    assert result.details["check"] == "title"
    assert governed_repo.paths.backlog_path.read_text(encoding="utf-8") == backlog_before
    assert not any(governed_repo.paths.runs_dir.iterdir())


def test_intake_needs_the_layout(tmp_path: Path) -> None:
    context = FlowContext(paths=RepoPaths(tmp_path), actor="tester")

    assert IntakeFlow(context, title="Anything").execute().exit_code is ExitCode.INVALID_REPO_LAYOUT


@pytest.mark.parametrize(
    ("overrides", "expected"),
    [
        ({"owner": "PO", "size": "S"}, []),
        ({"owner": "qa", "size": "l"}, []),
        ({"owner": "dev", "size": "S"}, ["owner must be one of {MIBS,PO,QA,SAD,SASD}."]),
        ({"owner": "PO", "size": "XL"}, ["size must be one of {S,M,L}."]),
        ({"owner": "PO", "size": "S", "status": "ready_for_dev"}, ["status must be 'candidate' or 'ready' to refine."]),
        ({"owner": "PO", "size": "S", "title": " "}, ["title is required."]),
    ],
)
def test_definition_of_ready_rules(overrides: dict, expected: list) -> None:
    item = WorkItem.model_validate({"id": 3, "title": "Greet", "status": "candidate", **overrides})

    assert definition_of_ready_problems(item) == expected


def test_refine_rejection_is_recorded_and_changes_nothing(governed_repo: GovernedRepo) -> None:
    backlog_before = governed_repo.paths.backlog_path.read_text(encoding="utf-8")

    result = _refine(governed_repo, approve=True)

    assert result.exit_code is ExitCode.PRECONDITION_FAILED
    assert result.details["check"] == "definition_of_ready"
    assert result.run_id == "20261019_123000_refine_item-1_DOR_FAIL"
    refine_md = (result.run_dir / "refine.md").read_text(encoding="utf-8")
    assert "- owner must be one of {MIBS,PO,QA,SAD,SASD}." in refine_md
    assert json.loads((result.run_dir / "run.json").read_text(encoding="utf-8"))["status"] == "dor_failed"
    assert governed_repo.paths.backlog_path.read_text(encoding="utf-8") == backlog_before
    assert DecisionLog(governed_repo.paths.decision_log_path).lines() == []


def test_refine_preview_collects_one_turn_per_persona(governed_repo: GovernedRepo) -> None:
    _refinable(governed_repo)
    provider = ScriptedProvider(default="Looks fine; add an error case.")

    result = _refine(governed_repo, approve=False, provider=provider)

    assert result.exit_code is ExitCode.SUCCESS
    turns = sorted(path.name for path in (result.run_dir / "turns").iterdir())
    assert turns == ["01-architect.json", "02-specialist.json", "03-qa.json"]
    assert [request["metadata"]["task"] for request in provider.requests] == ["refine"] * 3
    assert "Greet the user" in provider.requests[0]["messages"][1]["content"]
    assert "## qa" in (result.run_dir / "summary.md").read_text(encoding="utf-8")
    assert governed_repo.read_backlog()[0]["status"] == "candidate"
    assert DecisionLog(governed_repo.paths.decision_log_path).lines() == []


def test_refine_approval_marks_item_ready_and_logs(governed_repo: GovernedRepo) -> None:
    _refinable(governed_repo)

    result = _refine(governed_repo, approve=True)

    assert result.exit_code is ExitCode.SUCCESS
    assert governed_repo.read_backlog()[0]["status"] == "ready"
    assert DecisionLog(governed_repo.paths.decision_log_path).lines() == [
        f"2026-10-19T12:30:00+00:00 | refine approved | item=1 | run={result.run_id} | by=tester"
    ]
    assert json.loads((result.run_dir / "run.json").read_text(encoding="utf-8"))["status"] == "approved"


def test_ready_item_continues_to_technical_readiness(governed_repo: GovernedRepo) -> None:
    _refinable(governed_repo)
    _refine(governed_repo, approve=True)

    result = TechnicalReadinessFlow(
        governed_repo.context(), item_id=1, approve=True, provider=StubProvider()
    ).execute()

    assert result.exit_code is ExitCode.SUCCESS
    assert governed_repo.read_backlog()[0]["status"] == "ready_for_dev"


def test_refine_unknown_item_is_exit_code_three(governed_repo: GovernedRepo) -> None:
    assert _refine(governed_repo, approve=False, item_id=9).exit_code is ExitCode.ITEM_NOT_FOUND
