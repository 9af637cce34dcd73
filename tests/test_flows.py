from __future__ import annotations

import dataclasses
import json
from datetime import timedelta
from itertools import count
from pathlib import Path

import pytest
import yaml

from conftest import ARCHITECTURE_FIELDS, FIXED_NOW, GovernedRepo, ScriptedProvider, estimate_json
from governor.errors import ExitCode
from governor.flows.base import FlowContext
from governor.flows.delivery import DeliveryFlow
from governor.flows.technical_readiness import TechnicalReadinessFlow
from governor.models.provider import ProviderTransportError
from governor.models.stub import StubProvider
from governor.policy.preconditions import PreconditionReport, PreconditionValidator
from governor.state.decisions import DecisionLog
from governor.state.layout import DECISION_LOG_HEADER, RepoPaths
from governor.tools.process import AllowedProcess, SandboxedProcessExecutor

TECH_ARTIFACTS = {
    "estimation.json",
    "estimation.voting.json",
    "implementation.plan.json",
    "architecture.md",
    "qa-plan.md",
    "technical-tasks.yaml",
    "patch.backlog.json",
    "summary.md",
}


def _ticking_clock():
    ticks = count()
    return lambda: FIXED_NOW + timedelta(seconds=next(ticks))


def _readiness(repo: GovernedRepo, *, approve: bool, provider=None, item_id: int = 1, context=None):
    flow = TechnicalReadinessFlow(
        context or repo.context(),
        item_id=item_id,
        approve=approve,
        provider=provider or StubProvider(),
    )
    return flow.execute()


def _deliver(repo: GovernedRepo, *, approve: bool, executor=None, context=None):
    flow = DeliveryFlow(context or repo.context(), item_id=1, approve=approve, executor=executor)
    return flow.execute()


class FailingRunExecutor(SandboxedProcessExecutor):
    """Reports a non-zero exit for the run step."""

    def run(self, process, working_dir, extra_args=(), *, stdout_path, stderr_path):
        outcome = super().run(process, working_dir, extra_args, stdout_path=stdout_path, stderr_path=stderr_path)
        if outcome.process is AllowedProcess.RUN:
            return dataclasses.replace(outcome, exit_code=1)
        return outcome


def test_readiness_preview_writes_artifacts_only(governed_repo: GovernedRepo) -> None:
    backlog_before = governed_repo.paths.backlog_path.read_text(encoding="utf-8")

    result = _readiness(governed_repo, approve=False)

    assert result.exit_code is ExitCode.SUCCESS
    assert result.run_id == "20261019_123000_technical-readiness_item-1"
    assert {path.name for path in result.run_dir.iterdir()} == TECH_ARTIFACTS
    assert governed_repo.paths.backlog_path.read_text(encoding="utf-8") == backlog_before
    assert not any(governed_repo.paths.plans_dir.iterdir())
    assert governed_repo.paths.decision_log_path.read_text(encoding="utf-8") == DECISION_LOG_HEADER
    patch = json.loads((result.run_dir / "patch.backlog.json").read_text(encoding="utf-8"))
    assert patch["changes"]["status"] == {"before": "candidate", "after": "ready_for_dev"}


def test_readiness_approval_updates_item_and_logs(governed_repo: GovernedRepo) -> None:
    result = _readiness(governed_repo, approve=True)

    assert result.exit_code is ExitCode.SUCCESS
    item = governed_repo.read_backlog()[0]
    assert item["status"] == "ready_for_dev"
    assert item["estimate"]["story_points"] == 3
    assert item["estimate"]["created_from_run_id"] == result.run_id
    assert item["implementation_plan_ref"] == "state/plans/item-1/implementation.plan.json"
    assert item["technical_notes_ref"] == f"state/runs/{result.run_id}/"
    assert item["labels"] == ["demo"]
    plan = json.loads((governed_repo.root / item["implementation_plan_ref"]).read_text(encoding="utf-8"))
    assert plan["app_id"] == "hello-app"
    assert plan["plan_id"] == "PLAN-20261019-123000-technical-read"
    assert (result.run_dir / "patch.backlog.applied.json").exists()
    log = governed_repo.paths.decision_log_path.read_text(encoding="utf-8").splitlines()
    assert log[-1] == (
        f"2026-10-19T12:30:00+00:00 | technical-readiness approved | item=1 | run={result.run_id} | by=tester"
    )


def test_readiness_approval_is_blocked_by_thin_design_documents(governed_repo: GovernedRepo) -> None:
    architect = estimate_json(3, **ARCHITECTURE_FIELDS)
    provider = ScriptedProvider(
        {"architect": [architect, architect, "tiny", "tasks: []"], "specialist": [estimate_json(3)] * 2},
        default=estimate_json(3),
    )
    backlog_before = governed_repo.paths.backlog_path.read_text(encoding="utf-8")

    result = _readiness(governed_repo, approve=True, provider=provider)

    assert result.exit_code is ExitCode.APPLY_FAILED
    assert "architecture.md is shorter than 200 characters" in result.details["problems"]
    assert governed_repo.paths.backlog_path.read_text(encoding="utf-8") == backlog_before
    assert governed_repo.paths.decision_log_path.read_text(encoding="utf-8") == DECISION_LOG_HEADER
    assert "Blocking problems" in (result.run_dir / "summary.md").read_text(encoding="utf-8")


def test_unsupported_language_fails_plan_contract(governed_repo: GovernedRepo) -> None:
    fields = {**ARCHITECTURE_FIELDS, "language": "csharp"}
    provider = ScriptedProvider(default=estimate_json(3, **fields))

    result = _readiness(governed_repo, approve=False, provider=provider)

    assert result.exit_code is ExitCode.APPLY_FAILED
    assert "csharp" in result.message


def test_provider_transport_failure_is_unexpected(governed_repo: GovernedRepo) -> None:
    class OfflineProvider(ScriptedProvider):
        def _raw_invoke(self, payload):
            raise ProviderTransportError("network unreachable")

    result = _readiness(governed_repo, approve=False, provider=OfflineProvider())

    assert result.exit_code is ExitCode.UNEXPECTED_ERROR


def test_missing_layout_is_exit_code_two(tmp_path: Path) -> None:
    context = FlowContext(paths=RepoPaths(tmp_path / "missing"), actor="tester")

    result = TechnicalReadinessFlow(context, item_id=1, approve=False, provider=StubProvider()).execute()

    assert result.exit_code is ExitCode.INVALID_REPO_LAYOUT
    assert result.run_dir is None


def test_unknown_item_is_exit_code_three(governed_repo: GovernedRepo) -> None:
    result = _readiness(governed_repo, approve=False, item_id=42)

    assert result.exit_code is ExitCode.ITEM_NOT_FOUND
    assert not any(governed_repo.paths.runs_dir.iterdir())


def test_corrupt_backlog_is_exit_code_four(governed_repo: GovernedRepo) -> None:
    governed_repo.paths.backlog_path.write_text("backlog: [\n", encoding="utf-8")

    assert _readiness(governed_repo, approve=False).exit_code is ExitCode.STORE_PARSE_ERROR
    assert _deliver(governed_repo, approve=False).exit_code is ExitCode.STORE_PARSE_ERROR


def test_delivery_of_unrefined_item_creates_nothing(governed_repo: GovernedRepo) -> None:
    result = _deliver(governed_repo, approve=True)

    assert result.exit_code is ExitCode.PRECONDITION_FAILED
    assert result.details["check"] == "status"
    assert not any(governed_repo.paths.runs_dir.iterdir())
    assert not any(governed_repo.paths.workspaces_dir.iterdir())
    assert not any(governed_repo.paths.apps_dir.iterdir())


def test_delivery_preview_validates_without_deploying(governed_repo: GovernedRepo) -> None:
    _readiness(governed_repo, approve=True)

    result = _deliver(governed_repo, approve=False)

    assert result.exit_code is ExitCode.SUCCESS
    assert result.details["state"] == "validation_passed_not_approved"
    names = {path.name for path in result.run_dir.iterdir()}
    assert {"validation.json", "patch.preview.json", "patch.preview.diff", "build.stdout.log", "run.stdout.log"} <= names
    assert "patch.applied.json" not in names
    assert not (governed_repo.paths.apps_dir / "hello-app").exists()
    decisions = DecisionLog(governed_repo.paths.decision_log_path).lines()
    assert [line.split(" | ")[1] for line in decisions] == ["technical-readiness approved"]
    diff = (result.run_dir / "patch.preview.diff").read_text(encoding="utf-8")
    assert "A main.py" in diff.splitlines()
    assert "__pycache__" not in diff


def test_approved_delivery_deploys_and_logs(governed_repo: GovernedRepo) -> None:
    context = governed_repo.context(clock=_ticking_clock())
    _readiness(governed_repo, approve=True, context=context)

    result = _deliver(governed_repo, approve=True, context=context)

    assert result.exit_code is ExitCode.SUCCESS
    deployed = governed_repo.paths.apps_dir / "hello-app"
    assert "hello-app" in (deployed / "main.py").read_text(encoding="utf-8")
    assert not (deployed / "__pycache__").exists()
    applied = json.loads((result.run_dir / "patch.applied.json").read_text(encoding="utf-8"))
    preview = json.loads((result.run_dir / "patch.preview.json").read_text(encoding="utf-8"))
    assert [entry["path"] for entry in applied["files"]] == [entry["path"] for entry in preview["files"]]
    assert all(entry["target_sha256"] == entry["sha256"] for entry in applied["files"])
    lines = governed_repo.paths.decision_log_path.read_text(encoding="utf-8").splitlines()
    assert lines[-1].endswith(f"| deliver approved | item=1 | run={result.run_id} | by=tester")
    assert governed_repo.read_backlog()[0]["status"] == "ready_for_dev"


def test_redelivery_previews_modifications(governed_repo: GovernedRepo) -> None:
    context = governed_repo.context(clock=_ticking_clock())
    _readiness(governed_repo, approve=True, context=context)
    _deliver(governed_repo, approve=True, context=context)
    (governed_repo.paths.apps_dir / "hello-app" / "notes.txt").write_text("local edit", encoding="utf-8")

    result = _deliver(governed_repo, approve=False, context=context)

    diff = (result.run_dir / "patch.preview.diff").read_text(encoding="utf-8").splitlines()
    assert "M main.py" in diff
    assert "D notes.txt" in diff
    assert (governed_repo.paths.apps_dir / "hello-app" / "notes.txt").exists()


def test_failed_validation_is_exit_code_nine(governed_repo: GovernedRepo) -> None:
    _readiness(governed_repo, approve=True)
    log_before = governed_repo.paths.decision_log_path.read_text(encoding="utf-8")

    result = _deliver(governed_repo, approve=True, executor=FailingRunExecutor())

    assert result.exit_code is ExitCode.VALIDATION_FAILED
    assert result.details["failed_commands"] == ["run"]
    validation = json.loads((result.run_dir / "validation.json").read_text(encoding="utf-8"))
    assert validation["passed"] is False
    assert (result.run_dir / "summary.md").exists()
    assert not (result.run_dir / "patch.applied.json").exists()
    assert not (governed_repo.paths.apps_dir / "hello-app").exists()
    assert governed_repo.paths.decision_log_path.read_text(encoding="utf-8") == log_before


def test_delivery_rejects_plan_for_another_application(governed_repo: GovernedRepo) -> None:
    _readiness(governed_repo, approve=True)
    governed_repo.paths.epics_path.write_text(
        yaml.safe_dump({"epics": [{"id": "EPIC-1", "app_id": "renamed-app"}]}), encoding="utf-8"
    )

    result = _deliver(governed_repo, approve=True)

    assert result.exit_code is ExitCode.PRECONDITION_FAILED
    assert result.details["check"] == "plan"
    assert not any(governed_repo.paths.workspaces_dir.iterdir())


def test_workspace_is_reset_between_deliveries(governed_repo: GovernedRepo) -> None:
    context = governed_repo.context(clock=_ticking_clock())
    _readiness(governed_repo, approve=True, context=context)
    first = _deliver(governed_repo, approve=False, context=context)
    stray = governed_repo.paths.workspaces_dir / "hello-app" / "apps" / "hello-app" / "stray.py"
    stray.write_text("raise SystemExit(1)\n", encoding="utf-8")

    second = _deliver(governed_repo, approve=False, context=context)

    assert first.run_id != second.run_id
    assert second.exit_code is ExitCode.SUCCESS
    assert not stray.exists()


def test_deliveries_in_the_same_second_get_separate_run_directories(governed_repo: GovernedRepo) -> None:
    _readiness(governed_repo, approve=True)
    deployed = _deliver(governed_repo, approve=True)

    preview = _deliver(governed_repo, approve=False)

    assert deployed.run_id == "20261019_123000_deliver_item-1"
    assert preview.run_id == "20261019_123000_deliver_item-1_2"
    assert (deployed.run_dir / "patch.applied.json").exists()
    assert not (preview.run_dir / "patch.applied.json").exists()
    summary = (preview.run_dir / "summary.md").read_text(encoding="utf-8")
    assert f"- Run: {preview.run_id}" in summary


def test_multi_line_actor_is_refused_before_any_change(governed_repo: GovernedRepo) -> None:
    forged = "alice\n2026-01-01T00:00:00+00:00 | deliver approved | item=9 | run=fake | by=mallory"
    backlog_before = governed_repo.paths.backlog_path.read_text(encoding="utf-8")

    result = _readiness(governed_repo, approve=True, context=governed_repo.context(actor=forged))

    assert result.exit_code is ExitCode.PRECONDITION_FAILED
    assert result.details["check"] == "actor"
    assert not any(governed_repo.paths.runs_dir.iterdir())
    assert governed_repo.paths.backlog_path.read_text(encoding="utf-8") == backlog_before
    assert DecisionLog(governed_repo.paths.decision_log_path).lines() == []


def test_plan_declaring_another_tool_is_not_executed(governed_repo: GovernedRepo) -> None:
    _readiness(governed_repo, approve=True)
    plan_path = governed_repo.root / governed_repo.read_backlog()[0]["implementation_plan_ref"]
    plan = json.loads(plan_path.read_text(encoding="utf-8"))
    plan["run_steps"][0].update(tool="node", args=["server.js", "--port", "80"])
    plan_path.write_text(json.dumps(plan), encoding="utf-8")

    result = _deliver(governed_repo, approve=True)

    assert result.exit_code is ExitCode.UNEXPECTED_ERROR
    assert "node" in result.message
    assert not (result.run_dir / "run.stdout.log").exists()
    assert not (governed_repo.paths.apps_dir / "hello-app").exists()
    decisions = DecisionLog(governed_repo.paths.decision_log_path).lines()
    assert [line.split(" | ")[1] for line in decisions] == ["technical-readiness approved"]


def test_title_mentioning_a_placeholder_can_be_approved(governed_repo: GovernedRepo) -> None:
    governed_repo.write_backlog([{**governed_repo.items[0], "title": "Replace placeholder logo"}])

    result = _readiness(governed_repo, approve=True)

    assert result.exit_code is ExitCode.SUCCESS, result.message
    assert governed_repo.read_backlog()[0]["status"] == "ready_for_dev"


def test_delivery_without_plan_reference_is_a_precondition_failure(
    governed_repo: GovernedRepo, monkeypatch: pytest.MonkeyPatch
) -> None:
    def check_delivery(self, item_id, item):
        return PreconditionReport(item=item, epic_id="EPIC-1", app_id="hello-app")

    monkeypatch.setattr(PreconditionValidator, "check_delivery", check_delivery)

    result = _deliver(governed_repo, approve=True)

    assert result.exit_code is ExitCode.PRECONDITION_FAILED
    assert result.details["check"] == "plan"
    assert not any(governed_repo.paths.runs_dir.iterdir())
