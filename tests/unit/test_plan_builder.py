from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from governor.errors import PlanContractError
from governor.planning.design_docs import DESIGN_ARTIFACTS, approval_problems
from governor.planning.plan_builder import build_plan
from governor.planning.schema import ArchitectureDecision, ConsensusEstimate, ImplementationPlan
from governor.state.schema import WorkItem

NOW = datetime(2026, 10, 19, 12, 30, 0, tzinfo=timezone.utc)
RUN_ID = "20261019_123000_technical-readiness_item-4"


def _estimate(architecture: ArchitectureDecision | None, *, notes: str = "Consensus from 2 round(s).") -> ConsensusEstimate:
    return ConsensusEstimate(
        id=f"EST-{RUN_ID}-4-CONSENSUS",
        story_points=3,
        confidence="medium",
        architecture=architecture,
        rounds=2,
        converged=True,
        assumptions=["stdout is visible"],
        notes=notes,
        created_at_utc=NOW.isoformat(),
        created_from_run_id=RUN_ID,
    )


def _item() -> WorkItem:
    return WorkItem(id=4, title="Print a report", risks=["output format drift"])


def _console(language: str = "python") -> ArchitectureDecision:
    return ArchitectureDecision(app_type="console", language=language, runtime="python3", framework="stdlib")


def _plan(architecture: ArchitectureDecision | None) -> ImplementationPlan:
    return build_plan(
        _item(), _estimate(architecture), app_id="reports", epic_id="EPIC-9", run_id=RUN_ID, created_at=NOW
    )


def test_plan_has_build_and_run_steps_with_exit_code_checks() -> None:
    plan = _plan(_console())

    assert plan.plan_id == "PLAN-20261019-123000-technical-read"
    assert plan.repo_target == "apps/reports"
    assert plan.app_type == "console"
    assert plan.stack.language == "python"
    assert [step.name for step in plan.build_steps] == ["build"]
    assert [step.name for step in plan.run_steps] == ["run"]
    assert [(check.type, check.step, check.value) for check in plan.validation_checks] == [
        ("exit_code_equals", "build", "0"),
        ("exit_code_equals", "run", "0"),
    ]
    assert plan.risks == ["output format drift"]
    assert plan.assumptions == ["stdout is visible"]
    assert "**/__pycache__/**" in plan.exclude_globs
    assert plan.notes.startswith("Implementation plan for item 4")


def test_plan_identity_depends_only_on_run_id() -> None:
    first = _plan(_console())
    second = _plan(_console())

    assert first.model_dump() == second.model_dump()


def test_missing_architecture_is_a_contract_error() -> None:
    with pytest.raises(PlanContractError):
        _plan(None)


@pytest.mark.parametrize("language", ["csharp", "java", "typescript"])
def test_unsupported_language_is_rejected(language: str) -> None:
    with pytest.raises(PlanContractError, match=language):
        _plan(_console(language))


def test_python_aliases_are_accepted() -> None:
    assert _plan(_console("Python3")).stack.language == "python"


def test_plan_notes_reject_placeholders() -> None:
    plan = _plan(_console())

    with pytest.raises(ValueError):
        ImplementationPlan.model_validate({**plan.model_dump(), "notes": "(fill) later"})


def _write_artifacts(run_dir: Path, body: str) -> None:
    for name in DESIGN_ARTIFACTS:
        (run_dir / name).write_text(body, encoding="utf-8")


def test_approval_passes_with_complete_artifacts(tmp_path: Path) -> None:
    _write_artifacts(tmp_path, "Design detail. " * 20)

    assert approval_problems(tmp_path, _estimate(_console()), _plan(_console())) == []


def test_approval_lists_missing_short_and_placeholder_artifacts(tmp_path: Path) -> None:
    (tmp_path / "architecture.md").write_text("too short", encoding="utf-8")
    (tmp_path / "qa-plan.md").write_text("PLACEHOLDER " * 30, encoding="utf-8")

    problems = approval_problems(tmp_path, _estimate(_console()), _plan(_console()))

    assert "architecture.md is shorter than 200 characters" in problems
    assert "qa-plan.md contains a placeholder marker" in problems
    assert "technical-tasks.yaml is missing" in problems


def test_approval_rejects_placeholder_estimate_notes(tmp_path: Path) -> None:
    _write_artifacts(tmp_path, "Design detail. " * 20)

    problems = approval_problems(tmp_path, _estimate(_console(), notes="placeholder"), _plan(_console()))

    assert problems == ["estimate notes are empty or contain a placeholder"]


def test_item_title_does_not_reach_the_plan_notes() -> None:
    item = WorkItem(id=4, title="Replace placeholder logo")

    plan = build_plan(item, _estimate(_console()), app_id="reports", epic_id="EPIC-9", run_id=RUN_ID, created_at=NOW)

    assert "logo" not in plan.notes
    assert plan.notes == f"Implementation plan for item 4. Generated from technical-readiness run {RUN_ID}."


def test_approval_ignores_the_quoted_item_title(tmp_path: Path) -> None:
    _write_artifacts(tmp_path, "Scope: Replace Placeholder Logo. " + "Design detail. " * 20)

    estimate, plan = _estimate(_console()), _plan(_console())

    assert approval_problems(tmp_path, estimate, plan, quoted=("Replace placeholder logo",)) == []
    assert "architecture.md contains a placeholder marker" in approval_problems(tmp_path, estimate, plan)
