"""Turn a consensus estimate into a deterministic implementation plan."""

from __future__ import annotations

from datetime import datetime
from typing import List, Tuple

from pydantic import ValidationError

from ..errors import PlanContractError
from ..state.schema import WorkItem
from ..utils.ids import plan_id_for_run
from .schema import (
    ConsensusEstimate,
    ExecutionStep,
    ImplementationPlan,
    LayoutEntry,
    StackDecision,
    ValidationCheck,
)

__all__ = ["DEFAULT_EXCLUDE_GLOBS", "SUPPORTED_LANGUAGES", "build_plan"]

SUPPORTED_LANGUAGES = frozenset({"python", "python3", "py"})

DEFAULT_EXCLUDE_GLOBS: Tuple[str, ...] = (
    "**/__pycache__/**",
    "**/*.pyc",
    "build/**",
    "dist/**",
    "*.egg-info/**",
    ".venv/**",
)


def _python_steps() -> Tuple[List[ExecutionStep], List[ExecutionStep]]:
    build = [ExecutionStep(name="build", tool="python", args=["-m", "compileall", "-q", "."])]
    run = [ExecutionStep(name="run", tool="python", args=["main.py"])]
    return build, run


def build_plan(
    item: WorkItem,
    estimate: ConsensusEstimate,
    *,
    app_id: str,
    epic_id: str,
    run_id: str,
    created_at: datetime,
) -> ImplementationPlan:
    """Build the plan for ``item``; identity depends only on ``run_id``."""
    architecture = estimate.architecture
    if architecture is None:
        raise PlanContractError(
            f"Estimate {estimate.id} carries no architecture decision; cannot plan item {item.id}.",
            details={"item_id": item.id, "estimate_id": estimate.id},
        )
    app_type = architecture.app_type.strip()
    if not app_type:
        raise PlanContractError(
            f"Architecture for item {item.id} has no application type.",
            details={"item_id": item.id},
        )
    language = architecture.language.strip().lower()
    if language not in SUPPORTED_LANGUAGES:
        raise PlanContractError(
            f"Language '{architecture.language}' is not supported by the delivery toolchain.",
            details={"item_id": item.id, "language": architecture.language},
        )

    build_steps, run_steps = _python_steps()
    checks = [
        ValidationCheck(type="exit_code_equals", step=step.name, value="0")
        for step in (*build_steps, *run_steps)
    ]
    layout = [
        LayoutEntry(path=project.path or ".", kind=project.type or app_type)
        for project in architecture.projects
    ] or [LayoutEntry(path=".", kind=app_type)]

    try:
        return ImplementationPlan(
            plan_id=plan_id_for_run(run_id),
            created_at_utc=created_at.isoformat(),
            created_from_run_id=run_id,
            item_id=item.id,
            epic_id=epic_id,
            app_id=app_id,
            repo_target=f"apps/{app_id}",
            app_type=app_type,
            stack=StackDecision(
                language="python",
                runtime=architecture.runtime or "python3",
                framework=architecture.framework,
            ),
            project_layout=layout,
            build_steps=build_steps,
            run_steps=run_steps,
            validation_checks=checks,
            exclude_globs=list(DEFAULT_EXCLUDE_GLOBS),
            risks=list(item.risks),
            assumptions=list(estimate.assumptions),
            notes=(
                f"Implementation plan for item {item.id}. "
                f"Generated from technical-readiness run {run_id}."
            ),
        )
    except ValidationError as error:
        raise PlanContractError(f"Plan for item {item.id} violates the plan contract: {error}") from error
