"""Delivery flow: build the planned application in a sandbox, then maybe deploy.

Steps run strictly in order: layout and precondition checks, workspace reset,
run directory, candidate generation, build and run validation, patch preview,
and finally the approval gate. A failed validation ends the run with exit
code 9 after the run artifacts are written; nothing is deployed or logged.
"""

from __future__ import annotations

import logging

from ..errors import ExitCode, PreconditionFailure, ValidationFailure
from ..planning.schema import ImplementationPlan
from ..policy.preconditions import PreconditionCheck, PreconditionValidator
from ..state.decisions import DecisionLog
from ..state.layout import validate_layout
from ..state.store import BacklogStore, EpicStore, PlanStore, RunArtifactStore
from ..tools.patch import PatchPreview, compute_preview, render_diff
from ..tools.process import SandboxedProcessExecutor
from ..tools.templates import TemplateContext, generate_candidate, resolve_template_id
from ..tools.validation import ValidationReport, run_validation
from ..tools.workspace import WorkspaceManager
from ..utils.ids import make_run_id
from .approval import ApprovalGate, DeployRequest, GateOutcome, GateState
from .base import Flow, FlowContext, FlowResult

__all__ = ["DeliveryFlow"]

LOGGER = logging.getLogger(__name__)

RUN_LABEL = "deliver"


def _check_plan_matches(plan: ImplementationPlan, item_id: int, app_id: str) -> None:
    if plan.item_id != item_id:
        raise PreconditionFailure(
            PreconditionCheck.PLAN.value,
            f"Persisted plan {plan.plan_id} belongs to item {plan.item_id}, not {item_id}.",
        )
    if plan.app_id != app_id or plan.repo_target != f"apps/{app_id}":
        raise PreconditionFailure(
            PreconditionCheck.PLAN.value,
            f"Persisted plan {plan.plan_id} targets '{plan.repo_target}' but the epic maps to '{app_id}'.",
            details={"plan_app_id": plan.app_id, "app_id": app_id},
        )


def _summary(
    plan: ImplementationPlan,
    *,
    run_id: str,
    report: ValidationReport,
    preview: PatchPreview,
    outcome: GateOutcome,
) -> str:
    lines = [
        f"# Delivery: item {plan.item_id}",
        "",
        f"- Run: {run_id}",
        f"- Plan: {plan.plan_id}",
        f"- Target: {plan.repo_target}",
        f"- Validation: {'passed' if report.passed else 'failed'}",
        f"- Files: {len(preview.files)}",
        f"- Outcome: {outcome.state.value}",
        "",
        "## Validation",
        *[f"- {line}" for line in report.summary_lines()],
    ]
    return "\n".join(lines) + "\n"


class DeliveryFlow(Flow):
    name = RUN_LABEL

    def __init__(
        self,
        context: FlowContext,
        *,
        item_id: int,
        approve: bool,
        executor: SandboxedProcessExecutor | None = None,
    ) -> None:
        super().__init__(context)
        self.item_id = item_id
        self.approve = approve
        self._executor = executor or SandboxedProcessExecutor()

    def _run(self) -> FlowResult:
        paths = self.context.paths
        validate_layout(paths)

        backlog = BacklogStore(paths.backlog_path).load()
        plans = PlanStore(paths)
        validator = PreconditionValidator(EpicStore(paths.epics_path), plans)
        checked = validator.check_delivery(self.item_id, backlog.find(self.item_id))
        if checked.plan_ref is None:
            raise PreconditionFailure(
                PreconditionCheck.PLAN.value, f"Item {checked.item.id} has no implementation plan reference."
            )
        plan = plans.load(checked.plan_ref)
        _check_plan_matches(plan, checked.item.id, checked.app_id)
        item = checked.item
        app_id = checked.app_id

        now = self.context.clock()
        workspaces = WorkspaceManager(paths.workspaces_dir)
        workspaces.reset(app_id)
        runs = RunArtifactStore(paths.runs_dir)
        self.run_dir = run_dir = runs.create(make_run_id(RUN_LABEL, item.id, now))
        self.run_id = run_id = run_dir.name
        LOGGER.info("Delivering item %s as %s (run %s)", item.id, app_id, run_id)
        runs.write_json(run_dir, "implementation.plan.json", plan)

        candidate_dir = workspaces.app_dir(app_id)
        generate_candidate(
            resolve_template_id(plan.app_type),
            candidate_dir,
            TemplateContext(app_id=app_id, item_id=item.id, title=item.title),
        )

        report = run_validation(plan, candidate_dir, run_dir, self._executor)
        runs.write_json(run_dir, "validation.json", report)

        target_dir = paths.apps_dir / app_id
        preview = compute_preview(
            candidate_dir,
            app_id=app_id,
            repo_target=plan.repo_target,
            target_dir=target_dir,
            exclude_globs=plan.exclude_globs,
            item_id=item.id,
            validation_passed=report.passed,
        )
        runs.write_json(run_dir, "patch.preview.json", preview)
        runs.write_text(run_dir, "patch.preview.diff", render_diff(preview.files))

        gate = ApprovalGate(runs, DecisionLog(paths.decision_log_path), clock=self.context.clock)
        outcome = gate.conclude(
            DeployRequest(
                item_id=item.id,
                run_id=run_id,
                app_id=app_id,
                repo_target=plan.repo_target,
                candidate_dir=candidate_dir,
                target_dir=target_dir,
                run_dir=run_dir,
                exclude_globs=tuple(plan.exclude_globs),
            ),
            report,
            approve=self.approve,
            actor=self.context.actor,
        )
        runs.write_text(
            run_dir,
            "summary.md",
            _summary(plan, run_id=run_id, report=report, preview=preview, outcome=outcome),
        )

        if outcome.state is GateState.VALIDATION_FAILED:
            failed = [command.name for command in report.commands if not command.passed]
            raise ValidationFailure(
                f"Validation failed for item {item.id}: {', '.join(failed) or 'no commands ran'}. "
                f"See {paths.relative(run_dir)}.",
                details={"failed_commands": failed},
            )
        if outcome.state is GateState.DEPLOYED:
            message = f"Deployed {len(preview.files)} file(s) to {plan.repo_target}."
        else:
            message = "Validation passed; re-run with --approve to deploy."
        return FlowResult(
            exit_code=ExitCode.SUCCESS,
            message=message,
            run_id=run_id,
            run_dir=run_dir,
            details={"state": outcome.state.value, "files": len(preview.files)},
        )
