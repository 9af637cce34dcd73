"""Technical-readiness flow: estimate, design and plan a backlog item.

Preview writes candidate artifacts into a fresh run directory and nothing
else. With approval the plan is persisted, the item is advanced to
``ready_for_dev`` with its estimate and references, and the decision is
logged, in that order.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import Field

from ..errors import ExitCode, PlanContractError
from ..models.provider import LanguageModelProvider
from ..planning.consensus import ConsensusEngine
from ..planning.design_docs import approval_problems, generate_design_documents
from ..planning.personas import PersonaId
from ..planning.plan_builder import build_plan
from ..planning.schema import ConsensusEstimate, ImplementationPlan
from ..policy.preconditions import PreconditionValidator
from ..prompts import PromptLibrary
from ..state.decisions import DecisionLog, DecisionType
from ..state.layout import validate_layout
from ..state.schema import ItemStatus, RecordModel, WorkItem
from ..state.store import BacklogStore, EpicStore, PlanStore, RunArtifactStore
from ..utils.ids import make_run_id
from .approval import ApprovalGate
from .base import Flow, FlowContext, FlowResult

__all__ = ["BacklogPatch", "FieldChange", "TechnicalReadinessFlow"]

LOGGER = logging.getLogger(__name__)

RUN_LABEL = "technical-readiness"


class FieldChange(RecordModel):
    before: Any = None
    after: Any = None


class BacklogPatch(RecordModel):
    """Backlog fields an approval would change (or did change, once applied)."""

    item_id: int
    run_id: str
    computed_at_utc: str
    applied_at_utc: Optional[str] = None
    changes: Dict[str, FieldChange] = Field(default_factory=dict)


def _backlog_patch(
    item: WorkItem,
    estimate: ConsensusEstimate,
    *,
    run_id: str,
    computed_at: str,
    plan_ref: str,
    notes_ref: str,
) -> BacklogPatch:
    current_estimate = item.estimate.model_dump(mode="json") if item.estimate else None
    return BacklogPatch(
        item_id=item.id,
        run_id=run_id,
        computed_at_utc=computed_at,
        changes={
            "status": FieldChange(before=item.status.value, after=ItemStatus.READY_FOR_DEV.value),
            "estimate": FieldChange(
                before=current_estimate,
                after=estimate.to_backlog_estimate().model_dump(mode="json"),
            ),
            "implementation_plan_ref": FieldChange(before=item.implementation_plan_ref, after=plan_ref),
            "technical_notes_ref": FieldChange(before=item.technical_notes_ref, after=notes_ref),
        },
    )


def _summary(
    item: WorkItem,
    estimate: ConsensusEstimate,
    plan: ImplementationPlan,
    *,
    run_id: str,
    approved: bool,
    problems: List[str],
) -> str:
    architecture = estimate.architecture
    lines = [
        f"# Technical readiness: item {item.id}",
        "",
        f"- Run: {run_id}",
        f"- Title: {item.title}",
        f"- Story points: {estimate.story_points} ({estimate.confidence} confidence)",
        f"- Rounds: {estimate.rounds}, converged: {'yes' if estimate.converged else 'no'}",
        f"- Plan: {plan.plan_id} -> {plan.repo_target}",
    ]
    if architecture is not None:
        lines.append(f"- Stack: {architecture.app_type} / {architecture.language} / {architecture.runtime}")
    lines.append(f"- Approved: {'yes' if approved else 'no (preview)'}")
    if problems:
        lines.extend(["", "## Blocking problems", *[f"- {problem}" for problem in problems]])
    return "\n".join(lines) + "\n"


class TechnicalReadinessFlow(Flow):
    name = RUN_LABEL

    def __init__(
        self,
        context: FlowContext,
        *,
        item_id: int,
        approve: bool,
        provider: LanguageModelProvider,
        models: Mapping[PersonaId, str] | None = None,
        prompts: PromptLibrary | None = None,
    ) -> None:
        super().__init__(context)
        self.item_id = item_id
        self.approve = approve
        self._provider = provider
        self._models = dict(models or {})
        self._prompts = prompts or PromptLibrary(context.paths.prompts_dir)

    def _run(self) -> FlowResult:
        paths = self.context.paths
        validate_layout(paths)

        backlog_store = BacklogStore(paths.backlog_path)
        backlog = backlog_store.load()
        plans = PlanStore(paths)
        validator = PreconditionValidator(EpicStore(paths.epics_path), plans)
        report = validator.check_technical_readiness(self.item_id, backlog.find(self.item_id))
        item = report.item

        now = self.context.clock()
        runs = RunArtifactStore(paths.runs_dir)
        self.run_dir = run_dir = runs.create(make_run_id(RUN_LABEL, item.id, now))
        self.run_id = run_id = run_dir.name
        LOGGER.info("Technical readiness for item %s (run %s)", item.id, run_id)

        engine = ConsensusEngine(self._provider, prompts=self._prompts, models=self._models)
        consensus = engine.estimate(item, run_id=run_id, created_at=now)
        estimate = consensus.estimate
        runs.write_json(run_dir, "estimation.json", estimate)
        runs.write_json(run_dir, "estimation.voting.json", consensus.voting)

        plan = build_plan(
            item,
            estimate,
            app_id=report.app_id,
            epic_id=report.epic_id,
            run_id=run_id,
            created_at=now,
        )
        generate_design_documents(
            self._provider, item, estimate, run_dir, prompts=self._prompts, models=self._models
        )
        runs.write_json(run_dir, "implementation.plan.json", plan)

        notes_ref = paths.relative(run_dir) + "/"
        patch = _backlog_patch(
            item,
            estimate,
            run_id=run_id,
            computed_at=now.isoformat(),
            plan_ref=plans.ref_for(item.id),
            notes_ref=notes_ref,
        )
        runs.write_json(run_dir, "patch.backlog.json", patch)

        if not self.approve:
            runs.write_text(
                run_dir, "summary.md", _summary(item, estimate, plan, run_id=run_id, approved=False, problems=[])
            )
            return FlowResult(
                exit_code=ExitCode.SUCCESS,
                message=f"Preview written for item {item.id}; re-run with --approve to persist.",
                run_id=run_id,
                run_dir=run_dir,
                details={"story_points": estimate.story_points, "plan_id": plan.plan_id},
            )

        problems = approval_problems(run_dir, estimate, plan, quoted=(item.title,))
        if problems:
            runs.write_text(
                run_dir,
                "summary.md",
                _summary(item, estimate, plan, run_id=run_id, approved=False, problems=problems),
            )
            raise PlanContractError(
                f"Technical readiness for item {item.id} cannot be approved: " + "; ".join(problems),
                details={"problems": problems},
            )

        plan_ref = plans.save(plan)
        item.advance_status(ItemStatus.READY_FOR_DEV)
        item.estimate = estimate.to_backlog_estimate()
        item.implementation_plan_ref = plan_ref
        item.technical_notes_ref = notes_ref
        backlog_store.save(backlog)

        applied_at = self.context.clock().isoformat()
        runs.write_json(
            run_dir, "patch.backlog.applied.json", patch.model_copy(update={"applied_at_utc": applied_at})
        )
        gate = ApprovalGate(runs, DecisionLog(paths.decision_log_path), clock=self.context.clock)
        gate.record_approval(
            decision=DecisionType.TECHNICAL_READINESS_APPROVED,
            item_id=item.id,
            run_id=run_id,
            actor=self.context.actor,
        )
        runs.write_text(
            run_dir, "summary.md", _summary(item, estimate, plan, run_id=run_id, approved=True, problems=[])
        )
        return FlowResult(
            exit_code=ExitCode.SUCCESS,
            message=f"Item {item.id} is ready_for_dev; plan persisted at {plan_ref}.",
            run_id=run_id,
            run_dir=run_dir,
            details={"story_points": estimate.story_points, "plan_id": plan.plan_id, "plan_ref": plan_ref},
        )
