"""Approval gate: the terminal state machine of a delivery run.

``previewed`` moves to exactly one terminal state. A failed validation is
terminal whatever the caller asked for; approval without a passing validation
neither deploys nor logs. Only the move into ``deployed`` copies files, writes
``patch.applied.json`` and appends one decision-log line, in that order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..errors import DeployFailure
from ..state.decisions import DecisionLog, DecisionLogEntry, DecisionType
from ..state.schema import utc_now
from ..state.store import RunArtifactStore
from ..tools.patch import PatchApplied, apply_and_record
from ..tools.validation import ValidationReport

__all__ = ["ApprovalGate", "DeployRequest", "GateOutcome", "GateState", "next_state"]

LOGGER = logging.getLogger(__name__)

APPLIED_RECORD_NAME = "patch.applied.json"


class GateState(str, Enum):
    PREVIEWED = "previewed"
    VALIDATION_FAILED = "validation_failed"
    PASSED_NOT_APPROVED = "validation_passed_not_approved"
    DEPLOYED = "validation_passed_approved_deployed"


def next_state(validation_passed: bool, approve: bool) -> GateState:
    """Terminal state reached from ``previewed``."""
    if not validation_passed:
        return GateState.VALIDATION_FAILED
    if not approve:
        return GateState.PASSED_NOT_APPROVED
    return GateState.DEPLOYED


@dataclass(slots=True)
class DeployRequest:
    """Where a validated candidate lives and where it should go."""

    item_id: int
    run_id: str
    app_id: str
    repo_target: str
    candidate_dir: Path
    target_dir: Path
    run_dir: Path
    exclude_globs: Sequence[str] = field(default_factory=tuple)


@dataclass(slots=True)
class GateOutcome:
    state: GateState
    applied: Optional[PatchApplied] = None
    entry: Optional[DecisionLogEntry] = None


class ApprovalGate:
    """Deploys and records approvals once, and only once, validation has passed."""

    def __init__(
        self,
        runs: RunArtifactStore,
        decision_log: DecisionLog,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._runs = runs
        self._log = decision_log
        self._clock = clock

    def conclude(
        self,
        request: DeployRequest,
        report: ValidationReport,
        *,
        approve: bool,
        actor: str,
    ) -> GateOutcome:
        state = next_state(report.passed, approve)
        LOGGER.info("Run %s gate state: %s", request.run_id, state.value)
        if state is not GateState.DEPLOYED:
            return GateOutcome(state=state)

        try:
            applied = apply_and_record(
                request.candidate_dir,
                request.target_dir,
                app_id=request.app_id,
                repo_target=request.repo_target,
                run_id=request.run_id,
                item_id=request.item_id,
                exclude_globs=request.exclude_globs,
            )
            self._runs.write_json(request.run_dir, APPLIED_RECORD_NAME, applied)
        except OSError as error:
            raise DeployFailure(
                f"Deploy of {request.app_id} to {request.repo_target} failed: {error}",
                details={"run_id": request.run_id, "target": str(request.target_dir)},
            ) from error

        entry = self.record_approval(
            decision=DecisionType.DELIVER_APPROVED,
            item_id=request.item_id,
            run_id=request.run_id,
            actor=actor,
        )
        return GateOutcome(state=state, applied=applied, entry=entry)

    def record_approval(self, *, decision: str, item_id: int, run_id: str, actor: str) -> DecisionLogEntry:
        """Append one decision line; call only after the approved mutation completed."""
        entry = DecisionLogEntry(
            timestamp=self._clock(),
            decision=decision,
            item_id=item_id,
            run_id=run_id,
            actor=actor,
        )
        self._log.append(entry)
        return entry
