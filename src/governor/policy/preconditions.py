"""Fail-fast gate over the state of a work item before any side effect runs.

Checks only read the backlog, epic registry and plan store. A failure raises
:class:`~governor.errors.PreconditionFailure` naming the check that failed, so
callers create no workspace, run directory or file until every check passes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..errors import ItemNotFound, PreconditionFailure
from ..state.schema import ItemStatus, WorkItem
from ..state.store import EpicStore, PlanStore
from ..utils.ids import is_safe_slug

__all__ = ["Operation", "PreconditionCheck", "PreconditionReport", "PreconditionValidator"]


class Operation(str, Enum):
    """Flow whose preconditions are being checked."""

    TECHNICAL_READINESS = "technical-readiness"
    DELIVERY = "delivery"


class PreconditionCheck(str, Enum):
    """Identifiers reported in :attr:`PreconditionFailure.check`."""

    STATUS = "status"
    ESTIMATE = "estimate"
    EPIC = "epic"
    PLAN = "plan"


@dataclass(frozen=True, slots=True)
class PreconditionReport:
    """Facts resolved while checking; handed to the flow on success."""

    item: WorkItem
    epic_id: str
    app_id: str
    plan_ref: str | None = None


class PreconditionValidator:
    """Side-effect free precondition checks for both flows."""

    def __init__(self, epics: EpicStore, plans: PlanStore) -> None:
        self._epics = epics
        self._plans = plans

    def check(self, operation: Operation, item_id: int, item: WorkItem | None) -> PreconditionReport:
        if operation is Operation.DELIVERY:
            return self.check_delivery(item_id, item)
        return self.check_technical_readiness(item_id, item)

    def check_technical_readiness(self, item_id: int, item: WorkItem | None) -> PreconditionReport:
        if item is None:
            raise ItemNotFound(item_id)
        if item.status is ItemStatus.DONE:
            raise PreconditionFailure(
                PreconditionCheck.STATUS.value,
                f"Item {item.id} is already done; technical readiness would regress its status.",
                details={"status": item.status.value},
            )
        epic_id, app_id = self._resolve_epic(item)
        return PreconditionReport(item=item, epic_id=epic_id, app_id=app_id)

    def check_delivery(self, item_id: int, item: WorkItem | None) -> PreconditionReport:
        if item is None:
            raise ItemNotFound(item_id)

        if item.status is not ItemStatus.READY_FOR_DEV:
            raise PreconditionFailure(
                PreconditionCheck.STATUS.value,
                f"Item {item.id} must be '{ItemStatus.READY_FOR_DEV.value}' to deliver "
                f"(current: '{item.status.value}'). Run technical-readiness --approve first.",
                details={"status": item.status.value},
            )

        if item.estimate is None or item.estimate.story_points < 1:
            raise PreconditionFailure(
                PreconditionCheck.ESTIMATE.value,
                f"Item {item.id} has no estimate with story points >= 1.",
            )

        epic_id, app_id = self._resolve_epic(item)

        plan_ref = (item.implementation_plan_ref or "").strip()
        if not plan_ref:
            raise PreconditionFailure(
                PreconditionCheck.PLAN.value,
                f"Item {item.id} has no implementation_plan_ref.",
            )
        if not self._plans.exists(plan_ref):
            raise PreconditionFailure(
                PreconditionCheck.PLAN.value,
                f"Implementation plan for item {item.id} not found: {plan_ref}",
                details={"plan_ref": plan_ref},
            )
        return PreconditionReport(item=item, epic_id=epic_id, app_id=app_id, plan_ref=plan_ref)

    def _resolve_epic(self, item: WorkItem) -> tuple[str, str]:
        epic_id = (item.epic_id or "").strip()
        if not epic_id:
            raise PreconditionFailure(
                PreconditionCheck.EPIC.value, f"Item {item.id} has no epic_id."
            )
        if not self._epics.exists():
            raise PreconditionFailure(
                PreconditionCheck.EPIC.value,
                f"Epic registry not found: {self._epics.path}",
                details={"epic_id": epic_id},
            )
        app_id = self._epics.load().resolve_app_id(epic_id)
        if app_id is None:
            raise PreconditionFailure(
                PreconditionCheck.EPIC.value,
                f"Epic '{epic_id}' of item {item.id} is not in the epic registry.",
                details={"epic_id": epic_id},
            )
        if not is_safe_slug(app_id):
            raise PreconditionFailure(
                PreconditionCheck.EPIC.value,
                f"Epic '{epic_id}' maps to an unusable application id: {app_id!r}",
                details={"epic_id": epic_id, "app_id": app_id},
            )
        return epic_id, app_id
