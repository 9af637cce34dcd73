"""Intake flow: record a new candidate item in the backlog."""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import BacklogUpdateFailure, ExitCode, PreconditionFailure
from ..state.layout import validate_layout
from ..state.schema import ItemStatus, WorkItem
from ..state.store import BacklogStore, RunArtifactStore, RunRecord
from ..utils.ids import make_run_id
from .base import Flow, FlowContext, FlowResult

__all__ = ["IntakeFlow"]

LOGGER = logging.getLogger(__name__)

RUN_LABEL = "intake"


def _intake_markdown(record: RunRecord, item: WorkItem) -> str:
    lines = [
        "# Intake run",
        "",
        f"- Run: {record.run_id}",
        f"- Created: {record.created_at_utc}",
        "",
        "## New backlog item",
        f"- Id: {item.id}",
        f"- Title: {item.title}",
        f"- Status: {item.status.value}",
        f"- Priority: {item.priority}",
        f"- Size: {item.size}",
        f"- Owner: {item.owner}",
    ]
    if item.epic_id:
        lines.append(f"- Epic: {item.epic_id}")
    lines.extend(["", "## Story", item.story or "(none)"])
    return "\n".join(lines) + "\n"


class IntakeFlow(Flow):
    name = RUN_LABEL

    def __init__(
        self,
        context: FlowContext,
        *,
        title: str,
        story: str = "",
        epic_id: Optional[str] = None,
        priority: int = 1,
        size: str = "S",
        owner: str = "PO",
    ) -> None:
        super().__init__(context)
        self.title = title.strip()
        self.story = story.strip()
        self.epic_id = (epic_id or "").strip() or None
        self.priority = priority
        self.size = size.strip().upper()
        self.owner = owner.strip().upper()

    def _run(self) -> FlowResult:
        paths = self.context.paths
        validate_layout(paths)
        if not self.title:
            raise PreconditionFailure("title", "A backlog item needs a non-empty title.")

        backlog_store = BacklogStore(paths.backlog_path)
        backlog = backlog_store.load()
        next_id = max((existing.id for existing in backlog.backlog), default=0) + 1
        item = WorkItem(
            id=next_id,
            title=self.title,
            status=ItemStatus.CANDIDATE,
            priority=self.priority,
            size=self.size,
            owner=self.owner,
            story=self.story,
            epic_id=self.epic_id,
        )

        now = self.context.clock()
        runs = RunArtifactStore(paths.runs_dir)
        self.run_dir = run_dir = runs.create(make_run_id(RUN_LABEL, item.id, now))
        self.run_id = run_id = run_dir.name
        record = RunRecord(
            run_id=run_id,
            flow=RUN_LABEL,
            created_at_utc=now.isoformat(),
            workdir=str(paths.root),
            item_id=item.id,
            item_title=item.title,
        )
        runs.write_json(run_dir, "run.json", record)
        runs.write_text(run_dir, "intake.md", _intake_markdown(record, item))

        backlog.backlog.append(item)
        try:
            backlog_store.save(backlog)
        except OSError as error:
            runs.write_text(run_dir, "summary.md", f"FAIL: could not write backlog.yaml\n\n{error}\n")
            runs.write_json(run_dir, "run.json", record.model_copy(update={"status": "apply_failed"}))
            raise BacklogUpdateFailure(
                f"Could not add item {item.id} to the backlog: {error}",
                details={"path": str(paths.backlog_path)},
            ) from error

        runs.write_json(run_dir, "run.json", record.model_copy(update={"status": "completed"}))
        runs.write_text(
            run_dir, "summary.md", f"OK: created backlog item {item.id}. Next: governor refine --item {item.id}\n"
        )
        LOGGER.info("Created backlog item %s (%s)", item.id, item.title)
        return FlowResult(
            exit_code=ExitCode.SUCCESS,
            message=f"Created backlog item {item.id} as candidate.",
            run_id=run_id,
            run_dir=run_dir,
            details={"item_id": item.id},
        )
