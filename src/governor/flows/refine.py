"""Refine flow: Definition of Ready gate, persona review, and promotion to ``ready``.

A failed Definition of Ready still leaves a ``_DOR_FAIL`` run directory with
the unmet rules so the rejection is auditable. Otherwise each persona reviews
the item once; the turns and a summary land in the run directory. Only with
``approve`` does the item move to ``ready`` and a decision line get appended.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Mapping, Tuple

from ..errors import BacklogUpdateFailure, ExitCode, PreconditionFailure
from ..models.provider import LanguageModelProvider, ModelRequest
from ..planning.personas import TEAM, PersonaId
from ..policy.definition_of_ready import DEFINITION_OF_READY_CHECK, definition_of_ready_problems
from ..prompts import REFINE_INSTRUCTION, PromptLibrary, render_item_context
from ..state.decisions import DecisionLog, DecisionLogEntry, DecisionType
from ..state.layout import validate_layout
from ..state.schema import ItemStatus, WorkItem
from ..state.store import BacklogStore, RunArtifactStore, RunRecord
from ..utils.ids import make_run_id
from .base import Flow, FlowContext, FlowResult

__all__ = ["RefineFlow"]

LOGGER = logging.getLogger(__name__)

RUN_LABEL = "refine"
REFINE_TASK = "refine"


def _item_markdown(heading: str, record: RunRecord, item: WorkItem) -> List[str]:
    return [
        f"# {heading}",
        "",
        f"- Run: {record.run_id}",
        f"- Created: {record.created_at_utc}",
        "",
        "## Backlog item",
        f"- Id: {item.id}",
        f"- Title: {item.title}",
        f"- Status: {item.status.value}",
        f"- Priority: {item.priority}",
        f"- Size: {item.size}",
        f"- Owner: {item.owner}",
    ]


def _summary(record: RunRecord, provider: str, turns: List[Tuple[str, str]], *, approved: bool) -> str:
    lines = [
        "# Refine summary",
        "",
        f"- Run: {record.run_id}",
        f"- Provider: {provider}",
        f"- Approved: {'yes' if approved else 'no'}",
    ]
    for persona, text in turns:
        lines.extend(["", f"## {persona}", text.strip()])
    return "\n".join(lines) + "\n"


class RefineFlow(Flow):
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
        item = backlog.require(self.item_id)
        now = self.context.clock()
        runs = RunArtifactStore(paths.runs_dir)

        problems = definition_of_ready_problems(item)
        if problems:
            self._record_rejection(runs, item, problems)
            raise PreconditionFailure(
                DEFINITION_OF_READY_CHECK,
                f"Item {item.id} does not meet the Definition of Ready: " + " ".join(problems),
                details={"problems": problems},
            )

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
        runs.write_text(
            run_dir,
            "refine.md",
            "\n".join(_item_markdown("Refine run", record, item)) + "\n\n" + render_item_context(item) + "\n",
        )

        turns = self._persona_turns(runs, run_dir, item, record)
        state = "completed"
        if self.approve:
            item.advance_status(ItemStatus.READY)
            try:
                backlog_store.save(backlog)
            except OSError as error:
                raise BacklogUpdateFailure(
                    f"Could not mark item {item.id} ready: {error}",
                    details={"path": str(paths.backlog_path)},
                ) from error
            DecisionLog(paths.decision_log_path).append(
                DecisionLogEntry(
                    timestamp=self.context.clock(),
                    decision=DecisionType.REFINE_APPROVED,
                    item_id=item.id,
                    run_id=run_id,
                    actor=self.context.actor,
                )
            )
            state = "approved"
        runs.write_text(run_dir, "summary.md", _summary(record, self._provider.model, turns, approved=self.approve))
        runs.write_json(run_dir, "run.json", record.model_copy(update={"status": state}))

        if self.approve:
            message = f"Item {item.id} is ready."
        else:
            message = f"Refinement written for item {item.id}; re-run with --approve to mark it ready."
        return FlowResult(
            exit_code=ExitCode.SUCCESS,
            message=message,
            run_id=run_id,
            run_dir=run_dir,
            details={"status": item.status.value, "turns": len(turns)},
        )

    def _record_rejection(self, runs: RunArtifactStore, item: WorkItem, problems: List[str]) -> None:
        now = self.context.clock()
        self.run_dir = run_dir = runs.create(make_run_id(RUN_LABEL, item.id, now) + "_DOR_FAIL")
        self.run_id = run_dir.name
        record = RunRecord(
            run_id=run_dir.name,
            flow=RUN_LABEL,
            created_at_utc=now.isoformat(),
            workdir=str(self.context.paths.root),
            item_id=item.id,
            item_title=item.title,
            status="dor_failed",
        )
        runs.write_json(run_dir, "run.json", record)
        lines = _item_markdown("Refine run (Definition of Ready failed)", record, item)
        lines.extend(["", "## Unmet rules", *[f"- {problem}" for problem in problems]])
        runs.write_text(run_dir, "refine.md", "\n".join(lines) + "\n")
        LOGGER.warning("Item %s fails the Definition of Ready: %s", item.id, "; ".join(problems))

    def _persona_turns(
        self, runs: RunArtifactStore, run_dir: Path, item: WorkItem, record: RunRecord
    ) -> List[Tuple[str, str]]:
        turns_dir = run_dir / "turns"
        turns_dir.mkdir(exist_ok=True)
        context = render_item_context(item)
        instruction = self._prompts.flow_prompt(REFINE_TASK, REFINE_INSTRUCTION)
        outputs: List[Tuple[str, str]] = []
        for index, persona in enumerate(TEAM, start=1):
            request = ModelRequest(
                persona=persona.id.value,
                task=REFINE_TASK,
                system_prompt=self._prompts.persona_prompt(persona),
                prompt=f"{context}\n\n{instruction}",
                model=self._models.get(persona.id),
                metadata={"item_id": item.id, "item_title": item.title},
            )
            text = self._provider.generate(request)
            runs.write_json(
                turns_dir,
                f"{index:02d}-{persona.id.value}.json",
                {
                    "turn": index,
                    "persona": persona.id.value,
                    "persona_title": persona.title,
                    "provider": self._provider.model,
                    "model": request.model or self._provider.model,
                    "created_at_utc": record.created_at_utc,
                    "response": text,
                },
            )
            outputs.append((persona.id.value, text))
        return outputs
