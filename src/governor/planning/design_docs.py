"""Design documents written during technical readiness and checked on approval."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Mapping, Sequence

from ..models.provider import LanguageModelProvider, ModelRequest
from ..prompts import DESIGN_TASKS, PromptLibrary, render_item_context
from ..state.schema import WorkItem
from .personas import TEAM, PersonaId
from .schema import ALLOWED_STORY_POINTS, ConsensusEstimate, ImplementationPlan, has_placeholder

__all__ = [
    "DESIGN_ARTIFACTS",
    "MIN_ARTIFACT_LENGTH",
    "approval_problems",
    "generate_design_documents",
]

LOGGER = logging.getLogger(__name__)

MIN_ARTIFACT_LENGTH = 200
DESIGN_ARTIFACTS = tuple(filename for _, filename, _ in DESIGN_TASKS.values())

_FENCE = re.compile(r"^```[A-Za-z0-9_-]*\s*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)


def _unfence(text: str) -> str:
    match = _FENCE.match(text.strip())
    return match.group("body") if match else text


def _estimate_brief(estimate: ConsensusEstimate) -> str:
    lines = [
        "## Agreed estimate",
        f"- Story points: {estimate.story_points} ({estimate.confidence} confidence)",
    ]
    architecture = estimate.architecture
    if architecture is not None:
        lines.append(
            f"- Architecture: {architecture.app_type} in {architecture.language}"
            f" ({architecture.runtime or 'default runtime'}, {architecture.framework or 'no framework'})"
        )
    return "\n".join(lines)


def generate_design_documents(
    provider: LanguageModelProvider,
    item: WorkItem,
    estimate: ConsensusEstimate,
    run_dir: Path,
    *,
    prompts: PromptLibrary,
    models: Mapping[PersonaId, str] | None = None,
) -> List[Path]:
    """Ask the owning persona for each document and write it into ``run_dir``."""
    personas = {persona.id: persona for persona in TEAM}
    models = models or {}
    written: List[Path] = []
    for task, (persona_id, filename, instruction) in DESIGN_TASKS.items():
        persona = personas[persona_id]
        request = ModelRequest(
            persona=persona_id.value,
            task=task,
            system_prompt=prompts.persona_prompt(persona),
            prompt="\n\n".join(
                [render_item_context(item), _estimate_brief(estimate), prompts.flow_prompt(task, instruction)]
            ),
            model=models.get(persona_id),
            metadata={"item_id": item.id, "item_title": item.title},
        )
        text = _unfence(provider.generate(request)).strip() + "\n"
        path = run_dir / filename
        path.write_text(text, encoding="utf-8")
        written.append(path)
        LOGGER.debug("Wrote %s (%d chars)", path, len(text))
    return written


def approval_problems(
    run_dir: Path,
    estimate: ConsensusEstimate,
    plan: ImplementationPlan,
    *,
    quoted: Sequence[str] = (),
) -> List[str]:
    """Everything that must be fixed before a technical-readiness approval.

    ``quoted`` holds user text (the item title) that generated documents may
    echo; it is not scanned for placeholder markers.
    """
    problems: List[str] = []
    if estimate.story_points not in ALLOWED_STORY_POINTS:
        problems.append(f"story points {estimate.story_points} not in {ALLOWED_STORY_POINTS}")
    if not estimate.notes.strip() or has_placeholder(estimate.notes):
        problems.append("estimate notes are empty or contain a placeholder")
    if not plan.notes.strip() or has_placeholder(plan.notes):
        problems.append("plan notes are empty or contain a placeholder")
    for filename in DESIGN_ARTIFACTS:
        path = run_dir / filename
        if not path.is_file():
            problems.append(f"{filename} is missing")
            continue
        content = path.read_text(encoding="utf-8")
        if has_placeholder(content, quoted=quoted):
            problems.append(f"{filename} contains a placeholder marker")
        if len(content.strip()) < MIN_ARTIFACT_LENGTH:
            problems.append(f"{filename} is shorter than {MIN_ARTIFACT_LENGTH} characters")
    return problems
