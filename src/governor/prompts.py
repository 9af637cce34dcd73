"""Prompt templates for estimation and design documents.

Every template ships with the package and can be replaced per repository by
dropping a Markdown file under ``prompts/personas/<persona>.md`` or
``prompts/flows/<name>.md``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Mapping

from .planning.personas import Persona, PersonaId
from .planning.schema import EstimationRound
from .state.schema import WorkItem

__all__ = [
    "DESIGN_TASKS",
    "ESTIMATION_CONTRACT",
    "PromptLibrary",
    "REFINE_INSTRUCTION",
    "render_item_context",
    "render_prior_round",
]

LOGGER = logging.getLogger(__name__)

ESTIMATION_CONTRACT = (
    "Return only JSON. Emit a single JSON object with these keys: "
    '"storyPoints" (one of 1, 3, 5), "confidence" ("low", "medium" or "high"), '
    '"complexityDrivers" (array of strings), "assumptions" (array of strings), '
    '"dependencies" (array of strings), "rationale" (string), "notes" (string). '
    'The lead architect also returns "appType", "language", "runtime", "framework" and '
    '"projects" (array of objects with "name", "type", "path", "dependencies"). '
    "The only supported language is python. Do not include markdown fences."
)

DESIGN_TASKS: Mapping[str, tuple[PersonaId, str, str]] = {
    "architecture": (
        PersonaId.ARCHITECT,
        "architecture.md",
        "Write the architecture document for this work item in Markdown: context, "
        "decisions, components. Use the agreed architecture. No placeholders.",
    ),
    "qa-plan": (
        PersonaId.QA,
        "qa-plan.md",
        "Write the QA plan for this work item in Markdown: scope, numbered checks, "
        "exit criteria. No placeholders.",
    ),
    "technical-tasks": (
        PersonaId.ARCHITECT,
        "technical-tasks.yaml",
        "Write the technical task breakdown as YAML with keys item_id, summary and "
        "tasks (id, title, detail). Return YAML only.",
    ),
}


REFINE_INSTRUCTION = (
    "Review this backlog item from your perspective before it is estimated. In Markdown, "
    "restate the story in one paragraph, then list missing acceptance criteria, risks and "
    "open questions. Do not estimate. No placeholders."
)


def _persona_default(persona: Persona) -> str:
    return (
        f"You are the {persona.title} on a three-person estimation team. "
        f"You focus on {persona.focus}. Estimate independently and justify the value "
        "you choose in one or two sentences."
    )


class PromptLibrary:
    """Resolve persona and flow prompts, preferring repository overrides."""

    def __init__(self, prompts_dir: Path | None = None) -> None:
        self._prompts_dir = prompts_dir

    def _override(self, *parts: str) -> str | None:
        if self._prompts_dir is None:
            return None
        path = self._prompts_dir.joinpath(*parts)
        if not path.is_file():
            return None
        text = path.read_text(encoding="utf-8").strip()
        if text:
            LOGGER.debug("Using prompt override %s", path)
        return text or None

    def persona_prompt(self, persona: Persona) -> str:
        return self._override("personas", f"{persona.id.value}.md") or _persona_default(persona)

    def flow_prompt(self, name: str, default: str) -> str:
        return self._override("flows", f"{name}.md") or default


def render_item_context(item: WorkItem) -> str:
    """Describe the work item for an estimator prompt."""
    sections = [f"# Work item {item.id}: {item.title}"]
    if item.story:
        sections.append(f"## Story\n{item.story.strip()}")
    for heading, values in (
        ("Acceptance criteria", item.acceptance_criteria),
        ("Non-goals", item.non_goals),
        ("Dependencies", item.dependencies),
        ("Risks", item.risks),
    ):
        bullet_list = _bullets(values)
        if bullet_list:
            sections.append(f"## {heading}\n{bullet_list}")
    return "\n\n".join(sections)


def render_prior_round(previous: EstimationRound) -> str:
    """Summarise the previous round so estimators can deliberate."""
    lines = [f"## Other team members' estimates (round {previous.round})"]
    for proposal in previous.proposals:
        lines.append(
            f"- {proposal.persona}: {proposal.story_points} points "
            f"({proposal.confidence} confidence). {proposal.rationale.strip()}"
        )
    lines.append("Reconsider your estimate in light of these views.")
    return "\n".join(lines)


def _bullets(values: Iterable[str]) -> str:
    return "\n".join(f"- {value.strip()}" for value in values if value and value.strip())
