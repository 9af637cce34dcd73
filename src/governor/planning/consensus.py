"""Multi-round estimation consensus across the three-persona team.

Each round asks every persona for a proposal independently. From the second
round onward the prompt carries the previous round's proposals, and the round
is checked for convergence (spread of at most one point). The loop stops on
convergence or after :data:`MAX_ROUNDS`. The final value is the majority of
the last round, with ties going to the larger value; the architecture always
comes from the lead persona.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from ..models.provider import (
    LanguageModelProvider,
    ModelRequest,
    ProviderResponseError,
    parse_json_object,
)
from ..prompts import ESTIMATION_CONTRACT, PromptLibrary, render_item_context, render_prior_round
from ..state.schema import WorkItem
from .personas import LEAD_PERSONA, TEAM, Persona, PersonaId
from .schema import (
    ArchitectureDecision,
    ConsensusEstimate,
    EstimationRound,
    FallbackEstimate,
    ParsedEstimate,
    VotingRecord,
)

__all__ = [
    "ConsensusEngine",
    "ConsensusResult",
    "MAX_ROUNDS",
    "has_converged",
    "majority_vote",
    "parse_proposal",
]

LOGGER = logging.getLogger(__name__)

MAX_ROUNDS = 3
CONVERGENCE_SPREAD = 1
_PROJECT_KEYS = frozenset({"name", "type", "path", "dependencies"})

Proposal = Union[ParsedEstimate, FallbackEstimate]


def has_converged(points: Sequence[int]) -> bool:
    """Return ``True`` when the spread of ``points`` is within one point."""
    if not points:
        return False
    return max(points) - min(points) <= CONVERGENCE_SPREAD


def majority_vote(points: Sequence[int]) -> int:
    """Most frequent value; ties resolve to the largest value."""
    if not points:
        raise ValueError("cannot vote over an empty round")
    counts = Counter(points)
    return max(counts, key=lambda value: (counts[value], value))


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(entry).strip() for entry in value if str(entry).strip()]
    return [str(value)]


def _architecture_from(persona: str, data: Mapping[str, Any]) -> Optional[ArchitectureDecision]:
    app_type = _first(data, "appType", "app_type")
    language = _first(data, "language")
    if not app_type or not language:
        return None
    raw_projects = _first(data, "projects") or []
    projects = [
        {key: value for key, value in entry.items() if key in _PROJECT_KEYS}
        for entry in (raw_projects if isinstance(raw_projects, list) else [])
        if isinstance(entry, dict)
    ]
    try:
        return ArchitectureDecision(
            app_type=str(app_type).strip(),
            language=str(language).strip(),
            runtime=str(_first(data, "runtime") or "").strip(),
            framework=str(_first(data, "framework") or "").strip(),
            projects=projects,
        )
    except ValidationError as error:
        LOGGER.warning("Ignoring malformed architecture from %s: %s", persona, error)
        return None


def parse_proposal(persona: str, raw: str) -> Proposal:
    """Parse one estimator response, substituting a fallback when it is unusable."""
    try:
        data = parse_json_object(raw)
    except ProviderResponseError as error:
        LOGGER.warning("Estimator %s returned unparseable output; using fallback.", persona)
        return FallbackEstimate(persona=persona, error=str(error))

    try:
        return ParsedEstimate(
            persona=persona,
            story_points=_first(data, "storyPoints", "story_points"),
            confidence=str(_first(data, "confidence") or "medium").strip().lower(),
            rationale=str(_first(data, "rationale") or "").strip(),
            complexity_drivers=_text_list(_first(data, "complexityDrivers", "complexity_drivers")),
            assumptions=_text_list(_first(data, "assumptions")),
            dependencies=_text_list(_first(data, "dependencies")),
            notes=str(_first(data, "notes") or "").strip(),
            architecture=_architecture_from(persona, data),
        )
    except ValidationError as error:
        LOGGER.warning("Estimator %s response failed validation; using fallback.", persona)
        return FallbackEstimate(persona=persona, error=str(error))


def _merge_unique(groups: Sequence[Sequence[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for group in groups:
        for value in group:
            seen.setdefault(value, None)
    return list(seen)


@dataclass(slots=True)
class ConsensusResult:
    """Consensus estimate plus the voting trail that produced it."""

    estimate: ConsensusEstimate
    voting: VotingRecord


class ConsensusEngine:
    """Run the estimation rounds for one work item."""

    def __init__(
        self,
        provider: LanguageModelProvider,
        *,
        prompts: PromptLibrary | None = None,
        models: Mapping[PersonaId, str] | None = None,
        team: Sequence[Persona] = TEAM,
        lead: PersonaId = LEAD_PERSONA,
        max_rounds: int = MAX_ROUNDS,
    ) -> None:
        if not 1 <= max_rounds <= MAX_ROUNDS:
            raise ValueError(f"max_rounds must be between 1 and {MAX_ROUNDS}")
        if lead not in {persona.id for persona in team}:
            raise ValueError(f"lead persona {lead.value} is not on the team")
        self._provider = provider
        self._prompts = prompts or PromptLibrary()
        self._models = dict(models or {})
        self._team = tuple(team)
        self._lead = lead
        self._max_rounds = max_rounds

    def estimate(self, item: WorkItem, *, run_id: str, created_at: datetime) -> ConsensusResult:
        rounds: List[EstimationRound] = []
        architecture: Optional[ArchitectureDecision] = None
        converged = False

        for number in range(1, self._max_rounds + 1):
            previous = rounds[-1] if rounds else None
            proposals = [self._ask(persona, item, number, previous) for persona in self._team]
            points = [proposal.story_points for proposal in proposals]
            round_converged = has_converged(points) if number >= 2 else None
            rounds.append(EstimationRound(round=number, proposals=proposals, converged=round_converged))
            LOGGER.info("Item %s round %d: points=%s converged=%s", item.id, number, points, round_converged)

            if architecture is None:
                architecture = self._lead_proposal(proposals).architecture
            if round_converged:
                converged = True
                break

        final_round = rounds[-1]
        final_points = majority_vote(final_round.points)
        lead_proposal = self._lead_proposal(final_round.proposals)
        parsed = [proposal for proposal in final_round.proposals if isinstance(proposal, ParsedEstimate)]

        estimate = ConsensusEstimate(
            id=f"EST-{run_id}-{item.id}-CONSENSUS",
            story_points=final_points,
            confidence=lead_proposal.confidence,
            architecture=architecture,
            rationale="\n".join(
                f"{proposal.persona}: {proposal.rationale}" for proposal in final_round.proposals
            ),
            rounds=len(rounds),
            converged=converged,
            complexity_drivers=_merge_unique([proposal.complexity_drivers for proposal in parsed]),
            assumptions=_merge_unique([proposal.assumptions for proposal in parsed]),
            dependencies=_merge_unique([proposal.dependencies for proposal in parsed]),
            notes=f"Consensus from {len(rounds)} round(s). Converged: {'yes' if converged else 'no'}.",
            created_at_utc=created_at.isoformat(),
            created_from_run_id=run_id,
        )
        voting = VotingRecord(
            item_id=item.id,
            run_id=run_id,
            lead_persona=self._lead.value,
            rounds=rounds,
            final_story_points=final_points,
            converged=converged,
        )
        return ConsensusResult(estimate=estimate, voting=voting)

    def _lead_proposal(self, proposals: Sequence[Proposal]) -> Proposal:
        for proposal in proposals:
            if proposal.persona == self._lead.value:
                return proposal
        raise LookupError(f"round has no proposal from lead persona {self._lead.value}")

    def _ask(
        self,
        persona: Persona,
        item: WorkItem,
        number: int,
        previous: EstimationRound | None,
    ) -> Proposal:
        sections = [render_item_context(item)]
        if previous is not None:
            sections.append(render_prior_round(previous))
        sections.append(self._prompts.flow_prompt("estimation", ESTIMATION_CONTRACT))
        request = ModelRequest(
            persona=persona.id.value,
            task="estimate",
            system_prompt=self._prompts.persona_prompt(persona),
            prompt="\n\n".join(sections),
            model=self._models.get(persona.id),
            metadata={"item_id": item.id, "item_title": item.title, "round": number},
        )
        try:
            raw = self._provider.generate(request)
        except ProviderResponseError as error:
            LOGGER.warning("Estimator %s returned no usable output; using fallback.", persona.id.value)
            return FallbackEstimate(persona=persona.id.value, error=str(error))
        return parse_proposal(persona.id.value, raw)
