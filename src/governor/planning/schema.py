"""Typed records produced by estimation and planning."""

from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..state.schema import BacklogEstimate, RecordModel

__all__ = [
    "ALLOWED_STORY_POINTS",
    "ArchitectureDecision",
    "ConsensusEstimate",
    "EstimationRound",
    "EstimatorProposal",
    "ExecutionStep",
    "FallbackEstimate",
    "ImplementationPlan",
    "LayoutEntry",
    "ParsedEstimate",
    "ProjectSpec",
    "StackDecision",
    "ValidationCheck",
    "VotingRecord",
    "has_placeholder",
]

ALLOWED_STORY_POINTS = (1, 3, 5)
FALLBACK_STORY_POINTS = 3
PLACEHOLDER_MARKERS = ("placeholder", "(fill)")

StoryPoints = Literal[1, 3, 5]


def has_placeholder(text: str, *, quoted: Sequence[str] = ()) -> bool:
    """Return ``True`` when ``text`` still carries a template placeholder marker.

    Occurrences of ``quoted`` (user-supplied text such as an item title) are
    removed before scanning.
    """
    lowered = text.lower()
    for fragment in quoted:
        if fragment.strip():
            lowered = lowered.replace(fragment.strip().lower(), " ")
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


def _coerce_points(value: Any) -> Any:
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class ProjectSpec(RecordModel):
    """Sub-project declared by an architecture decision."""

    name: str
    type: str = "app"
    path: str = "."
    dependencies: List[str] = Field(default_factory=list)


class ArchitectureDecision(RecordModel):
    """Application type and stack chosen by the lead estimator."""

    app_type: str
    language: str
    runtime: str = ""
    framework: str = ""
    projects: List[ProjectSpec] = Field(default_factory=list)


class ParsedEstimate(RecordModel):
    """Estimator proposal that matched the required response shape."""

    kind: Literal["parsed"] = "parsed"
    persona: str
    story_points: StoryPoints
    confidence: str = "medium"
    rationale: str = ""
    complexity_drivers: List[str] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    notes: str = ""
    architecture: Optional[ArchitectureDecision] = None
    fallback: Literal[False] = False

    _coerce_points = field_validator("story_points", mode="before")(_coerce_points)


class FallbackEstimate(RecordModel):
    """Fixed proposal substituted when an estimator response cannot be parsed."""

    kind: Literal["fallback"] = "fallback"
    persona: str
    story_points: StoryPoints = FALLBACK_STORY_POINTS
    confidence: str = "low"
    rationale: str = "Estimator response could not be parsed; fallback proposal used."
    error: str = ""
    fallback: Literal[True] = True

    @property
    def architecture(self) -> None:
        return None


EstimatorProposal = Annotated[Union[ParsedEstimate, FallbackEstimate], Field(discriminator="kind")]


class EstimationRound(RecordModel):
    """Proposals collected in one round; ``converged`` is unset for round one."""

    round: int
    proposals: List[EstimatorProposal] = Field(default_factory=list)
    converged: Optional[bool] = None

    @property
    def points(self) -> List[int]:
        return [proposal.story_points for proposal in self.proposals]


class VotingRecord(RecordModel):
    """Full deliberation trail written next to the consensus estimate."""

    item_id: int
    run_id: str
    lead_persona: str
    rounds: List[EstimationRound] = Field(default_factory=list)
    final_story_points: StoryPoints
    converged: bool


class ConsensusEstimate(BaseModel):
    """Team-voted size and architecture for a work item; immutable once built."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    story_points: StoryPoints
    confidence: str
    architecture: Optional[ArchitectureDecision] = None
    rationale: str = ""
    rounds: int
    converged: bool
    complexity_drivers: List[str] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    notes: str = ""
    created_at_utc: str
    created_from_run_id: str

    def to_backlog_estimate(self) -> BacklogEstimate:
        """Project the consensus onto the estimate stored in the backlog."""
        risk_level = {1: "low", 3: "medium", 5: "high"}[self.story_points]
        return BacklogEstimate(
            id=self.id,
            story_points=self.story_points,
            confidence=self.confidence,
            risk_level=risk_level,
            complexity_drivers=list(self.complexity_drivers),
            assumptions=list(self.assumptions),
            dependencies=list(self.dependencies),
            notes=self.notes,
            created_at_utc=self.created_at_utc,
            created_from_run_id=self.created_from_run_id,
        )


class StackDecision(RecordModel):
    """Language/runtime/framework triple carried by a plan."""

    language: str
    runtime: str = ""
    framework: str = ""


class LayoutEntry(RecordModel):
    """Directory the plan expects inside the application target."""

    path: str
    kind: str


class ExecutionStep(RecordModel):
    """Ordered build or run step executed through the sandbox."""

    name: str
    tool: str
    args: List[str] = Field(default_factory=list)
    cwd: str = "."


class ValidationCheck(RecordModel):
    """Check applied to the outcome of a named step."""

    type: Literal["exit_code_equals", "stdout_contains"]
    step: str
    value: str


class ImplementationPlan(RecordModel):
    """Deterministic technical blueprint consumed by delivery."""

    plan_id: str
    created_at_utc: str
    created_from_run_id: str
    item_id: int
    epic_id: str
    app_id: str
    repo_target: str
    app_type: str
    stack: StackDecision
    project_layout: List[LayoutEntry] = Field(default_factory=list)
    build_steps: List[ExecutionStep] = Field(default_factory=list)
    run_steps: List[ExecutionStep] = Field(default_factory=list)
    validation_checks: List[ValidationCheck] = Field(default_factory=list)
    exclude_globs: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)
    notes: str

    @field_validator("notes")
    @classmethod
    def _notes_are_final(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("plan notes must not be empty")
        if has_placeholder(value):
            raise ValueError("plan notes still contain a placeholder marker")
        return value
