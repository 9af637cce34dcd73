"""The estimation team."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

__all__ = ["LEAD_PERSONA", "Persona", "PersonaId", "TEAM"]


class PersonaId(str, Enum):
    """Estimator roles; the architect leads architecture decisions."""

    ARCHITECT = "architect"
    SPECIALIST = "specialist"
    QA = "qa"


@dataclass(frozen=True, slots=True)
class Persona:
    id: PersonaId
    title: str
    focus: str


TEAM: Tuple[Persona, ...] = (
    Persona(
        PersonaId.ARCHITECT,
        "Senior application architect",
        "structure, stack choice and integration risk",
    ),
    Persona(
        PersonaId.SPECIALIST,
        "Senior application domain specialist",
        "business rules, edge cases and data handling",
    ),
    Persona(
        PersonaId.QA,
        "Quality assurance engineer",
        "testability, validation effort and regression risk",
    ),
)

LEAD_PERSONA = PersonaId.ARCHITECT
