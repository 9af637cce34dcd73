"""Definition of Ready: what a backlog item needs before it can be refined."""

from __future__ import annotations

from typing import FrozenSet, List

from ..state.schema import ItemStatus, WorkItem

__all__ = [
    "ALLOWED_OWNERS",
    "ALLOWED_SIZES",
    "DEFINITION_OF_READY_CHECK",
    "definition_of_ready_problems",
]

DEFINITION_OF_READY_CHECK = "definition_of_ready"

ALLOWED_OWNERS: FrozenSet[str] = frozenset({"PO", "SAD", "SASD", "QA", "MIBS"})
ALLOWED_SIZES: FrozenSet[str] = frozenset({"S", "M", "L"})
REFINABLE_STATUSES: FrozenSet[ItemStatus] = frozenset({ItemStatus.CANDIDATE, ItemStatus.READY})


def definition_of_ready_problems(item: WorkItem) -> List[str]:
    """List every unmet rule; an empty list means the item may be refined."""
    problems: List[str] = []
    if item.id <= 0:
        problems.append("id must be a positive integer.")
    if not item.title.strip():
        problems.append("title is required.")
    if item.status not in REFINABLE_STATUSES:
        problems.append("status must be 'candidate' or 'ready' to refine.")
    if (item.owner or "").strip().upper() not in ALLOWED_OWNERS:
        problems.append(f"owner must be one of {{{','.join(sorted(ALLOWED_OWNERS))}}}.")
    if (item.size or "").strip().upper() not in ALLOWED_SIZES:
        problems.append("size must be one of {S,M,L}.")
    return problems

