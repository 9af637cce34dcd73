"""Typed records for the human-edited state files (backlog and epics)."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import ItemNotFound, PreconditionFailure

__all__ = [
    "Backlog",
    "BacklogEstimate",
    "Epic",
    "EpicRegistry",
    "ItemStatus",
    "RecordModel",
    "WorkItem",
    "utc_now",
]


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class FileRecordModel(BaseModel):
    """Base model for records read from hand-edited files; unknown keys survive a save."""

    model_config = ConfigDict(extra="allow", frozen=False, populate_by_name=True)


class ItemStatus(str, Enum):
    """Lifecycle states of a backlog item, in forward order."""

    CANDIDATE = "candidate"
    READY = "ready"
    READY_FOR_DEV = "ready_for_dev"
    DONE = "done"

    @property
    def rank(self) -> int:
        return list(ItemStatus).index(self)


def _as_text_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        stripped = value.strip()
        return [stripped] if stripped else []
    return value


def _as_optional_text(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    return str(value)


class BacklogEstimate(FileRecordModel):
    """Estimate recorded on a backlog item once technical readiness is approved."""

    id: str = ""
    story_points: int = 0
    scale: str = "fibonacci-lite"
    confidence: str = "low"
    risk_level: str = "medium"
    complexity_drivers: List[str] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    notes: str = ""
    created_at_utc: Optional[str] = None
    created_from_run_id: Optional[str] = None

    _coerce_lists = field_validator(
        "complexity_drivers", "assumptions", "dependencies", mode="before"
    )(_as_text_list)


class WorkItem(FileRecordModel):
    """Single backlog entry."""

    id: int
    title: str = ""
    status: ItemStatus = ItemStatus.CANDIDATE
    priority: Optional[int] = None
    size: Optional[str] = None
    owner: Optional[str] = None
    story: str = ""
    acceptance_criteria: List[str] = Field(default_factory=list)
    non_goals: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    epic_id: Optional[str] = None
    estimate: Optional[BacklogEstimate] = None
    technical_notes_ref: Optional[str] = None
    implementation_plan_ref: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    _coerce_lists = field_validator(
        "acceptance_criteria", "non_goals", "dependencies", "risks", mode="before"
    )(_as_text_list)
    _coerce_text = field_validator("epic_id", "size", "owner", mode="before")(_as_optional_text)

    def advance_status(self, target: ItemStatus) -> None:
        """Move the item to ``target``; statuses never move backwards."""
        if target.rank < self.status.rank:
            raise PreconditionFailure(
                "status",
                f"Item {self.id} cannot move from '{self.status.value}' back to '{target.value}'.",
                details={"from": self.status.value, "to": target.value},
            )
        self.status = target


class Backlog(FileRecordModel):
    """Top-level document stored in ``state/backlog.yaml``."""

    backlog: List[WorkItem] = Field(default_factory=list)

    @field_validator("backlog", mode="before")
    @classmethod
    def _default_items(cls, value: Any) -> Any:
        return [] if value is None else value

    def find(self, item_id: int) -> WorkItem | None:
        for item in self.backlog:
            if item.id == item_id:
                return item
        return None

    def require(self, item_id: int) -> WorkItem:
        item = self.find(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item


class Epic(FileRecordModel):
    """Epic entry mapping an epic id to the application it delivers."""

    id: str
    app_id: str
    title: Optional[str] = None

    _coerce_ids = field_validator("id", "app_id", mode="before")(_as_optional_text)


class EpicRegistry(FileRecordModel):
    """Top-level document stored in ``state/epics.yaml``."""

    epics: List[Epic] = Field(default_factory=list)

    @field_validator("epics", mode="before")
    @classmethod
    def _default_epics(cls, value: Any) -> Any:
        return [] if value is None else value

    def resolve_app_id(self, epic_id: str) -> str | None:
        wanted = epic_id.strip()
        for epic in self.epics:
            if epic.id.strip() == wanted and epic.app_id.strip():
                return epic.app_id.strip()
        return None
