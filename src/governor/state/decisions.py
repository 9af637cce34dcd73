"""Append-only decision log of approvals."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import List

from pydantic import Field, ValidationInfo, field_validator

from ..telemetry import emit_event
from .layout import DECISION_LOG_HEADER
from .schema import RecordModel, utc_now

__all__ = ["DecisionLog", "DecisionLogEntry", "DecisionType", "check_log_field"]

LOGGER = logging.getLogger(__name__)


def check_log_field(label: str, value: str) -> str:
    """Reject values that would break or forge a one-line log entry."""
    if not value.strip():
        raise ValueError(f"{label} must not be empty")
    if "\n" in value or "\r" in value or "|" in value:
        raise ValueError(f"{label} must be a single line without '|': {value!r}")
    return value


class DecisionType:
    """Decision labels written to the log."""

    TECHNICAL_READINESS_APPROVED = "technical-readiness approved"
    REFINE_APPROVED = "refine approved"
    DELIVER_APPROVED = "deliver approved"


class DecisionLogEntry(RecordModel):
    """One approval: ``<timestamp> | <decision> | item=<id> | run=<run> | by=<actor>``."""

    timestamp: datetime = Field(default_factory=utc_now)
    decision: str
    item_id: int
    run_id: str
    actor: str

    @field_validator("decision", "run_id", "actor")
    @classmethod
    def _single_line(cls, value: str, info: ValidationInfo) -> str:
        return check_log_field(info.field_name or "field", value)

    def render(self) -> str:
        return (
            f"{self.timestamp.isoformat()} | {self.decision} | item={self.item_id}"
            f" | run={self.run_id} | by={self.actor}"
        )


class DecisionLog:
    """Monotonically growing log file; entries are only ever appended."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, entry: DecisionLogEntry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not self.path.exists()
        with self.path.open("a", encoding="utf-8") as handle:
            if is_new:
                handle.write(DECISION_LOG_HEADER)
            handle.write(entry.render() + "\n")
        LOGGER.info("Decision logged: %s", entry.render())
        emit_event(
            "decision.appended",
            decision=entry.decision,
            item_id=entry.item_id,
            run_id=entry.run_id,
            actor=entry.actor,
        )

    def lines(self) -> List[str]:
        """Return the recorded decision lines, skipping the header."""
        if not self.path.exists():
            return []
        return [
            line
            for line in self.path.read_text(encoding="utf-8").splitlines()
            if " | item=" in line
        ]
