from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from governor.flows.base import FlowContext  # noqa: E402
from governor.models.provider import LanguageModelProvider  # noqa: E402
from governor.state.layout import RepoPaths, ensure_layout  # noqa: E402

FIXED_NOW = datetime(2026, 10, 19, 12, 30, 0, tzinfo=timezone.utc)


class ScriptedProvider(LanguageModelProvider):
    """Provider returning queued responses per persona, recording each request."""

    def __init__(self, responses: Dict[str, List[str]] | None = None, *, default: str = "") -> None:
        super().__init__("scripted", max_attempts=1, retry_delay=0.0)
        self.responses = {persona: list(queue) for persona, queue in (responses or {}).items()}
        self.default = default
        self.requests: List[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        self.requests.append(payload)
        persona = payload["metadata"]["persona"]
        queue = self.responses.get(persona)
        if queue:
            return queue.pop(0)
        return self.default


def estimate_json(points: Any, *, confidence: str = "medium", rationale: str = "ok", **extra: Any) -> str:
    payload = {
        "storyPoints": points,
        "confidence": confidence,
        "rationale": rationale,
        "complexityDrivers": [],
        "assumptions": [],
        "dependencies": [],
        "notes": "",
    }
    payload.update(extra)
    return json.dumps(payload)


ARCHITECTURE_FIELDS = {
    "appType": "console",
    "language": "python",
    "runtime": "python3",
    "framework": "stdlib",
    "projects": [{"name": "app", "type": "console", "path": ".", "dependencies": []}],
}


@dataclass(slots=True)
class GovernedRepo:
    """Fixture payload for a governed working directory."""

    paths: RepoPaths
    items: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def root(self) -> Path:
        return self.paths.root

    def write_backlog(self, items: List[Dict[str, Any]]) -> None:
        self.items = items
        self.paths.backlog_path.write_text(
            yaml.safe_dump({"backlog": items}, sort_keys=False), encoding="utf-8"
        )

    def read_backlog(self) -> List[Dict[str, Any]]:
        data = yaml.safe_load(self.paths.backlog_path.read_text(encoding="utf-8"))
        return data["backlog"]

    def context(self, actor: str = "tester", clock: Callable[[], datetime] = lambda: FIXED_NOW) -> FlowContext:
        return FlowContext(paths=self.paths, actor=actor, clock=clock)


@pytest.fixture()
def governed_repo(tmp_path: Path) -> GovernedRepo:
    """Initialised layout with one epic and one candidate item."""
    paths = RepoPaths(tmp_path / "repo")
    paths.root.mkdir()
    ensure_layout(paths)
    paths.epics_path.write_text(
        yaml.safe_dump({"epics": [{"id": "EPIC-1", "app_id": "hello-app"}]}), encoding="utf-8"
    )
    repo = GovernedRepo(paths=paths)
    repo.write_backlog(
        [
            {
                "id": 1,
                "title": "Greet the user",
                "status": "candidate",
                "epic_id": "EPIC-1",
                "story": "As a user I want a greeting.",
                "acceptance_criteria": ["prints a greeting"],
                "risks": ["none significant"],
                "labels": ["demo"],
            }
        ]
    )
    return repo
