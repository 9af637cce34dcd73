"""Repository layout of a governed working directory."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from ..errors import InvalidRepoLayout

__all__ = ["DECISION_LOG_HEADER", "RepoPaths", "ensure_layout", "validate_layout"]

LOGGER = logging.getLogger(__name__)

DECISION_LOG_HEADER = "# Decision Log\n\n(append-only)\n\n"
_BACKLOG_SEED = "backlog: []\n"
_EPICS_SEED = "epics: []\n"


@dataclass(frozen=True, slots=True)
class RepoPaths:
    """Well-known locations inside a governed repository."""

    root: Path

    @property
    def state_dir(self) -> Path:
        return self.root / "state"

    @property
    def backlog_path(self) -> Path:
        return self.state_dir / "backlog.yaml"

    @property
    def epics_path(self) -> Path:
        return self.state_dir / "epics.yaml"

    @property
    def runs_dir(self) -> Path:
        return self.state_dir / "runs"

    @property
    def plans_dir(self) -> Path:
        return self.state_dir / "plans"

    @property
    def decisions_dir(self) -> Path:
        return self.state_dir / "decisions"

    @property
    def decision_log_path(self) -> Path:
        return self.decisions_dir / "decision-log.md"

    @property
    def workspaces_dir(self) -> Path:
        return self.state_dir / "workspaces"

    @property
    def apps_dir(self) -> Path:
        return self.root / "apps"

    @property
    def prompts_dir(self) -> Path:
        return self.root / "prompts"

    @property
    def config_path(self) -> Path:
        return self.root / "governor.yaml"

    def relative(self, path: Path) -> str:
        """Return ``path`` relative to the repository root in POSIX form."""
        try:
            return path.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return path.as_posix()


def validate_layout(paths: RepoPaths) -> None:
    """Raise :class:`InvalidRepoLayout` listing every missing required entry."""
    problems: List[str] = []
    if not paths.root.is_dir():
        problems.append(f"working directory does not exist: {paths.root}")
    elif not paths.state_dir.is_dir():
        problems.append("missing directory: state/")
    elif not paths.backlog_path.is_file():
        problems.append("missing file: state/backlog.yaml")
    if problems:
        raise InvalidRepoLayout(problems)


def ensure_layout(paths: RepoPaths) -> List[Path]:
    """Create the governed layout and seed files; return what was created."""
    created: List[Path] = []
    directories = (
        paths.state_dir,
        paths.runs_dir,
        paths.plans_dir,
        paths.decisions_dir,
        paths.workspaces_dir,
        paths.apps_dir,
        paths.prompts_dir / "personas",
        paths.prompts_dir / "flows",
    )
    for directory in directories:
        if not directory.exists():
            directory.mkdir(parents=True)
            created.append(directory)

    seeds = (
        (paths.backlog_path, _BACKLOG_SEED),
        (paths.epics_path, _EPICS_SEED),
        (paths.decision_log_path, DECISION_LOG_HEADER),
    )
    for path, content in seeds:
        if not path.exists():
            path.write_text(content, encoding="utf-8")
            created.append(path)

    LOGGER.info("Initialised governed layout at %s (%d new entries)", paths.root, len(created))
    return created
