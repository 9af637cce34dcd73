"""File-backed stores for backlog items, epics, plans and run artifacts."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ValidationError

from ..errors import StoreParseFailure
from ..planning.schema import ImplementationPlan
from .layout import RepoPaths
from .schema import Backlog, EpicRegistry, RecordModel

__all__ = [
    "BacklogStore",
    "EpicStore",
    "PlanStore",
    "RunArtifactStore",
    "RunRecord",
    "write_text_atomic",
]

LOGGER = logging.getLogger(__name__)

PLAN_FILE_NAME = "implementation.plan.json"


def write_text_atomic(path: Path, content: str) -> None:
    """Write ``content`` to a sibling temp file, then replace ``path`` with it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as handle:
        handle.write(content)
        temp_path = Path(handle.name)
    try:
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


def _dump_json(payload: BaseModel | Mapping[str, Any]) -> str:
    if isinstance(payload, BaseModel):
        return payload.model_dump_json(indent=2) + "\n"
    return json.dumps(payload, indent=2, sort_keys=False) + "\n"


def _read_yaml(path: Path, label: str) -> Any:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except FileNotFoundError as error:
        raise StoreParseFailure(f"{label} not found: {path}", details={"path": str(path)}) from error
    except yaml.YAMLError as error:
        raise StoreParseFailure(f"{label} is not valid YAML: {error}", details={"path": str(path)}) from error


class BacklogStore:
    """Load/save contract over ``state/backlog.yaml``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Backlog:
        data = _read_yaml(self.path, "Backlog")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise StoreParseFailure(
                "Backlog must be a mapping with a top-level 'backlog' list.",
                details={"path": str(self.path)},
            )
        try:
            return Backlog.model_validate(data)
        except ValidationError as error:
            raise StoreParseFailure(
                f"Backlog failed validation: {error}", details={"path": str(self.path)}
            ) from error

    def save(self, backlog: Backlog) -> None:
        payload = backlog.model_dump(mode="json", exclude_none=True)
        text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
        write_text_atomic(self.path, text)
        LOGGER.debug("Saved backlog with %d item(s) to %s", len(backlog.backlog), self.path)


class EpicStore:
    """Read-only view of ``state/epics.yaml``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> EpicRegistry:
        data = _read_yaml(self.path, "Epic registry")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise StoreParseFailure(
                "Epic registry must be a mapping with a top-level 'epics' list.",
                details={"path": str(self.path)},
            )
        try:
            return EpicRegistry.model_validate(data)
        except ValidationError as error:
            raise StoreParseFailure(
                f"Epic registry failed validation: {error}", details={"path": str(self.path)}
            ) from error


class PlanStore:
    """Persisted implementation plans, one per backlog item."""

    def __init__(self, paths: RepoPaths) -> None:
        self._paths = paths

    def ref_for(self, item_id: int) -> str:
        return f"state/plans/item-{item_id}/{PLAN_FILE_NAME}"

    def resolve(self, ref: str) -> Path:
        candidate = Path(ref)
        if candidate.is_absolute():
            return candidate
        return self._paths.root / candidate

    def exists(self, ref: str | None) -> bool:
        if not ref or not ref.strip():
            return False
        return self.resolve(ref.strip()).is_file()

    def save(self, plan: ImplementationPlan) -> str:
        ref = self.ref_for(plan.item_id)
        write_text_atomic(self.resolve(ref), _dump_json(plan))
        LOGGER.info("Persisted plan %s for item %s at %s", plan.plan_id, plan.item_id, ref)
        return ref

    def load(self, ref: str) -> ImplementationPlan:
        path = self.resolve(ref)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as error:
            raise StoreParseFailure(f"Plan not found: {ref}", details={"path": str(path)}) from error
        try:
            return ImplementationPlan.model_validate_json(raw)
        except ValidationError as error:
            raise StoreParseFailure(
                f"Plan failed validation: {error}", details={"path": str(path)}
            ) from error


class RunRecord(RecordModel):
    """``run.json``: which flow ran, for which item, and how it ended."""

    run_id: str
    flow: str
    created_at_utc: str
    workdir: str
    item_id: int
    item_title: str = ""
    status: str = "created"


class RunArtifactStore:
    """Per-invocation run directories under ``state/runs``."""

    def __init__(self, runs_dir: Path) -> None:
        self.runs_dir = runs_dir

    def create(self, run_id: str) -> Path:
        """Create a fresh directory for ``run_id``.

        Run ids have one-second resolution; a second invocation within the same
        second gets ``<run_id>_2``, then ``_3`` and so on. The directory name is
        the effective run id.
        """
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        attempt = 1
        while True:
            name = run_id if attempt == 1 else f"{run_id}_{attempt}"
            run_dir = self.runs_dir / name
            try:
                run_dir.mkdir()
            except FileExistsError:
                attempt += 1
                continue
            LOGGER.debug("Created run directory %s", run_dir)
            return run_dir

    def write_json(self, run_dir: Path, name: str, payload: BaseModel | Mapping[str, Any]) -> Path:
        path = run_dir / name
        path.write_text(_dump_json(payload), encoding="utf-8")
        return path

    def write_text(self, run_dir: Path, name: str, content: str) -> Path:
        path = run_dir / name
        path.write_text(content, encoding="utf-8")
        return path
