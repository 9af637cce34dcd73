"""Hash-based auditing of candidate trees and their deployment."""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import shutil
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import Field

from ..state.schema import RecordModel, utc_now
from ..telemetry import emit_event

__all__ = [
    "PatchAction",
    "PatchApplied",
    "PatchEntry",
    "PatchPreview",
    "apply_and_record",
    "compare_records",
    "compute_entries",
    "compute_preview",
    "render_diff",
    "sha256_file",
]

LOGGER = logging.getLogger(__name__)

_CHUNK_SIZE = 65536
_ACTION_MARKERS = {"add": "A", "modify": "M", "delete": "D"}


class PatchAction(str, Enum):
    """How a file differs between the candidate and the deployed tree."""

    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"


class PatchEntry(RecordModel):
    """Per-file audit record shared by previews and applied patches."""

    action: PatchAction
    path: str
    size: int
    sha256: Optional[str] = None
    previous_sha256: Optional[str] = None
    target_sha256: Optional[str] = None


class PatchPreview(RecordModel):
    """Read-only description of what a deploy would change."""

    computed_at_utc: str = Field(default_factory=lambda: utc_now().isoformat())
    item_id: Optional[int] = None
    app_id: str
    repo_target: str
    validation_passed: Optional[bool] = None
    files: List[PatchEntry] = Field(default_factory=list)


class PatchApplied(RecordModel):
    """Audit record of a deploy; only built by :func:`apply_and_record`."""

    applied_at_utc: str = Field(default_factory=lambda: utc_now().isoformat())
    item_id: Optional[int] = None
    app_id: str
    run_id: str
    repo_target: str
    files: List[PatchEntry] = Field(default_factory=list)


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _is_excluded(relative: str, exclude_globs: Sequence[str]) -> bool:
    for pattern in exclude_globs:
        bare = pattern[3:] if pattern.startswith("**/") else pattern
        if fnmatch.fnmatchcase(relative, pattern) or fnmatch.fnmatchcase(relative, bare):
            return True
        if fnmatch.fnmatchcase(relative, f"*/{bare}"):
            return True
    return False


def _iter_files(root: Path, exclude_globs: Sequence[str]) -> Iterable[Tuple[str, Path]]:
    if not root.is_dir():
        return
    for path in sorted(root.rglob("*")):
        if path.is_symlink() or not path.is_file():
            continue
        relative = PurePosixPath(path.relative_to(root).as_posix()).as_posix()
        if _is_excluded(relative, exclude_globs):
            continue
        yield relative, path


def _snapshot(root: Path, exclude_globs: Sequence[str]) -> Dict[str, Tuple[int, str]]:
    return {
        relative: (path.stat().st_size, sha256_file(path))
        for relative, path in _iter_files(root, exclude_globs)
    }


def compute_entries(
    candidate_dir: Path,
    target_dir: Path | None = None,
    exclude_globs: Sequence[str] = (),
) -> List[PatchEntry]:
    """Classify every candidate file against the deployed tree, if any."""
    candidate = _snapshot(candidate_dir, exclude_globs)
    deployed = _snapshot(target_dir, exclude_globs) if target_dir is not None else {}

    entries: List[PatchEntry] = []
    for relative, (size, digest) in candidate.items():
        previous = deployed.get(relative)
        if previous is None:
            entries.append(PatchEntry(action=PatchAction.ADD, path=relative, size=size, sha256=digest))
        else:
            entries.append(
                PatchEntry(
                    action=PatchAction.MODIFY,
                    path=relative,
                    size=size,
                    sha256=digest,
                    previous_sha256=previous[1],
                )
            )
    for relative, (size, digest) in deployed.items():
        if relative not in candidate:
            entries.append(
                PatchEntry(action=PatchAction.DELETE, path=relative, size=size, previous_sha256=digest)
            )
    entries.sort(key=lambda entry: entry.path)
    return entries


def compute_preview(
    candidate_dir: Path,
    *,
    app_id: str,
    repo_target: str,
    target_dir: Path | None = None,
    exclude_globs: Sequence[str] = (),
    item_id: int | None = None,
    validation_passed: bool | None = None,
) -> PatchPreview:
    """Describe the deploy of ``candidate_dir`` without touching any file."""
    entries = compute_entries(candidate_dir, target_dir, exclude_globs)
    LOGGER.debug("Patch preview for %s: %d file(s)", app_id, len(entries))
    return PatchPreview(
        item_id=item_id,
        app_id=app_id,
        repo_target=repo_target,
        validation_passed=validation_passed,
        files=entries,
    )


def apply_and_record(
    candidate_dir: Path,
    target_dir: Path,
    *,
    app_id: str,
    repo_target: str,
    run_id: str,
    item_id: int | None = None,
    exclude_globs: Sequence[str] = (),
) -> PatchApplied:
    """Replace ``target_dir`` with the candidate tree and hash what was written."""
    entries = compute_entries(candidate_dir, target_dir, exclude_globs)

    if target_dir.exists():
        shutil.rmtree(target_dir)
    target_dir.mkdir(parents=True)

    applied: List[PatchEntry] = []
    for entry in entries:
        if entry.action is PatchAction.DELETE:
            applied.append(entry)
            continue
        destination = target_dir / entry.path
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(candidate_dir / entry.path, destination)
        applied.append(entry.model_copy(update={"target_sha256": sha256_file(destination)}))

    emit_event(
        "patch.applied",
        app_id=app_id,
        run_id=run_id,
        target=target_dir,
        files=len(applied),
    )
    return PatchApplied(
        item_id=item_id,
        app_id=app_id,
        run_id=run_id,
        repo_target=repo_target,
        files=applied,
    )


def render_diff(entries: Sequence[PatchEntry]) -> str:
    """Render one ``<A|M|D> <path>`` line per entry."""
    lines = [f"{_ACTION_MARKERS[entry.action.value]} {entry.path}" for entry in entries]
    return "\n".join(lines) + ("\n" if lines else "")


def compare_records(preview: PatchPreview, applied: PatchApplied) -> List[str]:
    """List every difference between a preview and the applied record."""
    problems: List[str] = []
    previewed = {entry.path: entry for entry in preview.files}
    written = {entry.path: entry for entry in applied.files}

    for path in sorted(set(previewed) - set(written)):
        problems.append(f"{path}: previewed but not applied")
    for path in sorted(set(written) - set(previewed)):
        problems.append(f"{path}: applied but not previewed")
    for path in sorted(set(previewed) & set(written)):
        before, after = previewed[path], written[path]
        if before.action != after.action:
            problems.append(f"{path}: action {before.action.value} != {after.action.value}")
        if before.sha256 != after.sha256:
            problems.append(f"{path}: candidate hash changed between preview and apply")
        if after.action is not PatchAction.DELETE and after.target_sha256 != after.sha256:
            problems.append(f"{path}: deployed hash does not match candidate hash")
    return problems
