"""Sandbox, workspace and audit tooling used by the delivery flow."""

from .patch import PatchApplied, PatchEntry, PatchPreview, apply_and_record, compute_preview
from .process import AllowedProcess, SandboxedProcessExecutor
from .validation import ValidationReport, run_validation
from .workspace import WorkspaceManager

__all__ = [
    "AllowedProcess",
    "PatchApplied",
    "PatchEntry",
    "PatchPreview",
    "SandboxedProcessExecutor",
    "ValidationReport",
    "WorkspaceManager",
    "apply_and_record",
    "compute_preview",
    "run_validation",
]
