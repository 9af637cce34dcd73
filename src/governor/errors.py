"""Failure taxonomy shared by the governor components and flows."""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Mapping

__all__ = [
    "BacklogUpdateFailure",
    "DeployFailure",
    "ExitCode",
    "ForbiddenProcess",
    "GovernorError",
    "InvalidRepoLayout",
    "ItemNotFound",
    "PlanContractError",
    "PreconditionFailure",
    "StoreParseFailure",
    "ValidationFailure",
]


class ExitCode(IntEnum):
    """Process exit codes returned by the CLI commands."""

    SUCCESS = 0
    INVALID_REPO_LAYOUT = 2
    ITEM_NOT_FOUND = 3
    STORE_PARSE_ERROR = 4
    PRECONDITION_FAILED = 5
    APPLY_FAILED = 8
    VALIDATION_FAILED = 9
    UNEXPECTED_ERROR = 10


class GovernorError(RuntimeError):
    """Base error for every failure raised by governor components."""

    exit_code: ExitCode = ExitCode.UNEXPECTED_ERROR

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class InvalidRepoLayout(GovernorError):
    """Raised when the working directory is missing required folders or files."""

    exit_code = ExitCode.INVALID_REPO_LAYOUT

    def __init__(self, problems: list[str]) -> None:
        super().__init__(
            "Invalid repository layout: " + "; ".join(problems),
            details={"problems": list(problems)},
        )
        self.problems = list(problems)


class ItemNotFound(GovernorError):
    """Raised when a backlog item id does not exist."""

    exit_code = ExitCode.ITEM_NOT_FOUND

    def __init__(self, item_id: int) -> None:
        super().__init__(f"Backlog item not found: {item_id}", details={"item_id": item_id})
        self.item_id = item_id


class StoreParseFailure(GovernorError):
    """Raised when a persisted YAML/JSON file cannot be parsed or validated."""

    exit_code = ExitCode.STORE_PARSE_ERROR


class PreconditionFailure(GovernorError):
    """Raised by the precondition gate; ``check`` names the failing check."""

    exit_code = ExitCode.PRECONDITION_FAILED

    def __init__(self, check: str, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        merged = {"check": check, **dict(details or {})}
        super().__init__(message, details=merged)
        self.check = check


class PlanContractError(GovernorError):
    """Raised when an estimate or plan cannot satisfy the plan contract."""

    exit_code = ExitCode.APPLY_FAILED


class BacklogUpdateFailure(GovernorError):
    """Raised when an accepted change cannot be written to the backlog."""

    exit_code = ExitCode.APPLY_FAILED


class DeployFailure(GovernorError):
    """Raised when copying a validated candidate into the repository fails."""

    exit_code = ExitCode.APPLY_FAILED


class ValidationFailure(GovernorError):
    """Raised when the sandboxed build or run of a candidate fails."""

    exit_code = ExitCode.VALIDATION_FAILED


class ForbiddenProcess(GovernorError):
    """Raised when a process request falls outside the allowlist."""

    exit_code = ExitCode.UNEXPECTED_ERROR
