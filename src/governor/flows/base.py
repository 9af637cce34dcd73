"""Shared flow plumbing: invocation context, results and exit-code translation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict

from ..errors import ExitCode, GovernorError, PreconditionFailure
from ..state.decisions import check_log_field
from ..state.layout import RepoPaths
from ..state.schema import utc_now

__all__ = ["Flow", "FlowContext", "FlowResult"]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FlowContext:
    """Everything a flow needs from its caller; flows never read the environment."""

    paths: RepoPaths
    actor: str
    clock: Callable[[], datetime] = utc_now


@dataclass(slots=True)
class FlowResult:
    """Outcome of one flow invocation."""

    exit_code: ExitCode
    message: str
    run_id: str | None = None
    run_dir: Path | None = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.exit_code is ExitCode.SUCCESS


class Flow:
    """Base class; subclasses implement :meth:`_run` and raise typed errors."""

    name = "flow"

    def __init__(self, context: FlowContext) -> None:
        self.context = context
        self.run_id: str | None = None
        self.run_dir: Path | None = None

    def execute(self) -> FlowResult:
        """Run the flow, translating every failure into an exit code."""
        try:
            self._check_actor()
            return self._run()
        except GovernorError as error:
            LOGGER.error("%s failed (%s): %s", self.name, error.exit_code.name, error)
            return FlowResult(
                exit_code=error.exit_code,
                message=str(error),
                run_id=self.run_id,
                run_dir=self.run_dir,
                details=dict(error.details),
            )
        except Exception as error:  # noqa: BLE001 - top-level translation to exit code 10
            LOGGER.exception("%s failed unexpectedly", self.name)
            return FlowResult(
                exit_code=ExitCode.UNEXPECTED_ERROR,
                message=f"Unexpected error: {error}",
                run_id=self.run_id,
                run_dir=self.run_dir,
            )

    def _check_actor(self) -> None:
        try:
            check_log_field("actor", self.context.actor)
        except ValueError as error:
            raise PreconditionFailure("actor", f"Approver cannot be recorded: {error}") from error

    def _run(self) -> FlowResult:
        raise NotImplementedError("Subclasses must implement _run().")
