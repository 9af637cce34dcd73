"""Sandboxed build/run validation of a candidate against its plan."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import Field

from ..errors import ForbiddenProcess
from ..planning.schema import ExecutionStep, ImplementationPlan, ValidationCheck
from ..state.schema import RecordModel
from .process import AllowedProcess, ProcessOutcome, SandboxedProcessExecutor, base_arguments, resolve_process

__all__ = ["CommandResult", "ValidationReport", "run_validation"]

LOGGER = logging.getLogger(__name__)

PLANNED_TOOLS = frozenset({"python", "python3"})


class CommandResult(RecordModel):
    """Outcome of one validation command."""

    name: str
    working_dir: str
    command_line: str
    exit_code: int
    timed_out: bool = False
    stdout_file: str
    stderr_file: str
    passed: bool
    failures: List[str] = Field(default_factory=list)


class ValidationReport(RecordModel):
    """Per-command results plus the overall verdict."""

    passed: bool
    commands: List[CommandResult] = Field(default_factory=list)

    def summary_lines(self) -> List[str]:
        lines = []
        for command in self.commands:
            status = "passed" if command.passed else "failed"
            lines.append(f"{command.name}: {status} (exit {command.exit_code})")
            lines.extend(f"  - {failure}" for failure in command.failures)
        return lines


def _resolve_cwd(app_dir: Path, step: ExecutionStep) -> Path:
    candidate = (app_dir / step.cwd).resolve()
    root = app_dir.resolve()
    if candidate != root and root not in candidate.parents:
        raise ForbiddenProcess(
            f"Step '{step.name}' working directory escapes the workspace: {step.cwd}",
            details={"cwd": step.cwd},
        )
    return candidate


def _planned_extra_args(step: ExecutionStep, process: AllowedProcess) -> List[str]:
    """Arguments the step appends to the allowlisted command; anything else is refused."""
    if step.tool.strip().lower() not in PLANNED_TOOLS:
        raise ForbiddenProcess(
            f"Step '{step.name}' declares tool '{step.tool}'; only python is allowlisted.",
            details={"step": step.name, "tool": step.tool},
        )
    base = list(base_arguments(process))
    if step.args[: len(base)] != base:
        raise ForbiddenProcess(
            f"Step '{step.name}' arguments {step.args} do not start with the allowlisted {base}.",
            details={"step": step.name, "args": list(step.args), "expected": base},
        )
    return list(step.args[len(base) :])


def _evaluate(
    outcome: ProcessOutcome, checks: Sequence[ValidationCheck]
) -> List[str]:
    failures: List[str] = []
    if outcome.timed_out:
        failures.append("timed out")
    if not checks:
        if outcome.exit_code != 0:
            failures.append(f"exit code {outcome.exit_code} != 0")
        return failures
    stdout_text: Optional[str] = None
    for check in checks:
        if check.type == "exit_code_equals":
            try:
                expected = int(check.value)
            except ValueError:
                failures.append(f"invalid expected exit code: {check.value!r}")
                continue
            if outcome.exit_code != expected:
                failures.append(f"exit code {outcome.exit_code} != {expected}")
        elif check.type == "stdout_contains":
            if stdout_text is None:
                stdout_text = outcome.stdout_path.read_text(encoding="utf-8", errors="replace")
            if check.value not in stdout_text:
                failures.append(f"stdout does not contain {check.value!r}")
    return failures


def run_validation(
    plan: ImplementationPlan,
    app_dir: Path,
    run_dir: Path,
    executor: SandboxedProcessExecutor,
) -> ValidationReport:
    """Run every build step then every run step, logging output into ``run_dir``."""
    results: List[CommandResult] = []
    for step in (*plan.build_steps, *plan.run_steps):
        process = resolve_process(step.name)
        extra_args = _planned_extra_args(step, process)
        cwd = _resolve_cwd(app_dir, step)
        outcome = executor.run(
            process,
            cwd,
            extra_args,
            stdout_path=run_dir / f"{process.value}.stdout.log",
            stderr_path=run_dir / f"{process.value}.stderr.log",
        )
        checks = [check for check in plan.validation_checks if check.step == step.name]
        failures = _evaluate(outcome, checks)
        results.append(
            CommandResult(
                name=process.value,
                working_dir=str(cwd),
                command_line=outcome.command_line,
                exit_code=outcome.exit_code,
                timed_out=outcome.timed_out,
                stdout_file=str(outcome.stdout_path),
                stderr_file=str(outcome.stderr_path),
                passed=not failures,
                failures=failures,
            )
        )
    passed = bool(results) and all(result.passed for result in results)
    LOGGER.info("Validation for plan %s: %s", plan.plan_id, "passed" if passed else "failed")
    return ValidationReport(passed=passed, commands=results)
