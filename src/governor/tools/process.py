"""Allowlisted subprocess execution for candidate build/run validation.

This module is the only place in governor that spawns processes. A request
names one member of :class:`AllowedProcess`; the executable and base arguments
for that member are fixed here, callers may only append extra arguments, and
every argument is screened for shell metacharacters before anything starts.
Processes are launched from an argument vector without a shell, and their
output is streamed to caller-supplied files.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Sequence, Tuple

from ..errors import ForbiddenProcess
from ..telemetry import emit_event

__all__ = [
    "AllowedProcess",
    "DEFAULT_TIMEOUT_SECONDS",
    "FORBIDDEN_CHARACTERS",
    "ProcessOutcome",
    "SandboxedProcessExecutor",
    "TIMEOUT_EXIT_CODE",
    "base_arguments",
    "check_arguments",
    "resolve_process",
]

LOGGER = logging.getLogger(__name__)

FORBIDDEN_CHARACTERS = frozenset("&|;$`(){}<>\"'*?\\")
DEFAULT_TIMEOUT_SECONDS = 600.0
TIMEOUT_EXIT_CODE = 124


class AllowedProcess(str, Enum):
    """Closed set of commands the sandbox may execute."""

    BUILD = "build"
    RUN = "run"


_BASE_ARGUMENTS: Mapping[AllowedProcess, Tuple[str, ...]] = {
    AllowedProcess.BUILD: ("-m", "compileall", "-q", "."),
    AllowedProcess.RUN: ("main.py",),
}


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    """Exit status and output locations of one sandboxed invocation."""

    process: AllowedProcess
    command: Tuple[str, ...]
    working_dir: Path
    exit_code: int
    timed_out: bool
    stdout_path: Path
    stderr_path: Path

    @property
    def command_line(self) -> str:
        return " ".join(self.command)


def resolve_process(process: object) -> AllowedProcess:
    if isinstance(process, AllowedProcess):
        return process
    if isinstance(process, str):
        try:
            return AllowedProcess(process)
        except ValueError:
            pass
    raise ForbiddenProcess(
        f"Process is not allowlisted: {process!r}", details={"process": repr(process)}
    )


def base_arguments(process: AllowedProcess | str) -> Tuple[str, ...]:
    """Fixed interpreter arguments for ``process``; plans may only extend them."""
    return _BASE_ARGUMENTS[resolve_process(process)]


def check_arguments(arguments: Sequence[str]) -> None:
    """Raise :class:`ForbiddenProcess` if any argument holds a shell metacharacter."""
    for argument in arguments:
        if not isinstance(argument, str):
            raise ForbiddenProcess(
                f"Arguments must be strings, got {type(argument).__name__}.",
                details={"argument": repr(argument)},
            )
        hits = sorted(set(argument) & FORBIDDEN_CHARACTERS)
        if hits:
            raise ForbiddenProcess(
                f"Argument {argument!r} contains forbidden characters: {' '.join(hits)}",
                details={"argument": argument, "characters": hits},
            )


class SandboxedProcessExecutor:
    """Run the build or run command of the Python toolchain."""

    def __init__(
        self,
        *,
        interpreter: str | None = None,
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._interpreter = interpreter or sys.executable
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive or None")
        self._timeout = timeout

    @property
    def timeout(self) -> float | None:
        return self._timeout

    def command_for(self, process: AllowedProcess | str, extra_args: Sequence[str] = ()) -> Tuple[str, ...]:
        """Return the argument vector for ``process`` after screening ``extra_args``."""
        allowed = resolve_process(process)
        extra = list(extra_args)
        check_arguments(extra)
        return (self._interpreter, *_BASE_ARGUMENTS[allowed], *extra)

    def run(
        self,
        process: AllowedProcess | str,
        working_dir: Path,
        extra_args: Sequence[str] = (),
        *,
        stdout_path: Path,
        stderr_path: Path,
    ) -> ProcessOutcome:
        allowed = resolve_process(process)
        command = self.command_for(allowed, extra_args)
        if not working_dir.is_dir():
            raise FileNotFoundError(f"Working directory does not exist: {working_dir}")

        stdout_path.parent.mkdir(parents=True, exist_ok=True)
        stderr_path.parent.mkdir(parents=True, exist_ok=True)
        emit_event("process.started", process=allowed, cwd=working_dir, command=list(command))
        LOGGER.info("Running %s in %s", allowed.value, working_dir)

        timed_out = False
        with stdout_path.open("wb") as stdout_handle, stderr_path.open("wb") as stderr_handle:
            try:
                completed = subprocess.run(  # noqa: S603  # argv built from the allowlist
                    list(command),
                    cwd=working_dir,
                    stdin=subprocess.DEVNULL,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                    shell=False,
                    check=False,
                    timeout=self._timeout,
                )
                exit_code = completed.returncode
            except subprocess.TimeoutExpired:
                timed_out = True
                exit_code = TIMEOUT_EXIT_CODE
                stderr_handle.write(
                    f"\n[governor] {allowed.value} timed out after {self._timeout}s\n".encode("utf-8")
                )

        emit_event(
            "process.finished",
            process=allowed,
            exit_code=exit_code,
            timed_out=timed_out,
        )
        if exit_code != 0:
            LOGGER.warning("%s exited with code %s", allowed.value, exit_code)
        return ProcessOutcome(
            process=allowed,
            command=command,
            working_dir=working_dir,
            exit_code=exit_code,
            timed_out=timed_out,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
        )
