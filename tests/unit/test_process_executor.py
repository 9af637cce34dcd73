from __future__ import annotations

import sys
from pathlib import Path

import pytest

from governor.errors import ForbiddenProcess
from governor.tools.process import (
    TIMEOUT_EXIT_CODE,
    AllowedProcess,
    SandboxedProcessExecutor,
    check_arguments,
)


def _app(tmp_path: Path, body: str) -> Path:
    app_dir = tmp_path / "app"
    app_dir.mkdir()
    (app_dir / "main.py").write_text(body, encoding="utf-8")
    return app_dir


def test_run_captures_stdout_and_stderr_to_files(tmp_path: Path) -> None:
    app_dir = _app(
        tmp_path,
        "import sys\nprint('hello out')\nprint('hello err', file=sys.stderr)\n",
    )
    executor = SandboxedProcessExecutor()

    outcome = executor.run(
        AllowedProcess.RUN,
        app_dir,
        stdout_path=tmp_path / "logs" / "run.stdout.log",
        stderr_path=tmp_path / "logs" / "run.stderr.log",
    )

    assert outcome.exit_code == 0
    assert not outcome.timed_out
    assert outcome.command == (sys.executable, "main.py")
    assert (tmp_path / "logs" / "run.stdout.log").read_text(encoding="utf-8").strip() == "hello out"
    assert "hello err" in (tmp_path / "logs" / "run.stderr.log").read_text(encoding="utf-8")


def test_build_reports_syntax_errors_as_nonzero_exit(tmp_path: Path) -> None:
    app_dir = _app(tmp_path, "def broken(:\n")
    executor = SandboxedProcessExecutor()

    outcome = executor.run(
        "build",
        app_dir,
        stdout_path=tmp_path / "build.stdout.log",
        stderr_path=tmp_path / "build.stderr.log",
    )

    assert outcome.process is AllowedProcess.BUILD
    assert outcome.exit_code != 0


def test_unknown_process_is_forbidden(tmp_path: Path) -> None:
    executor = SandboxedProcessExecutor()

    with pytest.raises(ForbiddenProcess):
        executor.run(
            "rm",
            tmp_path,
            stdout_path=tmp_path / "out.log",
            stderr_path=tmp_path / "err.log",
        )

    assert not (tmp_path / "out.log").exists()


@pytest.mark.parametrize("argument", ["a;b", "a|b", "a&b", "`id`", "$(id)", "x>y", "*", "a\\b", "'q'"])
def test_metacharacters_are_rejected_before_spawn(tmp_path: Path, argument: str) -> None:
    app_dir = _app(tmp_path, "open('spawned', 'w').close()\n")
    executor = SandboxedProcessExecutor()

    with pytest.raises(ForbiddenProcess):
        executor.run(
            AllowedProcess.RUN,
            app_dir,
            [argument],
            stdout_path=tmp_path / "out.log",
            stderr_path=tmp_path / "err.log",
        )

    assert not (app_dir / "spawned").exists()
    assert not (tmp_path / "out.log").exists()


def test_plain_arguments_are_passed_as_a_vector(tmp_path: Path) -> None:
    app_dir = _app(tmp_path, "import sys\nprint(sys.argv[1:])\n")
    executor = SandboxedProcessExecutor()

    executor.run(
        AllowedProcess.RUN,
        app_dir,
        ["--name", "two words"],
        stdout_path=tmp_path / "out.log",
        stderr_path=tmp_path / "err.log",
    )

    assert (tmp_path / "out.log").read_text(encoding="utf-8").strip() == "['--name', 'two words']"


def test_check_arguments_rejects_non_strings() -> None:
    with pytest.raises(ForbiddenProcess):
        check_arguments([42])  # type: ignore[list-item]


def test_timeout_kills_process_and_reports_timeout(tmp_path: Path) -> None:
    app_dir = _app(tmp_path, "import time\ntime.sleep(30)\n")
    executor = SandboxedProcessExecutor(timeout=0.5)

    outcome = executor.run(
        AllowedProcess.RUN,
        app_dir,
        stdout_path=tmp_path / "out.log",
        stderr_path=tmp_path / "err.log",
    )

    assert outcome.timed_out
    assert outcome.exit_code == TIMEOUT_EXIT_CODE
    assert "timed out" in (tmp_path / "err.log").read_text(encoding="utf-8")


def test_non_positive_timeout_is_rejected() -> None:
    with pytest.raises(ValueError):
        SandboxedProcessExecutor(timeout=0)
