"""Offline provider that synthesizes deterministic responses for demos and tests."""

from __future__ import annotations

import json
import textwrap
from typing import Any, Dict

from .provider import LanguageModelProvider, ProviderResponseError

__all__ = ["StubProvider"]

_PERSONA_RATIONALE = {
    "architect": "Single console entry point with no external services keeps the change small.",
    "specialist": "Domain rules map onto one module; acceptance criteria are directly testable.",
    "qa": "Build and run checks cover the happy path; one negative case is worth adding.",
}


class StubProvider(LanguageModelProvider):
    """Deterministic stand-in for a hosted model; no network access."""

    def __init__(self) -> None:
        super().__init__("stub", max_attempts=1)

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        metadata = payload.get("metadata") or {}
        persona = str(metadata.get("persona", "architect"))
        task = str(metadata.get("task", "estimate"))
        title = str(metadata.get("item_title") or "work item")
        item_id = metadata.get("item_id", 0)

        if task == "estimate":
            return json.dumps(self._estimate(persona))
        if task == "refine":
            return self._refinement(persona, item_id, title)
        if task == "architecture":
            return self._architecture(item_id, title)
        if task == "qa-plan":
            return self._qa_plan(item_id, title)
        if task == "technical-tasks":
            return self._technical_tasks(item_id, title)
        raise ProviderResponseError(f"Stub provider has no response for task '{task}'.")

    @staticmethod
    def _estimate(persona: str) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "storyPoints": 3,
            "confidence": "medium",
            "complexityDrivers": ["new console entry point", "input validation"],
            "assumptions": ["runs on the interpreter that hosts the governor"],
            "dependencies": [],
            "rationale": _PERSONA_RATIONALE.get(persona, "Moderate scope with known patterns."),
            "notes": f"Estimate from the {persona} perspective.",
        }
        if persona == "architect":
            response.update(
                {
                    "appType": "console",
                    "language": "python",
                    "runtime": "python3",
                    "framework": "stdlib",
                    "projects": [
                        {"name": "app", "type": "console", "path": ".", "dependencies": []}
                    ],
                }
            )
        return response

    @staticmethod
    def _refinement(persona: str, item_id: Any, title: str) -> str:
        focus = {
            "architect": "Keep the delivery to one console entry point under apps/<app_id>.",
            "specialist": "Spell out the expected output so the run check can compare it.",
            "qa": "Add one acceptance criterion for a non-zero exit on bad input.",
        }.get(persona, "Confirm the scope with the product owner.")
        return textwrap.dedent(
            f"""\
            ## Review of item {item_id}

            {title}.

            - {focus}
            - Open question: does the item need configuration beyond defaults?
            """
        )

    @staticmethod
    def _architecture(item_id: Any, title: str) -> str:
        return textwrap.dedent(
            f"""\
            # Architecture: item {item_id}

            ## Context
            {title}. The application is delivered as a standalone console program
            under `apps/<app_id>` and validated by byte-compiling and executing it.

            ## Decisions
            - Application type: console program with a single `main.py` entry point.
            - Language and runtime: Python 3, standard library only.
            - Configuration: none; the program reads no environment variables.

            ## Components
            - `main.py`: parses input, performs the work, prints the result.
            """
        )

    @staticmethod
    def _qa_plan(item_id: Any, title: str) -> str:
        return textwrap.dedent(
            f"""\
            # QA plan: item {item_id}

            Scope: {title}.

            ## Checks
            1. Build: the candidate byte-compiles without syntax errors.
            2. Run: `main.py` exits with status 0 and prints its greeting.
            3. Regression: re-running delivery on the same item yields the same file hashes.

            ## Exit criteria
            All checks pass inside the sandboxed workspace before any deploy is approved.
            """
        )

    @staticmethod
    def _technical_tasks(item_id: Any, title: str) -> str:
        return textwrap.dedent(
            f"""\
            item_id: {item_id}
            summary: "{title.replace('"', "'")}"
            tasks:
              - id: T1
                title: Generate the console entry point
                detail: Create main.py with a main() function and a __main__ guard.
              - id: T2
                title: Validate in the sandbox
                detail: Byte-compile the candidate and execute main.py; both must exit 0.
              - id: T3
                title: Deploy after approval
                detail: Copy the validated candidate into apps/<app_id> and record file hashes.
            """
        )
