"""
Estimation consensus and implementation planning.
"""

from importlib import import_module
from typing import Any

__all__ = ["ConsensusEngine", "build_plan"]

_EXPORTS = {
    "ConsensusEngine": "governor.planning.consensus",
    "build_plan": "governor.planning.plan_builder",
}


def __getattr__(name: str) -> Any:
    """Lazily import planning helpers so schema imports stay light."""
    if name in _EXPORTS:
        module = import_module(_EXPORTS[name])
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
