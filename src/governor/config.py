"""Optional ``governor.yaml`` configuration plus environment overrides."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Literal, Mapping, Optional

import yaml
from pydantic import Field, ValidationError

from .errors import StoreParseFailure
from .planning.personas import TEAM, PersonaId
from .state.decisions import check_log_field
from .state.schema import RecordModel

__all__ = [
    "DEFAULT_ACTOR",
    "GovernorConfig",
    "load_config",
    "resolve_actor",
    "resolve_persona_models",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_ACTOR = "local"
DEFAULT_MODEL = "gpt-4o-mini"
MODEL_ENV_PREFIX = "GOVERNOR_LLM_"


class ModelsConfig(RecordModel):
    provider: Literal["stub", "openai"] = "stub"
    default: str = DEFAULT_MODEL
    personas: Dict[str, str] = Field(default_factory=dict)
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_attempts: int = 3


class SandboxConfig(RecordModel):
    timeout_seconds: Optional[float] = Field(default=600.0, gt=0)


class ApprovalsConfig(RecordModel):
    actor_env: str = "GOVERNOR_APPROVER"
    default_actor: str = DEFAULT_ACTOR


class LoggingConfig(RecordModel):
    level: str = "WARNING"


class GovernorConfig(RecordModel):
    """Root of ``governor.yaml``; every section is optional."""

    models: ModelsConfig = Field(default_factory=ModelsConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    approvals: ApprovalsConfig = Field(default_factory=ApprovalsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Path) -> GovernorConfig:
    """Load ``path`` if it exists; defaults otherwise."""
    if not path.exists():
        LOGGER.debug("No configuration at %s; using defaults.", path)
        return GovernorConfig()
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise StoreParseFailure(f"Configuration is not valid YAML: {error}", details={"path": str(path)}) from error
    if not isinstance(data, dict):
        raise StoreParseFailure("Configuration must be a mapping.", details={"path": str(path)})
    try:
        return GovernorConfig.model_validate(data)
    except ValidationError as error:
        raise StoreParseFailure(f"Configuration failed validation: {error}", details={"path": str(path)}) from error


def resolve_actor(config: GovernorConfig, environ: Mapping[str, str]) -> str:
    """Approver recorded in the decision log; multi-line or piped names are refused."""
    value = (environ.get(config.approvals.actor_env) or "").strip() or config.approvals.default_actor
    try:
        return check_log_field("approver", value)
    except ValueError as error:
        raise StoreParseFailure(
            f"Approver from {config.approvals.actor_env} is not usable: {error}",
            details={"env": config.approvals.actor_env},
        ) from error


def resolve_persona_models(
    config: GovernorConfig,
    environ: Mapping[str, str],
    *,
    overrides: Mapping[PersonaId, Optional[str]] | None = None,
    same_model: bool = False,
) -> Dict[PersonaId, str]:
    """Model per persona: CLI override, then environment, then config, then default.

    With ``same_model`` every persona uses the default model.
    """
    default = (environ.get(f"{MODEL_ENV_PREFIX}DEFAULT") or "").strip() or config.models.default
    if same_model:
        return {persona.id: default for persona in TEAM}
    resolved: Dict[PersonaId, str] = {}
    for persona in TEAM:
        override = (overrides or {}).get(persona.id)
        from_env = (environ.get(f"{MODEL_ENV_PREFIX}{persona.id.value.upper()}") or "").strip()
        resolved[persona.id] = (
            override or from_env or config.models.personas.get(persona.id.value) or default
        )
    return resolved
