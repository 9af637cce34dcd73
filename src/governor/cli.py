"""CLI commands for the governed backlog flows."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Optional

import typer

from .config import GovernorConfig, load_config, resolve_actor, resolve_persona_models
from .errors import ExitCode, GovernorError
from .flows.base import FlowContext, FlowResult
from .flows.delivery import DeliveryFlow
from .flows.intake import IntakeFlow
from .flows.refine import RefineFlow
from .flows.technical_readiness import TechnicalReadinessFlow
from .models import LanguageModelProvider, OpenAIChatProvider, StubProvider
from .planning.personas import PersonaId
from .state.layout import RepoPaths, ensure_layout
from .tools.process import SandboxedProcessExecutor

APP_HELP = "Governance-gated delivery: estimate, plan, validate and deploy backlog items."
DEFAULT_CONFIG_NAME = "governor.yaml"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

app = typer.Typer(help=APP_HELP)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging before any command runs."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _repo_paths(workdir: str) -> RepoPaths:
    return RepoPaths(Path(workdir).expanduser().resolve())


def _load(paths: RepoPaths, config: Optional[str]) -> GovernorConfig:
    config_path = Path(config) if config else paths.root / DEFAULT_CONFIG_NAME
    try:
        loaded = load_config(config_path)
    except GovernorError as error:
        typer.echo(f"Error: {error}")
        raise typer.Exit(code=int(error.exit_code)) from error
    root_logger = logging.getLogger()
    if root_logger.level > logging.DEBUG:
        root_logger.setLevel(getattr(logging, loaded.logging.level.upper(), logging.WARNING))
    return loaded


def _actor(config: GovernorConfig) -> str:
    try:
        return resolve_actor(config, os.environ)
    except GovernorError as error:
        typer.echo(f"Error: {error}")
        raise typer.Exit(code=int(error.exit_code)) from error


def _build_provider(config: GovernorConfig, *, provider: Optional[str]) -> LanguageModelProvider:
    """Select either the HTTP provider or the offline stub."""
    models_cfg = config.models
    choice = (provider or models_cfg.provider).strip().lower()
    if choice == "stub":
        return StubProvider()
    if choice != "openai":
        typer.echo(f"Unknown provider '{choice}'. Use 'stub' or 'openai'.")
        raise typer.Exit(code=int(ExitCode.UNEXPECTED_ERROR))

    kwargs: Dict[str, object] = {
        "model": models_cfg.default,
        "timeout": models_cfg.timeout,
        "max_attempts": models_cfg.max_attempts,
    }
    if models_cfg.base_url:
        kwargs["base_url"] = models_cfg.base_url
    try:
        return OpenAIChatProvider(**kwargs)  # type: ignore[arg-type]
    except ValueError as error:
        typer.echo(f"{error} Set OPENAI_API_KEY or use --provider stub.")
        raise typer.Exit(code=int(ExitCode.UNEXPECTED_ERROR)) from error


def _report(result: FlowResult) -> None:
    prefix = "OK" if result.ok else f"FAILED ({int(result.exit_code)} {result.exit_code.name})"
    typer.echo(f"{prefix}: {result.message}")
    if result.run_id:
        typer.echo(f"Run: {result.run_id}")
    if result.run_dir is not None:
        typer.echo(f"Artifacts: {result.run_dir}")
    if not result.ok:
        raise typer.Exit(code=int(result.exit_code))


@app.command()
def init(
    workdir: str = typer.Option(".", "--workdir", "-w", help="Repository to initialise."),
) -> None:
    """Create the governed repository layout."""
    paths = _repo_paths(workdir)
    paths.root.mkdir(parents=True, exist_ok=True)
    created = ensure_layout(paths)
    if created:
        typer.echo(f"Created {len(created)} entr{'y' if len(created) == 1 else 'ies'}:")
        for path in created:
            typer.echo(f"- {paths.relative(path)}")
    else:
        typer.echo("Layout already complete.")


@app.command()
def intake(
    title: str = typer.Option(..., "--title", "-t", help="Title of the new backlog item."),
    story: str = typer.Option("", "--story", "-s", help="User story text."),
    epic: Optional[str] = typer.Option(None, "--epic", "-e", help="Epic id the item belongs to."),
    priority: int = typer.Option(1, "--priority", help="Priority (1 is highest)."),
    size: str = typer.Option("S", "--size", help="Size: S, M or L."),
    owner: str = typer.Option("PO", "--owner", help="Owner role: PO, SAD, SASD, QA or MIBS."),
    workdir: str = typer.Option(".", "--workdir", "-w", help="Governed repository root."),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help=f"Configuration file (default: <workdir>/{DEFAULT_CONFIG_NAME})."
    ),
) -> None:
    """Add a new candidate item to the backlog."""
    paths = _repo_paths(workdir)
    config_data = _load(paths, config)
    context = FlowContext(paths=paths, actor=_actor(config_data))
    flow = IntakeFlow(
        context, title=title, story=story, epic_id=epic, priority=priority, size=size, owner=owner
    )
    _report(flow.execute())


@app.command()
def refine(
    item: int = typer.Option(..., "--item", "-i", help="Backlog item id."),
    approve: bool = typer.Option(False, "--approve", help="Mark the item ready."),
    workdir: str = typer.Option(".", "--workdir", "-w", help="Governed repository root."),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help=f"Configuration file (default: <workdir>/{DEFAULT_CONFIG_NAME})."
    ),
    provider: Optional[str] = typer.Option(
        None, "--provider", help="Language-model provider: stub or openai."
    ),
) -> None:
    """Check the Definition of Ready and collect persona reviews; --approve marks the item ready."""
    paths = _repo_paths(workdir)
    config_data = _load(paths, config)
    context = FlowContext(paths=paths, actor=_actor(config_data))
    flow = RefineFlow(
        context,
        item_id=item,
        approve=approve,
        provider=_build_provider(config_data, provider=provider),
        models=resolve_persona_models(config_data, os.environ),
    )
    _report(flow.execute())


@app.command("technical-readiness")
def technical_readiness(
    item: int = typer.Option(..., "--item", "-i", help="Backlog item id."),
    approve: bool = typer.Option(False, "--approve", help="Persist the plan and advance the item."),
    workdir: str = typer.Option(".", "--workdir", "-w", help="Governed repository root."),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help=f"Configuration file (default: <workdir>/{DEFAULT_CONFIG_NAME})."
    ),
    provider: Optional[str] = typer.Option(
        None, "--provider", help="Language-model provider: stub or openai."
    ),
    same_model: bool = typer.Option(
        False, "--same-model", help="Use the default model for every persona."
    ),
    model_architect: Optional[str] = typer.Option(None, "--model-architect", help="Model for the architect."),
    model_specialist: Optional[str] = typer.Option(None, "--model-specialist", help="Model for the specialist."),
    model_qa: Optional[str] = typer.Option(None, "--model-qa", help="Model for QA."),
) -> None:
    """Estimate and plan an item; --approve persists and marks it ready_for_dev."""
    paths = _repo_paths(workdir)
    config_data = _load(paths, config)
    models = resolve_persona_models(
        config_data,
        os.environ,
        overrides={
            PersonaId.ARCHITECT: model_architect,
            PersonaId.SPECIALIST: model_specialist,
            PersonaId.QA: model_qa,
        },
        same_model=same_model,
    )
    context = FlowContext(paths=paths, actor=_actor(config_data))
    flow = TechnicalReadinessFlow(
        context,
        item_id=item,
        approve=approve,
        provider=_build_provider(config_data, provider=provider),
        models=models,
    )
    _report(flow.execute())


app.command("refine-tech", hidden=True)(technical_readiness)


@app.command()
def deliver(
    item: int = typer.Option(..., "--item", "-i", help="Backlog item id."),
    approve: bool = typer.Option(False, "--approve", help="Deploy when validation passes."),
    workdir: str = typer.Option(".", "--workdir", "-w", help="Governed repository root."),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help=f"Configuration file (default: <workdir>/{DEFAULT_CONFIG_NAME})."
    ),
) -> None:
    """Validate an item's candidate in the sandbox; --approve deploys it."""
    paths = _repo_paths(workdir)
    config_data = _load(paths, config)
    context = FlowContext(paths=paths, actor=_actor(config_data))
    executor = SandboxedProcessExecutor(timeout=config_data.sandbox.timeout_seconds)
    flow = DeliveryFlow(context, item_id=item, approve=approve, executor=executor)
    _report(flow.execute())


if __name__ == "__main__":
    app()
