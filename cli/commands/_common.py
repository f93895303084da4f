"""
Shared helpers for CLI commands.
"""

import json
from typing import Optional

import typer
from rich.console import Console

from ckbuild.checkpoint import ArtifactStore, CheckpointArtifact
from ckbuild.config import Settings
from ckbuild.logging_config import setup_logging
from ckbuild.metrics import write_metrics

console = Console()
err_console = Console(stderr=True)


def init_settings() -> Settings:
    """Load settings from the environment and configure logging."""
    settings = Settings.from_env()
    setup_logging(settings)
    return settings


def open_artifact(ref: str, store_dir: Optional[str]) -> CheckpointArtifact:
    """Artifact name in a store when a store is given, directory path otherwise."""
    if store_dir:
        return ArtifactStore(store_dir).open(ref)
    return CheckpointArtifact.open_directory(ref)


def require_store(store_dir: Optional[str], settings: Settings) -> ArtifactStore:
    store_dir = store_dir or settings.store_dir
    if not store_dir:
        fail(False, "No artifact store given (use --store or CKBUILD_STORE_DIR)", 2)
    return ArtifactStore(store_dir)


def flush_metrics(settings: Settings) -> None:
    if settings.metrics_file:
        write_metrics(settings.metrics_file)


def fail(json_output: bool, message: str, code: int = 1) -> None:
    """Report an error and exit with the given status."""
    if json_output:
        print(json.dumps({"success": False, "error": message}))
    else:
        err_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code)
