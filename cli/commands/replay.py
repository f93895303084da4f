"""
Replay command: position a tree on an artifact without building
"""

import json
from typing import Optional

import typer
from rich.table import Table

from ckbuild.core import CheckpointBuildError, WorkingTree
from ckbuild.replay import replay

from ._common import console, fail, flush_metrics, init_settings, open_artifact


def replay_command(
    tree_path: str = typer.Option(".", "--tree", "-t", help="Build root"),
    artifact_ref: str = typer.Option(..., "--artifact", "-a", help="Artifact directory, or name with --store"),
    store_dir: Optional[str] = typer.Option(None, "--store", help="Artifact store directory"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Restore an artifact's outputs under the tree's current sources.

    Use this as the pre-build step of an external build system.

    Examples:
        ckbuild replay --tree linux --artifact /ckpt/linux
        ckbuild replay --tree linux --store /ckpt --artifact linux-6.8 --json
    """
    settings = init_settings()
    store_dir = store_dir or settings.store_dir

    try:
        artifact = open_artifact(artifact_ref, store_dir)
        result = replay(artifact, WorkingTree(tree_path), settings)
    except (CheckpointBuildError, ValueError) as e:
        flush_metrics(settings)
        fail(json_output, str(e), 1)
    flush_metrics(settings)

    if json_output:
        print(json.dumps({"success": True, **result.to_dict()}, indent=2))
        return

    console.print(f"[green]✓ Replayed {result.artifact}[/green]")
    console.print(f"  Restored: [cyan]{result.restored}[/cyan] files")

    if result.patched:
        table = Table(title="Source Difference")
        table.add_column("Change", style="green")
        table.add_column("Path", style="cyan")
        for change in result.difference:
            table.add_row(change.kind, change.path)
        console.print(table)
    else:
        console.print("  Sources unchanged since capture")
