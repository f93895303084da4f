"""
Artifact commands: list, import, export, delete, gc, verify
"""

import json
from typing import Optional

import typer
from rich.table import Table

from ckbuild.core import CheckpointBuildError

from ._common import console, fail, init_settings, require_store

app = typer.Typer()

STORE_OPTION = typer.Option(None, "--store", "-s", help="Artifact store directory")


@app.command("list")
def list_artifacts(
    store_dir: Optional[str] = STORE_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List artifacts in a store."""
    store = require_store(store_dir, init_settings())

    rows = []
    for name in store.list_artifacts():
        manifest = store.load_manifest(name)
        rows.append(
            {
                "name": name,
                "sources": len(manifest.sources.entries),
                "outputs": len(manifest.outputs.entries),
                "outputs_bytes": manifest.outputs.total_size(),
            }
        )

    if json_output:
        print(json.dumps({"artifacts": rows, "count": len(rows)}, indent=2))
        return

    if not rows:
        console.print("[yellow]No artifacts in store[/yellow]")
        return

    table = Table(title=f"Artifacts in {store.directory}")
    table.add_column("Name", style="cyan")
    table.add_column("Sources", justify="right")
    table.add_column("Outputs", justify="right")
    table.add_column("Output bytes", justify="right")
    for row in rows:
        table.add_row(row["name"], str(row["sources"]), str(row["outputs"]), str(row["outputs_bytes"]))
    console.print(table)


@app.command("import")
def import_artifact(
    name: str = typer.Argument(..., help="Name in the store"),
    path: str = typer.Argument(..., help="Directory artifact (sources/ and outputs/)"),
    store_dir: Optional[str] = STORE_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Copy a directory artifact into a store."""
    store = require_store(store_dir, init_settings())
    try:
        manifest_path = store.import_directory(name, path)
    except (CheckpointBuildError, ValueError) as e:
        fail(json_output, str(e), 1)

    if json_output:
        print(json.dumps({"success": True, "name": name, "manifest": manifest_path}))
    else:
        console.print(f"[green]✓ Imported {path} as {name}[/green]")


@app.command("export")
def export_artifact(
    name: str = typer.Argument(..., help="Name in the store"),
    dest: str = typer.Argument(..., help="Directory to create"),
    store_dir: Optional[str] = STORE_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Write a stored artifact out as a directory artifact."""
    settings = init_settings()
    store = require_store(store_dir, settings)
    try:
        artifact = store.export(name, dest, workers=settings.copy_workers)
    except (CheckpointBuildError, ValueError) as e:
        fail(json_output, str(e), 1)

    if json_output:
        print(json.dumps({"success": True, "name": name, "location": artifact.location}))
    else:
        console.print(f"[green]✓ Exported {name} to {artifact.location}[/green]")


@app.command("delete")
def delete_artifact(
    name: str = typer.Argument(..., help="Name in the store"),
    store_dir: Optional[str] = STORE_OPTION,
    gc: bool = typer.Option(False, "--gc", help="Also remove unreferenced objects"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Delete an artifact manifest (objects stay until gc)."""
    store = require_store(store_dir, init_settings())
    try:
        store.delete(name)
        removed = store.gc() if gc else 0
    except (CheckpointBuildError, ValueError) as e:
        fail(json_output, str(e), 1)

    if json_output:
        print(json.dumps({"success": True, "name": name, "objects_removed": removed}))
    else:
        console.print(f"[green]✓ Deleted {name}[/green]")
        if gc:
            console.print(f"  Objects removed: {removed}")


@app.command("gc")
def gc_store(
    store_dir: Optional[str] = STORE_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Remove objects no artifact references."""
    store = require_store(store_dir, init_settings())
    removed = store.gc()
    if json_output:
        print(json.dumps({"success": True, "objects_removed": removed}))
    else:
        console.print(f"[green]✓ Removed {removed} unreferenced objects[/green]")


@app.command("verify")
def verify_artifact(
    name: str = typer.Argument(..., help="Name in the store"),
    store_dir: Optional[str] = STORE_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Re-hash every object an artifact references.

    Examples:
        ckbuild artifact verify linux-6.8 --store /ckpt
    """
    store = require_store(store_dir, init_settings())
    try:
        result = store.verify(name)
    except (CheckpointBuildError, ValueError) as e:
        fail(json_output, str(e), 2)

    if json_output:
        print(
            json.dumps(
                {
                    "success": result.valid,
                    "checked": result.checked,
                    "missing": result.missing,
                    "corrupt": result.corrupt,
                },
                indent=2,
            )
        )
    elif result.valid:
        console.print(f"[green]✓ {name}: {result.checked} objects intact[/green]")
    else:
        console.print(f"[red]✗ {name}: {len(result.missing)} missing, {len(result.corrupt)} corrupt[/red]")
        for digest in result.missing:
            console.print(f"  missing {digest}")
        for digest in result.corrupt:
            console.print(f"  corrupt {digest}")

    raise typer.Exit(0 if result.valid else 1)
