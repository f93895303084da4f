"""
Diff command: source difference between an artifact and a tree

Exit status follows diff(1): 0 identical, 1 differences, 2 trouble.
"""

import json
from typing import Optional

import typer
from rich.syntax import Syntax

from ckbuild.core import CheckpointBuildError, WorkingTree
from ckbuild.diff import compute_difference

from ._common import console, fail, init_settings, open_artifact


def diff_command(
    tree_path: str = typer.Option(".", "--tree", "-t", help="Build root"),
    artifact_ref: str = typer.Option(..., "--artifact", "-a", help="Artifact directory, or name with --store"),
    store_dir: Optional[str] = typer.Option(None, "--store", help="Artifact store directory"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Write the difference to this file"),
    color: bool = typer.Option(False, "--color", help="Highlight the difference"),
    json_output: bool = typer.Option(False, "--json", help="Output a summary as JSON"),
):
    """
    Show what changed in the tree since the artifact's sources snapshot.

    Examples:
        ckbuild diff --tree linux --artifact /ckpt/linux
        ckbuild diff --tree linux --artifact /ckpt/linux --out changes.patch
    """
    settings = init_settings()
    store_dir = store_dir or settings.store_dir

    try:
        artifact = open_artifact(artifact_ref, store_dir)
        difference = compute_difference(
            artifact.sources,
            WorkingTree(tree_path),
            context=settings.diff_context,
            exclude=[settings.diff_name],
        )
    except (CheckpointBuildError, ValueError) as e:
        fail(json_output, str(e), 2)

    text = difference.to_text()
    if out:
        with open(out, "w", encoding="utf-8") as f:
            f.write(text)

    if json_output:
        print(json.dumps({"success": True, "paths": difference.paths(), **difference.summary()}, indent=2))
    elif not out:
        if color and text:
            console.print(Syntax(text, "diff"))
        else:
            typer.echo(text, nl=False)

    raise typer.Exit(0 if difference.is_empty() else 1)
