#!/usr/bin/env python3
"""
ckbuild CLI - Checkpointed Incremental Builds

Main entrypoint for the ckbuild command-line tool.
"""

import typer
from rich.console import Console
from rich.table import Table

from cli.commands import artifact, build, capture, diff, replay

app = typer.Typer(
    name="ckbuild",
    help="Checkpointed incremental builds",
    add_completion=False,
)

console = Console()

app.add_typer(artifact.app, name="artifact", help="Artifact store management")

app.command("capture")(capture.capture_command)
app.command("build")(build.build_command)
app.command("replay")(replay.replay_command)
app.command("diff")(diff.diff_command)


@app.command()
def version():
    """Show version information."""
    from cli import __version__
    from ckbuild import __version__ as core_version

    table = Table(show_header=False, box=None)
    table.add_row("[bold]ckbuild CLI[/bold]", f"v{__version__}")
    table.add_row("Core", f"v{core_version}")

    console.print(table)


def main():
    """Main entrypoint."""
    app()


if __name__ == "__main__":
    main()
