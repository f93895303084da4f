"""
Build pipeline integration.

The build command is an external collaborator; this package only runs it
and inserts capture and replay steps around it.
"""

from .pipeline import (
    BuildPipeline,
    ReplayHook,
    make_checkpoint_build,
    make_checkpointed_build,
    prepare_checkpoint_build,
    run_command,
)

__all__ = [
    "BuildPipeline",
    "ReplayHook",
    "make_checkpoint_build",
    "make_checkpointed_build",
    "prepare_checkpoint_build",
    "run_command",
]
