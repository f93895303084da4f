"""
Checkpointed replay: restore a captured build under changed sources.

Replay is the only consumer of artifacts and never modifies them.
"""

from .runner import ReplayResult, replay, read_difference, write_difference

__all__ = [
    "ReplayResult",
    "replay",
    "read_difference",
    "write_difference",
]
