"""
Checkpointed Incremental Builds

Capture a build root before and after compilation, then replay that
checkpoint under later builds so only the changed sources are recompiled.
"""

__version__ = "0.1.0"
