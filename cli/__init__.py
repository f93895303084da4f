"""
ckbuild CLI - Checkpointed Incremental Builds

Commands:
- ckbuild capture - Build and capture a checkpoint artifact
- ckbuild build - Incremental build on top of an artifact
- ckbuild replay - Position a tree on an artifact without building
- ckbuild diff - Show the source difference against an artifact
- ckbuild artifact list/import/export/delete/gc/verify - Artifact store management
"""

__version__ = "0.1.0"
