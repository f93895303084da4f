"""
Test suite for checkpointed builds.

Focus areas:
- Source difference determinism and round trips
- Capture idempotence
- Replay protocol (restore, patch, modification times)
- Artifact store integrity
"""
