"""
Prometheus metrics for checkpointed builds.

Builds are short-lived processes, so metrics are not served over HTTP: they
live in a dedicated registry and are written in the node-exporter textfile
format when CKBUILD_METRICS_FILE is set.

Usage:
    from ckbuild.metrics import track_duration, record_replay, write_metrics

    with track_duration("replay"):
        result = replay(artifact, tree)
    record_replay(result.restored, result.preserved, len(result.patched))
    write_metrics("/var/lib/node_exporter/ckbuild.prom")
"""

import logging
from contextlib import contextmanager
from typing import Generator

from prometheus_client import CollectorRegistry, Counter, Histogram, write_to_textfile

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry()

PHASE_DURATION = Histogram(
    "ckbuild_phase_duration_seconds",
    "Duration of checkpoint phases in seconds",
    labelnames=["phase"],
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0),
    registry=REGISTRY,
)

FILES_RESTORED = Counter(
    "ckbuild_files_restored_total",
    "Files written while restoring an outputs snapshot",
    registry=REGISTRY,
)

FILES_PRESERVED = Counter(
    "ckbuild_files_preserved_total",
    "Restored files whose content was already in place",
    registry=REGISTRY,
)

FILES_PATCHED = Counter(
    "ckbuild_files_patched_total",
    "Files touched by applying a source difference",
    registry=REGISTRY,
)

FAILURES = Counter(
    "ckbuild_failures_total",
    "Checkpoint phase failures by phase and error type",
    labelnames=["phase", "error"],
    registry=REGISTRY,
)


@contextmanager
def track_duration(phase: str) -> Generator[None, None, None]:
    """
    Context manager timing one phase ("capture", "diff", "replay", "build").

    Failures raised inside the block are counted by exception class name
    and re-raised. Phases nest (diff inside replay), so a failure is
    counted once, under the innermost phase it escaped from.
    """
    try:
        with PHASE_DURATION.labels(phase=phase).time():
            yield
    except Exception as e:
        if not getattr(e, "_ckbuild_phase", None):
            e._ckbuild_phase = phase
            FAILURES.labels(phase=phase, error=type(e).__name__).inc()
        raise


def record_replay(restored: int, preserved: int, patched: int) -> None:
    FILES_RESTORED.inc(restored)
    FILES_PRESERVED.inc(preserved)
    FILES_PATCHED.inc(patched)


def write_metrics(path: str) -> None:
    """Write the registry to a Prometheus textfile (atomic rename)."""
    write_to_textfile(path, REGISTRY)
    logger.debug(f"Metrics written to {path}")
