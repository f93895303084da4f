"""
Runtime settings for checkpointed builds.

Environment Variables:
    CKBUILD_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR) - default: INFO
    CKBUILD_LOG_FORMAT: Log format (json, text) - default: text
    CKBUILD_DIFF_NAME: Transient source difference file name - default: .ckbuild-source-difference.patch
    CKBUILD_DIFF_CONTEXT: Context lines in difference hunks - default: 3
    CKBUILD_PATCH_STRIP: Path components stripped when applying - default: 1
    CKBUILD_COPY_WORKERS: Threads used to copy snapshot files - default: 4
    CKBUILD_STORE_DIR: Default artifact store directory - default: unset
    CKBUILD_METRICS_FILE: Prometheus textfile written after each command - default: unset
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_DIFF_NAME = ".ckbuild-source-difference.patch"


def _env_int(key: str, default: int, minimum: int = 0) -> int:
    val = os.getenv(key)
    if not val:
        return default
    try:
        parsed = int(val)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


@dataclass(frozen=True)
class Settings:
    log_level: str = "INFO"
    log_format: str = "text"
    diff_name: str = DEFAULT_DIFF_NAME
    diff_context: int = 3
    patch_strip: int = 1
    copy_workers: int = 4
    store_dir: Optional[str] = None
    metrics_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from CKBUILD_* environment variables."""
        diff_name = os.getenv("CKBUILD_DIFF_NAME") or DEFAULT_DIFF_NAME
        if "/" in diff_name or diff_name in (".", ".."):
            raise ValueError(f"CKBUILD_DIFF_NAME must be a plain file name: {diff_name}")

        return cls(
            log_level=os.getenv("CKBUILD_LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("CKBUILD_LOG_FORMAT", "text").lower(),
            diff_name=diff_name,
            diff_context=_env_int("CKBUILD_DIFF_CONTEXT", 3),
            patch_strip=_env_int("CKBUILD_PATCH_STRIP", 1),
            copy_workers=_env_int("CKBUILD_COPY_WORKERS", 4, minimum=1),
            store_dir=os.getenv("CKBUILD_STORE_DIR") or None,
            metrics_file=os.getenv("CKBUILD_METRICS_FILE") or None,
        )
