"""
Tests for settings, logging and metrics configuration.
"""

import json
import logging
import os
import tempfile

import pytest

from ckbuild.config import DEFAULT_DIFF_NAME, Settings
from ckbuild.logging_config import get_logger, setup_logging
from ckbuild.metrics import REGISTRY, track_duration, write_metrics


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)


@pytest.fixture
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("CKBUILD_"):
            monkeypatch.delenv(key)
    return monkeypatch


def test_defaults(clean_env):
    settings = Settings.from_env()

    assert settings == Settings()
    assert settings.diff_name == DEFAULT_DIFF_NAME
    assert settings.diff_context == 3
    assert settings.patch_strip == 1
    assert settings.copy_workers == 4
    assert settings.store_dir is None


def test_values_from_environment(clean_env):
    clean_env.setenv("CKBUILD_LOG_LEVEL", "debug")
    clean_env.setenv("CKBUILD_LOG_FORMAT", "JSON")
    clean_env.setenv("CKBUILD_DIFF_NAME", "delta.patch")
    clean_env.setenv("CKBUILD_DIFF_CONTEXT", "0")
    clean_env.setenv("CKBUILD_COPY_WORKERS", "16")
    clean_env.setenv("CKBUILD_STORE_DIR", "/var/cache/ckbuild")

    settings = Settings.from_env()

    assert settings.log_level == "DEBUG"
    assert settings.log_format == "json"
    assert settings.diff_name == "delta.patch"
    assert settings.diff_context == 0
    assert settings.copy_workers == 16
    assert settings.store_dir == "/var/cache/ckbuild"


def test_invalid_integers_fall_back(clean_env):
    clean_env.setenv("CKBUILD_DIFF_CONTEXT", "lots")
    clean_env.setenv("CKBUILD_COPY_WORKERS", "0")

    settings = Settings.from_env()

    assert settings.diff_context == 3
    assert settings.copy_workers == 4


def test_difference_name_must_be_plain(clean_env):
    clean_env.setenv("CKBUILD_DIFF_NAME", "sub/dir.patch")

    with pytest.raises(ValueError):
        Settings.from_env()


def test_json_logging_carries_trace_id(capsys):
    setup_logging(Settings(log_format="json"))

    get_logger("ckbuild.test", trace_id="linux-6.8").info("restoring outputs")

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["message"] == "restoring outputs"
    assert record["trace_id"] == "linux-6.8"
    assert record["level"] == "INFO"
    assert record["logger"] == "ckbuild.test"


def test_text_logging_without_trace_id(capsys):
    setup_logging(Settings(log_format="text", log_level="WARNING"))

    logging.getLogger("ckbuild.test").info("hidden")
    logging.getLogger("ckbuild.test").warning("shown")

    err = capsys.readouterr().err
    assert "hidden" not in err
    assert "shown [trace_id=N/A]" in err


def test_track_duration_counts_failures():
    labels = {"phase": "diff", "error": "KeyError"}
    before = REGISTRY.get_sample_value("ckbuild_failures_total", labels) or 0

    with pytest.raises(KeyError):
        with track_duration("diff"):
            raise KeyError("missing")

    assert REGISTRY.get_sample_value("ckbuild_failures_total", labels) == before + 1


def test_nested_phases_count_a_failure_once():
    inner = {"phase": "diff", "error": "LookupError"}
    outer = {"phase": "replay", "error": "LookupError"}
    before_inner = REGISTRY.get_sample_value("ckbuild_failures_total", inner) or 0
    before_outer = REGISTRY.get_sample_value("ckbuild_failures_total", outer) or 0

    with pytest.raises(LookupError):
        with track_duration("replay"):
            with track_duration("diff"):
                raise LookupError("gone")

    assert REGISTRY.get_sample_value("ckbuild_failures_total", inner) == before_inner + 1
    assert (REGISTRY.get_sample_value("ckbuild_failures_total", outer) or 0) == before_outer


def test_write_metrics_textfile():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "ckbuild.prom")
        with track_duration("capture"):
            pass

        write_metrics(path)

        with open(path, encoding="utf-8") as f:
            text = f.read()
    assert 'ckbuild_phase_duration_seconds_count{phase="capture"}' in text
    assert "ckbuild_failures_total" in text
