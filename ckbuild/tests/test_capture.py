"""
Tests for snapshot capture.

Critical: an artifact holds exactly the tree before and after compilation,
and a failed capture leaves nothing behind.
"""

import os
import shutil
import tempfile

import pytest

from ckbuild.checkpoint import (
    ArtifactStore,
    CheckpointArtifact,
    DirectoryTarget,
    SnapshotCapture,
    StoreTarget,
)
from ckbuild.config import Settings
from ckbuild.core import CaptureError, WorkingTree
from ckbuild.tests.treeutil import mtime, read_files, set_mtime, write_files

T0 = 1_600_000_000 * 10**9


def compile_tree(tree: WorkingTree) -> None:
    """Toy compiler: main.c -> main.o plus a build log."""
    source = tree.read("main.c")
    tree.write("main.o", b"obj:" + source)
    tree.write("build.log", b"compiled main.c\n", mtime_ns=T0)


def _source_tree(tmpdir: str) -> WorkingTree:
    root = os.path.join(tmpdir, "src")
    write_files(root, {"main.c": "int main() { return 0; }\n", "include/util.h": "#pragma once\n"})
    return WorkingTree(root)


def test_capture_writes_exactly_sources_and_outputs():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        out = os.path.join(tmpdir, "artifact")

        artifact = SnapshotCapture(DirectoryTarget(out), Settings()).capture_build(tree, compile_tree)

        assert sorted(os.listdir(out)) == ["outputs", "sources"]
        assert artifact.name == "artifact"
        assert set(read_files(os.path.join(out, "sources"))) == {"main.c", "include/util.h"}
        assert set(read_files(os.path.join(out, "outputs"))) == {"main.c", "include/util.h", "main.o", "build.log"}


def test_capture_keeps_generated_files_in_sources():
    """Files generated by source preparation are part of the sources snapshot."""
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        tree.write("config.h", b"#define GENERATED 1\n")
        tree.write("stale.o", b"old object")
        out = os.path.join(tmpdir, "artifact")

        SnapshotCapture(DirectoryTarget(out), Settings()).capture_build(tree, compile_tree)

        assert "config.h" in read_files(os.path.join(out, "sources"))
        assert "stale.o" in read_files(os.path.join(out, "sources"))


def test_capture_idempotent():
    """Two captures of an unchanged, already built tree are identical."""
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        compile_tree(tree)
        for rel in tree.iter_files():
            set_mtime(str(tree.root), rel, T0)

        first = os.path.join(tmpdir, "first")
        second = os.path.join(tmpdir, "second")
        SnapshotCapture(DirectoryTarget(first), Settings()).capture_build(tree, lambda t: None)
        SnapshotCapture(DirectoryTarget(second), Settings()).capture_build(tree, lambda t: None)

        for kind in ("sources", "outputs"):
            a = os.path.join(first, kind)
            b = os.path.join(second, kind)
            assert read_files(a) == read_files(b)
            for rel in read_files(a):
                assert mtime(a, rel) == mtime(b, rel) == T0


def test_capture_preserves_mtime_mode_and_symlinks():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        write_files(str(tree.root), {"configure": "#!/bin/sh\n"})
        os.chmod(tree.path("configure"), 0o755)
        os.symlink("include/util.h", tree.path("util.h"))
        set_mtime(str(tree.root), "main.c", T0)
        out = os.path.join(tmpdir, "artifact")

        SnapshotCapture(DirectoryTarget(out), Settings()).capture_build(tree, compile_tree)

        sources = os.path.join(out, "sources")
        assert mtime(sources, "main.c") == T0
        assert os.access(os.path.join(sources, "configure"), os.X_OK)
        assert os.readlink(os.path.join(sources, "util.h")) == "include/util.h"
        assert mtime(os.path.join(out, "outputs"), "build.log") == T0


def test_failed_build_removes_artifact():
    def broken(tree):
        tree.write("main.o", b"half written")
        raise RuntimeError("compiler crashed")

    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        out = os.path.join(tmpdir, "artifact")

        with pytest.raises(RuntimeError, match="compiler crashed"):
            SnapshotCapture(DirectoryTarget(out), Settings()).capture_build(tree, broken)

        assert not os.path.exists(out)


def test_failed_build_keeps_preexisting_empty_directory():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        out = os.path.join(tmpdir, "artifact")
        os.makedirs(out)

        capture = SnapshotCapture(DirectoryTarget(out), Settings())
        capture.capture_sources(tree)
        capture.abort()

        assert os.path.isdir(out)
        assert os.listdir(out) == []


def test_missing_build_root_is_capture_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        out = os.path.join(tmpdir, "artifact")

        with pytest.raises(CaptureError):
            SnapshotCapture(DirectoryTarget(out), Settings()).capture_sources(
                WorkingTree(os.path.join(tmpdir, "missing"))
            )

        assert not os.path.exists(out)


def test_copy_failure_is_capture_error(monkeypatch):
    def failing_copy(*args, **kwargs):
        raise OSError("disk full")

    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        out = os.path.join(tmpdir, "artifact")
        capture = SnapshotCapture(DirectoryTarget(out), Settings())
        capture.capture_sources(tree)
        compile_tree(tree)

        monkeypatch.setattr(shutil, "copy2", failing_copy)
        with pytest.raises(CaptureError, match="disk full"):
            capture.capture_outputs(tree)

        assert not os.path.exists(out)
        assert capture.artifact is None


def test_non_empty_artifact_directory_refused():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        out = os.path.join(tmpdir, "artifact")
        write_files(out, {"precious.txt": "keep me\n"})

        capture = SnapshotCapture(DirectoryTarget(out), Settings())
        with pytest.raises(CaptureError):
            capture.capture_build(tree, compile_tree)

        # Refusing to start must not clean up someone else's directory
        capture.abort()
        assert read_files(out) == {"precious.txt": b"keep me\n"}


def test_outputs_before_sources_refused():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        capture = SnapshotCapture(DirectoryTarget(os.path.join(tmpdir, "artifact")), Settings())

        with pytest.raises(CaptureError):
            capture.capture_outputs(tree)


def test_artifact_inside_tree_and_difference_file_not_captured():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        write_files(str(tree.root), {".ckbuild-source-difference.patch": "left over\n"})
        out = os.path.join(str(tree.root), ".checkpoint")

        SnapshotCapture(DirectoryTarget(out), Settings()).capture_build(tree, compile_tree)

        for kind in ("sources", "outputs"):
            captured = read_files(os.path.join(out, kind))
            assert not any(p.startswith(".checkpoint/") for p in captured)
            assert ".ckbuild-source-difference.patch" not in captured
            assert not os.path.exists(os.path.join(out, kind, ".checkpoint"))


def test_parallel_and_serial_copies_match():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        write_files(str(tree.root), {f"lib/f{i}.c": f"int f{i};\n" for i in range(40)})
        serial = os.path.join(tmpdir, "serial")
        parallel = os.path.join(tmpdir, "parallel")

        SnapshotCapture(DirectoryTarget(serial), Settings(copy_workers=1)).capture_build(tree, lambda t: None)
        SnapshotCapture(DirectoryTarget(parallel), Settings(copy_workers=8)).capture_build(tree, lambda t: None)

        assert read_files(serial) == read_files(parallel)


def test_empty_directories_captured():
    """Output directories created before anything is written into them."""

    def configure_and_compile(tree: WorkingTree) -> None:
        compile_tree(tree)
        os.makedirs(str(tree.path("obj/.deps")))

    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        os.makedirs(str(tree.path("m4")))
        out = os.path.join(tmpdir, "artifact")
        store = ArtifactStore(os.path.join(tmpdir, "store"))

        SnapshotCapture(DirectoryTarget(out), Settings()).capture_build(tree, configure_and_compile)
        shutil.rmtree(str(tree.path("obj")))
        stored = SnapshotCapture(StoreTarget(store, "v1"), Settings()).capture_build(tree, configure_and_compile)

        assert os.path.isdir(os.path.join(out, "sources", "m4"))
        assert not os.path.exists(os.path.join(out, "sources", "obj"))
        assert os.path.isdir(os.path.join(out, "outputs", "obj", ".deps"))
        assert stored.sources.directories() == ["m4"]
        assert stored.outputs.directories() == ["m4", "obj/.deps"]


def test_capture_to_store():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        store = ArtifactStore(os.path.join(tmpdir, "store"))

        artifact = SnapshotCapture(StoreTarget(store, "app-1.0"), Settings()).capture_build(
            tree, compile_tree, meta={"version": "1.0"}
        )

        assert store.list_artifacts() == ["app-1.0"]
        assert artifact.meta == {"version": "1.0"}
        assert [e.path for e in artifact.sources.entries()] == ["include/util.h", "main.c"]
        assert [e.path for e in artifact.outputs.entries()] == ["build.log", "include/util.h", "main.c", "main.o"]
        assert artifact.outputs.read("main.o") == b"obj:int main() { return 0; }\n"
        build_log = [e for e in artifact.outputs.entries() if e.path == "build.log"][0]
        assert build_log.mtime_ns == T0


def test_store_capture_failure_leaves_no_artifact():
    def broken(tree):
        raise RuntimeError("boom")

    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        store = ArtifactStore(os.path.join(tmpdir, "store"))

        with pytest.raises(RuntimeError):
            SnapshotCapture(StoreTarget(store, "app"), Settings()).capture_build(tree, broken)

        assert store.list_artifacts() == []


def test_store_capture_refuses_existing_name():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        store = ArtifactStore(os.path.join(tmpdir, "store"))
        SnapshotCapture(StoreTarget(store, "app"), Settings()).capture_build(tree, compile_tree)
        before = store.manifest_path("app").read_bytes()

        with pytest.raises(CaptureError):
            SnapshotCapture(StoreTarget(store, "app"), Settings()).capture_build(tree, compile_tree)

        assert store.manifest_path("app").read_bytes() == before


def test_directory_artifact_reopens():
    with tempfile.TemporaryDirectory() as tmpdir:
        tree = _source_tree(tmpdir)
        out = os.path.join(tmpdir, "artifact")
        captured = SnapshotCapture(DirectoryTarget(out), Settings()).capture_build(tree, compile_tree)

        reopened = CheckpointArtifact.open_directory(out)

        assert reopened.name == captured.name
        assert [e.path for e in reopened.outputs.entries()] == [e.path for e in captured.outputs.entries()]
