"""Transactional writes: every file lands or none does."""

import os

import pytest

from assetio.errors import UnsupportedScheme, WriteError
from assetio.io.sink import FileSink


def test_writes_all_files_relative_to_base(tmp_path):
    written = FileSink(tmp_path).write({"a.obj": b"obj", "sub/a.mtl": b"mtl"})
    assert [p.name for p in written] == ["a.obj", "a.mtl"]
    assert (tmp_path / "a.obj").read_bytes() == b"obj"
    assert (tmp_path / "sub" / "a.mtl").read_bytes() == b"mtl"
    assert not [n for n in os.listdir(tmp_path) if n.endswith(".tx")]


def test_existing_target_is_replaced(tmp_path):
    (tmp_path / "a.obj").write_bytes(b"old")
    FileSink(tmp_path).write({"a.obj": b"new"})
    assert (tmp_path / "a.obj").read_bytes() == b"new"
    assert sorted(os.listdir(tmp_path)) == ["a.obj"]


def test_failure_restores_earlier_targets(tmp_path):
    (tmp_path / "a.obj").write_bytes(b"old")
    # A regular file where a directory is needed makes the second write fail.
    (tmp_path / "blocker").write_bytes(b"")
    files = {"a.obj": b"new", "blocker/a.mtl": b"mtl"}
    with pytest.raises(WriteError) as info:
        FileSink(tmp_path).write(files)
    assert (tmp_path / "a.obj").read_bytes() == b"old"
    assert sorted(os.listdir(tmp_path)) == ["a.obj", "blocker"]
    assert info.value.code == "E_WRITE_IO"
    assert len(info.value.context["files"]) == 2


def test_failure_during_replace_rolls_back(tmp_path, monkeypatch):
    (tmp_path / "a.obj").write_bytes(b"old")
    real_replace = os.replace
    calls = []

    def flaky_replace(src, dst):
        calls.append(dst)
        if str(dst).endswith("b.png"):
            raise PermissionError(13, "denied", str(dst))
        return real_replace(src, dst)

    monkeypatch.setattr(os, "replace", flaky_replace)
    with pytest.raises(WriteError):
        FileSink(tmp_path).write({"a.obj": b"new", "b.png": b"png"})
    monkeypatch.undo()
    assert (tmp_path / "a.obj").read_bytes() == b"old"
    assert sorted(os.listdir(tmp_path)) == ["a.obj"]


def test_urls_are_not_writable(tmp_path):
    with pytest.raises(UnsupportedScheme):
        FileSink(tmp_path).write({"https://example.com/a.obj": b""})
    assert os.listdir(tmp_path) == []
