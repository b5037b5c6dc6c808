import os

import pytest

from assetio.errors import MissingReference
from assetio.io.raw_assets import RawAssets


def test_keys_are_normalized():
    raw = RawAssets({os.path.join("a", ".", "b.obj"): b"x"})
    assert list(raw) == [os.path.join("a", "b.obj")]
    assert raw[os.path.join("a", "b.obj")] == b"x"


def test_suffix_lookup_when_unique():
    raw = RawAssets(
        {
            os.path.join("scene", "tex", "a.png"): b"png",
            os.path.join("scene", "model.obj"): b"obj",
        }
    )
    assert raw["tex/a.png"] == b"png"
    assert "model.obj" in raw
    assert "missing.png" not in raw


def test_ambiguous_suffix_does_not_match():
    raw = RawAssets(
        {
            os.path.join("one", "a.png"): b"1",
            os.path.join("two", "a.png"): b"2",
        }
    )
    assert raw.match("a.png") is None
    with pytest.raises(KeyError):
        raw["a.png"]


def test_require_names_missing_identifier_and_parents():
    raw = RawAssets()
    with pytest.raises(MissingReference) as info:
        raw.require("x.bin", parents=("root.gltf",))
    assert info.value.identifier == "x.bin"
    assert info.value.parents == ("root.gltf",)


def test_insert_and_extend_return_new_instances():
    raw = RawAssets({"a.bin": b"1"})
    more = raw.insert("b.bin", b"22")
    assert len(raw) == 1
    assert len(more) == 2
    assert more.total_bytes == 3
    merged = more.extend({"c.bin": b"333"})
    assert set(merged) == {"a.bin", "b.bin", "c.bin"}
    assert "c.bin" not in more
    assert "a.bin" not in merged.without("a.bin")
