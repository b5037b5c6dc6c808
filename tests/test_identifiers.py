import os

from assetio.io import identifiers


def test_scheme_classification():
    assert identifiers.scheme_of("models/a.obj") == ""
    assert identifiers.scheme_of("C:\\models\\a.obj") == ""
    assert identifiers.scheme_of("HTTPS://example.com/a.obj") == "https"
    assert identifiers.scheme_of("data:text/plain,hi") == "data"
    assert identifiers.scheme_of("file:///tmp/a.obj") == "file"
    assert identifiers.is_url("http://example.com/a.obj")
    assert not identifiers.is_url("file:///tmp/a.obj")


def test_reference_resolves_against_referrer_directory():
    referrer = os.path.join("assets", "chair", "chair.obj")
    resolved = identifiers.resolve_reference(referrer, "../shared/wood.mtl")
    assert resolved == os.path.normpath(os.path.join("assets", "shared", "wood.mtl"))


def test_reference_resolution_for_urls():
    resolved = identifiers.resolve_reference(
        "https://cdn.example.com/m/chair.gltf", "tex/a b.png"
    )
    assert resolved == "https://cdn.example.com/m/tex/a b.png"
    up = identifiers.resolve_reference("https://cdn.example.com/m/chair.gltf", "../x.bin")
    assert up == "https://cdn.example.com/x.bin"


def test_absolute_and_data_references_are_kept():
    data = "data:application/octet-stream;base64,AAAA"
    assert identifiers.resolve_reference("a/b.gltf", data) == data
    assert (
        identifiers.resolve_reference("a/b.gltf", "http://Example.com/c.bin")
        == "http://example.com/c.bin"
    )


def test_protocol_relative_reference_takes_referrer_scheme():
    assert (
        identifiers.resolve_reference("http://a.com/m.gltf", "//b.com/t.png")
        == "http://b.com/t.png"
    )


def test_extension_ignores_query_and_maps_mime():
    assert identifiers.extension("http://x.com/a/Model.GLB?v=3#frag") == "glb"
    assert identifiers.extension("data:image/png;base64,AAAA") == "png"
    assert identifiers.extension("data:foo/bar,xyz") == ""
    assert identifiers.extension("noext") == ""


def test_stem_and_parent():
    assert identifiers.stem("http://x.com/dir/chair.obj") == "chair"
    assert identifiers.parent("http://x.com/dir/chair.obj") == "http://x.com/dir/"
    assert identifiers.parent("data:,x") == ""


def test_file_urls_normalize_to_paths(tmp_path):
    path = tmp_path / "a.obj"
    assert identifiers.normalize(path.as_uri()) == os.path.normpath(str(path))


def test_relative_to_for_embedding():
    assert identifiers.relative_to(
        os.path.join("out", "tex", "a.png"), "out"
    ) == "tex/a.png"
    assert (
        identifiers.relative_to("http://x.com/m/t.png", "http://x.com/m")
        == "t.png"
    )
