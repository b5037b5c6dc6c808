"""Byte acquisition from data URLs, local files and HTTP."""

import asyncio

import pytest
from aiohttp.test_utils import TestServer

from asset_factory import http_app
from assetio.config import LoadOptions
from assetio.errors import (
    MalformedData,
    NetworkError,
    NotFound,
    UnsupportedScheme,
)
from assetio.io.source import ByteSource, decode_data_url


def test_data_urls_decode_base64_and_percent_encoding():
    assert decode_data_url("data:application/octet-stream;base64,AAEC") == b"\x00\x01\x02"
    assert decode_data_url("data:text/plain,a%20b") == b"a b"
    with pytest.raises(MalformedData):
        decode_data_url("data:;base64,@@@")
    with pytest.raises(MalformedData):
        decode_data_url("data:no-separator")


def test_local_file_blocking_and_async(tmp_path):
    (tmp_path / "a.bin").write_bytes(b"payload")
    source = ByteSource(base=tmp_path)
    assert source.fetch("a.bin") == b"payload"

    async def run():
        async with ByteSource(base=tmp_path) as src:
            return await src.fetch_async("a.bin")

    assert asyncio.run(run()) == b"payload"


def test_missing_local_file_is_not_found(tmp_path):
    with pytest.raises(NotFound) as info:
        ByteSource(base=tmp_path).fetch("nope.obj")
    assert info.value.identifier.endswith("nope.obj")


def test_directory_is_not_found(tmp_path):
    (tmp_path / "dir").mkdir()
    with pytest.raises(NotFound):
        ByteSource(base=tmp_path).fetch("dir")


def test_size_limit(tmp_path):
    (tmp_path / "big.bin").write_bytes(b"x" * 100)
    source = ByteSource(base=tmp_path, options=LoadOptions(max_file_size=10))
    with pytest.raises(MalformedData):
        source.fetch("big.bin")


def test_unknown_scheme():
    with pytest.raises(UnsupportedScheme):
        ByteSource().fetch("ftp://example.com/a.obj")


def test_network_can_be_disabled():
    source = ByteSource(options=LoadOptions(network_enabled=False))
    with pytest.raises(UnsupportedScheme) as info:
        source.fetch("http://example.com/a.obj")
    assert "disabled" in info.value.message


def test_http_fetch_sends_user_agent():
    hits = []
    options = LoadOptions(user_agent="assetio-tests/1")

    async def run():
        async with TestServer(http_app({"a.bin": b"remote"}, hits)) as server:
            async with ByteSource(options=options) as source:
                return await source.fetch_async(str(server.make_url("/a.bin")))

    assert asyncio.run(run()) == b"remote"
    assert hits == [("/a.bin", "assetio-tests/1")]


def test_http_status_mapping():
    async def run(path):
        async with TestServer(http_app({})) as server:
            async with ByteSource() as source:
                await source.fetch_async(str(server.make_url(path)))

    with pytest.raises(NotFound):
        asyncio.run(run("/missing.bin"))
    with pytest.raises(NetworkError) as info:
        asyncio.run(run("/boom"))
    assert info.value.status == 500


def test_relative_reference_against_url_base():
    source = ByteSource(base="http://example.com/models/")
    assert source.resolve("tex/a.png") == "http://example.com/models/tex/a.png"
