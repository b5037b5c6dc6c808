"""Byte acquisition, resource graphs, format dispatch and output sinks.

Submodules are imported explicitly; codecs depend on
:mod:`assetio.io.identifiers`, :mod:`assetio.io.raw_assets` and the
data-URL decoder in :mod:`assetio.io.source` only.
"""
