"""Resources module for cache paths and downloads."""

from eget_wasm.resources.codec import url_to_cache_path
from eget_wasm.resources.fetcher import ResourceFetcher

__all__ = ["url_to_cache_path", "ResourceFetcher"]
