"""
Local estimate sources.

Usage:
    from peer_oracle.src.sources import get_source, get_available_sources

    available = get_available_sources()
    # ['exchange', 'synthetic']

    source = get_source("synthetic")
    estimate = await source.get_local_estimate()
"""

from .base import (
    SOURCE_REGISTRY,
    PriceSource,
    PriceSourceError,
    PriceSourceHTTPError,
    get_available_sources,
    get_source,
    register_source,
)

# Import all source implementations to trigger registration
from .exchange import ExchangeSource
from .synthetic import SyntheticSource

__all__ = [
    "PriceSource",
    "PriceSourceError",
    "PriceSourceHTTPError",
    "register_source",
    "get_source",
    "get_available_sources",
    "SOURCE_REGISTRY",
    "ExchangeSource",
    "SyntheticSource",
]
