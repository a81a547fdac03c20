"""Base price source interface and shared HTTP client management.

A price source produces the node's local estimate on demand. The round
coordinator only ever sees the number returned by get_local_estimate(), so
sources can be swapped without touching the protocol code.

Network-backed sources share one httpx.AsyncClient to avoid connection
overhead.

.. code-block:: python

    @register_source
    class MySource(PriceSource):
        name = "mysource"

        async def get_local_estimate(self) -> float:
            response = await self._get("https://api.example.com/price")
            return float(response.json()["price"])
"""

import logging
from abc import ABC, abstractmethod
from typing import ClassVar

import httpx

logger = logging.getLogger(__name__)


class PriceSourceError(Exception):
    """Raised when a source cannot produce an estimate."""

    pass


class PriceSourceHTTPError(PriceSourceError):
    """Raised when an upstream HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class PriceSource(ABC):
    """Abstract base class for local estimate providers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "synthetic")
        - get_local_estimate(): Async method returning the current estimate

    :cvar name: Unique identifier for this source.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar pair: Trading pair in "base/quote" form.
    :ivar timeout: Request timeout in seconds.
    """

    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, pair: str = "btc/usd", timeout: float | None = None):
        """Initialize the source.

        :param pair: Trading pair in "base/quote" form (default: "btc/usd").
        :param timeout: Request timeout in seconds (default: 10).
        :raises ValueError: If the pair is not in "base/quote" form.
        """
        parts = pair.lower().split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(
                f"Invalid pair format '{pair}'. Expected 'base/quote' (e.g., 'btc/usd')"
            )
        self.pair = pair.lower()
        self.base, self.quote = parts
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        :returns: Shared httpx.AsyncClient instance.
        """
        if cls._shared_client is None or cls._shared_client.is_closed:
            PriceSource._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                follow_redirects=True,
            )
        return PriceSource._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        if PriceSource._shared_client is not None and not PriceSource._shared_client.is_closed:
            await PriceSource._shared_client.aclose()
        PriceSource._shared_client = None

    @abstractmethod
    async def get_local_estimate(self) -> float:
        """Produce the node's current estimate.

        :returns: Estimate as a positive float.
        :raises PriceSourceError: If no estimate can be produced.
        """
        pass

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :returns: httpx.Response object.
        :raises PriceSourceHTTPError: On non-2xx response.
        :raises PriceSourceError: On network/timeout errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(url, params=params, timeout=self.timeout)
            if not response.is_success:
                logger.debug(
                    "HTTP GET %s failed with status %s: %s",
                    url,
                    response.status_code,
                    response.text[:200],
                )
                raise PriceSourceHTTPError(response.status_code, response.text[:200])
            return response
        except httpx.TimeoutException as e:
            raise PriceSourceError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise PriceSourceError(f"Request failed: {e}") from e


# Registry of available sources (populated by subclass imports)
SOURCE_REGISTRY: dict[str, type[PriceSource]] = {}


def register_source(cls: type[PriceSource]) -> type[PriceSource]:
    """Decorator to register a source class in the global registry.

    :param cls: Source class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If source has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Source {cls.__name__} must define a 'name' class variable")
    SOURCE_REGISTRY[cls.name] = cls
    return cls


def get_source(name: str, pair: str = "btc/usd", timeout: float | None = None) -> PriceSource:
    """Get a source instance by name.

    :param name: Source name (e.g., "synthetic", "exchange").
    :param pair: Trading pair in "base/quote" form.
    :param timeout: Optional request timeout in seconds.
    :returns: Source instance.
    :raises ValueError: If source name is unknown.
    """
    if name not in SOURCE_REGISTRY:
        available = ", ".join(sorted(SOURCE_REGISTRY.keys()))
        raise ValueError(f"Unknown source '{name}'. Available: {available}")
    return SOURCE_REGISTRY[name](pair=pair, timeout=timeout)


def get_available_sources() -> list[str]:
    """Get list of available source names.

    :returns: Sorted list of registered source names.
    """
    return sorted(SOURCE_REGISTRY.keys())
