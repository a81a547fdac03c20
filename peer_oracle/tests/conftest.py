"""Shared fixtures: in-process nodes wired together through httpx."""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from peer_oracle.src.NodeConfig import NodeConfig
from peer_oracle.src.OracleNode import OracleNode
from peer_oracle.src.sources import PriceSource, PriceSourceError


class FixedSource(PriceSource):
    """Returns queued estimates, then repeats the last one."""

    name = "fixed"

    def __init__(self, *values: float, fail: bool = False) -> None:
        super().__init__()
        self.values = list(values) or [1000.0]
        self.fail = fail
        self.calls = 0

    async def get_local_estimate(self) -> float:
        self.calls += 1
        if self.fail:
            raise PriceSourceError("source down")
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


class RoutingTransport(httpx.AsyncBaseTransport):
    """Routes each request to the ASGI app mounted at its scheme://host:port.

    Unmounted addresses fail like a refused connection.
    """

    def __init__(self) -> None:
        self.routes: dict[str, httpx.ASGITransport] = {}
        self.requests: list[httpx.Request] = []

    def mount(self, address: str, app) -> None:
        self.routes[address] = httpx.ASGITransport(app=app)

    def unmount(self, address: str) -> None:
        self.routes.pop(address, None)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        address = f"{request.url.scheme}://{request.url.host}:{request.url.port}"
        transport = self.routes.get(address)
        if transport is None:
            raise httpx.ConnectError(f"Connection refused: {address}", request=request)
        return await transport.handle_async_request(request)


@pytest.fixture
def transport() -> RoutingTransport:
    return RoutingTransport()


@pytest_asyncio.fixture
async def http_client(transport: RoutingTransport):
    async with httpx.AsyncClient(transport=transport) as client:
        yield client


@pytest.fixture
def make_node(transport: RoutingTransport, http_client: httpx.AsyncClient):
    """Factory building a node on localhost:<port> and mounting its app."""

    def factory(
        port: int,
        seed: str | None = None,
        source: PriceSource | None = None,
        **overrides,
    ) -> OracleNode:
        config = NodeConfig(port=port, seed=seed, **overrides)
        node = OracleNode(config, price_source=source or FixedSource(), http_client=http_client)
        transport.mount(node.address, node.app)
        return node

    return factory
