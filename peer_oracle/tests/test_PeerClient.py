"""Unit tests for PeerClient."""

import asyncio
import json

import httpx
import pytest

from peer_oracle.src.PeerClient import (
    PeerClient,
    PeerResponseError,
    PeerUnreachableError,
    is_valid_address,
    parse_estimate,
    parse_members,
)

SELF = "http://localhost:3000"
PEER = "http://localhost:3001"


def client_for(handler, timeout: float = 1.0, max_concurrency: int | None = None) -> PeerClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PeerClient(SELF, timeout=timeout, max_concurrency=max_concurrency, client=http)


class TestParsing:
    """Test payload validation."""

    def test_parse_estimate(self) -> None:
        assert parse_estimate(PEER, 1000) == 1000.0
        assert parse_estimate(PEER, 999.5) == 999.5

    @pytest.mark.parametrize("payload", ["1000", None, True, [1.0], 0, -3.0, {"a": 1}])
    def test_parse_estimate_rejects(self, payload) -> None:
        with pytest.raises(PeerResponseError):
            parse_estimate(PEER, payload)

    @pytest.mark.parametrize(
        "address", [PEER, "https://oracle.internal", "http://10.0.0.7:65535/"]
    )
    def test_valid_address(self, address: str) -> None:
        assert is_valid_address(address)

    @pytest.mark.parametrize(
        "address",
        [
            "localhost:3001",
            "ftp://localhost:3001",
            "http://",
            "http://localhost:99999",
            "http://localhost:0",
            "http://local\x00host:3001",
            "not a url",
        ],
    )
    def test_invalid_address(self, address: str) -> None:
        assert not is_valid_address(address)

    def test_parse_members(self) -> None:
        assert parse_members(PEER, [SELF, PEER]) == [SELF, PEER]

    @pytest.mark.parametrize("payload", [None, "x", [1, 2], [SELF, ""], {"nodes": []}])
    def test_parse_members_rejects(self, payload) -> None:
        with pytest.raises(PeerResponseError, match="malformed member list"):
            parse_members(PEER, payload)


class TestRequests:
    """Test the three peer operations."""

    @pytest.mark.asyncio
    async def test_request_members(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[PEER, SELF])

        client = client_for(handler)
        assert await client.request_members(PEER) == [PEER, SELF]

        assert seen[0].method == "POST"
        assert str(seen[0].url) == f"{PEER}/sync"
        assert json.loads(seen[0].content) == {"node": SELF}

    @pytest.mark.asyncio
    async def test_pull_answer(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/answer"
            assert request.url.params["node"] == SELF
            return httpx.Response(200, json=1000.25)

        client = client_for(handler)
        assert await client.pull_answer(PEER) == 1000.25

    @pytest.mark.asyncio
    async def test_push_median(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/median"
            assert json.loads(request.content) == {"node": SELF, "value": 1000.0}
            return httpx.Response(200, json={"accepted": True, "answer": 1001.0})

        client = client_for(handler)
        assert await client.push_median(PEER, 1000.0) == 1001.0

    @pytest.mark.asyncio
    async def test_push_median_ack(self) -> None:
        """An acknowledgement without an answer yields None."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"accepted": False, "answer": None})

        client = client_for(handler)
        assert await client.push_median(PEER, 1000.0) is None

    @pytest.mark.asyncio
    async def test_push_median_malformed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[1, 2])

        client = client_for(handler)
        with pytest.raises(PeerResponseError, match="malformed push reply"):
            await client.push_median(PEER, 1000.0)

    @pytest.mark.asyncio
    async def test_error_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, text="Invalid node")

        client = client_for(handler)
        with pytest.raises(PeerResponseError) as exc_info:
            await client.pull_answer(PEER)
        assert exc_info.value.status_code == 400
        assert exc_info.value.peer == PEER

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        client = client_for(handler)
        with pytest.raises(PeerResponseError, match="invalid JSON"):
            await client.request_members(PEER)

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        client = client_for(handler)
        with pytest.raises(PeerUnreachableError, match="request failed"):
            await client.request_members(PEER)

    @pytest.mark.asyncio
    async def test_unusable_address(self) -> None:
        """An address httpx cannot build a request for is unreachable."""
        client = client_for(lambda request: httpx.Response(200, json=1000.0))
        with pytest.raises(PeerUnreachableError, match="invalid address"):
            await client.pull_answer("http://localhost:3001\x00")

    @pytest.mark.asyncio
    async def test_unexpected_transport_error(self) -> None:
        """Errors outside httpx's own hierarchy still count as unreachable."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("pool exploded")

        client = client_for(handler)
        with pytest.raises(PeerUnreachableError, match="pool exploded"):
            await client.pull_answer(PEER)


class TestFanOut:
    """Test concurrent fan-out."""

    @pytest.mark.asyncio
    async def test_excludes_failed_peers(self) -> None:
        """Failed, malformed and timed-out peers are left out of the result."""

        async def handler(request: httpx.Request) -> httpx.Response:
            port = request.url.port
            if port == 3001:
                return httpx.Response(200, json=1001.0)
            if port == 3002:
                raise httpx.ConnectError("Connection refused", request=request)
            if port == 3003:
                return httpx.Response(200, json="garbage")
            if port == 3004:
                await asyncio.sleep(5)
            return httpx.Response(200, json=1005.0)

        client = client_for(handler, timeout=0.05)
        peers = [f"http://localhost:{port}" for port in (3001, 3002, 3003, 3004, 3005)]
        results = await client.fan_out(peers, client.pull_answer)

        assert results == {
            "http://localhost:3001": 1001.0,
            "http://localhost:3005": 1005.0,
        }

    @pytest.mark.asyncio
    async def test_excludes_unusable_addresses(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.port == 3002:
                raise RuntimeError("pool exploded")
            return httpx.Response(200, json=1001.0)

        client = client_for(handler)
        peers = [PEER, "http://localhost:3002", "http://localhost:3003\x00"]
        results = await client.fan_out(peers, client.pull_answer)

        assert results == {PEER: 1001.0}

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self) -> None:
        """Round latency is bounded by the slowest peer, not the sum."""
        in_flight = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.05)
            in_flight -= 1
            return httpx.Response(200, json=1000.0)

        client = client_for(handler)
        peers = [f"http://localhost:{3001 + i}" for i in range(4)]
        results = await client.fan_out(peers, client.pull_answer)

        assert len(results) == 4
        assert peak == 4

    @pytest.mark.asyncio
    async def test_max_concurrency(self) -> None:
        in_flight = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return httpx.Response(200, json=1000.0)

        client = client_for(handler, max_concurrency=2)
        peers = [f"http://localhost:{3001 + i}" for i in range(6)]
        results = await client.fan_out(peers, client.pull_answer)

        assert len(results) == 6
        assert peak == 2

    @pytest.mark.asyncio
    async def test_empty_peers(self) -> None:
        client = client_for(lambda request: httpx.Response(500))
        assert await client.fan_out([], client.pull_answer) == {}
