"""PeerClient: Outbound calls to other oracle nodes.

Three logical operations, each a single HTTP request with its own timeout:

    - request_members(peer): POST /sync, returns the peer's member list
    - pull_answer(peer): GET /answer, returns the peer's own estimate
    - push_median(peer, value): POST /median, returns the peer's estimate or
      None when the peer only acknowledged

fan_out() runs one call per peer concurrently and waits for all of them to
finish or time out before returning. A failed call never propagates: the peer
is logged and left out of the result, so a round continues with whoever
answered.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class PeerError(Exception):
    """Base exception for peer call failures.

    :ivar peer: Address of the peer that failed.
    """

    def __init__(self, peer: str, message: str):
        self.peer = peer
        super().__init__(f"{peer}: {message}")


class PeerUnreachableError(PeerError):
    """Raised when a peer cannot be reached or does not answer in time."""

    pass


class PeerResponseError(PeerError):
    """Raised when a peer answers with an error status or a malformed payload.

    :ivar status_code: HTTP status code, or None if the payload was malformed.
    """

    def __init__(self, peer: str, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(peer, message)


def is_valid_address(address: str) -> bool:
    """Check that an address is an absolute http(s) URL peers can call.

    :param address: Candidate node address, e.g. "http://localhost:3000".
    :returns: True if httpx parses it with an http(s) scheme, a host and a
        port in 1..65535 (or the scheme default).
    """
    try:
        url = httpx.URL(address)
    except (httpx.InvalidURL, TypeError):
        return False
    if url.scheme not in ("http", "https") or not url.host:
        return False
    return url.port is None or 0 < url.port < 65536


def parse_estimate(peer: str, payload: Any) -> float:
    """Validate a numeric payload returned by a peer.

    :param peer: Peer the payload came from.
    :param payload: Decoded JSON value.
    :returns: The value as a float.
    :raises PeerResponseError: If the value is not a finite positive number.
    """
    if isinstance(payload, bool) or not isinstance(payload, (int, float)):
        raise PeerResponseError(peer, f"expected a number, got {payload!r}")
    value = float(payload)
    if not math.isfinite(value) or value <= 0:
        raise PeerResponseError(peer, f"expected a finite positive number, got {payload!r}")
    return value


def parse_members(peer: str, payload: Any) -> list[str]:
    """Validate a member list returned by a peer.

    :param peer: Peer the payload came from.
    :param payload: Decoded JSON value.
    :returns: The member addresses.
    :raises PeerResponseError: If the payload is not a list of non-empty strings.
    """
    if not isinstance(payload, list) or not all(
        isinstance(a, str) and a for a in payload
    ):
        raise PeerResponseError(peer, f"malformed member list {payload!r}")
    return payload


class PeerClient:
    """HTTP client for node-to-node calls.

    :ivar self_address: Address this node identifies itself with.
    :ivar timeout: Timeout for each call in seconds.
    :ivar max_concurrency: Optional bound on concurrent calls per fan-out.
    """

    DEFAULT_TIMEOUT = 5.0

    def __init__(
        self,
        self_address: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_concurrency: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the peer client.

        :param self_address: Address sent to peers as the caller identity.
        :param timeout: Per-call timeout in seconds (default: 5.0).
        :param max_concurrency: Optional bound on concurrent fan-out calls.
        :param client: Optional preconfigured httpx.AsyncClient; one is
            created (and owned) otherwise.
        """
        self.self_address = self_address
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def request_members(self, peer: str) -> list[str]:
        """Register with a peer and fetch its member list.

        :param peer: Peer address.
        :returns: Addresses the peer knows, including itself and us.
        :raises PeerError: On network failure or malformed response.
        """
        response = await self._request(
            "POST", peer, "/sync", json={"node": self.self_address}
        )
        return parse_members(peer, self._decode(peer, response))

    async def pull_answer(self, peer: str) -> float:
        """Ask a peer for its own estimate.

        :param peer: Peer address.
        :returns: The peer's estimate.
        :raises PeerError: On network failure or malformed response.
        """
        response = await self._request(
            "GET", peer, "/answer", params={"node": self.self_address}
        )
        return parse_estimate(peer, self._decode(peer, response))

    async def push_median(self, peer: str, value: float) -> float | None:
        """Push a proposed value to a peer.

        :param peer: Peer address.
        :param value: Value proposed for the round.
        :returns: The peer's own estimate, or None if it only acknowledged.
        :raises PeerError: On network failure or malformed response.
        """
        response = await self._request(
            "POST", peer, "/median", json={"node": self.self_address, "value": value}
        )
        payload = self._decode(peer, response)
        if not isinstance(payload, dict) or "accepted" not in payload:
            raise PeerResponseError(peer, f"malformed push reply {payload!r}")
        answer = payload.get("answer")
        if not payload["accepted"] or answer is None:
            return None
        return parse_estimate(peer, answer)

    async def fan_out(
        self,
        peers: list[str],
        call: Callable[[str], Awaitable[Any]],
    ) -> dict[str, Any]:
        """Run call(peer) for every peer concurrently.

        Waits for every call to finish or time out before returning.

        :param peers: Target addresses.
        :param call: Coroutine function taking a peer address.
        :returns: Dict mapping each peer that succeeded to its result.
        """
        if not peers:
            return {}

        semaphore = (
            asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        )

        async def guarded(peer: str) -> Any:
            if semaphore is None:
                return await self._call_with_timeout(peer, call)
            async with semaphore:
                return await self._call_with_timeout(peer, call)

        results = await asyncio.gather(*(guarded(peer) for peer in peers))

        succeeded: dict[str, Any] = {}
        for peer, (ok, result) in zip(peers, results, strict=True):
            if ok:
                succeeded[peer] = result
        return succeeded

    async def _call_with_timeout(
        self,
        peer: str,
        call: Callable[[str], Awaitable[Any]],
    ) -> tuple[bool, Any]:
        """Run a single call, turning any peer failure into (False, None).

        :param peer: Target address.
        :param call: Coroutine function taking a peer address.
        :returns: Tuple of (succeeded, result).
        """
        try:
            return True, await asyncio.wait_for(call(peer), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.self_address}] Timeout calling {peer}")
            return False, None
        except PeerError as e:
            logger.warning(f"[{self.self_address}] Error calling {e}")
            return False, None

    async def _request(
        self,
        method: str,
        peer: str,
        path: str,
        *,
        params: dict | None = None,
        json: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP request to a peer.

        :param method: HTTP method.
        :param peer: Peer address.
        :param path: Endpoint path.
        :param params: Optional query parameters.
        :param json: Optional JSON body.
        :returns: httpx.Response object.
        :raises PeerResponseError: On non-2xx response.
        :raises PeerUnreachableError: On network/timeout errors, an unusable
            peer address, or any other failure inside the transport.
        """
        try:
            response = await self._client.request(
                method,
                peer.rstrip("/") + path,
                params=params,
                json=json,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise PeerUnreachableError(peer, f"request timeout: {e}") from e
        except httpx.RequestError as e:
            raise PeerUnreachableError(peer, f"request failed: {e}") from e
        except httpx.InvalidURL as e:
            raise PeerUnreachableError(peer, f"invalid address: {e}") from e
        except Exception as e:
            # e.g. an ExceptionGroup from the connection pool on an out-of-range port
            raise PeerUnreachableError(peer, f"unexpected error: {e!r}") from e

        if not response.is_success:
            logger.debug(
                "%s %s%s failed with status %s: %s",
                method,
                peer,
                path,
                response.status_code,
                response.text[:200],
            )
            raise PeerResponseError(
                peer,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _decode(peer: str, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise PeerResponseError(peer, f"invalid JSON: {e}") from e
