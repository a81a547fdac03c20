"""OracleNode: Wires up and runs one node of the peer oracle.

Architecture:
    - MembershipRegistry holds the known peers, self included
    - RoundCoordinator owns round state behind a single lock
    - PeerClient makes all outbound calls with per-call timeouts
    - LeaderTrigger periodically proposes rounds
    - NodeServer (FastAPI on uvicorn) answers inbound peer calls

Startup performs a bounded flood join when a seed is configured: the seed's
member list is fetched first, then the list of every peer it reported. Any
failure talking to the seed is fatal; failures in the second hop are not.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
import uvicorn

from .LeaderTrigger import LeaderTrigger
from .MembershipRegistry import MembershipRegistry
from .NodeConfig import NodeConfig
from .NodeServer import create_app
from .PeerClient import PeerClient, PeerError
from .RoundCoordinator import RoundCoordinator
from .sources import PriceSource, get_source

logger = logging.getLogger(__name__)


class JoinError(Exception):
    """Raised when the startup join against the seed fails."""

    pass


class OracleNode:
    """One oracle process.

    :ivar config: Node settings.
    :ivar registry: Membership registry.
    :ivar coordinator: Round coordinator.
    :ivar peer_client: Outbound peer client.
    :ivar price_source: Local estimate source.
    :ivar trigger: Leader trigger loop.
    :ivar app: FastAPI app serving the inbound handlers.
    """

    def __init__(
        self,
        config: NodeConfig,
        price_source: PriceSource | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the node.

        :param config: Node settings.
        :param price_source: Optional source; built from config.source otherwise.
        :param http_client: Optional httpx client for peer calls.
        """
        self.config = config
        self.address = config.self_address

        self.registry = MembershipRegistry(self.address)
        self.coordinator = RoundCoordinator(
            self.registry,
            change_threshold=config.diff_threshold,
            round_timeout=config.round_timeout,
        )
        self.peer_client = PeerClient(
            self.address,
            timeout=config.peer_timeout,
            max_concurrency=config.max_concurrency,
            client=http_client,
        )
        self.price_source = price_source or get_source(config.source, pair=config.pair)
        self.trigger = LeaderTrigger(
            self.coordinator,
            self.registry,
            self.peer_client,
            self.price_source,
            interval=config.time_interval,
            fanout=config.fanout,
        )
        self.app = create_app(self.registry, self.coordinator, self.price_source)

        logger.info(
            f"OracleNode initialized: address={self.address}, seed={config.seed}, "
            f"source={self.price_source.name}, fanout={config.fanout}, "
            f"interval={config.time_interval}s, threshold={config.diff_threshold}"
        )

    async def join(self, seed: str) -> list[str]:
        """Flood-join the network through a seed node.

        :param seed: Address of a running node.
        :returns: Membership after the join.
        :raises JoinError: If the seed is unreachable or answers malformed data.
        """
        logger.info(f"[{self.address}] Syncing to: {seed}")
        try:
            members = await self.peer_client.request_members(seed)
        except PeerError as e:
            raise JoinError(f"error first syncing nodes: {e}") from e
        self.registry.merge([seed, *members])

        # Ask every peer the seed knows, so each of them registers us too.
        others = [m for m in dict.fromkeys(members) if m not in (self.address, seed)]
        replies = await self.peer_client.fan_out(others, self.peer_client.request_members)
        for peer_members in replies.values():
            self.registry.merge(peer_members)

        snapshot = self.registry.snapshot()
        # subtract 1 because the node itself is included
        logger.info(f"[{self.address}] Synced to: {len(snapshot) - 1} nodes")
        return snapshot

    async def start(self) -> None:
        """Perform the startup join if a seed is configured."""
        if self.config.seed:
            await self.join(self.config.seed)

    async def close(self) -> None:
        await self.peer_client.aclose()
        await PriceSource.close_shared_client()

    async def run(self) -> None:
        """Join, then serve and trigger rounds until cancelled.

        :raises JoinError: If the startup join fails.
        """
        await self.start()

        server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=self.config.listen_host,
                port=self.config.port,
                log_level="warning",
            )
        )
        logger.info(
            f"[{self.address}] Starting HTTP server on "
            f"{self.config.listen_host}:{self.config.port}"
        )

        trigger_task = asyncio.create_task(self.trigger.run())
        try:
            await server.serve()
        finally:
            trigger_task.cancel()
            try:
                await trigger_task
            except asyncio.CancelledError:
                pass
            await self.close()
