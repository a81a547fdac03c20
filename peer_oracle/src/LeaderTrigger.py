"""LeaderTrigger: Periodic round initiation.

Every node runs one of these loops, so any node may independently propose a
round; there is no leader election. A node acts as leader only for the rounds
its own loop starts.

Each tick:
    1. Skip if a round is already Collecting (missed ticks are not queued).
    2. Get a local estimate from the price source.
    3. Skip unless the estimate passes change-gating against the last
       published value.
    4. Start a round (skipped with fewer than 3 members).
    5. Fan out to every other member, either pulling each peer's estimate or
       pushing ours and collecting the peers' estimates from the replies.
    6. Complete the round with the replies that succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .RoundCoordinator import MIN_MEMBERS, RoundResult
from .sources import PriceSourceError

if TYPE_CHECKING:
    from .MembershipRegistry import MembershipRegistry
    from .PeerClient import PeerClient
    from .RoundCoordinator import RoundCoordinator
    from .sources import PriceSource

logger = logging.getLogger(__name__)


class LeaderTrigger:
    """Timer-driven round initiator for one node.

    :ivar interval: Seconds between ticks.
    :ivar fanout: "pull" or "push".
    """

    def __init__(
        self,
        coordinator: RoundCoordinator,
        registry: MembershipRegistry,
        peer_client: PeerClient,
        price_source: PriceSource,
        interval: float = 10.0,
        fanout: str = "pull",
    ) -> None:
        """Initialize the trigger loop.

        :param coordinator: Round coordinator of this node.
        :param registry: Membership registry of this node.
        :param peer_client: Client used for the fan-out.
        :param price_source: Source of local estimates.
        :param interval: Seconds between ticks (default: 10.0).
        :param fanout: "pull" (default) or "push".
        :raises ValueError: If fanout is unknown.
        """
        if fanout not in ("pull", "push"):
            raise ValueError(f"Unknown fanout mode {fanout!r}")
        self.coordinator = coordinator
        self.registry = registry
        self.peer_client = peer_client
        self.price_source = price_source
        self.interval = interval
        self.fanout = fanout

    @property
    def name(self) -> str:
        return self.registry.self_address

    async def tick(self) -> RoundResult | None:
        """Run one trigger cycle.

        :returns: RoundResult if a round closed with a median, otherwise None.
        """
        if await self.coordinator.is_collecting():
            logger.debug(f"[{self.name}] Round in progress, skipping tick")
            return None

        try:
            estimate = await self.price_source.get_local_estimate()
        except PriceSourceError as e:
            logger.warning(f"[{self.name}] No local estimate, skipping tick: {e}")
            return None

        if not await self.coordinator.should_publish(estimate):
            logger.debug(f"[{self.name}] Estimate {estimate} below change threshold")
            return None
        logger.info(
            f"[{self.name}] Median changed by more than "
            f"{self.coordinator.change_threshold * 100}%"
        )

        if len(self.registry) < MIN_MEMBERS:
            logger.info(f"[{self.name}] Not enough nodes to start a round")
            return None

        round_id = await self.coordinator.begin_round()
        if round_id is None:
            return None

        # The round is closed even if the fan-out raises
        answers: list[float] = []
        try:
            peers = self.registry.peers()
            if self.fanout == "pull":
                logger.info(f"[{self.name}] Requesting medians from {peers}")
                replies = await self.peer_client.fan_out(
                    peers, self.peer_client.pull_answer
                )
            else:
                logger.info(f"[{self.name}] Pushing {estimate} to {peers}")
                replies = await self.peer_client.fan_out(
                    peers, lambda peer: self.peer_client.push_median(peer, estimate)
                )
            answers = [answer for answer in replies.values() if answer is not None]
        finally:
            result = await self.coordinator.complete_round(round_id, answers)
        return result

    async def run(self) -> None:
        """Tick forever; the first tick runs immediately.

        A failing tick is logged and the loop carries on with the next one.
        """
        logger.info(f"[{self.name}] Starting trigger loop every {self.interval}s")
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception(f"[{self.name}] Tick failed")
            await asyncio.sleep(self.interval)
