"""RoundCoordinator: Per-node round state machine.

Owns the three pieces of mutable round state (status, collected answers and
the last published value) and serializes every access to them through a
single asyncio.Lock. The lock is only held for in-memory bookkeeping; callers
do all network and price-source I/O outside of it.

Round lifecycle::

    Idle --begin_round / accept_push--> Collecting
    Collecting --quorum reached / complete_round / round_timeout--> Idle

Rules:
    - A round needs ``floor(members / 3) * 2`` answers to close at quorum.
    - No round starts, as leader or follower, with fewer than 3 members.
    - The round value is the lower median of the collected answers.
    - A value is published only if its relative rise over the last
      published value exceeds the threshold. The first value always passes.
    - Every round gets a new id; a leader completes only the round it began.

.. code-block:: python

    >>> lower_median([1.0, 2.0, 3.0, 4.0])
    2.0
    >>> quorum_size(5)
    2
    >>> exceeds_threshold(102.0, 100.0, 0.01)
    True
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .MembershipRegistry import MembershipRegistry

logger = logging.getLogger(__name__)

# Smallest membership for which a round may start.
MIN_MEMBERS = 3


class RoundState(Enum):
    """Status of the node's current round."""

    IDLE = "idle"
    COLLECTING = "collecting"


def quorum_size(member_count: int) -> int:
    """Number of answers required to close a round.

    :param member_count: Total membership, self included.
    :returns: ``floor(member_count / 3) * 2``.
    """
    return (member_count // 3) * 2


def lower_median(values: Iterable[float]) -> float:
    """Median that picks the lower-middle element for even counts.

    :param values: Successful answers for a round.
    :returns: Element at index ``(n - 1) // 2`` of the ascending sort; the
        middle element for odd n, never an average.
    :raises ValueError: If values is empty.
    """
    ordered = sorted(values)
    if not ordered:
        raise ValueError("cannot take the median of no values")
    return ordered[(len(ordered) - 1) // 2]


def exceeds_threshold(new: float, last: float | None, threshold: float) -> bool:
    """Check whether a value changed enough to be published.

    :param new: Candidate value.
    :param last: Last published value, or None if nothing was published yet.
    :param threshold: Minimum relative change as a fraction (0.01 = 1%).
    :returns: True if last is unset or ``(new - last) / last > threshold``.
        The ratio is signed, so a fall in value never passes.
    """
    if last is None or last == 0:
        return True
    return (new - last) / last > threshold


@dataclass
class RoundResult:
    """Outcome of a closed round.

    :ivar value: Lower median of the answers used.
    :ivar answers: Answers the median was computed from.
    :ivar published: Whether value passed change-gating and was published.
    :ivar previous: Last published value before this round.
    """

    value: float
    answers: list[float] = field(default_factory=list)
    published: bool = False
    previous: float | None = None


class RoundCoordinator:
    """Round state owned by one node.

    :ivar registry: Membership used for quorum and eligibility checks.
    :ivar change_threshold: Minimum relative change required to publish.
    :ivar round_timeout: Seconds after which a Collecting round is abandoned,
        or None to never expire rounds.
    """

    def __init__(
        self,
        registry: MembershipRegistry,
        change_threshold: float = 0.01,
        round_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the coordinator in the Idle state.

        :param registry: Membership registry of the owning node.
        :param change_threshold: Publish threshold as a fraction (default: 0.01).
        :param round_timeout: Optional stale-round expiry in seconds.
        :param clock: Monotonic clock, replaceable in tests.
        :raises ValueError: If parameters are invalid.
        """
        if change_threshold < 0:
            raise ValueError("change_threshold must not be negative")
        if round_timeout is not None and round_timeout <= 0:
            raise ValueError("round_timeout must be positive if specified")

        self.registry = registry
        self.change_threshold = change_threshold
        self.round_timeout = round_timeout
        self._clock = clock

        self._lock = asyncio.Lock()
        self._state = RoundState.IDLE
        self._answers: list[float] = []
        self._last_published: float | None = None
        self._round_started = 0.0
        self._round_id = 0
        self.rounds_completed = 0

    @property
    def name(self) -> str:
        return self.registry.self_address

    # Unlocked reads for logging and status reporting only.
    @property
    def state(self) -> RoundState:
        return self._state

    @property
    def answers(self) -> list[float]:
        return list(self._answers)

    @property
    def last_published(self) -> float | None:
        return self._last_published

    def quorum(self) -> int:
        """Quorum for the current membership."""
        return quorum_size(len(self.registry))

    async def is_collecting(self) -> bool:
        """Check whether a round is in progress."""
        async with self._lock:
            self._expire_stale_round()
            return self._state is RoundState.COLLECTING

    async def should_publish(self, value: float) -> bool:
        """Apply change-gating to a candidate value.

        :param value: Candidate value, e.g. a fresh local estimate.
        :returns: True if value differs enough from the last published value.
        """
        async with self._lock:
            return exceeds_threshold(value, self._last_published, self.change_threshold)

    async def begin_round(self) -> int | None:
        """Move from Idle to Collecting for a locally triggered round.

        :returns: Id of the new round, to be passed to complete_round; None
            if a round is already running or membership is too small.
        """
        async with self._lock:
            self._expire_stale_round()
            if self._state is RoundState.COLLECTING:
                logger.debug(f"[{self.name}] Round already in progress")
                return None
            if len(self.registry) < MIN_MEMBERS:
                logger.info(f"[{self.name}] Not enough nodes to start a round")
                return None
            round_id = self._start()
            logger.info(
                f"[{self.name}] Started round {round_id} as leader (quorum={self.quorum()})"
            )
            return round_id

    async def add_answer(self, value: float) -> RoundResult | None:
        """Record one answer for the current round.

        Closes the round as soon as the collection first reaches quorum.

        :param value: Answer received from a peer.
        :returns: RoundResult if this answer closed the round, otherwise None.
        """
        async with self._lock:
            self._expire_stale_round()
            if self._state is not RoundState.COLLECTING:
                logger.debug(f"[{self.name}] Ignoring answer {value}: no round in progress")
                return None
            return self._record(value)

    async def accept_push(self, value: float) -> tuple[bool, RoundResult | None]:
        """Handle a value pushed by another node's leader.

        Starts a follower round if Idle, then records the value as an answer.

        :param value: Value proposed by the pushing node.
        :returns: Tuple of (participating, result). participating is False
            when membership is too small; result is set if quorum was reached.
        """
        async with self._lock:
            self._expire_stale_round()
            if len(self.registry) < MIN_MEMBERS:
                logger.debug(f"[{self.name}] Not enough nodes to join a round")
                return False, None
            if self._state is RoundState.IDLE:
                self._start()
                logger.info(
                    f"[{self.name}] Started round as follower (quorum={self.quorum()})"
                )
            return True, self._record(value)

    async def complete_round(
        self, round_id: int, values: Iterable[float]
    ) -> RoundResult | None:
        """Finish the local leader's send/receive cycle.

        Records the successful replies, then returns to Idle. The median is
        computed and gated only if the collection reached quorum; otherwise
        the round closes without publishing. If the round was closed in the
        meantime (by pushes, or by expiry) the replies are dropped, even when
        another round is Collecting by now.

        :param round_id: Id returned by begin_round.
        :param values: Successful answers from the fan-out.
        :returns: RoundResult if a median was computed, otherwise None.
        """
        async with self._lock:
            if self._state is not RoundState.COLLECTING or self._round_id != round_id:
                logger.info(
                    f"[{self.name}] Round {round_id} already closed, dropping late answers"
                )
                return None

            capacity = max(len(self.registry) - 1, 0)
            for value in values:
                if len(self._answers) >= capacity:
                    break
                self._answers.append(value)

            quorum = self.quorum()
            if len(self._answers) < quorum:
                logger.warning(
                    f"[{self.name}] Round failed: {len(self._answers)} answers, "
                    f"quorum is {quorum}"
                )
                self._reset()
                return None
            return self._close()

    def _start(self) -> int:
        self._round_id += 1
        self._state = RoundState.COLLECTING
        self._answers = []
        self._round_started = self._clock()
        return self._round_id

    def _reset(self) -> None:
        self._state = RoundState.IDLE
        self._answers = []

    def _record(self, value: float) -> RoundResult | None:
        # Self never answers its own round.
        if len(self._answers) >= max(len(self.registry) - 1, 0):
            logger.debug(f"[{self.name}] Answer collection full, dropping {value}")
            return None
        self._answers.append(value)
        if len(self._answers) >= self.quorum():
            return self._close()
        return None

    def _close(self) -> RoundResult:
        answers = list(self._answers)
        median = lower_median(answers)
        previous = self._last_published
        published = exceeds_threshold(median, previous, self.change_threshold)
        if published:
            self._last_published = median

        self.rounds_completed += 1
        self._reset()

        logger.info(f"[{self.name}] Answers: {answers}")
        if published:
            logger.info(f"[{self.name}] New median: {median}")
        else:
            logger.info(
                f"[{self.name}] Median {median} not more than "
                f"{self.change_threshold * 100}% above {previous}, not published"
            )
        return RoundResult(value=median, answers=answers, published=published, previous=previous)

    def _expire_stale_round(self) -> None:
        if (
            self._state is RoundState.COLLECTING
            and self.round_timeout is not None
            and self._clock() - self._round_started > self.round_timeout
        ):
            logger.warning(
                f"[{self.name}] Abandoning round after {self.round_timeout}s "
                f"with {len(self._answers)} answers"
            )
            self._reset()
