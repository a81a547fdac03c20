"""MembershipRegistry: Deduplicated set of known peer addresses.

The set always contains the owning node's own address and only ever grows:
peers are added by the startup flood join and by every inbound ``/sync``
request. There is no leave or eviction protocol, so an address that stops
responding stays a member and is simply excluded from each round it fails.

.. code-block:: python

    >>> registry = MembershipRegistry("http://localhost:3000")
    >>> registry.register_sync("http://localhost:3001")
    ['http://localhost:3000', 'http://localhost:3001']
    >>> registry.register_sync("http://localhost:3001")
    ['http://localhost:3000', 'http://localhost:3001']
    >>> registry.peers()
    ['http://localhost:3001']
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

logger = logging.getLogger(__name__)


class MembershipRegistry:
    """Thread-safe, append-only membership set.

    Insertion order is kept so logs and snapshots are stable, but callers must
    not rely on it for anything else.

    :ivar self_address: Address of the owning node; always a member.
    """

    def __init__(self, self_address: str, initial: Iterable[str] = ()) -> None:
        """Initialize the registry.

        :param self_address: Address of the owning node.
        :param initial: Optional addresses to seed the set with.
        :raises ValueError: If self_address is empty.
        """
        if not self_address:
            raise ValueError("self_address must not be empty")
        self.self_address = self_address
        self._lock = threading.Lock()
        # dict keys double as an ordered set
        self._members: dict[str, None] = {self_address: None}
        self.merge(initial)

    def register_sync(self, caller: str) -> list[str]:
        """Register a caller and return the full membership.

        Idempotent: registering a known address changes nothing.

        :param caller: Address of the node asking to sync.
        :returns: Snapshot of all known addresses, self included.
        """
        with self._lock:
            if caller and caller not in self._members:
                self._members[caller] = None
                logger.info(f"[{self.self_address}] Registered new member {caller}")
            return list(self._members)

    def merge(self, addresses: Iterable[str]) -> list[str]:
        """Merge a batch of addresses, skipping duplicates and empty strings.

        :param addresses: Addresses learned from a peer.
        :returns: The addresses that were new to this registry.
        """
        added: list[str] = []
        with self._lock:
            for address in addresses:
                if address and address not in self._members:
                    self._members[address] = None
                    added.append(address)
        if added:
            logger.debug(f"[{self.self_address}] Merged members {added}")
        return added

    def snapshot(self) -> list[str]:
        """Return a copy of all known addresses, self included."""
        with self._lock:
            return list(self._members)

    def peers(self) -> list[str]:
        """Return a copy of all known addresses except self."""
        with self._lock:
            return [a for a in self._members if a != self.self_address]

    def contains(self, address: str) -> bool:
        """Check whether an address is a known member.

        :param address: Address to look up (exact string match).
        :returns: True if the address is a member.
        """
        with self._lock:
            return address in self._members

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.contains(address)

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)
