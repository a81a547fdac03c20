"""NodeConfig: Immutable per-process settings for an oracle node."""

from __future__ import annotations

from dataclasses import dataclass

FANOUT_MODES = ("pull", "push")


@dataclass(frozen=True)
class NodeConfig:
    """Settings for one node.

    :ivar base_url: Scheme and host peers use to reach this node.
    :ivar port: TCP port the node listens on.
    :ivar seed: Address of an existing node to join, or None to start alone.
    :ivar diff_threshold: Minimum relative change required to publish.
    :ivar time_interval: Seconds between leader trigger ticks.
    :ivar listen_host: Interface the HTTP server binds to.
    :ivar peer_timeout: Timeout for each outbound peer call in seconds.
    :ivar round_timeout: Seconds after which a round stuck in Collecting is
        abandoned, or None to never expire rounds.
    :ivar fanout: "pull" to request each peer's estimate, "push" to send ours.
    :ivar max_concurrency: Bound on concurrent outbound calls per fan-out,
        or None for no bound.
    :ivar source: Name of the price source to use.
    :ivar pair: Trading pair the source estimates.
    """

    base_url: str = "http://localhost"
    port: int = 3000
    seed: str | None = None
    diff_threshold: float = 0.01
    time_interval: float = 10.0
    listen_host: str = "0.0.0.0"
    peer_timeout: float = 5.0
    round_timeout: float | None = 30.0
    fanout: str = "pull"
    max_concurrency: int | None = None
    source: str = "synthetic"
    pair: str = "btc/usd"

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url must not be empty")
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if self.diff_threshold < 0:
            raise ValueError("diff_threshold must not be negative")
        if self.time_interval <= 0:
            raise ValueError("time_interval must be positive")
        if self.peer_timeout <= 0:
            raise ValueError("peer_timeout must be positive")
        if self.round_timeout is not None and self.round_timeout <= 0:
            raise ValueError("round_timeout must be positive if specified")
        if self.fanout not in FANOUT_MODES:
            raise ValueError(f"fanout must be one of {FANOUT_MODES}, got {self.fanout!r}")
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1 if specified")

    @property
    def self_address(self) -> str:
        """Address other nodes use to reach this one, e.g. "http://localhost:3000"."""
        return f"{self.base_url.rstrip('/')}:{self.port}"
