"""
Peer Oracle - Gossip Membership and Quorum Rounds

This module provides the building blocks of an oracle node:
- MembershipRegistry: Deduplicated, append-only set of known peers
- RoundCoordinator: Round state machine with quorum and change-gating
- PeerClient: Timeout-bounded outbound calls with concurrent fan-out
- LeaderTrigger: Periodic round initiation
- NodeServer: Inbound HTTP handlers
- OracleNode: Orchestrator for join, serving and the trigger loop
- sources: Local estimate providers
"""

from .LeaderTrigger import LeaderTrigger
from .MembershipRegistry import MembershipRegistry
from .NodeConfig import NodeConfig
from .NodeServer import create_app
from .OracleNode import JoinError, OracleNode
from .PeerClient import PeerClient, PeerError, PeerResponseError, PeerUnreachableError
from .RoundCoordinator import (
    MIN_MEMBERS,
    RoundCoordinator,
    RoundResult,
    RoundState,
    exceeds_threshold,
    lower_median,
    quorum_size,
)

__all__ = [
    "JoinError",
    "LeaderTrigger",
    "MIN_MEMBERS",
    "MembershipRegistry",
    "NodeConfig",
    "OracleNode",
    "PeerClient",
    "PeerError",
    "PeerResponseError",
    "PeerUnreachableError",
    "RoundCoordinator",
    "RoundResult",
    "RoundState",
    "create_app",
    "exceeds_threshold",
    "lower_median",
    "quorum_size",
]
