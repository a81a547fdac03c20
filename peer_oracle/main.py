#!/usr/bin/env python3
"""Peer Oracle node.

Discovers peers through a seed node, periodically estimates a price from a
local source and reconciles the estimates of all peers into one agreed value
through quorum-gated rounds.

Start one node per process. See DESIGN.md for the protocol.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.NodeConfig import FANOUT_MODES, NodeConfig
from .src.OracleNode import JoinError, OracleNode
from .src.sources import get_available_sources

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser.

    Every option falls back to an environment variable; CLI args take
    precedence.

    :returns: Configured parser.
    """
    available_sources = get_available_sources()

    parser = argparse.ArgumentParser(
        description="Peer Oracle: gossip-discovered, quorum-agreed price feed node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # First node
  python -m peer_oracle.main --port 3000

  # Further nodes join through any running node
  python -m peer_oracle.main --port 3001 --seed http://localhost:3000
  python -m peer_oracle.main --port 3002 --seed http://localhost:3001

Environment variables (CLI args take precedence):
  SEED, BASE_URL, PORT, LISTEN_HOST, DIFF_THRESHOLD, TIME_INTERVAL,
  PEER_TIMEOUT, ROUND_TIMEOUT, FANOUT, MAX_CONCURRENCY, PRICE_SOURCE, PAIR
""",
    )

    parser.add_argument(
        "--seed", "--link",
        dest="seed",
        type=str,
        help="Address of a running node to sync to (omit to start a new network)",
        default=os.environ.get("SEED") or None,
    )

    parser.add_argument(
        "--base-url",
        dest="base_url",
        type=str,
        help="Base url other nodes use to reach this node (default: http://localhost)",
        default=os.environ.get("BASE_URL") or "http://localhost",
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Port of the node (default: 3000)",
        default=int(os.environ.get("PORT") or "3000"),
    )

    parser.add_argument(
        "--host",
        dest="listen_host",
        type=str,
        help="Interface to bind the HTTP server to (default: 0.0.0.0)",
        default=os.environ.get("LISTEN_HOST") or "0.0.0.0",
    )

    parser.add_argument(
        "--diff-threshold",
        dest="diff_threshold",
        type=float,
        help="Relative change required before a new median is published (default: 0.01)",
        default=float(os.environ.get("DIFF_THRESHOLD") or "0.01"),
    )

    parser.add_argument(
        "--time-interval",
        dest="time_interval",
        type=float,
        help="Seconds between attempts to start a round (default: 10)",
        default=float(os.environ.get("TIME_INTERVAL") or "10"),
    )

    parser.add_argument(
        "--peer-timeout",
        dest="peer_timeout",
        type=float,
        help="Timeout for each call to another node in seconds (default: 5.0)",
        default=float(os.environ.get("PEER_TIMEOUT") or "5.0"),
    )

    parser.add_argument(
        "--round-timeout",
        dest="round_timeout",
        type=float,
        help="Seconds before an unfinished round is abandoned (default: 30, 0 to disable)",
        default=float(os.environ.get("ROUND_TIMEOUT") or "30"),
    )

    parser.add_argument(
        "--fanout",
        type=str,
        choices=FANOUT_MODES,
        help="pull: ask peers for their estimates; push: send ours (default: pull)",
        default=os.environ.get("FANOUT") or "pull",
    )

    parser.add_argument(
        "--max-concurrency",
        dest="max_concurrency",
        type=int,
        help="Max concurrent calls per round fan-out (default: 0, unbounded)",
        default=int(os.environ.get("MAX_CONCURRENCY") or "0"),
    )

    parser.add_argument(
        "--source",
        type=str,
        help=f"Price source. Available: {', '.join(available_sources)}",
        default=os.environ.get("PRICE_SOURCE") or "synthetic",
    )

    parser.add_argument(
        "--pair",
        type=str,
        help="Trading pair to estimate (default: btc/usd)",
        default=os.environ.get("PAIR") or "btc/usd",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    return parser


def config_from_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> NodeConfig:
    """Validate parsed arguments and build the node configuration.

    :param parser: Parser used to report errors (exits on failure).
    :param args: Parsed arguments.
    :returns: Node configuration.
    """
    if args.time_interval <= 0:
        parser.error("--time-interval must be positive")

    if args.peer_timeout <= 0:
        parser.error("--peer-timeout must be positive")

    if args.max_concurrency < 0:
        parser.error("--max-concurrency must not be negative")

    if args.source not in get_available_sources():
        parser.error(
            f"Unknown source: {args.source}. "
            f"Available: {', '.join(get_available_sources())}"
        )

    seed = args.seed.strip().rstrip("/") if args.seed else None

    try:
        return NodeConfig(
            base_url=args.base_url.rstrip("/"),
            port=args.port,
            seed=seed or None,
            diff_threshold=args.diff_threshold,
            time_interval=args.time_interval,
            listen_host=args.listen_host,
            peer_timeout=args.peer_timeout,
            round_timeout=args.round_timeout if args.round_timeout > 0 else None,
            fanout=args.fanout,
            max_concurrency=args.max_concurrency or None,
            source=args.source,
            pair=args.pair,
        )
    except ValueError as e:
        parser.error(str(e))


def main() -> None:
    """Main entry point for the Peer Oracle CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = config_from_args(parser, args)

    # Log configuration
    logger.info("=" * 60)
    logger.info("Peer Oracle Node")
    logger.info("=" * 60)
    logger.info(f"Address:           {config.self_address}")
    logger.info(f"Seed:              {config.seed or 'none (new network)'}")
    logger.info(f"Diff Threshold:    {config.diff_threshold * 100}%")
    logger.info(f"Time Interval:     {config.time_interval}s")
    logger.info(f"Peer Timeout:      {config.peer_timeout}s")
    logger.info(
        f"Round Timeout:     {config.round_timeout}s"
        if config.round_timeout
        else "Round Timeout:     disabled"
    )
    logger.info(f"Fanout:            {config.fanout}")
    logger.info(f"Source:            {config.source} ({config.pair})")
    logger.info("=" * 60)

    try:
        node = OracleNode(config)
        asyncio.run(node.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except JoinError as e:
        logger.error(f"Startup join failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
