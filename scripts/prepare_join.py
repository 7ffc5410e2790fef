#!/usr/bin/env python3
"""
ClusterJoin Prepare-Join Script
Runs the join decision before the consensus engine starts and prints its initial-cluster settings
"""

import argparse
import asyncio
import logging
import os
import sys

from clusterjoin import JoinError, load_config, prepare_join

logger = logging.getLogger("prepare_join")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Decide whether this node must join an existing cluster")
    parser.add_argument('--config', default=os.getenv('CLUSTERJOIN_CONFIG'),
                        help="YAML configuration file (default: $CLUSTERJOIN_CONFIG)")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Main entry point"""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except JoinError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        outcome = await prepare_join(config)
    except JoinError as e:
        logger.error(f"Prepare join failed: {e}")
        return 1

    if outcome.is_empty:
        logger.info("Nothing to join, starting with the configured cluster settings")

    state = outcome.cluster_state.value if outcome.cluster_state else ""
    print(f"initial-cluster={outcome.initial_cluster}")
    print(f"initial-cluster-state={state}")
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
