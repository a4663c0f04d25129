"""
Run the indexer from environment variables.

    python -m pnsindex [--dotenv .env] [--resync-from BLOCK] [--no-create-tables]
"""

import argparse
import logging

from pnsindex.core.config import IndexerConfig
from pnsindex.core.event_indexer import EventIndexer
from pnsindex.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


def main(argv=None):
    parser = argparse.ArgumentParser(description="PNS name registry event indexer")
    parser.add_argument("--dotenv", default=None, help="Path to a .env file")
    parser.add_argument(
        "--resync-from",
        type=int,
        default=None,
        metavar="BLOCK",
        help="Rescan from BLOCK to the chain head once and exit",
    )
    parser.add_argument(
        "--create-tables",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Create missing projection tables on startup",
    )
    args = parser.parse_args(argv)

    config = IndexerConfig.create_instance_from_env(args.dotenv)
    indexer = EventIndexer.create_instance_from_config(
        config, create_tables=args.create_tables
    )

    if args.resync_from is not None:
        indexer.resync_from_block(args.resync_from)
        return

    indexer.start()
    try:
        # The timer thread is a daemon; keep the main thread alive.
        while indexer.is_running:
            indexer.wait(config.scan_interval_seconds)
    except KeyboardInterrupt:
        _LOG.info("Interrupted, stopping indexer")
    finally:
        indexer.stop()


if __name__ == "__main__":
    main()
