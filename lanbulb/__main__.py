"""
lanbulb command-line client - Entry Point

Run with: python -m lanbulb
"""

import asyncio
import logging
import sys

from lanbulb.cli import build_parser, effective_config, run
from lanbulb.config import load_config
from lanbulb.errors import LanBulbError


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from the event loop
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    try:
        config = effective_config(args, load_config(args.config))
        asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except LanBulbError as e:
        print(f"lanbulb: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
