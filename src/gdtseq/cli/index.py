"""
gdtseq index command - STAR genome index.

Usage:
    gdtseq index --working-path ~/project/bulk
"""

import argparse
import logging

from gdtseq.cli._common import add_common_arguments, add_layout_arguments, setup_logging
from gdtseq.cli._validators import _positive_int
from gdtseq.preprocess import StepFailedError, ToolNotFoundError, ToolRunner, build_star_index


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the index subcommand."""
    parser = subparsers.add_parser(
        "index",
        help="Build the STAR genome index",
        description="Step 1: STAR genomeGenerate from the reference FASTA and GTF",
    )
    add_common_arguments(parser)
    add_layout_arguments(parser)
    parser.add_argument("--index-threads", type=_positive_int, default=32,
                        help="Threads for genomeGenerate (default: 32)")
    parser.set_defaults(func=run_index)


def run_index(args: argparse.Namespace) -> int:
    """Execute the index command."""
    from gdtseq.cli.config import resolve_config

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = resolve_config(args)
        layout = config.layout()
        settings = config.tool_settings()
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    runner = ToolRunner(dry_run=args.dry_run)
    try:
        index_dir = build_star_index(layout, runner, settings)
    except (FileNotFoundError, ToolNotFoundError, StepFailedError) as e:
        logger.error(f"STAR index failed: {e}")
        print(f"ERROR: {e}")
        return 1

    print(f"STAR index: {index_dir}")
    return 0
