"""
gdtseq quantify command - featureCounts over every sample BAM.

Usage:
    gdtseq quantify --working-path ~/project/bulk
"""

import argparse
import logging
from pathlib import Path

from gdtseq.cli._common import add_common_arguments, add_layout_arguments, setup_logging
from gdtseq.io.loaders import read_featurecounts_summary
from gdtseq.preprocess import StepFailedError, ToolNotFoundError, ToolRunner, quantify, read_job_array


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the quantify subcommand."""
    parser = subparsers.add_parser(
        "quantify",
        help="Count reads per gene with featureCounts",
        description="Step 4: featureCounts over <ID>.sorted.bam for every job array sample, in job array order",
    )
    add_common_arguments(parser)
    add_layout_arguments(parser)
    parser.add_argument("--jobs-list", type=Path, default=None,
                        help="Job array file of 'ID,file_name' lines (default: <working-path>/jobs_list)")
    parser.add_argument("--counts-file", type=Path, default=None,
                        help="featureCounts output (default: <working-path>/data/expr/featureCounts.txt)")
    parser.set_defaults(func=run_quantify)


def _log_assignment(counts_file: Path, logger: logging.Logger) -> None:
    summary_path = counts_file.with_name(counts_file.name + ".summary")
    if not summary_path.exists():
        return
    summary = read_featurecounts_summary(summary_path)
    if "Assigned" not in summary.index:
        return
    rate = summary.loc["Assigned"] / summary.sum(axis=0)
    for sample, value in rate.items():
        logger.info(f"  {sample}: {value:.1%} reads assigned")
    low = rate[rate < 0.5]
    if len(low) > 0:
        logger.warning(f"{len(low)} sample(s) with < 50% assigned reads: {list(low.index)}")


def run_quantify(args: argparse.Namespace) -> int:
    """Execute the quantify command."""
    from gdtseq.cli.config import resolve_config

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = resolve_config(args)
        layout = config.layout()
        settings = config.tool_settings()
        jobs = read_job_array(layout.jobs_list)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    runner = ToolRunner(dry_run=args.dry_run)
    try:
        counts_file = quantify(jobs, layout, runner, settings)
    except (FileNotFoundError, ToolNotFoundError, StepFailedError) as e:
        logger.error(f"featureCounts failed: {e}")
        print(f"ERROR: {e}")
        return 1

    if not runner.dry_run:
        _log_assignment(counts_file, logger)

    print(f"Counts: {counts_file}")
    return 0
