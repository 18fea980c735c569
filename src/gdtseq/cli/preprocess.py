"""
gdtseq preprocess command - per-sample QC, trimming, alignment and indexing.

Run as one task of a scheduler array job (the task id selects the line of
the job array file) or, with --all, over every sample in sequence.

Usage:
    gdtseq preprocess --working-path ~/project/bulk            # task id from $SGE_TASK_ID
    gdtseq preprocess --working-path ~/project/bulk --task-id 3
    gdtseq preprocess --working-path ~/project/bulk --all
"""

import argparse
import logging
from pathlib import Path

from gdtseq.cli._common import add_common_arguments, add_layout_arguments, setup_logging
from gdtseq.cli._validators import _positive_int
from gdtseq.preprocess import (
    JobArrayError,
    StepFailedError,
    ToolNotFoundError,
    ToolRunner,
    process_sample,
    read_job_array,
    resolve_task_id,
    run_all_samples,
    select_job,
)
from gdtseq.preprocess.jobs import TASK_ID_ENV


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the preprocess subcommand."""
    parser = subparsers.add_parser(
        "preprocess",
        help="QC, trim, align and index samples from the job array",
        description="Steps 2-3: fastqc, fastp, STAR and samtools index for one sample (array task) or all samples",
    )
    add_common_arguments(parser)
    add_layout_arguments(parser)
    parser.add_argument("--jobs-list", type=Path, default=None,
                        help="Job array file of 'ID,file_name' lines (default: <working-path>/jobs_list)")

    which = parser.add_mutually_exclusive_group()
    which.add_argument("--task-id", type=_positive_int, default=None,
                       help=f"1-based line of the job array to process (default: ${TASK_ID_ENV})")
    which.add_argument("--all", dest="all_samples", action="store_true",
                       help="Process every sample in sequence")

    parser.add_argument("--skip-qc", action="store_true",
                        help="Skip the fastqc runs before and after trimming")
    parser.set_defaults(func=run_preprocess)


def run_preprocess(args: argparse.Namespace) -> int:
    """Execute the preprocess command."""
    from gdtseq.cli.config import resolve_config

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = resolve_config(args)
        layout = config.layout()
        settings = config.tool_settings()
        jobs = read_job_array(layout.jobs_list)
        if args.all_samples:
            selected = jobs
        else:
            selected = [select_job(jobs, resolve_task_id(args.task_id))]
    except (FileNotFoundError, ValueError) as e:
        # JobArrayError is a ValueError
        print(f"ERROR: {e}")
        return 1

    logger.info(f"{len(selected)} of {len(jobs)} samples selected from {layout.jobs_list}")

    runner = ToolRunner(dry_run=args.dry_run)
    try:
        if args.all_samples:
            bams = run_all_samples(selected, layout, runner, settings)
        else:
            bams = [process_sample(selected[0], layout, runner, settings)]
    except (FileNotFoundError, ToolNotFoundError, StepFailedError, JobArrayError) as e:
        logger.error(f"Preprocessing failed: {e}")
        print(f"ERROR: {e}")
        return 1

    for bam in bams:
        print(f"BAM: {bam}")
    return 0
