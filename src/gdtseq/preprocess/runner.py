"""
Execution of the preprocessing steps.

The steps are a straight chain of external tools; nothing is retried or
scheduled here. A failing tool raises StepFailedError and the run stops,
leaving earlier outputs in place for inspection.

    step 1  build_star_index   STAR genomeGenerate (once)
    step 2  process_sample     fastqc -> fastp -> fastqc          (per task)
    step 3                     STAR align -> rename BAM -> samtools index
    step 4  quantify           featureCounts over all sample BAMs (once)

Examples:
    >>> runner = ToolRunner(dry_run=True)
    >>> layout = PipelineLayout(Path("~/project/bulk"))
    >>> job = select_job(read_job_array(layout.jobs_list), resolve_task_id())
    >>> bam = process_sample(job, layout, runner, ToolSettings())
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from gdtseq.preprocess.commands import (
    StarAlignFilters,
    fastp_command,
    fastqc_command,
    featurecounts_command,
    samtools_index_command,
    star_align_command,
    star_index_command,
)
from gdtseq.preprocess.jobs import SampleJob
from gdtseq.preprocess.layout import PipelineLayout

logger = logging.getLogger(__name__)

__all__ = [
    'ToolNotFoundError',
    'StepFailedError',
    'ToolSettings',
    'StepRecord',
    'ToolRunner',
    'build_star_index',
    'process_sample',
    'quantify',
    'run_all_samples',
]


class ToolNotFoundError(RuntimeError):
    """A required executable is not on PATH."""


class StepFailedError(RuntimeError):
    """An external tool exited with a non-zero status."""

    def __init__(self, step: str, cmd: Sequence[str], returncode: int):
        self.step = step
        self.cmd = list(cmd)
        self.returncode = returncode
        super().__init__(f"{step} failed with exit code {returncode}: {' '.join(self.cmd)}")


@dataclass(frozen=True)
class ToolSettings:
    """Thread counts and tool parameters for a run."""
    index_threads: int = 32
    threads: int = 16
    qc_threads: int = 16
    sjdb_overhang: int = 49
    run_qc: bool = True
    star_filters: StarAlignFilters = field(default_factory=StarAlignFilters)


@dataclass(frozen=True)
class StepRecord:
    step: str
    cmd: tuple[str, ...]
    cwd: Optional[Path] = None
    executed: bool = True


class ToolRunner:
    """
    Runs external commands with logging and strict error checking.

    In dry-run mode commands are logged and recorded but not executed and
    no PATH lookups are made, which is how a run can be previewed on a
    login node without the tools loaded.

    Attributes:
        dry_run: Log commands instead of running them
        history: Every step passed to run(), in order
    """

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.history: list[StepRecord] = []

    def require(self, exe: str) -> Optional[str]:
        """Resolve an executable on PATH or raise ToolNotFoundError."""
        if self.dry_run:
            return None
        path = shutil.which(exe)
        if not path:
            raise ToolNotFoundError(f"'{exe}' not found in PATH")
        return path

    def run(self, step: str, cmd: Sequence[str], cwd: Optional[Path] = None) -> None:
        """
        Run one tool invocation.

        Raises:
            ToolNotFoundError: If cmd[0] is not on PATH
            StepFailedError: If the tool exits non-zero
        """
        cmd = [str(c) for c in cmd]
        self.require(cmd[0])

        prefix = "[dry-run] " if self.dry_run else ""
        where = f" (cwd={cwd})" if cwd else ""
        logger.info(f"{prefix}{step}: $ {' '.join(cmd)}{where}")

        self.history.append(
            StepRecord(step=step, cmd=tuple(cmd), cwd=cwd, executed=not self.dry_run)
        )
        if self.dry_run:
            return

        try:
            subprocess.run(cmd, cwd=str(cwd) if cwd else None, check=True)
        except subprocess.CalledProcessError as e:
            raise StepFailedError(step, cmd, e.returncode) from e

        logger.info(f"{step} Finished")


def build_star_index(
    layout: PipelineLayout,
    runner: ToolRunner,
    settings: ToolSettings = ToolSettings(),
) -> Path:
    """
    Step 1: build the STAR genome index from the reference FASTA and GTF.

    Returns:
        The index directory

    Raises:
        FileNotFoundError: If the FASTA or GTF is missing (not checked in dry run)
    """
    if not runner.dry_run:
        for ref in (layout.fasta, layout.gtf):
            if not ref.exists():
                raise FileNotFoundError(f"Reference file not found: {ref}")
        layout.star_index.mkdir(parents=True, exist_ok=True)

    runner.run(
        "STAR index",
        star_index_command(
            genome_dir=layout.star_index,
            fasta=layout.fasta,
            gtf=layout.gtf,
            threads=settings.index_threads,
            sjdb_overhang=settings.sjdb_overhang,
        ),
    )
    return layout.star_index


def process_sample(
    job: SampleJob,
    layout: PipelineLayout,
    runner: ToolRunner,
    settings: ToolSettings = ToolSettings(),
) -> Path:
    """
    Steps 2 and 3 for a single sample: QC, trimming, alignment, indexing.

    Returns:
        Path of the indexed ``<ID>.sorted.bam``

    Raises:
        FileNotFoundError: If the raw FASTQ or the STAR BAM is missing
        StepFailedError: If any tool fails
    """
    raw = layout.raw_fastq(job)
    trimmed = layout.trimmed_fastq(job)
    html_report, json_report = layout.fastp_reports(job)
    final_bam = layout.sorted_bam(job)

    logger.info(f"Processing sample {job.sample_id}: raw file {raw}")

    if not runner.dry_run:
        if not raw.exists():
            raise FileNotFoundError(f"Raw FASTQ not found for {job.sample_id}: {raw}")
        layout.ensure_dirs()
        layout.star_prefix(job).mkdir(parents=True, exist_ok=True)

    if settings.run_qc:
        runner.run("preQC", fastqc_command(raw, layout.pre_qc_dir, settings.qc_threads))

    runner.run("fastp", fastp_command(raw, trimmed, html_report, json_report))

    if settings.run_qc:
        runner.run("postQC", fastqc_command(trimmed, layout.post_qc_dir, settings.qc_threads))

    runner.run(
        "STAR align",
        star_align_command(
            genome_dir=layout.star_index,
            reads=trimmed,
            out_prefix=layout.star_prefix(job),
            threads=settings.threads,
            filters=settings.star_filters,
        ),
    )

    star_bam = layout.star_bam(job)
    if runner.dry_run:
        logger.info(f"[dry-run] move {star_bam} -> {final_bam}")
    else:
        if not star_bam.exists():
            raise FileNotFoundError(f"STAR did not produce {star_bam}")
        shutil.move(str(star_bam), str(final_bam))

    runner.run("samtools index", samtools_index_command(final_bam))
    logger.info(f"Alignment and bam index Finished for {job.sample_id}")
    return final_bam


def quantify(
    jobs: Sequence[SampleJob],
    layout: PipelineLayout,
    runner: ToolRunner,
    settings: ToolSettings = ToolSettings(),
) -> Path:
    """
    Step 4: featureCounts over every ``<ID>.sorted.bam`` in job array order.

    Runs inside the BAM directory so the count table columns are named
    ``<ID>.sorted.bam``.

    Returns:
        Path of the featureCounts output table

    Raises:
        FileNotFoundError: If any sample BAM is missing (not checked in dry run)
    """
    bam_names = [job.bam_name for job in jobs]

    if not runner.dry_run:
        missing = [name for name in bam_names if not (layout.bam_dir / name).exists()]
        if missing:
            raise FileNotFoundError(
                f"{len(missing)} BAM file(s) missing in {layout.bam_dir}: {missing[:5]}"
            )
        layout.counts_file.parent.mkdir(parents=True, exist_ok=True)

    runner.run(
        "featureCounts",
        featurecounts_command(
            gtf=layout.gtf,
            out_file=layout.counts_file,
            bams=bam_names,
            threads=settings.threads,
        ),
        cwd=layout.bam_dir,
    )
    return layout.counts_file


def run_all_samples(
    jobs: Sequence[SampleJob],
    layout: PipelineLayout,
    runner: ToolRunner,
    settings: ToolSettings = ToolSettings(),
) -> list[Path]:
    """
    Process every sample in sequence, for machines without an array scheduler.

    Stops at the first failing sample.
    """
    bams = []
    for i, job in enumerate(jobs, start=1):
        logger.info(f"Sample {i}/{len(jobs)}: {job.sample_id}")
        bams.append(process_sample(job, layout, runner, settings))
    return bams
