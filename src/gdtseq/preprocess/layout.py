"""
Directory layout of a preprocessing run.

All paths derive from a single working directory:

    <working_path>/
        raw_data/                 raw FASTQ files named in the job array
        reads/                    <fastq_base>_trimmed.fastq.gz
        docs/preQC/               fastqc on raw reads
        docs/postQC/              fastqc on trimmed reads
        docs/fastp/               <ID>.html, <ID>.json
        ref/                      GENCODE v32 GTF + GRCh38 primary assembly
        STAR_idx/                 STAR genome index
        bam/<ID>/                 STAR working prefix per sample
        bam/<ID>.sorted.bam(.bai) final alignments
        data/expr/featureCounts.txt
        jobs_list                 job array file

Any single location can be overridden (e.g. a shared reference directory).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from gdtseq.preprocess.jobs import SampleJob

__all__ = ['PipelineLayout', 'DEFAULT_GTF_NAME', 'DEFAULT_FASTA_NAME']

DEFAULT_GTF_NAME = "gencode.v32.primary_assembly.annotation.gtf"
DEFAULT_FASTA_NAME = "Homo_sapiens.GRCh38.dna.primary_assembly.fa"


@dataclass(frozen=True)
class PipelineLayout:
    """
    Resolved paths for one preprocessing run.

    Only ``working_path`` is required; every other field defaults to its
    location under it when left as None.
    All paths are absolute (relative ones are taken from the current
    directory), so commands run with a different cwd still find them.
    """
    working_path: Path
    gtf: Optional[Path] = None
    fasta: Optional[Path] = None
    star_index: Optional[Path] = None
    jobs_list: Optional[Path] = None
    counts_file: Optional[Path] = None

    def __post_init__(self):
        wp = Path(self.working_path).expanduser().absolute()
        object.__setattr__(self, "working_path", wp)
        defaults = {
            "gtf": wp / "ref" / DEFAULT_GTF_NAME,
            "fasta": wp / "ref" / DEFAULT_FASTA_NAME,
            "star_index": wp / "STAR_idx",
            "jobs_list": wp / "jobs_list",
            "counts_file": wp / "data" / "expr" / "featureCounts.txt",
        }
        for name, default in defaults.items():
            value = getattr(self, name)
            object.__setattr__(self, name, Path(value).expanduser().absolute() if value is not None else default)

    @property
    def raw_reads_dir(self) -> Path:
        return self.working_path / "raw_data"

    @property
    def trimmed_reads_dir(self) -> Path:
        return self.working_path / "reads"

    @property
    def pre_qc_dir(self) -> Path:
        return self.working_path / "docs" / "preQC"

    @property
    def post_qc_dir(self) -> Path:
        return self.working_path / "docs" / "postQC"

    @property
    def fastp_dir(self) -> Path:
        return self.working_path / "docs" / "fastp"

    @property
    def bam_dir(self) -> Path:
        return self.working_path / "bam"

    def raw_fastq(self, job: SampleJob) -> Path:
        return self.raw_reads_dir / job.fastq_file

    def trimmed_fastq(self, job: SampleJob) -> Path:
        return self.trimmed_reads_dir / job.trimmed_name

    def fastp_reports(self, job: SampleJob) -> tuple[Path, Path]:
        """(html, json) fastp report paths for a sample."""
        return (
            self.fastp_dir / f"{job.sample_id}.html",
            self.fastp_dir / f"{job.sample_id}.json",
        )

    def star_prefix(self, job: SampleJob) -> Path:
        return self.bam_dir / job.sample_id

    def star_bam(self, job: SampleJob) -> Path:
        """BAM as written by STAR before renaming."""
        return self.star_prefix(job) / "Aligned.sortedByCoord.out.bam"

    def sorted_bam(self, job: SampleJob) -> Path:
        return self.bam_dir / job.bam_name

    def ensure_dirs(self) -> None:
        """Create every output directory of the run."""
        for d in (
            self.trimmed_reads_dir,
            self.pre_qc_dir,
            self.post_qc_dir,
            self.fastp_dir,
            self.bam_dir,
            self.star_index,
            self.counts_file.parent,
        ):
            d.mkdir(parents=True, exist_ok=True)
