"""
Command-line builders for the external preprocessing tools.

Each function returns an argv list and runs nothing. Defaults reproduce the
flags used for the published data set:

    STAR genomeGenerate   --runThreadN 32 --sjdbOverhang 49 (50 bp reads)
    fastqc                -t 16
    fastp                 default adapter trimming, HTML + JSON report
    STAR alignReads       --outFilterScoreMinOverLread 0.3
                          --outFilterMatchNminOverLread 0.3
                          --outFilterMultimapNmax 20
                          --outReadsUnmapped Fastx_failed
                          --outSAMtype BAM SortedByCoordinate
    featureCounts         -T 16 -a <gtf>
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

__all__ = [
    'StarAlignFilters',
    'star_index_command',
    'fastqc_command',
    'fastp_command',
    'star_align_command',
    'samtools_index_command',
    'featurecounts_command',
]


@dataclass(frozen=True)
class StarAlignFilters:
    """STAR alignment filters applied to every sample."""
    score_min_over_lread: float = 0.3
    match_nmin_over_lread: float = 0.3
    multimap_nmax: int = 20
    reads_unmapped: str = "Fastx_failed"


def star_index_command(
    genome_dir: Path,
    fasta: Path,
    gtf: Path,
    threads: int = 32,
    sjdb_overhang: int = 49,
) -> list[str]:
    """STAR genome index generation. ``sjdb_overhang`` should be read length - 1."""
    return [
        "STAR",
        "--runThreadN", str(threads),
        "--runMode", "genomeGenerate",
        "--genomeDir", str(genome_dir),
        "--genomeFastaFiles", str(fasta),
        "--sjdbGTFfile", str(gtf),
        "--sjdbOverhang", str(sjdb_overhang),
    ]


def fastqc_command(fastq: Path, out_dir: Path, threads: int = 16) -> list[str]:
    return ["fastqc", str(fastq), "-o", str(out_dir), "-t", str(threads)]


def fastp_command(
    raw: Path,
    trimmed: Path,
    html_report: Path,
    json_report: Path,
) -> list[str]:
    return [
        "fastp",
        "-i", str(raw),
        "-o", str(trimmed),
        "-h", str(html_report),
        "-j", str(json_report),
    ]


def star_align_command(
    genome_dir: Path,
    reads: Path,
    out_prefix: Path,
    threads: int = 16,
    filters: StarAlignFilters = StarAlignFilters(),
) -> list[str]:
    """
    STAR alignment of one single-end sample into a coordinate-sorted BAM.

    ``out_prefix`` is a directory; STAR writes ``Aligned.sortedByCoord.out.bam``
    inside it. Gzipped input gets ``--readFilesCommand zcat``.
    """
    # STAR concatenates the prefix verbatim, so a directory prefix needs the slash
    prefix = str(out_prefix)
    if not prefix.endswith("/"):
        prefix += "/"

    cmd = [
        "STAR",
        "--runThreadN", str(threads),
        "--runMode", "alignReads",
        "--genomeDir", str(genome_dir),
        "--readFilesIn", str(reads),
        "--outFileNamePrefix", prefix,
        "--outFilterScoreMinOverLread", str(filters.score_min_over_lread),
        "--outFilterMatchNminOverLread", str(filters.match_nmin_over_lread),
        "--outFilterMultimapNmax", str(filters.multimap_nmax),
    ]
    if str(reads).endswith(".gz"):
        cmd += ["--readFilesCommand", "zcat"]
    cmd += [
        "--outReadsUnmapped", filters.reads_unmapped,
        "--outSAMtype", "BAM", "SortedByCoordinate",
    ]
    return cmd


def samtools_index_command(bam: Path) -> list[str]:
    return ["samtools", "index", str(bam)]


def featurecounts_command(
    gtf: Path,
    out_file: Path,
    bams: Sequence[Path | str],
    threads: int = 16,
) -> list[str]:
    """
    featureCounts gene-level counting over all sample BAMs.

    BAMs are passed as given; the runner calls this from inside the BAM
    directory with bare ``<ID>.sorted.bam`` names so that the column headers
    of the count table are the file names, not full paths.
    """
    if not bams:
        raise ValueError("featureCounts needs at least one BAM file")
    return [
        "featureCounts",
        "-T", str(threads),
        "-a", str(gtf),
        "-o", str(out_file),
        *[str(b) for b in bams],
    ]
