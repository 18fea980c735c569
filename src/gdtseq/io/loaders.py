"""
Loaders for count tables and sample annotations.

featureCounts output layout:

    # Program:featureCounts v2.0.1; Command:"featureCounts" "-T" "16" ...
    Geneid  Chr  Start  End  Strand  Length  Number5.sorted.bam  Number6.sorted.bam
    ENSG00000223972.5  chr1;chr1  11869;12010  12227;12057  +;+  1735  0  2

The annotation columns are dropped (Length is kept aside as gene lengths)
and sample columns are renamed to the job array ID by stripping the BAM
directory and the ``.sorted.bam`` suffix.

Plain CSV/TSV count matrices (first column gene id, one column per sample)
are accepted too; the delimiter is sniffed.
"""

from __future__ import annotations

import csv
import warnings
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from gdtseq.core.biomatrix import BioMatrix

__all__ = [
    'FEATURECOUNTS_ANNOTATION_COLUMNS',
    'sniff_delimiter',
    'is_featurecounts_table',
    'read_featurecounts',
    'read_featurecounts_summary',
    'load_counts',
    'load_sample_metadata',
    'build_count_matrix',
]

FEATURECOUNTS_ANNOTATION_COLUMNS = ["Chr", "Start", "End", "Strand", "Length"]


def sniff_delimiter(path: Path, sample_size: int = 8192) -> str:
    """
    Auto-detect delimiter from file content.

    Uses Python's csv.Sniffer with a first-line count fallback.

    Raises:
        ValueError: If delimiter cannot be determined
    """
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        sample = "".join(line for line in f.read(sample_size).splitlines(True)
                         if not line.startswith("#"))

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters='\t,;')
        return dialect.delimiter
    except csv.Error:
        pass

    first_line = sample.split('\n')[0]
    counts = {
        '\t': first_line.count('\t'),
        ',': first_line.count(','),
        ';': first_line.count(';'),
    }

    if max(counts.values()) == 0:
        raise ValueError(f"Could not detect delimiter in {path}")

    return max(counts, key=counts.get)


def is_featurecounts_table(path: Path) -> bool:
    """True if the first non-comment line looks like a featureCounts header."""
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        for line in f:
            if line.startswith("#") or not line.strip():
                continue
            header = line.rstrip("\n").split("\t")
            return header[:1] == ["Geneid"] and all(
                col in header for col in FEATURECOUNTS_ANNOTATION_COLUMNS
            )
    return False


def _sample_name(column: str, strip_suffix: str) -> str:
    name = Path(column).name
    if strip_suffix and name.endswith(strip_suffix):
        name = name[: -len(strip_suffix)]
    return name


def read_featurecounts(
    path: Path,
    strip_suffix: str = ".sorted.bam",
) -> tuple[pd.DataFrame, pd.Series]:
    """
    Read a featureCounts gene count table.

    Args:
        path: featureCounts ``-o`` output
        strip_suffix: Suffix removed from BAM column names to get sample IDs

    Returns:
        (counts, lengths): integer counts (genes × samples) indexed by Geneid,
        and gene lengths in bp indexed the same way

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the table lacks the featureCounts columns or has no samples
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"featureCounts table not found: {path}")

    df = pd.read_csv(path, sep="\t", comment="#", index_col=0)

    missing = [c for c in FEATURECOUNTS_ANNOTATION_COLUMNS if c not in df.columns]
    if df.index.name != "Geneid" or missing:
        raise ValueError(
            f"{path} is not a featureCounts table "
            f"(index {df.index.name!r}, missing columns {missing})"
        )

    lengths = df["Length"].astype(int)
    counts = df.drop(columns=FEATURECOUNTS_ANNOTATION_COLUMNS)
    if counts.shape[1] == 0:
        raise ValueError(f"featureCounts table has no sample columns: {path}")

    renamed = [_sample_name(c, strip_suffix) for c in counts.columns]
    if len(set(renamed)) != len(renamed):
        raise ValueError(f"Sample names collide after stripping '{strip_suffix}': {renamed}")
    counts.columns = pd.Index(renamed)
    counts.index.name = "gene_id"
    lengths.index.name = "gene_id"

    return counts.astype(np.int64), lengths


def read_featurecounts_summary(path: Path, strip_suffix: str = ".sorted.bam") -> pd.DataFrame:
    """
    Read the ``.summary`` table featureCounts writes next to its output.

    Returns:
        DataFrame indexed by assignment status (Assigned, Unassigned_NoFeatures, ...)
        with one column per sample; all-zero status rows are dropped.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"featureCounts summary not found: {path}")

    df = pd.read_csv(path, sep="\t", index_col=0)
    df.columns = pd.Index([_sample_name(c, strip_suffix) for c in df.columns])
    return df.loc[df.sum(axis=1) > 0]


def load_counts(path: Path, strip_suffix: str = ".sorted.bam") -> pd.DataFrame:
    """
    Load a count matrix from featureCounts output or a plain CSV/TSV.

    Duplicate gene or sample IDs are warned about and the first occurrence kept.

    Returns:
        DataFrame (genes × samples) of non-negative counts

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the table is empty, non-numeric or has negative values
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Count file not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    if is_featurecounts_table(path):
        counts, _ = read_featurecounts(path, strip_suffix=strip_suffix)
        return counts

    try:
        df = pd.read_csv(path, sep=sniff_delimiter(path), index_col=0, comment="#")
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Count file is empty: {path}") from e

    if df.shape[0] == 0 or df.shape[1] == 0:
        raise ValueError(f"Count file contains no data: {path}")

    if df.index.duplicated().any():
        warnings.warn(
            f"Found {df.index.duplicated().sum()} duplicate gene IDs. "
            "Using first occurrence of each.",
            UserWarning,
        )
        df = df[~df.index.duplicated(keep='first')]

    if df.columns.duplicated().any():
        warnings.warn(
            f"Found {df.columns.duplicated().sum()} duplicate sample IDs. "
            "Using first occurrence of each.",
            UserWarning,
        )
        df = df.loc[:, ~df.columns.duplicated(keep='first')]

    non_numeric = [c for c in df.columns if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(f"Count file has non-numeric sample columns: {non_numeric[:5]}")

    if df.isna().any().any():
        raise ValueError(f"Count file contains {int(df.isna().sum().sum())} missing values: {path}")
    if (df < 0).any().any():
        raise ValueError(f"Count file contains negative values: {path}")

    df.index = df.index.astype(str)
    df.index.name = "gene_id"
    return df


def load_sample_metadata(path: Path, sample_col: Optional[str] = None) -> pd.DataFrame:
    """
    Load a sample annotation table (CSV or TSV).

    Args:
        path: Annotation file, one row per sample
        sample_col: Column holding sample IDs; defaults to the first column

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If sample IDs are duplicated or sample_col is absent
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Metadata file not found: {path}")

    df = pd.read_csv(path, sep=sniff_delimiter(path), dtype=str)
    if sample_col is None:
        sample_col = df.columns[0]
    elif sample_col not in df.columns:
        raise ValueError(f"Sample column '{sample_col}' not in metadata columns {list(df.columns)}")

    df[sample_col] = df[sample_col].str.strip()
    if df[sample_col].duplicated().any():
        dups = df.loc[df[sample_col].duplicated(), sample_col].tolist()
        raise ValueError(f"Duplicate sample IDs in metadata: {dups[:5]}")

    return df.set_index(sample_col)


def build_count_matrix(counts: pd.DataFrame, metadata: pd.DataFrame) -> BioMatrix:
    """
    Align counts and annotations on sample ID and wrap them in a BioMatrix.

    Samples present in only one of the two tables are dropped with a warning;
    count column order is preserved.

    Raises:
        ValueError: If no sample is shared between the two tables
    """
    shared = [s for s in counts.columns if s in metadata.index]
    if not shared:
        raise ValueError(
            "No overlap between count columns and metadata sample IDs "
            f"(counts: {list(counts.columns[:5])}, metadata: {list(metadata.index[:5])})"
        )

    only_counts = [s for s in counts.columns if s not in metadata.index]
    only_meta = [s for s in metadata.index if s not in counts.columns]
    if only_counts:
        warnings.warn(f"Dropping {len(only_counts)} samples without metadata: {only_counts}", UserWarning)
    if only_meta:
        warnings.warn(f"Ignoring {len(only_meta)} metadata rows without counts: {only_meta}", UserWarning)

    return BioMatrix.from_dataframe(counts[shared], metadata.loc[shared])
