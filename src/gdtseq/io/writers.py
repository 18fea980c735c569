"""
CSV writers for matrices and result tables.

Matrices are written genes × samples with the gene id as first column.
Quality flags go to a sibling ``.flags.csv`` when requested, so reviewers
can see which values were normalized or batch adjusted.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from gdtseq.core.biomatrix import BioMatrix

logger = logging.getLogger(__name__)

__all__ = ['write_matrix', 'write_table', 'write_json']


def _prepare(path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def write_matrix(matrix: BioMatrix, path: Path, write_quality_flags: bool = False) -> Path:
    """
    Write a BioMatrix to CSV.

    Args:
        matrix: Matrix to write
        path: Output CSV path; flags go to ``<stem>.flags.csv`` beside it
        write_quality_flags: Also write the quality flag matrix

    Raises:
        TypeError: If matrix is not a BioMatrix
        ValueError: If matrix is empty
    """
    if not isinstance(matrix, BioMatrix):
        raise TypeError(f"matrix must be BioMatrix, got {type(matrix)}")
    if matrix.data.size == 0:
        raise ValueError("Cannot write empty matrix")

    path = _prepare(path)
    df = matrix.to_dataframe()
    df.index.name = "gene_id"
    df.to_csv(path)
    logger.info(f"Wrote {matrix.n_features} x {matrix.n_samples} matrix to {path}")

    if write_quality_flags:
        flags = pd.DataFrame(matrix.quality_flags, index=df.index, columns=df.columns)
        flags_path = path.with_name(f"{path.stem}.flags.csv")
        flags.to_csv(flags_path)
        logger.info(f"Wrote quality flags to {flags_path}")

    return path


def write_table(df: pd.DataFrame, path: Path, index: bool = False) -> Path:
    """Write a result table to CSV, creating parent directories."""
    path = _prepare(path)
    df.to_csv(path, index=index)
    logger.info(f"Wrote {len(df)} rows to {path}")
    return path


def write_json(payload: dict[str, Any], path: Path) -> Path:
    path = _prepare(path)
    with open(path, "w") as f:
        json.dump(payload, f, indent=2, default=str)
    return path
