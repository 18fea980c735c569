"""
Batch effect removal for log-expression matrices (limma removeBatchEffect).

A linear model with the biological design plus sum-to-zero batch contrasts
is fitted gene by gene, and only the batch component is subtracted. The
biological effects in the design are protected from removal.

The adjusted matrix is meant for visualisation (PCA, heatmaps). Differential
expression keeps batch as a covariate in the model instead.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from gdtseq.core.biomatrix import BioMatrix
from gdtseq.core.quality import QualityFlag
from gdtseq.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = ['sum_contrasts', 'remove_batch_effect', 'BatchCorrection']


def sum_contrasts(batch) -> NDArray[np.float64]:
    """
    Sum-to-zero coding of a factor (R ``contr.sum``).

    Returns:
        (n_samples, n_levels - 1) matrix; the last level is coded -1 in every column
    """
    codes, levels = pd.factorize(pd.Series(batch).astype(str), sort=True)
    n_levels = len(levels)
    if n_levels < 2:
        return np.zeros((len(codes), 0))

    x = np.zeros((len(codes), n_levels - 1))
    for i, code in enumerate(codes):
        if code == n_levels - 1:
            x[i, :] = -1.0
        else:
            x[i, code] = 1.0
    return x


def remove_batch_effect(
    log_expr: NDArray[np.float64],
    batch,
    design: Optional[NDArray[np.float64]] = None,
    batch2=None,
) -> NDArray[np.float64]:
    """
    Remove batch effects from a log-expression matrix.

    Args:
        log_expr: Log-scale expression (genes × samples)
        batch: Batch label per sample
        design: Biological design matrix (samples × p) to protect;
            an intercept column when None
        batch2: Optional second batch factor

    Returns:
        Adjusted matrix, same shape as log_expr

    Raises:
        ValueError: On length mismatches or NaN values
    """
    log_expr = np.asarray(log_expr, dtype=np.float64)
    n_samples = log_expr.shape[1]

    if np.any(np.isnan(log_expr)):
        raise ValueError("log_expr contains NaN values")
    if len(batch) != n_samples:
        raise ValueError(f"batch length ({len(batch)}) != n_samples ({n_samples})")

    x_batch = sum_contrasts(batch)
    if batch2 is not None:
        if len(batch2) != n_samples:
            raise ValueError(f"batch2 length ({len(batch2)}) != n_samples ({n_samples})")
        x_batch = np.hstack([x_batch, sum_contrasts(batch2)])

    if x_batch.shape[1] == 0:
        logger.info("Single batch level; nothing to remove")
        return log_expr.copy()

    if design is None:
        design = np.ones((n_samples, 1))
    design = np.asarray(design, dtype=np.float64)
    if design.shape[0] != n_samples:
        raise ValueError(f"design has {design.shape[0]} rows for {n_samples} samples")

    x = np.hstack([design, x_batch])
    # least squares for all genes at once: y' = X beta'
    beta, _, rank, _ = np.linalg.lstsq(x, log_expr.T, rcond=None)
    if rank < x.shape[1]:
        logger.warning(
            "Batch is partially confounded with the design "
            f"(rank {rank} < {x.shape[1]} columns); adjustment is not unique"
        )

    beta_batch = beta[design.shape[1]:, :]
    return log_expr - (x_batch @ beta_batch).T


def _condition_design(metadata: pd.DataFrame, columns: List[str]) -> NDArray[np.float64]:
    dummies = pd.get_dummies(metadata[columns].astype(str), drop_first=True, dtype=float)
    return np.hstack([np.ones((len(metadata), 1)), dummies.to_numpy()])


class BatchCorrection(Transform):
    """
    Apply :func:`remove_batch_effect` using sample metadata columns.

    Params:
        batch_col: Metadata column holding the batch label
        protect_cols: Metadata columns whose effects must be kept (e.g. ['condition'])

    Examples:
        >>> corrected = BatchCorrection("donor", protect_cols=["condition"]).apply(logcpm)
    """

    def __init__(self, batch_col: str, protect_cols: Optional[List[str]] = None):
        super().__init__(
            name="BatchCorrection",
            params={"batch_col": batch_col, "protect_cols": protect_cols},
        )
        self.batch_col = batch_col
        self.protect_cols = protect_cols or []

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        errors = self.validate(matrix)
        if errors:
            raise ValueError("; ".join(errors))

        meta = matrix.sample_metadata
        design = _condition_design(meta, self.protect_cols) if self.protect_cols else None
        adjusted = remove_batch_effect(matrix.data, meta[self.batch_col].to_numpy(), design=design)

        logger.info(
            f"Removed '{self.batch_col}' effect ({meta[self.batch_col].nunique()} levels), "
            f"protecting {self.protect_cols or 'intercept only'}"
        )
        return matrix.with_data(adjusted, flag=QualityFlag.BATCH_CORRECTED)

    def validate(self, matrix: BioMatrix) -> list[str]:
        errors = super().validate(matrix)
        meta = matrix.sample_metadata
        for col in [self.batch_col, *self.protect_cols]:
            if col not in meta.columns:
                errors.append(f"Column '{col}' not in sample metadata")
            elif meta[col].isna().any():
                errors.append(f"Column '{col}' has missing values")
        if np.any(np.isnan(matrix.data)):
            errors.append("Matrix contains NaN values")
        return errors
