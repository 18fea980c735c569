"""
Principal component analysis of log-expression (DESeq2 plotPCA semantics).

The ``n_top`` most variable genes are selected, centered per gene, and
projected with scikit-learn's PCA. Samples are the observations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

logger = logging.getLogger(__name__)

__all__ = ['PCAResult', 'run_pca']


@dataclass
class PCAResult:
    """
    Attributes:
        scores: Samples × components (columns PC1, PC2, ...)
        explained_variance_ratio: Fraction of variance per component
        loadings: Genes × components for the genes used
        genes_used: Genes entering the decomposition, by decreasing variance
    """
    scores: pd.DataFrame
    explained_variance_ratio: np.ndarray
    loadings: pd.DataFrame
    genes_used: list

    def axis_label(self, i: int) -> str:
        """'PC1 (42.0%)' style label for component i (0-based)."""
        return f"PC{i + 1} ({100 * self.explained_variance_ratio[i]:.1f}%)"


def run_pca(log_expr: pd.DataFrame, n_top: int = 500, n_components: int = 2) -> PCAResult:
    """
    PCA on the most variable genes.

    Args:
        log_expr: Log-expression (genes × samples)
        n_top: Number of highest-variance genes kept; all if fewer
        n_components: Components to compute, capped at min(n_samples, n_genes)

    Raises:
        ValueError: If fewer than 2 samples or no gene with finite values
    """
    if log_expr.shape[1] < 2:
        raise ValueError(f"PCA needs at least 2 samples, got {log_expr.shape[1]}")

    finite = log_expr.loc[np.isfinite(log_expr).all(axis=1)]
    if finite.empty:
        raise ValueError("No gene has finite values in every sample")

    variances = finite.var(axis=1, ddof=1)
    top = variances.sort_values(ascending=False, kind="mergesort").index[:n_top]
    x = finite.loc[top].T.to_numpy(dtype=float)

    n_components = min(n_components, x.shape[0], x.shape[1])
    pca = PCA(n_components=n_components)
    scores = pca.fit_transform(x)

    columns = [f"PC{i + 1}" for i in range(n_components)]
    result = PCAResult(
        scores=pd.DataFrame(scores, index=log_expr.columns, columns=columns),
        explained_variance_ratio=pca.explained_variance_ratio_,
        loadings=pd.DataFrame(pca.components_.T, index=top, columns=columns),
        genes_used=list(top),
    )
    logger.info(
        f"PCA on top {len(top)} variable genes: "
        + ", ".join(result.axis_label(i) for i in range(n_components))
    )
    return result
