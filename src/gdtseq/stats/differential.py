"""
Differential expression between conditions.

Two methods share one result format:

- "deseq2": negative-binomial GLM on raw counts (PyDESeq2), design
  ``~ [batch +] condition``, Wald test, DESeq2 independent filtering for padj.
- "limma-trend": per-gene linear model on TMM log-CPM with batch covariates,
  followed by empirical Bayes variance moderation with a mean-variance trend.

Result table columns (one row per gene, sorted by p-value):
    gene_id, base_mean, log2_fold_change, stat, pvalue, padj[, significant]

For limma-trend ``base_mean`` is the average log2 CPM of the gene, since
the model is fitted on that scale.

References:
    - Love et al. (2014) Genome Biology 15:550 (DESeq2)
    - Muzellec et al. (2023) Bioinformatics 39(9):btad547 (PyDESeq2)
    - Law et al. (2014) Genome Biology 15:R29 (limma-trend / voom)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats as scipy_stats

from gdtseq.stats.eb import fit_f_dist, squeeze_var
from gdtseq.stats.normalization import log_cpm, tmm_factors

logger = logging.getLogger(__name__)

__all__ = [
    'DE_COLUMNS',
    'DE_METHODS',
    'Contrast',
    'DEResult',
    'fdr_correction',
    'call_significant',
    'run_deseq2',
    'run_limma_trend',
    'run_differential_expression',
]

DE_COLUMNS = ["gene_id", "base_mean", "log2_fold_change", "stat", "pvalue", "padj"]
DE_METHODS = ("deseq2", "limma-trend")


@dataclass(frozen=True)
class Contrast:
    """Comparison of two levels of the condition column (numerator vs denominator).

    Attributes:
        name: Label used in output file names (e.g. "CD16pos_vs_CD16neg")
        numerator: Condition level on top of the fold change
        denominator: Reference condition level
    """

    name: str
    numerator: str
    denominator: str

    @classmethod
    def from_levels(cls, numerator: str, denominator: str) -> Contrast:
        return cls(f"{numerator}_vs_{denominator}", numerator, denominator)


def fdr_correction(
    pvalues: NDArray[np.float64],
    method: Literal["BH", "BY", "bonferroni"] = "BH",
    alpha: float = 0.05,
) -> NDArray[np.float64]:
    """
    Apply multiple testing correction.

    NaN p-values stay NaN and are excluded from the number of tests.

    Args:
        pvalues: Array of raw p-values.
        method: "BH" (Benjamini-Hochberg), "BY" (Benjamini-Yekutieli) or
            "bonferroni".
        alpha: Significance threshold.

    Returns:
        Array of adjusted p-values.
    """
    from statsmodels.stats.multitest import multipletests

    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid_mask = ~np.isnan(pvalues)
    adj_pvals = np.full_like(pvalues, np.nan)

    if not np.any(valid_mask):
        return adj_pvals

    method_map = {"BH": "fdr_bh", "BY": "fdr_by", "bonferroni": "bonferroni"}
    _, adj_pvals[valid_mask], _, _ = multipletests(
        pvalues[valid_mask],
        alpha=alpha,
        method=method_map.get(method, method),
    )

    return adj_pvals


def call_significant(table: pd.DataFrame, alpha: float = 0.05, min_abs_lfc: float = 1.0) -> pd.DataFrame:
    """Copy of ``table`` with a boolean ``significant`` column (padj < alpha and |LFC| >= min_abs_lfc)."""
    out = table.copy()
    padj = out["padj"].to_numpy(dtype=float)
    lfc = out["log2_fold_change"].to_numpy(dtype=float)
    with np.errstate(invalid="ignore"):
        out["significant"] = (padj < alpha) & (np.abs(lfc) >= min_abs_lfc)
    return out


def _standardize(table: pd.DataFrame) -> pd.DataFrame:
    table = table[DE_COLUMNS]
    return table.sort_values("pvalue", na_position="last", kind="mergesort").reset_index(drop=True)


@dataclass
class DEResult:
    """Differential expression result for one contrast.

    Attributes:
        contrast: The comparison tested
        method: "deseq2" or "limma-trend"
        table: Standardized result table (see module docstring)
        alpha: Adjusted p-value threshold used for ``significant``
        min_abs_lfc: Absolute log2 fold-change threshold used for ``significant``
    """

    contrast: Contrast
    method: str
    table: pd.DataFrame
    alpha: float = 0.05
    min_abs_lfc: float = 1.0

    def __post_init__(self):
        if "significant" not in self.table.columns:
            self.table = call_significant(self.table, self.alpha, self.min_abs_lfc)

    @property
    def up(self) -> pd.DataFrame:
        return self.table[self.table["significant"] & (self.table["log2_fold_change"] > 0)]

    @property
    def down(self) -> pd.DataFrame:
        return self.table[self.table["significant"] & (self.table["log2_fold_change"] < 0)]

    def summary(self) -> dict:
        return {
            "contrast": self.contrast.name,
            "numerator": self.contrast.numerator,
            "denominator": self.contrast.denominator,
            "method": self.method,
            "n_tested": int(self.table["pvalue"].notna().sum()),
            "n_up": len(self.up),
            "n_down": len(self.down),
            "alpha": self.alpha,
            "min_abs_lfc": self.min_abs_lfc,
        }


def _check_design(metadata: pd.DataFrame, condition_col: str, contrast: Contrast, batch_col: str | None):
    for col in [condition_col] + ([batch_col] if batch_col else []):
        if col not in metadata.columns:
            raise ValueError(f"Column '{col}' not in sample metadata {list(metadata.columns)}")
        if metadata[col].isna().any():
            raise ValueError(f"Column '{col}' has missing values")

    levels = set(metadata[condition_col].astype(str))
    for level in (contrast.numerator, contrast.denominator):
        if level not in levels:
            raise ValueError(
                f"Contrast {contrast.name}: level '{level}' not found in '{condition_col}' {sorted(levels)}"
            )
    if contrast.numerator == contrast.denominator:
        raise ValueError(f"Contrast {contrast.name} compares '{contrast.numerator}' with itself")


def run_deseq2(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    condition_col: str,
    contrast: Contrast,
    batch_col: str | None = None,
    n_cpus: int = 1,
) -> pd.DataFrame:
    """
    DESeq2 Wald test with PyDESeq2.

    Args:
        counts: Raw integer counts (genes × samples)
        metadata: Sample annotations indexed by sample id
        condition_col: Column holding the condition levels
        contrast: Numerator and denominator levels
        batch_col: Optional batch column added to the design
        n_cpus: Worker processes for PyDESeq2

    Returns:
        Standardized DE table

    Raises:
        ValueError: On missing columns/levels or non-integer counts
    """
    try:
        from pydeseq2.dds import DeseqDataSet
        from pydeseq2.default_inference import DefaultInference
        from pydeseq2.ds import DeseqStats
    except ImportError:
        raise ImportError(
            "pydeseq2 is required for the deseq2 method. "
            "Install with: pip install pydeseq2"
        )

    _check_design(metadata, condition_col, contrast, batch_col)
    if not np.allclose(counts.to_numpy(), np.round(counts.to_numpy())):
        raise ValueError("DESeq2 requires raw integer counts")

    meta = metadata.loc[counts.columns, [condition_col] + ([batch_col] if batch_col else [])].astype(str)
    design = f"~{batch_col} + {condition_col}" if batch_col else f"~{condition_col}"
    logger.info(f"DESeq2 {contrast.name}: design '{design}', {counts.shape[0]} genes, {counts.shape[1]} samples")

    inference = DefaultInference(n_cpus=n_cpus)
    dds = DeseqDataSet(
        counts=counts.T.round().astype(int),  # PyDESeq2 expects samples x genes
        metadata=meta,
        design=design,
        refit_cooks=True,
        inference=inference,
        quiet=True,
    )
    dds.deseq2()

    stat_res = DeseqStats(
        dds,
        contrast=[condition_col, contrast.numerator, contrast.denominator],
        inference=inference,
        quiet=True,
    )
    stat_res.summary()
    res = stat_res.results_df

    table = pd.DataFrame({
        "gene_id": res.index.astype(str),
        "base_mean": res["baseMean"].to_numpy(),
        "log2_fold_change": res["log2FoldChange"].to_numpy(),
        "stat": res["stat"].to_numpy(),
        "pvalue": res["pvalue"].to_numpy(),
        "padj": res["padj"].to_numpy(),
    })
    return _standardize(table)


def _limma_design(
    metadata: pd.DataFrame,
    condition_col: str,
    contrast: Contrast,
    batch_col: str | None,
) -> tuple[NDArray[np.float64], int]:
    """Treatment-coded design with the contrast denominator as reference level.

    Returns the design and the column index of the numerator coefficient.
    """
    condition = metadata[condition_col].astype(str)
    others = sorted(set(condition) - {contrast.denominator})
    columns = [np.ones(len(metadata))]
    columns += [(condition == level).to_numpy(dtype=float) for level in others]
    coef = 1 + others.index(contrast.numerator)

    if batch_col:
        batch = pd.get_dummies(metadata[batch_col].astype(str), drop_first=True, dtype=float)
        columns += [batch[c].to_numpy() for c in batch.columns]

    return np.column_stack(columns), coef


def run_limma_trend(
    log_expr: pd.DataFrame,
    metadata: pd.DataFrame,
    condition_col: str,
    contrast: Contrast,
    batch_col: str | None = None,
) -> pd.DataFrame:
    """
    limma-trend moderated t-test on log-CPM values.

    Per-gene OLS ``y ~ condition [+ batch]`` over all samples, then the
    residual variances are squeezed toward a trend over average expression
    (``fit_f_dist`` with covariate, ``squeeze_var``). P-values come from the
    moderated t with ``d0 + df_residual`` degrees of freedom and are
    BH-adjusted.

    Args:
        log_expr: log2 CPM (genes × samples)
        metadata: Sample annotations indexed by sample id

    Raises:
        ValueError: On missing columns/levels or a rank-deficient design
    """
    _check_design(metadata, condition_col, contrast, batch_col)
    meta = metadata.loc[log_expr.columns]
    x, coef = _limma_design(meta, condition_col, contrast, batch_col)
    n_samples, n_params = x.shape

    if np.linalg.matrix_rank(x) < n_params:
        raise ValueError(
            f"Design matrix is rank deficient ({n_params} columns); "
            f"'{batch_col}' may be confounded with '{condition_col}'"
        )
    df_resid = n_samples - n_params
    if df_resid < 1:
        raise ValueError(f"No residual degrees of freedom ({n_samples} samples, {n_params} parameters)")

    y = log_expr.to_numpy(dtype=float)
    xtx_inv = np.linalg.inv(x.T @ x)
    beta = y @ x @ xtx_inv  # genes x params
    resid = y - beta @ x.T
    sigma2 = np.sum(resid ** 2, axis=1) / df_resid
    stdev_unscaled = np.sqrt(xtx_inv[coef, coef])

    amean = y.mean(axis=1)
    d0, s0_sq = fit_f_dist(sigma2, df_resid, covariate=amean)
    s2_post, df_total = squeeze_var(sigma2, df_resid, d0, s0_sq)
    logger.info(f"limma-trend {contrast.name}: prior df {d0:.2f}, residual df {df_resid}")

    lfc = beta[:, coef]
    t_mod = lfc / (np.sqrt(s2_post) * stdev_unscaled)
    pvalue = 2.0 * scipy_stats.t.sf(np.abs(t_mod), df_total)

    table = pd.DataFrame({
        "gene_id": log_expr.index.astype(str),
        "base_mean": amean,
        "log2_fold_change": lfc,
        "stat": t_mod,
        "pvalue": pvalue,
        "padj": fdr_correction(pvalue),
    })
    return _standardize(table)


def run_differential_expression(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    condition_col: str,
    contrast: Contrast,
    method: str = "deseq2",
    batch_col: str | None = None,
    log_expr: pd.DataFrame | None = None,
    alpha: float = 0.05,
    min_abs_lfc: float = 1.0,
    n_cpus: int = 1,
) -> DEResult:
    """
    Run one contrast with the chosen method.

    Args:
        counts: Raw counts (genes × samples); used directly by deseq2 and
            converted to TMM log-CPM for limma-trend when ``log_expr`` is None
        log_expr: Precomputed log-CPM for limma-trend

    Raises:
        ValueError: For an unknown method
    """
    if method == "deseq2":
        table = run_deseq2(counts, metadata, condition_col, contrast, batch_col=batch_col, n_cpus=n_cpus)
    elif method == "limma-trend":
        if log_expr is None:
            log_expr = pd.DataFrame(
                log_cpm(counts.to_numpy(), norm_factors=tmm_factors(counts.to_numpy())),
                index=counts.index,
                columns=counts.columns,
            )
        table = run_limma_trend(log_expr, metadata, condition_col, contrast, batch_col=batch_col)
    else:
        raise ValueError(f"Unknown DE method '{method}'; choose from {DE_METHODS}")

    result = DEResult(contrast=contrast, method=method, table=table, alpha=alpha, min_abs_lfc=min_abs_lfc)
    summary = result.summary()
    logger.info(
        f"{contrast.name} ({method}): {summary['n_up']} up, {summary['n_down']} down "
        f"of {summary['n_tested']} tested (padj < {alpha}, |LFC| >= {min_abs_lfc})"
    )
    return result
