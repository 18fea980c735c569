"""
Expression filtering for raw count matrices.

Two filters are provided:

- StratifiedExpressionFilter: keep a gene when it is expressed (CPM above a
  threshold) in a minimum fraction of samples of at least one group. Groups
  come from metadata columns, so condition-specific genes survive.
- filter_by_expression: edgeR ``filterByExpr`` rule, the filter used before
  differential expression in the study's notebook.

Both compute CPM only to decide; the matrices they return still hold counts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
import numpy as np
import pandas as pd

from gdtseq.core.biomatrix import BioMatrix
from gdtseq.core.quality import QualityFlag
from gdtseq.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = [
    'FILTER_METHODS',
    'StratifiedExpressionFilter',
    'ExpressionFilterResult',
    'filter_by_expression',
    'FilterByExpr',
]

FILTER_METHODS = ("filterByExpr", "stratified")


def _cpm(counts: np.ndarray) -> np.ndarray:
    library_sizes = counts.sum(axis=0).astype(float)
    library_sizes[library_sizes == 0] = 1.0
    return counts / library_sizes[None, :] * 1e6


@dataclass
class ExpressionFilterResult:
    """
    Outcome of a stratified filter run.

    ``stratum_stats`` maps each evaluated group to
    ``{"n_samples": ..., "passed": ..., "failed": ...}``; skipped groups
    are absent.
    """
    passed_genes: Set[str]
    failed_genes: Set[str]
    stratum_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    parameters: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_passed(self) -> int:
        return len(self.passed_genes)

    @property
    def n_failed(self) -> int:
        return len(self.failed_genes)

    @property
    def pass_rate(self) -> float:
        n_total = self.n_passed + self.n_failed
        return self.n_passed / n_total if n_total else 0.0


class StratifiedExpressionFilter(Transform):
    """
    Keep genes expressed in enough samples of at least one group.

    A gene is expressed in a sample when its CPM exceeds ``min_cpm``; it
    passes a group of n samples when expressed in ``max(1, int(n *
    min_prevalence))`` of them. Groups are the combinations of the
    ``stratify_by`` columns (all samples form one group when empty), and
    groups smaller than ``min_group_size`` are not evaluated. Kept values
    below the CPM cutoff are flagged LOW_COUNT.

    Examples:
        >>> f = StratifiedExpressionFilter(min_cpm=1.0, min_prevalence=0.5, stratify_by=["condition"])
        >>> filtered = f.apply(counts)
    """

    def __init__(
        self,
        min_cpm: float = 1.0,
        min_prevalence: float = 0.1,
        stratify_by: Optional[List[str]] = None,
        min_group_size: int = 3
    ):
        super().__init__(
            name="StratifiedExpressionFilter",
            params={"min_cpm": min_cpm, "min_prevalence": min_prevalence,
                    "stratify_by": stratify_by, "min_group_size": min_group_size},
        )
        self.min_cpm = min_cpm
        self.min_prevalence = min_prevalence
        self.stratify_by = list(stratify_by or [])
        self.min_group_size = min_group_size

    def _groups(self, matrix: BioMatrix) -> pd.Series:
        if not self.stratify_by:
            return pd.Series("all", index=matrix.sample_ids)
        absent = [c for c in self.stratify_by if c not in matrix.sample_metadata.columns]
        if absent:
            raise ValueError(f"Stratification columns not found in metadata: {absent}")
        return matrix.sample_metadata[self.stratify_by].astype(str).agg("_".join, axis=1)

    def _evaluate(self, matrix: BioMatrix) -> tuple[np.ndarray, Dict[str, Dict[str, int]]]:
        """Boolean keep mask over genes, and per-group counts."""
        expressed = _cpm(matrix.data) > self.min_cpm
        groups = self._groups(matrix)

        keep = np.zeros(matrix.n_features, dtype=bool)
        stats: Dict[str, Dict[str, int]] = {}
        for group, members in groups.groupby(groups, sort=False).groups.items():
            columns = matrix.sample_ids.get_indexer(members)
            n = len(columns)
            if n < self.min_group_size:
                logger.info(f"Group '{group}' has {n} samples (< {self.min_group_size}); not evaluated")
                continue

            passed = expressed[:, columns].sum(axis=1) >= max(1, int(n * self.min_prevalence))
            keep |= passed
            stats[str(group)] = {"n_samples": n, "passed": int(passed.sum()),
                                 "failed": int((~passed).sum())}
            logger.info(f"Group '{group}' (n={n}): {int(passed.sum())} genes expressed")

        if not stats:
            raise ValueError(
                f"No group has at least {self.min_group_size} samples; "
                "lower min_group_size or change stratify_by"
            )
        return keep, stats

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        problems = self.validate(matrix)
        if problems:
            raise ValueError("; ".join(problems))

        keep, _ = self._evaluate(matrix)
        n_kept = int(keep.sum())
        logger.info(
            f"CPM > {self.min_cpm} filter by {self.stratify_by or 'all samples'}: "
            f"{n_kept}/{matrix.n_features} genes kept"
        )
        return _flag_low_counts(matrix.select_features(keep), self.min_cpm)

    def get_passing_genes(self, matrix: BioMatrix) -> ExpressionFilterResult:
        """Which genes pass, per-group counts included; the matrix is not subset."""
        keep, stats = self._evaluate(matrix)
        genes = matrix.feature_ids
        return ExpressionFilterResult(
            passed_genes=set(genes[keep]),
            failed_genes=set(genes[~keep]),
            stratum_stats=stats,
            parameters=dict(self.params),
        )

    def validate(self, matrix: BioMatrix) -> list[str]:
        problems = super().validate(matrix)
        if (matrix.data < 0).any():
            problems.append("Matrix contains negative values; the filter expects raw counts")
        return problems


def _flag_low_counts(matrix: BioMatrix, min_cpm: float) -> BioMatrix:
    low = _cpm(matrix.data) <= min_cpm
    flags = matrix.quality_flags.copy()
    flags[low] |= np.uint32(int(QualityFlag.LOW_COUNT))
    return BioMatrix(matrix.data, matrix.feature_ids, matrix.sample_ids, matrix.sample_metadata, flags)


def filter_by_expression(
    counts: np.ndarray,
    group: Optional[np.ndarray | pd.Series] = None,
    min_count: float = 10,
    min_total_count: float = 15,
    large_n: int = 10,
    min_prop: float = 0.7,
) -> np.ndarray:
    """
    edgeR ``filterByExpr`` keep mask.

    A gene is kept when its CPM reaches ``min_count / median_library_size * 1e6``
    in at least ``n_min`` samples and its total count is at least
    ``min_total_count``. ``n_min`` is the smallest group size; above
    ``large_n`` it grows more slowly, as ``large_n + (n - large_n) * min_prop``.

    Args:
        counts: Raw counts (genes × samples)
        group: Group label per sample; None treats all samples as one group

    Returns:
        Boolean keep mask over genes

    Raises:
        ValueError: If group length does not match the number of samples
    """
    counts = np.asarray(counts, dtype=float)
    n_samples = counts.shape[1]

    if group is None:
        n_min = n_samples
    else:
        group = pd.Series(np.asarray(group))
        if len(group) != n_samples:
            raise ValueError(f"group length ({len(group)}) != n_samples ({n_samples})")
        group_sizes = group.value_counts()
        group_sizes = group_sizes[group_sizes > 0]
        n_min = int(group_sizes.min())

    if n_min > large_n:
        n_min = large_n + (n_min - large_n) * min_prop

    lib_size = counts.sum(axis=0)
    median_lib = np.median(lib_size)
    cpm_cutoff = min_count / median_lib * 1e6 if median_lib > 0 else np.inf

    cpm = _cpm(counts)
    # edgeR compares against n_min - tol
    keep_cpm = (cpm >= cpm_cutoff).sum(axis=1) >= (n_min - 1e-14)
    keep_total = counts.sum(axis=1) >= (min_total_count - 1e-14)
    return keep_cpm & keep_total


class FilterByExpr(Transform):
    """Transform wrapper around :func:`filter_by_expression`."""

    def __init__(self, group_col: Optional[str] = None, min_count: float = 10, min_total_count: float = 15):
        super().__init__(
            name="FilterByExpr",
            params={"group_col": group_col, "min_count": min_count, "min_total_count": min_total_count},
        )
        self.group_col = group_col
        self.min_count = min_count
        self.min_total_count = min_total_count

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        errors = self.validate(matrix)
        if errors:
            raise ValueError("; ".join(errors))

        group = matrix.sample_metadata[self.group_col] if self.group_col else None
        keep = filter_by_expression(
            matrix.data, group, min_count=self.min_count, min_total_count=self.min_total_count
        )
        logger.info(f"filterByExpr: kept {int(keep.sum())}/{matrix.n_features} genes")
        return matrix.select_features(keep)

    def validate(self, matrix: BioMatrix) -> list[str]:
        errors = super().validate(matrix)
        if np.any(matrix.data < 0):
            errors.append("Matrix contains negative values (expected raw counts)")
        if self.group_col and self.group_col not in matrix.sample_metadata.columns:
            errors.append(f"Group column '{self.group_col}' not in sample metadata")
        return errors
