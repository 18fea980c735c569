"""
Library-size normalization for RNA-seq counts.

Implements the edgeR and DESeq2 scaling approaches used by the analysis:
- CPM / log-CPM: counts per million with edgeR's prior-count handling
- TMM: trimmed mean of M-values (edgeR calcNormFactors, method="TMM")
- Median of ratios: DESeq2 estimateSizeFactors

Every method assumes most genes are not differentially expressed, so
between-sample differences in the bulk of the distribution reflect
sequencing depth and composition rather than biology.

References:
    - Robinson & Oshlack (2010) Genome Biology 11:R25 (TMM)
    - Anders & Huber (2010) Genome Biology 11:R106 (median of ratios)
    - McCarthy et al. (2012) Nucleic Acids Research 40(10):4288 (logCPM)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np
from numpy.typing import NDArray
from scipy.stats import rankdata

from gdtseq.core.biomatrix import BioMatrix
from gdtseq.core.quality import QualityFlag
from gdtseq.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = [
    'NormalizationMethod',
    'NormalizationResult',
    'library_sizes',
    'cpm',
    'log_cpm',
    'tmm_factors',
    'median_of_ratios_size_factors',
    'normalize',
    'CountNormalizer',
]


class NormalizationMethod(Enum):
    """Available normalization methods."""

    CPM = "cpm"
    LOGCPM = "logcpm"  # TMM-scaled log2 CPM, the analysis default
    TMM = "tmm"
    DESEQ = "deseq"


@dataclass(frozen=True)
class NormalizationResult:
    """Result of normalization procedure.

    Attributes:
        data: Normalized data matrix (genes × samples)
        method: Normalization method used
        factors: Per-sample factors (TMM norm factors or DESeq2 size factors;
            ones for plain CPM)
        effective_library_sizes: Library sizes after applying the factors
    """

    data: NDArray[np.float64]
    method: str
    factors: NDArray[np.float64]
    effective_library_sizes: NDArray[np.float64] | None = None


def _as_counts(counts) -> NDArray[np.float64]:
    counts = np.asarray(counts, dtype=np.float64)
    if counts.ndim != 2:
        raise ValueError(f"Expected 2D array, got {counts.ndim}D")
    if np.any(counts < 0) or np.any(~np.isfinite(counts)):
        raise ValueError("Counts must be finite and non-negative")
    return counts


def library_sizes(counts) -> NDArray[np.float64]:
    """Column sums of a genes × samples count matrix."""
    return _as_counts(counts).sum(axis=0)


def cpm(
    counts,
    lib_sizes: NDArray[np.float64] | None = None,
    norm_factors: NDArray[np.float64] | None = None,
) -> NDArray[np.float64]:
    """
    Counts per million.

    Args:
        counts: Raw counts (genes × samples)
        lib_sizes: Library sizes; column sums when None
        norm_factors: Optional TMM factors multiplied into the library sizes

    Raises:
        ValueError: If any effective library size is zero
    """
    counts = _as_counts(counts)
    lib = counts.sum(axis=0) if lib_sizes is None else np.asarray(lib_sizes, dtype=np.float64)
    if norm_factors is not None:
        lib = lib * np.asarray(norm_factors, dtype=np.float64)
    if np.any(lib <= 0):
        raise ValueError("Library sizes must be positive (empty sample?)")
    return counts / lib[np.newaxis, :] * 1e6


def log_cpm(
    counts,
    prior_count: float = 2.0,
    lib_sizes: NDArray[np.float64] | None = None,
    norm_factors: NDArray[np.float64] | None = None,
) -> NDArray[np.float64]:
    """
    log2 CPM with edgeR's prior-count smoothing.

    The prior count is scaled per sample by ``lib / mean(lib)`` and library
    sizes are augmented by twice the scaled prior, as ``edgeR::cpm(log=TRUE)``
    does. Zero counts therefore map to a finite value.
    """
    counts = _as_counts(counts)
    lib = counts.sum(axis=0) if lib_sizes is None else np.asarray(lib_sizes, dtype=np.float64)
    if norm_factors is not None:
        lib = lib * np.asarray(norm_factors, dtype=np.float64)
    if np.any(lib <= 0):
        raise ValueError("Library sizes must be positive (empty sample?)")

    prior_scaled = prior_count * lib / lib.mean()
    lib_aug = lib + 2.0 * prior_scaled
    return np.log2((counts + prior_scaled[np.newaxis, :]) / lib_aug[np.newaxis, :] * 1e6)


def _upper_quartile_reference(counts: NDArray[np.float64], lib: NDArray[np.float64]) -> int:
    f75 = np.quantile(counts / lib[np.newaxis, :], 0.75, axis=0)
    return int(np.argmin(np.abs(f75 - f75.mean())))


def _tmm_factor(
    obs: NDArray[np.float64],
    ref: NDArray[np.float64],
    lib_obs: float,
    lib_ref: float,
    logratio_trim: float,
    sum_trim: float,
) -> float:
    with np.errstate(divide="ignore", invalid="ignore"):
        log_r = np.log2((obs / lib_obs) / (ref / lib_ref))
        abs_e = (np.log2(obs / lib_obs) + np.log2(ref / lib_ref)) / 2.0
        v = (lib_obs - obs) / lib_obs / obs + (lib_ref - ref) / lib_ref / ref

    finite = np.isfinite(log_r) & np.isfinite(abs_e)
    log_r, abs_e, v = log_r[finite], abs_e[finite], v[finite]

    if len(log_r) == 0 or np.max(np.abs(log_r)) < 1e-6:
        return 1.0

    n = len(log_r)
    lo_l = np.floor(n * logratio_trim) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim) + 1
    hi_s = n + 1 - lo_s

    rank_r = rankdata(log_r)
    rank_e = rankdata(abs_e)
    keep = (rank_r >= lo_l) & (rank_r <= hi_l) & (rank_e >= lo_s) & (rank_e <= hi_s)
    if not np.any(keep):
        return 1.0

    f = np.sum(log_r[keep] / v[keep]) / np.sum(1.0 / v[keep])
    if not np.isfinite(f):
        f = 0.0
    return float(2.0 ** f)


def tmm_factors(
    counts,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05,
    ref_column: int | None = None,
) -> NDArray[np.float64]:
    """
    TMM normalization factors (edgeR calcNormFactors).

    Each sample is compared against a reference sample (by default the one
    whose upper-quartile CPM is closest to the mean upper quartile). M-values
    (log ratios) are trimmed by ``logratio_trim`` and A-values (average log
    expression) by ``sum_trim`` at both ends, then a precision-weighted mean
    of the remaining M-values gives the factor.

    Returns:
        Factors rescaled to a geometric mean of 1

    Raises:
        ValueError: If a sample has zero library size
    """
    counts = _as_counts(counts)
    # genes with zero counts in every sample carry no information
    counts = counts[counts.sum(axis=1) > 0]
    lib = counts.sum(axis=0)
    if np.any(lib <= 0):
        raise ValueError("Library sizes must be positive (empty sample?)")

    ref_idx = _upper_quartile_reference(counts, lib) if ref_column is None else ref_column
    ref = counts[:, ref_idx]

    factors = np.array([
        _tmm_factor(counts[:, j], ref, lib[j], lib[ref_idx], logratio_trim, sum_trim)
        for j in range(counts.shape[1])
    ])
    factors = factors / np.exp(np.mean(np.log(factors)))

    logger.debug(f"TMM factors (reference sample {ref_idx}): {np.round(factors, 4).tolist()}")
    return factors


def median_of_ratios_size_factors(counts) -> NDArray[np.float64]:
    """
    DESeq2 size factors.

    For every gene with a positive count in all samples, the ratio of each
    count to the gene's geometric mean is taken; a sample's size factor is
    the median of its ratios.

    Raises:
        ValueError: If no gene is positive in every sample
    """
    counts = _as_counts(counts)
    positive = np.all(counts > 0, axis=1)
    if not np.any(positive):
        raise ValueError(
            "Every gene contains at least one zero; cannot compute median-of-ratios size factors"
        )

    log_counts = np.log(counts[positive])
    log_geo_means = log_counts.mean(axis=1)
    return np.exp(np.median(log_counts - log_geo_means[:, np.newaxis], axis=0))


def normalize(
    counts,
    method: NormalizationMethod | str = NormalizationMethod.LOGCPM,
    prior_count: float = 2.0,
) -> NormalizationResult:
    """
    Apply normalization to a count matrix.

    Main entry point, dispatching to the requested method:
        - "cpm": plain CPM
        - "logcpm": log2 CPM on TMM-scaled library sizes
        - "tmm": linear CPM on TMM-scaled library sizes
        - "deseq": counts divided by DESeq2 size factors
    """
    if isinstance(method, str):
        method = NormalizationMethod(method)

    counts = _as_counts(counts)
    lib = counts.sum(axis=0)

    if method == NormalizationMethod.CPM:
        return NormalizationResult(
            data=cpm(counts),
            method=method.value,
            factors=np.ones(counts.shape[1]),
            effective_library_sizes=lib,
        )

    elif method in (NormalizationMethod.LOGCPM, NormalizationMethod.TMM):
        factors = tmm_factors(counts)
        data = (
            log_cpm(counts, prior_count=prior_count, norm_factors=factors)
            if method == NormalizationMethod.LOGCPM
            else cpm(counts, norm_factors=factors)
        )
        return NormalizationResult(
            data=data,
            method=method.value,
            factors=factors,
            effective_library_sizes=lib * factors,
        )

    elif method == NormalizationMethod.DESEQ:
        size_factors = median_of_ratios_size_factors(counts)
        return NormalizationResult(
            data=counts / size_factors[np.newaxis, :],
            method=method.value,
            factors=size_factors,
        )

    else:
        raise ValueError(f"Unknown normalization method: {method}")


class CountNormalizer(Transform):
    """
    Normalize a count BioMatrix to TMM log-CPM (or another method).

    The returned matrix carries the NORMALIZED quality flag on every value.
    The last factors used are kept on ``self.factors`` for reporting.
    """

    def __init__(self, method: str = "logcpm", prior_count: float = 2.0):
        super().__init__(
            name="CountNormalizer",
            params={"method": method, "prior_count": prior_count},
        )
        self.method = NormalizationMethod(method)
        self.prior_count = prior_count
        self.factors: NDArray[np.float64] | None = None

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        errors = self.validate(matrix)
        if errors:
            raise ValueError("; ".join(errors))

        result = normalize(matrix.data, self.method, prior_count=self.prior_count)
        self.factors = result.factors
        logger.info(
            f"Normalized {matrix.n_features} genes x {matrix.n_samples} samples "
            f"with {result.method} (factors {result.factors.min():.3f}-{result.factors.max():.3f})"
        )
        return matrix.with_data(result.data, flag=QualityFlag.NORMALIZED)

    def validate(self, matrix: BioMatrix) -> list[str]:
        errors = super().validate(matrix)
        if np.any(matrix.data < 0):
            errors.append("Matrix contains negative values (expected raw counts)")
        if np.any(matrix.data.sum(axis=0) <= 0):
            errors.append("Matrix contains samples with zero library size")
        return errors
