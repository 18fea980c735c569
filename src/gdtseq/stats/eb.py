"""
Empirical Bayes variance moderation (limma-style moderated t-statistics).

The per-gene residual variances from a linear model are shrunk toward a
common prior (or, for limma-trend, toward a mean-variance trend) estimated
from all genes. The moderated t-statistic then has ``d0 + df`` degrees of
freedom, which stabilises inference with the small replicate numbers of a
typical bulk RNA-seq design.

References:
    Smyth (2004) "Linear models and empirical Bayes methods for assessing
    differential expression in microarray experiments". SAGMB 3(1).
    Law et al. (2014) voom / limma-trend. Genome Biology 15:R29.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.special import digamma, polygamma
from statsmodels.nonparametric.smoothers_lowess import lowess

__all__ = ['trigamma_inverse', 'fit_f_dist', 'squeeze_var']


def trigamma_inverse(x: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """
    Compute the inverse of the trigamma function using Newton's method.

    Solves for y where trigamma(y) = x. Follows limma's trigammaInverse:
    initial guess y = 0.5 + 1/x, then Newton steps.

    Args:
        x: Target trigamma value (must be positive)
        tol: Convergence tolerance
        max_iter: Maximum Newton iterations

    Returns:
        y such that trigamma(y) ≈ x
    """
    if x <= 0:
        return np.inf

    if x > 1e7:
        return 1.0 / np.sqrt(x)
    elif x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x

    for _ in range(max_iter):
        tri = polygamma(1, y)
        tri_deriv = polygamma(2, y)

        if abs(tri_deriv) < 1e-15:
            break
        delta = (tri - x) / tri_deriv
        y_new = y - delta

        # keep y positive
        if y_new <= 0:
            y = y / 2.0
        else:
            y = y_new

        if abs(delta) < tol * abs(y):
            break

    return max(float(y), 1e-10)


def fit_f_dist(
    sigma2: NDArray[np.float64],
    df: float | NDArray[np.float64],
    covariate: NDArray[np.float64] | None = None,
) -> tuple[float, float | NDArray[np.float64]]:
    """
    Estimate prior d0 and s0² via method of moments (limma fitFDist).

    Assume s²_i ~ s₀² × F(df, d₀). On the log scale:
        1. z = log(s²) - digamma(df/2) + log(df/2)
        2. evar = var(z) - mean(trigamma(df/2))
        3. d₀ = 2 × trigamma⁻¹(evar)
        4. s₀² = exp(mean(z) + digamma(d₀/2) - log(d₀/2))

    With a covariate (limma-trend, covariate = average log expression) the
    mean of z is a lowess trend over the covariate instead of a constant,
    and s₀² becomes a per-gene vector.

    Args:
        sigma2: Residual variances (n_genes,)
        df: Residual degrees of freedom (scalar or per-gene)
        covariate: Optional per-gene covariate for a variance trend

    Returns:
        (d0, s0_sq): d0 may be np.inf (no extra variability between genes);
        s0_sq is a float, or an array aligned with sigma2 when a covariate is given
    """
    sigma2 = np.asarray(sigma2, dtype=np.float64)
    valid_mask = (sigma2 > 0) & np.isfinite(sigma2)
    n_valid = int(valid_mask.sum())

    if n_valid < 3:
        fallback = float(np.median(sigma2[valid_mask])) if n_valid > 0 else 1.0
        if covariate is not None:
            return np.inf, np.full_like(sigma2, fallback)
        return np.inf, fallback

    if np.isscalar(df):
        df_half = float(df) / 2.0
        mean_trigamma = polygamma(1, df_half)
    else:
        df_half = np.asarray(df, dtype=np.float64)[valid_mask] / 2.0
        mean_trigamma = np.mean(polygamma(1, df_half))

    e = np.log(sigma2[valid_mask]) - digamma(df_half) + np.log(df_half)

    if covariate is None:
        emean = np.mean(e)
        evar = np.var(e, ddof=1) - mean_trigamma
    else:
        covariate = np.asarray(covariate, dtype=np.float64)
        cov_valid = covariate[valid_mask]
        fitted = lowess(e, cov_valid, frac=0.5, return_sorted=False)
        # trend spans the full covariate range, so invalid genes get an interpolated prior
        order = np.argsort(cov_valid)
        emean = np.interp(covariate, cov_valid[order], fitted[order])
        # lowess uses roughly 4 effective parameters
        n_params = min(4, n_valid - 1)
        resid = e - fitted
        evar = np.sum(resid ** 2) / (n_valid - n_params) - mean_trigamma

    if evar <= 0:
        d0 = np.inf
        s0_sq = np.exp(emean)
    else:
        d0 = 2.0 * trigamma_inverse(evar)
        if d0 > 1e10:
            d0 = np.inf
            s0_sq = np.exp(emean)
        else:
            s0_sq = np.exp(emean + digamma(d0 / 2.0) - np.log(d0 / 2.0))

    if covariate is None:
        return float(d0), float(s0_sq)
    return float(d0), np.asarray(s0_sq, dtype=np.float64)


def squeeze_var(
    sigma2: NDArray[np.float64],
    df: float | NDArray[np.float64],
    d0: float,
    s0_sq: float | NDArray[np.float64],
) -> tuple[NDArray[np.float64], float | NDArray[np.float64]]:
    """
    Apply Empirical Bayes variance shrinkage (limma squeezeVar).

    Formula:
        s²_post = (d₀ × s₀² + df × s²) / (d₀ + df)

    Args:
        sigma2: Residual variances (n_genes,)
        df: Residual degrees of freedom
        d0: Prior degrees of freedom (from fit_f_dist)
        s0_sq: Prior variance, scalar or per gene (from fit_f_dist)

    Returns:
        (s2_post, df_total): posterior variances and d0 + df
    """
    sigma2 = np.asarray(sigma2, dtype=np.float64)
    df_is_array = isinstance(df, np.ndarray)

    if np.isinf(d0):
        # infinite prior df: posterior collapses onto the prior
        s2_post = np.broadcast_to(np.asarray(s0_sq, dtype=np.float64), sigma2.shape).copy()
        df_total = np.full_like(sigma2, np.inf) if df_is_array else np.inf
        return s2_post, df_total

    s2_post = (d0 * s0_sq + df * sigma2) / (d0 + df)
    df_total = d0 + df

    if df_is_array:
        return s2_post, df_total.astype(np.float64)
    return s2_post, float(df_total)
