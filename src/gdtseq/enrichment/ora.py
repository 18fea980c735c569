"""
Over-representation analysis of DE gene lists.

Answers: "are the significant genes of a contrast enriched for a pathway
beyond what the tested background would give by chance?"

Statistical Method:
    Hypergeometric test, one-sided (enrichment, not depletion):
    N background genes, M in the pathway, n study genes, k in both.
    p = P(X >= k), X ~ Hypergeometric(N, M, n). Exact, no approximation.

Multiple Testing Correction:
    Benjamini-Hochberg over all tested pathways (statsmodels multipletests).

Examples:
    >>> up_genes = set(de.up["gene_id"])
    >>> table = over_representation(up_genes, gene_sets, set(de.table["gene_id"]))
    >>> table[table["fdr"] < 0.05]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Set, Tuple

import numpy as np
import pandas as pd
from scipy.stats import hypergeom
from statsmodels.stats.multitest import multipletests

logger = logging.getLogger(__name__)

__all__ = [
    'EnrichmentResult',
    'HypergeometricTest',
    'apply_fdr_correction',
    'over_representation',
]


@dataclass
class EnrichmentResult:
    """
    One gene set tested against one study list.

    Attributes:
        pvalue: P(overlap >= observed) under random draws from the background
        enrichment_ratio: Observed overlap divided by the expected overlap
        study_count: Overlap size
        pathway_size: Pathway genes present in the background
        background_size: Genes that could have been called
        study_size: Study genes present in the background
        overlap: Study genes in the pathway
    """
    pvalue: float
    enrichment_ratio: float
    study_count: int
    pathway_size: int
    background_size: int
    study_size: int
    overlap: Tuple[str, ...] = ()


class HypergeometricTest:
    """
    One-sided hypergeometric test of a study list against a gene set.

    Study and pathway genes outside the background are ignored, so the
    background should be every gene that could have been called (the
    genes tested for DE, not the genome).

    Examples:
        >>> test = HypergeometricTest()
        >>> result = test.test_enrichment(
        ...     study_genes={f'GENE{i}' for i in range(100)},
        ...     pathway_genes={f'GENE{i}' for i in range(500)},
        ...     background_genes={f'GENE{i}' for i in range(20000)},
        ... )
        >>> # expected 100 * 500/20000 = 2.5, observed 100: 40x enrichment
    """

    def test_enrichment(
        self,
        study_genes: Set[str],
        pathway_genes: Set[str],
        background_genes: Set[str]
    ) -> EnrichmentResult:
        study_genes = study_genes & background_genes
        pathway_genes = pathway_genes & background_genes

        N = len(background_genes)
        M = len(pathway_genes)
        n = len(study_genes)
        overlap = study_genes & pathway_genes
        k = len(overlap)

        if 0 in (N, M, n):
            return EnrichmentResult(
                pvalue=1.0,
                enrichment_ratio=0.0,
                study_count=0,
                pathway_size=M,
                background_size=N,
                study_size=n,
            )

        expected = n * M / N
        enrichment_ratio = k / expected

        # P(X >= k) = survival function at k-1
        pvalue = hypergeom.sf(k - 1, N, M, n)

        return EnrichmentResult(
            pvalue=float(pvalue),
            enrichment_ratio=float(enrichment_ratio),
            study_count=k,
            pathway_size=M,
            background_size=N,
            study_size=n,
            overlap=tuple(sorted(overlap)),
        )


def apply_fdr_correction(
    pvalues: List[float],
    method: str = 'fdr_bh',
    alpha: float = 0.05
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Adjust ORA p-values across gene sets.

    Args:
        pvalues: One p-value per tested gene set
        method: statsmodels method name ('fdr_bh', 'fdr_by', 'bonferroni', 'holm')
        alpha: FDR or family-wise error threshold

    Returns:
        Tuple of (reject, qvalues)

    Raises:
        ValueError: If p-values are NaN, infinite or outside [0, 1]
    """
    pvalues = np.asarray(pvalues, dtype=float)
    if pvalues.size == 0:
        return np.zeros(0, dtype=bool), np.zeros(0)
    if not np.isfinite(pvalues).all():
        raise ValueError("p-values contain NaN or Inf")
    if ((pvalues < 0) | (pvalues > 1)).any():
        raise ValueError("p-values must be in [0, 1]")

    reject, pvals_corrected, _, _ = multipletests(
        pvalues,
        alpha=alpha,
        method=method,
        returnsorted=False
    )
    return reject, pvals_corrected


ORA_COLUMNS = [
    "term", "overlap", "pathway_size", "study_size", "background_size",
    "enrichment_ratio", "pvalue", "fdr", "genes",
]


def over_representation(
    study_genes: Iterable[str],
    gene_sets: Dict[str, List[str]],
    background: Iterable[str],
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Hypergeometric ORA of ``study_genes`` against every gene set.

    Sets with no member in the background are skipped.

    Returns:
        DataFrame with columns term, overlap, pathway_size, study_size,
        background_size, enrichment_ratio, pvalue, fdr, genes (";"-joined),
        sorted by p-value
    """
    study = set(study_genes)
    universe = set(background)
    test = HypergeometricTest()

    rows = []
    for term, genes in gene_sets.items():
        result = test.test_enrichment(study, set(genes), universe)
        if result.pathway_size == 0:
            continue
        rows.append({
            "term": term,
            "overlap": result.study_count,
            "pathway_size": result.pathway_size,
            "study_size": result.study_size,
            "background_size": result.background_size,
            "enrichment_ratio": result.enrichment_ratio,
            "pvalue": result.pvalue,
            "genes": ";".join(result.overlap),
        })

    if not rows:
        return pd.DataFrame(columns=ORA_COLUMNS)

    table = pd.DataFrame(rows)
    _, table["fdr"] = apply_fdr_correction(table["pvalue"].tolist(), alpha=alpha)
    table = table[ORA_COLUMNS].sort_values("pvalue", kind="mergesort").reset_index(drop=True)

    n_sig = int((table["fdr"] < alpha).sum())
    logger.info(f"ORA: {n_sig}/{len(table)} gene sets enriched at FDR < {alpha} ({len(study)} study genes)")
    return table
