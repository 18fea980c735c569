"""
Gene set enrichment with gseapy.

- run_prerank_gsea: preranked GSEA on a DE ranking (clusterProfiler GSEA
  in the R workflow)
- run_ssgsea: single-sample GSEA scores per sample (GSVA in the R workflow)

gseapy output columns are renamed to snake_case so downstream tables and
plots do not depend on gseapy's display names.
"""

from __future__ import annotations

import logging
from typing import Dict, List

import pandas as pd

logger = logging.getLogger(__name__)

__all__ = ['GSEA_COLUMNS', 'run_prerank_gsea', 'run_ssgsea']

GSEA_COLUMNS = ["term", "es", "nes", "pvalue", "fdr", "lead_genes"]

_PRERANK_RENAME = {
    "Term": "term",
    "ES": "es",
    "NES": "nes",
    "NOM p-val": "pvalue",
    "FDR q-val": "fdr",
    "Lead_genes": "lead_genes",
}


def _gseapy():
    try:
        import gseapy as gp
    except ImportError:
        raise ImportError(
            "gseapy is required for GSEA and ssGSEA. "
            "Install with: pip install gseapy"
        )
    return gp


def run_prerank_gsea(
    ranking: pd.Series,
    gene_sets: Dict[str, List[str]],
    permutations: int = 1000,
    min_size: int = 15,
    max_size: int = 500,
    seed: int = 42,
    threads: int = 1,
) -> pd.DataFrame:
    """
    Preranked GSEA.

    Args:
        ranking: Score per gene (index = gene id), e.g. from ranking_metric
        gene_sets: term -> genes
        permutations: Gene set permutations for the null distribution

    Returns:
        DataFrame with columns term, es, nes, pvalue, fdr, lead_genes,
        sorted by NES (descending); empty when no set passes the size filter

    Raises:
        ValueError: If the ranking is empty
    """
    if ranking.empty:
        raise ValueError("Empty ranking; nothing to test")

    gp = _gseapy()
    logger.info(
        f"Prerank GSEA: {len(ranking)} ranked genes, {len(gene_sets)} gene sets, "
        f"{permutations} permutations"
    )
    try:
        res = gp.prerank(
            rnk=ranking,
            gene_sets=gene_sets,
            min_size=min_size,
            max_size=max_size,
            permutation_num=permutations,
            seed=seed,
            threads=threads,
            outdir=None,
            no_plot=True,
            verbose=False,
        )
    except LookupError as e:
        # gseapy raises when no gene set survives the size filter
        logger.warning(f"Prerank GSEA found no testable gene sets: {e}")
        return pd.DataFrame(columns=GSEA_COLUMNS)

    table = res.res2d.rename(columns=_PRERANK_RENAME)[GSEA_COLUMNS].copy()
    for col in ("es", "nes", "pvalue", "fdr"):
        table[col] = pd.to_numeric(table[col], errors="coerce")
    return table.sort_values("nes", ascending=False, kind="mergesort").reset_index(drop=True)


def run_ssgsea(
    log_expr: pd.DataFrame,
    gene_sets: Dict[str, List[str]],
    min_size: int = 5,
    max_size: int = 500,
    sample_norm_method: str = "rank",
    seed: int = 42,
    threads: int = 1,
) -> pd.DataFrame:
    """
    Single-sample GSEA normalized enrichment scores.

    Args:
        log_expr: Log-expression (genes × samples)
        gene_sets: term -> genes

    Returns:
        Terms × samples DataFrame of NES, columns in input sample order;
        no rows when no set passes the size filter
    """
    gp = _gseapy()
    logger.info(f"ssGSEA: {log_expr.shape[1]} samples, {len(gene_sets)} gene sets")

    try:
        res = gp.ssgsea(
            data=log_expr,
            gene_sets=gene_sets,
            sample_norm_method=sample_norm_method,
            min_size=min_size,
            max_size=max_size,
            permutation_num=0,
            seed=seed,
            threads=threads,
            outdir=None,
            no_plot=True,
            verbose=False,
        )
    except LookupError as e:
        logger.warning(f"ssGSEA found no testable gene sets: {e}")
        empty = pd.DataFrame(columns=log_expr.columns, dtype=float)
        empty.index.name = "term"
        return empty

    scores = res.res2d.pivot(index="Term", columns="Name", values="NES").astype(float)
    scores = scores.reindex(columns=log_expr.columns)
    scores.index.name = "term"
    scores.columns.name = None
    return scores
