"""
Gene set libraries and DE-derived gene rankings.

Gene sets are plain ``dict[str, list[str]]`` (term -> member genes), the
form gseapy consumes. They can be read from GMT files (MSigDB, Enrichr
downloads) or from a long two-column table of ``term, gene`` rows.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from gdtseq.io.loaders import sniff_delimiter

logger = logging.getLogger(__name__)

__all__ = ['RANKING_METRICS', 'load_gene_sets', 'filter_gene_sets', 'ranking_metric', 'strip_gene_version']

RANKING_METRICS = ("signed_p", "stat", "lfc")


def load_gene_sets(path: Path) -> Dict[str, List[str]]:
    """
    Load a gene set library.

    ``.gmt`` files are parsed with gseapy; any other extension is read as a
    table whose first two columns are term and gene.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file yields no gene sets
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Gene set file not found: {path}")

    if path.suffix.lower() == ".gmt":
        import gseapy as gp
        gene_sets = {term: list(genes) for term, genes in gp.read_gmt(str(path)).items()}
    else:
        df = pd.read_csv(path, sep=sniff_delimiter(path), dtype=str)
        if df.shape[1] < 2:
            raise ValueError(f"Gene set table needs term and gene columns: {path}")
        term_col, gene_col = df.columns[:2]
        df = df.dropna(subset=[term_col, gene_col])
        gene_sets = {
            term: list(dict.fromkeys(group[gene_col].str.strip()))
            for term, group in df.groupby(term_col, sort=False)
        }

    if not gene_sets:
        raise ValueError(f"No gene sets found in {path}")

    logger.info(f"Loaded {len(gene_sets)} gene sets from {path.name}")
    return gene_sets


def filter_gene_sets(
    gene_sets: Dict[str, List[str]],
    universe: Optional[Iterable[str]] = None,
    min_size: int = 15,
    max_size: int = 500,
) -> Dict[str, List[str]]:
    """Restrict sets to the universe and keep those with min_size..max_size members."""
    universe_set = set(universe) if universe is not None else None
    kept = {}
    for term, genes in gene_sets.items():
        members = [g for g in genes if universe_set is None or g in universe_set]
        if min_size <= len(members) <= max_size:
            kept[term] = members
    logger.debug(f"{len(kept)}/{len(gene_sets)} gene sets within size {min_size}-{max_size}")
    return kept


def strip_gene_version(gene_ids: Iterable[str]) -> List[str]:
    """Drop Ensembl/GENCODE version suffixes: ENSG00000141510.16 -> ENSG00000141510."""
    return [g.split(".", 1)[0] if g.startswith("ENS") else g for g in gene_ids]


def ranking_metric(de_table: pd.DataFrame, metric: str = "signed_p") -> pd.Series:
    """
    Rank genes for preranked GSEA from a DE table.

    Metrics:
        - "signed_p": -log10(pvalue) × sign(log2 fold change), p clipped at 1e-300
        - "stat": the test statistic (Wald or moderated t)
        - "lfc": log2 fold change

    Genes with a missing metric are dropped. The result is sorted in
    decreasing order with ties broken by gene id.

    Raises:
        ValueError: For an unknown metric or an empty ranking
    """
    if metric == "signed_p":
        pval = de_table["pvalue"].clip(lower=1e-300)
        values = -np.log10(pval) * np.sign(de_table["log2_fold_change"])
    elif metric == "stat":
        values = de_table["stat"]
    elif metric == "lfc":
        values = de_table["log2_fold_change"]
    else:
        raise ValueError(f"Unknown ranking metric '{metric}'; choose from {RANKING_METRICS}")

    ranking = pd.DataFrame({"gene_id": de_table["gene_id"].astype(str), "score": values.astype(float)})
    ranking = ranking[np.isfinite(ranking["score"])]
    ranking = ranking.drop_duplicates("gene_id")
    if ranking.empty:
        raise ValueError("No gene has a finite ranking metric")

    ranking = ranking.sort_values(["score", "gene_id"], ascending=[False, True])
    return pd.Series(ranking["score"].to_numpy(), index=ranking["gene_id"].to_numpy(), name=metric)
