"""
Gene annotation from the GENCODE GTF used for alignment and counting.

featureCounts reports GENCODE gene ids (``ENSG00000141510.16``); gene set
libraries use symbols (``TP53``). The ``gene`` records of the same GTF give
the mapping, so no external ID service is needed.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)

__all__ = ['GTF_COLUMNS', 'read_gene_names', 'map_gene_names']

GTF_COLUMNS = ["seqname", "source", "feature", "start", "end", "score", "strand", "frame", "attribute"]


def read_gene_names(gtf: Path) -> pd.Series:
    """
    Map gene_id -> gene_name from the ``gene`` features of a GTF (plain or gzipped).

    Records without a gene_name map to the gene id itself.

    Raises:
        FileNotFoundError: If the GTF does not exist
        ValueError: If it contains no gene records
    """
    gtf = Path(gtf)
    if not gtf.exists():
        raise FileNotFoundError(f"GTF not found: {gtf}")

    try:
        table = pd.read_csv(
            gtf, sep="\t", comment="#", header=None, names=GTF_COLUMNS,
            usecols=["feature", "attribute"], dtype=str,
            quoting=csv.QUOTE_NONE, compression="infer",
        )
    except pd.errors.EmptyDataError:
        table = pd.DataFrame(columns=["feature", "attribute"], dtype=str)

    attrs = table.loc[table["feature"] == "gene", "attribute"]
    gene_id = attrs.str.extract(r'gene_id "([^"]+)"', expand=False)
    gene_name = attrs.str.extract(r'gene_name "([^"]+)"', expand=False).fillna(gene_id)

    names = pd.Series(gene_name.to_numpy(), index=pd.Index(gene_id.to_numpy(), name="gene_id"),
                      name="gene_name")
    names = names[names.index.notna()]
    names = names[~names.index.duplicated(keep="first")]
    if names.empty:
        raise ValueError(f"No gene records in {gtf}")

    logger.info(f"Read {len(names)} gene names from {gtf.name}")
    return names


def map_gene_names(gene_ids, names: pd.Series) -> list[str]:
    """Symbols for gene_ids; ids missing from ``names`` are kept as they are."""
    return [names.get(g, g) for g in gene_ids]
