"""
Pathway-level interpretation of differential expression.

Components:
    gene_sets: GMT / table loading, size filtering, DE rankings
    ora: hypergeometric over-representation with BH correction
    gsea: gseapy prerank GSEA and ssGSEA
"""

from gdtseq.enrichment.gene_sets import (
    RANKING_METRICS,
    filter_gene_sets,
    load_gene_sets,
    ranking_metric,
    strip_gene_version,
)
from gdtseq.enrichment.gsea import GSEA_COLUMNS, run_prerank_gsea, run_ssgsea
from gdtseq.enrichment.ora import (
    EnrichmentResult,
    HypergeometricTest,
    apply_fdr_correction,
    over_representation,
)

__all__ = [
    'RANKING_METRICS',
    'filter_gene_sets',
    'load_gene_sets',
    'ranking_metric',
    'strip_gene_version',
    'GSEA_COLUMNS',
    'run_prerank_gsea',
    'run_ssgsea',
    'EnrichmentResult',
    'HypergeometricTest',
    'apply_fdr_correction',
    'over_representation',
]
