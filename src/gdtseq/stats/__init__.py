"""
Statistical steps of the count analysis.

Modules:
    normalization: CPM, log-CPM, TMM factors, DESeq2 size factors
    batch: limma-style batch effect removal
    pca: PCA on the most variable genes
    eb: empirical Bayes variance moderation
    differential: DESeq2 and limma-trend differential expression
"""

from gdtseq.stats.batch import BatchCorrection, remove_batch_effect
from gdtseq.stats.differential import (
    DE_COLUMNS,
    DE_METHODS,
    Contrast,
    DEResult,
    call_significant,
    fdr_correction,
    run_deseq2,
    run_differential_expression,
    run_limma_trend,
)
from gdtseq.stats.eb import fit_f_dist, squeeze_var, trigamma_inverse
from gdtseq.stats.normalization import (
    CountNormalizer,
    NormalizationMethod,
    NormalizationResult,
    cpm,
    library_sizes,
    log_cpm,
    median_of_ratios_size_factors,
    normalize,
    tmm_factors,
)
from gdtseq.stats.pca import PCAResult, run_pca

__all__ = [
    'BatchCorrection',
    'remove_batch_effect',
    'DE_COLUMNS',
    'DE_METHODS',
    'Contrast',
    'DEResult',
    'call_significant',
    'fdr_correction',
    'run_deseq2',
    'run_differential_expression',
    'run_limma_trend',
    'fit_f_dist',
    'squeeze_var',
    'trigamma_inverse',
    'CountNormalizer',
    'NormalizationMethod',
    'NormalizationResult',
    'cpm',
    'library_sizes',
    'log_cpm',
    'median_of_ratios_size_factors',
    'normalize',
    'tmm_factors',
    'PCAResult',
    'run_pca',
]
