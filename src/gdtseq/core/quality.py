"""
Quality flag system for tracking what happened to each value of a count matrix.

Every entry of a BioMatrix carries an integer flag. Transforms OR their own
flag into the entries they touch, so the final tables can answer questions
like "which values were batch adjusted?" without re-running the analysis.

Examples:
    >>> from gdtseq.core.quality import QualityFlag
    >>> flag = QualityFlag.NORMALIZED | QualityFlag.BATCH_CORRECTED
    >>> bool(flag & QualityFlag.BATCH_CORRECTED)
    True
"""

from __future__ import annotations

from enum import IntFlag

__all__ = ['QualityFlag']


class QualityFlag(IntFlag):
    """
    Bitwise flags for per-value provenance in count matrices.

    Attributes:
        ORIGINAL: Raw count as produced by featureCounts (0)
        LOW_COUNT: Gene failed the expression filter in this sample's group (1)
        NORMALIZED: Value is on the (log-)CPM scale rather than raw counts (2)
        BATCH_CORRECTED: Batch component removed from the value (4)
    """

    ORIGINAL = 0
    """Untouched count straight from the quantification step."""

    LOW_COUNT = 1
    """
    Below the CPM threshold in this sample.
    Kept for bookkeeping; genes failing everywhere are dropped, not flagged.
    """

    NORMALIZED = 2
    """Library-size (and TMM) normalized, usually log2 CPM."""

    BATCH_CORRECTED = 4
    """
    Batch effect removed (limma removeBatchEffect style).
    Use for visualization and PCA, never as input to count-based DE.
    """
