"""
Gene-level quality filtering of raw count matrices.

Components:
    StratifiedExpressionFilter: CPM presence filter within metadata groups
    FilterByExpr / filter_by_expression: edgeR filterByExpr rule
"""

from gdtseq.quality.filtering import (
    FILTER_METHODS,
    ExpressionFilterResult,
    FilterByExpr,
    StratifiedExpressionFilter,
    filter_by_expression,
)

__all__ = [
    'FILTER_METHODS',
    'ExpressionFilterResult',
    'FilterByExpr',
    'StratifiedExpressionFilter',
    'filter_by_expression',
]
