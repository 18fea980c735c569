"""
Count-matrix processing steps.

Filtering, normalization and batch adjustment are each a Transform: a
named, parameterized step that maps a BioMatrix to a new BioMatrix. Inputs
are never modified, so the raw counts stay available for DESeq2 after the
log-CPM matrix has been derived, and ``describe()`` of every step ends up
in ``analysis_summary.json``.

Examples:
    >>> class Log2(Transform):
    ...     def __init__(self, pseudocount: float = 1.0):
    ...         super().__init__("Log2", {"pseudocount": pseudocount})
    ...
    ...     def apply(self, matrix):
    ...         return matrix.with_data(np.log2(matrix.data + self.params["pseudocount"]))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from gdtseq.core.biomatrix import BioMatrix

__all__ = ['Transform']


class Transform(ABC):
    """
    One processing step.

    Attributes:
        name: Step name used in logs and the run summary (e.g. "FilterByExpr")
        params: JSON-serializable parameters of the step
        timestamp: Creation time of the step
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params
        self.timestamp = datetime.now()

    @abstractmethod
    def apply(self, matrix: BioMatrix) -> BioMatrix:
        """
        Return the transformed matrix; ``matrix`` itself is left untouched.

        Raises:
            ValueError: If ``validate`` reports a problem
        """

    def validate(self, matrix: BioMatrix) -> list[str]:
        """
        Problems that prevent ``apply``; an empty list means the matrix is usable.

        Subclasses extend the list returned by ``super().validate(matrix)``.
        """
        problems: list[str] = []
        if matrix.n_features == 0 or matrix.n_samples == 0:
            problems.append(f"Empty matrix ({matrix.n_features} genes x {matrix.n_samples} samples)")
        return problems

    def describe(self) -> dict[str, Any]:
        """Name and parameters, for the run summary."""
        return {"step": self.name, **self.params}

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.params.items())
        return f"{self.name}({params})"
