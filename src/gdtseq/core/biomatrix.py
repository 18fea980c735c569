"""
Gene × sample matrix with its sample sheet attached.

A BioMatrix holds one scale of the expression data (raw featureCounts
counts, CPM, log-CPM, batch-adjusted log-CPM) together with the sample
annotation (condition, donor) and a QualityFlag per value recording which
processing steps touched it.

Layout:
    - rows: GENCODE gene ids, in featureCounts order
    - columns: sample ids from the job array (``Number5``, ...)
    - ``sample_metadata`` rows are aligned to the columns, always

Instances are never modified in place; subsetting and ``with_data`` return
new objects that share the untouched parts.

Examples:
    >>> counts = pd.DataFrame(
    ...     [[10, 20], [30, 40]],
    ...     index=["ENSG00000141510.16", "ENSG00000203747.11"],
    ...     columns=["Number5", "Number6"],
    ... )
    >>> metadata = pd.DataFrame({"condition": ["CD16neg", "CD16pos"]}, index=counts.columns)
    >>> matrix = BioMatrix.from_dataframe(counts, metadata)
    >>> pos = matrix.select_samples(matrix.sample_metadata["condition"] == "CD16pos")
    >>> pos.n_samples
    1
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd

from gdtseq.core.quality import QualityFlag

__all__ = ['BioMatrix']

_FLAG_DTYPE = np.uint32


def _as_mask(mask: np.ndarray | pd.Series, expected: int, axis: str) -> np.ndarray:
    values = mask.to_numpy() if isinstance(mask, pd.Series) else mask
    values = np.asarray(values, dtype=bool)
    if values.shape != (expected,):
        raise ValueError(f"{axis} mask has length {len(values)}, expected {expected}")
    return values


class BioMatrix:
    """
    Expression values, gene ids, sample ids, sample sheet and quality flags.

    Attributes:
        data: float matrix, genes × samples
        feature_ids: gene ids (rows)
        sample_ids: sample ids (columns)
        sample_metadata: sample sheet indexed exactly by ``sample_ids``
        quality_flags: QualityFlag bits, same shape as ``data``
    """

    def __init__(
        self,
        data: np.ndarray,
        feature_ids: pd.Index,
        sample_ids: pd.Index,
        sample_metadata: pd.DataFrame,
        quality_flags: np.ndarray,
    ):
        """
        Raises:
            TypeError: If an argument is not of the expected container type
            ValueError: If the shapes or the sample index disagree
        """
        for arg, value, kind in (
            ("data", data, np.ndarray),
            ("feature_ids", feature_ids, pd.Index),
            ("sample_ids", sample_ids, pd.Index),
            ("sample_metadata", sample_metadata, pd.DataFrame),
            ("quality_flags", quality_flags, np.ndarray),
        ):
            if not isinstance(value, kind):
                raise TypeError(f"{arg} must be {kind.__name__}, got {type(value).__name__}")

        if data.ndim != 2:
            raise ValueError(f"data must be a 2D genes x samples array, got shape {data.shape}")
        if data.shape != (len(feature_ids), len(sample_ids)):
            raise ValueError(
                f"data shape {data.shape} does not match "
                f"{len(feature_ids)} gene ids x {len(sample_ids)} sample ids"
            )
        if quality_flags.shape != data.shape:
            raise ValueError(f"quality_flags shape {quality_flags.shape} differs from data shape {data.shape}")
        if not sample_metadata.index.equals(sample_ids):
            raise ValueError(
                "sample_metadata must be indexed by the sample ids in column order "
                f"({len(sample_metadata)} rows for {len(sample_ids)} samples)"
            )

        self._data = data
        self._feature_ids = feature_ids
        self._sample_ids = sample_ids
        self._sample_metadata = sample_metadata
        self._quality_flags = quality_flags

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        sample_metadata: Optional[pd.DataFrame] = None,
    ) -> BioMatrix:
        """
        Wrap a genes × samples table; every flag starts as ORIGINAL.

        ``sample_metadata`` rows are reordered to the table's columns (a
        sample missing from it raises KeyError); None attaches an empty sheet.
        """
        sample_ids = pd.Index(df.columns)
        if sample_metadata is None:
            meta = pd.DataFrame(index=sample_ids)
        else:
            meta = sample_metadata.loc[sample_ids].set_axis(sample_ids, axis=0)

        return cls(
            data=df.to_numpy(dtype=float),
            feature_ids=pd.Index(df.index),
            sample_ids=sample_ids,
            sample_metadata=meta,
            quality_flags=np.full(df.shape, int(QualityFlag.ORIGINAL), dtype=_FLAG_DTYPE),
        )

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def feature_ids(self) -> pd.Index:
        return self._feature_ids

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def sample_metadata(self) -> pd.DataFrame:
        return self._sample_metadata

    @property
    def quality_flags(self) -> np.ndarray:
        return self._quality_flags

    @property
    def shape(self) -> tuple[int, int]:
        return self._data.shape

    @property
    def n_features(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def _subset(self, rows: np.ndarray | slice, cols: np.ndarray | slice) -> BioMatrix:
        sample_ids = self._sample_ids[cols]
        return BioMatrix(
            data=self._data[rows][:, cols],
            feature_ids=self._feature_ids[rows],
            sample_ids=sample_ids,
            sample_metadata=self._sample_metadata.loc[sample_ids],
            quality_flags=self._quality_flags[rows][:, cols],
        )

    def select_samples(self, mask: np.ndarray | pd.Series) -> BioMatrix:
        """
        Keep the samples where ``mask`` is True (a Series is used by position).

        Raises:
            ValueError: If the mask length differs from n_samples
        """
        return self._subset(slice(None), _as_mask(mask, self.n_samples, "sample"))

    def select_features(self, mask: np.ndarray | pd.Series) -> BioMatrix:
        """
        Keep the genes where ``mask`` is True (a Series is used by position).

        Raises:
            ValueError: If the mask length differs from n_features
        """
        return self._subset(_as_mask(mask, self.n_features, "gene"), slice(None))

    def with_data(self, data: np.ndarray, flag: Optional[QualityFlag] = None) -> BioMatrix:
        """
        Same genes, samples and sheet with new values, e.g. after normalization.

        ``flag`` is OR-ed into every value's quality flags.

        Raises:
            ValueError: If ``data`` has a different shape
        """
        if data.shape != self.shape:
            raise ValueError(f"Replacement data has shape {data.shape}, expected {self.shape}")

        flags = self._quality_flags.copy()
        if flag is not None:
            flags |= _FLAG_DTYPE(int(flag))
        return BioMatrix(data, self._feature_ids, self._sample_ids, self._sample_metadata, flags)

    def to_dataframe(self) -> pd.DataFrame:
        """Values as a genes × samples DataFrame."""
        return pd.DataFrame(self._data, index=self._feature_ids, columns=self._sample_ids)

    def copy(self, deep: bool = True) -> BioMatrix:
        """Duplicate; ``deep=False`` shares the arrays and sample sheet."""
        if not deep:
            return BioMatrix(self._data, self._feature_ids, self._sample_ids,
                             self._sample_metadata, self._quality_flags)
        return BioMatrix(
            self._data.copy(),
            self._feature_ids.copy(),
            self._sample_ids.copy(),
            self._sample_metadata.copy(),
            self._quality_flags.copy(),
        )

    def __repr__(self) -> str:
        text = f"BioMatrix({self.n_features} genes x {self.n_samples} samples)"
        if self.n_features and self.n_samples:
            text += (
                f"\n  genes: {self.feature_ids[0]} .. {self.feature_ids[-1]}"
                f"\n  samples: {', '.join(map(str, self.sample_ids[:6]))}"
                f"{' ..' if self.n_samples > 6 else ''}"
                f"\n  metadata: {list(self.sample_metadata.columns)}"
            )
        return text
