"""Core data structures: BioMatrix, Transform and QualityFlag."""

from gdtseq.core.biomatrix import BioMatrix
from gdtseq.core.quality import QualityFlag
from gdtseq.core.transform import Transform

__all__ = ['BioMatrix', 'QualityFlag', 'Transform']
