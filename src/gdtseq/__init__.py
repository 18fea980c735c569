"""
gdtseq - Bulk RNA-seq processing and analysis for the allogeneic Vδ2 T cell study

Two halves, connected only through files:
- preprocess: fastqc/fastp trimming, STAR alignment and featureCounts
  quantification, one SGE array task per sample
- analysis: expression filtering, TMM log-CPM, batch adjustment, PCA,
  differential expression (PyDESeq2 or limma-trend) and GSEA/ssGSEA (gseapy)
"""

__version__ = "0.1.0"

from gdtseq.core.biomatrix import BioMatrix
from gdtseq.core.transform import Transform
from gdtseq.core.quality import QualityFlag

__all__ = [
    "BioMatrix",
    "Transform",
    "QualityFlag",
]
