"""
Figures for the count analysis.

Quick Start
-----------
>>> from gdtseq.viz import configure_style, plot_pca, plot_volcano
>>> configure_style("paper")
>>> plot_pca(pca, metadata, color_by="condition").save("figures/pca.pdf")
>>> plot_volcano(de_result).save("figures/volcano.pdf")
"""

from gdtseq.viz.core import Figure, FigureCollection
from gdtseq.viz.plots import (
    plot_gsea_bar,
    plot_library_sizes,
    plot_ma,
    plot_pca,
    plot_ssgsea_heatmap,
    plot_volcano,
)
from gdtseq.viz.styles import PALETTES, Palette, configure_style

__all__ = [
    'Figure',
    'FigureCollection',
    'PALETTES',
    'Palette',
    'configure_style',
    'plot_gsea_bar',
    'plot_library_sizes',
    'plot_ma',
    'plot_pca',
    'plot_ssgsea_heatmap',
    'plot_volcano',
]
