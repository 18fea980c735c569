"""
Figures of the count analysis.

Each function returns a :class:`~gdtseq.viz.core.Figure`; saving and closing
is left to the caller (usually a FigureCollection in the pipeline).

Figures:
    plot_library_sizes: reads assigned per sample
    plot_pca: samples on the first two principal components
    plot_volcano: log2 fold change vs -log10 p-value
    plot_ma: mean expression vs log2 fold change
    plot_gsea_bar: top gene sets by normalized enrichment score
    plot_ssgsea_heatmap: ssGSEA scores per sample, grouped by condition
"""

from __future__ import annotations

from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from adjustText import adjust_text
from matplotlib.colors import ListedColormap
from matplotlib.gridspec import GridSpec
from matplotlib.lines import Line2D

from gdtseq.stats.differential import DEResult
from gdtseq.stats.pca import PCAResult
from gdtseq.viz.core import Figure
from gdtseq.viz.styles import PALETTES, Palette

__all__ = [
    'plot_library_sizes',
    'plot_pca',
    'plot_volcano',
    'plot_ma',
    'plot_gsea_bar',
    'plot_ssgsea_heatmap',
]

MARKERS = ["o", "s", "^", "D", "v", "P", "X", "*"]


def _palette(palette: Optional[Palette]) -> Palette:
    return palette if palette is not None else PALETTES["default"]


def plot_library_sizes(
    counts: pd.DataFrame,
    metadata: Optional[pd.DataFrame] = None,
    color_by: Optional[str] = None,
    palette: Optional[Palette] = None,
    figsize: tuple[float, float] = (8, 4),
) -> Figure:
    """Bar chart of total assigned reads per sample, in millions."""
    palette = _palette(palette)
    lib = counts.sum(axis=0) / 1e6

    if metadata is not None and color_by:
        groups = metadata.loc[lib.index, color_by].astype(str)
        color_map = palette.for_groups(groups.tolist())
        colors = groups.map(color_map).tolist()
    else:
        color_map = {}
        colors = palette.neutral

    fig, ax = plt.subplots(figsize=figsize)
    ax.bar(range(len(lib)), lib.to_numpy(), color=colors, edgecolor="white", linewidth=0.5)
    ax.set_xticks(range(len(lib)))
    ax.set_xticklabels(lib.index, rotation=90)
    ax.set_ylabel("Assigned reads (millions)")
    ax.set_title("Library sizes")
    if color_map:
        handles = [Line2D([0], [0], marker="s", color="w", markerfacecolor=c, markersize=8, label=g)
                   for g, c in color_map.items()]
        ax.legend(handles=handles, title=color_by, loc="upper right")
    plt.tight_layout()

    return Figure(
        fig=fig,
        title="Library sizes",
        description="Total featureCounts-assigned reads per sample",
        metadata={"n_samples": len(lib), "min_millions": float(lib.min()), "max_millions": float(lib.max())},
    )


def plot_pca(
    pca: PCAResult,
    metadata: pd.DataFrame,
    color_by: str,
    shape_by: Optional[str] = None,
    label_samples: bool = False,
    title: str = "PCA",
    palette: Optional[Palette] = None,
    figsize: tuple[float, float] = (6, 5),
) -> Figure:
    """
    Samples on PC1 vs PC2, colored by one metadata column and optionally
    shaped by another (e.g. condition and donor).

    Raises:
        ValueError: If fewer than two components were computed or a column is missing
    """
    if pca.scores.shape[1] < 2:
        raise ValueError("plot_pca needs at least two principal components")
    for col in [color_by] + ([shape_by] if shape_by else []):
        if col not in metadata.columns:
            raise ValueError(f"Column '{col}' not in sample metadata")

    palette = _palette(palette)
    meta = metadata.loc[pca.scores.index]
    colors = palette.for_groups(meta[color_by].astype(str).tolist())
    shapes = {}
    if shape_by:
        levels = list(dict.fromkeys(meta[shape_by].astype(str)))
        shapes = {level: MARKERS[i % len(MARKERS)] for i, level in enumerate(levels)}

    fig, ax = plt.subplots(figsize=figsize)
    for sample, (pc1, pc2) in pca.scores.iloc[:, :2].iterrows():
        group = str(meta.at[sample, color_by])
        marker = shapes.get(str(meta.at[sample, shape_by]), "o") if shape_by else "o"
        ax.scatter(pc1, pc2, color=colors[group], marker=marker, s=60, edgecolors="white", linewidths=0.5)
        if label_samples:
            ax.annotate(str(sample), (pc1, pc2), fontsize=7, xytext=(3, 3), textcoords="offset points")

    handles = [Line2D([0], [0], marker="o", color="w", markerfacecolor=c, markersize=8, label=g)
               for g, c in colors.items()]
    handles += [Line2D([0], [0], marker=m, color="w", markerfacecolor="#6b7280", markersize=8, label=s)
                for s, m in shapes.items()]
    ax.legend(handles=handles, loc="center left", bbox_to_anchor=(1.0, 0.5))

    ax.set_xlabel(pca.axis_label(0))
    ax.set_ylabel(pca.axis_label(1))
    ax.set_title(title)
    plt.tight_layout()

    return Figure(
        fig=fig,
        title=title,
        description=f"PCA of top {len(pca.genes_used)} variable genes, colored by {color_by}",
        metadata={"color_by": color_by, "shape_by": shape_by, "n_genes": len(pca.genes_used)},
    )


def _direction_colors(table: pd.DataFrame, palette: Palette) -> np.ndarray:
    colors = np.full(len(table), palette.neutral, dtype=object)
    sig = table["significant"].to_numpy(dtype=bool)
    lfc = table["log2_fold_change"].to_numpy(dtype=float)
    colors[sig & (lfc > 0)] = palette.up
    colors[sig & (lfc < 0)] = palette.down
    return colors


def plot_volcano(
    de: DEResult,
    label_top: int = 10,
    palette: Optional[Palette] = None,
    figsize: tuple[float, float] = (6, 5),
) -> Figure:
    """
    Volcano plot: log2 fold change vs -log10(p-value).

    Significance (colors) follows the thresholds stored on the DEResult;
    the ``label_top`` most significant genes are labelled, by symbol when
    the table has a ``gene_name`` column.
    """
    palette = _palette(palette)
    table = de.table.dropna(subset=["pvalue", "log2_fold_change"])
    neglog10p = -np.log10(table["pvalue"].clip(lower=1e-300))

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(
        table["log2_fold_change"], neglog10p,
        c=_direction_colors(table, palette), s=8, alpha=0.7, linewidths=0,
    )
    for x in (-de.min_abs_lfc, de.min_abs_lfc):
        ax.axvline(x, color="#94a3b8", linestyle="--", linewidth=0.8)

    label_col = "gene_name" if "gene_name" in table.columns else "gene_id"
    sig = table[table["significant"]]
    texts = []
    for idx, row in sig.nsmallest(label_top, "pvalue").iterrows():
        texts.append(ax.text(row["log2_fold_change"], neglog10p.loc[idx], row[label_col],
                             fontsize=7, color=palette.highlight))
    if texts:
        adjust_text(texts, ax=ax, arrowprops=dict(arrowstyle="-", color="#94a3b8", lw=0.5))

    ax.set_xlabel(r"log$_2$ fold change")
    ax.set_ylabel(r"-log$_{10}$(p-value)")
    ax.set_title(f"{de.contrast.numerator} vs {de.contrast.denominator}")
    handles = [
        Line2D([0], [0], marker="o", color="w", markerfacecolor=palette.up, markersize=6, label=f"Up ({len(de.up)})"),
        Line2D([0], [0], marker="o", color="w", markerfacecolor=palette.down, markersize=6, label=f"Down ({len(de.down)})"),
    ]
    ax.legend(handles=handles, loc="upper left")
    plt.tight_layout()

    return Figure(
        fig=fig,
        title=f"Volcano {de.contrast.name}",
        description=f"{de.method}: padj < {de.alpha}, |log2FC| >= {de.min_abs_lfc}",
        metadata=de.summary(),
    )


def plot_ma(
    de: DEResult,
    palette: Optional[Palette] = None,
    figsize: tuple[float, float] = (6, 4),
) -> Figure:
    """MA plot: mean expression (log scale) vs log2 fold change."""
    palette = _palette(palette)
    table = de.table.dropna(subset=["base_mean", "log2_fold_change"])

    if de.method == "deseq2":
        x = np.log10(table["base_mean"].clip(lower=1e-1))
        xlabel = r"log$_{10}$ mean of normalized counts"
    else:
        x = table["base_mean"]
        xlabel = r"average log$_2$ CPM"

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(x, table["log2_fold_change"], c=_direction_colors(table, palette), s=6, alpha=0.7, linewidths=0)
    ax.axhline(0, color="#333333", linewidth=0.8)
    ax.set_xlabel(xlabel)
    ax.set_ylabel(r"log$_2$ fold change")
    ax.set_title(f"{de.contrast.numerator} vs {de.contrast.denominator}")
    plt.tight_layout()

    return Figure(
        fig=fig,
        title=f"MA {de.contrast.name}",
        description=f"MA plot ({de.method})",
        metadata=de.summary(),
    )


def plot_gsea_bar(
    gsea_table: pd.DataFrame,
    top_n: int = 20,
    fdr_threshold: float = 0.25,
    title: str = "GSEA",
    palette: Optional[Palette] = None,
) -> Figure:
    """
    Horizontal bars of NES for the top gene sets.

    Sets passing ``fdr_threshold`` are ranked by |NES|; up to ``top_n``
    are shown, positive NES in the up color and negative in the down color.
    """
    palette = _palette(palette)
    table = gsea_table.dropna(subset=["nes"])
    table = table[table["fdr"] < fdr_threshold]
    table = table.reindex(table["nes"].abs().sort_values(ascending=False).index).head(top_n)
    table = table.sort_values("nes")

    height = max(2.5, 0.3 * len(table) + 1)
    fig, ax = plt.subplots(figsize=(7, height))
    if table.empty:
        ax.text(0.5, 0.5, f"No gene set with FDR < {fdr_threshold}", ha="center", va="center",
                transform=ax.transAxes)
        ax.set_axis_off()
    else:
        colors = [palette.up if v > 0 else palette.down for v in table["nes"]]
        ax.barh(range(len(table)), table["nes"], color=colors)
        ax.set_yticks(range(len(table)))
        ax.set_yticklabels(table["term"])
        ax.axvline(0, color="#333333", linewidth=0.8)
        ax.set_xlabel("Normalized enrichment score")
    ax.set_title(title)
    plt.tight_layout()

    return Figure(
        fig=fig,
        title=title,
        description=f"Top {len(table)} gene sets at FDR < {fdr_threshold}",
        metadata={"n_shown": len(table), "fdr_threshold": fdr_threshold},
    )


def plot_ssgsea_heatmap(
    scores: pd.DataFrame,
    metadata: pd.DataFrame,
    group_col: str,
    top_n: Optional[int] = 50,
    title: str = "ssGSEA",
    palette: Optional[Palette] = None,
) -> Figure:
    """
    Heatmap of ssGSEA scores (terms × samples).

    Samples are ordered by ``group_col`` with a color strip on top; each
    term is z-scored across samples. With ``top_n`` only the most variable
    terms are drawn.

    Raises:
        ValueError: If group_col is missing or no score is available
    """
    if group_col not in metadata.columns:
        raise ValueError(f"Column '{group_col}' not in sample metadata")
    scores = scores.dropna(how="all")
    if scores.empty:
        raise ValueError("No ssGSEA scores to plot")

    palette = _palette(palette)
    groups = metadata.loc[scores.columns, group_col].astype(str)
    order = groups.sort_values(kind="mergesort").index
    if top_n is not None and len(scores) > top_n:
        scores = scores.loc[scores.var(axis=1).sort_values(ascending=False).index[:top_n]]
    data = scores[order]
    std = data.std(axis=1).replace(0, 1.0)
    z = data.sub(data.mean(axis=1), axis=0).div(std, axis=0)

    color_map = palette.for_groups(groups[order].tolist())
    height = max(3.0, 0.22 * len(z) + 1.5)
    fig = plt.figure(figsize=(max(6.0, 0.35 * z.shape[1] + 4), height))
    gs = GridSpec(2, 1, height_ratios=[0.4, max(len(z), 1)], hspace=0.02, figure=fig)

    ax_strip = fig.add_subplot(gs[0])
    strip = np.array([[list(color_map).index(g) for g in groups[order]]])
    ax_strip.imshow(strip, aspect="auto", cmap=ListedColormap(list(color_map.values())))
    ax_strip.set_axis_off()

    ax = fig.add_subplot(gs[1])
    sns.heatmap(z, ax=ax, cmap=palette.diverging, center=0, cbar_kws={"label": "z-score", "shrink": 0.5},
                xticklabels=True, yticklabels=True)
    ax.set_xlabel("")
    ax.set_ylabel("")
    handles = [Line2D([0], [0], marker="s", color="w", markerfacecolor=c, markersize=8, label=g)
               for g, c in color_map.items()]
    ax_strip.legend(handles=handles, loc="lower left", bbox_to_anchor=(1.0, 0.0), title=group_col)
    ax_strip.set_title(title)

    return Figure(
        fig=fig,
        title=title,
        description=f"ssGSEA scores (row z-score) grouped by {group_col}",
        metadata={"n_terms": len(z), "n_samples": z.shape[1], "group_col": group_col},
    )
