"""
Consistent visual styles for the count analysis figures.

Conventions
-----------
- Up-regulated = Teal (#0d9488), down-regulated = Orange (#f97316)
- Not significant = Slate (#94a3b8)
- Sample groups (conditions, donors, batches) use a colorblind-safe
  categorical palette, stable for a given ordering of group labels
- ssGSEA scores use the RdBu_r diverging colormap centered at zero
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import matplotlib.pyplot as plt
import seaborn as sns


@dataclass(frozen=True)
class Palette:
    """
    Color palette for expression figures.

    Attributes
    ----------
    up : str
        Significantly up-regulated genes / positive NES
    down : str
        Significantly down-regulated genes / negative NES
    neutral : str
        Genes that are not significant
    highlight : str
        Labels and emphasised elements
    categorical : str
        Seaborn palette name for sample groups
    diverging : str
        Colormap for centered scores
    """
    up: str = "#0d9488"          # Teal-600
    down: str = "#f97316"        # Orange-500
    neutral: str = "#94a3b8"     # Slate-400
    highlight: str = "#1e293b"   # Slate-800
    categorical: str = "Set2"
    diverging: str = "RdBu_r"

    def for_groups(self, groups: list[str]) -> dict[str, str]:
        """Map group labels to colors in order of first appearance."""
        unique = list(dict.fromkeys(str(g) for g in groups))
        colors = sns.color_palette(self.categorical, max(len(unique), 3)).as_hex()
        return {group: colors[i % len(colors)] for i, group in enumerate(unique)}


PALETTES = {
    "default": Palette(),
    "colorblind": Palette(
        up="#0077bb",
        down="#ee7733",
        neutral="#bbbbbb",
        highlight="#000000",
        categorical="colorblind",
    ),
}


# base font size, tick/legend size, figure dpi, savefig dpi, line width
_STYLE_PRESETS = {
    "paper": (10, 9, 300, 300, 1.0),
    "notebook": (11, 10, 100, 150, 1.5),
}

_BASE_RC = {
    "figure.facecolor": "white",
    "axes.facecolor": "white",
    "axes.spines.top": False,
    "axes.spines.right": False,
    "legend.frameon": False,
    "pdf.fonttype": 42,  # keep text editable in the PDF figures
    **{key: "#333333" for key in ("axes.edgecolor", "axes.labelcolor", "text.color",
                                  "xtick.color", "ytick.color")},
}


def configure_style(
    style: Literal["paper", "notebook"] = "paper",
    palette: str | Palette = "default",
    font_scale: float = 1.0
) -> Palette:
    """
    Set matplotlib/seaborn defaults for the analysis figures.

    Parameters
    ----------
    style : {"paper", "notebook"}
        "paper" for the PDFs written by ``gdtseq analyze`` (small type,
        300 dpi); "notebook" for interactive use
    palette : str or Palette
        Key of PALETTES (unknown names fall back to "default") or a Palette
    font_scale : float
        Multiplier applied to every font size

    Returns
    -------
    Palette
        The palette the plotting functions should use.
    """
    if isinstance(palette, str):
        palette = PALETTES.get(palette, PALETTES["default"])

    base, small, fig_dpi, save_dpi, linewidth = _STYLE_PRESETS.get(style, _STYLE_PRESETS["paper"])
    sns.set_theme(style="ticks", context="paper" if style == "paper" else "notebook", font_scale=font_scale)
    plt.rcParams.update({
        **_BASE_RC,
        "font.size": base * font_scale,
        "axes.titlesize": (base + 1) * font_scale,
        "axes.labelsize": base * font_scale,
        "xtick.labelsize": small * font_scale,
        "ytick.labelsize": small * font_scale,
        "legend.fontsize": small * font_scale,
        "figure.dpi": fig_dpi,
        "savefig.dpi": save_dpi,
        "lines.linewidth": linewidth,
        "axes.linewidth": 0.8 if style == "paper" else 1.0,
    })
    return palette
