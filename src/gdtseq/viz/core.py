"""
Figure handling for the analysis report.

Every plotting function returns a :class:`Figure`; the analysis collects them
in a :class:`FigureCollection` keyed by file stem (``pca``,
``volcano_CD16pos_vs_CD16neg``, ...) and writes them under ``figures/`` in
one call.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterator, Literal, Optional

import matplotlib.figure
import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)

OutputFormat = Literal["png", "pdf", "svg"]
FORMATS = ("png", "pdf", "svg")


@dataclass
class Figure:
    """
    A matplotlib figure plus what it shows.

    Attributes
    ----------
    fig : matplotlib.figure.Figure
        The drawn figure
    title : str
        Short title, e.g. "Volcano CD16pos_vs_CD16neg"
    description : str
        One sentence on the encoding (axes, colors, thresholds)
    metadata : dict
        Numbers behind the plot (counts of up/down genes, thresholds, ...);
        ``created_at`` is added automatically

    Examples
    --------
    >>> volcano = plot_volcano(de_result)
    >>> volcano.save("results/figures/volcano.pdf")
    >>> volcano.close()
    """
    fig: matplotlib.figure.Figure
    title: str
    description: str
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.metadata.setdefault("created_at", datetime.now().isoformat())

    def save(
        self,
        path: Path | str,
        format: Optional[OutputFormat] = None,
        dpi: int = 300,
        **kwargs
    ) -> Path:
        """
        Write the figure, creating parent directories.

        The format follows the file extension unless given; an unknown
        extension is written as png. ``dpi`` only matters for png.
        """
        path = Path(path)
        if format is None:
            suffix = path.suffix.lstrip(".").lower()
            format = suffix if suffix in FORMATS else "png"

        path.parent.mkdir(parents=True, exist_ok=True)
        self.fig.savefig(path, format=format, dpi=dpi, bbox_inches="tight", facecolor="white", **kwargs)
        logger.debug(f"Saved figure '{self.title}' to {path}")
        return path

    def to_base64(self, format: str = "png", dpi: int = 150) -> str:
        """Encoded image, for embedding in HTML or notebooks."""
        buf = io.BytesIO()
        self.fig.savefig(buf, format=format, dpi=dpi, bbox_inches="tight")
        return base64.b64encode(buf.getvalue()).decode()

    def close(self) -> None:
        plt.close(self.fig)


class FigureCollection:
    """
    Figures of one analysis run, keyed by output file stem.

    Keys keep insertion order; adding an existing key replaces the figure
    in place.

    Examples
    --------
    >>> figures = FigureCollection()
    >>> figures.add("pca", plot_pca(pca, metadata, color_by="condition"))
    >>> figures.add("volcano_CD16pos_vs_CD16neg", plot_volcano(de))
    >>> figures.save_all("results/figures", format="pdf")
    """

    def __init__(self):
        self.figures: dict[str, Figure] = {}

    def add(self, key: str, fig: Figure) -> FigureCollection:
        previous = self.figures.get(key)
        if previous is not None and previous is not fig:
            previous.close()
        self.figures[key] = fig
        return self

    def get(self, key: str) -> Optional[Figure]:
        return self.figures.get(key)

    def __getitem__(self, key: str) -> Figure:
        return self.figures[key]

    def __len__(self) -> int:
        return len(self.figures)

    def __iter__(self) -> Iterator[tuple[str, Figure]]:
        return iter(list(self.figures.items()))

    def save_all(
        self,
        output_dir: Path | str,
        format: OutputFormat = "pdf",
        dpi: int = 300
    ) -> list[Path]:
        """Write ``<output_dir>/<key>.<format>`` for every figure; returns the paths in order."""
        output_dir = Path(output_dir)
        paths = [fig.save(output_dir / f"{key}.{format}", format=format, dpi=dpi) for key, fig in self]
        logger.info(f"Saved {len(paths)} figures to {output_dir}")
        return paths

    def close_all(self) -> None:
        for _, fig in self:
            fig.close()
        self.figures.clear()
