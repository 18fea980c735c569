"""
Count-to-figures analysis of the bulk RNA-seq study.

run_analysis executes, top to bottom:

    1. load featureCounts (or CSV) counts and the sample sheet
    2. filter low-count genes (filterByExpr or stratified CPM filter)
    3. TMM log-CPM
    4. remove the batch (donor) effect from log-CPM for visualisation
    5. PCA before and after batch adjustment
    6. differential expression per contrast (DESeq2 or limma-trend)
    7. per gene set library: prerank GSEA and ORA per contrast, ssGSEA
    8. tables, figures and analysis_summary.json in the output directory

Re-running overwrites the outputs; nothing is cached.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from itertools import combinations
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd

from gdtseq import __version__
from gdtseq.core.biomatrix import BioMatrix
from gdtseq.core.transform import Transform
from gdtseq.enrichment import (
    load_gene_sets,
    over_representation,
    ranking_metric,
    run_prerank_gsea,
    run_ssgsea,
)
from gdtseq.io import (
    build_count_matrix,
    load_counts,
    load_sample_metadata,
    map_gene_names,
    read_gene_names,
    write_json,
    write_matrix,
    write_table,
)
from gdtseq.quality import FILTER_METHODS, FilterByExpr, StratifiedExpressionFilter
from gdtseq.stats import (
    BatchCorrection,
    Contrast,
    CountNormalizer,
    DEResult,
    PCAResult,
    run_differential_expression,
    run_pca,
)
from gdtseq.viz import (
    FigureCollection,
    configure_style,
    plot_gsea_bar,
    plot_library_sizes,
    plot_ma,
    plot_pca,
    plot_ssgsea_heatmap,
    plot_volcano,
)

logger = logging.getLogger(__name__)

__all__ = ['FILTER_METHODS', 'AnalysisConfig', 'AnalysisResult', 'default_contrasts', 'run_analysis']


@dataclass
class AnalysisConfig:
    """
    Settings of one analysis run.

    Paths:
        counts: featureCounts output or CSV/TSV count matrix
        metadata: sample sheet, one row per sample
        output: directory receiving tables, figures and the summary
        gene_sets: GMT or term/gene tables, one per library
        gene_annotation: GTF used to translate gene ids into symbols
    """
    counts: Optional[Path] = None
    metadata: Optional[Path] = None
    output: Path = Path("results")
    sample_col: Optional[str] = None
    condition_col: str = "condition"
    batch_col: Optional[str] = None
    contrasts: List[Contrast] = field(default_factory=list)

    filter_method: str = "filterByExpr"
    min_count: float = 10
    min_total_count: float = 15
    min_cpm: float = 1.0
    min_prevalence: float = 0.5
    min_group_size: int = 3
    prior_count: float = 2.0

    de_method: str = "deseq2"
    alpha: float = 0.05
    min_abs_lfc: float = 1.0
    n_cpus: int = 1

    n_top_pca: int = 500

    gene_sets: List[Path] = field(default_factory=list)
    gene_annotation: Optional[Path] = None
    ranking_metric: str = "signed_p"
    gsea_permutations: int = 1000
    gsea_min_size: int = 15
    gsea_max_size: int = 500
    gsea_fdr: float = 0.25
    ssgsea: bool = True
    ssgsea_min_size: int = 5
    ora: bool = True
    seed: int = 42
    threads: int = 1

    figure_format: str = "pdf"
    write_quality_flags: bool = False


@dataclass
class AnalysisResult:
    """Everything run_analysis computed, plus the files it wrote."""
    counts: BioMatrix
    filtered: BioMatrix
    logcpm: BioMatrix
    batch_corrected: Optional[BioMatrix]
    pca: PCAResult
    pca_batch_corrected: Optional[PCAResult]
    de_results: Dict[str, DEResult] = field(default_factory=dict)
    gsea: Dict[Tuple[str, str], pd.DataFrame] = field(default_factory=dict)
    ora: Dict[Tuple[str, str], pd.DataFrame] = field(default_factory=dict)
    ssgsea: Dict[str, pd.DataFrame] = field(default_factory=dict)
    outputs: List[Path] = field(default_factory=list)
    summary: dict = field(default_factory=dict)


def default_contrasts(levels: List[str]) -> List[Contrast]:
    """Every pair of condition levels, later level over earlier (sorted order)."""
    levels = sorted(levels)
    return [Contrast.from_levels(b, a) for a, b in combinations(levels, 2)]


def _filter_step(config: AnalysisConfig) -> Transform:
    if config.filter_method == "filterByExpr":
        return FilterByExpr(
            group_col=config.condition_col,
            min_count=config.min_count,
            min_total_count=config.min_total_count,
        )
    elif config.filter_method == "stratified":
        return StratifiedExpressionFilter(
            min_cpm=config.min_cpm,
            min_prevalence=config.min_prevalence,
            stratify_by=[config.condition_col],
            min_group_size=config.min_group_size,
        )
    else:
        raise ValueError(f"Unknown filter method '{config.filter_method}'; choose from {FILTER_METHODS}")


def _with_symbols(df: pd.DataFrame, names: Optional[pd.Series]) -> pd.DataFrame:
    """Re-index genes × samples by symbol, averaging genes that share one."""
    if names is None:
        return df
    relabeled = df.copy()
    relabeled.index = map_gene_names(df.index, names)
    return relabeled.groupby(level=0, sort=False).mean()


def _check_inputs(config: AnalysisConfig, matrix: BioMatrix) -> None:
    meta = matrix.sample_metadata
    if config.condition_col not in meta.columns:
        raise ValueError(
            f"Condition column '{config.condition_col}' not in sample metadata {list(meta.columns)}"
        )
    if config.batch_col and config.batch_col not in meta.columns:
        raise ValueError(f"Batch column '{config.batch_col}' not in sample metadata {list(meta.columns)}")
    if meta[config.condition_col].nunique() < 2:
        raise ValueError(f"Condition column '{config.condition_col}' has fewer than two levels")


def run_analysis(config: AnalysisConfig) -> AnalysisResult:
    """
    Run the full count analysis and write every output.

    Raises:
        FileNotFoundError: If counts, metadata, gene set or annotation files are missing
        ValueError: On inconsistent inputs (no shared samples, unknown columns or levels)
    """
    if config.counts is None or config.metadata is None:
        raise ValueError("Both counts and metadata paths are required")

    start_time = datetime.now()
    output = Path(config.output)
    output.mkdir(parents=True, exist_ok=True)
    outputs: List[Path] = []

    # 1. inputs
    counts_df = load_counts(config.counts)
    metadata = load_sample_metadata(config.metadata, sample_col=config.sample_col)
    matrix = build_count_matrix(counts_df, metadata)
    _check_inputs(config, matrix)
    logger.info(f"Loaded {matrix.n_features} genes x {matrix.n_samples} samples")

    names = read_gene_names(config.gene_annotation) if config.gene_annotation else None

    # 2-4. filter, normalize, batch adjust
    steps: List[Transform] = [_filter_step(config)]
    filtered = steps[0].apply(matrix)
    if filtered.n_features == 0:
        raise ValueError("No gene passed the expression filter")

    normalizer = CountNormalizer("logcpm", prior_count=config.prior_count)
    steps.append(normalizer)
    logcpm = normalizer.apply(filtered)

    batch_corrected = None
    if config.batch_col:
        steps.append(BatchCorrection(config.batch_col, protect_cols=[config.condition_col]))
        batch_corrected = steps[-1].apply(logcpm)

    outputs.append(write_matrix(filtered, output / "filtered_counts.csv", config.write_quality_flags))
    outputs.append(write_matrix(logcpm, output / "logcpm.csv", config.write_quality_flags))
    if batch_corrected is not None:
        outputs.append(write_matrix(batch_corrected, output / "logcpm_batch_corrected.csv",
                                    config.write_quality_flags))

    # 5. PCA
    meta = filtered.sample_metadata
    pca = run_pca(logcpm.to_dataframe(), n_top=config.n_top_pca)
    pca_scores = pca.scores.add_prefix("raw_")
    pca_corrected = None
    if batch_corrected is not None:
        pca_corrected = run_pca(batch_corrected.to_dataframe(), n_top=config.n_top_pca)
        pca_scores = pca_scores.join(pca_corrected.scores.add_prefix("batch_corrected_"))
    pca_scores.index.name = "sample_id"
    outputs.append(write_table(pca_scores, output / "pca_scores.csv", index=True))

    configure_style("paper")
    figures = FigureCollection()
    figures.add("library_sizes", plot_library_sizes(matrix.to_dataframe(), meta, color_by=config.condition_col))
    figures.add("pca", plot_pca(pca, meta, color_by=config.condition_col, shape_by=config.batch_col,
                                title="PCA (logCPM)"))
    if pca_corrected is not None:
        figures.add("pca_batch_corrected", plot_pca(
            pca_corrected, meta, color_by=config.condition_col, shape_by=config.batch_col,
            title=f"PCA ({config.batch_col} removed)",
        ))

    # 6. differential expression
    contrasts = config.contrasts or default_contrasts(meta[config.condition_col].astype(str).unique().tolist())
    counts_filtered = filtered.to_dataframe()
    logcpm_df = logcpm.to_dataframe()
    de_results: Dict[str, DEResult] = {}

    for contrast in contrasts:
        de = run_differential_expression(
            counts_filtered,
            meta,
            config.condition_col,
            contrast,
            method=config.de_method,
            batch_col=config.batch_col,
            log_expr=logcpm_df,
            alpha=config.alpha,
            min_abs_lfc=config.min_abs_lfc,
            n_cpus=config.n_cpus,
        )
        if names is not None:
            de.table.insert(1, "gene_name", map_gene_names(de.table["gene_id"], names))
        de_results[contrast.name] = de
        outputs.append(write_table(de.table, output / f"de_{contrast.name}.csv"))
        figures.add(f"volcano_{contrast.name}", plot_volcano(de))
        figures.add(f"ma_{contrast.name}", plot_ma(de))

    # 7. gene set analyses
    gsea_tables: Dict[Tuple[str, str], pd.DataFrame] = {}
    ora_tables: Dict[Tuple[str, str], pd.DataFrame] = {}
    ssgsea_scores: Dict[str, pd.DataFrame] = {}
    expr_for_sets = _with_symbols(
        (batch_corrected if batch_corrected is not None else logcpm).to_dataframe(), names
    )

    for gene_set_path in config.gene_sets:
        library = Path(gene_set_path).stem
        gene_sets = load_gene_sets(gene_set_path)

        for name, de in de_results.items():
            table = de.table
            if names is not None:
                table = table.assign(gene_id=table["gene_name"])
            ranking = ranking_metric(table, metric=config.ranking_metric)

            gsea = run_prerank_gsea(
                ranking,
                gene_sets,
                permutations=config.gsea_permutations,
                min_size=config.gsea_min_size,
                max_size=config.gsea_max_size,
                seed=config.seed,
                threads=config.threads,
            )
            gsea_tables[(name, library)] = gsea
            outputs.append(write_table(gsea, output / f"gsea_{name}_{library}.csv"))
            figures.add(f"gsea_{name}_{library}", plot_gsea_bar(
                gsea, fdr_threshold=config.gsea_fdr, title=f"{name}: {library}",
            ))

            if config.ora:
                background = table["gene_id"].astype(str)
                sig = table[table["significant"]]
                parts = []
                for direction, genes in (("up", sig[sig["log2_fold_change"] > 0]["gene_id"]),
                                         ("down", sig[sig["log2_fold_change"] < 0]["gene_id"])):
                    part = over_representation(genes.astype(str), gene_sets, background, alpha=config.alpha)
                    part.insert(0, "direction", direction)
                    parts.append(part)
                ora = pd.concat(parts, ignore_index=True)
                ora_tables[(name, library)] = ora
                outputs.append(write_table(ora, output / f"ora_{name}_{library}.csv"))

        if config.ssgsea:
            scores = run_ssgsea(
                expr_for_sets,
                gene_sets,
                min_size=config.ssgsea_min_size,
                max_size=config.gsea_max_size,
                seed=config.seed,
                threads=config.threads,
            )
            ssgsea_scores[library] = scores
            outputs.append(write_table(scores, output / f"ssgsea_{library}.csv", index=True))
            if not scores.dropna(how="all").empty:
                figures.add(f"ssgsea_{library}", plot_ssgsea_heatmap(
                    scores, meta, group_col=config.condition_col, title=f"ssGSEA: {library}",
                ))

    outputs.extend(figures.save_all(output / "figures", format=config.figure_format))
    figures.close_all()

    # 8. summary
    summary = {
        "gdtseq_version": __version__,
        "started": start_time.isoformat(),
        "finished": datetime.now().isoformat(),
        "config": asdict(config),
        "n_samples": matrix.n_samples,
        "n_genes_input": matrix.n_features,
        "n_genes_filtered": filtered.n_features,
        "processing": [step.describe() for step in steps],
        "tmm_factors": dict(zip(filtered.sample_ids, normalizer.factors.round(6).tolist())),
        "pca_explained_variance": pca.explained_variance_ratio.round(6).tolist(),
        "pca_batch_corrected_explained_variance": (
            pca_corrected.explained_variance_ratio.round(6).tolist() if pca_corrected is not None else None
        ),
        "differential_expression": [de.summary() for de in de_results.values()],
        "gsea": {
            f"{name}/{library}": int((table["fdr"] < config.gsea_fdr).sum())
            for (name, library), table in gsea_tables.items()
        },
        "outputs": [str(p) for p in outputs],
    }
    summary_path = write_json(summary, output / "analysis_summary.json")
    outputs.append(summary_path)
    logger.info(f"Analysis complete: {len(outputs)} files in {output}")

    return AnalysisResult(
        counts=matrix,
        filtered=filtered,
        logcpm=logcpm,
        batch_corrected=batch_corrected,
        pca=pca,
        pca_batch_corrected=pca_corrected,
        de_results=de_results,
        gsea=gsea_tables,
        ora=ora_tables,
        ssgsea=ssgsea_scores,
        outputs=outputs,
        summary=summary,
    )
