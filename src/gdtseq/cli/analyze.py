"""
gdtseq analyze command - count matrix to DE tables, pathways and figures.

Usage:
    gdtseq analyze --counts data/expr/featureCounts.txt --metadata samples.csv --output results
    gdtseq analyze --config gdtseq.yaml --method limma-trend
"""

import argparse
import logging
from pathlib import Path

from gdtseq.cli._common import add_common_arguments, setup_logging
from gdtseq.cli._validators import _non_negative_float, _positive_int, _probability
from gdtseq.quality.filtering import FILTER_METHODS
from gdtseq.stats.differential import DE_METHODS


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the analyze subcommand."""
    parser = subparsers.add_parser(
        "analyze",
        help="Differential expression and pathway analysis of the counts",
        description="Filtering, TMM log-CPM, batch adjustment, PCA, DESeq2/limma-trend, "
                    "prerank GSEA, ORA and ssGSEA",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Outputs (in --output):
  filtered_counts.csv, logcpm.csv, logcpm_batch_corrected.csv, pca_scores.csv
  de_<contrast>.csv, gsea_<contrast>_<library>.csv, ora_<contrast>_<library>.csv,
  ssgsea_<library>.csv, figures/, analysis_summary.json
        """,
    )
    add_common_arguments(parser)

    # Input/output
    parser.add_argument("--counts", type=Path, default=None,
                        help="featureCounts output or CSV/TSV count matrix (genes x samples). "
                             "Default: the counts file under --working-path")
    parser.add_argument("--working-path", "-w", type=Path, default=None,
                        help="Project root; locates the featureCounts table when --counts is not given")
    parser.add_argument("--metadata", type=Path, default=None,
                        help="Sample sheet CSV/TSV, one row per sample (required, via CLI or config)")
    parser.add_argument("--output", "-o", type=Path, default=Path("results"),
                        help="Output directory (default: results)")
    parser.add_argument("--sample-col", default=None,
                        help="Sample id column of the sample sheet (default: first column)")

    # Design
    parser.add_argument("--condition-col", default="condition",
                        help="Metadata column with the biological condition (default: condition)")
    parser.add_argument("--batch-col", default=None,
                        help="Metadata column with the batch/donor; a covariate in DE and removed for PCA/ssGSEA")
    parser.add_argument("--contrast", nargs=3, action="append", default=None,
                        metavar=("NAME", "NUMERATOR", "DENOMINATOR"),
                        help="Contrast to test (repeatable). Default: every pair of condition levels")

    # Filtering and DE
    parser.add_argument("--filter-method", choices=FILTER_METHODS, default="filterByExpr",
                        help="Low-count gene filter (default: filterByExpr)")
    parser.add_argument("--method", choices=DE_METHODS, default="deseq2",
                        help="Differential expression method (default: deseq2)")
    parser.add_argument("--alpha", type=_probability, default=0.05,
                        help="Adjusted p-value threshold (default: 0.05)")
    parser.add_argument("--min-abs-lfc", type=_non_negative_float, default=1.0,
                        help="Minimum |log2 fold change| for significance (default: 1.0)")
    parser.add_argument("--n-cpus", type=_positive_int, default=1,
                        help="CPUs for DESeq2 fitting (default: 1)")

    # Gene sets
    parser.add_argument("--gene-sets", type=Path, nargs="+", default=None,
                        help="Gene set libraries (.gmt or term/gene tables)")
    parser.add_argument("--gene-annotation", type=Path, default=None,
                        help="GTF used to map gene ids to symbols for gene set analyses")
    parser.add_argument("--permutations", type=_positive_int, default=1000,
                        help="GSEA permutations (default: 1000)")
    parser.add_argument("--seed", type=int, default=42,
                        help="Random seed for GSEA (default: 42)")

    parser.set_defaults(func=run_analyze)


def run_analyze(args: argparse.Namespace) -> int:
    """Execute the analyze command."""
    import matplotlib
    matplotlib.use("Agg")

    from gdtseq.cli.config import resolve_config
    from gdtseq.pipeline import run_analysis

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = resolve_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: Config file error: {e}")
        return 1

    analysis = config.analysis
    if analysis.counts is None and config.working_path is not None:
        analysis.counts = config.layout().counts_file

    # Validate required arguments (after config merge)
    if analysis.counts is None:
        print("ERROR: --counts is required (via CLI, config file or --working-path)")
        return 1
    if analysis.metadata is None:
        print("ERROR: --metadata is required (via CLI or config file)")
        return 1

    print(f"\n{'='*70}")
    print("  Bulk RNA-seq analysis")
    print(f"{'='*70}")
    print(f"  Counts:    {analysis.counts}")
    print(f"  Metadata:  {analysis.metadata}")
    print(f"  Method:    {analysis.de_method}")
    print(f"  Output:    {analysis.output}")

    try:
        result = run_analysis(analysis)
    except (FileNotFoundError, ValueError, ImportError) as e:
        logger.error(f"Analysis failed: {e}")
        print(f"ERROR: {e}")
        return 1

    print(f"\n  Genes: {result.summary['n_genes_input']} -> {result.summary['n_genes_filtered']} after filtering")
    for de in result.summary["differential_expression"]:
        print(f"  {de['contrast']}: {de['n_up']} up, {de['n_down']} down")
    print(f"\n  {len(result.outputs)} files written to {analysis.output}")
    return 0
