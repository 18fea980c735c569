"""
gdtseq CLI - bulk RNA-seq of gamma-delta T cells, reads to pathways.

Commands:
    gdtseq index       - Build the STAR genome index
    gdtseq preprocess  - QC, trim, align and index one sample (array task) or all
    gdtseq quantify    - featureCounts over every sample BAM
    gdtseq analyze     - Filtering, normalization, DE, PCA and gene set analyses
"""

import argparse
import sys
from typing import Optional, List


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for gdtseq."""
    parser = argparse.ArgumentParser(
        prog="gdtseq",
        description="Bulk RNA-seq pipeline: STAR/featureCounts upstream, DESeq2/limma and GSEA downstream",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  index         Build the STAR genome index (run once)
  preprocess    QC, trim, align and index samples from the job array
  quantify      Count reads per gene with featureCounts
  analyze       Differential expression and pathway analysis of the counts

Examples:
  gdtseq index --working-path ~/project/bulk
  gdtseq preprocess --working-path ~/project/bulk --task-id 3
  gdtseq quantify --working-path ~/project/bulk
  gdtseq analyze --counts data/expr/featureCounts.txt --metadata samples.csv \\
      --batch-col donor --gene-sets h.all.v2023.2.Hs.symbols.gmt --output results
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import and register subcommands
    from gdtseq.cli import index, preprocess, quantify, analyze
    index.register_parser(subparsers)
    preprocess.register_parser(subparsers)
    quantify.register_parser(subparsers)
    analyze.register_parser(subparsers)

    raw_args = list(sys.argv[1:] if args is None else args)
    parsed_args = parser.parse_args(raw_args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Raw tokens after the subcommand name, for config override detection
    parsed_args.cli_args = raw_args[raw_args.index(parsed_args.command) + 1:]

    # Dispatch to subcommand
    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
