"""Arguments and setup shared by the gdtseq subcommands."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from gdtseq.cli._validators import _positive_int


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """--config and --verbose, on every subcommand."""
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (optional, CLI args override config values)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")


def add_layout_arguments(parser: argparse.ArgumentParser, threads_default: int = 16) -> None:
    """Working directory, reference files and tool execution options of the upstream steps."""
    parser.add_argument("--working-path", "-w", type=Path, default=None,
                        help="Project root holding raw/, ref/, STAR_idx/, data/ (required, via CLI or config)")
    parser.add_argument("--gtf", type=Path, default=None,
                        help="Gene annotation GTF (default: <working-path>/ref/gencode.v32.primary_assembly.annotation.gtf)")
    parser.add_argument("--fasta", type=Path, default=None,
                        help="Genome FASTA (default: <working-path>/ref/Homo_sapiens.GRCh38.dna.primary_assembly.fa)")
    parser.add_argument("--star-index", type=Path, default=None,
                        help="STAR index directory (default: <working-path>/STAR_idx)")
    parser.add_argument("--threads", type=_positive_int, default=threads_default,
                        help=f"Threads per tool (default: {threads_default})")
    parser.add_argument("--dry-run", action="store_true",
                        help="Log the tool commands without running them")
