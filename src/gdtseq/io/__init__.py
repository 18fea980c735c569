"""
I/O for count tables, sample annotations and result files.

Key Functions:
    - read_featurecounts: featureCounts output -> counts + gene lengths
    - load_counts: featureCounts or plain CSV/TSV count matrix
    - load_sample_metadata: sample annotation table
    - build_count_matrix: align both into a BioMatrix
    - read_gene_names: gene_id -> gene_name from the GENCODE GTF
    - write_matrix / write_table / write_json: outputs

Examples:
    >>> from gdtseq.io import load_counts, load_sample_metadata, build_count_matrix
    >>> counts = load_counts(Path("data/expr/featureCounts.txt"))
    >>> metadata = load_sample_metadata(Path("samples.csv"))
    >>> matrix = build_count_matrix(counts, metadata)
"""

from gdtseq.io.annotation import map_gene_names, read_gene_names
from gdtseq.io.loaders import (
    build_count_matrix,
    load_counts,
    load_sample_metadata,
    read_featurecounts,
    read_featurecounts_summary,
)
from gdtseq.io.writers import write_json, write_matrix, write_table

__all__ = [
    'map_gene_names',
    'read_gene_names',
    'build_count_matrix',
    'load_counts',
    'load_sample_metadata',
    'read_featurecounts',
    'read_featurecounts_summary',
    'write_json',
    'write_matrix',
    'write_table',
]
