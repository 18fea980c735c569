"""
Tests for count table, sample sheet and annotation loading, and writers.
"""

import gzip
import json

import numpy as np
import pandas as pd
import pytest

from gdtseq.core.quality import QualityFlag
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
from gdtseq.io.loaders import (
    is_featurecounts_table,
    read_featurecounts,
    read_featurecounts_summary,
    sniff_delimiter,
)


GTF_TEXT = (
    "##description: toy GENCODE\n"
    'chr17\tHAVANA\tgene\t7661779\t7687538\t.\t-\t.\tgene_id "ENSG00000141510.16"; '
    'gene_type "protein_coding"; gene_name "TP53"; level 2;\n'
    'chr17\tHAVANA\ttranscript\t7661779\t7687538\t.\t-\t.\tgene_id "ENSG00000141510.16"; '
    'transcript_id "ENST00000269305.9"; gene_name "TP53";\n'
    'chr16\tHAVANA\tgene\t31265490\t31274010\t.\t-\t.\tgene_id "ENSG00000203747.11"; '
    'gene_name "FCGR3A";\n'
    'chrM\tENSEMBL\tgene\t1\t100\t.\t+\t.\tgene_id "ENSG00000999999.1";\n'
)


class TestFeatureCounts:

    def test_detects_layout(self, featurecounts_file, tmp_path):
        assert is_featurecounts_table(featurecounts_file)
        plain = tmp_path / "plain.csv"
        plain.write_text("gene,A,B\ng1,1,2\n")
        assert not is_featurecounts_table(plain)

    def test_sample_names_stripped(self, tmp_path, count_table, featurecounts_writer):
        path = tmp_path / "fc.txt"
        featurecounts_writer(count_table, path, bam_dir="/scratch/bam/")
        counts, lengths = read_featurecounts(path)

        assert list(counts.columns) == list(count_table.columns)
        assert counts.index.name == "gene_id"
        assert (lengths == 1001).all()
        np.testing.assert_array_equal(counts.to_numpy(), count_table.to_numpy())

    def test_not_featurecounts(self, tmp_path):
        path = tmp_path / "x.txt"
        path.write_text("Geneid\tA\ng1\t1\n")
        with pytest.raises(ValueError, match="not a featureCounts table"):
            read_featurecounts(path)

    def test_summary_drops_empty_statuses(self, tmp_path):
        path = tmp_path / "fc.txt.summary"
        path.write_text(
            "Status\tbam/A.sorted.bam\tbam/B.sorted.bam\n"
            "Assigned\t900\t800\n"
            "Unassigned_Unmapped\t0\t0\n"
            "Unassigned_NoFeatures\t100\t200\n"
        )
        summary = read_featurecounts_summary(path)
        assert list(summary.columns) == ["A", "B"]
        assert list(summary.index) == ["Assigned", "Unassigned_NoFeatures"]


class TestLoadCounts:

    def test_featurecounts_input(self, featurecounts_file, count_table):
        counts = load_counts(featurecounts_file)
        assert counts.shape == count_table.shape

    def test_tsv_matrix(self, tmp_path):
        path = tmp_path / "counts.tsv"
        path.write_text("gene\tA\tB\ng1\t1\t2\ng2\t0\t5\n")
        assert sniff_delimiter(path) == "\t"
        counts = load_counts(path)
        assert counts.loc["g2", "B"] == 5
        assert counts.index.name == "gene_id"

    def test_duplicate_genes_warn(self, tmp_path):
        path = tmp_path / "counts.csv"
        path.write_text("gene,A,B\ng1,1,2\ng1,3,4\ng2,0,5\n")
        with pytest.warns(UserWarning, match="duplicate gene"):
            counts = load_counts(path)
        assert counts.loc["g1", "A"] == 1

    def test_negative_counts(self, tmp_path):
        path = tmp_path / "counts.csv"
        path.write_text("gene,A,B\ng1,1,-2\n")
        with pytest.raises(ValueError, match="negative"):
            load_counts(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_counts(tmp_path / "absent.csv")


class TestSampleMetadata:

    def test_first_column_is_sample_id(self, metadata_file, sample_metadata):
        meta = load_sample_metadata(metadata_file)
        assert list(meta.index) == list(sample_metadata.index)
        assert set(meta.columns) == {"condition", "donor"}

    def test_explicit_sample_column(self, tmp_path):
        path = tmp_path / "meta.tsv"
        path.write_text("condition\tsample\nA\t s1\nB\ts2\n")
        meta = load_sample_metadata(path, sample_col="sample")
        assert list(meta.index) == ["s1", "s2"]

    def test_unknown_sample_column(self, metadata_file):
        with pytest.raises(ValueError, match="not in metadata"):
            load_sample_metadata(metadata_file, sample_col="nope")

    def test_duplicate_samples(self, tmp_path):
        path = tmp_path / "meta.csv"
        path.write_text("sample,condition\ns1,A\ns1,B\n")
        with pytest.raises(ValueError, match="Duplicate"):
            load_sample_metadata(path)


class TestBuildCountMatrix:

    def test_aligns_and_warns(self, count_table, sample_metadata):
        meta = sample_metadata.iloc[1:]
        with pytest.warns(UserWarning, match="without metadata"):
            matrix = build_count_matrix(count_table, meta)
        assert matrix.n_samples == count_table.shape[1] - 1
        assert list(matrix.sample_metadata.index) == list(matrix.sample_ids)

    def test_no_overlap(self, count_table):
        meta = pd.DataFrame({"condition": ["A"]}, index=["other"])
        with pytest.raises(ValueError, match="No overlap"):
            build_count_matrix(count_table, meta)


class TestGeneNames:

    @pytest.fixture
    def gtf(self, tmp_path):
        path = tmp_path / "toy.gtf"
        path.write_text(GTF_TEXT)
        return path

    def test_gene_records_only(self, gtf):
        names = read_gene_names(gtf)
        assert names["ENSG00000141510.16"] == "TP53"
        assert names["ENSG00000203747.11"] == "FCGR3A"
        assert names["ENSG00000999999.1"] == "ENSG00000999999.1"
        assert len(names) == 3

    def test_gzipped(self, tmp_path):
        path = tmp_path / "toy.gtf.gz"
        with gzip.open(path, "wt") as f:
            f.write(GTF_TEXT)
        assert read_gene_names(path)["ENSG00000141510.16"] == "TP53"

    def test_no_genes(self, tmp_path):
        path = tmp_path / "empty.gtf"
        path.write_text("# nothing\n")
        with pytest.raises(ValueError, match="No gene records"):
            read_gene_names(path)

    def test_repeated_gene_id_keeps_first(self, tmp_path):
        path = tmp_path / "repeated.gtf"
        path.write_text(GTF_TEXT + GTF_TEXT.replace('"TP53"', '"TP53_dup"'))
        names = read_gene_names(path)
        assert names["ENSG00000141510.16"] == "TP53"
        assert names.index.is_unique

    def test_map_keeps_unknown(self, gtf):
        names = read_gene_names(gtf)
        assert map_gene_names(["ENSG00000141510.16", "novel"], names) == ["TP53", "novel"]


class TestWriters:

    def test_matrix_with_flags(self, tmp_path, count_matrix):
        normalized = count_matrix.with_data(count_matrix.data / 2, QualityFlag.NORMALIZED)
        path = write_matrix(normalized, tmp_path / "out" / "logcpm.csv", write_quality_flags=True)

        df = pd.read_csv(path, index_col=0)
        assert df.index.name == "gene_id"
        assert df.shape == count_matrix.shape
        flags = pd.read_csv(tmp_path / "out" / "logcpm.flags.csv", index_col=0)
        assert (flags == int(QualityFlag.NORMALIZED)).all().all()

    def test_matrix_type_check(self, tmp_path):
        with pytest.raises(TypeError):
            write_matrix(pd.DataFrame(), tmp_path / "x.csv")

    def test_table_and_json(self, tmp_path):
        write_table(pd.DataFrame({"a": [1, 2]}), tmp_path / "t.csv")
        assert pd.read_csv(tmp_path / "t.csv")["a"].tolist() == [1, 2]

        write_json({"path": tmp_path, "n": 3}, tmp_path / "s.json")
        payload = json.loads((tmp_path / "s.json").read_text())
        assert payload == {"path": str(tmp_path), "n": 3}
