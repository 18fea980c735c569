"""
Tests for gene set loading, DE rankings, ORA and gseapy-backed GSEA.

gseapy-dependent tests are skipped when gseapy is not installed; the
column handling of the wrappers is checked against a stand-in result.
"""

from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest
from scipy.stats import hypergeom

from gdtseq.enrichment import (
    filter_gene_sets,
    load_gene_sets,
    over_representation,
    ranking_metric,
    run_prerank_gsea,
    run_ssgsea,
)
from gdtseq.enrichment import gsea as gsea_module
from gdtseq.enrichment.gene_sets import strip_gene_version
from gdtseq.enrichment.gsea import GSEA_COLUMNS
from gdtseq.enrichment.ora import HypergeometricTest, apply_fdr_correction


@pytest.fixture
def de_table():
    return pd.DataFrame({
        "gene_id": ["g1", "g2", "g3", "g4", "g5"],
        "log2_fold_change": [2.0, -1.0, 0.5, np.nan, -3.0],
        "stat": [5.0, -2.0, 1.0, np.nan, -6.0],
        "pvalue": [1e-5, 1e-2, 0.3, np.nan, 0.0],
    })


class TestGeneSetFiles:

    def test_long_table(self, tmp_path):
        path = tmp_path / "sets.csv"
        path.write_text("term,gene\nT1,A\nT1,B\nT1,A\nT2,C\n")
        assert load_gene_sets(path) == {"T1": ["A", "B"], "T2": ["C"]}

    def test_gmt(self, gene_set_file, planted_genes):
        pytest.importorskip("gseapy")
        sets = load_gene_sets(gene_set_file)
        assert set(sets) == {"UP_SET", "DOWN_SET", "RANDOM_SET"}
        assert sets["UP_SET"] == planted_genes["up"]

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_gene_sets(tmp_path / "none.gmt")

    def test_filter_by_universe_and_size(self):
        sets = {"small": ["a"], "ok": ["a", "b", "c", "x"], "big": list("abcdefgh")}
        kept = filter_gene_sets(sets, universe=list("abcdefg"), min_size=2, max_size=5)
        assert kept == {"ok": ["a", "b", "c"]}

    def test_strip_version(self):
        assert strip_gene_version(["ENSG00000141510.16", "TP53", "ENST1.2"]) == [
            "ENSG00000141510", "TP53", "ENST1",
        ]


class TestRankingMetric:

    def test_signed_p(self, de_table):
        ranking = ranking_metric(de_table)
        assert list(ranking.index) == ["g1", "g3", "g2", "g5"]
        assert ranking["g1"] == pytest.approx(5.0)
        assert ranking["g5"] == pytest.approx(-300.0)

    def test_stat_and_lfc(self, de_table):
        assert list(ranking_metric(de_table, "stat").index) == ["g1", "g3", "g2", "g5"]
        assert ranking_metric(de_table, "lfc")["g5"] == -3.0

    def test_ties_broken_by_gene_id(self):
        table = pd.DataFrame({"gene_id": ["b", "a", "c"], "log2_fold_change": [1.0, 1.0, 2.0]})
        assert list(ranking_metric(table, "lfc").index) == ["c", "a", "b"]

    def test_unknown_metric(self, de_table):
        with pytest.raises(ValueError, match="Unknown ranking metric"):
            ranking_metric(de_table, "rank")


class TestORA:

    def test_pvalue_matches_hypergeometric(self):
        background = {f"g{i}" for i in range(1000)}
        pathway = {f"g{i}" for i in range(50)}
        study = {f"g{i}" for i in range(10)} | {f"g{i}" for i in range(500, 540)}

        result = HypergeometricTest().test_enrichment(study, pathway, background)
        assert result.study_count == 10
        assert result.pvalue == pytest.approx(hypergeom.sf(9, 1000, 50, 50))
        assert result.enrichment_ratio == pytest.approx(10 / (50 * 50 / 1000))

    def test_genes_outside_background_ignored(self):
        result = HypergeometricTest().test_enrichment({"a", "z"}, {"a", "b", "y"}, {"a", "b", "c", "d"})
        assert result.study_size == 1
        assert result.pathway_size == 2
        assert result.overlap == ("a",)

    def test_table(self, planted_genes, count_table):
        sets = {
            "UP": planted_genes["up"],
            "DOWN": planted_genes["down"],
            "OUTSIDE": ["not_a_gene"],
        }
        table = over_representation(planted_genes["up"][:15], sets, count_table.index)
        assert list(table["term"]) == ["UP", "DOWN"]
        assert table.loc[0, "overlap"] == 15
        assert table.loc[0, "fdr"] < 1e-10
        assert table.loc[1, "pvalue"] == pytest.approx(1.0)

    def test_empty(self):
        table = over_representation(["a"], {"T": ["x"]}, ["a", "b"])
        assert table.empty
        assert "fdr" in table.columns

    def test_fdr_rejects_invalid(self):
        with pytest.raises(ValueError):
            apply_fdr_correction([0.1, 1.5])


class TestGseapyWrappers:

    def test_prerank_renames_and_sorts(self, monkeypatch):
        res2d = pd.DataFrame({
            "Name": ["prerank", "prerank"],
            "Term": ["A", "B"],
            "ES": [-0.5, 0.7],
            "NES": ["-1.2", "1.9"],
            "NOM p-val": [0.01, 0.001],
            "FDR q-val": [0.02, 0.004],
            "FWER p-val": [0.02, 0.003],
            "Tag %": ["3/20", "5/20"],
            "Gene %": ["10%", "12%"],
            "Lead_genes": ["x;y", "z"],
        })
        calls = {}

        def prerank(**kwargs):
            calls.update(kwargs)
            return SimpleNamespace(res2d=res2d)

        monkeypatch.setattr(gsea_module, "_gseapy", lambda: SimpleNamespace(prerank=prerank))
        table = run_prerank_gsea(pd.Series([2.0, 1.0], index=["x", "y"]), {"A": ["x"]}, permutations=10)

        assert list(table.columns) == GSEA_COLUMNS
        assert list(table["term"]) == ["B", "A"]
        assert table["nes"].dtype == float
        assert calls["permutation_num"] == 10
        assert calls["outdir"] is None

    def test_prerank_no_testable_sets(self, monkeypatch):
        def prerank(**kwargs):
            raise LookupError("No gene sets passed through filtering condition")

        monkeypatch.setattr(gsea_module, "_gseapy", lambda: SimpleNamespace(prerank=prerank))
        table = run_prerank_gsea(pd.Series([1.0], index=["x"]), {"A": ["x"]})
        assert table.empty
        assert list(table.columns) == GSEA_COLUMNS

    def test_prerank_empty_ranking(self):
        with pytest.raises(ValueError, match="Empty ranking"):
            run_prerank_gsea(pd.Series(dtype=float), {"A": ["x"]})

    def test_ssgsea_pivots(self, monkeypatch):
        res2d = pd.DataFrame({
            "Name": ["s2", "s1", "s2", "s1"],
            "Term": ["A", "A", "B", "B"],
            "ES": [1, 2, 3, 4],
            "NES": [0.1, 0.2, 0.3, 0.4],
        })
        monkeypatch.setattr(
            gsea_module, "_gseapy", lambda: SimpleNamespace(ssgsea=lambda **kwargs: SimpleNamespace(res2d=res2d))
        )
        expr = pd.DataFrame(np.zeros((2, 2)), index=["x", "y"], columns=["s1", "s2"])
        scores = run_ssgsea(expr, {"A": ["x"], "B": ["y"]})

        assert list(scores.columns) == ["s1", "s2"]
        assert scores.loc["A", "s1"] == pytest.approx(0.2)
        assert scores.index.name == "term"


class TestGseapyIntegration:

    @pytest.fixture
    def planted_ranking(self, planted_genes, count_table):
        rng = np.random.default_rng(5)
        genes = list(count_table.index)
        scores = pd.Series(rng.normal(0, 1, size=len(genes)), index=genes)
        scores[planted_genes["up"]] += 6
        scores[planted_genes["down"]] -= 6
        return scores.sort_values(ascending=False)

    def test_prerank_finds_planted_sets(self, planted_ranking, gene_set_file):
        pytest.importorskip("gseapy")
        sets = load_gene_sets(gene_set_file)
        table = run_prerank_gsea(planted_ranking, sets, permutations=100, seed=1).set_index("term")

        assert table.loc["UP_SET", "nes"] > 0
        assert table.loc["DOWN_SET", "nes"] < 0
        assert table.loc["UP_SET", "fdr"] < 0.05

    def test_ssgsea_separates_conditions(self, count_table, sample_metadata, gene_set_file):
        pytest.importorskip("gseapy")
        log_expr = np.log2(count_table + 1)
        scores = run_ssgsea(log_expr, load_gene_sets(gene_set_file))

        up = scores.loc["UP_SET"]
        is_pos = sample_metadata.loc[up.index, "condition"] == "CD16pos"
        assert up[is_pos].mean() > up[~is_pos].mean()
