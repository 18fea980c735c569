"""
Tests for config file loading, validation and CLI override merging.
"""

import json
from argparse import Namespace
from pathlib import Path

import pytest

from gdtseq.cli.config import (
    PipelineConfig,
    build_pipeline_config,
    explicit_arg_names,
    load_config,
    merge_config_with_args,
    validate_config,
)
from gdtseq.stats.differential import Contrast


CONFIG_YAML = """
working_path: /data/bulk
reference:
  gtf: ref/annotation.gtf
  star_index: /shared/STAR_idx
jobs:
  jobs_list: jobs_list
tools:
  threads: 8
  star: {multimap_nmax: 10}
analysis:
  metadata: samples.csv
  condition_col: cell_type
  batch_col: donor
  de_method: limma-trend
  contrasts:
    - [pos_vs_neg, CD16pos, CD16neg]
  gene_sets: hallmark.gmt
"""


@pytest.fixture
def yaml_config(tmp_path):
    path = tmp_path / "gdtseq.yaml"
    path.write_text(CONFIG_YAML)
    return path


# =============================================================================
# Loading
# =============================================================================

class TestLoadConfig:

    def test_yaml(self, yaml_config):
        config = load_config(yaml_config)
        assert config["tools"]["threads"] == 8
        assert config["analysis"]["contrasts"] == [["pos_vs_neg", "CD16pos", "CD16neg"]]

    def test_json(self, tmp_path):
        path = tmp_path / "c.json"
        path.write_text(json.dumps({"analysis": {"alpha": 0.1}}))
        assert load_config(path) == {"analysis": {"alpha": 0.1}}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config(path) == {}

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "c.toml"
        path.write_text("a = 1\n")
        with pytest.raises(ValueError, match="Unsupported config format"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("analysis: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(path)

    def test_top_level_list(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="dictionary"):
            load_config(path)


# =============================================================================
# Validation
# =============================================================================

class TestValidateConfig:

    def test_valid(self, yaml_config):
        validate_config(load_config(yaml_config))

    @pytest.mark.parametrize("config, match", [
        ({"outputs": "x"}, "Unknown config keys"),
        ({"analysis": "x"}, "must be a mapping"),
        ({"analysis": {"alpah": 0.1}}, "Unknown keys in 'analysis'"),
        ({"tools": {"threads": 0}}, "positive integer"),
        ({"tools": {"threads": True}}, "positive integer"),
        ({"tools": {"star": {"bogus": 1}}}, "tools.star"),
        ({"analysis": {"de_method": "edger"}}, "Invalid DE method"),
        ({"analysis": {"filter_method": "none"}}, "Invalid filter method"),
        ({"analysis": {"ranking_metric": "rank"}}, "Invalid ranking metric"),
        ({"analysis": {"alpha": 1.5}}, "alpha"),
        ({"analysis": {"min_abs_lfc": -1}}, "min_abs_lfc"),
        ({"analysis": {"gsea_permutations": 0}}, "gsea_permutations"),
        ({"analysis": {"contrasts": "a_vs_b"}}, "must be a list"),
        ({"analysis": {"contrasts": [["only_one"]]}}, "Invalid contrast"),
    ])
    def test_invalid(self, config, match):
        with pytest.raises(ValueError, match=match):
            validate_config(config)


# =============================================================================
# Typed config
# =============================================================================

class TestPipelineConfig:

    def test_from_dict(self, yaml_config):
        pc = PipelineConfig.from_dict(load_config(yaml_config))
        assert pc.working_path == Path("/data/bulk")
        assert pc.tools.threads == 8
        assert pc.analysis.contrasts == [Contrast("pos_vs_neg", "CD16pos", "CD16neg")]
        assert pc.analysis.gene_sets == [Path("hallmark.gmt")]
        assert pc.analysis.metadata == Path("samples.csv")

    def test_layout_resolves_relative_paths(self, yaml_config):
        layout = PipelineConfig.from_dict(load_config(yaml_config)).layout()
        assert layout.gtf == Path("/data/bulk/ref/annotation.gtf")
        assert layout.star_index == Path("/shared/STAR_idx")
        assert layout.jobs_list == Path("/data/bulk/jobs_list")
        assert layout.counts_file == Path("/data/bulk/data/expr/featureCounts.txt")

    def test_layout_requires_working_path(self):
        with pytest.raises(ValueError, match="working_path"):
            PipelineConfig().layout()

    def test_tool_settings(self, yaml_config):
        settings = PipelineConfig.from_dict(load_config(yaml_config)).tool_settings()
        assert settings.threads == 8
        assert settings.index_threads == 32
        assert settings.star_filters.multimap_nmax == 10

    @pytest.mark.parametrize("value, expected", [
        ({"numerator": "B", "denominator": "A"}, Contrast("B_vs_A", "B", "A")),
        ({"name": "x", "numerator": "B", "denominator": "A"}, Contrast("x", "B", "A")),
        (["B", "A"], Contrast("B_vs_A", "B", "A")),
    ])
    def test_contrast_forms(self, value, expected):
        pc = PipelineConfig.from_dict({"analysis": {"contrasts": [value]}})
        assert pc.analysis.contrasts == [expected]


# =============================================================================
# CLI merging
# =============================================================================

class TestMerge:

    def test_explicit_arg_names(self):
        names = explicit_arg_names(["-w", "/x", "--batch-col=donor", "--threads", "4", "-o", "out", "value"])
        assert names == {"working_path", "batch_col", "threads", "output"}

    def test_config_fills_defaults(self, yaml_config):
        config = load_config(yaml_config)
        args = Namespace(working_path=None, threads=16, condition_col="condition", verbose=False)
        merged = merge_config_with_args(config, args, cli_args=[])

        assert merged.working_path == Path("/data/bulk")
        assert merged.threads == 8
        assert merged.condition_col == "cell_type"

    def test_explicit_cli_wins(self, yaml_config):
        config = load_config(yaml_config)
        args = Namespace(working_path=Path("/other"), threads=16, method="deseq2")
        merged = merge_config_with_args(config, args, cli_args=["-w", "/other", "--method", "deseq2"])

        assert merged.working_path == Path("/other")
        assert merged.method == "deseq2"
        assert merged.threads == 8

    def test_only_defined_destinations(self, yaml_config):
        merged = merge_config_with_args(load_config(yaml_config), Namespace(threads=16), cli_args=[])
        assert not hasattr(merged, "batch_col")

    def test_build_pipeline_config(self, yaml_config):
        config = load_config(yaml_config)
        args = Namespace(
            working_path=None, threads=4, method="limma-trend", contrast=[["b_vs_a", "b", "a"]],
            output=Path("out"), skip_qc=True,
        )
        args = merge_config_with_args(config, args, cli_args=["--threads", "4", "--contrast", "b_vs_a", "b", "a"])
        pc = build_pipeline_config(config, args)

        assert pc.working_path == Path("/data/bulk")
        assert pc.tools.threads == 4
        assert pc.tools.run_qc is False
        assert pc.analysis.de_method == "limma-trend"
        assert pc.analysis.contrasts == [Contrast("b_vs_a", "b", "a")]
        assert pc.analysis.output == Path("out")
        assert pc.analysis.batch_col == "donor"
