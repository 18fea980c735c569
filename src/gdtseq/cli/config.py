"""
Configuration file support for the gdtseq CLI.

Supports YAML and JSON config files with CLI argument override.

Layout (every key optional)::

    working_path: ~/project-liliyang/bulk
    reference:
      gtf: ref/gencode.v32.primary_assembly.annotation.gtf
      fasta: ref/Homo_sapiens.GRCh38.dna.primary_assembly.fa
      star_index: STAR_idx
    jobs:
      jobs_list: jobs_list
      counts_file: data/expr/featureCounts.txt
    tools:
      index_threads: 32
      threads: 16
      qc_threads: 16
      sjdb_overhang: 49
      run_qc: true
      star: {score_min_over_lread: 0.3, match_nmin_over_lread: 0.3,
             multimap_nmax: 20, reads_unmapped: Fastx_failed}
    analysis:
      metadata: samples.csv
      output: results
      condition_col: condition
      batch_col: donor
      contrasts:
        - [CD16pos_vs_CD16neg, CD16pos, CD16neg]
      gene_sets: [h.all.v2023.2.Hs.symbols.gmt]

Relative paths under ``reference`` and ``jobs`` resolve against
``working_path``.
"""

import json
from argparse import Namespace
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from gdtseq.enrichment.gene_sets import RANKING_METRICS
from gdtseq.pipeline import FILTER_METHODS, AnalysisConfig
from gdtseq.preprocess import PipelineLayout, ToolSettings
from gdtseq.preprocess.commands import StarAlignFilters
from gdtseq.stats.differential import DE_METHODS, Contrast

SECTIONS = ("reference", "jobs", "tools", "analysis")


@dataclass
class ReferenceConfig:
    """Reference genome files."""
    gtf: Optional[Path] = None
    fasta: Optional[Path] = None
    star_index: Optional[Path] = None


@dataclass
class ToolConfig:
    """Thread counts and tool parameters."""
    index_threads: int = 32
    threads: int = 16
    qc_threads: int = 16
    sjdb_overhang: int = 49
    run_qc: bool = True
    star: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineConfig:
    """
    Complete configuration schema.

    Mirrors the CLI argument structure for consistency.
    """
    working_path: Optional[Path] = None
    reference: ReferenceConfig = field(default_factory=ReferenceConfig)
    jobs_list: Optional[Path] = None
    counts_file: Optional[Path] = None
    tools: ToolConfig = field(default_factory=ToolConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "PipelineConfig":
        """Typed view of a config dictionary (as returned by load_config)."""
        pc = cls()
        if config.get("working_path") is not None:
            pc.working_path = _as_path(config["working_path"])
        for key, value in config.get("reference", {}).items():
            setattr(pc.reference, key, _as_path(value))
        for key, value in config.get("jobs", {}).items():
            setattr(pc, key, _as_path(value))
        for key, value in config.get("tools", {}).items():
            setattr(pc.tools, key, value)
        for key, value in config.get("analysis", {}).items():
            setattr(pc.analysis, key, _convert_analysis_value(key, value))
        return pc

    def layout(self) -> PipelineLayout:
        """
        Resolve every preprocessing path.

        Raises:
            ValueError: If working_path is not set
        """
        if self.working_path is None:
            raise ValueError("working_path is required (via --working-path or config file)")

        def resolve(path: Optional[Path]) -> Optional[Path]:
            if path is None or path.is_absolute():
                return path
            return self.working_path / path

        return PipelineLayout(
            working_path=self.working_path,
            gtf=resolve(self.reference.gtf),
            fasta=resolve(self.reference.fasta),
            star_index=resolve(self.reference.star_index),
            jobs_list=resolve(self.jobs_list),
            counts_file=resolve(self.counts_file),
        )

    def tool_settings(self) -> ToolSettings:
        return ToolSettings(
            index_threads=self.tools.index_threads,
            threads=self.tools.threads,
            qc_threads=self.tools.qc_threads,
            sjdb_overhang=self.tools.sjdb_overhang,
            run_qc=self.tools.run_qc,
            star_filters=StarAlignFilters(**self.tools.star),
        )


def _as_path(value: Any) -> Optional[Path]:
    if value is None:
        return None
    return Path(str(value)).expanduser()


def _parse_contrast(value: Any) -> Contrast:
    if isinstance(value, Contrast):
        return value
    if isinstance(value, dict):
        numerator, denominator = str(value["numerator"]), str(value["denominator"])
        name = value.get("name") or f"{numerator}_vs_{denominator}"
        return Contrast(str(name), numerator, denominator)
    if isinstance(value, (list, tuple)) and len(value) == 3:
        return Contrast(*(str(v) for v in value))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return Contrast.from_levels(str(value[0]), str(value[1]))
    raise ValueError(
        f"Invalid contrast {value!r}: use [name, numerator, denominator], "
        "[numerator, denominator] or a mapping with numerator/denominator"
    )


_ANALYSIS_PATH_KEYS = {"counts", "metadata", "output", "gene_annotation"}


def _convert_analysis_value(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in _ANALYSIS_PATH_KEYS:
        return _as_path(value)
    if key == "gene_sets":
        values = [value] if isinstance(value, (str, Path)) else value
        return [_as_path(v) for v in values]
    if key == "contrasts":
        return [_parse_contrast(v) for v in value]
    return value


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid

    Examples:
        >>> config = load_config(Path("gdtseq.yaml"))
        >>> print(config['analysis']['condition_col'])
        condition
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def _merge_value(cli_value: Any, config_value: Any, arg_name: str, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default
    """
    if was_explicitly_set:
        return cli_value

    if config_value is not None:
        return config_value

    return cli_value


# CLI destination -> (config section or None for top level, config key)
ARG_MAP = {
    'working_path': (None, 'working_path'),
    'gtf': ('reference', 'gtf'),
    'fasta': ('reference', 'fasta'),
    'star_index': ('reference', 'star_index'),
    'jobs_list': ('jobs', 'jobs_list'),
    'counts_file': ('jobs', 'counts_file'),
    'threads': ('tools', 'threads'),
    'index_threads': ('tools', 'index_threads'),
    'counts': ('analysis', 'counts'),
    'metadata': ('analysis', 'metadata'),
    'output': ('analysis', 'output'),
    'sample_col': ('analysis', 'sample_col'),
    'condition_col': ('analysis', 'condition_col'),
    'batch_col': ('analysis', 'batch_col'),
    'method': ('analysis', 'de_method'),
    'contrast': ('analysis', 'contrasts'),
    'gene_sets': ('analysis', 'gene_sets'),
    'gene_annotation': ('analysis', 'gene_annotation'),
    'alpha': ('analysis', 'alpha'),
    'min_abs_lfc': ('analysis', 'min_abs_lfc'),
    'filter_method': ('analysis', 'filter_method'),
    'permutations': ('analysis', 'gsea_permutations'),
    'n_cpus': ('analysis', 'n_cpus'),
    'seed': ('analysis', 'seed'),
}

_PATH_ARGS = {'working_path', 'gtf', 'fasta', 'star_index', 'jobs_list', 'counts_file',
              'counts', 'metadata', 'output', 'gene_annotation'}

_SHORT_TO_LONG = {
    'c': 'config',
    'o': 'output',
    'w': 'working_path',
    'v': 'verbose',
}


def explicit_arg_names(cli_args: Optional[List[str]]) -> set:
    """Destinations of the options that appear literally in ``cli_args``."""
    explicit = set()
    for arg in cli_args or []:
        if arg.startswith('--'):
            explicit.add(arg[2:].split('=', 1)[0].replace('-', '_'))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in _SHORT_TO_LONG:
            explicit.add(_SHORT_TO_LONG[arg[1]])
    return explicit


def merge_config_with_args(config: Dict[str, Any], args: Namespace, cli_args: Optional[List[str]] = None) -> Namespace:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Only destinations the subcommand defines are touched.

    Parameters:
        config: Configuration dictionary from load_config()
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values).
                  If None, assumes all args are defaults

    Returns:
        Updated Namespace with merged values
    """
    explicit_args = explicit_arg_names(cli_args)
    merged = Namespace(**vars(args))

    for arg_name, (section, key) in ARG_MAP.items():
        if not hasattr(merged, arg_name):
            continue
        source = config if section is None else config.get(section, {})
        if key not in source:
            continue

        config_value = source[key]
        if config_value is not None and arg_name in _PATH_ARGS:
            config_value = _as_path(config_value)

        setattr(merged, arg_name, _merge_value(
            getattr(merged, arg_name),
            config_value,
            arg_name,
            arg_name in explicit_args,
        ))

    return merged


def build_pipeline_config(config: Dict[str, Any], args: Namespace) -> PipelineConfig:
    """
    Typed configuration for a command.

    Config-only keys come from the file; every option the command exposes
    takes its merged value from ``args`` (see merge_config_with_args).
    """
    pc = PipelineConfig.from_dict(config)
    targets = {None: pc, 'reference': pc.reference, 'jobs': pc, 'tools': pc.tools, 'analysis': pc.analysis}

    for arg_name, (section, key) in ARG_MAP.items():
        value = getattr(args, arg_name, None)
        if value is None:
            continue
        if section == 'analysis':
            value = _convert_analysis_value(key, value)
        elif arg_name in _PATH_ARGS:
            value = _as_path(value)
        setattr(targets[section], key, value)

    if getattr(args, 'skip_qc', False):
        pc.tools.run_qc = False

    return pc


def _check_positive_int(section: str, key: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValueError(f"{section}.{key} must be a positive integer, got: {value!r}")


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration structure and values.

    Performs basic validation:
    - Known sections and keys only
    - Valid method choices
    - Positive thread counts, thresholds in range, well-formed contrasts

    Raises:
        ValueError: If configuration is invalid
    """
    unknown = set(config) - {"working_path", *SECTIONS}
    if unknown:
        raise ValueError(f"Unknown config keys: {sorted(unknown)}. Allowed: working_path, {', '.join(SECTIONS)}")

    for section in SECTIONS:
        if section in config and not isinstance(config[section], dict):
            raise ValueError(f"Config section '{section}' must be a mapping")

    allowed = {
        "reference": {f.name for f in fields(ReferenceConfig)},
        "jobs": {"jobs_list", "counts_file"},
        "tools": {f.name for f in fields(ToolConfig)},
        "analysis": {f.name for f in fields(AnalysisConfig)},
    }
    for section, keys in allowed.items():
        unknown = set(config.get(section, {})) - keys
        if unknown:
            raise ValueError(f"Unknown keys in '{section}': {sorted(unknown)}")

    tools = config.get("tools", {})
    for key in ("index_threads", "threads", "qc_threads", "sjdb_overhang"):
        if key in tools:
            _check_positive_int("tools", key, tools[key])
    if "star" in tools:
        star_keys = {f.name for f in fields(StarAlignFilters)}
        if not isinstance(tools["star"], dict) or set(tools["star"]) - star_keys:
            raise ValueError(f"tools.star must be a mapping with keys from {sorted(star_keys)}")

    analysis = config.get("analysis", {})
    if "de_method" in analysis and analysis["de_method"] not in DE_METHODS:
        raise ValueError(
            f"Invalid DE method '{analysis['de_method']}'. Choose from: {', '.join(DE_METHODS)}"
        )
    if "filter_method" in analysis and analysis["filter_method"] not in FILTER_METHODS:
        raise ValueError(
            f"Invalid filter method '{analysis['filter_method']}'. Choose from: {', '.join(FILTER_METHODS)}"
        )
    if "ranking_metric" in analysis and analysis["ranking_metric"] not in RANKING_METRICS:
        raise ValueError(
            f"Invalid ranking metric '{analysis['ranking_metric']}'. Choose from: {', '.join(RANKING_METRICS)}"
        )
    for key in ("alpha", "gsea_fdr"):
        if key in analysis:
            value = analysis[key]
            if not isinstance(value, (int, float)) or not (0 < value < 1):
                raise ValueError(f"analysis.{key} must be in (0, 1), got: {value!r}")
    if "min_abs_lfc" in analysis:
        value = analysis["min_abs_lfc"]
        if not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"analysis.min_abs_lfc must be a non-negative number, got: {value!r}")
    for key in ("gsea_permutations", "n_top_pca", "n_cpus", "threads"):
        if key in analysis:
            _check_positive_int("analysis", key, analysis[key])
    if "contrasts" in analysis:
        if not isinstance(analysis["contrasts"], list):
            raise ValueError("analysis.contrasts must be a list")
        for contrast in analysis["contrasts"]:
            _parse_contrast(contrast)


def resolve_config(args: Namespace) -> PipelineConfig:
    """
    Load ``args.config`` (if given), merge it with the command line and
    return the typed configuration.

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file is invalid
    """
    config: Dict[str, Any] = {}
    if getattr(args, 'config', None):
        print(f"Loading configuration from: {args.config}")
        config = load_config(args.config)
        validate_config(config)
        args = merge_config_with_args(config, args, getattr(args, 'cli_args', None))
        print("  Configuration loaded successfully")
    return build_pipeline_config(config, args)
