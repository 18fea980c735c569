"""
Pytest configuration and shared fixtures.

The synthetic study mirrors the real one: 6 donors, each contributing a
CD16+ and a CD16- gamma-delta T cell sample, sequenced as single-end reads
and counted with featureCounts against GENCODE gene ids.
"""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from gdtseq.core.biomatrix import BioMatrix

N_GENES = 400
N_DONORS = 6
N_UP = 20
N_DOWN = 20
N_LOW = 60


def gene_ids(n: int) -> list[str]:
    return [f"ENSG{i:011d}.{i % 7 + 1}" for i in range(1, n + 1)]


def generate_counts(seed: int = 7) -> tuple[pd.DataFrame, pd.DataFrame, dict]:
    """
    Negative binomial counts with planted differential genes.

    Design:
        - genes 0..19 are 6x higher in CD16pos
        - genes 20..39 are 6x lower in CD16pos
        - the last 60 genes are near zero everywhere
        - every donor scales all of its genes by a common factor (batch effect)
        - library sizes vary about 2-fold between samples
    """
    rng = np.random.RandomState(seed)

    samples, conditions, donors = [], [], []
    for d in range(1, N_DONORS + 1):
        for condition in ("CD16neg", "CD16pos"):
            samples.append(f"D{d}_{condition}")
            conditions.append(condition)
            donors.append(f"donor{d}")

    genes = gene_ids(N_GENES)
    base = rng.lognormal(mean=5.0, sigma=1.0, size=N_GENES)
    base[-N_LOW:] = 0.05

    donor_effect = {f"donor{d}": rng.uniform(0.6, 1.6) for d in range(1, N_DONORS + 1)}
    lib_factor = rng.uniform(0.7, 1.4, size=len(samples))

    dispersion = 0.05
    counts = np.empty((N_GENES, len(samples)), dtype=np.int64)
    for j, (condition, donor) in enumerate(zip(conditions, donors)):
        mu = base * donor_effect[donor] * lib_factor[j]
        if condition == "CD16pos":
            mu[:N_UP] *= 6.0
            mu[N_UP:N_UP + N_DOWN] /= 6.0
        size = 1.0 / dispersion
        counts[:, j] = rng.negative_binomial(size, size / (size + mu))

    count_df = pd.DataFrame(counts, index=pd.Index(genes, name="gene_id"), columns=samples)
    metadata = pd.DataFrame(
        {"condition": conditions, "donor": donors},
        index=pd.Index(samples, name="sample_id"),
    )
    planted = {"up": genes[:N_UP], "down": genes[N_UP:N_UP + N_DOWN], "low": genes[-N_LOW:]}
    return count_df, metadata, planted


@pytest.fixture
def study():
    return generate_counts()


@pytest.fixture
def count_table(study):
    return study[0].copy()


@pytest.fixture
def sample_metadata(study):
    return study[1].copy()


@pytest.fixture
def planted_genes(study):
    return study[2]


@pytest.fixture
def count_matrix(count_table, sample_metadata):
    return BioMatrix.from_dataframe(count_table, sample_metadata)


def write_featurecounts(counts: pd.DataFrame, path, bam_dir: str = "") -> None:
    """Write counts in featureCounts ``-o`` layout, header comment included."""
    table = pd.DataFrame(
        {
            "Chr": "chr1",
            "Start": 1000,
            "End": 2000,
            "Strand": "+",
            "Length": 1001,
        },
        index=pd.Index(counts.index, name="Geneid"),
    )
    for sample in counts.columns:
        table[f"{bam_dir}{sample}.sorted.bam"] = counts[sample].to_numpy()
    with open(path, "w") as f:
        f.write('# Program:featureCounts v2.0.1; Command:"featureCounts" "-T" "16"\n')
        table.to_csv(f, sep="\t")


@pytest.fixture
def featurecounts_file(tmp_path, count_table):
    path = tmp_path / "featureCounts.txt"
    write_featurecounts(count_table, path)
    return path


@pytest.fixture
def metadata_file(tmp_path, sample_metadata):
    path = tmp_path / "samples.csv"
    sample_metadata.reset_index().to_csv(path, index=False)
    return path


@pytest.fixture
def gene_set_file(tmp_path, planted_genes):
    """GMT with one set of up genes, one of down genes and one random set."""
    rng = np.random.RandomState(3)
    background = gene_ids(N_GENES)[N_UP + N_DOWN:-N_LOW]
    random_set = list(rng.choice(background, size=20, replace=False))
    path = tmp_path / "toy.gmt"
    lines = [
        "\t".join(["UP_SET", "na", *planted_genes["up"]]),
        "\t".join(["DOWN_SET", "na", *planted_genes["down"]]),
        "\t".join(["RANDOM_SET", "na", *random_set]),
    ]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def featurecounts_writer():
    return write_featurecounts
