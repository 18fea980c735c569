"""
Tests for PCA on the most variable genes.
"""

import numpy as np
import pandas as pd
import pytest

from gdtseq.stats.pca import run_pca


@pytest.fixture
def two_groups():
    rng = np.random.default_rng(4)
    data = rng.normal(5, 0.2, size=(200, 8))
    data[:30, 4:] += 4.0
    return pd.DataFrame(
        data,
        index=[f"g{i}" for i in range(200)],
        columns=[f"a{i}" for i in range(4)] + [f"b{i}" for i in range(4)],
    )


class TestRunPCA:

    def test_first_component_separates_groups(self, two_groups):
        result = run_pca(two_groups, n_top=50)
        pc1 = result.scores["PC1"]
        a, b = pc1.iloc[:4], pc1.iloc[4:]
        assert (a.max() < b.min()) or (b.max() < a.min())
        assert result.explained_variance_ratio[0] > 0.5

    def test_top_genes_are_the_variable_ones(self, two_groups):
        result = run_pca(two_groups, n_top=30)
        assert set(result.genes_used) == {f"g{i}" for i in range(30)}
        assert result.loadings.shape == (30, 2)

    def test_labels(self, two_groups):
        result = run_pca(two_groups)
        assert result.axis_label(0).startswith("PC1 (")
        assert list(result.scores.index) == list(two_groups.columns)

    def test_drops_non_finite_genes(self, two_groups):
        two_groups.iloc[0, 0] = np.nan
        result = run_pca(two_groups, n_top=500)
        assert "g0" not in result.genes_used
        assert len(result.genes_used) == 199

    def test_components_capped(self, two_groups):
        result = run_pca(two_groups.iloc[:, :2], n_components=5)
        assert result.scores.shape == (2, 2)

    def test_single_sample(self, two_groups):
        with pytest.raises(ValueError, match="at least 2 samples"):
            run_pca(two_groups.iloc[:, :1])
