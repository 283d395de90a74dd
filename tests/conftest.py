"""Shared fixtures for scexplore tests."""

import numpy as np
import pandas as pd
import pytest
from anndata import AnnData


def create_marker_adata(n_per_group=40, n_other=10):
    """
    Create a small dataset with two groups (X, Y) and a third, excluded one (Z).

    - G1 is detected in every X cell and no Y cell.
    - G2 is detected in half of the cells of each group, with the same
      pattern in both, but at a higher level in X.
    - G3 is detected in a single X cell.
    - G4 does not exist.
    """
    n_obs = 2 * n_per_group + n_other
    cluster = ["X"] * n_per_group + ["Y"] * n_per_group + ["Z"] * n_other
    within = np.concatenate([np.arange(n_per_group), np.arange(n_per_group), np.arange(n_other)])
    batch = np.where(within % 2 == 0, "b1", "b2")
    half = (within // 2) % 2 == 0

    is_x = np.array([c == "X" for c in cluster])
    is_y = np.array([c == "Y" for c in cluster])

    g1 = np.where(is_x, 2.0, 0.0)
    g2 = np.where(half, np.where(is_x, 2.0, 1.0), 0.0)
    g3 = np.zeros(n_obs)
    g3[0] = 20.0
    noise = np.random.RandomState(0).poisson(0.5, size=n_obs).astype(float)
    noise[is_y] = 0.0

    X = np.column_stack([g1, g2, g3, noise])
    obs = pd.DataFrame(
        {
            "cluster": pd.Categorical(cluster),
            "batch": batch,
            "nCount_RNA": np.arange(n_obs, dtype=float),
        },
        index=[f"cell_{i}" for i in range(n_obs)],
    )
    var = pd.DataFrame(index=["G1", "G2", "G3", "Noise"])

    adata = AnnData(X=X, obs=obs, var=var)
    adata.obsm["X_umap"] = np.column_stack([np.arange(n_obs), -np.arange(n_obs)]).astype(float)
    return adata


@pytest.fixture
def marker_adata():
    return create_marker_adata()


@pytest.fixture
def random_adata():
    """Random count-like dataset with three clusters and two samples."""
    rng = np.random.RandomState(42)
    n_cells, n_genes = 120, 30

    X = rng.poisson(1.0, size=(n_cells, n_genes)).astype(float)
    obs = pd.DataFrame(
        {
            "cluster": rng.choice(["A", "B", "C"], n_cells),
            "sample_id": rng.choice(["s1", "s2"], n_cells),
        },
        index=[f"cell_{i}" for i in range(n_cells)],
    )
    var = pd.DataFrame(index=[f"gene_{i}" for i in range(n_genes)])
    return AnnData(X=X, obs=obs, var=var)
