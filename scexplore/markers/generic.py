"""Generic two-group tests delegated to scanpy's ``rank_genes_groups``."""

import logging
from typing import Optional, Sequence

import anndata
import numpy as np
import pandas as pd

from ..utils.deps import require_package
from .errors import ConfigurationError
from .parameters import GENERIC_METHODS
from .stats import candidate_values, prefilter, summarize_features

logger = logging.getLogger(__name__)


def generic_test(
    adata: anndata.AnnData,
    group_key: str,
    label_a: str,
    label_b: str,
    features: Sequence[str],
    thresh_use: Optional[float] = 0.25,
    min_pct: Optional[float] = 0.1,
    test_use: str = "wilcox",
    use_layer: Optional[str] = None,
) -> pd.DataFrame:
    """
    Compare two groups with a standard test from scanpy.

    The same summary statistics and pre-filter as the random-effect test are
    applied first; surviving features are passed to
    ``scanpy.tl.rank_genes_groups`` with ``label_b`` as the reference group.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset holding the cells of both groups.
    group_key : str
        Column in adata.obs with the canonical group labels.
    label_a, label_b : str
        Labels of the two groups in ``group_key``.
    features : sequence of str
        Available candidate features.
    thresh_use : float, optional
        Minimum absolute mean difference to test a feature.
    min_pct : float, optional
        Minimum detection rate in at least one group to test a feature.
    test_use : str
        One of ``wilcox``, ``wilcoxon``, ``t``, ``t-test`` or
        ``t-test_overestim_var``.
    use_layer : str, optional
        Layer for gene values. If None, uses adata.X.

    Returns
    -------
    pd.DataFrame
        Indexed by feature with columns ``avg_diff``, ``pct.1``, ``pct.2`` and
        ``p.value``.
    """
    if test_use not in GENERIC_METHODS:
        raise ConfigurationError(
            f"Unknown test_use '{test_use}'. Choose from: {list(GENERIC_METHODS)}"
        )
    require_package("scanpy")
    import scanpy as sc

    groups = adata.obs[group_key].astype(str)
    mask_a = (groups == label_a).to_numpy()
    mask_b = (groups == label_b).to_numpy()

    values, names = candidate_values(adata, features, use_layer=use_layer)
    summary = summarize_features(values, mask_a, mask_b, names)
    keep = prefilter(summary, thresh_use=thresh_use, min_pct=min_pct)
    summary = summary[keep].copy()

    if summary.empty:
        summary["p.value"] = pd.Series(dtype=float)
        return summary

    in_scope = mask_a | mask_b
    test_adata = anndata.AnnData(
        X=values[np.ix_(in_scope, keep)],
        obs=pd.DataFrame(
            {group_key: pd.Categorical(groups[in_scope], categories=[label_a, label_b])},
            index=adata.obs_names[in_scope],
        ),
        var=pd.DataFrame(index=summary.index.astype(str)),
    )

    method = GENERIC_METHODS[test_use]
    logger.info(
        f"Running scanpy rank_genes_groups ({method}) on {test_adata.n_vars} features: "
        f"{label_a} vs {label_b}"
    )
    sc.tl.rank_genes_groups(
        test_adata,
        groupby=group_key,
        groups=[label_a],
        reference=label_b,
        method=method,
        use_raw=False,
    )
    ranked = sc.get.rank_genes_groups_df(test_adata, group=label_a)

    p_values = ranked.set_index("names")["pvals"]
    summary["p.value"] = p_values.reindex(summary.index.astype(str)).to_numpy()
    return summary
