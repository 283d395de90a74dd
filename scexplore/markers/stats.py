"""Per-feature summary statistics and the pre-filter applied before model fitting."""

import logging
from typing import List, Optional, Sequence, Tuple

import anndata
import numpy as np
import pandas as pd

from ..io.accessor import available_variables, fetch_data

logger = logging.getLogger(__name__)


def filter_candidates(
    adata: anndata.AnnData, genes_use: Optional[Sequence[str]] = None
) -> List[str]:
    """
    Restrict candidate features to those available in the dataset.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    genes_use : sequence of str, optional
        Candidate feature names. Defaults to all of adata.var_names.

    Returns
    -------
    list of str
        Available candidates, de-duplicated, in input order.
    """
    if genes_use is None:
        return adata.var_names.astype(str).tolist()

    candidates = list(dict.fromkeys(str(g) for g in genes_use))
    available = available_variables(adata)
    kept = [g for g in candidates if g in available]

    dropped = len(candidates) - len(kept)
    if dropped:
        logger.info(f"Dropped {dropped} candidate feature(s) not present in the dataset")
    return kept


def candidate_values(
    adata: anndata.AnnData,
    features: Sequence[str],
    use_layer: Optional[str] = None,
) -> Tuple[np.ndarray, List[str]]:
    """
    Fetch numeric values for candidate features.

    Non-numeric candidates (e.g. categorical metadata) are dropped.

    Returns
    -------
    values : np.ndarray
        Float array of shape (n_obs, n_features).
    names : list of str
        Names of the retained features, in candidate order.
    """
    if len(features) == 0:
        return np.zeros((adata.n_obs, 0)), []

    table = fetch_data(adata, features, use_layer=use_layer)
    numeric = [
        col for col in table.columns
        if pd.api.types.is_numeric_dtype(table[col]) or pd.api.types.is_bool_dtype(table[col])
    ]
    if len(numeric) < table.shape[1]:
        skipped = [col for col in table.columns if col not in numeric]
        logger.warning(f"Skipping non-numeric features: {skipped}")

    return table[numeric].to_numpy(dtype=float), numeric


def summarize_features(
    values: np.ndarray,
    mask_a: np.ndarray,
    mask_b: np.ndarray,
    features: Sequence[str],
) -> pd.DataFrame:
    """
    Compute mean difference and detection rates between two groups.

    Parameters
    ----------
    values : np.ndarray
        Cells × features matrix.
    mask_a, mask_b : np.ndarray
        Boolean masks selecting the cells of each group.
    features : sequence of str
        Feature names for the columns of ``values``.

    Returns
    -------
    pd.DataFrame
        Indexed by feature with columns ``avg_diff``, ``pct.1`` and ``pct.2``.
        Detection rates are fractions in [0, 1].
    """
    values_a = values[mask_a, :]
    values_b = values[mask_b, :]

    avg_diff = values_a.mean(axis=0) - values_b.mean(axis=0)
    pct_1 = (values_a > 0).mean(axis=0)
    pct_2 = (values_b > 0).mean(axis=0)

    return pd.DataFrame(
        {"avg_diff": avg_diff, "pct.1": pct_1, "pct.2": pct_2},
        index=pd.Index(list(features), name="feature"),
    )


def prefilter(
    summary: pd.DataFrame,
    thresh_use: Optional[float] = 0.25,
    min_pct: Optional[float] = 0.1,
) -> np.ndarray:
    """
    Select features worth a model fit.

    A feature passes when ``abs(avg_diff) > thresh_use`` and it is detected in
    more than ``min_pct`` of the cells of at least one group. A cutoff of None
    disables that criterion.

    Returns
    -------
    np.ndarray
        Boolean mask over the rows of ``summary``.
    """
    keep = np.ones(len(summary), dtype=bool)

    if thresh_use is not None:
        keep &= (summary["avg_diff"].abs() > thresh_use).to_numpy()

    if min_pct is not None:
        keep &= ((summary["pct.1"] > min_pct) | (summary["pct.2"] > min_pct)).to_numpy()

    logger.info(
        f"Pre-filter (thresh_use={thresh_use}, min_pct={min_pct}): "
        f"{int(keep.sum())} of {len(summary)} features kept"
    )
    return keep
