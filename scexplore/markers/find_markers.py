"""Entry point for two-group marker tests."""

import logging
from typing import Callable, Optional, Sequence, Tuple

import anndata
import pandas as pd

from ..io.loader import detect_batch_column
from .binomial import binomial_batch_test
from .errors import ConfigurationError
from .generic import generic_test
from .groups import GroupAssignment, build_group_assignment, select_groups
from .multitest import benjamini_hochberg
from .parameters import (
    BINOMIAL_BATCH,
    GENERIC_METHODS,
    RESULT_COLUMNS,
    MarkerTestParameters,
    as_label_list,
    validate_parameters,
)
from .stats import filter_candidates

logger = logging.getLogger(__name__)

P_VALUE_ALIASES = ["p.value", "pvals", "p_value"]

# (adata_sub, assignment, features, params, batch_key) -> (table, n_failed)
MarkerStrategy = Callable[
    [anndata.AnnData, GroupAssignment, Sequence[str], MarkerTestParameters, Optional[str]],
    Tuple[pd.DataFrame, int],
]


def _run_binomial_batch(adata_sub, assignment, features, params, batch_key):
    table = binomial_batch_test(
        adata_sub,
        assignment,
        features,
        batch_key=batch_key,
        thresh_use=params.thresh_use,
        min_pct=params.min_pct,
        use_layer=params.use_layer,
        n_jobs=params.n_jobs,
    )
    return table, table.attrs.get("n_failed", 0)


def _run_generic(adata_sub, assignment, features, params, batch_key):
    table = generic_test(
        adata_sub,
        assignment.ident_use,
        assignment.label_a,
        assignment.label_b,
        features,
        thresh_use=params.thresh_use,
        min_pct=params.min_pct,
        test_use=params.test_use,
        use_layer=params.use_layer,
    )
    return table, 0


def get_test_strategy(test_use: str) -> MarkerStrategy:
    """
    Select the backend for a test method name.

    Parameters
    ----------
    test_use : str
        ``binomial_batch`` or one of the generic test names.

    Returns
    -------
    callable
        Function running the test over all candidate features.
    """
    if test_use == BINOMIAL_BATCH:
        return _run_binomial_batch
    if test_use in GENERIC_METHODS:
        return _run_generic
    raise ConfigurationError(
        f"Unknown test_use '{test_use}'. Choose from: {[BINOMIAL_BATCH] + list(GENERIC_METHODS)}"
    )


def assemble_results(table: pd.DataFrame, rank_by: str = "avg_diff") -> pd.DataFrame:
    """
    Turn per-feature test output into the final marker table.

    Normalizes the p-value column name to ``p_val``, adds Benjamini-Hochberg
    q-values as ``q_val`` and sorts by ``rank_by`` in descending order. Ties
    keep their input order. No rows are dropped.

    Parameters
    ----------
    table : pd.DataFrame
        Indexed by feature, with ``avg_diff``, ``pct.1``, ``pct.2`` and a
        p-value column.
    rank_by : str
        Column to sort by.

    Returns
    -------
    pd.DataFrame
        Table with columns ``avg_diff``, ``pct.1``, ``pct.2``, ``p_val`` and
        ``q_val``.
    """
    if rank_by not in RESULT_COLUMNS:
        raise ConfigurationError(f"Unknown rank_by '{rank_by}'. Choose from: {RESULT_COLUMNS}")

    result = table.copy()
    for alias in P_VALUE_ALIASES:
        if alias in result.columns:
            result = result.rename(columns={alias: "p_val"})
            break

    if "p_val" not in result.columns:
        raise ConfigurationError(f"No p-value column found in test output: {list(table.columns)}")

    result["q_val"] = benjamini_hochberg(result["p_val"].to_numpy(dtype=float))
    result = result[RESULT_COLUMNS]
    result.index.name = "feature"

    return result.sort_values(rank_by, ascending=False, kind="mergesort")


def find_markers_with_parameters(
    adata: anndata.AnnData, params: MarkerTestParameters
) -> pd.DataFrame:
    """
    Run a marker test described by a MarkerTestParameters instance.

    See :func:`find_markers` for the meaning of each parameter.
    """
    is_valid, errors = validate_parameters(params)
    if not is_valid:
        raise ConfigurationError("; ".join(errors))

    strategy = get_test_strategy(params.test_use)

    if not adata.var_names.is_unique:
        duplicated = adata.var_names[adata.var_names.duplicated()].unique().tolist()
        raise ConfigurationError(
            f"adata.var_names are not unique ({duplicated[:10]}); "
            "call adata.var_names_make_unique() first"
        )

    if params.use_layer is not None and params.use_layer not in adata.layers:
        raise ConfigurationError(f"Layer '{params.use_layer}' not found in adata.layers")

    batch_key = None
    if params.test_use == BINOMIAL_BATCH:
        batch_key = params.batch_key or detect_batch_column(adata)
        if batch_key is None:
            raise ConfigurationError(
                "No batch column found; pass batch_key to use the binomial_batch test"
            )
        if batch_key not in adata.obs.columns:
            raise ConfigurationError(f"Batch column '{batch_key}' not found in adata.obs")

    assignment = build_group_assignment(
        adata, params.ident_use, params.labels_a, params.labels_b
    )
    features = filter_candidates(adata, params.genes_use)
    adata_sub, assignment_sub = select_groups(adata, assignment)

    logger.info(
        f"Testing {len(features)} candidate features with '{params.test_use}': "
        f"{assignment.label_a} vs {assignment.label_b}"
    )
    table, n_failed = strategy(adata_sub, assignment_sub, features, params, batch_key)

    result = assemble_results(table, rank_by=params.rank_by)
    result.attrs = {
        "n_failed": int(n_failed),
        "label_a": assignment.label_a,
        "label_b": assignment.label_b,
        "n_a": assignment.n_a,
        "n_b": assignment.n_b,
        "test_use": params.test_use,
        "batch_key": batch_key,
    }

    logger.info(f"Marker test complete: {len(result)} features reported")
    return result


def find_markers(
    adata: anndata.AnnData,
    ident_use: str,
    labels_a,
    labels_b=None,
    rank_by: str = "avg_diff",
    thresh_use: Optional[float] = 0.25,
    min_pct: Optional[float] = 0.1,
    test_use: str = BINOMIAL_BATCH,
    genes_use: Optional[Sequence[str]] = None,
    batch_key: Optional[str] = None,
    use_layer: Optional[str] = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Find features that differ between two groups of cells.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object. Not modified.
    ident_use : str
        Column in adata.obs defining the groups.
    labels_a : str or sequence of str
        Labels in ``ident_use`` pooled into group A.
    labels_b : str or sequence of str, optional
        Labels pooled into group B. Defaults to all other labels.
    rank_by : str
        Result column to sort by, descending (default: ``avg_diff``).
    thresh_use : float, optional
        Minimum absolute mean difference for a feature to be tested
        (default: 0.25). None disables this cutoff.
    min_pct : float, optional
        Minimum fraction of detecting cells in either group for a feature to
        be tested (default: 0.1). None disables this cutoff.
    test_use : str
        ``binomial_batch`` (default) for the batch random-effect logistic
        test; ``wilcox`` or ``t`` to delegate to scanpy.
    genes_use : sequence of str, optional
        Candidate features. Defaults to all genes. Names not in the dataset
        are dropped.
    batch_key : str, optional
        Column in adata.obs with batch labels. Auto-detected if None.
    use_layer : str, optional
        Layer for gene values. If None, uses adata.X.
    n_jobs : int
        Number of worker processes for per-feature model fits.

    Returns
    -------
    pd.DataFrame
        Indexed by feature with columns ``avg_diff``, ``pct.1``, ``pct.2``,
        ``p_val`` and ``q_val``, sorted by ``rank_by``. ``attrs`` records the
        group labels and sizes, the test used and ``n_failed``, the number of
        features whose model fit failed (their p-value is set to 1).
    """
    params = MarkerTestParameters(
        ident_use=ident_use,
        labels_a=as_label_list(labels_a) or [],
        labels_b=as_label_list(labels_b),
        test_use=test_use,
        batch_key=batch_key,
        use_layer=use_layer,
        thresh_use=thresh_use,
        min_pct=min_pct,
        rank_by=rank_by,
        genes_use=list(genes_use) if genes_use is not None else None,
        n_jobs=n_jobs,
    )
    return find_markers_with_parameters(adata, params)
