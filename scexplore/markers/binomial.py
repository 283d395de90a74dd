"""
Random-effect logistic marker test.

Each feature is binarized (detected / not detected) and modeled with a
logistic mixed model: fixed effects for an intercept and membership in
group A, and a random intercept per batch. The p-value is a Wald test of
the group coefficient. Features are tested independently, optionally in
parallel; a failed fit is recorded for that feature only.
"""

import logging
import warnings
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import anndata
import numpy as np
import pandas as pd
from scipy import sparse, stats
from statsmodels.genmod.bayes_mixed_glm import BinomialBayesMixedGLM
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from .errors import ConfigurationError, ModelFitError
from .groups import GroupAssignment
from .stats import candidate_values, prefilter, summarize_features

logger = logging.getLogger(__name__)

GROUP_COEF = 1  # column of the group indicator in the fixed-effects design


@dataclass(frozen=True)
class FeatureFit:
    """Outcome of one feature's model fit: a p-value or an error message."""

    feature: str
    p_val: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def fit_binomial_batch(
    expressed: np.ndarray,
    in_group_a: np.ndarray,
    batch: np.ndarray,
    feature: str = "feature",
) -> float:
    """
    Fit the batch random-effect logistic model and test the group effect.

    Parameters
    ----------
    expressed : np.ndarray
        Boolean detection indicator per cell.
    in_group_a : np.ndarray
        Boolean membership in group A per cell.
    batch : np.ndarray
        Batch label per cell.
    feature : str
        Feature name, used in error messages.

    Returns
    -------
    float
        Two-sided Wald p-value for the group coefficient.

    Raises
    ------
    ModelFitError
        If the model cannot be fit or does not converge.
    """
    endog = np.asarray(expressed, dtype=float)
    if endog.min() == endog.max():
        raise ModelFitError(feature, "detection is constant across cells")

    exog = np.column_stack([np.ones(len(endog)), np.asarray(in_group_a, dtype=float)])

    batch_codes, batch_levels = pd.factorize(pd.Series(batch).astype(str))
    exog_vc = sparse.csr_matrix(
        (np.ones(len(endog)), (np.arange(len(endog)), batch_codes)),
        shape=(len(endog), len(batch_levels)),
    )
    ident = np.zeros(len(batch_levels), dtype=int)

    model = BinomialBayesMixedGLM(endog, exog, exog_vc=exog_vc, ident=ident)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        result = model.fit_vb()

    for w in caught:
        message = str(w.message)
        if issubclass(w.category, ConvergenceWarning) or "converge" in message.lower():
            raise ModelFitError(feature, f"did not converge ({message})")
        logger.debug(f"{feature}: {w.category.__name__}: {message}")

    coef = result.fe_mean[GROUP_COEF]
    sd = result.fe_sd[GROUP_COEF]
    if not (np.isfinite(coef) and np.isfinite(sd)) or sd <= 0:
        raise ModelFitError(feature, f"degenerate estimate (coef={coef}, sd={sd})")

    return float(2 * stats.norm.sf(abs(coef / sd)))


def evaluate_feature(
    feature: str,
    expressed: np.ndarray,
    in_group_a: np.ndarray,
    batch: np.ndarray,
) -> FeatureFit:
    """Test one feature, capturing any failure in the returned FeatureFit."""
    try:
        p_val = fit_binomial_batch(expressed, in_group_a, batch, feature=feature)
    except Exception as e:
        return FeatureFit(feature=feature, error=f"{type(e).__name__}: {e}")
    return FeatureFit(feature=feature, p_val=p_val)


def run_feature_tests(
    expressed: np.ndarray,
    features: Sequence[str],
    in_group_a: np.ndarray,
    batch: np.ndarray,
    n_jobs: int = 1,
) -> List[FeatureFit]:
    """
    Test every feature, serially or with a pool of worker processes.

    Results are stored by candidate position, so their order never depends
    on completion order or on ``n_jobs``.

    Parameters
    ----------
    expressed : np.ndarray
        Boolean cells × features detection matrix.
    features : sequence of str
        Feature names for the columns of ``expressed``.
    in_group_a : np.ndarray
        Boolean membership in group A per cell.
    batch : np.ndarray
        Batch label per cell.
    n_jobs : int
        Number of worker processes. 1 runs in the current process.

    Returns
    -------
    list of FeatureFit
        One entry per feature, in feature order.
    """
    fits: List[Optional[FeatureFit]] = [None] * len(features)

    if n_jobs == 1 or len(features) <= 1:
        for i, feature in enumerate(features):
            fits[i] = evaluate_feature(feature, expressed[:, i], in_group_a, batch)
            logger.debug(f"{feature}: {fits[i]}")
        return fits

    with ProcessPoolExecutor(n_jobs) as exe:
        futures = {}
        for i, feature in enumerate(features):
            future = exe.submit(evaluate_feature, feature, expressed[:, i], in_group_a, batch)
            futures[future] = i

        for future in as_completed(futures):
            i = futures[future]
            fits[i] = future.result()
            logger.debug(f"{features[i]}: {fits[i]}")

    return fits


def coerce_failed_pvalues(fits: Sequence[FeatureFit]) -> Tuple[np.ndarray, int]:
    """
    Collect p-values, setting those of failed fits to 1.0.

    Parameters
    ----------
    fits : sequence of FeatureFit
        Per-feature outcomes.

    Returns
    -------
    p_values : np.ndarray
        One p-value per fit; 1.0 for every failure.
    n_failed : int
        Number of failed fits.
    """
    p_values = np.array([fit.p_val if fit.ok else 1.0 for fit in fits], dtype=float)
    failed = [fit for fit in fits if not fit.ok]

    if failed:
        logger.warning(
            f"Model fit failed for {len(failed)} of {len(fits)} features; "
            f"their p-values were set to 1: {[fit.feature for fit in failed]}"
        )
        for fit in failed:
            logger.debug(f"{fit.feature}: {fit.error}")

    return p_values, len(failed)


def binomial_batch_test(
    adata: anndata.AnnData,
    assignment: GroupAssignment,
    features: Sequence[str],
    batch_key: str,
    thresh_use: Optional[float] = 0.25,
    min_pct: Optional[float] = 0.1,
    use_layer: Optional[str] = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Run the random-effect logistic test on every candidate feature.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset restricted to the two groups (see ``select_groups``).
    assignment : GroupAssignment
        Group assignment for the cells of ``adata``.
    features : sequence of str
        Available candidate features.
    batch_key : str
        Column in adata.obs holding batch labels.
    thresh_use : float, optional
        Minimum absolute mean difference to fit a model.
    min_pct : float, optional
        Minimum detection rate in at least one group to fit a model.
    use_layer : str, optional
        Layer for gene values. If None, uses adata.X.
    n_jobs : int
        Number of worker processes.

    Returns
    -------
    pd.DataFrame
        Indexed by feature with columns ``avg_diff``, ``pct.1``, ``pct.2`` and
        ``p_val``. ``attrs["n_failed"]`` holds the number of failed fits.
    """
    if batch_key not in adata.obs.columns:
        raise ConfigurationError(f"Batch column '{batch_key}' not found in adata.obs")

    values, names = candidate_values(adata, features, use_layer=use_layer)
    mask_a, mask_b = assignment.mask_a, assignment.mask_b

    summary = summarize_features(values, mask_a, mask_b, names)
    keep = prefilter(summary, thresh_use=thresh_use, min_pct=min_pct)
    summary = summary[keep].copy()
    expressed = values[:, keep] > 0

    batch = adata.obs[batch_key].astype(str).to_numpy()
    logger.info(
        f"Fitting batch random-effect logistic models for {len(summary)} features "
        f"({adata.obs[batch_key].nunique()} batches, n_jobs={n_jobs})"
    )

    fits = run_feature_tests(
        expressed, summary.index.tolist(), mask_a, batch, n_jobs=n_jobs
    )
    p_values, n_failed = coerce_failed_pvalues(fits)

    summary["p_val"] = p_values
    summary.attrs["n_failed"] = n_failed
    return summary
