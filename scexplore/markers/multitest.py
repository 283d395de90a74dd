"""Multiple testing correction."""

import numpy as np


def benjamini_hochberg(p_values) -> np.ndarray:
    """
    Apply Benjamini-Hochberg FDR correction.

    Missing p-values are left missing and do not count towards the number
    of tests.

    Parameters
    ----------
    p_values : array-like
        Array of p-values.

    Returns
    -------
    np.ndarray
        Array of q-values in the input order.
    """
    p_values = np.asarray(p_values, dtype=float)
    q_values = np.full(p_values.shape, np.nan)

    valid = ~np.isnan(p_values)
    n = int(valid.sum())
    if n == 0:
        return q_values

    p = p_values[valid]

    # Stable sort so tied p-values keep their relative order
    order = np.argsort(p, kind="mergesort")
    ranked = p[order] * n / np.arange(1, n + 1)

    # Enforce monotonicity from the largest p-value down
    ranked = np.minimum.accumulate(ranked[::-1])[::-1]
    ranked = np.clip(ranked, 0.0, 1.0)

    q = np.empty(n)
    q[order] = ranked
    q_values[valid] = q

    return q_values
