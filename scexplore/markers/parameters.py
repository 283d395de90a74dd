"""Parameter management for marker tests."""

from dataclasses import dataclass, field
from typing import List, Optional, Union

import numpy as np

BINOMIAL_BATCH = "binomial_batch"

# Generic test names accepted by the delegated backend, mapped to scanpy methods
GENERIC_METHODS = {
    "wilcox": "wilcoxon",
    "wilcoxon": "wilcoxon",
    "t": "t-test",
    "t-test": "t-test",
    "t-test_overestim_var": "t-test_overestim_var",
}

TEST_METHODS = [BINOMIAL_BATCH] + list(GENERIC_METHODS)

RESULT_COLUMNS = ["avg_diff", "pct.1", "pct.2", "p_val", "q_val"]


@dataclass
class MarkerTestParameters:
    """Parameters for a two-group marker test."""

    # Groups
    ident_use: str = "ident"
    labels_a: List[str] = field(default_factory=list)
    labels_b: Optional[List[str]] = None

    # Test
    test_use: str = BINOMIAL_BATCH
    batch_key: Optional[str] = None  # auto-detected when None
    use_layer: Optional[str] = None

    # Pre-filter; None disables a criterion
    thresh_use: Optional[float] = 0.25
    min_pct: Optional[float] = 0.1

    # Output
    rank_by: str = "avg_diff"
    genes_use: Optional[List[str]] = None

    # Execution
    n_jobs: int = 1

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "ident_use": self.ident_use,
            "labels_a": as_label_list(self.labels_a) or [],
            "labels_b": as_label_list(self.labels_b),
            "test_use": self.test_use,
            "batch_key": self.batch_key,
            "use_layer": self.use_layer,
            "thresh_use": self.thresh_use,
            "min_pct": self.min_pct,
            "rank_by": self.rank_by,
            "genes_use": list(self.genes_use) if self.genes_use is not None else None,
            "n_jobs": self.n_jobs,
        }

    @classmethod
    def from_dict(cls, d: dict):
        """Create from dictionary."""
        return cls(**{k: v for k, v in d.items() if k in cls.__annotations__})


def label_str(value) -> str:
    """
    String form of a group label.

    Integral floats map to their integer form, so ``1.0`` (an integer column
    that picked up NaN) matches the label ``1``.
    """
    if isinstance(value, (float, np.floating)) and np.isfinite(value) and float(value).is_integer():
        return str(int(value))
    return str(value)


def as_label_list(labels: Union[None, str, int, List]) -> Optional[List[str]]:
    """Normalize a single label or a sequence of labels to a list of strings."""
    if labels is None:
        return None
    if isinstance(labels, str) or np.isscalar(labels):
        return [label_str(labels)]
    if isinstance(labels, (set, frozenset)):
        return sorted(label_str(label) for label in labels)
    return [label_str(label) for label in labels]


def validate_parameters(params: MarkerTestParameters) -> tuple[bool, list[str]]:
    """
    Validate parameters.

    Parameters
    ----------
    params : MarkerTestParameters
        Parameters to validate.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of error messages)
    """
    errors = []

    if not params.ident_use:
        errors.append("ident_use must name a column of adata.obs")

    if params.test_use not in TEST_METHODS:
        errors.append(
            f"Unknown test_use '{params.test_use}'. Choose from: {TEST_METHODS}"
        )

    if params.rank_by not in RESULT_COLUMNS:
        errors.append(
            f"Unknown rank_by '{params.rank_by}'. Choose from: {RESULT_COLUMNS}"
        )

    if params.thresh_use is not None and params.thresh_use < 0:
        errors.append("thresh_use must be >= 0")

    if params.min_pct is not None and not 0 <= params.min_pct <= 1:
        errors.append("min_pct must be between 0 and 1")

    if params.n_jobs < 1:
        errors.append("n_jobs must be >= 1")

    is_valid = len(errors) == 0

    return is_valid, errors
