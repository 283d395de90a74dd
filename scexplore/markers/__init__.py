"""Two-group marker (differential feature) testing."""

from .errors import ConfigurationError, InvalidGroupError, MarkerTestError, ModelFitError
from .parameters import MarkerTestParameters, validate_parameters
from .groups import GroupAssignment, build_group_assignment, select_groups
from .stats import filter_candidates, prefilter, summarize_features
from .binomial import FeatureFit, binomial_batch_test, coerce_failed_pvalues
from .generic import generic_test
from .multitest import benjamini_hochberg
from .find_markers import (
    assemble_results,
    find_markers,
    find_markers_with_parameters,
    get_test_strategy,
)

__all__ = [
    "ConfigurationError",
    "InvalidGroupError",
    "MarkerTestError",
    "ModelFitError",
    "MarkerTestParameters",
    "validate_parameters",
    "GroupAssignment",
    "build_group_assignment",
    "select_groups",
    "filter_candidates",
    "prefilter",
    "summarize_features",
    "FeatureFit",
    "binomial_batch_test",
    "coerce_failed_pvalues",
    "generic_test",
    "benjamini_hochberg",
    "assemble_results",
    "find_markers",
    "find_markers_with_parameters",
    "get_test_strategy",
]
