"""I/O utilities for loading AnnData objects and fetching per-cell values."""

from .loader import load_h5ad, detect_batch_column, summarize_adata
from .accessor import (
    available_variables,
    expression_values,
    fetch_data,
    fill_na,
    make_names,
)

__all__ = [
    "load_h5ad",
    "detect_batch_column",
    "summarize_adata",
    "available_variables",
    "expression_values",
    "fetch_data",
    "fill_na",
    "make_names",
]
