"""
scexplore: convenience functions for exploring single-cell data in AnnData objects.

This package provides tools to:
- Fetch gene, metadata and embedding values by name, zero-padding missing ones
- Compare two groups of cells built from arbitrary sets of labels
- Test features with a batch random-effect logistic model or scanpy's tests
- Export marker tables with a run manifest
"""

__version__ = "0.1.0"

from . import io, markers, export
from .markers import find_markers

__all__ = ["io", "markers", "export", "find_markers", "__version__"]
