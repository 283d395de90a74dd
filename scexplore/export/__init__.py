"""Export utilities for marker tables and run manifests."""

from .manifest import create_manifest, export_markers, save_manifest, validate_manifest

__all__ = [
    "create_manifest",
    "export_markers",
    "save_manifest",
    "validate_manifest",
]
