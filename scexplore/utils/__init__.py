"""Utility functions and helpers."""

from .deps import MissingDependency, check_dependencies, get_install_hint, require_package

__all__ = ["MissingDependency", "check_dependencies", "get_install_hint", "require_package"]
