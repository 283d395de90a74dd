"""Dependency checking for optional analysis backends."""

import importlib
import logging
import os
import shutil
import sys
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class MissingDependency(ImportError):
    """Exception raised when a required dependency is missing."""

    def __init__(self, package_name: str, install_hint: str):
        self.package_name = package_name
        self.install_hint = install_hint
        super().__init__(f"Missing dependency: {package_name}\n{install_hint}")


def is_in_virtualenv() -> bool:
    """Return True when running inside a virtual environment."""
    return sys.base_prefix != sys.prefix or "VIRTUAL_ENV" in os.environ


def get_install_hint(package_name: str, pip_package: Optional[str] = None) -> str:
    """
    Generate an install hint for a missing package.

    Parameters
    ----------
    package_name : str
        The Python import name of the package.
    pip_package : str, optional
        The pip package name if different from import name.

    Returns
    -------
    str
        Install hint message.
    """
    pip_pkg = pip_package or package_name

    commands = []
    if shutil.which("uv") is not None:
        commands.append(f"uv pip install {pip_pkg}")
    commands.append(f"pip install {pip_pkg}")
    if not is_in_virtualenv():
        commands.append(f"conda install -c conda-forge {pip_pkg}")

    if len(commands) == 1:
        return f"Install with: {commands[0]}"
    cmd_list = "\n  - ".join(commands)
    return f"Install with one of:\n  - {cmd_list}"


def check_package(import_name: str) -> bool:
    """Return True if ``import_name`` can be imported."""
    try:
        importlib.import_module(import_name)
        return True
    except ImportError:
        return False


def require_package(import_name: str, pip_package: Optional[str] = None) -> None:
    """
    Require a package to be installed, raising MissingDependency if not found.

    Parameters
    ----------
    import_name : str
        The Python import name of the package (e.g., 'scanpy').
    pip_package : str, optional
        The pip package name if different from import name.

    Raises
    ------
    MissingDependency
        If the package cannot be imported.
    """
    if check_package(import_name):
        logger.debug(f"Package '{import_name}' is available")
        return

    logger.error(f"Missing dependency: {import_name}")
    raise MissingDependency(import_name, get_install_hint(import_name, pip_package))


def check_dependencies(packages: Dict[str, Optional[str]]) -> Tuple[List[str], List[str]]:
    """
    Check multiple package dependencies.

    Parameters
    ----------
    packages : dict
        Mapping of import names to pip package names (or None).

    Returns
    -------
    tuple of (list, list)
        (available_packages, missing_packages)
    """
    available = []
    missing = []

    for import_name in packages:
        if check_package(import_name):
            available.append(import_name)
        else:
            missing.append(import_name)
            logger.warning(f"Package '{import_name}' is missing")

    return available, missing
