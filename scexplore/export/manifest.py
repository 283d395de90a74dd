"""Writing marker tables and a manifest documenting the run."""

import hashlib
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import anndata
import pandas as pd

logger = logging.getLogger(__name__)


def compute_file_hash(file_path: str, algorithm: str = "sha256") -> str:
    """
    Compute hash of a file.

    Parameters
    ----------
    file_path : str
        Path to file.
    algorithm : str
        Hash algorithm ('md5', 'sha256').

    Returns
    -------
    str
        Hex digest of file hash.
    """
    hash_func = hashlib.new(algorithm)

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            hash_func.update(chunk)

    return hash_func.hexdigest()


def export_markers(result: pd.DataFrame, output_dir: str, name: str = "markers") -> Path:
    """
    Write a marker table to ``<output_dir>/<name>.csv``.

    A trailing ``.csv`` in ``name`` is stripped.

    Returns
    -------
    Path
        Path of the written file.
    """
    if name.endswith(".csv"):
        name = name[: -len(".csv")]

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    output_file = output_dir / f"{name}.csv"
    result.to_csv(output_file, index_label="feature")
    logger.info(f"Wrote {len(result)} markers to {output_file}")
    return output_file


def create_manifest(
    adata: anndata.AnnData,
    result: pd.DataFrame,
    input_files: Optional[List[str]] = None,
    parameters: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create a manifest documenting a marker test run.

    Parameters
    ----------
    adata : anndata.AnnData
        Dataset the test was run on.
    result : pd.DataFrame
        Output of ``find_markers``; its ``attrs`` are recorded.
    input_files : list, optional
        Input file paths to fingerprint.
    parameters : dict, optional
        Test parameters (see ``MarkerTestParameters.to_dict``).

    Returns
    -------
    dict
        Manifest dictionary.
    """
    from .. import __version__

    manifest = {
        "timestamp": datetime.now().isoformat(),
        "version": __version__,
        "input": {
            "files": [],
            "n_cells": adata.n_obs,
            "n_features": adata.n_vars,
        },
        "parameters": parameters or {},
        "groups": {
            "label_a": result.attrs.get("label_a"),
            "label_b": result.attrs.get("label_b"),
            "n_cells_a": result.attrs.get("n_a"),
            "n_cells_b": result.attrs.get("n_b"),
        },
        "output": {
            "test_use": result.attrs.get("test_use"),
            "batch_key": result.attrs.get("batch_key"),
            "n_features_reported": len(result),
            "n_failed": result.attrs.get("n_failed", 0),
            "n_significant_q05": int((result["q_val"] < 0.05).sum()) if "q_val" in result else None,
        },
    }

    for file_path in input_files or []:
        if Path(file_path).exists():
            manifest["input"]["files"].append({
                "path": str(file_path),
                "name": Path(file_path).name,
                "size_bytes": Path(file_path).stat().st_size,
                "sha256": compute_file_hash(file_path, "sha256"),
            })

    try:
        import statsmodels

        manifest["software"] = {
            "python_version": sys.version,
            "scexplore_version": __version__,
            "anndata_version": anndata.__version__,
            "pandas_version": pd.__version__,
            "statsmodels_version": statsmodels.__version__,
        }
    except Exception as e:
        logger.warning(f"Could not retrieve software versions: {e}")

    return manifest


def save_manifest(manifest: Dict[str, Any], output_file: str) -> None:
    """
    Save manifest to JSON file.

    Parameters
    ----------
    manifest : dict
        Manifest dictionary.
    output_file : str
        Output JSON file path.
    """
    logger.info(f"Saving manifest to {output_file}")

    with open(output_file, "w") as f:
        json.dump(manifest, f, indent=2, default=str)


def validate_manifest(manifest: Dict[str, Any]) -> tuple[bool, list]:
    """
    Validate manifest structure.

    Returns
    -------
    tuple of (bool, list)
        (is_valid, list of error messages)
    """
    errors = []

    for key in ["timestamp", "version", "input", "parameters", "groups", "output"]:
        if key not in manifest:
            errors.append(f"Missing required key: {key}")

    if "output" in manifest and "n_failed" not in manifest["output"]:
        errors.append("Missing 'n_failed' in output section")

    is_valid = len(errors) == 0

    return is_valid, errors
