"""Loader for H5AD files with batch column detection."""

import logging
from typing import Dict, Optional

import anndata

logger = logging.getLogger(__name__)

BATCH_CANDIDATES = ["orig.ident", "batch", "sample_id", "SampleID", "sample", "Sample", "rep"]


def load_h5ad(file_path: str) -> anndata.AnnData:
    """
    Load an H5AD file.

    Parameters
    ----------
    file_path : str
        Path to H5AD file.

    Returns
    -------
    anndata.AnnData
        Loaded AnnData object.
    """
    logger.info(f"Loading H5AD file: {file_path}")
    adata = anndata.read_h5ad(file_path)
    logger.info(
        f"Loaded {adata.n_obs} cells × {adata.n_vars} features from {file_path}"
    )
    return adata


def detect_batch_column(adata: anndata.AnnData) -> Optional[str]:
    """
    Detect the batch (sample of origin) column in adata.obs.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.

    Returns
    -------
    str or None
        Name of the first matching column, or None if not found.
    """
    for candidate in BATCH_CANDIDATES:
        if candidate in adata.obs.columns:
            logger.info(f"Detected batch column: {candidate}")
            return candidate

    return None


def summarize_adata(adata: anndata.AnnData, group_col: Optional[str] = None) -> Dict:
    """
    Generate a short summary of the AnnData object.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    group_col : str, optional
        Column in adata.obs whose level counts are reported.

    Returns
    -------
    dict
        Summary statistics and metadata.
    """
    summary = {
        "n_obs": adata.n_obs,
        "n_vars": adata.n_vars,
        "obs_columns": adata.obs.columns.tolist(),
        "obsm_keys": list(adata.obsm.keys()),
        "layers": list(adata.layers.keys()) if adata.layers else [],
    }

    batch_col = detect_batch_column(adata)
    if batch_col is not None:
        summary["batch_column"] = batch_col
        summary["cells_per_batch"] = adata.obs[batch_col].value_counts().to_dict()

    if group_col is not None and group_col in adata.obs.columns:
        summary["cells_per_group"] = adata.obs[group_col].value_counts().to_dict()

    return summary
