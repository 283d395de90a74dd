"""Feature access: fetch expression, metadata and embedding values by name."""

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import anndata
import numpy as np
import pandas as pd
from scipy.sparse import issparse

logger = logging.getLogger(__name__)

# Display prefixes for common embeddings, e.g. obsm["X_tsne"][:, 0] -> "tSNE_1"
EMBEDDING_PREFIXES = {
    "X_tsne": "tSNE",
    "X_umap": "UMAP",
    "X_pca": "PC",
    "X_diffmap": "DC",
}

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9._]")


def _embedding_prefix(obsm_key: str) -> str:
    if obsm_key in EMBEDDING_PREFIXES:
        return EMBEDDING_PREFIXES[obsm_key]
    name = obsm_key[2:] if obsm_key.startswith("X_") else obsm_key
    return name.upper()


def _embedding_columns(adata: anndata.AnnData) -> Dict[str, Tuple[str, int]]:
    """Map embedding coordinate names to (obsm key, column index)."""
    columns = {}
    for key in adata.obsm.keys():
        coords = adata.obsm[key]
        if not hasattr(coords, "shape") or len(coords.shape) != 2:
            continue
        prefix = _embedding_prefix(key)
        for i in range(coords.shape[1]):
            columns[f"{prefix}_{i + 1}"] = (key, i)
    return columns


def get_matrix(adata: anndata.AnnData, use_layer: Optional[str] = None):
    """
    Return the expression matrix to read values from.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    use_layer : str, optional
        Layer to read. If None, uses adata.X.

    Returns
    -------
    np.ndarray or scipy.sparse matrix
        Expression matrix (cells × genes).
    """
    if use_layer is None:
        return adata.X
    if use_layer not in adata.layers:
        raise ValueError(f"Layer '{use_layer}' not found in adata.layers")
    return adata.layers[use_layer]


def expression_values(
    adata: anndata.AnnData,
    genes: Sequence[str],
    use_layer: Optional[str] = None,
) -> np.ndarray:
    """
    Extract a dense cells × genes block for genes present in ``adata.var_names``.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    genes : sequence of str
        Gene names; all must be present in adata.var_names.
    use_layer : str, optional
        Layer to read. If None, uses adata.X.

    Returns
    -------
    np.ndarray
        Float array of shape (n_obs, len(genes)), columns in request order.
    """
    idx = adata.var_names.get_indexer(list(genes))
    if (idx < 0).any():
        missing = [g for g, i in zip(genes, idx) if i < 0]
        raise KeyError(f"Genes not found in adata.var_names: {missing}")

    block = get_matrix(adata, use_layer)[:, idx]
    if issparse(block):
        block = block.toarray()
    return np.asarray(block, dtype=float)


def available_variables(adata: anndata.AnnData) -> Set[str]:
    """
    List every variable name that :func:`fetch_data` can resolve.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.

    Returns
    -------
    set of str
        Gene names, observation metadata columns and embedding coordinates.
    """
    names = set(adata.var_names.astype(str))
    names.update(str(col) for col in adata.obs.columns)
    names.update(_embedding_columns(adata))
    return names


def fetch_data(
    adata: anndata.AnnData,
    variables: Iterable[str],
    use_layer: Optional[str] = None,
) -> pd.DataFrame:
    """
    Fetch a table of per-cell values for genes, metadata and embeddings.

    Names are resolved against adata.var_names first, then adata.obs columns,
    then embedding coordinates such as ``tSNE_1`` or ``UMAP_2``. Names that
    cannot be resolved are returned as columns of zeros and reported in a
    single warning.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    variables : iterable of str
        Names to fetch. Column order of the result matches this order.
    use_layer : str, optional
        Layer used for gene values. If None, uses adata.X.

    Returns
    -------
    pd.DataFrame
        Table indexed by adata.obs_names.
    """
    variables = [str(v) for v in variables]
    unique = list(dict.fromkeys(variables))

    genes = [v for v in unique if v in adata.var_names]
    embeddings = _embedding_columns(adata)

    columns = {}
    if genes:
        values = expression_values(adata, genes, use_layer=use_layer)
        for i, gene in enumerate(genes):
            columns[gene] = values[:, i]

    missing = []
    for name in unique:
        if name in columns:
            continue
        if name in adata.obs.columns:
            columns[name] = adata.obs[name].values
        elif name in embeddings:
            key, col = embeddings[name]
            columns[name] = np.asarray(adata.obsm[key])[:, col]
        else:
            columns[name] = np.zeros(adata.n_obs)
            missing.append(name)

    if missing:
        logger.warning(
            f"{len(missing)} variable(s) not found, filling with zeros: {missing}"
        )

    table = pd.DataFrame(columns, index=adata.obs_names)
    return table[variables] if variables else table


def make_names(names: Iterable[str], unique: bool = False) -> List[str]:
    """
    Turn arbitrary strings into syntactically valid identifiers.

    Characters other than letters, digits, ``.`` and ``_`` become ``.``; names
    starting with a digit, an underscore or a dot followed by a digit get an
    ``X`` prefix. Gene symbols such as ``Nkx2-1`` become ``Nkx2.1``.

    Parameters
    ----------
    names : iterable of str
        Names to sanitize.
    unique : bool
        If True, de-duplicate by appending ``.1``, ``.2``, ... to repeats.

    Returns
    -------
    list of str
        Sanitized names in input order.
    """
    cleaned = []
    for name in names:
        name = _INVALID_NAME_CHARS.sub(".", str(name))
        if (
            name == ""
            or name[0].isdigit()
            or name[0] == "_"
            or (name[0] == "." and len(name) > 1 and name[1].isdigit())
        ):
            name = "X" + name
        cleaned.append(name)

    if unique:
        seen = set(cleaned)
        counts = {}
        result = []
        for name in cleaned:
            if name not in counts:
                counts[name] = 0
                result.append(name)
                continue
            counts[name] += 1
            candidate = f"{name}.{counts[name]}"
            while candidate in seen:
                counts[name] += 1
                candidate = f"{name}.{counts[name]}"
            seen.add(candidate)
            result.append(candidate)
        cleaned = result

    return cleaned


def fill_na(adata: anndata.AnnData, value: float = 0, na_label: str = "NA") -> anndata.AnnData:
    """
    Return a copy with missing values in adata.obs filled.

    Numeric columns get ``value``; categorical and string columns get
    ``na_label`` (added as a category where needed).

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object.
    value : float
        Fill value for numeric columns.
    na_label : str
        Fill value for categorical and string columns.

    Returns
    -------
    anndata.AnnData
        Copy of the input with filled metadata.
    """
    adata = adata.copy()

    n_filled = 0
    for col in adata.obs.columns:
        series = adata.obs[col]
        n_na = int(series.isna().sum())
        if n_na == 0:
            continue

        if isinstance(series.dtype, pd.CategoricalDtype):
            if na_label not in series.cat.categories:
                series = series.cat.add_categories([na_label])
            adata.obs[col] = series.fillna(na_label)
        elif pd.api.types.is_numeric_dtype(series):
            adata.obs[col] = series.fillna(value)
        else:
            adata.obs[col] = series.fillna(na_label)
        n_filled += n_na

    logger.info(f"Filled {n_filled} missing metadata values")
    return adata
