"""Two-group construction from arbitrary label sets."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import anndata
import numpy as np
import pandas as pd

from .errors import ConfigurationError, InvalidGroupError
from .parameters import as_label_list, label_str

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupAssignment:
    """
    Assignment of every observation to group A, group B or neither.

    ``labels`` is a categorical series over adata.obs_names with categories
    ``[label_a, label_b]``; excluded observations are missing.
    """

    ident_use: str
    raw_a: Tuple[str, ...]
    raw_b: Tuple[str, ...]
    label_a: str
    label_b: str
    labels: pd.Series

    @property
    def mask_a(self) -> np.ndarray:
        return (self.labels == self.label_a).to_numpy(dtype=bool)

    @property
    def mask_b(self) -> np.ndarray:
        return (self.labels == self.label_b).to_numpy(dtype=bool)

    @property
    def in_scope(self) -> np.ndarray:
        return self.mask_a | self.mask_b

    @property
    def n_a(self) -> int:
        return int(self.mask_a.sum())

    @property
    def n_b(self) -> int:
        return int(self.mask_b.sum())


def build_group_assignment(
    adata: anndata.AnnData,
    ident_use: str,
    labels_a,
    labels_b=None,
) -> GroupAssignment:
    """
    Collapse two sets of raw labels into two canonical groups.

    Observations whose ``ident_use`` value is in ``labels_a`` are assigned
    ``"_".join(labels_a)``, those in ``labels_b`` ``"_".join(labels_b)``; all
    others are excluded. Labels are compared by their string form, with
    integral floats written as integers (``1.0`` matches ``1``).

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object. Not modified.
    ident_use : str
        Column in adata.obs holding the raw group labels.
    labels_a : str or sequence of str
        Raw labels forming group A.
    labels_b : str or sequence of str, optional
        Raw labels forming group B. Defaults to every other observed label.

    Returns
    -------
    GroupAssignment
        Immutable assignment of observations to the two groups.
    """
    if ident_use not in adata.obs.columns:
        raise ConfigurationError(f"Grouping variable '{ident_use}' not found in adata.obs")

    raw = adata.obs[ident_use]
    observed = raw[~raw.isna()].astype(object).map(label_str)

    labels_a = as_label_list(labels_a) or []
    labels_a = list(dict.fromkeys(labels_a))
    if not labels_a:
        raise InvalidGroupError("labels_a must contain at least one label")

    if labels_b is None:
        labels_b = [v for v in pd.unique(observed) if v not in labels_a]
        labels_b = sorted(labels_b)
    else:
        labels_b = list(dict.fromkeys(as_label_list(labels_b)))

    overlap = set(labels_a) & set(labels_b)
    if overlap:
        raise InvalidGroupError(f"labels_a and labels_b overlap: {sorted(overlap)}")
    if not labels_b:
        raise InvalidGroupError(
            f"No labels left for group B in '{ident_use}' besides {labels_a}"
        )

    label_a = "_".join(labels_a)
    label_b = "_".join(labels_b)
    if label_a == label_b:
        raise InvalidGroupError(
            f"Groups {labels_a} and {labels_b} collapse to the same label '{label_a}'"
        )

    raw_str = raw.astype(object).map(label_str, na_action="ignore")
    values = np.full(adata.n_obs, None, dtype=object)
    values[raw_str.isin(labels_a).to_numpy()] = label_a
    values[raw_str.isin(labels_b).to_numpy()] = label_b

    labels = pd.Series(
        pd.Categorical(values, categories=[label_a, label_b]),
        index=adata.obs_names,
        name=ident_use,
    )

    assignment = GroupAssignment(
        ident_use=ident_use,
        raw_a=tuple(labels_a),
        raw_b=tuple(labels_b),
        label_a=label_a,
        label_b=label_b,
        labels=labels,
    )
    logger.info(
        f"Groups on '{ident_use}': {label_a} ({assignment.n_a} cells) vs "
        f"{label_b} ({assignment.n_b} cells), "
        f"{adata.n_obs - assignment.n_a - assignment.n_b} cells excluded"
    )
    return assignment


def select_groups(
    adata: anndata.AnnData, assignment: GroupAssignment
) -> Tuple[anndata.AnnData, GroupAssignment]:
    """
    Restrict a dataset to the cells of the two groups under test.

    Parameters
    ----------
    adata : anndata.AnnData
        Input AnnData object. Not modified.
    assignment : GroupAssignment
        Assignment built from the same object.

    Returns
    -------
    adata_sub : anndata.AnnData
        Copy holding only in-scope cells, with ``assignment.ident_use``
        replaced by the canonical two-level labels.
    assignment_sub : GroupAssignment
        The assignment restricted to the in-scope cells.
    """
    if assignment.n_a == 0:
        raise InvalidGroupError(
            f"Group '{assignment.label_a}' has no cells in '{assignment.ident_use}'"
        )
    if assignment.n_b == 0:
        raise InvalidGroupError(
            f"Group '{assignment.label_b}' has no cells in '{assignment.ident_use}'"
        )

    mask = assignment.in_scope
    adata_sub = adata[mask, :].copy()
    labels_sub = assignment.labels[mask]
    adata_sub.obs[assignment.ident_use] = labels_sub.values

    assignment_sub = GroupAssignment(
        ident_use=assignment.ident_use,
        raw_a=assignment.raw_a,
        raw_b=assignment.raw_b,
        label_a=assignment.label_a,
        label_b=assignment.label_b,
        labels=labels_sub,
    )
    logger.debug(f"Selected {adata_sub.n_obs} of {adata.n_obs} cells for testing")
    return adata_sub, assignment_sub
