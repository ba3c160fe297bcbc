"""Multi-view data assembly.

Aligns several feature-by-sample views and an optional covariate table on a
common sample axis. Samples absent from a view are kept as all-missing rows
for that view so the factor model can still place them using the other views.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from core.error_handling import DataValidationError, DimensionMismatch

logger = logging.getLogger(__name__)

ViewInput = Union[pd.DataFrame, np.ndarray]


@dataclass
class MultiViewDataset:
    """Validated multi-view dataset with a consistent sample ordering.

    ``X_list[m]`` holds view ``view_names[m]`` as a (n_samples, n_features_m)
    float array whose rows follow ``sample_names``. Missing entries are NaN.
    """

    view_names: List[str]
    sample_names: List[str]
    feature_names: Dict[str, List[str]]
    X_list: List[np.ndarray]
    covariates: Optional[pd.DataFrame] = None
    likelihoods: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if len(self.view_names) != len(self.X_list):
            raise DataValidationError(
                f"{len(self.view_names)} view names given for {len(self.X_list)} views"
            )
        for name, X in zip(self.view_names, self.X_list):
            if X.shape[0] != len(self.sample_names):
                raise DimensionMismatch(
                    f"View '{name}' has {X.shape[0]} samples, expected {len(self.sample_names)}",
                    view=name,
                )
            if X.shape[1] != len(self.feature_names[name]):
                raise DataValidationError(
                    f"View '{name}' has {X.shape[1]} features but "
                    f"{len(self.feature_names[name])} feature names"
                )
        for name in self.view_names:
            self.likelihoods.setdefault(name, "gaussian")

    @property
    def n_samples(self) -> int:
        return len(self.sample_names)

    @property
    def n_views(self) -> int:
        return len(self.view_names)

    @property
    def n_features(self) -> Dict[str, int]:
        return {name: X.shape[1] for name, X in zip(self.view_names, self.X_list)}

    def get_view(self, view: str) -> pd.DataFrame:
        """Return one view as a samples x features DataFrame."""
        if view not in self.view_names:
            raise KeyError(f"Unknown view '{view}'. Available views: {self.view_names}")
        m = self.view_names.index(view)
        return pd.DataFrame(
            self.X_list[m], index=self.sample_names, columns=self.feature_names[view]
        )

    def missing_fraction(self) -> Dict[str, float]:
        """Fraction of missing entries per view."""
        return {
            name: float(np.isnan(X).mean()) if X.size else 1.0
            for name, X in zip(self.view_names, self.X_list)
        }

    def samples_observed(self) -> pd.DataFrame:
        """Boolean table (samples x views): does the sample have any observation in the view."""
        observed = {
            name: (~np.isnan(X)).any(axis=1)
            for name, X in zip(self.view_names, self.X_list)
        }
        return pd.DataFrame(observed, index=self.sample_names)

    def subset_views(self, views: Sequence[str]) -> "MultiViewDataset":
        """Return a dataset restricted to the given views (same sample axis)."""
        unknown = [v for v in views if v not in self.view_names]
        if unknown:
            raise KeyError(f"Unknown views: {unknown}")
        idx = [self.view_names.index(v) for v in views]
        return MultiViewDataset(
            view_names=list(views),
            sample_names=list(self.sample_names),
            feature_names={v: list(self.feature_names[v]) for v in views},
            X_list=[self.X_list[i] for i in idx],
            covariates=self.covariates,
            likelihoods={v: self.likelihoods[v] for v in views},
        )

    def summary(self) -> pd.DataFrame:
        """Per-view overview: features, samples with data, missing fraction, likelihood."""
        observed = self.samples_observed()
        missing = self.missing_fraction()
        rows = []
        for name, X in zip(self.view_names, self.X_list):
            rows.append({
                "view": name,
                "n_features": X.shape[1],
                "n_samples_observed": int(observed[name].sum()),
                "missing_fraction": missing[name],
                "likelihood": self.likelihoods[name],
            })
        return pd.DataFrame(rows).set_index("view")


def _check_unique(labels: Sequence, what: str, view: str) -> None:
    labels = pd.Index(labels)
    if labels.has_duplicates:
        dupes = labels[labels.duplicated()].unique().tolist()[:5]
        raise DataValidationError(f"View '{view}' has duplicated {what}: {dupes}")


def _to_numeric_frame(name: str, frame: pd.DataFrame) -> pd.DataFrame:
    try:
        return frame.apply(pd.to_numeric, errors="raise").astype(float)
    except (TypeError, ValueError) as e:
        raise DataValidationError(f"View '{name}' contains non-numeric values: {e}") from e


def assemble_views(
    views: Mapping[str, ViewInput],
    covariates: Optional[pd.DataFrame] = None,
    sample_names: Optional[Sequence[str]] = None,
    feature_names: Optional[Mapping[str, Sequence[str]]] = None,
    likelihoods: Optional[Mapping[str, str]] = None,
    join: str = "outer",
) -> MultiViewDataset:
    """
    Align feature-by-sample views on a common sample axis.

    Parameters
    ----------
    views : mapping of view name -> DataFrame or ndarray
        Each view is features x samples. DataFrames are aligned on their
        column labels. Arrays carry no labels and must all have exactly
        ``len(sample_names)`` columns.
    covariates : DataFrame, optional
        Sample covariates indexed by sample ID. Must cover every sample that
        is present in a view.
    sample_names : sequence of str, optional
        Required when any view is an ndarray. For DataFrame views it fixes the
        output sample order (samples not listed are dropped).
    feature_names : mapping of view name -> sequence of str, optional
        Feature labels for ndarray views (defaults to ``<view>_feature<i>``).
    likelihoods : mapping of view name -> str, optional
        Noise model per view, default "gaussian".
    join : {"outer", "inner"}
        Union or intersection of the samples seen across DataFrame views.

    Returns
    -------
    MultiViewDataset

    Raises
    ------
    DimensionMismatch
        If an array view's sample count disagrees with ``sample_names``, or
        the covariates do not cover the samples of a view.
    DataValidationError
        For empty input, duplicated labels, non-numeric data or a bad ``join``.
    """
    if not views:
        raise DataValidationError("No views provided")
    if join not in ("outer", "inner"):
        raise DataValidationError(f"join must be 'outer' or 'inner', got '{join}'")

    feature_names = dict(feature_names or {})
    frames: Dict[str, pd.DataFrame] = {}

    for name, view in views.items():
        if isinstance(view, pd.DataFrame):
            frame = view
        else:
            array = np.asarray(view, dtype=float)
            if array.ndim != 2:
                raise DataValidationError(
                    f"View '{name}' must be 2-dimensional, got shape {array.shape}"
                )
            if sample_names is None:
                raise DataValidationError(
                    f"View '{name}' is an array; sample_names are required to align it"
                )
            if array.shape[1] != len(sample_names):
                raise DimensionMismatch(
                    f"View '{name}' has {array.shape[1]} samples (columns), "
                    f"expected {len(sample_names)}",
                    view=name,
                )
            names = feature_names.get(name) or [f"{name}_feature{i}" for i in range(array.shape[0])]
            if len(names) != array.shape[0]:
                raise DataValidationError(
                    f"View '{name}' has {array.shape[0]} features but {len(names)} feature names"
                )
            frame = pd.DataFrame(array, index=list(names), columns=list(sample_names))

        frame = frame.copy()
        frame.index = frame.index.map(str)
        frame.columns = frame.columns.map(str)
        _check_unique(frame.columns, "sample IDs", name)
        _check_unique(frame.index, "feature IDs", name)
        frames[name] = _to_numeric_frame(name, frame)

    # Build the shared sample axis
    if sample_names is not None:
        samples = [str(s) for s in sample_names]
        _check_unique(samples, "sample IDs", "<sample_names>")
    else:
        samples = []
        seen = set()
        for frame in frames.values():
            for s in frame.columns:
                if s not in seen:
                    seen.add(s)
                    samples.append(s)
        if join == "inner":
            common = set.intersection(*(set(f.columns) for f in frames.values()))
            samples = [s for s in samples if s in common]

    if not samples:
        raise DimensionMismatch("Views share no samples")

    view_names = list(frames.keys())
    sample_set = set(samples)
    X_list = []
    for name in view_names:
        frame = frames[name]
        not_in_axis = [s for s in frame.columns if s not in sample_set]
        if not_in_axis and sample_names is not None:
            logger.info(f"View '{name}': dropping {len(not_in_axis)} samples not in sample_names")
        aligned = frame.reindex(columns=samples)
        n_absent = int(aligned.isna().all(axis=0).sum())
        if n_absent:
            logger.info(f"View '{name}': {n_absent}/{len(samples)} samples have no measurements")
        X_list.append(aligned.to_numpy(dtype=float).T)

    aligned_covariates = None
    if covariates is not None:
        aligned_covariates = _align_covariates(covariates, frames, samples)

    likelihoods = dict(likelihoods or {})
    unknown = [v for v in likelihoods if v not in frames]
    if unknown:
        raise DataValidationError(f"Likelihoods given for unknown views: {unknown}")

    dataset = MultiViewDataset(
        view_names=view_names,
        sample_names=samples,
        feature_names={name: frames[name].index.tolist() for name in view_names},
        X_list=X_list,
        covariates=aligned_covariates,
        likelihoods=likelihoods,
    )
    logger.info(
        f"Assembled {dataset.n_views} views on {dataset.n_samples} samples: "
        + ", ".join(f"{n}={d}" for n, d in dataset.n_features.items())
    )
    return dataset


def _align_covariates(
    covariates: pd.DataFrame, frames: Mapping[str, pd.DataFrame], samples: List[str]
) -> pd.DataFrame:
    covariates = covariates.copy()
    covariates.index = covariates.index.map(str)
    if covariates.index.has_duplicates:
        dupes = covariates.index[covariates.index.duplicated()].unique().tolist()[:5]
        raise DataValidationError(f"Covariates have duplicated sample IDs: {dupes}")

    available = set(covariates.index)
    sample_set = set(samples)
    for name, frame in frames.items():
        view_samples = [s for s in frame.columns if s in sample_set]
        missing = [s for s in view_samples if s not in available]
        if missing:
            raise DimensionMismatch(
                f"Covariates are missing {len(missing)} samples of view '{name}': {missing[:5]}",
                view=name,
            )
    return covariates.reindex(samples)
