"""The fitted factor model artifact returned by every engine."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from core.io_utils import load_arrays, load_json, save_arrays, save_json

from .likelihoods import get_likelihood

logger = logging.getLogger(__name__)

ARRAYS_FILE = "arrays.npz"
METADATA_FILE = "metadata.json"

Selector = Union[int, str]


def _frozen(array) -> np.ndarray:
    out = np.array(array, dtype=float, copy=True)
    out.setflags(write=False)
    return out


def _resolve_mapping(names: Sequence[str], mapping, kind: str) -> List[str]:
    if isinstance(mapping, Mapping):
        unknown = set(mapping) - set(names)
        if unknown:
            raise KeyError(f"Unknown {kind}(s): {sorted(unknown)}")
        new_names = [mapping.get(name, name) for name in names]
    else:
        new_names = list(mapping)
        if len(new_names) != len(names):
            raise ValueError(f"Expected {len(names)} {kind} names, got {len(new_names)}")
    if len(set(new_names)) != len(new_names):
        raise ValueError(f"Duplicate {kind} names: {new_names}")
    return new_names


class TrainedFactorModel:
    """
    Immutable result of a factor model fit.

    Holds the factor scores ``Z`` (samples x factors), one loading matrix per
    view (features x factors), the per-feature noise variances and
    intercepts, R² tables (percent) and training statistics. All arrays are
    read-only; the query methods return copies as labelled DataFrames.

    Factors and views can be addressed by name or by 0-based position.
    """

    def __init__(
        self,
        Z: np.ndarray,
        W_list: Sequence[np.ndarray],
        view_names: Sequence[str],
        sample_names: Sequence[str],
        feature_names: Mapping[str, Sequence[str]],
        noise_list: Sequence[np.ndarray],
        intercepts: Sequence[np.ndarray],
        r2_per_factor: np.ndarray,
        r2_total: np.ndarray,
        likelihoods: Optional[Mapping[str, str]] = None,
        factor_names: Optional[Sequence[str]] = None,
        training_stats: Optional[Dict[str, Any]] = None,
        model_name: str = "factor_model",
        scalers: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        self._Z = _frozen(Z)
        n_samples, n_factors = self._Z.shape
        self._view_names = tuple(str(v) for v in view_names)
        self._sample_names = tuple(str(s) for s in sample_names)
        if factor_names is None:
            factor_names = [f"Factor{k + 1}" for k in range(n_factors)]
        self._factor_names = tuple(str(f) for f in factor_names)

        if len(self._sample_names) != n_samples:
            raise ValueError(f"{len(self._sample_names)} sample names for {n_samples} samples")
        if len(self._factor_names) != n_factors:
            raise ValueError(f"{len(self._factor_names)} factor names for {n_factors} factors")
        if not (len(W_list) == len(noise_list) == len(intercepts) == len(self._view_names)):
            raise ValueError("W_list, noise_list, intercepts and view_names must have equal length")

        self._W = tuple(_frozen(W) for W in W_list)
        self._noise = tuple(_frozen(n) for n in noise_list)
        self._intercepts = tuple(_frozen(b) for b in intercepts)
        self._feature_names = {
            view: tuple(str(f) for f in feature_names[view]) for view in self._view_names
        }
        for view, W in zip(self._view_names, self._W):
            if W.shape != (len(self._feature_names[view]), n_factors):
                raise ValueError(
                    f"Loadings for view '{view}' have shape {W.shape}, expected "
                    f"({len(self._feature_names[view])}, {n_factors})"
                )

        self._r2_per_factor = _frozen(r2_per_factor)
        self._r2_total = _frozen(r2_total)
        likelihoods = dict(likelihoods or {})
        self._likelihoods = {v: likelihoods.get(v, "gaussian") for v in self._view_names}
        self.training_stats: Dict[str, Any] = dict(training_stats or {})
        self.model_name = model_name
        self._scalers = {
            view: {
                "mu": _frozen(np.ravel(s["mu"])),
                "sd": _frozen(np.ravel(s["sd"])),
                "view_scale": float(s.get("view_scale", 1.0)),
            }
            for view, s in (scalers or {}).items()
            if view in self._view_names
        }

    def __repr__(self) -> str:
        return (
            f"TrainedFactorModel(model={self.model_name}, samples={self.n_samples}, "
            f"factors={self.n_factors}, views={list(self._view_names)})"
        )

    # ------------------------------------------------------------------
    # Shape and labels
    # ------------------------------------------------------------------
    @property
    def n_samples(self) -> int:
        return self._Z.shape[0]

    @property
    def n_factors(self) -> int:
        return self._Z.shape[1]

    @property
    def n_views(self) -> int:
        return len(self._view_names)

    @property
    def view_names(self) -> List[str]:
        return list(self._view_names)

    @property
    def sample_names(self) -> List[str]:
        return list(self._sample_names)

    @property
    def factor_names(self) -> List[str]:
        return list(self._factor_names)

    @property
    def likelihoods(self) -> Dict[str, str]:
        return dict(self._likelihoods)

    @property
    def Z(self) -> np.ndarray:
        return self._Z

    @property
    def W_list(self) -> List[np.ndarray]:
        return list(self._W)

    def feature_names(self, view: Selector) -> List[str]:
        return list(self._feature_names[self._view_names[self._view_index(view)]])

    def _view_index(self, view: Selector) -> int:
        if isinstance(view, (int, np.integer)):
            if not 0 <= view < self.n_views:
                raise IndexError(f"View index {view} out of range for {self.n_views} views")
            return int(view)
        try:
            return self._view_names.index(view)
        except ValueError:
            raise KeyError(f"Unknown view '{view}'. Available: {list(self._view_names)}") from None

    def _factor_index(self, factor: Selector) -> int:
        if isinstance(factor, (int, np.integer)):
            if not 0 <= factor < self.n_factors:
                raise IndexError(f"Factor index {factor} out of range for {self.n_factors} factors")
            return int(factor)
        try:
            return self._factor_names.index(factor)
        except ValueError:
            raise KeyError(f"Unknown factor '{factor}'. Available: {list(self._factor_names)}") from None

    def _factor_indices(self, factors: Optional[Union[Selector, Sequence[Selector]]]) -> List[int]:
        if factors is None:
            return list(range(self.n_factors))
        if isinstance(factors, (str, int, np.integer)):
            factors = [factors]
        return [self._factor_index(f) for f in factors]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_factors(self, factors=None, samples: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """Factor scores as a samples x factors DataFrame."""
        idx = self._factor_indices(factors)
        frame = pd.DataFrame(
            self._Z[:, idx],
            index=list(self._sample_names),
            columns=[self._factor_names[k] for k in idx],
        )
        if samples is not None:
            missing = [s for s in samples if s not in frame.index]
            if missing:
                raise KeyError(f"Unknown samples: {missing}")
            frame = frame.loc[list(samples)]
        return frame

    def get_weights(self, view: Selector, factors=None, scale: bool = False) -> pd.DataFrame:
        """
        Loadings of one view as a features x factors DataFrame.

        With ``scale=True`` each factor column is divided by its maximum
        absolute loading, so weights fall in [-1, 1].
        """
        m = self._view_index(view)
        idx = self._factor_indices(factors)
        W = np.array(self._W[m][:, idx])
        if scale:
            peak = np.abs(W).max(axis=0)
            W = W / np.where(peak > 0, peak, 1.0)
        return pd.DataFrame(
            W,
            index=list(self._feature_names[self._view_names[m]]),
            columns=[self._factor_names[k] for k in idx],
        )

    def get_noise(self, view: Selector) -> pd.Series:
        """Residual noise variance per feature of one view."""
        m = self._view_index(view)
        view_name = self._view_names[m]
        return pd.Series(
            np.array(self._noise[m]), index=list(self._feature_names[view_name]), name=view_name
        )

    def get_variance_explained(self, view: Optional[Selector] = None, factor: Optional[Selector] = None):
        """
        Per-factor R² in percent.

        No arguments: factors x views DataFrame. ``view`` only: Series over
        factors. ``factor`` only: Series over views. Both: a float.
        """
        table = pd.DataFrame(
            np.array(self._r2_per_factor).T,
            index=list(self._factor_names),
            columns=list(self._view_names),
        )
        if view is not None:
            table = table.iloc[:, self._view_index(view)]
        if factor is not None:
            table = table.iloc[self._factor_index(factor)]
        if view is not None and factor is not None:
            return float(table)
        return table

    def get_r2_total(self, view: Optional[Selector] = None):
        """Total R² in percent, per view or for one view."""
        totals = pd.Series(np.array(self._r2_total), index=list(self._view_names), name="r2_total")
        if view is None:
            return totals
        return float(totals.iloc[self._view_index(view)])

    def get_factor_value(self, sample: Union[int, str], factor: Selector) -> float:
        if isinstance(sample, (int, np.integer)):
            n = int(sample)
        else:
            try:
                n = self._sample_names.index(sample)
            except ValueError:
                raise KeyError(f"Unknown sample '{sample}'") from None
        return float(self._Z[n, self._factor_index(factor)])

    def get_weight(self, view: Selector, feature: Union[int, str], factor: Selector) -> float:
        m = self._view_index(view)
        if isinstance(feature, (int, np.integer)):
            d = int(feature)
        else:
            try:
                d = self._feature_names[self._view_names[m]].index(feature)
            except ValueError:
                raise KeyError(f"Unknown feature '{feature}' in view '{self._view_names[m]}'") from None
        return float(self._W[m][d, self._factor_index(factor)])

    def predict(self, view: Selector, original_scale: bool = True) -> pd.DataFrame:
        """
        Reconstruct one view (samples x features) from the factors.

        Gaussian views give ``Z Wᵀ`` plus the intercept, mapped back through
        the preprocessing scalers when ``original_scale`` and scalers are
        available. Count and binary views give the expected value under their
        link (rate or probability).
        """
        m = self._view_index(view)
        view_name = self._view_names[m]
        eta = self._Z @ self._W[m].T + self._intercepts[m]
        likelihood = get_likelihood(self._likelihoods[view_name])
        values = likelihood.mean(eta)
        if original_scale and likelihood.is_gaussian and view_name in self._scalers:
            scaler = self._scalers[view_name]
            values = values * scaler["view_scale"] * scaler["sd"] + scaler["mu"]
        return pd.DataFrame(
            values, index=list(self._sample_names), columns=list(self._feature_names[view_name])
        )

    def factor_correlation(self) -> pd.DataFrame:
        """Pearson correlation between factor score columns."""
        corr = np.corrcoef(self._Z, rowvar=False) if self.n_factors > 1 else np.ones((1, 1))
        return pd.DataFrame(
            np.atleast_2d(corr), index=list(self._factor_names), columns=list(self._factor_names)
        )

    # ------------------------------------------------------------------
    # Renaming
    # ------------------------------------------------------------------
    def _copy_with(self, view_names=None, factor_names=None) -> "TrainedFactorModel":
        new = object.__new__(TrainedFactorModel)
        new.__dict__.update(self.__dict__)
        new.training_stats = dict(self.training_stats)
        if factor_names is not None:
            new._factor_names = tuple(factor_names)
        if view_names is not None:
            mapping = dict(zip(self._view_names, view_names))
            new._view_names = tuple(view_names)
            new._feature_names = {mapping[v]: f for v, f in self._feature_names.items()}
            new._likelihoods = {mapping[v]: lik for v, lik in self._likelihoods.items()}
            new._scalers = {mapping[v]: s for v, s in self._scalers.items()}
        return new

    def rename_factors(self, mapping) -> "TrainedFactorModel":
        """Return a copy with new factor names; arrays are shared, not copied.

        ``mapping`` is a dict old -> new (partial allowed) or a full list.
        """
        return self._copy_with(factor_names=_resolve_mapping(self._factor_names, mapping, "factor"))

    def rename_views(self, mapping) -> "TrainedFactorModel":
        """Return a copy with new view names; arrays are shared, not copied."""
        return self._copy_with(view_names=_resolve_mapping(self._view_names, mapping, "view"))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self, path: Union[str, Path]) -> Path:
        """Write the artifact to a directory (``arrays.npz`` + ``metadata.json``)."""
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)

        arrays = {
            "Z": self._Z,
            "r2_per_factor": self._r2_per_factor,
            "r2_total": self._r2_total,
        }
        for m, view in enumerate(self._view_names):
            arrays[f"W__{m}"] = self._W[m]
            arrays[f"noise__{m}"] = self._noise[m]
            arrays[f"intercept__{m}"] = self._intercepts[m]
            if view in self._scalers:
                arrays[f"mu__{m}"] = self._scalers[view]["mu"]
                arrays[f"sd__{m}"] = self._scalers[view]["sd"]
        save_arrays(arrays, path / ARRAYS_FILE)

        metadata = {
            "model_name": self.model_name,
            "view_names": list(self._view_names),
            "sample_names": list(self._sample_names),
            "factor_names": list(self._factor_names),
            "feature_names": {v: list(f) for v, f in self._feature_names.items()},
            "likelihoods": dict(self._likelihoods),
            "view_scales": {v: s["view_scale"] for v, s in self._scalers.items()},
            "training_stats": self.training_stats,
        }
        save_json(metadata, path / METADATA_FILE)
        logger.info(f"Saved trained model to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "TrainedFactorModel":
        """Read an artifact written by :meth:`save`."""
        path = Path(path)
        if not (path / ARRAYS_FILE).exists() or not (path / METADATA_FILE).exists():
            raise FileNotFoundError(f"No saved model found in {path}")

        arrays = load_arrays(path / ARRAYS_FILE)
        metadata = load_json(path / METADATA_FILE)
        view_names = metadata["view_names"]

        scalers = {}
        for m, view in enumerate(view_names):
            if f"mu__{m}" in arrays:
                scalers[view] = {
                    "mu": arrays[f"mu__{m}"],
                    "sd": arrays[f"sd__{m}"],
                    "view_scale": metadata["view_scales"].get(view, 1.0),
                }

        return cls(
            Z=arrays["Z"],
            W_list=[arrays[f"W__{m}"] for m in range(len(view_names))],
            view_names=view_names,
            sample_names=metadata["sample_names"],
            feature_names=metadata["feature_names"],
            noise_list=[arrays[f"noise__{m}"] for m in range(len(view_names))],
            intercepts=[arrays[f"intercept__{m}"] for m in range(len(view_names))],
            r2_per_factor=arrays["r2_per_factor"],
            r2_total=arrays["r2_total"],
            likelihoods=metadata["likelihoods"],
            factor_names=metadata["factor_names"],
            training_stats=metadata.get("training_stats", {}),
            model_name=metadata.get("model_name", "factor_model"),
            scalers=scalers,
        )
