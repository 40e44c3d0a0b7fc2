"""
training.py
===========
Regression Trainer.

Samples are assigned independently to Train (probability ``r``) or Test
(probability ``1 - r``), so the Train share is r in expectation rather
than an exact count.  A scikit-learn ``RandomForestRegressor`` is fitted
on Train using only the selected feature columns; the resulting
``RegressionModel`` remembers that exact ordered feature tuple and checks
every stack it is applied to before predicting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import joblib
import numpy as np
import pandas as pd
import xarray as xr
from sklearn.ensemble import RandomForestRegressor
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from shared.python.exceptions import (
    InputValidationError,
    InsufficientSamplesError,
    OutputWriteError,
)
from shared.python.validators import Validators

from .raster import RasterField
from .sampling import SampleSet

logger = logging.getLogger("lst_downscaler.training")


# ---------------------------------------------------------------------------
# Train / test split
# ---------------------------------------------------------------------------

def split_samples(samples: SampleSet, train_ratio: float, seed: int) -> tuple[SampleSet, SampleSet]:
    """Assign each sample to Train when its uniform draw is ``<= train_ratio``.

    Returns:
        ``(train, test)``: disjoint, together exactly *samples*, each in
        the original row order.
    """
    Validators.assert_open_unit_interval(train_ratio, "train_ratio")
    draws = np.random.default_rng(seed).random(len(samples))
    in_train = draws <= train_ratio
    return samples.take(in_train), samples.take(~in_train)


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

class RegressionModel:
    """A fitted regressor bound to the ordered feature names it was trained on.

    Parameters
    ----------
    estimator:
        Fitted scikit-learn regressor.
    features:
        Feature names in the column order used at fit time.
    label:
        Name of the target variable.
    """

    def __init__(self, estimator: RandomForestRegressor, features: Sequence[str], label: str = "LST") -> None:
        self._estimator = estimator
        self._features: tuple[str, ...] = tuple(features)
        self._label = label

    @property
    def features(self) -> tuple[str, ...]:
        return self._features

    @property
    def label(self) -> str:
        return self._label

    @property
    def estimator(self) -> RandomForestRegressor:
        return self._estimator

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict_frame(self, frame: pd.DataFrame) -> np.ndarray:
        """Predict for rows of a table holding every model feature."""
        Validators.assert_columns_exist(frame, self._features)
        return self._estimator.predict(frame.loc[:, list(self._features)])

    def predict(self, stack: RasterField, band_name: str = "LST", context: str | None = None) -> RasterField:
        """Apply the model to every fully valid pixel of *stack*.

        The band check happens before any pixel is evaluated.

        Args:
            stack: Feature stack holding at least the model's features.
            band_name: Name of the single output band.
            context: Label for error messages (e.g. the date predicted).

        Returns:
            Single-band RasterField; NaN where any input feature is NaN.

        Raises:
            FeatureMismatchError: If *stack* lacks a model feature.
        """
        selected = stack.select(self._features, context=context).compute()
        values = np.asarray(selected.data.values, dtype=np.float64)
        n_bands, rows, cols = values.shape

        pixels = values.reshape(n_bands, -1).T
        valid = np.isfinite(pixels).all(axis=1)
        out = np.full(rows * cols, np.nan, dtype=np.float64)
        if valid.any():
            out[valid] = self._estimator.predict(
                pd.DataFrame(pixels[valid], columns=list(self._features))
            )
        logger.debug("Predicted %d of %d px%s", int(valid.sum()), rows * cols, f" ({context})" if context else "")

        data = xr.DataArray(
            out.reshape(1, rows, cols),
            dims=("band", "y", "x"),
            coords={"band": [band_name], "y": selected.data["y"].values, "x": selected.data["x"].values},
        )
        data.values.flags.writeable = False
        return stack.like(data)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, samples: SampleSet) -> dict[str, float]:
        """RMSE, MAE and R² on *samples* (NaN metrics when nothing is usable)."""
        frame = samples.frame
        Validators.assert_columns_exist(frame, list(self._features) + [samples.label])
        frame = frame.dropna(subset=list(self._features) + [samples.label])
        n = len(frame)
        if n == 0:
            return {"n": 0, "rmse": float("nan"), "mae": float("nan"), "r2": float("nan")}

        y_true = frame[samples.label].to_numpy(dtype=np.float64)
        y_pred = self.predict_frame(frame)
        return {
            "n": n,
            "rmse": float(np.sqrt(mean_squared_error(y_true, y_pred))),
            "mae": float(mean_absolute_error(y_true, y_pred)),
            "r2": float(r2_score(y_true, y_pred)) if n >= 2 else float("nan"),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        path = Path(path)
        Validators.assert_output_dir_writable(path.parent)
        try:
            joblib.dump(
                {"estimator": self._estimator, "features": list(self._features), "label": self._label},
                path,
            )
        except OSError as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        logger.info("Model saved → %s", path)
        return path

    @classmethod
    def load(cls, path: Path) -> "RegressionModel":
        Validators.assert_file_exists(path)
        payload = joblib.load(path)
        if not isinstance(payload, dict) or "estimator" not in payload or "features" not in payload:
            raise InputValidationError(f"'{path}' does not hold a saved regression model.")
        return cls(payload["estimator"], payload["features"], payload.get("label", "LST"))

    def __repr__(self) -> str:
        n_trees = getattr(self._estimator, "n_estimators", "?")
        return f"<RegressionModel {n_trees} trees features={list(self._features)} → '{self._label}'>"


# ---------------------------------------------------------------------------
# Trainer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TrainingResult:
    model: RegressionModel
    train: SampleSet
    test: SampleSet


def train_model(
    samples: SampleSet,
    features: Sequence[str],
    train_ratio: float = 0.7,
    n_trees: int = 50,
    seed: int = 1,
    n_jobs: int = 1,
) -> TrainingResult:
    """Split *samples* and fit a random forest on the Train partition.

    Rows with NaN in any selected column or the label are dropped from
    Train before fitting.

    Raises:
        InsufficientSamplesError: If *samples* or its Train partition is
            empty.
        ColumnNotFoundError: If a feature is not a sample column.
    """
    features = list(features)
    if not features:
        raise InputValidationError("At least one feature is required to train a model.")
    Validators.assert_positive_int(n_trees, "n_trees")
    if len(samples) == 0:
        raise InsufficientSamplesError("The sample set is empty; no model can be fitted.")
    Validators.assert_columns_exist(samples.frame, features + [samples.label])

    train, test = split_samples(samples, train_ratio, seed)
    logger.info("Split %d samples → %d train / %d test (r=%.2f)", len(samples), len(train), len(test), train_ratio)

    frame = train.frame.dropna(subset=features + [samples.label])
    if len(frame) < len(train):
        logger.warning("Dropped %d train row(s) with missing values.", len(train) - len(frame))
    if len(frame) == 0:
        raise InsufficientSamplesError(
            f"The Train partition is empty ({len(samples)} samples, r={train_ratio})."
        )

    estimator = RandomForestRegressor(n_estimators=n_trees, random_state=seed, n_jobs=n_jobs)
    estimator.fit(frame.loc[:, features], frame[samples.label].to_numpy(dtype=np.float64))
    logger.info("Fitted random forest: %d trees on %d rows, features %s", n_trees, len(frame), features)

    return TrainingResult(model=RegressionModel(estimator, features, samples.label), train=train, test=test)
