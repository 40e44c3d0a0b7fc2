"""
Tests for the train/test split and the random-forest regression model.
"""

import numpy as np
import pandas as pd
import pytest

from lst_downscaler.sampling import SampleSet
from lst_downscaler.training import RegressionModel, split_samples, train_model
from shared.python.exceptions import (
    FeatureMismatchError,
    InputValidationError,
    InsufficientSamplesError,
)

import synthetic


# ---------------------------------------------------------------------------
# Split
# ---------------------------------------------------------------------------

class TestSplit:

    def test_train_share_converges_to_ratio(self):
        samples = synthetic.correlated_samples(n=1000)
        sizes = [len(split_samples(samples, 0.7, seed)[0]) for seed in range(50)]
        assert np.mean(sizes) == pytest.approx(700, abs=10)
        # per-sample draws, not a fixed count
        assert len(set(sizes)) > 1

    def test_partition_is_disjoint_and_complete(self):
        samples = synthetic.correlated_samples(n=1000)
        for seed in range(5):
            train, test = split_samples(samples, 0.7, seed)
            ids_train = set(train.column("x"))
            ids_test = set(test.column("x"))
            assert ids_train.isdisjoint(ids_test)
            assert ids_train | ids_test == set(samples.column("x"))

    def test_ratio_must_be_open_interval(self):
        with pytest.raises(InputValidationError):
            split_samples(synthetic.correlated_samples(n=10), 1.0, 1)


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------

class TestTrainModel:

    def test_model_bound_to_feature_order(self):
        result = train_model(synthetic.correlated_samples(), ["B", "A"], n_trees=10, seed=1)
        assert result.model.features == ("B", "A")
        assert len(result.train) + len(result.test) == 1000

    def test_empty_sample_set(self):
        with pytest.raises(InsufficientSamplesError):
            train_model(SampleSet.empty(["A"]), ["A"], n_trees=5)

    def test_empty_train_partition(self):
        seed = next(s for s in range(1000) if np.random.default_rng(s).random(1)[0] > 0.05)
        one = synthetic.correlated_samples(n=1)
        with pytest.raises(InsufficientSamplesError):
            train_model(one, ["A"], train_ratio=0.05, n_trees=5, seed=seed)

    def test_nan_rows_dropped(self):
        samples = synthetic.correlated_samples(n=200)
        frame = samples.frame
        frame.loc[:20, "A"] = np.nan
        result = train_model(SampleSet(frame, ["A", "B"]), ["A", "B"], n_trees=5, seed=2)
        assert result.model.estimator.n_features_in_ == 2

    def test_evaluate_on_test_split(self):
        result = train_model(synthetic.correlated_samples(r2=(1.0, 0.0, 0.0)), ["A"], n_trees=20, seed=1)
        metrics = result.model.evaluate(result.test)
        assert metrics["n"] == len(result.test)
        assert metrics["r2"] > 0.9
        assert metrics["rmse"] >= 0.0

    def test_evaluate_empty(self):
        result = train_model(synthetic.correlated_samples(n=50), ["A"], n_trees=5)
        metrics = result.model.evaluate(SampleSet.empty(["A"]))
        assert metrics["n"] == 0
        assert np.isnan(metrics["rmse"])


# ---------------------------------------------------------------------------
# Prediction on rasters
# ---------------------------------------------------------------------------

class TestRasterPrediction:

    @pytest.fixture
    def model(self):
        return train_model(synthetic.correlated_samples(), ["A", "B"], n_trees=10, seed=1).model

    def test_missing_band_checked_first(self, model):
        stack = synthetic.field({"A": np.zeros((3, 3)), "C": np.zeros((3, 3))})
        with pytest.raises(FeatureMismatchError) as info:
            model.predict(stack, context="2023-07-02")
        assert info.value.missing == ["B"]
        assert "2023-07-02" in info.value.message

    def test_nan_pixels_stay_nan(self, model):
        a = np.zeros((3, 3))
        a[1, 1] = np.nan
        out = model.predict(synthetic.field({"A": a, "B": np.zeros((3, 3)), "extra": np.ones((3, 3))}))
        values = out.band("LST")
        assert out.band_names == ["LST"]
        assert np.isnan(values[1, 1])
        assert np.isfinite(values).sum() == 8

    def test_band_name_and_grid(self, model):
        stack = synthetic.field({"B": np.ones((2, 4)), "A": np.ones((2, 4))})
        out = model.predict(stack, band_name="LST_pred")
        assert out.band_names == ["LST_pred"]
        assert out.shape == (2, 4)
        assert np.allclose(out.data["x"].values, stack.data["x"].values)

    def test_repeat_prediction_identical(self, model):
        stack = synthetic.field({"A": np.linspace(-2, 2, 16).reshape(4, 4), "B": np.zeros((4, 4))})
        first = model.predict(stack).band("LST")
        second = model.predict(stack).band("LST")
        assert np.array_equal(first, second)

    def test_save_and_load(self, model, tmp_path):
        path = model.save(tmp_path / "model.joblib")
        loaded = RegressionModel.load(path)
        assert loaded.features == model.features
        frame = pd.DataFrame({"A": [0.0, 1.0], "B": [0.5, -0.5]})
        assert np.array_equal(loaded.predict_frame(frame), model.predict_frame(frame))
