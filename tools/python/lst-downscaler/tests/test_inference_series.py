"""
Tests for the per-day inference engine and the series assembler.
"""

from datetime import date, timedelta

import numpy as np
import pytest
from rasterio.errors import RasterioIOError

from lst_downscaler.features import build_feature_stack
from lst_downscaler.inference import InferenceEngine, TimeUnit, daily_units
from lst_downscaler.sampling import SampleSet, stratified_sample
from lst_downscaler.series import NoDataStep, PredictionSeries, ValidStep
from lst_downscaler.training import train_model
from shared.python.exceptions import FeatureMismatchError, InputValidationError

import synthetic

START = date(2023, 7, 1)


@pytest.fixture
def model(scene, terrain):
    label, reflectance, _ = scene
    stack = build_feature_stack(synthetic.field(reflectance), terrain)
    strata = terrain.strata((0, 10, 50, 100, 500, 1000))
    samples = stratified_sample(stack, synthetic.field({"LST": label}), strata, num_points=500, seed=1)
    return train_model(samples, ["B4", "B8"], n_trees=10, seed=1).model


@pytest.fixture
def units():
    return daily_units(START, START + timedelta(days=5))


def _engine(source, model, terrain):
    return InferenceEngine(source, model, terrain, synthetic.BBOX)


# ---------------------------------------------------------------------------
# Time units
# ---------------------------------------------------------------------------

class TestDailyUnits:

    def test_one_unit_per_day_end_exclusive(self):
        units = daily_units(date(2023, 7, 30), date(2023, 8, 2))
        assert [u.timestamp for u in units] == [date(2023, 7, 30), date(2023, 7, 31), date(2023, 8, 1)]
        assert units[0].window_end == date(2023, 7, 31)

    def test_empty_range_rejected(self):
        with pytest.raises(InputValidationError):
            daily_units(START, START)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class TestInferenceEngine:

    def test_gap_day_becomes_no_data(self, five_day_sources, model, terrain, units):
        optical, _ = five_day_sources
        steps = _engine(optical, model, terrain).run(units)

        by_day = {s.timestamp: s for s in steps}
        gap = by_day[START + timedelta(days=2)]
        assert isinstance(gap, NoDataStep)
        assert gap.source_image_count == 0
        assert gap.field is None

        valid = [s for s in steps if s.is_valid]
        assert len(valid) == 4
        for step in valid:
            assert step.source_image_count == 1
            assert step.field.band_names == ["LST"]
            assert step.field.shape == terrain.field.shape

    def test_image_count_reflects_composite(self, scene, model, terrain):
        _, reflectance, _ = scene
        source = synthetic.FakeSource({START: [synthetic.s2_raw(reflectance)] * 3})
        step = _engine(source, model, terrain).predict_unit(daily_units(START, START + timedelta(days=1))[0])
        assert step.is_valid
        assert step.source_image_count == 3

    def test_fetch_failure_isolated(self, scene, model, terrain, units):
        _, reflectance, _ = scene
        days = [u.timestamp for u in units]
        source = synthetic.FakeSource({d: [synthetic.s2_raw(reflectance)] for d in days}, failing=[days[1]])
        steps = _engine(source, model, terrain).run(units)

        by_day = {s.timestamp: s for s in steps}
        assert not by_day[days[1]].is_valid
        assert by_day[days[1]].reason.startswith("fetch failed")
        assert sum(s.is_valid for s in steps) == 4

    @pytest.mark.parametrize(
        "error",
        [RasterioIOError("HTTP response code: 503"), RuntimeError("Error opening 'B04.tif'")],
    )
    def test_read_failure_isolated(self, scene, model, terrain, units, error):
        _, reflectance, _ = scene
        days = [u.timestamp for u in units]
        images = {d: [synthetic.s2_raw(reflectance)] for d in days}
        images[days[1]] = [synthetic.unreadable(synthetic.s2_raw(reflectance), error)]
        steps = _engine(synthetic.FakeSource(images), model, terrain).run(units)

        assert len(steps) == 5
        by_day = {s.timestamp: s for s in steps}
        broken = by_day[days[1]]
        assert isinstance(broken, NoDataStep)
        assert broken.source_image_count == 0
        assert broken.reason.startswith("read failed")
        assert type(error).__name__ in broken.reason
        assert sum(s.is_valid for s in steps) == 4

    def test_cached_result_reused(self, five_day_sources, model, terrain, units):
        optical, _ = five_day_sources
        engine = _engine(optical, model, terrain)
        first = engine.predict_unit(units[0])
        second = engine.predict_unit(units[0])
        assert first is second
        assert len(optical.calls) == 1

    def test_refresh_is_bitwise_identical(self, five_day_sources, model, terrain, units):
        optical, _ = five_day_sources
        engine = _engine(optical, model, terrain)
        first = engine.predict_unit(units[0])
        again = engine.predict_unit(units[0], refresh=True)
        assert again is not first
        assert len(optical.calls) == 2
        assert np.array_equal(first.field.band("LST"), again.field.band("LST"), equal_nan=True)

    def test_parallel_matches_sequential(self, five_day_sources, model, terrain, units):
        optical, _ = five_day_sources
        sequential = _engine(optical, model, terrain).run(units)
        parallel = _engine(optical, model, terrain).run(units, max_workers=3)

        seq = {s.timestamp: s for s in sequential}
        par = {s.timestamp: s for s in parallel}
        assert set(seq) == set(par)
        for day, step in seq.items():
            assert step.is_valid == par[day].is_valid
            if step.is_valid:
                assert np.array_equal(step.field.band("LST"), par[day].field.band("LST"), equal_nan=True)

    def test_feature_mismatch_names_the_day(self, five_day_sources, terrain, units):
        optical, _ = five_day_sources
        frame = synthetic.correlated_samples(n=200).frame.rename(columns={"A": "NDVI"})
        samples = SampleSet(frame, ["NDVI", "B"], "LST")
        model = train_model(samples, ["NDVI"], n_trees=5).model

        with pytest.raises(FeatureMismatchError) as info:
            _engine(optical, model, terrain).predict_unit(units[0])
        assert "NDVI" in info.value.missing
        assert "2023-07-01" in info.value.message

    def test_mismatch_aborts_run(self, five_day_sources, terrain, units):
        optical, _ = five_day_sources
        frame = synthetic.correlated_samples(n=200).frame.rename(columns={"A": "NDVI"})
        model = train_model(SampleSet(frame, ["NDVI"], "LST"), ["NDVI"], n_trees=5).model
        with pytest.raises(FeatureMismatchError):
            _engine(optical, model, terrain).run(units, max_workers=2)


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------

def _valid(day, value=25.0):
    return ValidStep(day, synthetic.field({"LST": np.full((2, 2), value)}), 1)


class TestPredictionSeries:

    def test_assemble_sorts(self):
        d = [START + timedelta(days=i) for i in range(3)]
        series = PredictionSeries.assemble([_valid(d[2]), NoDataStep(d[1]), _valid(d[0])])
        assert series.timestamps == d
        assert [s.is_valid for s in series] == [True, False, True]

    def test_duplicate_timestamp_rejected(self):
        with pytest.raises(InputValidationError):
            PredictionSeries.assemble([_valid(START), NoDataStep(START)])

    def test_must_cover_requested_units(self):
        units = [TimeUnit(START + timedelta(days=i), None, None) for i in range(3)]
        with pytest.raises(InputValidationError) as info:
            PredictionSeries.assemble([_valid(units[0].timestamp), _valid(units[2].timestamp)], units)
        assert "2023-07-02" in info.value.message

    def test_constructor_requires_order(self):
        with pytest.raises(InputValidationError):
            PredictionSeries([_valid(START + timedelta(days=1)), _valid(START)])

    def test_valid_view(self):
        d = [START + timedelta(days=i) for i in range(4)]
        series = PredictionSeries.assemble([_valid(d[0]), NoDataStep(d[1]), NoDataStep(d[2]), _valid(d[3])])
        assert series.valid().timestamps == [d[0], d[3]]
        assert [s.timestamp for s in series.iter_valid()] == [d[0], d[3]]
        assert series.source_counts == [1, 0, 0, 1]
        assert len(series) == 4

    def test_summary_frame(self):
        d = [START, START + timedelta(days=1)]
        series = PredictionSeries.assemble([_valid(d[0], 27.5), NoDataStep(d[1], reason="cloud")])
        frame = series.summary_frame()
        assert frame["date"].tolist() == ["2023-07-01", "2023-07-02"]
        assert frame.loc[0, "mean"] == pytest.approx(27.5)
        assert np.isnan(frame.loc[1, "mean"])
        assert frame.loc[1, "reason"] == "cloud"
        assert frame.loc[1, "source_image_count"] == 0
