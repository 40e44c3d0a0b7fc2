"""
Tests for correlation ranking and top-K feature selection.
"""

import numpy as np
import pandas as pd
import pytest

from lst_downscaler.sampling import SampleSet
from lst_downscaler.selection import rank_features, select_features
from shared.python.exceptions import ColumnNotFoundError, InsufficientSamplesError

import synthetic


class TestRanking:

    def test_known_correlations_ranked(self):
        samples = synthetic.correlated_samples(r2=(0.9, 0.5, 0.1))
        ranking = rank_features(samples, ["C", "B", "A"])
        assert ranking.features == ["A", "B", "C"]
        assert ranking.score("A").r2 == pytest.approx(0.9, abs=0.05)
        assert ranking.score("B").r2 == pytest.approx(0.5, abs=0.08)
        assert ranking.score("C").r2 == pytest.approx(0.1, abs=0.06)

    def test_r2_is_square_of_r(self):
        ranking = rank_features(synthetic.correlated_samples(), ["A", "B"])
        for s in ranking.scores:
            assert s.r2 == pytest.approx(s.r ** 2)

    def test_zero_variance_excluded(self):
        samples = synthetic.correlated_samples()
        ranking = rank_features(samples, ["A", "D", "B"])
        assert "D" not in ranking.features
        assert ranking.excluded == ("D",)
        assert all(np.isfinite(s.r2) for s in ranking.scores)

    def test_perfect_vs_uncorrelated_k1(self):
        samples = synthetic.correlated_samples(r2=(1.0, 0.0, 0.0))
        ranking = rank_features(samples, ["B", "A"])
        assert ranking.features[0] == "A"
        assert ranking.score("A").r == pytest.approx(1.0)
        assert select_features(ranking, 1) == ["A"]

    def test_unknown_candidate(self):
        with pytest.raises(ColumnNotFoundError):
            rank_features(synthetic.correlated_samples(), ["A", "NDVI"])

    def test_deterministic(self):
        samples = synthetic.correlated_samples(seed=4)
        assert rank_features(samples, ["A", "B", "C"]) == rank_features(samples, ["A", "B", "C"])

    def test_records_include_excluded(self):
        ranking = rank_features(synthetic.correlated_samples(), ["A", "D"])
        records = ranking.to_records()
        assert [r["feature"] for r in records] == ["A", "D"]
        assert records[1]["excluded"] is True


class TestSelection:

    def test_top_k_of_shortlist(self):
        ranking = rank_features(synthetic.correlated_samples(), ["A", "B", "C"])
        assert select_features(ranking, 2) == ["A", "B"]

    def test_no_ranked_feature(self):
        ranking = rank_features(synthetic.correlated_samples(), ["D"])
        with pytest.raises(InsufficientSamplesError):
            select_features(ranking, 1)

    def test_fewer_ranked_than_k(self):
        ranking = rank_features(synthetic.correlated_samples(), ["A", "D"])
        assert select_features(ranking, 2) == ["A"]

    def test_redundancy_pruning(self):
        rng = np.random.default_rng(0)
        n = 500
        label = rng.standard_normal(n)
        a = label + 0.1 * rng.standard_normal(n)
        frame = pd.DataFrame(
            {
                "A": a,
                "A2": a + 0.01 * rng.standard_normal(n),
                "B": 0.6 * label + 0.8 * rng.standard_normal(n),
                "LST": label,
                "stratum": 1,
                "x": np.arange(n, dtype=float),
                "y": 0.0,
            }
        )
        samples = SampleSet(frame, ["A", "A2", "B"], "LST")
        ranking = rank_features(samples, ["A", "A2", "B"])

        assert set(select_features(ranking, 2)) == {"A", "A2"}
        pruned = select_features(ranking, 2, samples=samples, prune_redundant=True)
        assert len(pruned) == 2
        assert "B" in pruned
        assert len({"A", "A2"} & set(pruned)) == 1
