"""
selection.py
============
Feature Selector.

Every candidate is scored by its Pearson correlation with the label over
the whole sample set and ranked by r².  The top ``2K`` form a shortlist
and the top ``K`` of the shortlist become the model's predictors.
Redundancy pruning between the two steps is optional.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NamedTuple, Optional, Sequence

import numpy as np

from shared.python.exceptions import InputValidationError, InsufficientSamplesError
from shared.python.validators import Validators

from .sampling import SampleSet

logger = logging.getLogger("lst_downscaler.selection")


class FeatureScore(NamedTuple):
    feature: str
    r: float
    r2: float


@dataclass(frozen=True)
class FeatureRanking:
    """Scores sorted by descending r² (ties keep candidate order)."""

    scores: tuple[FeatureScore, ...]
    excluded: tuple[str, ...] = field(default_factory=tuple)

    @property
    def features(self) -> list[str]:
        return [s.feature for s in self.scores]

    def score(self, feature: str) -> FeatureScore:
        for s in self.scores:
            if s.feature == feature:
                return s
        raise KeyError(feature)

    def top(self, n: int) -> list[str]:
        return self.features[:n]

    def to_records(self) -> list[dict]:
        """Rows for the ranking CSV; excluded features get NaN scores."""
        rows = [
            {"rank": i + 1, "feature": s.feature, "r": s.r, "r2": s.r2, "excluded": False}
            for i, s in enumerate(self.scores)
        ]
        rows.extend(
            {"rank": None, "feature": f, "r": np.nan, "r2": np.nan, "excluded": True}
            for f in self.excluded
        )
        return rows

    def __len__(self) -> int:
        return len(self.scores)


def _pearson(a: np.ndarray, b: np.ndarray) -> Optional[float]:
    """Pearson r, or None when either input has zero variance."""
    if a.size < 2 or np.all(a == a[0]) or np.all(b == b[0]):
        return None
    da = a - a.mean()
    db = b - b.mean()
    ssa = float(np.dot(da, da))
    ssb = float(np.dot(db, db))
    if ssa <= 0.0 or ssb <= 0.0:
        return None
    r = float(np.dot(da, db) / np.sqrt(ssa * ssb))
    return max(-1.0, min(1.0, r))


def rank_features(samples: SampleSet, candidates: Sequence[str]) -> FeatureRanking:
    """Rank *candidates* by squared correlation with the sample label.

    Only rows where the candidate and the label are both finite enter a
    candidate's score.  Zero-variance candidates are excluded and logged,
    never scored.

    Raises:
        ColumnNotFoundError: If a candidate is not a sample column.
    """
    frame = samples.frame
    Validators.assert_columns_exist(frame, list(candidates) + [samples.label])
    label = frame[samples.label].to_numpy(dtype=np.float64)

    scored: list[tuple[int, FeatureScore]] = []
    excluded: list[str] = []
    for order, name in enumerate(candidates):
        values = frame[name].to_numpy(dtype=np.float64)
        ok = np.isfinite(values) & np.isfinite(label)
        r = _pearson(values[ok], label[ok]) if ok.sum() >= 2 else None
        if r is None:
            logger.warning("Excluding '%s' from ranking: zero variance or too few values.", name)
            excluded.append(name)
            continue
        scored.append((order, FeatureScore(name, r, r * r)))

    scored.sort(key=lambda item: (-item[1].r2, item[0]))
    ranking = FeatureRanking(tuple(s for _, s in scored), tuple(excluded))
    for i, s in enumerate(ranking.scores, start=1):
        logger.info("  %2d. %-10s r=%+.3f  R²=%.3f", i, s.feature, s.r, s.r2)
    return ranking


def select_features(
    ranking: FeatureRanking,
    k: int,
    samples: Optional[SampleSet] = None,
    prune_redundant: bool = False,
    redundancy_threshold: float = 0.9,
) -> list[str]:
    """Pick the final K predictors from the 2K shortlist.

    With ``prune_redundant`` a shortlisted feature whose |r| with an
    already-selected one exceeds *redundancy_threshold* is skipped.  If
    that leaves fewer than K, skipped features refill in rank order.

    Raises:
        InsufficientSamplesError: If no feature survived ranking.
        InputValidationError: If ``prune_redundant`` is set without samples.
    """
    Validators.assert_positive_int(k, "k")
    if len(ranking) == 0:
        raise InsufficientSamplesError(
            "No candidate feature could be ranked against the label; "
            f"excluded: {', '.join(ranking.excluded) or 'none'}."
        )
    if len(ranking) < k:
        logger.warning("Only %d ranked feature(s) available for K=%d.", len(ranking), k)

    shortlist = ranking.top(2 * k)
    logger.info("Shortlist (2K=%d): %s", 2 * k, ", ".join(shortlist))
    if not prune_redundant:
        selected = shortlist[:k]
        logger.info("Selected predictors: %s", ", ".join(selected))
        return selected

    if samples is None:
        raise InputValidationError("Redundancy pruning needs the sample set.")

    frame = samples.frame
    selected: list[str] = []
    skipped: list[str] = []
    for name in shortlist:
        if len(selected) == k:
            break
        redundant = False
        for chosen in selected:
            a = frame[name].to_numpy(dtype=np.float64)
            b = frame[chosen].to_numpy(dtype=np.float64)
            ok = np.isfinite(a) & np.isfinite(b)
            r = _pearson(a[ok], b[ok]) if ok.sum() >= 2 else None
            if r is not None and abs(r) > redundancy_threshold:
                logger.info("Skipping '%s': |r|=%.3f with '%s'", name, abs(r), chosen)
                redundant = True
                break
        (skipped if redundant else selected).append(name)

    for name in skipped:
        if len(selected) == k:
            break
        selected.append(name)

    # keep rank order in the final list
    selected = [f for f in shortlist if f in selected]
    logger.info("Selected predictors: %s", ", ".join(selected))
    return selected
