"""
sampling.py
===========
Stratified Sampler.

Draws a spatially representative point sample from a feature stack and
a label field, joining every point to its feature values, label value,
stratum class and projected coordinates.

Algorithm
---------
1. Optionally coarsen to the sampling scale (block mean of features and
   label; the stratum is taken from each block's centre pixel).
2. A pixel is eligible when every feature, the label and the stratum
   (> 0) are valid.
3. ``min(num_points, eligible)`` points are allocated to strata, either
   in equal shares capped at each stratum's eligible pixels (``balanced``,
   the default) or in proportion to eligible area using largest
   remainders (``proportional``).
4. Within each stratum points are drawn without replacement using
   ``numpy.random.default_rng(seed)``.  Rows are ordered by stratum, then
   by draw order, so identical seed and inputs give an identical
   ``SampleSet``.
"""

from __future__ import annotations

import logging
from typing import Iterator, Mapping, NamedTuple, Sequence

import numpy as np
import pandas as pd

from shared.python.exceptions import ColumnNotFoundError, InputValidationError
from shared.python.validators import Validators

from .raster import RasterField
from .terrain import STRATUM_BAND

logger = logging.getLogger("lst_downscaler.sampling")

COORD_COLUMNS = ("x", "y")


# ---------------------------------------------------------------------------
# Sample containers
# ---------------------------------------------------------------------------

class Sample(NamedTuple):
    """One sampled point."""

    x: float
    y: float
    stratum: int
    label: float
    features: Mapping[str, float]


class SampleSet:
    """Ordered, immutable table of samples.

    Backed by a :class:`pandas.DataFrame` with one column per feature, the
    label column, ``stratum``, ``x`` and ``y``.  The frame handed out by
    :attr:`frame` is a copy; the stored one is never modified.
    """

    def __init__(
        self,
        frame: pd.DataFrame,
        feature_names: Sequence[str],
        label: str = "LST",
    ) -> None:
        feature_names = list(feature_names)
        Validators.assert_columns_exist(
            frame, feature_names + [label, STRATUM_BAND, *COORD_COLUMNS]
        )
        self._frame = frame.reset_index(drop=True).copy()
        self.feature_names: tuple[str, ...] = tuple(feature_names)
        self.label: str = label

    @classmethod
    def empty(cls, feature_names: Sequence[str], label: str = "LST") -> "SampleSet":
        columns = list(feature_names) + [label, STRATUM_BAND, *COORD_COLUMNS]
        return cls(pd.DataFrame({c: pd.Series(dtype="float64") for c in columns}), feature_names, label)

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    def column(self, name: str) -> np.ndarray:
        """Return a copy of one column as a numpy array.

        Raises:
            ColumnNotFoundError: If *name* is not a column of the set.
        """
        if name not in self._frame.columns:
            raise ColumnNotFoundError(name, list(self._frame.columns))
        return self._frame[name].to_numpy(copy=True)

    def take(self, mask: np.ndarray) -> "SampleSet":
        """Return the rows where boolean *mask* is True, order preserved."""
        mask = np.asarray(mask, dtype=bool)
        return SampleSet(self._frame.loc[mask], self.feature_names, self.label)

    def strata_counts(self) -> dict[int, int]:
        counts = self._frame[STRATUM_BAND].astype(int).value_counts().sort_index()
        return {int(k): int(v) for k, v in counts.items()}

    def __len__(self) -> int:
        return len(self._frame)

    def __iter__(self) -> Iterator[Sample]:
        for row in self._frame.itertuples(index=False):
            values = row._asdict()
            yield Sample(
                x=float(values["x"]),
                y=float(values["y"]),
                stratum=int(values[STRATUM_BAND]),
                label=float(values[self.label]),
                features={f: float(values[f]) for f in self.feature_names},
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SampleSet):
            return NotImplemented
        return (
            self.feature_names == other.feature_names
            and self.label == other.label
            and self._frame.equals(other._frame)
        )

    def __repr__(self) -> str:
        return f"<SampleSet n={len(self)} features={list(self.feature_names)} label='{self.label}'>"


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------

ALLOCATION_MODES = ("balanced", "proportional")


def _proportional(available: np.ndarray, total: int) -> np.ndarray:
    n_pixels = int(available.sum())
    quotas = total * available / n_pixels
    alloc = np.minimum(np.floor(quotas).astype(np.int64), available)
    remainders = quotas - alloc
    # stable sort keeps stratum order for equal remainders
    order = np.argsort(-remainders, kind="stable")
    shortfall = total - int(alloc.sum())
    while shortfall > 0:
        progressed = False
        for i in order:
            if shortfall == 0:
                break
            if alloc[i] < available[i]:
                alloc[i] += 1
                shortfall -= 1
                progressed = True
        if not progressed:
            break
    return alloc


def _balanced(available: np.ndarray, total: int) -> np.ndarray:
    alloc = np.zeros_like(available)
    remaining = total
    while remaining > 0:
        open_ = np.flatnonzero(alloc < available)
        share, extra = divmod(remaining, len(open_))
        for k, i in enumerate(open_):
            give = min(share + (1 if k < extra else 0), int(available[i] - alloc[i]))
            alloc[i] += give
            remaining -= give
    return alloc


def allocate_points(
    counts: Mapping[int, int], total: int, allocation: str = "balanced"
) -> dict[int, int]:
    """Split *total* points across strata.

    ``"balanced"`` gives every stratum with eligible pixels an equal
    share (leftover points go to the lowest classes first), so rare
    strata are represented.  ``"proportional"`` splits by eligible area
    with largest-remainder rounding.

    Either way the sum is exactly ``min(total, sum(counts))``, no stratum
    receives more points than it has pixels (the surplus is handed to
    strata that still have room) and zero-area strata receive zero.

    Raises:
        InputValidationError: If *allocation* is not a known mode.
    """
    if allocation not in ALLOCATION_MODES:
        raise InputValidationError(
            f"Unknown allocation '{allocation}'. Choose one of: {', '.join(ALLOCATION_MODES)}."
        )
    classes = sorted(counts)
    available = np.array([counts[c] for c in classes], dtype=np.int64)
    total = min(int(total), int(available.sum()))
    if total <= 0:
        return {c: 0 for c in classes}

    split = _balanced if allocation == "balanced" else _proportional
    alloc = split(available, total)
    return {c: int(a) for c, a in zip(classes, alloc)}


# ---------------------------------------------------------------------------
# Sampler
# ---------------------------------------------------------------------------

def _coarsen(
    stack: RasterField, label: RasterField, strata: RasterField, factor: int
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Return (features, label, strata, x, y) arrays at ``factor`` x the grid spacing."""
    if factor <= 1:
        return (
            np.asarray(stack.data.values, dtype=np.float64),
            np.asarray(label.data.values[0], dtype=np.float64),
            np.asarray(strata.data.values[0]),
            stack.data["x"].values,
            stack.data["y"].values,
        )

    feats = stack.data.coarsen(y=factor, x=factor, boundary="trim").mean()
    lab = label.data.coarsen(y=factor, x=factor, boundary="trim").mean()
    rows, cols = feats.sizes["y"], feats.sizes["x"]
    centre = factor // 2
    strat = strata.data.values[0][centre:rows * factor:factor, centre:cols * factor:factor]
    return (
        np.asarray(feats.values, dtype=np.float64),
        np.asarray(lab.values[0], dtype=np.float64),
        np.asarray(strat),
        feats["x"].values,
        feats["y"].values,
    )


def stratified_sample(
    stack: RasterField,
    label: RasterField,
    strata: RasterField,
    num_points: int,
    seed: int,
    sample_scale: float | None = None,
    allocation: str = "balanced",
) -> SampleSet:
    """Draw a stratified sample of feature and label values.

    Args:
        stack: Feature stack; every band becomes a feature column.
        label: Single-band label field on the same grid.
        strata: Single-band integer class field on the same grid.  Class
            0 marks pixels that are never sampled.
        num_points: Requested total number of points.
        seed: Seed for the point draw.
        sample_scale: Sampling pixel size.  When coarser than the stack
            resolution, values are block-averaged first.
        allocation: ``"balanced"`` or ``"proportional"``; see
            :func:`allocate_points`.

    Returns:
        SampleSet ordered by stratum then draw order.  Empty (not an
        error) when no pixel is eligible.
    """
    Validators.assert_positive_int(num_points, "num_points")
    Validators.assert_raster_shapes_match(stack.shape, label.shape, "feature stack", "label")
    Validators.assert_raster_shapes_match(stack.shape, strata.shape, "feature stack", "strata")

    label_name = label.band_names[0]
    feature_names = stack.band_names
    stack, label, strata = stack.compute(), label.compute(), strata.compute()

    factor = 1
    if sample_scale is not None and sample_scale > stack.resolution:
        factor = max(1, int(round(sample_scale / stack.resolution)))
    feats, lab, strat, xs, ys = _coarsen(stack, label, strata, factor)
    logger.debug("Sampling grid: %s px (coarsening factor %d)", lab.shape, factor)

    strat = np.where(np.isfinite(strat), strat, 0).astype(np.int64)
    eligible = np.isfinite(feats).all(axis=0) & np.isfinite(lab) & (strat > 0)

    present = sorted(int(c) for c in np.unique(strat) if c > 0)
    counts = {c: int(np.count_nonzero(eligible & (strat == c))) for c in present}
    n_eligible = sum(counts.values())
    if n_eligible == 0:
        logger.warning("No eligible pixels to sample; returning an empty sample set.")
        return SampleSet.empty(feature_names, label_name)

    per_stratum = allocate_points(counts, num_points, allocation)
    rng = np.random.default_rng(seed)
    flat_strata = strat.ravel()
    flat_eligible = eligible.ravel()

    chosen = []
    for cls in present:
        n = per_stratum[cls]
        if n == 0:
            logger.warning(
                "Stratum %d receives no samples (%d eligible px, %s allocation).", cls, counts[cls], allocation
            )
            continue
        candidates = np.flatnonzero(flat_eligible & (flat_strata == cls))
        picks = rng.choice(candidates, size=n, replace=False)
        chosen.append(picks)
        logger.debug("Stratum %d: %d of %d eligible px sampled", cls, n, counts[cls])

    idx = np.concatenate(chosen)
    rows, cols = np.unravel_index(idx, lab.shape)
    frame = pd.DataFrame(
        {name: feats[i].ravel()[idx] for i, name in enumerate(feature_names)}
    )
    frame[label_name] = lab.ravel()[idx]
    frame[STRATUM_BAND] = flat_strata[idx]
    frame["x"] = np.asarray(xs, dtype=np.float64)[cols]
    frame["y"] = np.asarray(ys, dtype=np.float64)[rows]

    logger.info(
        "Drew %d stratified samples (%s) from %d eligible px across %d strata: %s",
        len(frame), allocation, n_eligible, len(present),
        ", ".join(f"{c}={per_stratum[c]}" for c in present),
    )
    return SampleSet(frame, feature_names, label_name)
