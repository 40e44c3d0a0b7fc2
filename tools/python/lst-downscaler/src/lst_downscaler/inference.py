"""
inference.py
============
Per-Timestep Inference Engine.

Each requested day is an independent unit of work::

    Pending --fetch fails / 0 images--> NoDataStep(count=0)
    Pending --pixel read fails--------> NoDataStep(count=0)
    Pending --n > 0 images-----------> mask -> median composite
                                       -> build_feature_stack -> model.predict
                                       -> ValidStep(count=n)

A failed fetch or pixel read for one unit degrades to ``NoDataStep`` and
never aborts the others.  A feature mismatch is a configuration error and is raised
with the unit's date.  The trained model and the terrain layers are
shared read-only; the only mutable state is the per-unit result cache.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, timedelta
from typing import Callable, Iterable, NamedTuple, Optional

import xarray as xr

from shared.python.exceptions import FeatureMismatchError, SourceDataError
from shared.python.validators import Validators

from .features import build_feature_stack, median_composite
from .fetcher import BBox, ImagerySource, SourceImage
from .masking import mask_sentinel2
from .raster import RasterField
from .series import NoDataStep, TimeStep, ValidStep
from .terrain import TerrainLayers
from .training import RegressionModel

logger = logging.getLogger("lst_downscaler.inference")

MaskFn = Callable[[xr.DataArray], xr.DataArray]

# Raised while lazily reading source pixels.  RasterioIOError is an
# OSError; stackstac re-raises failed asset reads as RuntimeError.
READ_ERRORS = (SourceDataError, OSError, RuntimeError)


def _dated(exc: FeatureMismatchError, day: str) -> FeatureMismatchError:
    context = f"{day}: {exc.context}" if exc.context else day
    return FeatureMismatchError(exc.missing, exc.available, context=context)


class TimeUnit(NamedTuple):
    """One requested output step; the window end is exclusive."""

    timestamp: date
    window_start: date
    window_end: date


def daily_units(start: date, end: date) -> list[TimeUnit]:
    """One unit per calendar day in ``[start, end)``."""
    Validators.assert_date_range(start, end)
    return [
        TimeUnit(day, day, day + timedelta(days=1))
        for day in (start + timedelta(days=i) for i in range((end - start).days))
    ]


class InferenceEngine:
    """Applies a trained model to every requested time unit.

    Parameters
    ----------
    source:
        Imagery source queried once per unit.
    model:
        Trained regression model.
    terrain:
        Static terrain layers; also fixes the output grid.
    bbox:
        WGS84 region passed to the source.
    cloud_cover:
        Scene cloud-cover ceiling (%) passed to the source.
    band_name:
        Band name of every predicted field.
    mask_fn:
        Per-image cloud mask returning reflectance bands.
    """

    def __init__(
        self,
        source: ImagerySource,
        model: RegressionModel,
        terrain: TerrainLayers,
        bbox: BBox,
        cloud_cover: Optional[float] = 10.0,
        band_name: str = "LST",
        mask_fn: MaskFn = mask_sentinel2,
    ) -> None:
        self.source = source
        self.model = model
        self.terrain = terrain
        self.bbox = bbox
        self.cloud_cover = cloud_cover
        self.band_name = band_name
        self.mask_fn = mask_fn

        self._cache: dict[date, TimeStep] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Single unit
    # ------------------------------------------------------------------

    def predict_unit(self, unit: TimeUnit, refresh: bool = False) -> TimeStep:
        """Resolve one unit to ``ValidStep`` or ``NoDataStep``.

        Results are cached per unit; ``refresh=True`` recomputes.

        Raises:
            FeatureMismatchError: If the rebuilt stack lacks a model
                feature.  The message names the unit's date.
        """
        if not refresh:
            with self._lock:
                cached = self._cache.get(unit.timestamp)
            if cached is not None:
                return cached

        step = self._evaluate(unit)
        with self._lock:
            self._cache[unit.timestamp] = step
        return step

    def _evaluate(self, unit: TimeUnit) -> TimeStep:
        day = unit.timestamp.isoformat()
        try:
            images = self.source.fetch(self.bbox, unit.window_start, unit.window_end, self.cloud_cover)
        except SourceDataError as exc:
            logger.warning("%s: fetch failed, marking as no data: %s", day, exc.message)
            return NoDataStep(unit.timestamp, 0, reason=f"fetch failed: {exc.message}")

        if not images:
            logger.debug("%s: no source imagery", day)
            return NoDataStep(unit.timestamp, 0)

        # Lazy sources read their pixels here
        try:
            composite = median_composite([self._masked(img) for img in images]).compute()
        except FeatureMismatchError as exc:
            raise _dated(exc, day) from exc
        except READ_ERRORS as exc:
            detail = exc.message if isinstance(exc, SourceDataError) else f"{type(exc).__name__}: {exc}"
            logger.warning("%s: pixel read failed, marking as no data: %s", day, detail)
            return NoDataStep(unit.timestamp, 0, reason=f"read failed: {detail}")

        try:
            stack = build_feature_stack(composite, self.terrain)
            field = self.model.predict(stack, band_name=self.band_name, context=day)
        except FeatureMismatchError as exc:
            if exc.context == day:
                raise
            raise _dated(exc, day) from exc

        logger.debug("%s: predicted from %d image(s)", day, len(images))
        return ValidStep(unit.timestamp, field, len(images))

    def _masked(self, image: SourceImage) -> RasterField:
        return self.terrain.field.on_grid(
            self.mask_fn(image.data), label=f"image {image.item_id or image.timestamp}"
        )

    # ------------------------------------------------------------------
    # Many units
    # ------------------------------------------------------------------

    def run(self, units: Iterable[TimeUnit], max_workers: int = 1) -> list[TimeStep]:
        """Evaluate every unit; returns steps in completion order.

        With ``max_workers > 1`` units run concurrently on a thread pool.
        A structural error in any unit aborts the run.
        """
        units = list(units)
        Validators.assert_positive_int(max_workers, "max_workers")
        logger.info("Running inference for %d unit(s) with %d worker(s)", len(units), max_workers)

        if max_workers == 1 or len(units) <= 1:
            steps = [self.predict_unit(u) for u in units]
        else:
            steps = []
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                futures = {pool.submit(self.predict_unit, u): u for u in units}
                for future in as_completed(futures):
                    steps.append(future.result())

        n_valid = sum(s.is_valid for s in steps)
        logger.info("Inference done: %d valid, %d no-data", n_valid, len(steps) - n_valid)
        return steps
