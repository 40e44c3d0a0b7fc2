"""
config.py
=========
Explicit run configuration.  Every stage receives the values it needs
from a ``DownscalingConfig`` instance; nothing is read from module-level
state.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional, Tuple

from shared.python.exceptions import InputValidationError
from shared.python.validators import Validators

from .features import FEATURE_BANDS
from .sampling import ALLOCATION_MODES

logger = logging.getLogger("lst_downscaler.config")

DEFAULT_PREDICTORS: Tuple[str, ...] = (
    "B4", "B8", "B11", "NDMI", "NBR", "MNDWI2", "elevation", "TPI", "slope",
)

# Upper edges (metres) of the elevation strata; yields 7 classes.
DEFAULT_ELEVATION_BREAKS: Tuple[float, ...] = (0.0, 10.0, 50.0, 100.0, 500.0, 1000.0)


def _as_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise InputValidationError(f"Invalid ISO date {value!r}: {exc}") from exc


@dataclass
class DownscalingConfig:
    """Parameters of one downscaling run.

    Attributes:
        bbox: WGS84 ``(min_lon, min_lat, max_lon, max_lat)`` of the region.
        start: First day of the training period and of the prediction range.
        end: Day after the last predicted day (exclusive).
        candidate_predictors: Feature bands ranked against the label.
        final_predictors: Number of top-ranked features kept for the model (K).
        num_points: Total stratified sample size.
        allocation: How points are split across strata: ``"balanced"``
            (equal shares, so rare elevation classes are represented) or
            ``"proportional"`` (by eligible area).
        train_ratio: Expected share of samples assigned to the training split.
        n_trees: Number of trees in the random forest.
        seed: Seed for sampling, splitting and model fitting.
        sample_scale: Pixel size (m) at which training samples are drawn;
            matches the native resolution of the Landsat label.
        resolution: Output pixel size (m).
        training_cloud_cover: Optional scene cloud-cover ceiling (%) for the
            training period composites.  ``None`` keeps every scene and
            relies on the per-pixel cloud masks alone.
        daily_cloud_cover: Scene cloud-cover ceiling (%) for daily inference.
        label: Name of the label band.
        output_band: Band name of every predicted field.
        elevation_breaks: Class edges for elevation stratification.
        tpi_radius: Radius (px) of the focal mean used for TPI.
        max_workers: Concurrent time units during inference.
        prune_redundant: Drop shortlisted features that duplicate an
            already-selected one.
        redundancy_threshold: |r| above which two features count as
            redundant.
    """

    bbox: Tuple[float, float, float, float]
    start: date
    end: date
    candidate_predictors: Tuple[str, ...] = DEFAULT_PREDICTORS
    final_predictors: int = 3
    num_points: int = 1000
    allocation: str = "balanced"
    train_ratio: float = 0.7
    n_trees: int = 50
    seed: int = 1
    sample_scale: float = 30.0
    resolution: float = 10.0
    training_cloud_cover: Optional[float] = None
    daily_cloud_cover: float = 10.0
    label: str = "LST"
    output_band: str = "LST"
    elevation_breaks: Tuple[float, ...] = DEFAULT_ELEVATION_BREAKS
    tpi_radius: int = 5
    max_workers: int = 1
    prune_redundant: bool = False
    redundancy_threshold: float = 0.9
    extra: dict = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.start = _as_date(self.start)
        self.end = _as_date(self.end)
        self.bbox = tuple(float(v) for v in self.bbox)  # type: ignore[assignment]
        self.candidate_predictors = tuple(self.candidate_predictors)
        self.elevation_breaks = tuple(float(b) for b in self.elevation_breaks)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check every parameter before any imagery is requested.

        Raises:
            InputValidationError: On the first invalid parameter.
        """
        Validators.assert_bbox_valid(self.bbox)
        Validators.assert_date_range(self.start, self.end)
        Validators.assert_open_unit_interval(self.train_ratio, "train_ratio")
        Validators.assert_positive_int(self.final_predictors, "final_predictors")
        Validators.assert_positive_int(self.num_points, "num_points")
        Validators.assert_positive_int(self.n_trees, "n_trees")
        Validators.assert_positive_int(self.tpi_radius, "tpi_radius")
        Validators.assert_positive_int(self.max_workers, "max_workers")

        if not self.candidate_predictors:
            raise InputValidationError("At least one candidate predictor is required.")
        unknown = [p for p in self.candidate_predictors if p not in FEATURE_BANDS]
        if unknown:
            raise InputValidationError(
                f"Unknown predictor(s) {unknown}. Available: {', '.join(FEATURE_BANDS)}"
            )
        if len(set(self.candidate_predictors)) != len(self.candidate_predictors):
            raise InputValidationError("Candidate predictors contain duplicates.")
        if self.final_predictors > len(self.candidate_predictors):
            raise InputValidationError(
                f"final_predictors={self.final_predictors} exceeds the "
                f"{len(self.candidate_predictors)} candidate predictor(s)."
            )
        if self.sample_scale < self.resolution:
            raise InputValidationError(
                f"sample_scale ({self.sample_scale} m) cannot be finer than "
                f"resolution ({self.resolution} m)."
            )
        if self.allocation not in ALLOCATION_MODES:
            raise InputValidationError(
                f"allocation must be one of {', '.join(ALLOCATION_MODES)}, got '{self.allocation}'."
            )
        for name in ("training_cloud_cover", "daily_cloud_cover"):
            value = getattr(self, name)
            if value is not None and not 0.0 <= value <= 100.0:
                raise InputValidationError(f"{name} must be within 0-100 %, got {value}.")
        if list(self.elevation_breaks) != sorted(self.elevation_breaks):
            raise InputValidationError("elevation_breaks must be increasing.")
        if not 0.0 < self.redundancy_threshold <= 1.0:
            raise InputValidationError(
                f"redundancy_threshold must be in (0, 1], got {self.redundancy_threshold}."
            )
        logger.debug("Configuration validated: %s", self.to_dict())

    # ------------------------------------------------------------------
    # (De)serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out.pop("extra", None)
        out["start"] = self.start.isoformat()
        out["end"] = self.end.isoformat()
        return out

    @classmethod
    def from_json(cls, path: Path, **overrides: Any) -> "DownscalingConfig":
        """Load a configuration file; keyword *overrides* win over file values.

        Unknown keys are kept in ``extra`` and logged rather than rejected.
        """
        path = Path(path)
        Validators.assert_file_exists(path)
        Validators.assert_supported_extension(path, [".json"])
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise InputValidationError(f"Malformed JSON in '{path}': {exc}") from exc

        raw.update({k: v for k, v in overrides.items() if v is not None})
        known = set(cls.__dataclass_fields__) - {"extra"}
        extra = {k: raw.pop(k) for k in list(raw) if k not in known}
        if extra:
            logger.warning("Ignoring unknown config key(s): %s", ", ".join(sorted(extra)))
        missing = [k for k in ("bbox", "start", "end") if k not in raw]
        if missing:
            raise InputValidationError(f"Config '{path}' is missing: {', '.join(missing)}")
        return cls(extra=extra, **raw)
