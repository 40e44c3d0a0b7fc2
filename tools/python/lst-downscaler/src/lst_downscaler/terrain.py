"""
terrain.py
==========
Static terrain predictors derived once per region from a DEM and reused
for the training stack and for every daily inference stack.

  elevation  -- metres, as delivered by the DEM source
  slope      -- degrees, from central-difference gradients
  TPI        -- topographic position index: elevation minus the mean
                elevation of a circular neighbourhood
  stratum    -- elevation class used by the stratified sampler
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import xarray as xr
from scipy.ndimage import convolve

from .raster import RasterField

logger = logging.getLogger("lst_downscaler.terrain")

TERRAIN_BANDS = ("elevation", "TPI", "slope")
STRATUM_BAND = "stratum"


def slope_degrees(elevation: np.ndarray, resolution: float) -> np.ndarray:
    """Terrain slope in degrees using ``np.gradient`` on the pixel grid."""
    dy, dx = np.gradient(np.asarray(elevation, dtype=np.float64), resolution, resolution)
    return np.degrees(np.arctan(np.sqrt(dx ** 2 + dy ** 2)))


def focal_mean(values: np.ndarray, radius: int) -> np.ndarray:
    """NaN-aware mean over a circular window of *radius* pixels.

    Edges are handled by renormalising with the kernel weight that falls
    on valid pixels, so border pixels average only what exists.
    """
    yy, xx = np.mgrid[-radius:radius + 1, -radius:radius + 1]
    kernel = (xx ** 2 + yy ** 2 <= radius ** 2).astype(np.float64)

    valid = np.isfinite(values)
    filled = np.where(valid, values, 0.0)
    total = convolve(filled, kernel, mode="constant", cval=0.0)
    weight = convolve(valid.astype(np.float64), kernel, mode="constant", cval=0.0)
    return np.where((weight > 0) & valid, total / np.where(weight > 0, weight, 1.0), np.nan)


def elevation_classes(elevation: np.ndarray, breaks: Sequence[float]) -> np.ndarray:
    """Assign each pixel an integer class from ascending *breaks*.

    With breaks ``[0, 10, 50, 100, 500, 1000]`` the classes are
    ``<0 → 1``, ``[0, 10) → 2`` … ``>=1000 → 7``.  Missing elevation → 0.
    """
    elevation = np.asarray(elevation, dtype=np.float64)
    classes = np.digitize(elevation, np.asarray(breaks, dtype=np.float64)) + 1
    classes = np.where(np.isfinite(elevation), classes, 0)
    return classes.astype(np.int16)


@dataclass(frozen=True)
class TerrainLayers:
    """Elevation-derived predictor bands on the analysis grid.

    Attributes:
        field: RasterField with bands ``elevation``, ``TPI``, ``slope``.
    """

    field: RasterField

    @classmethod
    def from_elevation(cls, elevation: RasterField, tpi_radius: int = 5) -> "TerrainLayers":
        """Derive slope and TPI from a single-band elevation field."""
        band = elevation.band_names[0]
        dem = elevation.band(band).astype(np.float64)

        slope = slope_degrees(dem, elevation.resolution)
        tpi = dem - focal_mean(dem, tpi_radius)
        slope = np.where(np.isfinite(dem), slope, np.nan)

        logger.info(
            "Terrain derived: elevation %.1f..%.1f m, mean slope %.2f°",
            float(np.nanmin(dem)) if np.isfinite(dem).any() else float("nan"),
            float(np.nanmax(dem)) if np.isfinite(dem).any() else float("nan"),
            float(np.nanmean(slope)) if np.isfinite(slope).any() else float("nan"),
        )

        data = xr.DataArray(
            np.stack([dem, tpi, slope], axis=0),
            dims=("band", "y", "x"),
            coords={
                "band": list(TERRAIN_BANDS),
                "y": elevation.data["y"].values,
                "x": elevation.data["x"].values,
            },
        )
        data.values.flags.writeable = False
        return cls(field=elevation.like(data))

    def strata(self, breaks: Sequence[float]) -> RasterField:
        """Elevation classes as a single-band ``stratum`` field."""
        classes = elevation_classes(self.field.band("elevation"), breaks)
        data = xr.DataArray(
            classes[np.newaxis, :, :],
            dims=("band", "y", "x"),
            coords={
                "band": [STRATUM_BAND],
                "y": self.field.data["y"].values,
                "x": self.field.data["x"].values,
            },
        )
        return self.field.like(data)
