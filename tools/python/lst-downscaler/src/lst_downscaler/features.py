"""
features.py
===========
Feature Stack Builder.

``build_feature_stack`` is the ONE routine that turns a reflectance
composite plus terrain layers into model predictors.  The training
composite and every daily composite go through it, so the band set the
model sees at inference time is identical to the one it was fitted on.

Output bands, in order::

    B3 B4 B8 B11 B12          Sentinel-2 surface reflectance (0-1)
    NDMI   = ND(B8, B11)      moisture
    NBR    = ND(B8, B12)      burn ratio / dryness
    MNDWI2 = ND(B3, B12)      water
    elevation TPI slope       terrain

where ``ND(a, b) = (a - b) / (a + b)``.
"""

from __future__ import annotations

import logging
from typing import Sequence, Union

import numpy as np
import xarray as xr

from shared.python.exceptions import FeatureMismatchError, InputValidationError
from shared.python.validators import Validators

from .raster import RasterField
from .terrain import TERRAIN_BANDS, TerrainLayers

logger = logging.getLogger("lst_downscaler.features")

REFLECTANCE_BANDS = ("B3", "B4", "B8", "B11", "B12")

# index name -> (a, b) of ND(a, b)
INDEX_DEFINITIONS = {
    "NDMI": ("B8", "B11"),
    "NBR": ("B8", "B12"),
    "MNDWI2": ("B3", "B12"),
}

FEATURE_BANDS = REFLECTANCE_BANDS + tuple(INDEX_DEFINITIONS) + TERRAIN_BANDS

ArrayLike = Union[np.ndarray, xr.DataArray]


def normalized_difference(a: ArrayLike, b: ArrayLike) -> ArrayLike:
    """``(a - b) / (a + b)``; NaN where the sum is zero or an input is NaN.

    Works lazily on dask-backed DataArrays and eagerly on numpy arrays.
    """
    if isinstance(a, xr.DataArray) or isinstance(b, xr.DataArray):
        total = a + b
        return (a - b) / total.where(total != 0)

    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    total = a + b
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(total != 0, (a - b) / total, np.nan)


def _time_stack(images: Sequence[RasterField]) -> xr.DataArray:
    if not images:
        raise InputValidationError("Cannot composite an empty image sequence.")
    first = images[0]
    for img in images[1:]:
        if img.band_names != first.band_names:
            raise InputValidationError(
                f"Composite inputs disagree on bands: {first.band_names} vs {img.band_names}"
            )
        Validators.assert_raster_shapes_match(first.shape, img.shape, "first image", "image")

    stacked = xr.concat(
        [img.data.assign_coords(y=first.data["y"], x=first.data["x"]) for img in images],
        dim="time",
        coords="minimal",
        compat="override",
    )
    if stacked.chunks is not None:
        stacked = stacked.chunk({"time": -1})
    return stacked


def median_composite(images: Sequence[RasterField]) -> RasterField:
    """Per-pixel NaN-skipping median across co-registered images.

    Raises:
        InputValidationError: If *images* is empty or band sets differ.
    """
    stacked = _time_stack(images)
    return images[0].like(stacked.median(dim="time", skipna=True))


def mean_composite(images: Sequence[RasterField]) -> RasterField:
    """Per-pixel NaN-skipping mean; used for the coarse temperature label."""
    stacked = _time_stack(images)
    return images[0].like(stacked.mean(dim="time", skipna=True))


def build_feature_stack(reflectance: RasterField, terrain: TerrainLayers) -> RasterField:
    """Assemble the predictor stack from a reflectance composite and terrain.

    Args:
        reflectance: Cloud-masked, 0-1 scaled composite holding at least
            ``REFLECTANCE_BANDS``.
        terrain: Static terrain layers on the same grid.

    Returns:
        RasterField whose bands are exactly ``FEATURE_BANDS``.

    Raises:
        FeatureMismatchError: If a reflectance band is missing.
        InputValidationError: If the terrain grid does not match.
    """
    missing = [b for b in REFLECTANCE_BANDS if b not in reflectance.band_names]
    if missing:
        raise FeatureMismatchError(missing, reflectance.band_names, context="reflectance composite")
    Validators.assert_raster_shapes_match(
        reflectance.shape, terrain.field.shape, "reflectance composite", "terrain"
    )

    refl = reflectance.data.sel(band=list(REFLECTANCE_BANDS)).astype("float64")
    bands = [refl]
    for name, (a, b) in INDEX_DEFINITIONS.items():
        nd = normalized_difference(refl.sel(band=a, drop=True), refl.sel(band=b, drop=True))
        bands.append(nd.expand_dims(band=[name]))

    topo = terrain.field.data.sel(band=list(TERRAIN_BANDS)).assign_coords(
        y=refl["y"], x=refl["x"]
    )
    bands.append(topo)

    stack = xr.concat(bands, dim="band", coords="minimal", compat="override")
    stack = stack.transpose("band", "y", "x")
    logger.debug("Feature stack built with %d bands on %s grid", stack.sizes["band"], reflectance.shape)
    return reflectance.like(stack)
