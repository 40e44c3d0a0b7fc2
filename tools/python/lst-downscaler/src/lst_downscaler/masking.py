"""
masking.py
==========
Per-image cloud masks.  Each function is a pure filter from one raw
``(band, y, x)`` acquisition to a masked, physically scaled image with
clouded pixels set to NaN.

Sentinel-2 L2A
--------------
Scene Classification (SCL) classes kept as clear::

    4 vegetation   5 bare soil   6 water   7 unclassified   11 snow/ice

When an image carries no ``SCL`` band the legacy ``QA60`` bitmask is
used instead (bit 10 opaque clouds, bit 11 cirrus).  Reflectance is
divided by 10000.

Landsat Collection 2 Level-2
----------------------------
``QA_PIXEL`` bits 1-4 (dilated cloud, cirrus, cloud, cloud shadow) must
all be clear.  Surface temperature is rescaled to degrees Celsius::

    LST = ST_B10 * 0.00341802 + 149.0 - 273.15
"""

from __future__ import annotations

import xarray as xr

from shared.python.exceptions import FeatureMismatchError

from .features import REFLECTANCE_BANDS

SCL_CLEAR_CLASSES = (4, 5, 6, 7, 11)
QA60_CLOUD_BITS = (1 << 10) | (1 << 11)
S2_REFLECTANCE_SCALE = 10000.0

LANDSAT_QA_CLOUD_BITS = (1 << 1) | (1 << 2) | (1 << 3) | (1 << 4)
ST_SCALE = 0.00341802
ST_OFFSET = 149.0
KELVIN_OFFSET = 273.15


def _require(image: xr.DataArray, bands, context: str) -> None:
    available = [str(b) for b in image["band"].values]
    missing = [b for b in bands if b not in available]
    if missing:
        raise FeatureMismatchError(missing, available, context=context)


def _bits_clear(qa: xr.DataArray, bits: int) -> xr.DataArray:
    """True where *qa* is present and none of *bits* are set."""
    as_int = qa.fillna(0).astype("int64")
    return qa.notnull() & ((as_int & bits) == 0)


def mask_sentinel2(image: xr.DataArray) -> xr.DataArray:
    """Cloud-mask and scale a Sentinel-2 L2A image.

    Returns only ``REFLECTANCE_BANDS`` as 0-1 reflectance; the mask band
    is dropped.
    """
    _require(image, REFLECTANCE_BANDS, "Sentinel-2 image")
    bands = [str(b) for b in image["band"].values]

    if "SCL" in bands:
        scl = image.sel(band="SCL", drop=True)
        clear = scl.isin(list(SCL_CLEAR_CLASSES))
    elif "QA60" in bands:
        clear = _bits_clear(image.sel(band="QA60", drop=True), QA60_CLOUD_BITS)
    else:
        raise FeatureMismatchError(["SCL"], bands, context="Sentinel-2 cloud mask")

    refl = image.sel(band=list(REFLECTANCE_BANDS)) / S2_REFLECTANCE_SCALE
    return refl.where(clear)


def mask_landsat_lst(image: xr.DataArray) -> xr.DataArray:
    """Cloud-mask a Landsat L2 image and convert ST_B10 to an ``LST`` band (degC)."""
    _require(image, ("ST_B10", "QA_PIXEL"), "Landsat image")
    clear = _bits_clear(image.sel(band="QA_PIXEL", drop=True), LANDSAT_QA_CLOUD_BITS)
    lst = image.sel(band="ST_B10", drop=True) * ST_SCALE + ST_OFFSET - KELVIN_OFFSET
    return lst.where(clear).expand_dims(band=["LST"])
