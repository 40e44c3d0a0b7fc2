"""
Synthetic rasters and a fake imagery source shared by the test modules.

Nothing here touches the network: raw "archive" images are plain
in-memory DataArrays in the same band layout the Planetary Computer
fetcher produces (Sentinel-2 DN + SCL, Landsat ST_B10 + QA_PIXEL).
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Dict, List, Mapping, Optional, Sequence

import dask.array as da
import numpy as np
import pandas as pd
import xarray as xr

from lst_downscaler.fetcher import SourceImage
from lst_downscaler.masking import KELVIN_OFFSET, ST_OFFSET, ST_SCALE
from lst_downscaler.raster import RasterField
from lst_downscaler.sampling import SampleSet
from shared.python.exceptions import SourceDataError

BBOX = (35.0, 31.0, 35.1, 31.1)


def field(bands: Mapping[str, np.ndarray], resolution: float = 10.0) -> RasterField:
    return RasterField.from_arrays(dict(bands), resolution=resolution)


def raw_array(bands: Mapping[str, np.ndarray]) -> xr.DataArray:
    """(band, y, x) DataArray with throw-away pixel coordinates."""
    arrays = [np.asarray(a, dtype=np.float64) for a in bands.values()]
    rows, cols = arrays[0].shape
    return xr.DataArray(
        np.stack(arrays, axis=0),
        dims=("band", "y", "x"),
        coords={"band": list(bands), "y": np.arange(rows, dtype=float), "x": np.arange(cols, dtype=float)},
    )


def s2_raw(reflectance: Mapping[str, np.ndarray], scl: Optional[np.ndarray] = None) -> xr.DataArray:
    """Sentinel-2 style image: reflectance x 10000 plus an all-clear SCL band."""
    shape = np.asarray(next(iter(reflectance.values()))).shape
    bands = {name: np.asarray(v) * 10000.0 for name, v in reflectance.items()}
    bands["SCL"] = np.full(shape, 4.0) if scl is None else scl
    return raw_array(bands)


def landsat_raw(lst_celsius: np.ndarray, qa: Optional[np.ndarray] = None) -> xr.DataArray:
    """Landsat style image whose ST_B10 decodes back to *lst_celsius*."""
    dn = (np.asarray(lst_celsius, dtype=np.float64) + KELVIN_OFFSET - ST_OFFSET) / ST_SCALE
    qa = np.zeros(dn.shape) if qa is None else qa
    return raw_array({"ST_B10": dn, "QA_PIXEL": qa})


def unreadable(raw: xr.DataArray, error: Exception) -> xr.DataArray:
    """Lazy copy of *raw* whose pixels raise *error* when computed.

    Mimics a remote asset that searched fine but fails at read time.
    """

    def fail(block):
        raise error

    lazy = da.from_array(raw.values, chunks=-1).map_blocks(fail, dtype=raw.dtype)
    return raw.copy(data=lazy)


class FakeSource:
    """In-memory ``ImagerySource``.

    ``images`` maps a day to the raw arrays acquired that day; days in
    ``failing`` raise :class:`SourceDataError`.
    """

    def __init__(
        self,
        images: Dict[date, List[xr.DataArray]],
        failing: Sequence[date] = (),
        collection: str = "fake",
    ) -> None:
        self.images = images
        self.failing = set(failing)
        self.collection = collection
        self.calls: list[tuple[date, date]] = []
        self.cloud_covers: list[Optional[float]] = []

    def fetch(self, bbox, start, end, cloud_cover=None):
        self.calls.append((start, end))
        self.cloud_covers.append(cloud_cover)
        for day in self.failing:
            if start <= day < end:
                raise SourceDataError(self.collection, f"timeout on {day.isoformat()}")
        out = []
        for day in sorted(self.images):
            if start <= day < end:
                for i, arr in enumerate(self.images[day]):
                    out.append(
                        SourceImage(datetime.combine(day, time(10, 0)), arr, f"{day.isoformat()}-{i}")
                    )
        return out


def correlated_scene(shape=(50, 50), seed=0):
    """Label plus three bands whose squared correlations with it are ~0.9, 0.5, 0.1.

    Returns:
        ``(label_celsius, reflectance_dict, elevation)`` as numpy arrays.
    """
    rng = np.random.default_rng(seed)
    z = rng.standard_normal(shape)

    def mix(r2):
        return np.sqrt(r2) * z + np.sqrt(1.0 - r2) * rng.standard_normal(shape)

    reflectance = {
        "B3": 0.08 + 0.005 * rng.standard_normal(shape),
        "B4": 0.20 + 0.02 * mix(0.9),
        "B8": 0.30 + 0.02 * mix(0.5),
        "B11": 0.25 + 0.02 * mix(0.1),
        "B12": 0.18 + 0.005 * rng.standard_normal(shape),
    }
    label = 30.0 + 3.0 * z
    # columns span elevation classes 2..5
    elevation = np.tile(np.linspace(1.0, 199.0, shape[1]), (shape[0], 1))
    return label, reflectance, elevation


def correlated_samples(n=1000, seed=0, r2=(0.9, 0.5, 0.1)) -> SampleSet:
    """SampleSet with features A, B, C at the requested R² and a constant D."""
    rng = np.random.default_rng(seed)
    label = rng.standard_normal(n)
    frame = pd.DataFrame(
        {
            name: np.sqrt(q) * label + np.sqrt(1.0 - q) * rng.standard_normal(n)
            for name, q in zip("ABC", r2)
        }
    )
    frame["D"] = 1.0
    frame["LST"] = label
    frame["stratum"] = 1
    frame["x"] = np.arange(n, dtype=float)
    frame["y"] = np.zeros(n)
    return SampleSet(frame, ["A", "B", "C", "D"], "LST")
