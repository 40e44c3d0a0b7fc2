"""
raster.py
=========
Immutable multi-band raster container shared by every pipeline stage.

A ``RasterField`` wraps an ``xarray.DataArray`` with dims
``(band, y, x)``.  The array may be dask-backed (lazy) straight out of
the fetcher; nothing is evaluated until :meth:`RasterField.compute` or a
pixel read asks for concrete values.  ``x``/``y`` coordinates are pixel
centres in the field's projected CRS.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

import numpy as np
import xarray as xr
from rasterio.transform import Affine, from_origin

from shared.python.exceptions import FeatureMismatchError, InputValidationError
from shared.python.validators import Validators


@dataclass(frozen=True)
class RasterField:
    """A named-band raster over a fixed grid.

    Attributes:
        data: DataArray with dims ``(band, y, x)`` and a ``band`` coordinate
            holding the band names.
        crs: CRS string understood by rasterio / pyproj (e.g. ``"EPSG:32636"``).
        resolution: Pixel size in CRS units (metres for UTM).
    """

    data: xr.DataArray
    crs: str
    resolution: float

    def __post_init__(self) -> None:
        if tuple(self.data.dims) != ("band", "y", "x"):
            raise InputValidationError(
                f"RasterField expects dims ('band', 'y', 'x'), got {tuple(self.data.dims)}."
            )
        names = self.band_names
        if len(set(names)) != len(names):
            raise InputValidationError(f"Duplicate band names in raster: {names}")

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_arrays(
        cls,
        bands: Mapping[str, np.ndarray],
        *,
        crs: str = "EPSG:32636",
        resolution: float = 10.0,
        origin: tuple[float, float] = (500_000.0, 3_300_000.0),
    ) -> "RasterField":
        """Build a field from 2-D numpy arrays keyed by band name.

        Args:
            bands: Ordered mapping of band name → 2-D array.  All arrays
                must share one shape.
            crs: CRS of the grid.
            resolution: Pixel size.
            origin: ``(west, north)`` edge of the top-left pixel.
        """
        if not bands:
            raise InputValidationError("At least one band is required.")
        arrays = [np.asarray(a, dtype=np.float64) for a in bands.values()]
        first = arrays[0].shape
        for name, arr in zip(bands, arrays):
            if arr.ndim != 2:
                raise InputValidationError(f"Band '{name}' must be 2-D, got shape {arr.shape}.")
            Validators.assert_raster_shapes_match(first, arr.shape, "first band", name)

        height, width = first
        west, north = origin
        x = west + resolution * (np.arange(width) + 0.5)
        y = north - resolution * (np.arange(height) + 0.5)
        data = xr.DataArray(
            np.stack(arrays, axis=0),
            dims=("band", "y", "x"),
            coords={"band": list(bands.keys()), "y": y, "x": x},
        )
        return cls(data=data, crs=crs, resolution=float(resolution))

    def like(self, data: xr.DataArray) -> "RasterField":
        """Return a new field on this field's CRS/resolution."""
        return RasterField(data=data, crs=self.crs, resolution=self.resolution)

    def on_grid(self, data: xr.DataArray, label: str = "raster") -> "RasterField":
        """Adopt a same-shape ``(band, y, x)`` array onto this field's grid.

        The array's own x/y coordinates are replaced by this field's.

        Raises:
            InputValidationError: If the pixel grids differ in shape.
        """
        data = data.transpose("band", "y", "x")
        Validators.assert_raster_shapes_match(
            self.shape, (data.sizes["y"], data.sizes["x"]), "reference grid", label
        )
        return self.like(data.assign_coords(y=self.data["y"], x=self.data["x"]))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def band_names(self) -> list[str]:
        return [str(b) for b in self.data["band"].values]

    @property
    def shape(self) -> tuple[int, int]:
        """``(rows, cols)`` of the grid."""
        return int(self.data.sizes["y"]), int(self.data.sizes["x"])

    @property
    def is_lazy(self) -> bool:
        return self.data.chunks is not None

    @property
    def transform(self) -> Affine:
        """Affine transform of the top-left pixel corner, for GeoTIFF export."""
        x = self.data["x"].values
        y = self.data["y"].values
        half = self.resolution / 2.0
        return from_origin(float(x[0]) - half, float(y[0]) + half, self.resolution, self.resolution)

    # ------------------------------------------------------------------
    # Band access
    # ------------------------------------------------------------------

    def band(self, name: str) -> np.ndarray:
        """Materialise one band as a 2-D numpy array."""
        if name not in self.band_names:
            raise FeatureMismatchError([name], self.band_names)
        return np.asarray(self.data.sel(band=name).values)

    def band_array(self, name: str) -> xr.DataArray:
        """Return one band as a (possibly lazy) 2-D DataArray."""
        if name not in self.band_names:
            raise FeatureMismatchError([name], self.band_names)
        return self.data.sel(band=name, drop=True)

    def select(self, names: Sequence[str], context: str | None = None) -> "RasterField":
        """Return a new field holding *names* in exactly that order.

        Raises:
            FeatureMismatchError: If any requested band is absent.
        """
        available = self.band_names
        missing = [n for n in names if n not in available]
        if missing:
            raise FeatureMismatchError(missing, available, context=context)
        return self.like(self.data.sel(band=list(names)))

    def with_bands(self, other: "RasterField") -> "RasterField":
        """Concatenate *other*'s bands after this field's bands."""
        Validators.assert_raster_shapes_match(self.shape, other.shape, "raster", "appended raster")
        clash = set(self.band_names) & set(other.band_names)
        if clash:
            raise InputValidationError(f"Cannot append duplicate band(s): {sorted(clash)}")
        aligned = other.data.assign_coords(y=self.data["y"], x=self.data["x"])
        return self.like(xr.concat([self.data, aligned], dim="band"))

    def compute(self) -> "RasterField":
        """Evaluate a lazy field and return an in-memory, read-only copy."""
        if self.is_lazy:
            data = self.data.compute(scheduler="synchronous")
        else:
            data = self.data.copy(deep=True)
        data.values.flags.writeable = False
        return self.like(data)

    def __repr__(self) -> str:
        h, w = self.shape
        lazy = " lazy" if self.is_lazy else ""
        return f"<RasterField {self.band_names} {h}x{w} px @ {self.resolution:g} m {self.crs}{lazy}>"
