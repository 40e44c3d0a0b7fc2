"""
fetcher.py
==========
Query and lazy-stream imagery from Microsoft Planetary Computer via the
STAC API.  No full-scene downloads -- stackstac reads only the spatial
window covered by the region.

Collections used
----------------
sentinel-2-l2a     -- Sentinel-2 Level-2A surface reflectance (0-10000 scale)
landsat-c2-l2      -- Landsat 8/9 Collection 2 Level-2 surface temperature
cop-dem-glo-30     -- Copernicus GLO-30 Digital Elevation Model (30 m)

Every source returns one ``SourceImage`` per STAC item.  The wrapped
DataArrays are dask-backed with dims ``(band, y, x)``; bands are renamed
to the short names the masking and feature modules expect (``B04`` ->
``B4``, ``lwir11`` -> ``ST_B10`` ...).  All sources stacked with the same
bbox / EPSG / resolution share one pixel grid.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Mapping, Optional, Protocol, Sequence, Tuple

import numpy as np
import pandas as pd
import planetary_computer
import pystac_client
import stackstac
import xarray as xr
from rasterio.enums import Resampling

from shared.python.exceptions import SourceDataError

from .raster import RasterField

logger = logging.getLogger("lst_downscaler.fetcher")

PLANETARY_COMPUTER_URL = "https://planetarycomputer.microsoft.com/api/stac/v1"

BBox = Tuple[float, float, float, float]

# STAC asset key -> band name used downstream
SENTINEL2_ASSETS = {
    "B03": "B3",
    "B04": "B4",
    "B08": "B8",
    "B11": "B11",
    "B12": "B12",
    "SCL": "SCL",
}
LANDSAT_ASSETS = {
    "lwir11": "ST_B10",
    "qa_pixel": "QA_PIXEL",
}


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceImage:
    """One raw acquisition clipped to the region."""

    timestamp: datetime
    # dims (band, y, x); values in the archive's native units
    data: xr.DataArray
    item_id: str = ""


class ImagerySource(Protocol):
    """Anything that can list the raw images over a region and window.

    ``end`` is exclusive.  An empty list means "no imagery"; archive or
    network failures raise :class:`SourceDataError`.
    """

    def fetch(
        self,
        bbox: BBox,
        start: date,
        end: date,
        cloud_cover: Optional[float] = None,
    ) -> list[SourceImage]:
        ...


# ---------------------------------------------------------------------------
# Planetary Computer implementation
# ---------------------------------------------------------------------------

@dataclass
class PlanetaryComputerSource:
    """Streams one STAC collection from Planetary Computer.

    Parameters
    ----------
    collection:
        STAC collection id.
    assets:
        Mapping of STAC asset key -> output band name.
    epsg:
        Target projected CRS (normally the region's UTM zone).
    resolution:
        Target pixel size in metres.  Coarser collections are resampled
        onto this grid.
    query:
        Extra STAC ``query`` filters applied to every search.
    chunk_size:
        Dask chunk size in pixels for x and y dimensions.
    resampling:
        Resampling used when warping onto the target grid.
    """

    collection: str
    assets: Mapping[str, str]
    epsg: int
    resolution: float = 10.0
    query: Mapping[str, dict] = field(default_factory=dict)
    chunk_size: int = 1024
    resampling: Resampling = Resampling.nearest
    _catalog: Optional[pystac_client.Client] = field(default=None, init=False, repr=False)

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    @classmethod
    def sentinel2(cls, epsg: int, resolution: float = 10.0, **kwargs) -> "PlanetaryComputerSource":
        return cls("sentinel-2-l2a", SENTINEL2_ASSETS, epsg, resolution, **kwargs)

    @classmethod
    def landsat(cls, epsg: int, resolution: float = 10.0, **kwargs) -> "PlanetaryComputerSource":
        """Landsat 8/9 surface temperature, nearest-resampled onto the grid."""
        query = {"platform": {"in": ["landsat-8", "landsat-9"]}}
        return cls("landsat-c2-l2", LANDSAT_ASSETS, epsg, resolution, query=query, **kwargs)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    @property
    def catalog(self) -> pystac_client.Client:
        # Open catalog once; sign_inplace adds SAS tokens to asset hrefs
        if self._catalog is None:
            try:
                self._catalog = pystac_client.Client.open(
                    PLANETARY_COMPUTER_URL,
                    modifier=planetary_computer.sign_inplace,
                )
            except Exception as exc:
                raise SourceDataError(self.collection, f"catalog unavailable: {exc}") from exc
        return self._catalog

    def _search(self, bbox: BBox, datetime_range: Optional[str], query: Mapping[str, dict]) -> list:
        kwargs = {"collections": [self.collection], "bbox": list(bbox)}
        if datetime_range is not None:
            kwargs["datetime"] = datetime_range
        if query:
            kwargs["query"] = dict(query)
        try:
            return list(self.catalog.search(**kwargs).items())
        except SourceDataError:
            raise
        except Exception as exc:
            raise SourceDataError(self.collection, str(exc)) from exc

    def _stack(self, items: Sequence, bbox: BBox, assets: Sequence[str]) -> xr.DataArray:
        try:
            return stackstac.stack(
                items,
                assets=list(assets),
                bounds_latlon=bbox,
                epsg=self.epsg,
                resolution=self.resolution,
                dtype="float32",  # type: ignore[arg-type]
                fill_value=np.float32("nan"),  # type: ignore[arg-type]
                rescale=False,   # masking.py applies the scale factors
                resampling=self.resampling,
                xy_coords="center",
                chunksize={"x": self.chunk_size, "y": self.chunk_size},  # type: ignore[arg-type]
            )
        except Exception as exc:
            raise SourceDataError(self.collection, f"could not stack items: {exc}") from exc

    # ------------------------------------------------------------------
    # ImagerySource
    # ------------------------------------------------------------------

    def fetch(
        self,
        bbox: BBox,
        start: date,
        end: date,
        cloud_cover: Optional[float] = None,
    ) -> list[SourceImage]:
        """Return one lazy image per STAC item acquired in ``[start, end)``."""
        # STAC datetime intervals are inclusive; stop one second before *end*
        window = (
            f"{datetime.combine(start, time.min).isoformat()}Z/"
            f"{(datetime.combine(end, time.min) - timedelta(seconds=1)).isoformat()}Z"
        )
        query = dict(self.query)
        if cloud_cover is not None:
            query["eo:cloud_cover"] = {"lte": cloud_cover}

        items = self._search(bbox, window, query)
        logger.debug("%s %s: %d item(s)", self.collection, window, len(items))
        if not items:
            return []

        stack = self._stack(items, bbox, list(self.assets))
        stack = stack.assign_coords(band=[self.assets[str(b)] for b in stack["band"].values])

        images = []
        for i in range(stack.sizes["time"]):
            frame = stack.isel(time=i)
            images.append(
                SourceImage(
                    timestamp=pd.Timestamp(frame["time"].values).to_pydatetime(),
                    data=frame.reset_coords(drop=True),
                    item_id=str(frame["id"].values) if "id" in frame.coords else "",
                )
            )
        return images

    def fetch_dem(self, bbox: BBox) -> RasterField:
        """Mosaic the COP-DEM-GLO-30 tiles covering *bbox* onto the grid.

        Raises:
            SourceDataError: If no DEM tile intersects the region.
        """
        dem_source = PlanetaryComputerSource(
            "cop-dem-glo-30",
            {"data": "elevation"},
            self.epsg,
            self.resolution,
            chunk_size=self.chunk_size,
            resampling=Resampling.bilinear,
        )
        dem_source._catalog = self._catalog
        items = dem_source._search(bbox, None, {})
        if not items:
            raise SourceDataError("cop-dem-glo-30", "no DEM tiles found for the region")
        logger.info("Found %d DEM tile(s).", len(items))

        stack = dem_source._stack(items, bbox, ["data"])
        # Mosaic across tiles
        dem = stack.isel(band=0).chunk({"time": -1}).median(dim="time", skipna=True).reset_coords(drop=True)
        dem = dem.expand_dims(band=["elevation"])
        dem.attrs.update({"units": "metres", "long_name": "Elevation (m)"})
        return RasterField(data=dem, crs=f"EPSG:{self.epsg}", resolution=float(self.resolution))
