"""
aoi.py
======
Resolve the region of interest into the representations the fetcher
needs: a WGS84 bounding box for STAC queries and the UTM zone whose
metric grid every raster is snapped to.

The region is given as a WGS84 bounding box
``[min_lon, min_lat, max_lon, max_lat]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import geopandas as gpd
from pyproj import CRS
from shapely.geometry import box
from shapely.ops import unary_union

from shared.python.validators import Validators

logger = logging.getLogger("lst_downscaler.aoi")


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AOIResult:
    """The resolved region in geographic and projected form."""

    # Dissolved geometry in WGS84 (EPSG:4326)
    gdf_wgs84: gpd.GeoDataFrame

    # (min_lon, min_lat, max_lon, max_lat) for STAC queries
    bbox_wgs84: Tuple[float, float, float, float]

    # UTM zone derived from the AOI centroid
    utm_crs: CRS

    label: str

    @property
    def epsg(self) -> int:
        return int(self.utm_crs.to_epsg())

    def __repr__(self) -> str:  # noqa: D105
        b = self.bbox_wgs84
        return (
            f"<AOIResult '{self.label}' "
            f"bbox=({b[0]:.4f},{b[1]:.4f},{b[2]:.4f},{b[3]:.4f}) EPSG:{self.epsg}>"
        )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def utm_crs_from_lonlat(lon: float, lat: float) -> CRS:
    """Return the EPSG UTM CRS that covers *lon*, *lat*."""
    zone = min(int((lon + 180) / 6) + 1, 60)
    base = 32600 if lat >= 0 else 32700
    return CRS.from_epsg(base + zone)


def _build_result(gdf: gpd.GeoDataFrame, label: str) -> AOIResult:
    """Dissolve a WGS84 GeoDataFrame and package it as an AOIResult."""
    dissolved = gpd.GeoDataFrame(
        geometry=[unary_union(gdf.geometry)], crs="EPSG:4326"
    )
    minx, miny, maxx, maxy = (float(v) for v in dissolved.total_bounds)
    utm = utm_crs_from_lonlat((minx + maxx) / 2.0, (miny + maxy) / 2.0)

    result = AOIResult(
        gdf_wgs84=dissolved,
        bbox_wgs84=(minx, miny, maxx, maxy),
        utm_crs=utm,
        label=label,
    )
    logger.debug("Resolved AOI %r", result)
    return result


# ---------------------------------------------------------------------------
# Public builder
# ---------------------------------------------------------------------------

class AOIBuilder:
    """Resolves the analysis region."""

    @staticmethod
    def from_bbox(
        min_lon: float,
        min_lat: float,
        max_lon: float,
        max_lat: float,
    ) -> AOIResult:
        """Define the AOI from a WGS84 bounding box."""
        Validators.assert_bbox_valid((min_lon, min_lat, max_lon, max_lat))
        gdf = gpd.GeoDataFrame(
            geometry=[box(min_lon, min_lat, max_lon, max_lat)], crs="EPSG:4326"
        )
        label = f"bbox({min_lon:.3f},{min_lat:.3f},{max_lon:.3f},{max_lat:.3f})"
        return _build_result(gdf, label=label)
