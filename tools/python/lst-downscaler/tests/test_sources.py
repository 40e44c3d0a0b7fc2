"""
Tests for the Planetary Computer source and the AOI builder.

The STAC catalog is a MagicMock and ``stackstac.stack`` is patched, so no
network access is needed.
"""

from datetime import date
from unittest.mock import MagicMock, patch

import numpy as np
import pandas as pd
import pytest
import xarray as xr

from lst_downscaler import fetcher
from lst_downscaler.aoi import AOIBuilder, utm_crs_from_lonlat
from lst_downscaler.fetcher import PlanetaryComputerSource
from shared.python.exceptions import InputValidationError, SourceDataError

import synthetic


def _stacked(assets, n_time=2, shape=(3, 4), value=1000.0):
    """DataArray shaped like ``stackstac.stack`` output (time, band, y, x)."""
    data = np.full((n_time, len(assets)) + shape, value, dtype="float32")
    data += np.arange(n_time, dtype="float32").reshape(n_time, 1, 1, 1)
    return xr.DataArray(
        data,
        dims=("time", "band", "y", "x"),
        coords={
            "time": pd.date_range("2023-07-01T08:00", periods=n_time, freq="h"),
            "band": list(assets),
            "y": 3300000.0 - 10.0 * np.arange(shape[0]),
            "x": 500000.0 + 10.0 * np.arange(shape[1]),
            "id": ("time", [f"item-{i}" for i in range(n_time)]),
        },
    )


def _source(factory, items):
    source = factory(32636)
    catalog = MagicMock()
    catalog.search.return_value.items.return_value = items
    source._catalog = catalog
    return source, catalog


# ---------------------------------------------------------------------------
# PlanetaryComputerSource
# ---------------------------------------------------------------------------

class TestPlanetaryComputerSource:

    def test_one_image_per_item_with_short_band_names(self):
        source, _ = _source(PlanetaryComputerSource.sentinel2, ["a", "b"])
        with patch.object(fetcher.stackstac, "stack", return_value=_stacked(fetcher.SENTINEL2_ASSETS)):
            images = source.fetch(synthetic.BBOX, date(2023, 7, 1), date(2023, 7, 2), 10.0)

        assert len(images) == 2
        assert [str(b) for b in images[0].data["band"].values] == ["B3", "B4", "B8", "B11", "B12", "SCL"]
        assert images[0].data.dims == ("band", "y", "x")
        assert images[1].item_id == "item-1"
        assert images[0].timestamp.hour == 8

    def test_search_window_and_filters(self):
        source, catalog = _source(PlanetaryComputerSource.landsat, [])
        assert source.fetch(synthetic.BBOX, date(2023, 7, 1), date(2023, 7, 3), 30.0) == []

        kwargs = catalog.search.call_args.kwargs
        assert kwargs["collections"] == ["landsat-c2-l2"]
        assert kwargs["datetime"] == "2023-07-01T00:00:00Z/2023-07-02T23:59:59Z"
        assert kwargs["query"]["eo:cloud_cover"] == {"lte": 30.0}
        assert kwargs["query"]["platform"] == {"in": ["landsat-8", "landsat-9"]}

    def test_search_failure_is_source_error(self):
        source, catalog = _source(PlanetaryComputerSource.sentinel2, [])
        catalog.search.side_effect = RuntimeError("503 Service Unavailable")
        with pytest.raises(SourceDataError) as info:
            source.fetch(synthetic.BBOX, date(2023, 7, 1), date(2023, 7, 2))
        assert "sentinel-2-l2a" in info.value.message

    def test_stack_failure_is_source_error(self):
        source, _ = _source(PlanetaryComputerSource.sentinel2, ["a"])
        with patch.object(fetcher.stackstac, "stack", side_effect=ValueError("no overlap")):
            with pytest.raises(SourceDataError):
                source.fetch(synthetic.BBOX, date(2023, 7, 1), date(2023, 7, 2))

    def test_dem_mosaic(self):
        source, _ = _source(PlanetaryComputerSource.sentinel2, ["tile-1", "tile-2", "tile-3"])
        with patch.object(fetcher.stackstac, "stack", return_value=_stacked(["data"], n_time=3, value=100.0)):
            dem = source.fetch_dem(synthetic.BBOX)

        assert dem.band_names == ["elevation"]
        assert dem.crs == "EPSG:32636"
        assert dem.resolution == 10.0
        assert np.allclose(dem.band("elevation"), 101.0)

    def test_dem_without_tiles(self):
        source, _ = _source(PlanetaryComputerSource.sentinel2, [])
        with pytest.raises(SourceDataError):
            source.fetch_dem(synthetic.BBOX)


# ---------------------------------------------------------------------------
# AOI
# ---------------------------------------------------------------------------

class TestAOIBuilder:

    def test_bbox_resolves_utm_zone(self):
        aoi = AOIBuilder.from_bbox(*synthetic.BBOX)
        assert aoi.epsg == 32636
        assert aoi.bbox_wgs84 == pytest.approx(synthetic.BBOX)

    def test_southern_hemisphere(self):
        assert utm_crs_from_lonlat(-47.9, -15.8).to_epsg() == 32723

    def test_invalid_bbox(self):
        with pytest.raises(InputValidationError):
            AOIBuilder.from_bbox(35.1, 31.0, 35.0, 31.1)
