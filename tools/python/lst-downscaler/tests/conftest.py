"""
Shared fixtures.  All tests run offline on small synthetic grids.
"""

from datetime import date, timedelta

import numpy as np
import pytest

from lst_downscaler.terrain import TerrainLayers

import synthetic

START = date(2023, 7, 1)


@pytest.fixture
def scene():
    return synthetic.correlated_scene()


@pytest.fixture
def terrain(scene):
    _, _, elevation = scene
    return TerrainLayers.from_elevation(synthetic.field({"elevation": elevation}), tpi_radius=2)


@pytest.fixture
def five_day_sources(scene):
    """Optical images on days 1, 2, 4, 5 (none on day 3) and one thermal image."""
    label, reflectance, _ = scene
    days = [START + timedelta(days=i) for i in range(5)]
    optical = synthetic.FakeSource(
        {d: [synthetic.s2_raw(reflectance)] for i, d in enumerate(days) if i != 2},
        collection="sentinel-2-l2a",
    )
    thermal = synthetic.FakeSource({START: [synthetic.landsat_raw(label)]}, collection="landsat-c2-l2")
    return optical, thermal


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
