from datetime import datetime, timezone

import numpy as np
import pytest
import rasterio
from rasterio.transform import Affine

from landsat_lst.local_engine import LocalEngine, LocalGrid
from landsat_lst.scenes import Scene, SceneMetadata

# 900 m pixels, so the default analysis scales need no coarsening
PIXEL = 900.0
# Native Landsat resolution; 30 x 30 pixels make one 900 m analysis cell
LANDSAT_PIXEL = 30.0


def make_grid(height, width, pixel=PIXEL):
    return LocalGrid(Affine(pixel, 0, 0, 0, -pixel, height * pixel), width, height, "EPSG:32650")


@pytest.fixture
def engine():
    return LocalEngine(make_grid(2, 2))


def make_engine(height, width, pixel=PIXEL):
    return LocalEngine(make_grid(height, width, pixel))


def utm_grid(height, width, pixel=LANDSAT_PIXEL, west=440000.0, north=4420000.0):
    """Grid in UTM zone 50N whose top-left corner lies near Beijing (116.3E, 39.9N)."""
    return LocalGrid(Affine(pixel, 0, west, 0, -pixel, north), width, height, "EPSG:32650")


def write_geotiff(path, values, grid, nodata=None):
    with rasterio.open(path, "w", driver="GTiff", height=grid.height, width=grid.width, count=1,
                       dtype="float32", crs=grid.crs, transform=grid.transform, nodata=nodata) as dst:
        dst.write(np.asarray(values, dtype="float32"), 1)
    return str(path)


def full(engine, value):
    return np.full(engine.grid.shape, value, dtype=float)


def metadata(image_id, sensor_id="L8", day=15, month=1, cloud_cover=10.0, path=123, row=32, hour=3):
    return SceneMetadata(
        image_id=image_id,
        sensor_id=sensor_id,
        acquired=datetime(2020, month, day, hour, 0, 0, tzinfo=timezone.utc),
        cloud_cover=cloud_cover,
        path=path,
        row=row,
        sun_azimuth=150.0,
        sun_elevation=35.0,
    )


def lst_scene(engine, image_id, celsius, qa=None, day=15, sensor_id="L8"):
    """Scene carrying an LST band in Kelvin (from Celsius values) and an optional QA_PIXEL band."""
    values = np.ma.asarray(celsius, dtype=float)
    if values.ndim == 0:
        values = full(engine, float(values))
    bands = {"LST": engine.band(values + 273.15, "LST")}
    if qa is not None:
        qa_values = np.ma.asarray(qa, dtype=float)
        if qa_values.ndim == 0:
            qa_values = full(engine, float(qa_values))
        bands["QA_PIXEL"] = engine.band(qa_values, "QA_PIXEL")
    return Scene(metadata(image_id, sensor_id=sensor_id, day=day), bands)


def raw_l8_scene(engine, image_id, nir=20000, red=10000, thermal=300.0, qa=0, day=15, cloud_cover=10.0):
    """Raw (unharmonized) L8 scene with the bands the harmonizer reads."""
    def band(value, name):
        arr = np.ma.asarray(value, dtype=float)
        if arr.ndim == 0:
            arr = full(engine, float(arr))
        return engine.band(arr, name)

    bands = {
        "SR_B4": band(red, "SR_B4"),
        "SR_B5": band(nir, "SR_B5"),
        "B10": band(thermal, "B10"),
        "QA_PIXEL": band(qa, "QA_PIXEL"),
    }
    return Scene(metadata(image_id, day=day, cloud_cover=cloud_cover), bands)
