import numpy as np
import pytest
from rasterio.transform import Affine
from shapely.geometry import box

from landsat_lst.histogram import DistributionSummarizer
from landsat_lst.local_engine import LocalEngine, LocalGrid, load_local_scenes
from landsat_lst.raster import RasterExpr

from conftest import LANDSAT_PIXEL, make_engine, utm_grid, write_geotiff


def test_arithmetic_propagates_invalid_pixels():
    engine = make_engine(1, 3)
    a = engine.band(np.ma.MaskedArray([[1.0, 2.0, 3.0]], mask=[[False, True, False]]))
    result = engine.materialize(a.multiply(2).add(1))
    assert result.mask.tolist() == [[False, True, False]]
    assert result[0, 0] == 3.0
    assert result[0, 2] == 7.0


def test_division_by_zero_is_invalid():
    engine = make_engine(1, 2)
    result = engine.materialize(engine.band([[1.0, 1.0]]).divide(engine.band([[0.0, 2.0]])))
    assert result.mask.tolist() == [[True, False]]
    assert result[0, 1] == 0.5


def test_round_half_away_from_zero():
    engine = make_engine(1, 4)
    result = engine.materialize(engine.band([[2.5, -2.5, 1.4, -1.6]]).round())
    assert result.tolist() == [[3.0, -3.0, 1.0, -2.0]]


def test_bit_is_set():
    engine = make_engine(1, 3)
    result = engine.materialize(engine.band([[8.0, 16.0, 24.0]]).bit_is_set(3))
    assert result.tolist() == [[1.0, 0.0, 1.0]]


def test_where_keeps_invalid_input_invalid():
    engine = make_engine(1, 3)
    base = engine.band(np.ma.MaskedArray([[1.0, 2.0, 3.0]], mask=[[True, False, False]]))
    cond = engine.band([[1.0, 1.0, 0.0]])
    result = engine.materialize(base.where(cond, 9))
    assert result.mask.tolist() == [[True, False, False]]
    assert result[0, 1] == 9.0
    assert result[0, 2] == 3.0


def test_mask_and_unmask_have_no_invalid_pixels():
    engine = make_engine(1, 2)
    band = engine.band([[np.nan, 5.0]])
    assert engine.materialize(band.mask()).tolist() == [[0.0, 1.0]]
    unmasked = engine.materialize(band.unmask(-1))
    assert not unmasked.mask.any()
    assert unmasked.tolist() == [[-1.0, 5.0]]


def test_stack_first_takes_first_valid_layer():
    engine = make_engine(1, 3)
    first = engine.band(np.ma.MaskedArray([[1.0, 1.0, 1.0]], mask=[[False, True, True]]))
    second = engine.band(np.ma.MaskedArray([[2.0, 2.0, 2.0]], mask=[[False, False, True]]))
    result = engine.materialize(RasterExpr.reduce_stack("first", [first, second]))
    assert result.mask.tolist() == [[False, False, True]]
    assert result[0, 0] == 1.0
    assert result[0, 1] == 2.0


def test_stack_mean_ignores_invalid_layers():
    engine = make_engine(1, 2)
    a = engine.band([[10.0, 10.0]])
    b = engine.band(np.ma.MaskedArray([[20.0, 20.0]], mask=[[False, True]]))
    result = engine.materialize(RasterExpr.reduce_stack("mean", [a, b]))
    assert result.tolist() == [[15.0, 10.0]]


def test_reduce_stack_rejects_empty_series():
    with pytest.raises(ValueError):
        RasterExpr.reduce_stack("mean", [])


def test_region_reduction_uses_pixel_centres_inside_region():
    grid = LocalGrid(Affine(1, 0, 0, 0, -1, 2), 2, 2)
    engine = LocalEngine(grid)
    band = engine.band([[1.0, 2.0], [3.0, 4.0]])
    stats = engine.reduce_region(band, ("mean", "count", "max"), region=box(0, 0, 1, 2))
    assert stats == {"mean": 2.0, "count": 2.0, "max": 3.0}


def test_region_reduction_with_no_valid_pixels():
    engine = make_engine(1, 2)
    band = engine.band([[np.nan, np.nan]])
    stats = engine.reduce_region(band, ("mean", "stddev", "count", "sum"))
    assert stats == {"mean": None, "stddev": None, "count": 0.0, "sum": 0.0}


def test_population_stddev():
    engine = make_engine(1, 4)
    stats = engine.reduce_region(engine.band([[2.0, 4.0, 4.0, 6.0]]), ("mean", "stddev"))
    assert stats["mean"] == pytest.approx(4.0)
    assert stats["stddev"] == pytest.approx(np.sqrt(2.0))


def test_coarser_scale_averages_blocks():
    engine = make_engine(2, 2, pixel=30.0)
    band = engine.band([[1.0, 2.0], [3.0, np.nan]])
    stats = engine.reduce_region(band, ("mean", "count"), scale=60)
    assert stats["mean"] == pytest.approx(2.0)
    assert stats["count"] == 1.0


def test_band_shape_must_match_grid():
    engine = make_engine(2, 2)
    with pytest.raises(ValueError):
        engine.band([[1.0, 2.0, 3.0]])


def test_unknown_region_reducer():
    engine = make_engine(1, 1)
    with pytest.raises(ValueError):
        engine.reduce_regions({"a": engine.band([[1.0]])}, "median")


def test_at_scale_spreads_cell_mean_over_native_pixels():
    engine = make_engine(3, 4, pixel=LANDSAT_PIXEL)
    values = np.ma.MaskedArray([[1.0, 3.0, 5.0, 7.0],
                                [1.0, 3.0, 5.0, 7.0],
                                [9.0, 0.0, 2.0, 2.0]],
                               mask=[[False, False, True, True],
                                     [False, False, True, True],
                                     [False, True, False, False]])
    result = engine.materialize(engine.band(values).at_scale(2 * LANDSAT_PIXEL))
    assert result[:2, :2].tolist() == [[2.0, 2.0], [2.0, 2.0]]
    assert np.ma.getmaskarray(result[:2, 2:]).all()
    # Partial blocks at the grid edge average their own valid pixels
    assert result[2, :2].tolist() == [9.0, 9.0]
    assert result[2, 2:].tolist() == [2.0, 2.0]


def test_at_scale_without_scale_is_identity():
    expr = make_engine(1, 1).band([[1.0]])
    assert expr.at_scale(None) is expr


def test_project_region_to_utm_grid():
    grid = utm_grid(10, 10)
    region = grid.project_region(box(115.0, 39.0, 117.5, 41.0))
    west, south, east, north = region.bounds
    # Projected metres, not degrees
    assert west < 440000 < 440300 < east
    assert south < 4419700 < 4420000 < north
    assert grid.region_weights(region).sum() == 100


def test_lon_lat_region_selects_utm_pixels():
    engine = LocalEngine(utm_grid(10, 10))
    region = engine.grid.project_region(box(115.0, 39.0, 117.5, 41.0))
    bins = DistributionSummarizer(engine).histogram(engine.band(np.full((10, 10), 20.0)), region,
                                                    scale=LANDSAT_PIXEL)
    assert sum(b.count for b in bins) == 100


def test_project_region_same_crs_is_unchanged():
    grid = LocalGrid(Affine(0.01, 0, 116.0, 0, -0.01, 40.0), 10, 10, "EPSG:4326")
    region = box(116.0, 39.9, 116.1, 40.0)
    assert grid.project_region(region) is region
    assert grid.project_region(None) is None


def test_load_band_reads_geotiff(tmp_path):
    grid = utm_grid(2, 3)
    path = write_geotiff(tmp_path / "b.tif", [[1, 2, 3], [4, -9999, 6]], grid, nodata=-9999)
    engine = LocalEngine(grid)
    result = engine.materialize(engine.load_band(path))
    assert result.mask.tolist() == [[False, False, False], [False, True, False]]
    assert result[1, 2] == 6.0


def test_load_band_rejects_other_grid_size(tmp_path):
    path = write_geotiff(tmp_path / "b.tif", np.zeros((2, 2)), utm_grid(2, 2))
    with pytest.raises(ValueError):
        LocalEngine(utm_grid(3, 3)).load_band(path)


def test_load_local_scenes_from_geotiffs(tmp_path):
    grid = utm_grid(3, 3)
    entries = [{
        "image_id": "LE07_123032_20200110",
        "sensor_id": "L7",
        "acquired": "2020-01-10T02:45:00",
        "cloud_cover": 12.5,
        "path": 123,
        "row": 32,
        "bands": {
            "B6_VCID_1": write_geotiff(tmp_path / "thermal.tif", np.full((3, 3), 290.0), grid),
            "QA_PIXEL": write_geotiff(tmp_path / "qa.tif", np.zeros((3, 3)), grid),
        },
    }]
    engine, scenes = load_local_scenes(entries)
    assert engine.grid.shape == (3, 3)
    assert engine.grid.crs == "EPSG:32650"
    assert engine.grid.pixel_size == LANDSAT_PIXEL

    (scene,) = scenes
    assert scene.image_id == "LE07_123032_20200110"
    assert scene.sensor_id == "L7"
    assert scene.metadata.acquired.tzinfo is not None
    assert scene.metadata.date_acquired == "2020-01-10"
    assert scene.metadata.cloud_cover == 12.5
    assert scene.quality_band_name == "QA_PIXEL"
    assert np.allclose(engine.materialize(scene.band("B6_VCID_1")), 290.0)


def test_load_local_scenes_needs_entries():
    with pytest.raises(ValueError):
        load_local_scenes([])
