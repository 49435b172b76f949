import csv
from datetime import datetime, timezone

import numpy as np
import pytest
import rasterio
from shapely.geometry import box

from landsat_lst.compositor import TemporalCompositor
from landsat_lst.errors import InvalidEmissivityMethodError
from landsat_lst.export import (
    LocalExporter,
    PeriodProduct,
    buffer_region,
    compose_filename,
    path_row_summary,
    region_label,
    scene_records,
    to_local_time,
)
from landsat_lst.histogram import DistributionSummarizer
from landsat_lst.scenes import SceneCollection

from conftest import lst_scene, make_engine


def test_compose_filename():
    name = compose_filename("city_Beijing", "2020-01-01", "2020-02-01", 0, 20, "mean", "ndvi")
    assert name == "city_Beijing_20200101_20200201_cloud_0_20_LST_mean_N"


def test_compose_filename_aster_tag_and_fractional_cloud():
    name = compose_filename("aoi", "2021-07-01", "2021-08-01", 0, 12.5, "score_first", "aster")
    assert name == "aoi_20210701_20210801_cloud_0_12.5_LST_score_first_A"


def test_compose_filename_rejects_unknown_method():
    with pytest.raises(InvalidEmissivityMethodError):
        compose_filename("aoi", "2021-07-01", "2021-08-01", 0, 20, "mean", "x")


def test_region_label():
    assert region_label(name="Beijing", level="city") == "city_Beijing"
    assert region_label(name="Beijing", level="city", custom_name="BJ") == "city_BJ"
    assert region_label(custom_name="my_area") == "my_area"
    assert region_label() == "region"


def test_local_time_offset():
    local = to_local_time(datetime(2020, 1, 15, 20, 30, tzinfo=timezone.utc))
    assert local.strftime("%Y-%m-%d %H:%M") == "2020-01-16 04:30"


def test_path_row_summary():
    engine = make_engine(1, 1)
    col = SceneCollection([lst_scene(engine, "a", 20.0), lst_scene(engine, "b", 20.0, sensor_id="L7")])
    assert path_row_summary(col) == "L7: 123/032\nL8: 123/032"


def test_buffer_region_grows_geometry():
    region = box(116.3, 39.9, 116.4, 40.0)
    buffered = buffer_region(region, 5000)
    assert buffered.contains(region)
    # Roughly 5 km (~0.045 degrees of latitude) on each side
    assert buffered.bounds[1] == pytest.approx(39.9 - 0.045, abs=0.005)


def _composite(engine):
    col = SceneCollection([lst_scene(engine, "a", 20.0, qa=0, day=1), lst_scene(engine, "b", 22.0, qa=0, day=2)])
    return TemporalCompositor(engine).compose(col, "score_first")


def test_scene_records():
    engine = make_engine(2, 2)
    records = scene_records(_composite(engine))
    assert [r["image_id"] for r in records] == ["a", "b"]
    first = records[0]
    assert first["satellite"] == "L8"
    assert first["date_acquired"] == "2020-01-01"
    assert first["scene_center_time_utc"] == "03:00:00"
    assert first["local_time"] == "2020-01-01 11:00:00"
    assert first["cloud_score"] == 100.0
    assert (first["path"], first["row"]) == (123, 32)


def test_local_exporter_writes_all_outputs(tmp_path):
    engine = make_engine(2, 2)
    composite = _composite(engine)
    bins = DistributionSummarizer(engine).histogram(composite.image)
    product = PeriodProduct("aoi_20200101_20200201_cloud_0_20_LST_score_first_N", "2020-01-01", "2020-02-01",
                            composite, bins, scene_records(composite))
    outputs = LocalExporter(engine, str(tmp_path)).export(product)

    with rasterio.open(outputs["composite"]) as src:
        data = src.read(1)
        assert src.dtypes[0] == "float32"
        assert np.isnan(src.nodata)
    assert np.allclose(data, 20.0)

    with open(outputs["scenes"], newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [r["image_id"] for r in rows] == ["a", "b"]

    with open(outputs["histogram"], newline="", encoding="utf-8") as f:
        hist = list(csv.DictReader(f))
    assert len(hist) == 45
    assert sum(int(r["count"]) for r in hist) == 4

    assert (tmp_path / f"{product.name}_histogram.png").exists()
    with open(tmp_path / "lst_manifest.csv", newline="") as f:
        manifest = list(csv.reader(f))
    assert manifest[0][0] == "name"
    assert manifest[1][0] == product.name
