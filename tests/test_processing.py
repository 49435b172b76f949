import csv
import os

import numpy as np
import pytest
from shapely.geometry import box

from landsat_lst.compositor import TemporalCompositor
from landsat_lst.errors import ConfigurationError
from landsat_lst.export import LocalExporter
from landsat_lst.harmonizer import InMemorySceneSource, SceneHarmonizer
from landsat_lst.histogram import DistributionSummarizer
from landsat_lst.processing import EXPORTED, SKIPPED, Pipeline, build_pipeline, process_period, process_periods
from landsat_lst.providers import ConstantTpw, EmissivityCorrectedBrightnessTemperature
from landsat_lst.settings import RegionConfig, RunContext

from conftest import make_engine, raw_l8_scene, utm_grid, write_geotiff

PERIODS = [("2020-01-01", "2020-02-01"), ("2020-02-01", "2020-03-01")]


def _pipeline(tmp_path, exporter=True):
    engine = make_engine(2, 2)
    source = InMemorySceneSource([
        raw_l8_scene(engine, "s1", day=5, thermal=300.0),
        raw_l8_scene(engine, "s2", day=20, thermal=302.0, qa=[[1 << 3, 0], [0, 0]]),
    ])
    context = RunContext(periods=PERIODS, region=RegionConfig(name="Test", level="county"), sensors=("L8",),
                         cloud_min=0, cloud_max=20, output={"type": "local", "dir": str(tmp_path)})
    harmonizer = SceneHarmonizer(source, split_window=EmissivityCorrectedBrightnessTemperature(),
                                 tpw=ConstantTpw())
    return Pipeline(
        context=context,
        harmonizer=harmonizer,
        compositor=TemporalCompositor(engine),
        summarizer=DistributionSummarizer(engine),
        exporter=LocalExporter(engine, str(tmp_path)) if exporter else None,
    )


def test_process_period_exports(tmp_path):
    outcome = process_period(_pipeline(tmp_path), *PERIODS[0])
    assert outcome.status == EXPORTED
    assert outcome.scenes == 2
    assert outcome.name == "county_Test_20200101_20200201_cloud_0_20_LST_mean_N"
    assert os.path.exists(outcome.outputs["composite"])


def test_empty_period_is_skipped(tmp_path):
    outcome = process_period(_pipeline(tmp_path), *PERIODS[1])
    assert outcome.status == SKIPPED
    assert "No images found" in outcome.message


@pytest.mark.parametrize("workers", [1, 2])
def test_process_periods_keeps_period_order(tmp_path, workers):
    outcomes = process_periods(_pipeline(tmp_path, exporter=False), workers=workers)
    assert [(o.start, o.status) for o in outcomes] == [("2020-01-01", EXPORTED), ("2020-02-01", SKIPPED)]
    # Per-run log written next to the outputs
    assert any(name.startswith("processing_") and name.endswith(".log") for name in os.listdir(tmp_path))


def test_build_pipeline_rejects_local_output_with_ee_engine(tmp_path):
    context = RunContext(periods=PERIODS, region=RegionConfig(), sensors=("L8",),
                         output={"type": "local", "dir": str(tmp_path)})
    with pytest.raises(ConfigurationError):
        build_pipeline(context)


def test_build_pipeline_local_engine_needs_scenes(tmp_path):
    context = RunContext(periods=PERIODS, region=RegionConfig(), sensors=("L8",), engine="local",
                         output={"type": "none", "dir": str(tmp_path)})
    with pytest.raises(ConfigurationError):
        build_pipeline(context)


def _local_scene_entries(directory, grid):
    directory.mkdir()
    entries = []
    for image_id, day, thermal in (("LC08_123032_20200105", "2020-01-05T03:00:00", 300.0),
                                   ("LC08_123032_20200121", "2020-01-21T03:00:00", 302.0)):
        values = {"SR_B4": 10000, "SR_B5": 20000, "B10": thermal, "QA_PIXEL": 0}
        bands = {name: write_geotiff(directory / f"{image_id}_{name}.tif", np.full(grid.shape, value), grid)
                 for name, value in values.items()}
        entries.append({"image_id": image_id, "sensor_id": "L8", "acquired": day, "cloud_cover": 5.0,
                        "path": 123, "row": 32, "bands": bands})
    return entries


def test_local_engine_run_with_lon_lat_region(tmp_path):
    # 2 x 2 analysis cells of native 30 m pixels in UTM 50N
    grid = utm_grid(60, 60)
    context = RunContext(
        periods=PERIODS,
        region=RegionConfig(geometry=box(115.0, 39.0, 117.5, 41.0), name="Beijing", level="city"),
        sensors=("L8",),
        cloud_min=0,
        cloud_max=20,
        engine="local",
        output={"type": "local", "dir": str(tmp_path / "out")},
        local={"scenes": _local_scene_entries(tmp_path / "scenes", grid)},
    )
    pipeline = build_pipeline(context)
    assert pipeline.compositor.engine.grid.crs == "EPSG:32650"
    # Region handed to the engine is in grid metres
    assert pipeline.analysis_region.contains(box(440000, 4418200, 441800, 4420000))

    outcome = process_period(pipeline, *PERIODS[0])
    assert outcome.status == EXPORTED
    assert outcome.scenes == 2
    with open(outcome.outputs["histogram"], newline="", encoding="utf-8") as f:
        counts = [int(row["count"]) for row in csv.DictReader(f)]
    assert sum(counts) == 4
