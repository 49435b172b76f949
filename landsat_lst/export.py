"""
Export of period products: composite raster, per-scene metadata table and
histogram table, written locally or as Earth Engine Drive tasks.
"""
import os
import csv
import json
import time
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

import ee
import numpy as np
import pyproj
import rasterio
from shapely.ops import transform as shapely_transform

from .compositor import Composite
from .config import (
    EE_MAX_PIXELS,
    EXPORT_BUFFER_M,
    EXPORT_POLL_INTERVAL,
    EXPORT_POLL_TIMEOUT,
    EXPORT_SCALE,
    LOCAL_TIME_OFFSET_HOURS,
    MANIFEST_CSV,
)
from .ee_engine import to_ee_geometry
from .emissivity import EmissivityMethod
from .histogram import HistogramBin, plot_histogram
from .scenes import SceneCollection, as_utc

SCENE_COLUMNS = [
    "image_id",
    "satellite",
    "cloud_cover",
    "date_acquired",
    "scene_center_time_utc",
    "local_time",
    "cloud_score",
    "path",
    "row",
    "sun_azimuth",
    "sun_elevation",
]

HISTOGRAM_COLUMNS = ["range", "lower", "upper", "count"]


# ---- naming ----

def region_label(name: Optional[str] = None, level: Optional[str] = None,
                 custom_name: Optional[str] = None) -> str:
    """
    Label used as the first part of output names.

    An administrative boundary gives "{level}_{custom_name or name}", a drawn
    region its custom name.
    """
    if level:
        return f"{level}_{custom_name or name}"
    return custom_name or name or "region"


def _compact_date(value) -> str:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y%m%d")
    raise TypeError(f"Cannot format {value!r} as a date")


def _number(value) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else str(value)


def compose_filename(label: str, start, end, cloud_min, cloud_max, statistic, method) -> str:
    """{label}_{start}_{end}_cloud_{min}_{max}_LST_{stat}_{A|N}"""
    statistic = getattr(statistic, "value", statistic)
    tag = EmissivityMethod.parse(method).tag
    return (f"{label}_{_compact_date(start)}_{_compact_date(end)}"
            f"_cloud_{_number(cloud_min)}_{_number(cloud_max)}_LST_{statistic}_{tag}")


# ---- tables ----

def to_local_time(value: datetime, offset_hours: float = LOCAL_TIME_OFFSET_HOURS) -> datetime:
    """Convert a UTC timestamp to a fixed-offset local time."""
    return as_utc(value).astimezone(timezone(timedelta(hours=offset_hours)))


def scene_records(composite: Composite, offset_hours: float = LOCAL_TIME_OFFSET_HOURS) -> List[Dict]:
    """One row per contributing scene, in reduction order."""
    records = []
    for scene in composite.scenes:
        meta = scene.metadata
        scores = composite.cloud_scores or {}
        records.append({
            "image_id": meta.image_id,
            "satellite": meta.spacecraft or meta.sensor_id,
            "cloud_cover": meta.cloud_cover,
            "date_acquired": meta.date_acquired,
            "scene_center_time_utc": meta.scene_center_time,
            "local_time": to_local_time(meta.acquired, offset_hours).strftime("%Y-%m-%d %H:%M:%S"),
            "cloud_score": scores.get(meta.image_id),
            "path": meta.path,
            "row": meta.row,
            "sun_azimuth": meta.sun_azimuth,
            "sun_elevation": meta.sun_elevation,
        })
    return records


def histogram_records(bins: List[HistogramBin]) -> List[Dict]:
    return [{"range": b.label, "lower": b.lower, "upper": b.upper, "count": b.count} for b in bins]


def path_row_summary(collection: SceneCollection) -> str:
    """Human-readable list of distinct WRS path/row pairs per sensor."""
    lines = []
    for sensor_id, pairs in sorted(collection.path_rows().items()):
        joined = ", ".join(f"{path:03d}/{row:03d}" for path, row in pairs)
        lines.append(f"{sensor_id}: {joined}")
    return "\n".join(lines)


def buffer_region(region, meters: float = EXPORT_BUFFER_M):
    """Buffer a lon/lat geometry by ``meters`` in its local UTM zone."""
    centroid = region.centroid
    zone = int((centroid.x + 180) // 6) + 1
    epsg = (32600 if centroid.y >= 0 else 32700) + zone
    to_utm = pyproj.Transformer.from_crs("EPSG:4326", f"EPSG:{epsg}", always_xy=True).transform
    to_wgs84 = pyproj.Transformer.from_crs(f"EPSG:{epsg}", "EPSG:4326", always_xy=True).transform
    return shapely_transform(to_wgs84, shapely_transform(to_utm, region).buffer(meters))


def write_csv(path: str, rows: List[Dict], columns: List[str]) -> str:
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=columns)
        w.writeheader()
        for row in rows:
            w.writerow({key: "" if row.get(key) is None else row.get(key) for key in columns})
    return path


# ---- manifest ----

def manifest_init(path: str = MANIFEST_CSV):
    """Initialize manifest CSV file with headers."""
    if not os.path.exists(path):
        with open(path, "w", newline="") as f:
            w = csv.writer(f)
            w.writerow(["name", "start", "end", "statistic", "scenes", "composite", "timestamp"])


def manifest_append(product: "PeriodProduct", composite_ref: str, path: str = MANIFEST_CSV):
    """Append entry to manifest CSV."""
    manifest_init(path)
    with open(path, "a", newline="") as f:
        w = csv.writer(f)
        w.writerow([product.name, product.start, product.end, product.composite.statistic.value,
                    json.dumps(product.composite.image_ids), composite_ref,
                    datetime.now(timezone.utc).isoformat()])


# ---- exporters ----

@dataclass
class PeriodProduct:
    """Everything exported for one processed period."""
    name: str
    start: str
    end: str
    composite: Composite
    bins: List[HistogramBin]
    records: List[Dict] = field(default_factory=list)
    region: object = None


class LocalExporter:
    """Writes GeoTIFF, CSV tables and a histogram chart under ``outdir``."""

    def __init__(self, engine, outdir: str, manifest_path: Optional[str] = None, plot: bool = True):
        self.engine = engine
        self.outdir = outdir
        self.manifest_path = manifest_path or os.path.join(outdir, MANIFEST_CSV)
        self.plot = plot
        os.makedirs(outdir, exist_ok=True)

    def write_geotiff(self, product: PeriodProduct) -> str:
        path = os.path.join(self.outdir, f"{product.name}.tif")
        values = self.engine.materialize(product.composite.image)
        data = values.astype(np.float32).filled(np.nan)
        grid = self.engine.grid
        profile = {
            "driver": "GTiff",
            "height": grid.height,
            "width": grid.width,
            "count": 1,
            "dtype": "float32",
            "transform": grid.transform,
            "nodata": np.nan,
            "compress": "LZW",
        }
        if grid.crs:
            profile["crs"] = grid.crs
        with rasterio.open(path, "w", **profile) as dst:
            dst.write(data, 1)
            dst.set_band_description(1, "LST")
        return path

    def export(self, product: PeriodProduct) -> Dict[str, str]:
        outputs = {"composite": self.write_geotiff(product)}
        outputs["scenes"] = write_csv(os.path.join(self.outdir, f"{product.name}_scenes.csv"),
                                      product.records, SCENE_COLUMNS)
        outputs["histogram"] = write_csv(os.path.join(self.outdir, f"{product.name}_histogram.csv"),
                                         histogram_records(product.bins), HISTOGRAM_COLUMNS)
        if self.plot:
            outputs["chart"] = plot_histogram(product.bins, os.path.join(self.outdir, f"{product.name}_histogram.png"),
                                              title=f"LST {product.start} to {product.end}")
        manifest_append(product, outputs["composite"], self.manifest_path)
        logging.info(f"Exported {product.name} to {self.outdir}")
        return outputs


def wait_for_task_done(task, timeout_s: int = EXPORT_POLL_TIMEOUT, poll_interval: int = EXPORT_POLL_INTERVAL):
    """Wait for Earth Engine task to complete."""
    t0 = time.time()
    last_state = None
    while True:
        status = task.status()
        state = status.get("state")
        if state != last_state:
            logging.debug("Task state: %s", state)
            last_state = state
        if state in ("COMPLETED", "FAILED", "CANCELLED"):
            if state == "FAILED":
                logging.warning("Task failed: %s", status.get("error_message", "Unknown error"))
            return status
        if time.time() - t0 > timeout_s:
            logging.warning("Task timeout after %d seconds", timeout_s)
            return {"state": "TIMEOUT"}
        time.sleep(poll_interval)


class DriveExporter:
    """Starts Earth Engine export tasks to Google Drive."""

    def __init__(self, engine, folder: str, wait: bool = False, manifest_path: str = MANIFEST_CSV,
                 scale: float = EXPORT_SCALE, buffer_m: float = EXPORT_BUFFER_M):
        self.engine = engine
        self.folder = folder
        self.wait = wait
        self.manifest_path = manifest_path
        self.scale = scale
        self.buffer_m = buffer_m

    def _table_task(self, rows: List[Dict], columns: List[str], name: str):
        features = [ee.Feature(None, {key: row.get(key) for key in columns}) for row in rows]
        return ee.batch.Export.table.toDrive(
            collection=ee.FeatureCollection(features),
            description=name,
            folder=self.folder,
            fileNamePrefix=name,
            fileFormat="CSV",
            selectors=columns,
        )

    def export(self, product: PeriodProduct) -> Dict[str, str]:
        params = {
            "image": self.engine.materialize(product.composite.image).rename("LST").toFloat(),
            "description": product.name,
            "folder": self.folder,
            "fileNamePrefix": product.name,
            "scale": self.scale,
            "maxPixels": EE_MAX_PIXELS,
        }
        if product.region is not None:
            params["region"] = to_ee_geometry(buffer_region(product.region, self.buffer_m))
        tasks = {
            "composite": ee.batch.Export.image.toDrive(**params),
            "scenes": self._table_task(product.records, SCENE_COLUMNS, f"{product.name}_scenes"),
            "histogram": self._table_task(histogram_records(product.bins), HISTOGRAM_COLUMNS,
                                          f"{product.name}_histogram"),
        }
        for key, task in tasks.items():
            task.start()
            logging.info(f"Started Drive export {key} for {product.name} (task {task.id})")
        manifest_append(product, f"drive:{self.folder}/{product.name}.tif", self.manifest_path)

        if self.wait:
            for key, task in tasks.items():
                status = wait_for_task_done(task)
                logging.info(f"Export {key} for {product.name}: {status.get('state')}")
        return {key: task.id for key, task in tasks.items()}
