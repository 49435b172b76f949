"""
Earth Engine scene source: Landsat Collection 2 SR scenes joined with the
matching TOA thermal bands.
"""
import logging
from datetime import datetime, timezone
from typing import List

import ee
from shapely.geometry import shape

from .config import MAX_IMAGES_PER_SENSOR
from .ee_engine import to_ee_geometry
from .raster import RasterExpr
from .scenes import Scene, SceneCollection, SceneFilter, SceneMetadata
from .sensors import SensorSpec

METADATA_PROPERTIES = [
    "LANDSAT_PRODUCT_ID",
    "SPACECRAFT_ID",
    "CLOUD_COVER",
    "WRS_PATH",
    "WRS_ROW",
    "SUN_AZIMUTH",
    "SUN_ELEVATION",
]


def landsat_collection(collection_id: str, scene_filter: SceneFilter) -> ee.ImageCollection:
    """Collection filtered by date and region."""
    col = ee.ImageCollection(collection_id).filterDate(scene_filter.start, scene_filter.end)
    geometry = to_ee_geometry(scene_filter.region)
    if geometry is not None:
        col = col.filterBounds(geometry)
    return col


def sr_collection(sensor: SensorSpec, scene_filter: SceneFilter) -> ee.ImageCollection:
    """SR collection additionally filtered by the scene-level CLOUD_COVER range."""
    return (landsat_collection(sensor.sr_collection, scene_filter)
            .filter(ee.Filter.gte("CLOUD_COVER", scene_filter.cloud_min))
            .filter(ee.Filter.lte("CLOUD_COVER", scene_filter.cloud_max))
            .sort("system:time_start"))


def _metadata_features(col: ee.ImageCollection, limit: int) -> List[dict]:
    def to_feature(img):
        props = img.toDictionary(METADATA_PROPERTIES)
        props = props.set("system_index", img.get("system:index")).set("time_start", img.get("system:time_start"))
        return ee.Feature(img.geometry(), props)

    info = ee.FeatureCollection(col.limit(limit).map(to_feature)).getInfo()
    return info.get("features", [])


def _as_int(value):
    return None if value is None else int(value)


def _as_float(value):
    return None if value is None else float(value)


class EarthEngineSceneSource:
    """Loads scenes for one sensor from Earth Engine."""

    def __init__(self, max_images: int = MAX_IMAGES_PER_SENSOR):
        self.max_images = max_images

    def load(self, sensor: SensorSpec, scene_filter: SceneFilter) -> SceneCollection:
        sr = sr_collection(sensor, scene_filter)
        features = _metadata_features(sr, self.max_images)
        logging.info(f"{sensor.sensor_id}: {len(features)} scenes between {scene_filter.start} and {scene_filter.end}")
        if len(features) >= self.max_images:
            logging.warning(f"{sensor.sensor_id}: scene list truncated at {self.max_images} images")
        return SceneCollection(self._scene(sensor, feature) for feature in features)

    def _scene(self, sensor: SensorSpec, feature: dict) -> Scene:
        props = feature.get("properties", {})
        index = props["system_index"]
        sr_image = ee.Image(f"{sensor.sr_collection}/{index}")
        toa_image = ee.Image(f"{sensor.toa_collection}/{index}")

        bands = {}
        for name in sensor.reflective_bands + (sensor.quality_band,):
            bands[name] = RasterExpr.source(sr_image.select(name), name)
        for name in sensor.thermal_bands:
            bands[name] = RasterExpr.source(toa_image.select(name), name)

        geometry = feature.get("geometry")
        metadata = SceneMetadata(
            image_id=props.get("LANDSAT_PRODUCT_ID") or index,
            sensor_id=sensor.sensor_id,
            acquired=datetime.fromtimestamp(props["time_start"] / 1000, tz=timezone.utc),
            cloud_cover=_as_float(props.get("CLOUD_COVER")),
            path=_as_int(props.get("WRS_PATH")),
            row=_as_int(props.get("WRS_ROW")),
            sun_azimuth=_as_float(props.get("SUN_AZIMUTH")),
            sun_elevation=_as_float(props.get("SUN_ELEVATION")),
            footprint=shape(geometry) if geometry else None,
            spacecraft=props.get("SPACECRAFT_ID"),
        )
        return Scene(metadata, bands)
