"""
Spectral index calculation (NDVI) from Collection 2 surface reflectance.
"""
from .config import REFLECTANCE_OFFSET, REFLECTANCE_SCALE
from .raster import RasterExpr
from .scenes import Scene
from .sensors import lookup


def to_reflectance(dn: RasterExpr) -> RasterExpr:
    """Scale Level-2 digital numbers to surface reflectance."""
    return dn.multiply(REFLECTANCE_SCALE).add(REFLECTANCE_OFFSET)


def normalized_difference(a: RasterExpr, b: RasterExpr) -> RasterExpr:
    """(a - b) / (a + b), invalid where a + b == 0."""
    total = a.add(b)
    return a.subtract(b).divide(total).update_mask(total.neq(0))


def ndvi(scene: Scene, sensor_id: str = None) -> RasterExpr:
    """
    NDVI from the sensor's NIR and red bands.

    OLI sensors (L8/L9) read SR_B5/SR_B4, TM and ETM+ read SR_B4/SR_B3.
    Values are not clamped: negative reflectance can push NDVI outside [-1, 1].
    """
    sensor = lookup(sensor_id or scene.sensor_id)
    nir = to_reflectance(scene.band(sensor.nir_band))
    red = to_reflectance(scene.band(sensor.red_band))
    return normalized_difference(nir, red)


def add_ndvi(scene: Scene, sensor_id: str = None) -> Scene:
    return scene.add_bands(NDVI=ndvi(scene, sensor_id))


def ndvi_in_range(values: RasterExpr) -> RasterExpr:
    """1 where NDVI lies in [-1, 1], 0 where it does not."""
    return values.in_range(-1, 1)


def sanitize_ndvi(values: RasterExpr) -> RasterExpr:
    """Invalidate NDVI pixels outside [-1, 1]."""
    return values.update_mask(ndvi_in_range(values))
