"""
Surface emissivity from NDVI, with water and snow overrides from the QA band.
"""
import logging
from enum import Enum

from .config import EMIS_SNOW, EMIS_SOIL, EMIS_VEG, EMIS_WATER, NDVI_SOIL, NDVI_VEG
from .cloud_detection import scene_flags
from .errors import InvalidEmissivityMethodError
from .raster import RasterExpr
from .scenes import Scene


class EmissivityMethod(Enum):
    ASTER = "aster"
    NDVI = "ndvi"

    @classmethod
    def parse(cls, value) -> "EmissivityMethod":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidEmissivityMethodError(value) from None

    @property
    def tag(self) -> str:
        """Single-letter tag used in output file names."""
        return "A" if self is EmissivityMethod.ASTER else "N"


def ndvi_emissivity(ndvi: RasterExpr) -> RasterExpr:
    """
    Piecewise NDVI emissivity: soil below NDVI_SOIL, vegetation above NDVI_VEG,
    and a linear mix in between.
    """
    mixed = ndvi.subtract(NDVI_SOIL).divide(NDVI_VEG - NDVI_SOIL).multiply(EMIS_VEG - EMIS_SOIL).add(EMIS_SOIL)
    return (mixed
            .where(ndvi.lt(NDVI_SOIL), EMIS_SOIL)
            .where(ndvi.gt(NDVI_VEG), EMIS_VEG))


def add_ndvi_emissivity(scene: Scene) -> Scene:
    """Add band EM. Requires NDVI; water then snow pixels are overridden (snow wins)."""
    em = ndvi_emissivity(scene.band("NDVI"))
    flags = scene_flags(scene)
    if flags is None:
        logging.debug(f"Scene {scene.image_id} has no quality band, emissivity overrides skipped")
    else:
        em = em.where(flags.is_water, EMIS_WATER).where(flags.is_snow, EMIS_SNOW)
    return scene.add_bands(EM=em)
