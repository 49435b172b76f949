"""
Cloud, shadow, snow and water detection from Landsat quality bitmasks.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import MissingQualityBandError
from .raster import RasterExpr
from .scenes import Scene

LEGACY = "legacy"
MODERN = "modern"


@dataclass(frozen=True)
class QualityBits:
    """Bit positions of each flag. None means the layout has no such flag."""
    cloud: int
    shadow: int
    cirrus: Optional[int] = None
    snow: Optional[int] = None
    water: Optional[int] = None


# Collection 1 BQA vs Collection 2 QA_PIXEL
QUALITY_LAYOUTS = {
    LEGACY: QualityBits(cloud=4, shadow=3),
    MODERN: QualityBits(cloud=3, shadow=4, cirrus=2, snow=5, water=7),
}

_BAND_KINDS = {
    "BQA": LEGACY,
    "QA_PIXEL": MODERN,
}


@dataclass(frozen=True)
class QualityFlags:
    is_cloud: RasterExpr
    is_shadow: RasterExpr
    is_cirrus: RasterExpr
    is_snow: RasterExpr
    is_water: RasterExpr


def quality_kind(scene: Scene) -> Optional[str]:
    """Layout of the quality band carried by ``scene``, or None if it has none."""
    name = scene.quality_band_name
    return _BAND_KINDS.get(name) if name else None


def _flag(qa: RasterExpr, bit: Optional[int]) -> RasterExpr:
    if bit is None:
        # Always false, but keeps the quality band's validity
        return qa.multiply(0)
    return qa.bit_is_set(bit)


def build_mask(quality_band: RasterExpr, kind: str) -> QualityFlags:
    """
    Decode the quality bitmask into boolean flag rasters.

    Args:
        quality_band: Integer bitmask band (QA_PIXEL or BQA)
        kind: "modern" or "legacy"

    Returns:
        QualityFlags with one 0/1 raster per flag
    """
    try:
        bits = QUALITY_LAYOUTS[kind]
    except KeyError:
        raise ValueError(f"Unknown quality layout {kind!r}") from None
    return QualityFlags(
        is_cloud=_flag(quality_band, bits.cloud),
        is_shadow=_flag(quality_band, bits.shadow),
        is_cirrus=_flag(quality_band, bits.cirrus),
        is_snow=_flag(quality_band, bits.snow),
        is_water=_flag(quality_band, bits.water),
    )


def scene_flags(scene: Scene, strict: bool = False) -> Optional[QualityFlags]:
    """Decode the scene's own quality band; None when it has none (unless strict)."""
    kind = quality_kind(scene)
    if kind is None:
        if strict:
            raise MissingQualityBandError(scene.image_id)
        return None
    return build_mask(scene.band(scene.quality_band_name), kind)


def _apply(scene: Scene, keep: RasterExpr) -> Scene:
    """Invalidate every band except the quality band where ``keep`` is zero."""
    return scene.map_bands(lambda band: band.update_mask(keep), exclude=(scene.quality_band_name,))


def toa_mask(scene: Scene, strict: bool = False) -> Scene:
    """Mask cloudy pixels (TOA products)."""
    flags = scene_flags(scene, strict)
    if flags is None:
        logging.debug(f"Scene {scene.image_id} has no quality band, TOA cloud mask skipped")
        return scene
    return _apply(scene, flags.is_cloud.logical_not())


def sr_mask(scene: Scene, strict: bool = False) -> Scene:
    """Mask cloud and cloud-shadow pixels (SR products)."""
    flags = scene_flags(scene, strict)
    if flags is None:
        logging.debug(f"Scene {scene.image_id} has no quality band, SR cloud mask skipped")
        return scene
    return _apply(scene, flags.is_cloud.logical_or(flags.is_shadow).logical_not())


def clear_sky(flags: QualityFlags) -> RasterExpr:
    """1 where the pixel is free of cloud, shadow and cirrus."""
    return flags.is_cloud.logical_or(flags.is_shadow).logical_or(flags.is_cirrus).logical_not()
