"""
Clear-sky scoring of scenes over the area of interest.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

from .cloud_detection import clear_sky, scene_flags
from .config import CLOUD_SCORE_SCALE, DEFAULT_CLOUD_SCORE
from .raster import RasterEngine
from .scenes import SceneCollection


def score_from_fraction(clear_fraction: Optional[float]) -> float:
    """Percentage of clear pixels rounded half-up to 2 decimals; default when unknown."""
    if clear_fraction is None:
        return DEFAULT_CLOUD_SCORE
    score = Decimal(repr(float(clear_fraction) * 100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(score)


def score_collection(engine: RasterEngine, collection: SceneCollection, region=None,
                     scale: float = CLOUD_SCORE_SCALE) -> Dict[str, float]:
    """Cloud score per image id, reduced in one batched request."""
    exprs = {}
    scores = {}
    for scene in collection:
        flags = scene_flags(scene)
        if flags is None:
            logging.debug(f"Scene {scene.image_id} has no quality band, using default cloud score")
            scores[scene.image_id] = DEFAULT_CLOUD_SCORE
        else:
            exprs[scene.image_id] = clear_sky(flags)
    if exprs:
        fractions = engine.reduce_regions(exprs, "mean", region=region, scale=scale)
        for image_id, fraction in fractions.items():
            scores[image_id] = score_from_fraction(fraction)
    return scores
