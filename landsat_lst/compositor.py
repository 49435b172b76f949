"""
Temporal compositing of LST scene series.

For one period: convert to Celsius, drop physically impossible values, reject
per-scene outliers against the region's statistics, order the series and
reduce it to a single field.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .config import (
    CLOUD_SCORE_SCALE,
    KELVIN_OFFSET,
    PHYSICAL_RANGE_C,
    QUANTIZE_DECIMALS,
    STATS_SCALE,
    Z_SCORE_THRESHOLD,
)
from .errors import DegenerateStatsError, InvalidStatisticError, NoImagesFoundError
from .quality_scoring import score_collection
from .raster import RasterEngine, RasterExpr
from .scenes import Scene, SceneCollection, as_utc


class StatisticType(Enum):
    MEAN = "mean"
    MAX = "max"
    MIN = "min"
    SCORE_FIRST = "score_first"

    @classmethod
    def parse(cls, value) -> "StatisticType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidStatisticError(value, [s.value for s in cls]) from None

    @property
    def stack_reducer(self) -> str:
        return "first" if self is StatisticType.SCORE_FIRST else self.value


@dataclass(frozen=True)
class RegionStats:
    mean: float
    stddev: float


@dataclass
class Composite:
    """The reduced LST field of one period and how it was built."""
    image: RasterExpr
    statistic: StatisticType
    scenes: Tuple[Scene, ...]
    stats: Optional[RegionStats] = None
    cloud_scores: Optional[Dict[str, float]] = None
    series: Tuple[RasterExpr, ...] = field(default=(), repr=False)

    @property
    def image_ids(self) -> List[str]:
        return [scene.image_id for scene in self.scenes]


def to_celsius(lst_kelvin: RasterExpr, decimals: int = QUANTIZE_DECIMALS) -> RasterExpr:
    return lst_kelvin.subtract(KELVIN_OFFSET).quantize(decimals)


def physical_range_filter(lst_celsius: RasterExpr, bounds=PHYSICAL_RANGE_C) -> RasterExpr:
    """Invalidate values outside the open interval ``bounds``."""
    low, high = bounds
    return lst_celsius.update_mask(lst_celsius.in_range(low, high, inclusive=False))


class TemporalCompositor:
    """
    Reduces a period's harmonized scenes to one Composite.

    Args:
        engine: RasterEngine used for region statistics and cloud scores
        region: Area of interest (shapely geometry), None for the full extent
    """

    def __init__(self, engine: RasterEngine, region=None,
                 stats_scale: float = STATS_SCALE,
                 cloud_score_scale: float = CLOUD_SCORE_SCALE,
                 z_threshold: float = Z_SCORE_THRESHOLD,
                 physical_range: Tuple[float, float] = PHYSICAL_RANGE_C,
                 decimals: int = QUANTIZE_DECIMALS):
        self.engine = engine
        self.region = region
        self.stats_scale = stats_scale
        self.cloud_score_scale = cloud_score_scale
        self.z_threshold = z_threshold
        self.physical_range = physical_range
        self.decimals = decimals

    def celsius_series(self, collection: SceneCollection) -> List[RasterExpr]:
        """Celsius LST per scene with the physical range applied."""
        return [physical_range_filter(to_celsius(scene.band("LST"), self.decimals), self.physical_range)
                for scene in collection]

    def region_stats(self, series: List[RasterExpr]) -> RegionStats:
        """Mean and standard deviation of the temporal mean composite over the region."""
        mean_composite = RasterExpr.reduce_stack("mean", series).quantize(self.decimals)
        values = self.engine.reduce_region(mean_composite, ("mean", "stddev"),
                                           region=self.region, scale=self.stats_scale)
        mean, stddev = values.get("mean"), values.get("stddev")
        logging.debug(f"Region stats: mean={mean}, stddev={stddev}")
        if mean is None or stddev is None or stddev == 0:
            raise DegenerateStatsError(f"Region statistics are degenerate (mean={mean}, stddev={stddev})")
        return RegionStats(mean, stddev)

    def reject_outliers(self, series: List[RasterExpr], stats: RegionStats) -> List[RasterExpr]:
        """Invalidate pixels whose z-score against ``stats`` exceeds the threshold."""
        filtered = []
        for lst in series:
            z = lst.subtract(stats.mean).divide(stats.stddev).abs()
            filtered.append(lst.update_mask(z.lte(self.z_threshold)).quantize(self.decimals))
        return filtered

    def order(self, collection: SceneCollection, series: List[RasterExpr],
              statistic: StatisticType) -> Tuple[List[Tuple[Scene, RasterExpr]], Optional[Dict[str, float]]]:
        """Pair scenes with their series entry and order them for the reducer."""
        pairs = list(zip(collection, series))
        if statistic is not StatisticType.SCORE_FIRST:
            pairs.sort(key=lambda pair: as_utc(pair[0].metadata.acquired))
            return pairs, None

        scores = score_collection(self.engine, collection, region=self.region, scale=self.cloud_score_scale)
        pairs.sort(key=lambda pair: scores[pair[0].image_id], reverse=True)
        logging.debug("Scene order by cloud score: "
                      + ", ".join(f"{scene.image_id}={scores[scene.image_id]}" for scene, _ in pairs))
        return pairs, scores

    def compose(self, collection: SceneCollection, statistic="mean", start=None, end=None) -> Composite:
        """
        Build the composite for one period.

        Raises:
            InvalidStatisticError: unknown statistic name
            NoImagesFoundError: the collection is empty
        """
        statistic = StatisticType.parse(statistic)
        if not collection:
            raise NoImagesFoundError(start, end)

        series = self.celsius_series(collection)
        try:
            stats = self.region_stats(series)
        except DegenerateStatsError as e:
            logging.warning(f"{e}; outlier rejection skipped")
            stats = None
        if stats is not None:
            series = self.reject_outliers(series, stats)

        pairs, scores = self.order(collection, series, statistic)
        image = RasterExpr.reduce_stack(statistic.stack_reducer, [lst for _, lst in pairs]).quantize(self.decimals)
        return Composite(
            image=image,
            statistic=statistic,
            scenes=tuple(scene for scene, _ in pairs),
            stats=stats,
            cloud_scores=scores,
            series=tuple(lst for _, lst in pairs),
        )
