"""
Scene and SceneCollection: one acquisition with its named bands, and an
ordered, filterable series of acquisitions.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .errors import BandVocabularyError
from .raster import RasterExpr

# Bands every harmonized scene exposes, regardless of sensor
HARMONIZED_BANDS = ("LST",)
QUALITY_BANDS = ("QA_PIXEL", "BQA")


def as_utc(value) -> datetime:
    """Normalise a date, naive datetime or ISO string to an aware UTC datetime."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    raise TypeError(f"Cannot interpret {value!r} as a date")


@dataclass(frozen=True)
class SceneMetadata:
    image_id: str
    sensor_id: str
    acquired: datetime
    cloud_cover: Optional[float] = None
    path: Optional[int] = None
    row: Optional[int] = None
    sun_azimuth: Optional[float] = None
    sun_elevation: Optional[float] = None
    footprint: object = None  # shapely geometry, None when unknown
    spacecraft: Optional[str] = None

    @property
    def date_acquired(self) -> str:
        return self.acquired.strftime("%Y-%m-%d")

    @property
    def scene_center_time(self) -> str:
        return self.acquired.strftime("%H:%M:%S")


@dataclass(frozen=True)
class Scene:
    """One acquisition. Bands share a grid; derived bands are added by copy."""
    metadata: SceneMetadata
    bands: Mapping[str, RasterExpr] = field(default_factory=dict)

    @property
    def sensor_id(self) -> str:
        return self.metadata.sensor_id

    @property
    def image_id(self) -> str:
        return self.metadata.image_id

    @property
    def band_names(self) -> Tuple[str, ...]:
        return tuple(self.bands)

    @property
    def quality_band_name(self) -> Optional[str]:
        for name in QUALITY_BANDS:
            if name in self.bands:
                return name
        return None

    def has_band(self, name: str) -> bool:
        return name in self.bands

    def band(self, name: str) -> RasterExpr:
        try:
            return self.bands[name]
        except KeyError:
            raise KeyError(f"Scene {self.image_id} has no band {name!r} (bands: {', '.join(self.bands)})") from None

    def add_bands(self, **bands: RasterExpr) -> "Scene":
        """Return a copy with extra (or replaced) bands."""
        merged = dict(self.bands)
        merged.update(bands)
        return replace(self, bands=merged)

    def map_bands(self, func: Callable[[RasterExpr], RasterExpr], exclude: Iterable[str] = ()) -> "Scene":
        skip = set(exclude)
        mapped = {name: band if name in skip else func(band) for name, band in self.bands.items()}
        return replace(self, bands=mapped)


class SceneCollection:
    """Ordered scenes. Insertion order is acquisition order unless re-sorted."""

    def __init__(self, scenes: Iterable[Scene] = ()):
        self._scenes: List[Scene] = list(scenes)

    def __len__(self) -> int:
        return len(self._scenes)

    def __iter__(self) -> Iterator[Scene]:
        return iter(self._scenes)

    def __getitem__(self, index):
        return self._scenes[index]

    def __bool__(self) -> bool:
        return bool(self._scenes)

    def __repr__(self) -> str:
        return f"SceneCollection({len(self._scenes)} scenes)"

    @property
    def scenes(self) -> Tuple[Scene, ...]:
        return tuple(self._scenes)

    @property
    def sensor_ids(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(scene.sensor_id for scene in self._scenes))

    def filter(self, predicate: Callable[[Scene], bool]) -> "SceneCollection":
        return SceneCollection(scene for scene in self._scenes if predicate(scene))

    def filter_date(self, start, end) -> "SceneCollection":
        """Keep scenes acquired in [start, end)."""
        start, end = as_utc(start), as_utc(end)
        return self.filter(lambda scene: start <= as_utc(scene.metadata.acquired) < end)

    def filter_bounds(self, region) -> "SceneCollection":
        """Keep scenes whose footprint intersects ``region``. Unknown footprints are kept."""
        if region is None:
            return SceneCollection(self._scenes)
        return self.filter(lambda scene: scene.metadata.footprint is None
                           or scene.metadata.footprint.intersects(region))

    def filter_cloud_cover(self, cloud_min: float, cloud_max: float) -> "SceneCollection":
        """Keep scenes with cloud_min <= cloud cover <= cloud_max."""
        def keep(scene):
            cover = scene.metadata.cloud_cover
            if cover is None:
                logging.debug(f"Scene {scene.image_id} has no cloud cover, excluded by cloud filter")
                return False
            return cloud_min <= cover <= cloud_max
        return self.filter(keep)

    def map(self, func: Callable[[Scene], Scene]) -> "SceneCollection":
        return SceneCollection(func(scene) for scene in self._scenes)

    def sort_by(self, key: Callable[[Scene], object], reverse: bool = False) -> "SceneCollection":
        """Stable sort, so ties keep their current relative order."""
        return SceneCollection(sorted(self._scenes, key=key, reverse=reverse))

    def sort_by_time(self) -> "SceneCollection":
        return self.sort_by(lambda scene: as_utc(scene.metadata.acquired))

    @classmethod
    def merge(cls, *collections: "SceneCollection",
              required_bands: Tuple[str, ...] = HARMONIZED_BANDS) -> "SceneCollection":
        """Concatenate collections, checking every scene exposes ``required_bands``."""
        merged = []
        for collection in collections:
            for scene in collection:
                missing = [name for name in required_bands if not scene.has_band(name)]
                if missing:
                    raise BandVocabularyError(
                        f"Scene {scene.image_id} ({scene.sensor_id}) lacks band(s) {', '.join(missing)}")
                merged.append(scene)
        return cls(merged)

    def path_rows(self) -> Dict[str, List[Tuple[int, int]]]:
        """Distinct WRS path/row pairs per sensor, sorted by path then row."""
        pairs: Dict[str, set] = {}
        for scene in self._scenes:
            meta = scene.metadata
            if meta.path is None or meta.row is None:
                continue
            pairs.setdefault(meta.sensor_id, set()).add((meta.path, meta.row))
        return {sensor: sorted(values) for sensor, values in pairs.items()}


@dataclass(frozen=True)
class SceneFilter:
    """Time window, region and cloud-cover bounds used to select scenes."""
    start: str
    end: str
    region: object = None
    cloud_min: float = 0
    cloud_max: float = 100

    def apply(self, collection: SceneCollection) -> SceneCollection:
        return (collection.filter_date(self.start, self.end)
                .filter_bounds(self.region)
                .filter_cloud_cover(self.cloud_min, self.cloud_max))
