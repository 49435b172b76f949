"""
Per-sensor harmonization: turns raw Landsat scenes into scenes that all expose
the same derived band vocabulary (NDVI, TPW, EM, optional FVC, LST).
"""
import logging
from typing import Dict, Iterable, List, Optional, Protocol

from .cloud_detection import sr_mask
from .emissivity import EmissivityMethod, add_ndvi_emissivity
from .errors import BandVocabularyError, MissingProviderError
from .indices import add_ndvi
from .providers import EmissivityProvider, FvcProvider, SplitWindowModel, TpwProvider
from .scenes import Scene, SceneCollection, SceneFilter
from .sensors import SensorSpec, is_sensor_operational, lookup


class SceneSource(Protocol):
    """Supplies raw scenes: SR reflective bands and QA joined with TOA thermal bands."""

    def load(self, sensor: SensorSpec, scene_filter: SceneFilter) -> SceneCollection:
        ...


class InMemorySceneSource:
    """Scenes already built (e.g. LocalEngine bands), grouped by sensor id."""

    def __init__(self, scenes: Iterable[Scene] = ()):
        self._scenes: Dict[str, List[Scene]] = {}
        for scene in scenes:
            self.add(scene)

    def add(self, scene: Scene):
        self._scenes.setdefault(scene.sensor_id, []).append(scene)

    def load(self, sensor: SensorSpec, scene_filter: SceneFilter) -> SceneCollection:
        collection = SceneCollection(self._scenes.get(sensor.sensor_id, ()))
        return scene_filter.apply(collection).sort_by_time()


class SceneHarmonizer:
    """
    Builds the harmonized LST collection for one sensor.

    Args:
        source: SceneSource delivering raw scenes
        split_window: model adding the LST band (Kelvin)
        tpw: model adding TPW, skipped when None
        aster_emissivity: model adding EM for the "aster" method
        fvc: model adding FVC, skipped when None
    """

    def __init__(self, source: SceneSource, split_window: SplitWindowModel,
                 tpw: Optional[TpwProvider] = None,
                 aster_emissivity: Optional[EmissivityProvider] = None,
                 fvc: Optional[FvcProvider] = None):
        self.source = source
        self.split_window = split_window
        self.tpw = tpw
        self.aster_emissivity = aster_emissivity
        self.fvc = fvc

    def check_method(self, method) -> EmissivityMethod:
        """Parse ``method`` and make sure the models it needs are present."""
        method = EmissivityMethod.parse(method)
        if method is EmissivityMethod.ASTER and self.aster_emissivity is None:
            raise MissingProviderError("Emissivity method 'aster' needs an ASTER emissivity model")
        if self.split_window is None:
            raise MissingProviderError("No split-window model configured")
        return method

    def harmonize(self, scene: Scene, sensor: SensorSpec, method: EmissivityMethod) -> Scene:
        """Mask, derive NDVI/FVC/TPW/EM and compute LST for a single raw scene."""
        scene = sr_mask(scene, strict=True)
        scene = add_ndvi(scene, sensor.sensor_id)
        if self.fvc is not None:
            scene = self.fvc(scene, sensor)
        if self.tpw is not None:
            scene = self.tpw(scene, sensor)
        if method is EmissivityMethod.ASTER:
            scene = self.aster_emissivity(scene, sensor)
        else:
            scene = add_ndvi_emissivity(scene)
        scene = self.split_window(scene, sensor)
        if not scene.has_band("LST"):
            raise BandVocabularyError(f"Split-window model produced no LST band for {scene.image_id}")
        return scene

    def collection(self, sensor_id: str, scene_filter: SceneFilter, method="ndvi") -> SceneCollection:
        """Harmonized scenes of ``sensor_id`` matching ``scene_filter``, in acquisition order."""
        sensor = lookup(sensor_id)
        method = self.check_method(method)
        if not is_sensor_operational(sensor_id, scene_filter.start, scene_filter.end):
            logging.info(f"{sensor_id} not operational between {scene_filter.start} and {scene_filter.end}, skipping")
            return SceneCollection()

        raw = self.source.load(sensor, scene_filter)
        logging.debug(f"{sensor_id}: {len(raw)} raw scenes between {scene_filter.start} and {scene_filter.end}")
        return raw.map(lambda scene: self.harmonize(scene, sensor, method))

    def merged(self, sensor_ids: Iterable[str], scene_filter: SceneFilter, method="ndvi") -> SceneCollection:
        """Harmonize several sensors and merge them into one collection."""
        collections = [self.collection(sensor_id, scene_filter, method) for sensor_id in sensor_ids]
        return SceneCollection.merge(*collections)
