"""
Landsat land surface temperature: multi-sensor harmonization and temporal
compositing.

Package layout:
- config: Configuration constants
- sensors: Sensor catalog (bands, collections, mission dates)
- raster: Deferred raster expressions and the engine interface
- local_engine / ee_engine: numpy and Earth Engine backends
- scenes: Scene and SceneCollection
- cloud_detection: QA bitmask decoding and cloud masking
- indices / emissivity: NDVI and NDVI-based emissivity
- providers: External model interfaces (TPW, emissivity, split-window)
- harmonizer: Per-sensor harmonized LST collections
- quality_scoring: Clear-sky scores
- compositor: Temporal compositing with outlier rejection
- histogram: Fixed-bin distribution of a composite
- export: File naming, tables, local and Drive exporters
- settings: Run configuration and saved credentials
- processing: Period loop
- cli: Command line entry point
"""

__version__ = "1.0.0"

from .compositor import Composite, RegionStats, StatisticType, TemporalCompositor
from .emissivity import EmissivityMethod
from .errors import (
    BandVocabularyError,
    ConfigurationError,
    DegenerateStatsError,
    InvalidEmissivityMethodError,
    InvalidStatisticError,
    LstError,
    MissingProviderError,
    MissingQualityBandError,
    NoImagesFoundError,
    UnknownSensorError,
)
from .harmonizer import InMemorySceneSource, SceneHarmonizer
from .histogram import DistributionSummarizer, HistogramBin
from .raster import RasterEngine, RasterExpr
from .scenes import Scene, SceneCollection, SceneFilter, SceneMetadata
from .sensors import SENSORS, SensorSpec, lookup

__all__ = [
    'Composite',
    'RegionStats',
    'StatisticType',
    'TemporalCompositor',
    'EmissivityMethod',
    'LstError',
    'ConfigurationError',
    'UnknownSensorError',
    'InvalidEmissivityMethodError',
    'InvalidStatisticError',
    'MissingProviderError',
    'MissingQualityBandError',
    'BandVocabularyError',
    'NoImagesFoundError',
    'DegenerateStatsError',
    'InMemorySceneSource',
    'SceneHarmonizer',
    'DistributionSummarizer',
    'HistogramBin',
    'RasterEngine',
    'RasterExpr',
    'Scene',
    'SceneCollection',
    'SceneFilter',
    'SceneMetadata',
    'SENSORS',
    'SensorSpec',
    'lookup',
]
