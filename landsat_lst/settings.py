"""
Run configuration (JSON) and persistent Earth Engine credentials.
"""
import os
import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from shapely.geometry import box, shape

from .compositor import StatisticType
from .config import DEFAULT_WORKERS, LOCAL_TIME_OFFSET_HOURS, OUTDIR_DEFAULT
from .emissivity import EmissivityMethod
from .errors import ConfigurationError
from .export import region_label
from .sensors import SENSORS, lookup

SETTINGS_DIR = Path.home() / '.landsat_lst'
SETTINGS_FILE = SETTINGS_DIR / 'settings.json'

DEFAULT_MODELS = {
    "split_window": "landsat_lst.providers:EmissivityCorrectedBrightnessTemperature",
    "tpw": "landsat_lst.providers:ConstantTpw",
}


def load_settings() -> Dict[str, Any]:
    """Load saved credentials from persistent storage."""
    if not SETTINGS_FILE.exists():
        return {}
    try:
        with open(SETTINGS_FILE, 'r') as f:
            settings = json.load(f)
        logging.info(f"Settings loaded from {SETTINGS_FILE}")
        return settings
    except (OSError, json.JSONDecodeError) as e:
        logging.warning(f"Failed to load settings: {e}")
        return {}


def save_settings(service_account_key: str = None, project_id: str = None):
    """Save Earth Engine credentials to persistent storage. Empty strings clear a value."""
    settings = load_settings()
    if service_account_key is not None:
        if service_account_key:
            settings['service_account_key'] = os.path.abspath(service_account_key)
        else:
            settings.pop('service_account_key', None)
    if project_id is not None:
        if project_id:
            settings['project_id'] = project_id
        else:
            settings.pop('project_id', None)

    SETTINGS_DIR.mkdir(parents=True, exist_ok=True)
    with open(SETTINGS_FILE, 'w') as f:
        json.dump(settings, f, indent=2)
    logging.info(f"Settings saved to {SETTINGS_FILE}")


@dataclass(frozen=True)
class RegionConfig:
    """Area of interest: a drawn geometry or a named administrative boundary."""
    geometry: object = None
    name: Optional[str] = None
    level: Optional[str] = None
    custom_name: Optional[str] = None

    @property
    def label(self) -> str:
        return region_label(self.name, self.level, self.custom_name)


@dataclass
class RunContext:
    """Everything one run needs, passed explicitly through processing."""
    periods: List[Tuple[str, str]]
    region: RegionConfig
    sensors: Tuple[str, ...]
    cloud_min: float = 0
    cloud_max: float = 100
    statistic: StatisticType = StatisticType.MEAN
    method: EmissivityMethod = EmissivityMethod.NDVI
    engine: str = "ee"
    output: Dict[str, Any] = field(default_factory=lambda: {"type": "local", "dir": OUTDIR_DEFAULT})
    models: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_MODELS))
    ee_project: Optional[str] = None
    ee_service_account_key: Optional[str] = None
    workers: int = DEFAULT_WORKERS
    local_time_offset_hours: float = LOCAL_TIME_OFFSET_HOURS
    local: Dict[str, Any] = field(default_factory=dict)

    @property
    def outdir(self) -> str:
        return self.output.get("dir") or OUTDIR_DEFAULT


def _parse_date(value, what: str) -> date:
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ConfigurationError(f"Invalid {what} date: {value!r}") from None


def monthly_periods(start: str, end: str) -> List[Tuple[str, str]]:
    """Split [start, end) into calendar-month periods."""
    start_d, end_d = _parse_date(start, "start"), _parse_date(end, "end")
    periods = []
    current = start_d
    while current < end_d:
        if current.month == 12:
            nxt = date(current.year + 1, 1, 1)
        else:
            nxt = date(current.year, current.month + 1, 1)
        periods.append((current.isoformat(), min(nxt, end_d).isoformat()))
        current = nxt
    return periods


def parse_periods(raw) -> List[Tuple[str, str]]:
    """
    Accepts a list of [start, end] pairs or {"start", "end"} dicts, or a single
    {"start", "end", "step": "month"} range.
    """
    if isinstance(raw, dict):
        if raw.get("step", "month") != "month":
            raise ConfigurationError(f"Unsupported period step: {raw.get('step')!r}")
        return monthly_periods(raw.get("start"), raw.get("end"))
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError("'periods' must be a non-empty list or a {start, end} range")

    periods = []
    for item in raw:
        if isinstance(item, dict):
            start, end = item.get("start"), item.get("end")
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            start, end = item
        else:
            raise ConfigurationError(f"Invalid period: {item!r}")
        start_d, end_d = _parse_date(start, "start"), _parse_date(end, "end")
        if end_d <= start_d:
            raise ConfigurationError(f"Period end {end_d} is not after start {start_d}")
        periods.append((start_d.isoformat(), end_d.isoformat()))
    return periods


def parse_region(raw) -> RegionConfig:
    if raw is None:
        return RegionConfig()
    if not isinstance(raw, dict):
        raise ConfigurationError("'region' must be an object")
    geometry = None
    if raw.get("geometry") is not None:
        try:
            geometry = shape(raw["geometry"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid region geometry: {e}") from e
    elif raw.get("bbox") is not None:
        bbox = raw["bbox"]
        if len(bbox) != 4:
            raise ConfigurationError("'bbox' must be [min_lon, min_lat, max_lon, max_lat]")
        geometry = box(*[float(v) for v in bbox])
    return RegionConfig(geometry, raw.get("name"), raw.get("level"), raw.get("custom_name"))


def parse_sensors(raw) -> Tuple[str, ...]:
    """A list of ids, or a {"L8": true, ...} map of enable flags."""
    if raw is None:
        return tuple(SENSORS)
    if isinstance(raw, dict):
        ids = [sensor_id for sensor_id, enabled in raw.items() if enabled]
    else:
        ids = list(raw)
    for sensor_id in ids:
        lookup(sensor_id)
    if not ids:
        raise ConfigurationError("No sensors enabled")
    return tuple(ids)


def build_run_context(data: Dict[str, Any]) -> RunContext:
    """Validate a decoded configuration and build the RunContext."""
    if "periods" not in data:
        raise ConfigurationError("Configuration has no 'periods'")
    cloud = data.get("cloud", {})
    cloud_min, cloud_max = float(cloud.get("min", 0)), float(cloud.get("max", 100))
    if not 0 <= cloud_min <= cloud_max <= 100:
        raise ConfigurationError(f"Invalid cloud cover range: {cloud_min} - {cloud_max}")

    models = dict(DEFAULT_MODELS)
    models.update(data.get("models") or {})
    ee_config = data.get("earth_engine") or {}
    engine = data.get("engine", "ee")
    if engine not in ("ee", "local"):
        raise ConfigurationError(f"Unknown engine {engine!r}. Use 'ee' or 'local'.")
    if engine == "local" and not (data.get("local") or {}).get("scenes"):
        raise ConfigurationError("The local engine needs a 'local.scenes' list")

    return RunContext(
        periods=parse_periods(data["periods"]),
        region=parse_region(data.get("region")),
        sensors=parse_sensors(data.get("sensors")),
        cloud_min=cloud_min,
        cloud_max=cloud_max,
        statistic=StatisticType.parse(data.get("statistic", "mean")),
        method=EmissivityMethod.parse(data.get("emissivity_method", "ndvi")),
        engine=engine,
        output=data.get("output") or {"type": "local", "dir": OUTDIR_DEFAULT},
        models=models,
        ee_project=ee_config.get("project"),
        ee_service_account_key=ee_config.get("service_account_key"),
        workers=int(data.get("workers", DEFAULT_WORKERS)),
        local_time_offset_hours=float(data.get("local_time_offset_hours", LOCAL_TIME_OFFSET_HOURS)),
        local=data.get("local") or {},
    )


def load_run_context(path: str) -> RunContext:
    """Read a JSON run configuration file."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Configuration {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration {path} must be a JSON object")
    logging.info(f"Run configuration loaded from {path}")
    return build_run_context(data)
