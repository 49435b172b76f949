"""
Sensor catalog: band names and collection ids for each Landsat generation.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Optional, Tuple, Union

from .config import LANDSAT_COLLECTIONS, SATELLITE_DATE_RANGES
from .errors import UnknownSensorError

QA_PIXEL = "QA_PIXEL"


@dataclass(frozen=True)
class SensorSpec:
    sensor_id: str
    thermal_bands: Tuple[str, ...]
    reflective_bands: Tuple[str, ...]
    nir_band: str
    red_band: str
    toa_collection: str
    sr_collection: str
    quality_band: str = QA_PIXEL

    @property
    def primary_thermal_band(self) -> str:
        """Lowest-index thermal band, used unless a model asks for both gains."""
        return self.thermal_bands[0]

    @property
    def operational_range(self) -> Tuple[str, Optional[str]]:
        return SATELLITE_DATE_RANGES[self.sensor_id]


_TM_ETM_REFLECTIVE = ("SR_B1", "SR_B2", "SR_B3", "SR_B4", "SR_B5", "SR_B7")
_OLI_REFLECTIVE = ("SR_B1", "SR_B2", "SR_B3", "SR_B4", "SR_B5", "SR_B6", "SR_B7")


def _spec(sensor_id, thermal, reflective, nir, red) -> SensorSpec:
    collections = LANDSAT_COLLECTIONS[sensor_id]
    return SensorSpec(sensor_id, thermal, reflective, nir, red, collections["TOA"], collections["SR"])


# OLI sensors carry an extra coastal band, shifting red/NIR up by one index
SENSORS: Dict[str, SensorSpec] = {
    "L4": _spec("L4", ("B6",), _TM_ETM_REFLECTIVE, "SR_B4", "SR_B3"),
    "L5": _spec("L5", ("B6",), _TM_ETM_REFLECTIVE, "SR_B4", "SR_B3"),
    "L7": _spec("L7", ("B6_VCID_1", "B6_VCID_2"), _TM_ETM_REFLECTIVE, "SR_B4", "SR_B3"),
    "L8": _spec("L8", ("B10",), _OLI_REFLECTIVE, "SR_B5", "SR_B4"),
    "L9": _spec("L9", ("B10",), _OLI_REFLECTIVE, "SR_B5", "SR_B4"),
}


def lookup(sensor_id: str) -> SensorSpec:
    """Return the catalog entry for ``sensor_id`` or raise UnknownSensorError."""
    try:
        return SENSORS[sensor_id]
    except (KeyError, TypeError):
        raise UnknownSensorError(sensor_id, tuple(SENSORS)) from None


def _as_datetime(value: Union[str, date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(value)


def is_sensor_operational(sensor_id: str, start, end) -> bool:
    """
    Check if a sensor was delivering data during the requested date range.

    Args:
        sensor_id: Catalog id (e.g. "L8")
        start: Start date (ISO string, date or datetime)
        end: End date (ISO string, date or datetime)

    Returns:
        True if the request overlaps the sensor's operational period
    """
    sat_start, sat_end = lookup(sensor_id).operational_range
    request_start = _as_datetime(start)
    request_end = _as_datetime(end)
    if request_end < datetime.fromisoformat(sat_start):
        return False
    if sat_end is None:
        return True
    return request_start <= datetime.fromisoformat(sat_end)
