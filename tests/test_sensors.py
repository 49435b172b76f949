import pytest

from landsat_lst.errors import ConfigurationError, UnknownSensorError
from landsat_lst.sensors import SENSORS, is_sensor_operational, lookup


def test_all_five_generations_supported():
    assert set(SENSORS) == {"L4", "L5", "L7", "L8", "L9"}


@pytest.mark.parametrize("sensor_id, thermal", [
    ("L4", ("B6",)),
    ("L5", ("B6",)),
    ("L7", ("B6_VCID_1", "B6_VCID_2")),
    ("L8", ("B10",)),
    ("L9", ("B10",)),
])
def test_thermal_bands(sensor_id, thermal):
    sensor = lookup(sensor_id)
    assert sensor.thermal_bands == thermal
    assert sensor.primary_thermal_band == thermal[0]


def test_band_selection_differs_for_oli():
    assert (lookup("L8").nir_band, lookup("L8").red_band) == ("SR_B5", "SR_B4")
    assert (lookup("L5").nir_band, lookup("L5").red_band) == ("SR_B4", "SR_B3")


def test_collection_ids():
    sensor = lookup("L7")
    assert sensor.toa_collection == "LANDSAT/LE07/C02/T1_TOA"
    assert sensor.sr_collection == "LANDSAT/LE07/C02/T1_L2"


@pytest.mark.parametrize("sensor_id", ["L6", "S2", "", None])
def test_unknown_sensor(sensor_id):
    with pytest.raises(UnknownSensorError) as excinfo:
        lookup(sensor_id)
    assert isinstance(excinfo.value, ConfigurationError)


def test_operational_ranges():
    assert is_sensor_operational("L8", "2020-01-01", "2020-02-01")
    assert not is_sensor_operational("L5", "2020-01-01", "2020-02-01")
    assert not is_sensor_operational("L9", "2015-01-01", "2015-02-01")
    # Overlapping the end of the mission still counts
    assert is_sensor_operational("L7", "2022-04-01", "2022-05-01")
