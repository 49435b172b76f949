import pytest

from landsat_lst.errors import ConfigurationError
from landsat_lst.providers import ConstantTpw, EmissivityCorrectedBrightnessTemperature, load_provider
from landsat_lst.scenes import Scene
from landsat_lst.sensors import lookup

from conftest import make_engine, metadata


def test_load_provider_instantiates_classes():
    model = load_provider("landsat_lst.providers:ConstantTpw")
    assert isinstance(model, ConstantTpw)
    assert model.value == 2.0


def test_load_provider_with_params():
    model = load_provider({"path": "landsat_lst.providers:ConstantTpw", "params": {"value": 3}})
    assert model.value == 3.0


def test_load_provider_plain_callable():
    assert load_provider("landsat_lst.providers:load_provider") is load_provider


def test_load_provider_empty():
    assert load_provider(None) is None
    assert load_provider("") is None


@pytest.mark.parametrize("ref", ["no_colon", "landsat_lst.nowhere:Thing", "landsat_lst.providers:Missing",
                                 "landsat_lst.config:EMIS_SOIL"])
def test_load_provider_errors(ref):
    with pytest.raises(ConfigurationError):
        load_provider(ref)


def test_brightness_temperature_model_celsius_input():
    engine = make_engine(1, 1)
    scene = Scene(metadata("s1", sensor_id="L7"), {
        "B6_VCID_1": engine.band([[26.85]]),
        "B6_VCID_2": engine.band([[99.0]]),
        "EM": engine.band([[1.0]]),
    })
    result = EmissivityCorrectedBrightnessTemperature(celsius_input=True)(scene, lookup("L7"))
    # Primary (lowest-index) thermal band is used
    assert engine.materialize(result.band("LST"))[0, 0] == pytest.approx(300.0)
