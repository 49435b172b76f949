"""
External model interfaces used during harmonization.

Each model is a callable ``(scene, sensor) -> scene`` that returns a copy of the
scene with one more band: TPW, FVC, EM or LST. The split-window algorithm and
ASTER-GED emissivity live outside this package; the classes here are simple
stand-ins usable on any engine.
"""
import importlib
import logging
from typing import Any, Dict, Optional, Protocol, Union

from .config import KELVIN_OFFSET
from .errors import ConfigurationError
from .scenes import Scene
from .sensors import SensorSpec


class SceneModel(Protocol):
    def __call__(self, scene: Scene, sensor: SensorSpec) -> Scene:
        ...


# Aliases naming the band each model contributes
TpwProvider = SceneModel          # adds TPW
FvcProvider = SceneModel          # adds FVC
EmissivityProvider = SceneModel   # adds EM
SplitWindowModel = SceneModel     # adds LST (Kelvin)


class ConstantTpw:
    """Total precipitable water fixed for every pixel (g/cm^2)."""

    def __init__(self, value: float = 2.0):
        self.value = float(value)

    def __call__(self, scene: Scene, sensor: SensorSpec) -> Scene:
        thermal = scene.band(sensor.primary_thermal_band)
        # Same validity as the thermal band
        return scene.add_bands(TPW=thermal.multiply(0).add(self.value))

    def __repr__(self):
        return f"ConstantTpw({self.value})"


class EmissivityCorrectedBrightnessTemperature:
    """
    First-order LST: Ts = Tb / EM ** 0.25.

    Tb is the TOA brightness temperature of the primary thermal band in Kelvin.
    Set ``celsius_input`` when the thermal band is already in degrees Celsius.
    """

    def __init__(self, celsius_input: bool = False):
        self.celsius_input = celsius_input

    def __call__(self, scene: Scene, sensor: SensorSpec) -> Scene:
        tb = scene.band(sensor.primary_thermal_band)
        if self.celsius_input:
            tb = tb.add(KELVIN_OFFSET)
        lst = tb.divide(scene.band("EM").power(0.25))
        return scene.add_bands(LST=lst)


def load_provider(ref: Union[str, Dict[str, Any], None]) -> Optional[SceneModel]:
    """
    Resolve a model from the run configuration.

    Args:
        ref: "package.module:attribute", or a dict with "path" and optional "params".
            Classes are instantiated with the params; other callables are used as-is.

    Returns:
        The callable model, or None when ``ref`` is empty
    """
    if not ref:
        return None
    params = {}
    if isinstance(ref, dict):
        params = ref.get("params") or {}
        ref = ref.get("path")
    if not isinstance(ref, str) or ":" not in ref:
        raise ConfigurationError(f"Model reference must look like 'module:attribute', got {ref!r}")

    module_name, attr = ref.split(":", 1)
    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load model {ref!r}: {e}") from e

    model = target(**params) if isinstance(target, type) else target
    if not callable(model):
        raise ConfigurationError(f"Model {ref!r} is not callable")
    logging.debug(f"Loaded model {ref} -> {model!r}")
    return model
