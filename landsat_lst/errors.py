"""
Exception hierarchy.

Configuration-shape errors (unknown sensor, method, statistic or missing model)
abort a run. NoImagesFoundError only skips the period it was raised for.
"""


class LstError(Exception):
    """Base class for all errors raised by landsat_lst."""


class ConfigurationError(LstError):
    """The run configuration is malformed."""


class UnknownSensorError(ConfigurationError):
    def __init__(self, sensor_id, supported=()):
        self.sensor_id = sensor_id
        message = f"Unknown sensor id: {sensor_id!r}"
        if supported:
            message += f" (supported: {', '.join(supported)})"
        super().__init__(message)


class InvalidEmissivityMethodError(ConfigurationError):
    def __init__(self, method):
        self.method = method
        super().__init__(f"Invalid emissivity method {method!r}. Use 'aster' or 'ndvi'.")


class InvalidStatisticError(ConfigurationError):
    def __init__(self, statistic, supported=()):
        self.statistic = statistic
        super().__init__(f"Invalid statistic {statistic!r}. Use one of: {', '.join(supported)}")


class MissingProviderError(ConfigurationError):
    """An external model required by the configuration was not supplied."""


class MissingQualityBandError(LstError):
    def __init__(self, image_id=None):
        self.image_id = image_id
        super().__init__(f"Scene {image_id or '<unknown>'} has no recognised quality band")


class BandVocabularyError(LstError):
    """A scene does not expose the harmonized band set required for merging."""


class NoImagesFoundError(LstError):
    def __init__(self, start=None, end=None):
        self.start = start
        self.end = end
        if start and end:
            super().__init__(f"No images found between {start} and {end}")
        else:
            super().__init__("No images found")


class DegenerateStatsError(LstError):
    """Regional standard deviation is zero or undefined, so z-scores are undefined."""
