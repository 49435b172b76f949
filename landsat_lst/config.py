"""
Configuration constants and default values.
"""
import os

# Earth Engine authentication
# Service account key file path (if using service account authentication)
# Set to None to use user authentication, or provide a path to a service account JSON key file
# Checked after the run configuration and before the GEE_SERVICE_ACCOUNT_KEY environment variable
GEE_SERVICE_ACCOUNT_KEY = None
GEE_PROJECT = os.environ.get("GEE_PROJECT")

# Earth Engine reduction limits
EE_MAX_PIXELS = 1e13
EE_TILE_SCALE = 4
EE_BEST_EFFORT = True

# Landsat Collection 2 product ids per sensor
LANDSAT_COLLECTIONS = {
    "L4": {"TOA": "LANDSAT/LT04/C02/T1_TOA", "SR": "LANDSAT/LT04/C02/T1_L2"},
    "L5": {"TOA": "LANDSAT/LT05/C02/T1_TOA", "SR": "LANDSAT/LT05/C02/T1_L2"},
    "L7": {"TOA": "LANDSAT/LE07/C02/T1_TOA", "SR": "LANDSAT/LE07/C02/T1_L2"},
    "L8": {"TOA": "LANDSAT/LC08/C02/T1_TOA", "SR": "LANDSAT/LC08/C02/T1_L2"},
    "L9": {"TOA": "LANDSAT/LC09/C02/T1_TOA", "SR": "LANDSAT/LC09/C02/T1_L2"},
}

# Satellite operational date ranges (surface reflectance product availability)
SATELLITE_DATE_RANGES = {
    "L4": ("1982-08-22", "1993-12-14"),
    "L5": ("1984-03-16", "2012-05-05"),
    "L7": ("1999-05-28", "2022-04-06"),
    "L8": ("2013-03-18", None),  # Still operational
    "L9": ("2021-10-31", None),  # Still operational
}

# Surface reflectance scaling for Collection 2 Level-2 digital numbers
REFLECTANCE_SCALE = 0.0000275
REFLECTANCE_OFFSET = -0.2

# NDVI-based emissivity
EMIS_SOIL = 0.97     # bare soil
EMIS_URBAN = 0.97    # urban/built-up
EMIS_VEG = 0.99      # dense vegetation
EMIS_WATER = 0.99
EMIS_SNOW = 0.989
NDVI_SOIL = 0.2
NDVI_VEG = 0.7

# Temporal compositing
KELVIN_OFFSET = 273.15
QUANTIZE_DECIMALS = 4
PHYSICAL_RANGE_C = (-1000.0, 1000.0)   # gross-error guard, exclusive bounds
Z_SCORE_THRESHOLD = 4.0
STATS_SCALE = 900         # meters per pixel for regional mean/stddev
CLOUD_SCORE_SCALE = 30    # meters per pixel for clear-sky scoring
DEFAULT_CLOUD_SCORE = 50.0

# Histogram of the final composite (degrees Celsius)
HISTOGRAM_MIN = -30.0
HISTOGRAM_MAX = 60.0
HISTOGRAM_BIN_WIDTH = 2.0
HISTOGRAM_SCALE = 900

# Export
EXPORT_SCALE = 30
EXPORT_BUFFER_M = 5000
EXPORT_POLL_INTERVAL = 8
EXPORT_POLL_TIMEOUT = 60 * 30
LOCAL_TIME_OFFSET_HOURS = 8  # scene centre time is also reported at UTC+8
MANIFEST_CSV = "lst_manifest.csv"
OUTDIR_DEFAULT = "lst_outputs"

# Processing
DEFAULT_WORKERS = 1
MAX_IMAGES_PER_SENSOR = 5000
