"""
Command line entry point.

    landsat-lst run CONFIG.json [--workers N] [--engine ee|local]
    landsat-lst sensors
    landsat-lst auth --key KEY.json [--project PROJECT]
"""
import os
import sys
import json
import logging
import argparse
from datetime import datetime
from typing import List, Optional

from .config import GEE_PROJECT, GEE_SERVICE_ACCOUNT_KEY, SATELLITE_DATE_RANGES
from .errors import ConfigurationError
from .sensors import SENSORS


def setup_logging(log_dir: str = "logs") -> str:
    """Console INFO plus a timestamped DEBUG log file; returns the log file path."""
    os.makedirs(log_dir, exist_ok=True)
    log_filepath = os.path.join(log_dir, f"landsat_lst_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)  # Set root logger to DEBUG to capture all messages
    logger.handlers.clear()

    # Reduce third-party log noise
    logging.getLogger('rasterio').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('urllib3.connectionpool').setLevel(logging.WARNING)
    logging.getLogger('googleapiclient').setLevel(logging.ERROR)
    logging.getLogger('googleapiclient.discovery').setLevel(logging.ERROR)
    logging.getLogger('google.auth').setLevel(logging.WARNING)
    logging.getLogger('matplotlib').setLevel(logging.WARNING)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    file_handler = logging.FileHandler(log_filepath, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] [%(filename)s:%(lineno)d] %(message)s"))
    logger.addHandler(file_handler)
    return log_filepath


def find_service_account_key(configured: Optional[str] = None) -> Optional[str]:
    """Run configuration first, then saved settings, config.py and the environment."""
    from .settings import load_settings

    candidates = [
        configured,
        load_settings().get('service_account_key'),
        GEE_SERVICE_ACCOUNT_KEY,
        os.environ.get('GEE_SERVICE_ACCOUNT_KEY'),
    ]
    for path in candidates:
        if path and os.path.exists(path):
            return path
    return None


def initialize_earth_engine(key_file: Optional[str] = None, project: Optional[str] = None):
    """Initialize Earth Engine with a service account key, or default credentials."""
    import ee
    from .settings import load_settings

    project = project or GEE_PROJECT or load_settings().get('project_id')
    key_file = find_service_account_key(key_file)
    if key_file:
        if not project:
            with open(key_file, 'r') as f:
                project = json.load(f).get('project_id')
        credentials = ee.ServiceAccountCredentials(None, key_file)
        ee.Initialize(credentials, project=project)
        logging.info(f"Initialized Earth Engine with service account from {key_file} (project: {project})")
    else:
        ee.Initialize(project=project)
        logging.info(f"Initialized Earth Engine (project: {project})")


def cmd_sensors(args) -> int:
    for sensor_id, sensor in SENSORS.items():
        start, end = SATELLITE_DATE_RANGES[sensor_id]
        print(f"{sensor_id}: thermal {', '.join(sensor.thermal_bands)}; NIR/red {sensor.nir_band}/{sensor.red_band}; "
              f"{start} to {end or 'present'}")
        print(f"    SR  {sensor.sr_collection}")
        print(f"    TOA {sensor.toa_collection}")
    return 0


def cmd_auth(args) -> int:
    from .settings import save_settings

    save_settings(service_account_key=args.key, project_id=args.project)
    return 0


def cmd_run(args) -> int:
    from .processing import EXPORTED, build_pipeline, process_periods
    from .settings import load_run_context

    log_path = setup_logging(args.log_dir)
    logging.info(f"Log file: {log_path}")
    try:
        context = load_run_context(args.config)
        if args.engine:
            context.engine = args.engine
        if context.engine == "ee":
            initialize_earth_engine(context.ee_service_account_key, context.ee_project)
        pipeline = build_pipeline(context)
        outcomes = process_periods(pipeline, workers=args.workers)
    except ConfigurationError as e:
        logging.error(f"Configuration error: {e}")
        return 2
    except Exception:
        logging.exception("Run failed")
        return 1

    for outcome in outcomes:
        logging.info(f"{outcome.start} to {outcome.end}: {outcome.status} {outcome.message}".rstrip())
    return 0 if any(o.status == EXPORTED for o in outcomes) or not outcomes else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="landsat-lst",
                                     description="Landsat land surface temperature composites")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="process every period of a run configuration")
    run.add_argument("config", help="JSON run configuration")
    run.add_argument("--workers", type=int, default=None, help="periods processed concurrently")
    run.add_argument("--engine", choices=("ee", "local"), default=None, help="override the configured engine")
    run.add_argument("--log-dir", default="logs")
    run.set_defaults(func=cmd_run)

    sensors = sub.add_parser("sensors", help="list supported sensors")
    sensors.set_defaults(func=cmd_sensors)

    auth = sub.add_parser("auth", help="save Earth Engine credentials")
    auth.add_argument("--key", default=None, help="service account JSON key file ('' clears it)")
    auth.add_argument("--project", default=None, help="Earth Engine project id ('' clears it)")
    auth.set_defaults(func=cmd_auth)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
