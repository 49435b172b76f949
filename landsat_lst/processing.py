"""
Main processing logic: one composite per time period.
"""
import os
import logging
import concurrent.futures
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from .compositor import TemporalCompositor
from .config import MANIFEST_CSV
from .errors import ConfigurationError, LstError, NoImagesFoundError
from .export import (
    DriveExporter,
    LocalExporter,
    PeriodProduct,
    compose_filename,
    path_row_summary,
    scene_records,
)
from .harmonizer import InMemorySceneSource, SceneHarmonizer
from .histogram import DistributionSummarizer
from .providers import load_provider
from .scenes import SceneFilter
from .settings import RunContext

EXPORTED = "exported"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class PeriodOutcome:
    start: str
    end: str
    status: str
    name: Optional[str] = None
    scenes: int = 0
    outputs: Dict[str, str] = field(default_factory=dict)
    message: str = ""


@dataclass
class Pipeline:
    """Collaborators shared by every period of a run."""
    context: RunContext
    harmonizer: SceneHarmonizer
    compositor: TemporalCompositor
    summarizer: DistributionSummarizer
    exporter: object = None
    # Region in the engine's coordinates; the configured region is lon/lat
    analysis_region: object = None


def build_pipeline(context: RunContext) -> Pipeline:
    """Wire engine, scene source, models and exporter from the run configuration."""
    output_type = context.output.get("type", "local")
    if context.engine == "local":
        from .local_engine import load_local_scenes

        if not context.local.get("scenes"):
            raise ConfigurationError("The local engine needs a 'local.scenes' list")
        engine, scenes = load_local_scenes(context.local["scenes"], context.local.get("grid"))
        source = InMemorySceneSource(scenes)
        region = engine.grid.project_region(context.region.geometry, context.local.get("region_crs", "EPSG:4326"))
    else:
        from .ee_collections import EarthEngineSceneSource
        from .ee_engine import EarthEngine

        engine = EarthEngine()
        source = EarthEngineSceneSource()
        region = context.region.geometry

    if output_type == "local":
        if context.engine != "local":
            raise ConfigurationError("Local GeoTIFF output needs the local engine; use output type 'drive'")
        exporter = LocalExporter(engine, context.outdir)
    elif output_type == "drive":
        if context.engine != "ee":
            raise ConfigurationError("Drive output needs the Earth Engine engine")
        exporter = DriveExporter(engine, context.output.get("folder", "landsat_lst"),
                                 wait=bool(context.output.get("wait", False)),
                                 manifest_path=os.path.join(context.outdir, MANIFEST_CSV))
    elif output_type == "none":
        exporter = None
    else:
        raise ConfigurationError(f"Unknown output type {output_type!r}. Use 'local', 'drive' or 'none'.")

    models = context.models
    harmonizer = SceneHarmonizer(
        source,
        split_window=load_provider(models.get("split_window")),
        tpw=load_provider(models.get("tpw")),
        aster_emissivity=load_provider(models.get("aster_emissivity")),
        fvc=load_provider(models.get("fvc")),
    )
    # Fail before any period starts
    harmonizer.check_method(context.method)

    return Pipeline(
        context=context,
        harmonizer=harmonizer,
        compositor=TemporalCompositor(engine, region=region),
        summarizer=DistributionSummarizer(engine),
        exporter=exporter,
        analysis_region=region,
    )


def process_period(pipeline: Pipeline, start: str, end: str) -> PeriodOutcome:
    """Harmonize, composite, summarize and export one period."""
    ctx = pipeline.context
    region = ctx.region.geometry
    scene_filter = SceneFilter(start, end, region, ctx.cloud_min, ctx.cloud_max)
    name = compose_filename(ctx.region.label, start, end, ctx.cloud_min, ctx.cloud_max, ctx.statistic, ctx.method)
    logging.info(f"Processing {start} to {end} ({name})")

    try:
        collection = pipeline.harmonizer.merged(ctx.sensors, scene_filter, ctx.method)
        summary = path_row_summary(collection)
        if summary:
            logging.info(f"WRS path/row for {start} to {end}:\n{summary}")
        composite = pipeline.compositor.compose(collection, ctx.statistic, start, end)
    except NoImagesFoundError as e:
        logging.warning(f"{e}; period skipped")
        return PeriodOutcome(start, end, SKIPPED, name, message=str(e))
    except ConfigurationError:
        raise
    except LstError as e:
        logging.error(f"Period {start} to {end} failed: {e}")
        return PeriodOutcome(start, end, FAILED, name, message=str(e))

    bins = pipeline.summarizer.histogram(composite.image, pipeline.analysis_region)
    records = scene_records(composite, ctx.local_time_offset_hours)
    logging.info(f"{name}: {len(composite.scenes)} scenes, statistic {composite.statistic.value}")

    outputs = {}
    if pipeline.exporter is not None:
        product = PeriodProduct(name, start, end, composite, bins, records, region)
        outputs = pipeline.exporter.export(product)
    return PeriodOutcome(start, end, EXPORTED, name, len(composite.scenes), outputs)


def _add_run_log(outdir: str) -> Tuple[logging.Handler, str]:
    os.makedirs(outdir, exist_ok=True)
    run_log_path = os.path.join(outdir, f"processing_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")
    run_file_handler = logging.FileHandler(run_log_path, encoding='utf-8', mode='w')
    run_file_handler.setLevel(logging.DEBUG)
    run_file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] [%(filename)s:%(lineno)d] %(message)s"))
    logging.getLogger().addHandler(run_file_handler)
    logging.info(f"Processing log file: {run_log_path}")
    return run_file_handler, run_log_path


def process_periods(pipeline: Pipeline, periods: Optional[List[Tuple[str, str]]] = None,
                    workers: Optional[int] = None) -> List[PeriodOutcome]:
    """
    Process every period, optionally several at once.

    Periods share no mutable state, so they run on a thread pool when
    ``workers`` > 1. Outcomes are returned in period order.
    """
    periods = periods if periods is not None else pipeline.context.periods
    workers = max(1, workers or pipeline.context.workers)
    run_file_handler, _ = _add_run_log(pipeline.context.outdir)
    outcomes: Dict[int, PeriodOutcome] = {}

    try:
        pbar = tqdm(total=len(periods), desc="Periods", unit="period", ncols=100)
        if workers == 1:
            for i, (start, end) in enumerate(periods):
                outcomes[i] = process_period(pipeline, start, end)
                pbar.update(1)
        else:
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
                futures = {ex.submit(process_period, pipeline, start, end): i
                           for i, (start, end) in enumerate(periods)}
                for fut in concurrent.futures.as_completed(futures):
                    outcomes[futures[fut]] = fut.result()
                    pbar.update(1)
        pbar.close()
    finally:
        logging.getLogger().removeHandler(run_file_handler)
        run_file_handler.close()

    ordered = [outcomes[i] for i in range(len(periods))]
    exported = sum(1 for o in ordered if o.status == EXPORTED)
    skipped = sum(1 for o in ordered if o.status == SKIPPED)
    logging.info(f"Run complete: {exported} exported, {skipped} skipped, {len(ordered) - exported - skipped} failed")
    return ordered
