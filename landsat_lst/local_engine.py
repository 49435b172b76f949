"""
In-process raster engine backed by numpy masked arrays.

All rasters evaluated by one engine share a single LocalGrid. Regions are
shapely geometries in the grid's CRS (see LocalGrid.project_region) and are
burned into pixel weights with rasterio. Region reductions at a scale coarser
than the grid first average valid pixels into blocks, weighting each block by
the share of it that lies inside the region.
"""
import math
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import pyproj
import rasterio
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from shapely.ops import transform as shapely_transform

from .raster import RasterEngine, RasterExpr, check_reducer
from .scenes import Scene, SceneMetadata, as_utc


@dataclass(frozen=True)
class LocalGrid:
    """Pixel grid shared by every band evaluated by a LocalEngine."""
    transform: Affine
    width: int
    height: int
    crs: Optional[str] = None

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @property
    def pixel_size(self) -> float:
        return abs(self.transform.a)

    @classmethod
    def from_dataset(cls, dataset) -> "LocalGrid":
        crs = dataset.crs.to_string() if dataset.crs else None
        return cls(dataset.transform, dataset.width, dataset.height, crs)

    def region_weights(self, region) -> np.ndarray:
        """1.0 for pixels whose centre falls inside ``region``, 0.0 elsewhere."""
        if region is None:
            return np.ones(self.shape, dtype=np.float64)
        inside = geometry_mask([region], out_shape=self.shape, transform=self.transform, invert=True)
        return inside.astype(np.float64)

    def project_region(self, region, crs: str = "EPSG:4326"):
        """Reproject a region given in ``crs`` (lon/lat by default) to the grid's CRS."""
        if region is None or not self.crs:
            return region
        if pyproj.CRS.from_user_input(crs) == pyproj.CRS.from_user_input(self.crs):
            return region
        to_grid = pyproj.Transformer.from_crs(crs, self.crs, always_xy=True).transform
        return shapely_transform(to_grid, region)


def _masked(data: np.ndarray, mask: np.ndarray) -> np.ma.MaskedArray:
    mask = mask | ~np.isfinite(data)
    return np.ma.MaskedArray(data, mask=mask)


def _round_half_away(x: np.ndarray) -> np.ndarray:
    return np.sign(x) * np.floor(np.abs(x) + 0.5)


_ARITHMETIC = {
    "add": np.add,
    "subtract": np.subtract,
    "multiply": np.multiply,
    "divide": np.divide,
    "pow": np.power,
    "gt": np.greater,
    "gte": np.greater_equal,
    "lt": np.less,
    "lte": np.less_equal,
    "eq": np.equal,
    "neq": np.not_equal,
}


class LocalEngine(RasterEngine):
    """Evaluates RasterExpr graphs eagerly on numpy masked arrays."""

    def __init__(self, grid: LocalGrid):
        self.grid = grid

    # ---- band construction ----

    def band(self, values, name: Optional[str] = None, nodata: Optional[float] = None) -> RasterExpr:
        """Wrap an array (plain, masked, or with NaN gaps) as a source band."""
        arr = np.ma.masked_invalid(np.ma.asarray(values, dtype=np.float64))
        if nodata is not None:
            arr = np.ma.masked_where(arr.filled(np.nan) == nodata, arr)
        if arr.shape != self.grid.shape:
            raise ValueError(f"Band {name!r} has shape {arr.shape}, grid is {self.grid.shape}")
        return RasterExpr.source(arr, name)

    def load_band(self, path: str, band: int = 1, name: Optional[str] = None) -> RasterExpr:
        """Read one band of a GeoTIFF aligned with this engine's grid."""
        with rasterio.open(path) as src:
            if (src.width, src.height) != (self.grid.width, self.grid.height):
                raise ValueError(f"{path} is {src.width}x{src.height}, grid is {self.grid.width}x{self.grid.height}")
            data = src.read(band, masked=True)
        logging.debug(f"Loaded band {band} from {path}")
        return self.band(data, name or f"{path}:{band}")

    # ---- evaluation ----

    def materialize(self, expr: RasterExpr) -> np.ma.MaskedArray:
        return self._evaluate(expr, {})

    def _evaluate(self, expr: RasterExpr, memo: Dict[int, np.ma.MaskedArray]) -> np.ma.MaskedArray:
        key = id(expr)
        if key in memo:
            return memo[key]
        if expr.op == "source":
            result = self._source(expr)
        elif expr.op == "constant":
            result = np.ma.MaskedArray(np.full(self.grid.shape, expr.params["value"]),
                                       mask=np.zeros(self.grid.shape, dtype=bool))
        else:
            args = [self._evaluate(arg, memo) for arg in expr.args]
            result = self._apply(expr, args)
        memo[key] = result
        return result

    def _source(self, expr: RasterExpr) -> np.ma.MaskedArray:
        payload = expr.params["payload"]
        if not isinstance(payload, np.ndarray):
            raise TypeError(f"LocalEngine cannot evaluate source band {expr.name!r} of type {type(payload).__name__}")
        arr = np.ma.asarray(payload, dtype=np.float64)
        return np.ma.MaskedArray(arr.data, mask=np.ma.getmaskarray(arr).copy())

    def _apply(self, expr: RasterExpr, args) -> np.ma.MaskedArray:
        op = expr.op
        with np.errstate(all="ignore"):
            if op in _ARITHMETIC:
                a, b = args
                data = _ARITHMETIC[op](a.data, b.data).astype(np.float64)
                return _masked(data, np.ma.getmaskarray(a) | np.ma.getmaskarray(b))
            if op in ("and", "or"):
                a, b = args
                func = np.logical_and if op == "and" else np.logical_or
                data = func(a.data != 0, b.data != 0).astype(np.float64)
                return _masked(data, np.ma.getmaskarray(a) | np.ma.getmaskarray(b))
            if op == "not":
                (a,) = args
                return _masked((a.data == 0).astype(np.float64), np.ma.getmaskarray(a))
            if op == "bitwise_and":
                a, b = args
                left = np.nan_to_num(a.filled(0)).astype(np.int64)
                right = np.nan_to_num(b.filled(0)).astype(np.int64)
                data = np.bitwise_and(left, right).astype(np.float64)
                return _masked(data, np.ma.getmaskarray(a) | np.ma.getmaskarray(b))
            if op == "round":
                (a,) = args
                return _masked(_round_half_away(a.data), np.ma.getmaskarray(a))
            if op == "abs":
                (a,) = args
                return _masked(np.abs(a.data), np.ma.getmaskarray(a))
            if op == "update_mask":
                a, m = args
                invalid = np.ma.getmaskarray(a) | np.ma.getmaskarray(m) | (m.data == 0)
                return np.ma.MaskedArray(a.data, mask=invalid)
            if op == "where":
                a, cond, value = args
                replace = ~np.ma.getmaskarray(cond) & (cond.data != 0)
                data = np.where(replace, value.data, a.data)
                invalid = np.ma.getmaskarray(a) | (replace & np.ma.getmaskarray(value))
                return np.ma.MaskedArray(data, mask=invalid)
            if op == "mask":
                (a,) = args
                valid = (~np.ma.getmaskarray(a)).astype(np.float64)
                return np.ma.MaskedArray(valid, mask=np.zeros(self.grid.shape, dtype=bool))
            if op == "unmask":
                (a,) = args
                data = a.filled(expr.params["value"]).astype(np.float64)
                return np.ma.MaskedArray(data, mask=np.zeros(self.grid.shape, dtype=bool))
            if op == "at_scale":
                (a,) = args
                return _spread(a, self._coarsening_factor(expr.params["scale"]))
            if op == "stack":
                return self._reduce_stack(expr.params["reducer"], args)
        raise ValueError(f"LocalEngine does not support operation {op!r}")

    def _reduce_stack(self, reducer: str, layers) -> np.ma.MaskedArray:
        if reducer == "first":
            data = np.zeros(self.grid.shape, dtype=np.float64)
            missing = np.ones(self.grid.shape, dtype=bool)
            for layer in layers:
                take = missing & ~np.ma.getmaskarray(layer)
                data[take] = layer.data[take]
                missing &= ~take
            return np.ma.MaskedArray(data, mask=missing)

        stack = np.ma.stack(layers)
        if reducer == "mean":
            reduced = stack.mean(axis=0)
        elif reducer == "max":
            reduced = stack.max(axis=0)
        else:
            reduced = stack.min(axis=0)
        reduced = np.ma.asarray(reduced)
        return np.ma.MaskedArray(reduced.filled(0.0).astype(np.float64), mask=np.ma.getmaskarray(reduced).copy())

    # ---- region reductions ----

    def reduce_regions(self, exprs: Dict[str, RasterExpr], reducer: str, region=None,
                       scale: Optional[float] = None) -> Dict[str, Optional[float]]:
        check_reducer(reducer)
        weights = self.grid.region_weights(region)
        factor = self._coarsening_factor(scale)
        memo = {}
        results = {}
        for key, expr in exprs.items():
            values, block_weights = _coarsen(self._evaluate(expr, memo), weights, factor)
            results[key] = _reduce(values, block_weights, reducer)
        return results

    def _coarsening_factor(self, scale: Optional[float]) -> int:
        if not scale:
            return 1
        return max(1, int(round(scale / self.grid.pixel_size)))


def _coarsen(values: np.ma.MaskedArray, weights: np.ndarray, factor: int):
    """Average valid pixels into factor x factor blocks."""
    if factor == 1:
        return values, weights
    h, w = values.shape
    ph, pw = (-h) % factor, (-w) % factor
    data = np.pad(values.filled(0.0), ((0, ph), (0, pw)))
    valid = np.pad(~np.ma.getmaskarray(values), ((0, ph), (0, pw)))
    region = np.pad(weights, ((0, ph), (0, pw)))
    bh, bw = data.shape[0] // factor, data.shape[1] // factor

    def blocks(arr):
        return arr.reshape(bh, factor, bw, factor)

    counts = blocks(valid).sum(axis=(1, 3))
    sums = blocks(data * valid).sum(axis=(1, 3))
    with np.errstate(all="ignore"):
        means = np.where(counts > 0, sums / np.maximum(counts, 1), 0.0)
    block_weights = blocks(region).mean(axis=(1, 3))
    return np.ma.MaskedArray(means, mask=counts == 0), block_weights


def _spread(values: np.ma.MaskedArray, factor: int) -> np.ma.MaskedArray:
    """Give every pixel of a factor x factor block the block's mean, on the native grid."""
    if factor == 1:
        return values
    h, w = values.shape
    means, _ = _coarsen(values, np.zeros(values.shape), factor)

    def expand(arr):
        return np.repeat(np.repeat(arr, factor, axis=0), factor, axis=1)[:h, :w]

    return np.ma.MaskedArray(expand(means.data), mask=expand(np.ma.getmaskarray(means)))


def _reduce(values: np.ma.MaskedArray, weights: np.ndarray, reducer: str) -> Optional[float]:
    selected = ~np.ma.getmaskarray(values) & (weights > 0)
    if reducer == "count":
        return float(selected.sum())
    if not selected.any():
        return 0.0 if reducer == "sum" else None
    v = values.data[selected]
    w = weights[selected]
    if reducer == "sum":
        return float(np.sum(v * w))
    if reducer == "min":
        return float(v.min())
    if reducer == "max":
        return float(v.max())
    mean = float(np.sum(v * w) / np.sum(w))
    if reducer == "mean":
        return mean
    variance = float(np.sum(w * (v - mean) ** 2) / np.sum(w))
    return math.sqrt(max(variance, 0.0))


def load_local_scenes(entries, grid_path: Optional[str] = None):
    """
    Build a LocalEngine and Scenes from GeoTIFF band files.

    Args:
        entries: dicts with image_id, sensor_id, acquired, optional cloud_cover,
            path, row, sun_azimuth, sun_elevation, and a "bands" map of band
            name to GeoTIFF path
        grid_path: raster defining the shared grid, defaults to the first band file

    Returns:
        (engine, scenes)
    """
    entries = list(entries)
    if not entries:
        raise ValueError("No local scenes configured")
    if grid_path is None:
        grid_path = next(iter(entries[0]["bands"].values()))
    with rasterio.open(grid_path) as src:
        engine = LocalEngine(LocalGrid.from_dataset(src))

    scenes = []
    for entry in entries:
        metadata = SceneMetadata(
            image_id=entry["image_id"],
            sensor_id=entry["sensor_id"],
            acquired=as_utc(entry["acquired"]),
            cloud_cover=entry.get("cloud_cover"),
            path=entry.get("path"),
            row=entry.get("row"),
            sun_azimuth=entry.get("sun_azimuth"),
            sun_elevation=entry.get("sun_elevation"),
            spacecraft=entry.get("spacecraft"),
        )
        bands = {name: engine.load_band(path, name=name) for name, path in entry["bands"].items()}
        scenes.append(Scene(metadata, bands))
    logging.info(f"Loaded {len(scenes)} local scenes on a {engine.grid.width}x{engine.grid.height} grid")
    return engine, scenes
