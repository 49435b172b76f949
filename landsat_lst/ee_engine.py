"""
Earth Engine backend: compiles RasterExpr graphs to ee.Image and runs region
reductions server-side.
"""
import logging
from typing import Dict, Optional, Sequence

import ee
from shapely.geometry import mapping

from .config import EE_BEST_EFFORT, EE_MAX_PIXELS, EE_TILE_SCALE
from .raster import RasterEngine, RasterExpr, check_reducer

_BINARY_METHODS = {
    "add": "add",
    "subtract": "subtract",
    "multiply": "multiply",
    "divide": "divide",
    "pow": "pow",
    "gt": "gt",
    "gte": "gte",
    "lt": "lt",
    "lte": "lte",
    "eq": "eq",
    "neq": "neq",
    "and": "And",
    "or": "Or",
    "bitwise_and": "bitwiseAnd",
    "update_mask": "updateMask",
}

# ee.Reducer factory names; also the output suffix ee uses when reducers are combined
_REGION_REDUCERS = {
    "mean": "mean",
    "stddev": "stdDev",
    "sum": "sum",
    "count": "count",
    "min": "min",
    "max": "max",
}

_STACK_REDUCERS = {
    "mean": "mean",
    "max": "max",
    "min": "min",
    "first": "firstNonNull",
}


def _ee_reducer(name: str):
    return getattr(ee.Reducer, name)()


def to_ee_geometry(region):
    """Convert a shapely geometry (lon/lat) to ee.Geometry."""
    if region is None:
        return None
    if isinstance(region, ee.Geometry):
        return region
    return ee.Geometry(mapping(region))


class EarthEngine(RasterEngine):
    """Delegates evaluation to Google Earth Engine."""

    def __init__(self, max_pixels: float = EE_MAX_PIXELS, tile_scale: int = EE_TILE_SCALE,
                 best_effort: bool = EE_BEST_EFFORT):
        self.max_pixels = max_pixels
        self.tile_scale = tile_scale
        self.best_effort = best_effort

    def materialize(self, expr: RasterExpr) -> ee.Image:
        return self._compile(expr, {})

    def _compile(self, expr: RasterExpr, memo: Dict[int, ee.Image]) -> ee.Image:
        key = id(expr)
        if key in memo:
            return memo[key]
        op = expr.op
        if op == "source":
            image = ee.Image(expr.params["payload"])
        elif op == "constant":
            image = ee.Image.constant(expr.params["value"]).toFloat()
        elif op in _BINARY_METHODS:
            left = self._compile(expr.args[0], memo)
            right = self._compile(expr.args[1], memo)
            image = getattr(left, _BINARY_METHODS[op])(right)
        elif op == "not":
            image = self._compile(expr.args[0], memo).Not()
        elif op == "round":
            image = self._compile(expr.args[0], memo).round()
        elif op == "abs":
            image = self._compile(expr.args[0], memo).abs()
        elif op == "where":
            base, cond, value = (self._compile(arg, memo) for arg in expr.args)
            image = base.where(cond, value).updateMask(base.mask())
        elif op == "mask":
            image = self._compile(expr.args[0], memo).mask().unmask(0)
        elif op == "unmask":
            image = self._compile(expr.args[0], memo).unmask(expr.params["value"])
        elif op == "at_scale":
            # reduceRegion already evaluates the whole graph at the request scale
            image = self._compile(expr.args[0], memo)
        elif op == "stack":
            layers = [self._compile(arg, memo).rename("value") for arg in expr.args]
            reducer = _ee_reducer(_STACK_REDUCERS[expr.params["reducer"]])
            image = ee.ImageCollection.fromImages(layers).reduce(reducer)
        else:
            raise ValueError(f"EarthEngine does not support operation {op!r}")
        image = image.rename("value")
        memo[key] = image
        return image

    def _reduce(self, image: ee.Image, reducer, region, scale: Optional[float]) -> dict:
        params = {
            "reducer": reducer,
            "scale": scale,
            "maxPixels": self.max_pixels,
            "tileScale": self.tile_scale,
            "bestEffort": self.best_effort,
        }
        geometry = to_ee_geometry(region)
        if geometry is not None:
            params["geometry"] = geometry
        stats = image.reduceRegion(**params).getInfo() or {}
        logging.debug(f"Earth Engine reduceRegion returned {stats}")
        return stats

    def reduce_regions(self, exprs: Dict[str, RasterExpr], reducer: str, region=None,
                       scale: Optional[float] = None) -> Dict[str, Optional[float]]:
        check_reducer(reducer)
        memo = {}
        keys = list(exprs)
        # Keys may not be valid band names, so bands are numbered
        bands = [self._compile(exprs[key], memo).rename(f"b{i}") for i, key in enumerate(keys)]
        stats = self._reduce(ee.Image.cat(bands), _ee_reducer(_REGION_REDUCERS[reducer]), region, scale)
        return {key: _as_float(stats.get(f"b{i}")) for i, key in enumerate(keys)}

    def reduce_region(self, expr: RasterExpr, reducers: Sequence[str] = ("mean",), region=None,
                      scale: Optional[float] = None) -> Dict[str, Optional[float]]:
        for reducer in reducers:
            check_reducer(reducer)
        if len(reducers) == 1:
            return super().reduce_region(expr, reducers, region=region, scale=scale)

        combined = _ee_reducer(_REGION_REDUCERS[reducers[0]])
        for reducer in reducers[1:]:
            combined = combined.combine(reducer2=_ee_reducer(_REGION_REDUCERS[reducer]), sharedInputs=True)
        stats = self._reduce(self.materialize(expr), combined, region, scale)
        return {reducer: _as_float(stats.get(f"value_{_REGION_REDUCERS[reducer]}")) for reducer in reducers}


def _as_float(value) -> Optional[float]:
    return None if value is None else float(value)
