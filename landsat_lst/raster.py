"""
Deferred raster expressions.

A RasterExpr is an immutable node in a map-algebra graph. Builder methods only
compose new nodes; nothing is computed until an engine materializes the graph
or reduces it over a region.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Sequence, Union

Number = Union[int, float]

# Reducers understood by every engine for region reductions
REGION_REDUCERS = ("mean", "stddev", "sum", "count", "min", "max")

# Pixel-wise reducers across a stack of expressions
STACK_REDUCERS = ("mean", "max", "min", "first")


class RasterExpr:
    """A lazily evaluated single-band raster."""

    __slots__ = ("op", "args", "params")

    def __init__(self, op: str, args: Sequence["RasterExpr"] = (), params: Optional[Dict[str, Any]] = None):
        self.op = op
        self.args = tuple(args)
        self.params = dict(params or {})

    def __repr__(self):
        if self.op == "source":
            return f"RasterExpr(source {self.params.get('name')!r})"
        if self.op == "constant":
            return f"RasterExpr(constant {self.params['value']!r})"
        return f"RasterExpr({self.op}, {len(self.args)} args)"

    # ---- leaves ----

    @classmethod
    def source(cls, payload: Any, name: Optional[str] = None) -> "RasterExpr":
        """Wrap an engine-specific band (numpy array, ee.Image, ...)."""
        return cls("source", params={"payload": payload, "name": name})

    @classmethod
    def constant(cls, value: Number) -> "RasterExpr":
        return cls("constant", params={"value": float(value)})

    @classmethod
    def reduce_stack(cls, reducer: str, exprs: Iterable["RasterExpr"]) -> "RasterExpr":
        """Pixel-wise reduction across an ordered series of rasters."""
        if reducer not in STACK_REDUCERS:
            raise ValueError(f"Unsupported stack reducer: {reducer}")
        exprs = tuple(exprs)
        if not exprs:
            raise ValueError("Cannot reduce an empty raster series")
        return cls("stack", exprs, {"reducer": reducer})

    @property
    def name(self) -> Optional[str]:
        return self.params.get("name") if self.op == "source" else None

    # ---- helpers ----

    def _binary(self, op: str, other: Union["RasterExpr", Number]) -> "RasterExpr":
        return RasterExpr(op, (self, _as_expr(other)))

    # ---- arithmetic ----

    def add(self, other):
        return self._binary("add", other)

    def subtract(self, other):
        return self._binary("subtract", other)

    def multiply(self, other):
        return self._binary("multiply", other)

    def divide(self, other):
        return self._binary("divide", other)

    def power(self, other):
        return self._binary("pow", other)

    def round(self) -> "RasterExpr":
        """Round half away from zero to the nearest integer."""
        return RasterExpr("round", (self,))

    def abs(self) -> "RasterExpr":
        return RasterExpr("abs", (self,))

    def quantize(self, decimals: int = 4) -> "RasterExpr":
        """round(x * 10**decimals) / 10**decimals"""
        factor = 10 ** decimals
        return self.multiply(factor).round().divide(factor)

    # ---- comparisons (1.0 where true, 0.0 where false) ----

    def gt(self, other):
        return self._binary("gt", other)

    def gte(self, other):
        return self._binary("gte", other)

    def lt(self, other):
        return self._binary("lt", other)

    def lte(self, other):
        return self._binary("lte", other)

    def eq(self, other):
        return self._binary("eq", other)

    def neq(self, other):
        return self._binary("neq", other)

    # ---- logic ----

    def logical_and(self, other):
        return self._binary("and", other)

    def logical_or(self, other):
        return self._binary("or", other)

    def logical_not(self) -> "RasterExpr":
        return RasterExpr("not", (self,))

    def bitwise_and(self, other):
        return self._binary("bitwise_and", other)

    def bit_is_set(self, bit: int) -> "RasterExpr":
        """1.0 where the given bit of the integer value is set."""
        return self.bitwise_and(1 << bit).neq(0)

    # ---- masking ----

    def update_mask(self, mask: Union["RasterExpr", Number]) -> "RasterExpr":
        """Invalidate pixels where ``mask`` is zero or itself invalid."""
        return self._binary("update_mask", mask)

    def where(self, condition: "RasterExpr", value: Union["RasterExpr", Number]) -> "RasterExpr":
        """Replace values with ``value`` where ``condition`` is valid and non-zero.

        Pixels already invalid in this raster stay invalid.
        """
        return RasterExpr("where", (self, _as_expr(condition), _as_expr(value)))

    def mask(self) -> "RasterExpr":
        """1.0 where valid, 0.0 where invalid. The result has no invalid pixels."""
        return RasterExpr("mask", (self,))

    def unmask(self, value: Number = 0) -> "RasterExpr":
        return RasterExpr("unmask", (self,), {"value": float(value)})

    # ---- resolution ----

    def at_scale(self, scale: Optional[float]) -> "RasterExpr":
        """The raster as seen at ``scale`` meters per pixel.

        Pixels of one analysis cell share the mean of its valid values, so
        masks built on the result agree with a region reduction at that scale.
        """
        if not scale:
            return self
        return RasterExpr("at_scale", (self,), {"scale": float(scale)})

    def in_range(self, low: Number, high: Number, inclusive: bool = True) -> "RasterExpr":
        if inclusive:
            return self.gte(low).logical_and(self.lte(high))
        return self.gt(low).logical_and(self.lt(high))


def _as_expr(value: Union[RasterExpr, Number]) -> RasterExpr:
    if isinstance(value, RasterExpr):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected RasterExpr or number, got {type(value).__name__}")
    return RasterExpr.constant(value)


class RasterEngine(ABC):
    """Executes RasterExpr graphs. Every call here is a blocking request."""

    @abstractmethod
    def materialize(self, expr: RasterExpr):
        """Evaluate ``expr`` into the engine's native raster type."""

    @abstractmethod
    def reduce_regions(self, exprs: Dict[str, RasterExpr], reducer: str, region=None,
                       scale: Optional[float] = None) -> Dict[str, Optional[float]]:
        """Reduce several rasters over ``region`` with one reducer in a single request.

        Returns a value per key, ``None`` where the region holds no valid pixel.
        """

    def reduce_region(self, expr: RasterExpr, reducers: Sequence[str] = ("mean",), region=None,
                      scale: Optional[float] = None) -> Dict[str, Optional[float]]:
        """Reduce one raster with several reducers, keyed by reducer name."""
        return {
            reducer: self.reduce_regions({"value": expr}, reducer, region=region, scale=scale)["value"]
            for reducer in reducers
        }


def check_reducer(reducer: str) -> str:
    if reducer not in REGION_REDUCERS:
        raise ValueError(f"Unsupported region reducer: {reducer}")
    return reducer
