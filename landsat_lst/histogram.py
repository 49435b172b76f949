"""
Fixed-bin temperature histogram of a composite over the region.
"""
import logging
import math
from dataclasses import dataclass
from typing import List, Optional

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt

from .config import HISTOGRAM_BIN_WIDTH, HISTOGRAM_MAX, HISTOGRAM_MIN, HISTOGRAM_SCALE
from .raster import RasterEngine, RasterExpr


@dataclass(frozen=True)
class HistogramBin:
    lower: float
    upper: float
    count: int

    @property
    def label(self) -> str:
        return f"{self.lower:.1f} - {self.upper:.1f} °C"


def bin_edges(minimum: float = HISTOGRAM_MIN, maximum: float = HISTOGRAM_MAX,
              width: float = HISTOGRAM_BIN_WIDTH) -> List[tuple]:
    """floor((max - min) / width) contiguous [lower, upper) pairs, last upper clamped to max."""
    if width <= 0:
        raise ValueError("Histogram bin width must be positive")
    n_bins = int(math.floor((maximum - minimum) / width))
    edges = []
    for i in range(n_bins):
        lower = minimum + i * width
        edges.append((lower, min(lower + width, maximum)))
    return edges


class DistributionSummarizer:
    """Counts composite pixels per temperature bin with one batched reduction."""

    def __init__(self, engine: RasterEngine, scale: float = HISTOGRAM_SCALE):
        self.engine = engine
        self.scale = scale

    def histogram(self, composite: RasterExpr, region=None, minimum: float = HISTOGRAM_MIN,
                  maximum: float = HISTOGRAM_MAX, width: float = HISTOGRAM_BIN_WIDTH,
                  scale: Optional[float] = None) -> List[HistogramBin]:
        edges = bin_edges(minimum, maximum, width)
        scale = scale or self.scale
        # Bin the value each analysis cell takes, so a cell lands in one bin only
        value = composite.at_scale(scale)
        exprs = {
            f"bin_{i}": value.update_mask(value.gte(lower).logical_and(value.lt(upper)))
            for i, (lower, upper) in enumerate(edges)
        }
        counts = self.engine.reduce_regions(exprs, "count", region=region, scale=scale)
        bins = [HistogramBin(lower, upper, int(counts.get(f"bin_{i}") or 0))
                for i, (lower, upper) in enumerate(edges)]
        logging.debug(f"Histogram: {sum(b.count for b in bins)} pixels in {len(bins)} bins")
        return bins


def plot_histogram(bins: List[HistogramBin], path: str, title: str = "LST distribution") -> str:
    """Save the histogram as a column chart PNG."""
    fig, ax = plt.subplots(figsize=(12, 5))
    try:
        labels = [b.label for b in bins]
        ax.bar(range(len(bins)), [b.count for b in bins], color="#d9534f", edgecolor="black", linewidth=0.5)
        ax.set_xticks(range(len(bins)))
        ax.set_xticklabels(labels, rotation=60, ha="right", fontsize=7)
        ax.set_xlabel("Temperature range")
        ax.set_ylabel("Pixel count")
        ax.set_title(title)
        fig.tight_layout()
        fig.savefig(path, dpi=150)
    finally:
        plt.close(fig)
    logging.info(f"Histogram chart saved: {path}")
    return path
