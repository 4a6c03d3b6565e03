"""
Binned color scales for choropleth layers.

build_scale() is a pure function: the same values, palette and bin count
always produce the same scale, and no palette state is shared between
metrics.

Pretty breaks
-------------
With ``pretty=True`` the break points are rounded to 1, 2, 5 or 10 times a
power of ten, using the conventional ``pretty()`` rule found in R and most
plotting libraries. A requested bin count that has no even partition of the
domain is reduced to the nearest count that does: asking for 7 bins over
[0, 100] yields 5 bins of width 20. The effective count never exceeds the
request. This is intended. The effective count
is available as ``scale.n_bins`` and the request as ``scale.requested_bins``.
"""

import dataclasses
import math
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from branca.colormap import LinearColormap, linear
from loguru import logger

from .errors import ValueParseError

Palette = Union[str, Sequence[str]]

# pretty() tuning constants
_HIGH_U_BIAS = 1.5
_U5_BIAS = 0.5 + 1.5 * _HIGH_U_BIAS
_SHRINK_SMALL = 0.75
_ROUNDING_EPS = 1e-10


def pretty_breaks(lo: float, hi: float, n: int = 5) -> List[float]:
    """
    Compute roughly n + 1 equally spaced, round break points covering [lo, hi].

    The number of intervals returned may differ from n.
    """
    if n < 1:
        raise ValueError(f"Bin count must be at least 1, got {n}")
    if not (math.isfinite(lo) and math.isfinite(hi)):
        raise ValueError(f"Domain must be finite, got [{lo}, {hi}]")
    if lo > hi:
        lo, hi = hi, lo

    min_n = n // 3
    dx = hi - lo
    if dx == 0 and hi == 0:
        cell = 1.0
        i_small = True
    else:
        cell = max(abs(lo), abs(hi))
        u = 1 + (1 / (1 + _HIGH_U_BIAS) if _U5_BIAS >= 1.5 * _HIGH_U_BIAS + 0.5 else 1.5 / (1 + _U5_BIAS))
        u *= max(1, n) * sys.float_info.epsilon
        i_small = dx < cell * u * 3

    if i_small:
        if cell > 10:
            cell = 9 + cell / 10
        cell *= _SHRINK_SMALL
        if min_n > 1:
            cell /= min_n
    else:
        cell = dx
        if n > 1:
            cell /= n

    cell = max(cell, 20 * sys.float_info.min)

    base = 10.0 ** math.floor(math.log10(cell))
    unit = base
    if 2 * base - cell < _HIGH_U_BIAS * (cell - unit):
        unit = 2 * base
        if 5 * base - cell < _U5_BIAS * (cell - unit):
            unit = 5 * base
            if 10 * base - cell < _HIGH_U_BIAS * (cell - unit):
                unit = 10 * base

    ns = math.floor(lo / unit + _ROUNDING_EPS)
    nu = math.ceil(hi / unit - _ROUNDING_EPS)
    while ns * unit > lo + _ROUNDING_EPS * unit:
        ns -= 1
    while nu * unit < hi - _ROUNDING_EPS * unit:
        nu += 1

    k = int(0.5 + nu - ns)
    if k < min_n:
        k = min_n - k
        if ns >= 0:
            nu += k // 2
            ns -= k // 2 + k % 2
        else:
            ns -= k // 2
            nu += k // 2 + k % 2
        k = min_n

    return [float(f"{(ns + i) * unit:.12g}") for i in range(k + 1)]


def even_breaks(lo: float, hi: float, n: int) -> List[float]:
    """n equal-width intervals over [lo, hi]; a zero-width domain is widened by 0.5."""
    if n < 1:
        raise ValueError(f"Bin count must be at least 1, got {n}")
    if lo == hi:
        lo, hi = lo - 0.5, hi + 0.5
    return np.linspace(lo, hi, n + 1).tolist()


def pretty_breaks_at_most(lo: float, hi: float, bins: int) -> List[float]:
    """
    Pretty breaks with no more than `bins` intervals.

    pretty() may overshoot the request, so smaller targets are tried until
    the result fits. Falls back to even breaks when no target fits.
    """
    for n in range(bins, 0, -1):
        breaks = pretty_breaks(lo, hi, n)
        if len(breaks) - 1 <= bins:
            return breaks
    return even_breaks(lo, hi, bins)


def resolve_palette(palette: Palette) -> LinearColormap:
    """Look up a branca/ColorBrewer palette by name, or build one from a color list."""
    if not isinstance(palette, str):
        colors = list(palette)
        if not colors:
            raise ValueError("Palette color list is empty")
        if len(colors) == 1:
            colors = colors * 2
        return LinearColormap(colors, vmin=0, vmax=1)

    colormap = getattr(linear, palette, None)
    if colormap is None:
        # "YlOrRd" -> the richest variant, e.g. "YlOrRd_09"
        variants = sorted(name for name in dir(linear) if name.startswith(f"{palette}_"))
        if not variants:
            raise ValueError(f"Unknown palette: {palette!r}")
        colormap = getattr(linear, variants[-1])
    return colormap.scale(0, 1)


def sample_palette(palette: Palette, n: int) -> Tuple[str, ...]:
    """Take n evenly spaced colors from a palette, low to high."""
    colormap = resolve_palette(palette)
    positions = [0.5] if n == 1 else np.linspace(0, 1, n).tolist()
    return tuple(colormap.rgb_hex_str(x) for x in positions)


def format_number(value: float, digits: Optional[int] = None) -> str:
    """Round to `digits` significant figures (raw when None) with thousands separators."""
    if digits is not None:
        value = float(f"{value:.{digits}g}")
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,}"


@dataclass(frozen=True)
class BinnedColorScale:
    """
    Maps numeric values to one color per bin.

    Bins are half-open [b_i, b_i+1) except the last, which includes the
    maximum. Missing values and values outside the breaks map to na_color.
    ``descending`` changes legend order only, never the value-to-color mapping.
    """

    breaks: Tuple[float, ...]
    colors: Tuple[str, ...]
    na_color: str = "#bdbdbd"
    requested_bins: Optional[int] = None
    descending: bool = False

    def __post_init__(self):
        if len(self.breaks) != len(self.colors) + 1:
            raise ValueError(
                f"{len(self.breaks)} breaks cannot delimit {len(self.colors)} color bins"
            )

    @property
    def n_bins(self) -> int:
        return len(self.colors)

    @property
    def domain(self) -> Tuple[float, float]:
        return self.breaks[0], self.breaks[-1]

    def bin_index(self, value) -> Optional[int]:
        if value is None:
            return None
        try:
            value = float(value)
        except (TypeError, ValueError):
            return None
        if math.isnan(value) or value < self.breaks[0] or value > self.breaks[-1]:
            return None
        if value == self.breaks[-1]:
            return self.n_bins - 1
        return int(np.searchsorted(self.breaks, value, side="right")) - 1

    def __call__(self, value) -> str:
        index = self.bin_index(value)
        if index is None:
            return self.na_color
        return self.colors[index]

    def reversed(self) -> "BinnedColorScale":
        return dataclasses.replace(self, descending=not self.descending)

    def legend_entries(self, digits: Optional[int] = None, prefix: str = "") -> List[Tuple[str, str]]:
        entries = []
        for i, color in enumerate(self.colors):
            lower = format_number(self.breaks[i], digits)
            upper = format_number(self.breaks[i + 1], digits)
            entries.append((f"{prefix}{lower} – {prefix}{upper}", color))
        if self.descending:
            entries.reverse()
        return entries


def build_scale(
    values: Union[pd.Series, Sequence[float]],
    palette: Palette,
    bins: int = 5,
    pretty: bool = True,
    na_color: str = "#bdbdbd",
    reverse: bool = False,
) -> BinnedColorScale:
    """
    Build a binned color scale over the numeric domain of `values`.

    Args:
        values: Numeric metric values; NaN/None are ignored for the domain
        palette: Palette name or explicit list of colors (low to high)
        bins: Requested number of bins
        pretty: Round break points, possibly with fewer bins than requested
        na_color: Color for missing or out-of-domain values
        reverse: List legend entries largest-first

    Raises:
        ValueParseError: no numeric values to build a domain from
    """
    numeric = pd.to_numeric(pd.Series(values, dtype="object"), errors="coerce")
    numeric = numeric[np.isfinite(numeric.astype("float64"))]
    if numeric.empty:
        name = getattr(values, "name", None)
        raise ValueParseError("No numeric values to build a color scale from", column=name)

    lo, hi = float(numeric.min()), float(numeric.max())
    breaks = pretty_breaks_at_most(lo, hi, bins) if pretty else even_breaks(lo, hi, bins)
    effective = len(breaks) - 1

    if effective != bins:
        logger.debug(
            f"     Pretty breaks over [{lo:g}, {hi:g}] use {effective} bins "
            f"instead of the requested {bins}"
        )

    return BinnedColorScale(
        breaks=tuple(breaks),
        colors=sample_palette(palette, effective),
        na_color=na_color,
        requested_bins=bins,
        descending=reverse,
    )
