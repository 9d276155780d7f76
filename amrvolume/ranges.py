# -*- coding: utf-8 -*-

"""

Robust display ranges for colour mapping.

Ranges are picked from percentiles of the log-values so that a handful of
outlier cells cannot flatten the colour map, and are always widened to a usable
span: the result satisfies max > min > 0 for any input, including empty,
all-zero and single-valued fields.

"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Tuple

import numpy as np

logger = logging.getLogger("amrvolume")

RANGE_FLOOR = 1e-30
MIN_RATIO = 1.0001
DEFAULT_DENSITY_RANGE = (1e-30, 1e-24)
DEFAULT_TEMPERATURE_RANGE = (10.0, 1e8)
_FLOAT_MAX = float(np.finfo(np.float64).max)


@dataclass(frozen=True)
class RangeEstimate:
    """Density and temperature display bounds. Both pairs satisfy max > min > 0."""

    density_min: float
    density_max: float
    temperature_min: float
    temperature_max: float

    def scale_min_density(self, factor: float) -> "RangeEstimate":
        """
        Multiply the density minimum by `factor`.

        The new minimum is clamped to [1e-30, density_max * 0.999] so the range
        never inverts.
        """
        new_min = self.density_min * factor
        if not math.isfinite(new_min):
            new_min = self.density_max * 0.999
        new_min = min(max(new_min, RANGE_FLOOR), self.density_max * 0.999)
        return replace(self, density_min=new_min)


@dataclass
class RangeConfig:
    """
    Tunables for range estimation.

    Quantile pairs are chosen per density mode: absolute densities span many
    decades, so that mode clips less at the top.
    """

    robust: bool = True
    low_quantile: float = 0.05
    high_quantile: float = 0.95
    absolute_low_quantile: float = 0.01
    absolute_high_quantile: float = 0.995
    temperature_low_quantile: float = 0.05
    temperature_high_quantile: float = 0.95
    min_dynamic_range: float = 7.0
    widen_ratio: float = 100.0

    def density_quantiles(self, is_overdensity: bool) -> Tuple[float, float]:
        if is_overdensity:
            return self.low_quantile, self.high_quantile
        return self.absolute_low_quantile, self.absolute_high_quantile


def _guard(lo: float, hi: float) -> Tuple[float, float]:
    """Floor the minimum and keep the maximum strictly above it."""
    hi = min(hi, _FLOAT_MAX)
    lo = min(max(RANGE_FLOOR, lo), hi / MIN_RATIO)
    lo = max(RANGE_FLOOR, lo)
    hi = max(lo * MIN_RATIO, hi)
    return lo, hi


def _widen(lo: float, hi: float, min_dynamic_range: float, widen_ratio: float) -> Tuple[float, float]:
    """Recenter in log space and expand to `widen_ratio` if the span is narrower than `min_dynamic_range`."""
    if hi / lo >= min_dynamic_range:
        return lo, hi
    center = math.sqrt(lo) * math.sqrt(hi)
    half = math.sqrt(max(widen_ratio, min_dynamic_range, MIN_RATIO))
    return _guard(center / half, center * half)


def estimate_range(
    values,
    low_quantile: float,
    high_quantile: float,
    robust: bool = True,
    default_range: Tuple[float, float] = DEFAULT_DENSITY_RANGE,
    min_dynamic_range: float = 7.0,
    widen_ratio: float = 100.0,
) -> Tuple[float, float]:
    """
    Display range (lo, hi) for a set of samples.

    Args:
        values: samples; non-finite entries are ignored.
        low_quantile, high_quantile: percentile positions in [0, 1].
        robust: percentile clipping in log space of the positive samples; when
                False, the raw observed min/max is used.
        default_range: returned (after guards) when there is nothing to estimate from.
        min_dynamic_range: smallest acceptable hi/lo before widening.
        widen_ratio: hi/lo after widening a degenerate range.

    Returns:
        (lo, hi) with hi > lo > 0.
    """
    values = np.asarray(values, dtype=np.float64).reshape(-1)
    values = values[np.isfinite(values)]

    if robust:
        positive = values[values > 0.0]
        if len(positive):
            logs = np.sort(np.log(positive))
            n = len(logs)
            qlo = min(max(low_quantile, 0.0), 1.0)
            qhi = min(max(high_quantile, 0.0), 1.0)
            ilow = int(math.floor(qlo * (n - 1)))
            ihigh = int(math.ceil(qhi * (n - 1)))
            with np.errstate(over="ignore"):
                lo, hi = _guard(float(np.exp(logs[ilow])), float(np.exp(logs[ihigh])))
        else:
            lo, hi = _guard(*default_range)
    elif len(values):
        lo, hi = _guard(float(values.min()), float(values.max()))
    else:
        lo, hi = _guard(*default_range)

    return _widen(lo, hi, min_dynamic_range, widen_ratio)


def estimate_ranges(density, temperature, is_overdensity: bool, config: RangeConfig) -> RangeEstimate:
    """Density and temperature ranges for one build, each with its own quantiles and defaults."""
    dlo_q, dhi_q = config.density_quantiles(is_overdensity)
    dmin, dmax = estimate_range(
        density,
        dlo_q,
        dhi_q,
        robust=config.robust,
        default_range=DEFAULT_DENSITY_RANGE,
        min_dynamic_range=config.min_dynamic_range,
        widen_ratio=config.widen_ratio,
    )
    tmin, tmax = estimate_range(
        temperature,
        config.temperature_low_quantile,
        config.temperature_high_quantile,
        robust=config.robust,
        default_range=DEFAULT_TEMPERATURE_RANGE,
        min_dynamic_range=config.min_dynamic_range,
        widen_ratio=config.widen_ratio,
    )
    logger.debug("Ranges: density [%.4g, %.4g], temperature [%.4g, %.4g]", dmin, dmax, tmin, tmax)
    return RangeEstimate(dmin, dmax, tmin, tmax)
