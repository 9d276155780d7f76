# -*- coding: utf-8 -*-

"""

Volume builder: the AMR-to-volume pipeline in one place.

    source --> UnitConverter (per domain) --> FieldInstances
           --> RangeEstimate (robust ranges)
           --> composite_levels (adaptive) or rasterize_max (fixed resolution)
           --> BuildResult, handed to the renderer read-only

A build is one synchronous pass. Configuration goes in as a BuildConfig and
everything the renderer needs comes back as a BuildResult; the next build
replaces it wholesale.

"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

import numpy as np

from .composite import CompositeConfig, composite_levels
from .domains import convert_domains
from .instances import FieldInstances, VolumeGrid
from .ranges import RangeConfig, RangeEstimate, estimate_ranges
from .rasterize import rasterize_max
from .source import CellSource
from .units import ConversionStats, UnitConverter

logger = logging.getLogger("amrvolume")


@dataclass
class BuildConfig:
    """
    Everything a build can be tuned with.

    adaptive selects multi-level compositing (resolution from the active level
    span); otherwise every instance is rasterized at the fixed `resolution`.
    """

    adaptive: bool = True
    resolution: int = 64
    composite: CompositeConfig = field(default_factory=CompositeConfig)
    ranges: RangeConfig = field(default_factory=RangeConfig)
    min_overdensity: float = 0.0
    max_overdensity: float = 1e12
    max_instances: Optional[int] = None
    nproc: Optional[int] = None
    volume_dtype: str = "float32"


@dataclass(frozen=True)
class BuildResult:
    """Output of one build: the volume, its display ranges and how it was made."""

    volume: VolumeGrid
    ranges: RangeEstimate
    is_overdensity: bool
    min_level: int
    max_level: int
    n_instances: int
    stats: ConversionStats
    truncated: bool = False
    from_cache: bool = False

    @property
    def resolution(self) -> int:
        return self.volume.resolution


@dataclass
class _LevelCache:
    """
    Converted cells of the last complete read, refined parents included, plus
    the read's stats. A build ending at a lower level re-selects its leaves here.
    """

    min_level: int
    max_level: int
    instances: FieldInstances
    stats: ConversionStats

    def covers(self, min_level: int, max_level: int) -> bool:
        return self.min_level <= min_level and max_level <= self.max_level

    def select(self, min_level: int, max_level: int) -> Tuple[FieldInstances, ConversionStats]:
        cached = self.instances
        in_range = cached[(cached.levels >= min_level) & (cached.levels <= max_level)]
        leaves = in_range.leaves(max_level)
        # Rejection counts are those of the read that filled the cache.
        stats = replace(self.stats, accepted=len(leaves), skipped_refined=len(in_range) - len(leaves))
        return leaves, stats


class VolumeBuilder:
    """
    Builds density/temperature volumes from a cell source.

    Converted instances of the last complete read are cached, so narrowing the
    level range rebuilds the volume without touching the source again.
    """

    def __init__(self, source: CellSource, config: Optional[BuildConfig] = None):
        self.source = source
        self.config = config or BuildConfig()
        self.converter = UnitConverter.from_header(
            source.header,
            min_overdensity=self.config.min_overdensity,
            max_overdensity=self.config.max_overdensity,
        )
        self._cache: Optional[_LevelCache] = None
        self._result: Optional[BuildResult] = None

    @property
    def default_min_level(self) -> int:
        return int(self.source.header.levelmin)

    @property
    def default_max_level(self) -> int:
        return int(self.source.header.levelmax)

    @property
    def is_overdensity(self) -> bool:
        return self.converter.is_overdensity

    @property
    def result(self) -> Optional[BuildResult]:
        return self._result

    @property
    def volume(self) -> Optional[VolumeGrid]:
        return self._result.volume if self._result is not None else None

    @property
    def ranges(self) -> Optional[RangeEstimate]:
        return self._result.ranges if self._result is not None else None

    def invalidate_cache(self) -> None:
        self._cache = None

    def _resolve_levels(self, min_level: Optional[int], max_level: Optional[int]) -> Tuple[int, int]:
        """Fill in header defaults and clamp the upper level to the snapshot's levelmax."""
        lo = self.default_min_level if min_level is None else int(min_level)
        hi = self.default_max_level if max_level is None else int(max_level)
        hi = min(hi, self.default_max_level)
        if lo < 0:
            raise ValueError(f"Minimum level must be non-negative, got {lo}")
        if hi < lo:
            raise ValueError(f"Invalid level range: max ({hi}) < min ({lo}).")
        return lo, hi

    def _read(self, min_level: int, max_level: int) -> Tuple[FieldInstances, ConversionStats, Optional[_LevelCache]]:
        """
        Convert every domain of the source.

        Returns (leaves, stats, cache): cache is None when the instance ceiling
        cut the read short.
        """
        cap = self.config.max_instances
        domains = self.source.domains()
        results = convert_domains(
            self.source,
            domains,
            self.converter,
            min_level,
            max_level,
            nproc=self.config.nproc,
            max_instances=cap,
            keep_refined=True,
        )

        kept: List[FieldInstances] = []
        parts: List[FieldInstances] = []
        stats = ConversionStats()
        total = 0
        truncated = False
        for instances, domain_stats in results:
            stats = stats.merge(domain_stats)
            kept.append(instances)
            leaves = instances.leaves(max_level)
            if cap is not None and total + len(leaves) >= cap:
                parts.append(leaves[: cap - total])
                truncated = total + len(leaves) > cap or len(parts) < len(domains)
                break
            parts.append(leaves)
            total += len(leaves)

        merged = FieldInstances.concatenate(parts)
        if truncated:
            logger.warning("Instance ceiling reached: keeping %d instances (%d accepted before the cut).",
                           len(merged), stats.accepted)
        stats = replace(stats, accepted=len(merged))
        cache = None if truncated else _LevelCache(min_level, max_level, FieldInstances.concatenate(kept), stats)
        return merged, stats, cache

    def _ingest(self, min_level: int, max_level: int) -> Tuple[FieldInstances, ConversionStats, bool, bool]:
        if self._cache is not None and self._cache.covers(min_level, max_level):
            leaves, stats = self._cache.select(min_level, max_level)
            logger.debug("Level cache hit for %d..%d (%d instances)", min_level, max_level, len(leaves))
            return leaves, stats, False, True

        instances, stats, cache = self._read(min_level, max_level)
        self._cache = cache
        return instances, stats, cache is None, False

    def build(self, min_level: Optional[int] = None, max_level: Optional[int] = None) -> BuildResult:
        """
        Build fresh volumes for the inclusive level range [min_level, max_level].

        Args:
            min_level: coarsest level to include (default: header levelmin).
            max_level: finest level to include (default and upper bound: header levelmax).

        Returns:
            BuildResult, also kept as `self.result` until the next build.
        """
        t0 = time.time()
        lo, hi = self._resolve_levels(min_level, max_level)
        cfg = self.config
        dtype = np.dtype(cfg.volume_dtype)

        instances, stats, truncated, from_cache = self._ingest(lo, hi)
        logger.info(
            "Levels %d..%d: %d instances (%s mode, %d rejected, %d refined skipped)",
            lo, hi, len(instances),
            "overdensity" if self.is_overdensity else "absolute density",
            stats.rejected, stats.skipped_refined,
        )

        ranges = estimate_ranges(instances.density, instances.temperature, self.is_overdensity, cfg.ranges)

        if cfg.adaptive:
            volume = composite_levels(
                instances.by_level(hi + 1),
                cfg.composite,
                fallback=instances,
                dtype=dtype,
            )
        else:
            volume = rasterize_max(instances, cfg.resolution, dtype=dtype)

        self._result = BuildResult(
            volume=volume,
            ranges=ranges,
            is_overdensity=self.is_overdensity,
            min_level=lo,
            max_level=hi,
            n_instances=len(instances),
            stats=stats,
            truncated=truncated,
            from_cache=from_cache,
        )
        logger.info(
            "Built %d^3 volume in %.2fs; density range [%.4g, %.4g], temperature range [%.4g, %.4g]",
            volume.resolution, time.time() - t0,
            ranges.density_min, ranges.density_max, ranges.temperature_min, ranges.temperature_max,
        )
        return self._result

    def scale_min_density(self, factor: float) -> RangeEstimate:
        """
        Rescale the density minimum of the current result without rebuilding.

        The minimum stays within [1e-30, density_max * 0.999].
        """
        if self._result is None:
            raise RuntimeError("scale_min_density() called before build().")
        ranges = self._result.ranges.scale_min_density(factor)
        self._result = replace(self._result, ranges=ranges)
        logger.debug("Density minimum scaled by %g -> %.4g", factor, ranges.density_min)
        return ranges
