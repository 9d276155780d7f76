# -*- coding: utf-8 -*-

"""

Adaptive level compositor.

Merges per-level instance lists into one master volume where every voxel holds
the finest refinement level that covers it, then softens the seams between
levels with a light neighbour blend.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .instances import FieldInstances, VolumeGrid
from .rasterize import iter_voxel_targets, rasterize_max, scatter_max, set_into, voxel_bounds

logger = logging.getLogger("amrvolume")

UNSET = -1


@dataclass
class CompositeConfig:
    """
    Resolution and smoothing tunables for multi-level compositing.

    The master resolution doubles per active level above the coarsest, up to
    max_resolution, or reduced_max_resolution once more than
    large_instance_threshold instances take part.
    """

    base_resolution: int = 128
    max_resolution: int = 512
    reduced_max_resolution: int = 256
    large_instance_threshold: int = 2_000_000
    smoothing_max_resolution: int = 256
    smoothing_stride: int = 2
    smoothing_weight: float = 0.2


def active_level_span(instances_by_level: Sequence[FieldInstances]):
    """(min_level, max_level) of the non-empty lists, or None if all are empty."""
    active = [lvl for lvl, inst in enumerate(instances_by_level) if len(inst)]
    if not active:
        return None
    return active[0], active[-1]


def master_resolution(min_level: int, max_level: int, n_instances: int, config: CompositeConfig) -> int:
    """
    Side length of the composited volume for an active level span.

    Args:
        min_level, max_level: coarsest and finest non-empty levels.
        n_instances: total instances across all levels.
        config: resolution tunables.
    """
    span = max(0, max_level - min_level)
    cap = config.max_resolution
    if n_instances > config.large_instance_threshold:
        cap = min(cap, config.reduced_max_resolution)
    res = config.base_resolution
    for _ in range(span):
        if res >= cap:
            break
        res *= 2
    return max(1, min(res, cap))


def smooth_level_boundaries(
    density: np.ndarray,
    temperature: np.ndarray,
    owner: np.ndarray,
    stride: int = 2,
    weight: float = 0.2,
) -> int:
    """
    Blend set interior voxels on a strided lattice with their set face neighbours.

    Each selected voxel becomes (1 - weight) * value + weight * mean(set neighbours),
    for density and temperature together. Neighbour values are read from an
    unsmoothed copy, so the result does not depend on visiting order.

    Returns:
        Number of voxels changed.
    """
    n = density.shape[0]
    if n < 3:
        return 0
    stride = max(1, int(stride))
    is_set = owner != UNSET
    d0 = density.copy()
    t0 = temperature.copy()

    inner = (slice(1, n - 1, stride),) * 3
    shape = d0[inner].shape
    dsum = np.zeros(shape, dtype=np.float64)
    tsum = np.zeros(shape, dtype=np.float64)
    count = np.zeros(shape, dtype=np.int64)

    for axis in range(3):
        for shift in (-1, 1):
            nb = tuple(
                slice(1 + shift, n - 1 + shift, stride) if a == axis else slice(1, n - 1, stride)
                for a in range(3)
            )
            ok = is_set[nb]
            dsum += np.where(ok, d0[nb], 0.0)
            tsum += np.where(ok, t0[nb], 0.0)
            count += ok

    target = is_set[inner] & (count > 0)
    denom = np.maximum(count, 1)
    dblend = (1.0 - weight) * d0[inner] + weight * (dsum / denom)
    tblend = (1.0 - weight) * t0[inner] + weight * (tsum / denom)
    density[inner] = np.where(target, dblend, d0[inner]).astype(density.dtype)
    temperature[inner] = np.where(target, tblend, t0[inner]).astype(temperature.dtype)
    return int(np.count_nonzero(target))


def composite_levels(
    instances_by_level: Sequence[FieldInstances],
    config: Optional[CompositeConfig] = None,
    fallback: Optional[FieldInstances] = None,
    dtype=np.float32,
) -> VolumeGrid:
    """
    Composite per-level instances into one volume, finest level first in priority.

    Levels are written coarse to fine. A voxel covered by a level takes that
    level's value if it was unset or owned by a coarser level; instances of the
    same level combine by maximum. Without any active level the flat `fallback`
    list is rasterized at the base resolution instead.

    Args:
        instances_by_level: one FieldInstances per level (index = level).
        config: resolution and smoothing tunables.
        fallback: flat instance list used when no level is active.
        dtype: voxel dtype.
    """
    config = config or CompositeConfig()
    span = active_level_span(instances_by_level)
    if span is None:
        logger.info("No active refinement levels; rasterizing flat instance list at %d^3.", config.base_resolution)
        return rasterize_max(fallback if fallback is not None else FieldInstances.empty(),
                             config.base_resolution, dtype=dtype)

    min_level, max_level = span
    total = sum(len(inst) for inst in instances_by_level)
    n = master_resolution(min_level, max_level, total, config)
    logger.info("Compositing levels %d..%d (%d instances) into %d^3 voxels", min_level, max_level, total, n)

    density = np.zeros((n, n, n), dtype=dtype)
    temperature = np.zeros((n, n, n), dtype=dtype)
    owner = np.full((n, n, n), UNSET, dtype=np.int16)

    for level in range(min_level, max_level + 1):
        inst = instances_by_level[level]
        if not len(inst):
            continue
        lo, hi = voxel_bounds(inst.centers, inst.half_sizes, n)
        covered = np.zeros((n, n, n), dtype=bool)
        for target, _ in iter_voxel_targets(lo, hi, n):
            set_into(covered, target, True)

        # Voxels held by a coarser level (or nobody) are handed over to this one.
        claim = covered & (owner < level)
        density[claim] = 0
        temperature[claim] = 0
        owner[covered] = level

        scatter_max(density, temperature, inst)

        logger.debug("Level %d: %d instances, %d voxels claimed", level, len(inst), int(np.count_nonzero(claim)))

    if n <= config.smoothing_max_resolution:
        changed = smooth_level_boundaries(density, temperature, owner,
                                          stride=config.smoothing_stride,
                                          weight=config.smoothing_weight)
        logger.debug("Boundary smoothing touched %d voxels", changed)
    else:
        logger.debug("Skipping boundary smoothing at %d^3 (limit %d)", n, config.smoothing_max_resolution)

    return VolumeGrid(density, temperature)
