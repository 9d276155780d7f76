# -*- coding: utf-8 -*-

"""

Volume rasterizer: scatter cell instances into a dense N^3 grid.

Each instance is an axis-aligned box in normalized coordinates and fills every
voxel it overlaps. Overlapping instances combine by maximum, never by averaging,
so rare dense cells stay visible among lighter neighbours.

Volumes are indexed [z, y, x].

"""

from __future__ import annotations

import logging
from typing import Iterator, Tuple, Union

import numpy as np

from .instances import FieldInstances, VolumeGrid

logger = logging.getLogger("amrvolume")

# Instances whose footprint exceeds this many voxels are written block by block;
# smaller ones are scattered together, one footprint offset at a time.
BLOCK_VOXELS = 64

# Tolerance in voxel units so that a cell whose faces sit on voxel faces does not
# spill into the next voxel through rounding.
_EDGE_EPS = 1e-6

_FLOAT32_MAX = float(np.finfo(np.float32).max)

Target = Union[Tuple[slice, slice, slice], np.ndarray]


def voxel_bounds(centers: np.ndarray, half_sizes: np.ndarray, n: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Inclusive voxel index box of each instance, as (lo, hi) arrays of shape (m, 3) in x, y, z order.

    A voxel is covered when its interior overlaps [c - h, c + h] * n. Boxes are
    clamped to [0, n - 1] and hold at least one voxel.
    """
    if n < 1:
        raise ValueError(f"Grid resolution must be positive, got {n}")
    g = np.asarray(centers, dtype=np.float64).reshape(-1, 3) * n
    gh = (np.asarray(half_sizes, dtype=np.float64) * n)[:, None]
    lo = np.floor(g - gh + _EDGE_EPS)
    hi = np.ceil(g + gh - _EDGE_EPS) - 1
    lo = np.clip(lo, 0, n - 1).astype(np.int64)
    hi = np.clip(hi, 0, n - 1).astype(np.int64)
    hi = np.maximum(hi, lo)
    return lo, hi


def iter_voxel_targets(lo: np.ndarray, hi: np.ndarray, n: int) -> Iterator[Tuple[Target, np.ndarray]]:
    """
    Walk the voxels covered by a set of boxes.

    Yields (target, members): target is either a (z, y, x) slice tuple covering
    one large box, or flat voxel indices into an n^3 grid; members holds the
    instance index for each target (a single index for a block, one per flat
    index otherwise).
    """
    extent = hi - lo + 1
    nvox = np.prod(extent, axis=1)

    for i in np.nonzero(nvox > BLOCK_VOXELS)[0]:
        (x0, y0, z0), (x1, y1, z1) = lo[i], hi[i]
        yield (slice(z0, z1 + 1), slice(y0, y1 + 1), slice(x0, x1 + 1)), np.array([i])

    small = np.nonzero(nvox <= BLOCK_VOXELS)[0]
    if not len(small):
        return
    slo, shi = lo[small], hi[small]
    kx, ky, kz = extent[small].max(axis=0)
    for oz in range(kz):
        for oy in range(ky):
            for ox in range(kx):
                idx = slo + np.array([ox, oy, oz])
                valid = np.all(idx <= shi, axis=1)
                if not valid.any():
                    continue
                v = idx[valid]
                flat = (v[:, 2] * n + v[:, 1]) * n + v[:, 0]
                yield flat, small[valid]


def max_into(volume: np.ndarray, target: Target, values) -> None:
    """volume[target] = max(volume[target], values), in place."""
    if isinstance(target, tuple):
        block = volume[target]
        np.maximum(block, values, out=block)
    else:
        np.maximum.at(volume.reshape(-1), target, values)


def set_into(volume: np.ndarray, target: Target, value) -> None:
    """volume[target] = value, in place."""
    if isinstance(target, tuple):
        volume[target] = value
    else:
        volume.reshape(-1)[target] = value


def storable(values: np.ndarray, dtype=np.float32) -> np.ndarray:
    """Values cast to the volume dtype, saturating instead of overflowing to inf."""
    values = np.asarray(values, dtype=np.float64)
    if np.dtype(dtype) == np.float32:
        values = np.minimum(values, _FLOAT32_MAX)
    return values.astype(dtype)


def scatter_max(density: np.ndarray, temperature: np.ndarray, instances: FieldInstances) -> None:
    """Max-combine instances into existing density/temperature buffers of shape (n, n, n)."""
    if not len(instances):
        return
    n = density.shape[0]
    lo, hi = voxel_bounds(instances.centers, instances.half_sizes, n)
    dvals = storable(instances.density, density.dtype)
    tvals = storable(instances.temperature, temperature.dtype)
    for target, members in iter_voxel_targets(lo, hi, n):
        if isinstance(target, tuple):
            i = members[0]
            max_into(density, target, dvals[i])
            max_into(temperature, target, tvals[i])
        else:
            max_into(density, target, dvals[members])
            max_into(temperature, target, tvals[members])


def rasterize_max(instances: FieldInstances, n: int, dtype=np.float32) -> VolumeGrid:
    """
    Rasterize instances into a fresh n^3 volume, combining overlaps by maximum.

    Args:
        instances: accepted cells, any mix of levels.
        n: grid side length.
        dtype: voxel dtype (float32 matches R32F textures).

    Returns:
        VolumeGrid with zeros wherever no instance reaches.
    """
    if n < 1:
        raise ValueError(f"Grid resolution must be positive, got {n}")
    density = np.zeros((n, n, n), dtype=dtype)
    temperature = np.zeros((n, n, n), dtype=dtype)
    scatter_max(density, temperature, instances)
    logger.debug("Rasterized %d instances into %d^3 voxels", len(instances), n)
    return VolumeGrid(density, temperature)
