"""
Shared fixtures: small synthetic AMR snapshots built on ArrayCellSource.

"""

import numpy as np
import pytest

from amrvolume.source import ArrayCellSource, SnapshotHeader


def grid_centers(level, lo=0.0, hi=1.0):
    """Centres of a full cubic grid of level-`level` cells covering [lo, hi)^3."""
    size = 1.0 / 2 ** (level + 1)
    ticks = np.arange(lo + size / 2, hi, size)
    x, y, z = np.meshgrid(ticks, ticks, ticks, indexing="ij")
    return np.column_stack([x.ravel(), y.ravel(), z.ravel()])


ABSOLUTE_HEADER = SnapshotHeader(unit_d=1.0, unit_l=1.0, unit_t=1.0, levelmin=1, levelmax=2, ncpu=2)


def two_level_arrays():
    """
    Level 1 covers the box with density 1; the [0, 0.5)^3 octant is refined to
    level 2 with density 5. The eight covered level-1 cells are flagged refined.
    """
    coarse = grid_centers(1)
    fine = grid_centers(2, 0.0, 0.5)
    positions = np.vstack([coarse, fine])
    levels = np.concatenate([np.full(len(coarse), 1), np.full(len(fine), 2)])
    density = np.concatenate([np.full(len(coarse), 1.0), np.full(len(fine), 5.0)])
    pressure = np.ones(len(positions))
    refined = np.concatenate([np.all(coarse < 0.5, axis=1), np.zeros(len(fine), dtype=bool)])
    domain_ids = np.arange(len(positions)) % 2 + 1
    return positions, levels, density, pressure, refined, domain_ids


@pytest.fixture
def two_level_source():
    positions, levels, density, pressure, refined, domain_ids = two_level_arrays()
    return ArrayCellSource(ABSOLUTE_HEADER, positions, levels, density, pressure,
                           refined=refined, domain_ids=domain_ids)
