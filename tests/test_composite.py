"""
Unit tests for the adaptive level compositor.

These tests verify that:
1. The master resolution doubles per active level up to its cap
2. A finer level always wins over a coarser one, even with a lower value
3. No active level falls back to the flat rasterizer
4. Boundary smoothing reads unsmoothed neighbours and ignores unset voxels

"""

import numpy as np
import pytest

from amrvolume.composite import (
    UNSET,
    CompositeConfig,
    active_level_span,
    composite_levels,
    master_resolution,
    smooth_level_boundaries,
)
from amrvolume.instances import FieldInstances, half_size_for_level
from amrvolume.rasterize import rasterize_max


def one(center, half_size, density, temperature=0.0, level=0):
    return FieldInstances([center], [half_size], [density], [temperature], [level])


NO_SMOOTHING = dict(smoothing_max_resolution=0)


# ──────────────────────────────────────────────────────────────
# Resolution
# ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "min_level, max_level, n_instances, expected",
    [
        (3, 3, 10, 128),
        (3, 4, 10, 256),
        (3, 5, 10, 512),
        (0, 9, 10, 512),
        (2, 6, 3_000_000, 256),
    ],
)
def test_master_resolution(min_level, max_level, n_instances, expected):
    """Resolution doubles per active level, with a lower cap for huge instance counts."""
    assert master_resolution(min_level, max_level, n_instances, CompositeConfig()) == expected


def test_active_level_span():
    """The span covers the first to last non-empty level."""
    empty = FieldInstances.empty()
    a = one((0.5, 0.5, 0.5), 0.1, 1.0)
    assert active_level_span([empty, a, empty, a, empty]) == (1, 3)
    assert active_level_span([empty, empty]) is None
    assert active_level_span([]) is None


# ──────────────────────────────────────────────────────────────
# Level priority
# ──────────────────────────────────────────────────────────────

def test_finer_level_overrides_coarser():
    """A finer level wins its voxels even with a lower value."""
    n = 64
    coarse = one((0.5, 0.5, 0.5), 0.5, 1.0, 100.0, level=0)
    fine = one(((10 + 0.5) / n,) * 3, 0.5 / n, 0.5, 20.0, level=3)
    empty = FieldInstances.empty()
    config = CompositeConfig(base_resolution=n, max_resolution=n, **NO_SMOOTHING)

    vol = composite_levels([coarse, empty, empty, fine], config)
    assert vol.resolution == n
    assert vol.density[10, 10, 10] == pytest.approx(0.5)
    assert vol.temperature[10, 10, 10] == pytest.approx(20.0)
    assert vol.density[20, 20, 20] == pytest.approx(1.0)
    assert vol.temperature[20, 20, 20] == pytest.approx(100.0)


def test_same_level_combines_by_max_in_any_order():
    """Overlaps within one level do not depend on input order."""
    rng = np.random.default_rng(5)
    m = 200
    levels = np.full(m, 2)
    inst = FieldInstances(rng.random((m, 3)), half_size_for_level(levels), rng.random(m),
                          rng.random(m) * 1e3, levels)
    coarse = one((0.5, 0.5, 0.5), 0.5, 10.0, level=0)
    empty = FieldInstances.empty()
    config = CompositeConfig(base_resolution=16, max_resolution=64)

    a = composite_levels([coarse, empty, inst], config)
    b = composite_levels([coarse, empty, inst[rng.permutation(m)]], config)
    np.testing.assert_array_equal(a.density, b.density)
    np.testing.assert_array_equal(a.temperature, b.temperature)


def test_single_level_matches_flat_rasterizer():
    """One active level without smoothing equals a flat rasterization."""
    rng = np.random.default_rng(9)
    m = 150
    levels = np.full(m, 2)
    inst = FieldInstances(rng.random((m, 3)), half_size_for_level(levels), rng.random(m) * 5,
                          rng.random(m) * 1e4, levels)
    config = CompositeConfig(base_resolution=32, max_resolution=32, **NO_SMOOTHING)

    vol = composite_levels(inst.by_level(), config)
    flat = rasterize_max(inst, 32)
    np.testing.assert_array_equal(vol.density, flat.density)
    np.testing.assert_array_equal(vol.temperature, flat.temperature)


def test_no_active_level_uses_fallback():
    """Empty levels give the base grid, filled from the fallback when given."""
    empty = FieldInstances.empty()
    config = CompositeConfig(base_resolution=8)

    vol = composite_levels([empty, empty, empty], config)
    assert vol.resolution == 8
    assert not vol.density.any()

    vol = composite_levels([], config, fallback=one((0.5, 0.5, 0.5), 0.01, 3.0))
    assert vol.resolution == 8
    assert vol.density.max() == pytest.approx(3.0)


# ──────────────────────────────────────────────────────────────
# Boundary smoothing
# ──────────────────────────────────────────────────────────────

def spike(n=5, value=10.0):
    density = np.zeros((n, n, n), dtype=np.float32)
    density[2, 2, 2] = value
    return density, density.copy()


def test_smoothing_uses_unsmoothed_neighbours():
    """Neighbour averages read the field before this pass."""
    density, temperature = spike()
    owner = np.zeros(density.shape, dtype=np.int16)

    changed = smooth_level_boundaries(density, temperature, owner, stride=1, weight=0.2)
    assert changed == 27
    assert density[2, 2, 2] == pytest.approx(8.0)
    assert density[1, 2, 2] == pytest.approx(1.0 / 3.0, rel=1e-5)
    assert temperature[2, 2, 3] == pytest.approx(1.0 / 3.0, rel=1e-5)
    # Voxels on the grid faces are never touched.
    assert density[0, 2, 2] == 0.0


def test_smoothing_skips_unset_neighbours():
    """Voxels nothing wrote to are neither smoothed nor averaged in."""
    density, temperature = spike()
    density[2, 2, 1] = 4.0
    owner = np.full(density.shape, UNSET, dtype=np.int16)
    owner[2, 2, 2] = 0
    owner[2, 2, 1] = 0

    smooth_level_boundaries(density, temperature, owner, stride=1, weight=0.2)
    assert density[2, 2, 2] == pytest.approx(0.8 * 10.0 + 0.2 * 4.0)
    assert density[2, 2, 1] == pytest.approx(0.8 * 4.0 + 0.2 * 10.0)
    assert density[2, 1, 2] == 0.0


def test_smoothing_stride_selects_lattice():
    """Only voxels on the stride lattice are smoothed."""
    density, temperature = spike()
    owner = np.zeros(density.shape, dtype=np.int16)

    smooth_level_boundaries(density, temperature, owner, stride=2, weight=0.2)
    # Index 2 is off the (1, 3) lattice.
    assert density[2, 2, 2] == pytest.approx(10.0)


def test_smoothing_uniform_field_is_unchanged():
    """A constant field stays constant."""
    density = np.full((6, 6, 6), 7.0, dtype=np.float32)
    temperature = np.full((6, 6, 6), 3.0, dtype=np.float32)
    owner = np.ones((6, 6, 6), dtype=np.int16)

    smooth_level_boundaries(density, temperature, owner)
    assert np.allclose(density, 7.0)
    assert np.allclose(temperature, 3.0)


def test_tiny_grid_is_not_smoothed():
    """Grids without interior voxels are left alone."""
    density = np.ones((2, 2, 2), dtype=np.float32)
    assert smooth_level_boundaries(density, density.copy(), np.zeros((2, 2, 2), dtype=np.int16)) == 0
