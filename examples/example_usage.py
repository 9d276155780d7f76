#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

─────────────────────────────────────────────────────────────
Example Usage of amrvolume
─────────────────────────────────────────────────────────────

This script demonstrates how to use the `VolumeBuilder` and
`VolumeExporter` classes to turn AMR cells into dense volumes.

Features demonstrated:
1. Building a volume from an in-memory two-level snapshot
2. Inspecting the resolution and colour ranges of a build
3. Rebuilding a narrower level range from the level cache
4. Adjusting the density minimum without rebuilding
5. Performing a dry-run export of real RAMSES outputs

─────────────────────────────────────────────────────────────

"""

import os

import numpy as np

from amrvolume import ArrayCellSource, BuildConfig, CompositeConfig, SnapshotHeader, VolumeBuilder
from amrvolume.exporter import VolumeExporter

# ──────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────

RAMSES_OUTPUT_ROOT = "ramses_outputs/sedov_3d"

SNAPSHOT_NUMBERS = [1, 2]

DRY_RUN = True

OUTPUT_DIR = None  # Set to e.g. "vtk_outputs" to specify output location, or None to use input folder


# ──────────────────────────────────────────────────────────────
# Helper Functions
# ──────────────────────────────────────────────────────────────

def cell_grid(level, lo=0.0, hi=1.0):
    size = 1.0 / 2 ** (level + 1)
    ticks = np.arange(lo + size / 2, hi, size)
    x, y, z = np.meshgrid(ticks, ticks, ticks, indexing="ij")
    return np.column_stack([x.ravel(), y.ravel(), z.ravel()])


def synthetic_source():
    """Uniform level-2 gas with a dense level-4 clump in one corner."""
    coarse = cell_grid(2)
    fine = cell_grid(4, 0.0, 0.25)
    positions = np.vstack([coarse, fine])
    levels = np.concatenate([np.full(len(coarse), 2), np.full(len(fine), 4)])

    r = np.linalg.norm(fine - 0.125, axis=1)
    density = np.concatenate([np.full(len(coarse), 1e-3), 1e-3 + np.exp(-(r / 0.05) ** 2)])
    pressure = density * 1e-2
    refined = np.concatenate([np.all(coarse < 0.25, axis=1), np.zeros(len(fine), dtype=bool)])

    header = SnapshotHeader(unit_d=1e-21, unit_l=3e19, unit_t=3e13, levelmin=2, levelmax=4)
    return ArrayCellSource(header, positions, levels, density, pressure, refined=refined)


def print_result(label, result):
    print(f"{label}: {result.resolution}^3 voxels, {result.n_instances} instances, "
          f"levels {result.min_level}..{result.max_level}"
          f"{' (cached)' if result.from_cache else ''}")
    r = result.ranges
    print(f"  density     [{r.density_min:.3g}, {r.density_max:.3g}]")
    print(f"  temperature [{r.temperature_min:.3g}, {r.temperature_max:.3g}]")


# ──────────────────────────────────────────────────────────────
# Main Example Workflow
# ──────────────────────────────────────────────────────────────

def main():

    print("=== amrvolume Example Usage ===\n")

    builder = VolumeBuilder(synthetic_source(), BuildConfig(composite=CompositeConfig(base_resolution=32)))

    print_result("Full build", builder.build())
    print_result("Coarse only", builder.build(2, 2))

    ranges = builder.scale_min_density(10.0)
    print(f"Density minimum raised to {ranges.density_min:.3g}\n")

    if not os.path.isdir(RAMSES_OUTPUT_ROOT):
        print(f"No RAMSES outputs under '{RAMSES_OUTPUT_ROOT}'; skipping the export demo.")
        return

    exporter = VolumeExporter(
        input_folder=RAMSES_OUTPUT_ROOT,
        output_prefix="example",
        dry_run=DRY_RUN,
        output_directory=OUTPUT_DIR,
    )
    for num, path in zip(SNAPSHOT_NUMBERS, exporter.run(SNAPSHOT_NUMBERS)):
        print(f"Snapshot {num}: {'wrote ' + path if path else 'nothing written'}")

    print("\nSet `DRY_RUN = False` to write actual VTKHDF files.")


# ──────────────────────────────────────────────────────────────
# Entry Point
# ──────────────────────────────────────────────────────────────

if __name__ == "__main__":
    main()
