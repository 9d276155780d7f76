# -*- coding: utf-8 -*-

"""

VTKHDF ImageData writer.

Stores a built volume as a uniform grid that ParaView (and any VTK >= 9.1
reader) opens directly: one cell per voxel over the unit box, with density and
temperature as cell data. Display ranges, the density mode and the level range
travel along as attributes so a renderer can pick them up without rebuilding.

"""

from __future__ import annotations

import logging
import shlex
import sys
import time

import h5py as h5
import numpy as np

from .builder import BuildResult

logger = logging.getLogger("amrvolume")

FLOAT_DTYPE = "f"


def _ascii_attr(group, name: str, value: str) -> None:
    data = value.encode("ascii")
    group.attrs.create(name, data, dtype=h5.string_dtype("ascii", len(data)))


def write_vtkhdf_image(path: str, result: BuildResult, version: str = "") -> None:
    """
    Write a BuildResult as a VTKHDF ImageData file.

    Args:
        path: output file path (overwritten).
        result: build output; volumes are indexed [z, y, x], which is the array
                layout VTKHDF expects for x-fastest image data.
        version: generator version recorded in the file.
    """
    n = result.volume.resolution
    spacing = 1.0 / n

    with h5.File(path, "w") as f:
        root = f.create_group("VTKHDF", track_order=True)
        root.attrs["Version"] = (2, 1)
        _ascii_attr(root, "Type", "ImageData")
        root.attrs.create("WholeExtent", [0, n, 0, n, 0, n], dtype="i8")
        root.attrs.create("Origin", [0.0, 0.0, 0.0], dtype=FLOAT_DTYPE)
        root.attrs.create("Spacing", [spacing, spacing, spacing], dtype=FLOAT_DTYPE)
        root.attrs.create("Direction", [1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0], dtype=FLOAT_DTYPE)

        celldata = root.create_group("CellData")
        celldata.create_dataset("Density", data=np.asarray(result.volume.density, dtype=FLOAT_DTYPE))
        celldata.create_dataset("Temperature", data=np.asarray(result.volume.temperature, dtype=FLOAT_DTYPE))
        root.create_group("PointData")
        root.create_group("FieldData")

        ranges = result.ranges
        root.attrs["density_range"] = [ranges.density_min, ranges.density_max]
        root.attrs["temperature_range"] = [ranges.temperature_min, ranges.temperature_max]
        root.attrs["is_overdensity"] = bool(result.is_overdensity)
        root.attrs["level_range"] = [result.min_level, result.max_level]
        root.attrs["n_instances"] = result.n_instances

        root.attrs["generator_command"] = shlex.join(sys.argv)
        root.attrs["generator_timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        root.attrs["generator_version"] = version

    logger.debug("Wrote %d^3 ImageData to '%s'", n, path)
