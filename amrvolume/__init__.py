# -*- coding: utf-8 -*-

"""

amrvolume: RAMSES AMR → dense ray-march volumes
===============================================

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
amrvolume resamples the hierarchical hydro cells of a RAMSES snapshot into
regular N^3 density and temperature grids, with display ranges ready for
colour mapping.

──────────────────────────────────────────────────────────────────────────────
WHY THIS EXISTS
──────────────────────────────────────────────────────────────────────────────
- RAMSES stores cells in an adaptive octree: sparse, with cell sizes spanning
  many refinement levels. GPU volume renderers want one dense 3D texture.
- Cosmological runs want overdensities, idealised runs want kg/m^3, and both
  need colour ranges that a few extreme cells cannot wreck.

"""

from .builder import BuildConfig, BuildResult, VolumeBuilder
from .composite import CompositeConfig, composite_levels, master_resolution
from .instances import FieldInstances, VolumeGrid
from .ranges import RangeConfig, RangeEstimate, estimate_range, estimate_ranges
from .rasterize import rasterize_max, voxel_bounds
from .source import ArrayCellSource, CellBatch, CellSource, OsyrisCellSource, SnapshotHeader
from .units import ConversionStats, UnitConverter

from .exporter import VolumeExporter, setup_logging

__version__ = "1.0.0"
