# -*- coding: utf-8 -*-

"""

Cell sources: where the hierarchical cells come from.

A source hands out, per spatial domain and level range, a column-wise batch of
AMR cells together with the snapshot-wide header. Two sources ship with the
package: an in-memory one (tests, synthetic data, other readers) and one backed
by osyris for real RAMSES outputs.

"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
import osyris

logger = logging.getLogger("amrvolume")


@dataclass(frozen=True)
class SnapshotHeader:
    """
    Snapshot-wide physical parameters.

    Unit scales convert code units to SI (kg/m^3, m, s). Any of them may be None
    or non-finite; the converter then falls back to identity scaling.
    """

    aexp: float = 1.0
    omega_b: float = 0.0
    omega_m: float = 0.0
    H0: float = 0.0
    unit_d: Optional[float] = None
    unit_l: Optional[float] = None
    unit_t: Optional[float] = None
    levelmin: int = 0
    levelmax: int = 0
    ncpu: int = 1
    boxlen: float = 1.0


@dataclass
class CellBatch:
    """
    Column-wise batch of raw AMR cells read from one domain.

    positions are normalized box coordinates (n, 3); levels are refinement levels
    (0 = coarsest); density and pressure are raw code-unit samples. refined is
    None when the reader has no leaf metadata, in which case every cell is a leaf.
    """

    positions: np.ndarray
    levels: np.ndarray
    density: np.ndarray
    pressure: np.ndarray
    refined: Optional[np.ndarray] = None

    def __post_init__(self):
        self.positions = np.asarray(self.positions, dtype=np.float64).reshape(-1, 3)
        n = len(self.positions)
        self.levels = np.asarray(self.levels, dtype=np.int64).reshape(-1)
        self.density = np.asarray(self.density, dtype=np.float64).reshape(-1)
        self.pressure = np.asarray(self.pressure, dtype=np.float64).reshape(-1)
        for name in ("levels", "density", "pressure"):
            if len(getattr(self, name)) != n:
                raise ValueError(f"CellBatch.{name} has {len(getattr(self, name))} entries, expected {n}")
        if n and self.levels.min() < 0:
            raise ValueError("Refinement levels must be non-negative.")
        if self.refined is not None:
            self.refined = np.asarray(self.refined, dtype=bool).reshape(-1)
            if len(self.refined) != n:
                raise ValueError(f"CellBatch.refined has {len(self.refined)} entries, expected {n}")

    def __len__(self) -> int:
        return len(self.positions)

    def leaf_mask(self, max_level: Optional[int] = None) -> np.ndarray:
        """
        Cells that should rasterize a value (all of them without leaf metadata).

        A refined cell still counts as a leaf when its children lie beyond
        `max_level`, since it is then the finest data left for its region.
        """
        if self.refined is None:
            return np.ones(len(self), dtype=bool)
        leaf = ~self.refined
        if max_level is not None:
            leaf |= self.levels >= max_level
        return leaf

    def select(self, mask: np.ndarray) -> "CellBatch":
        return CellBatch(
            positions=self.positions[mask],
            levels=self.levels[mask],
            density=self.density[mask],
            pressure=self.pressure[mask],
            refined=None if self.refined is None else self.refined[mask],
        )

    @classmethod
    def empty(cls) -> "CellBatch":
        return cls(np.empty((0, 3)), np.empty(0, dtype=np.int64), np.empty(0), np.empty(0))


class CellSource:
    """
    Interface the volume builder reads cells through.

    Subclasses provide `header`, `domains()` and `read_domain()`. Domains are
    independent spatial partitions (RAMSES cpu files); they may be converted in
    parallel, so implementations used with nproc > 1 should be picklable.
    """

    header: SnapshotHeader

    def domains(self) -> List[int]:
        return list(range(1, self.header.ncpu + 1))

    def read_domain(self, domain: int, min_level: int, max_level: int) -> CellBatch:
        raise NotImplementedError


class ArrayCellSource(CellSource):
    """
    In-memory cell source over plain arrays.

    domain_ids assigns each cell to a domain; without it every cell belongs to
    domain 1.
    """

    def __init__(
        self,
        header: SnapshotHeader,
        positions,
        levels,
        density,
        pressure,
        refined=None,
        domain_ids=None,
    ):
        self.header = header
        self._cells = CellBatch(positions, levels, density, pressure, refined)
        if domain_ids is None:
            self._domain_ids = np.ones(len(self._cells), dtype=np.int64)
        else:
            self._domain_ids = np.asarray(domain_ids, dtype=np.int64).reshape(-1)
            if len(self._domain_ids) != len(self._cells):
                raise ValueError("domain_ids must have one entry per cell.")

    def domains(self) -> List[int]:
        return sorted(int(d) for d in np.unique(self._domain_ids))

    def read_domain(self, domain: int, min_level: int, max_level: int) -> CellBatch:
        cells = self._cells
        mask = (self._domain_ids == domain) & (cells.levels >= min_level) & (cells.levels <= max_level)
        batch = cells.select(mask)
        # Reader order: coarse levels first, stable within a level.
        order = np.argsort(batch.levels, kind="stable")
        return batch.select(order)


def _meta_float(meta: Dict[str, Any], key: str) -> Optional[float]:
    """
    Read a scalar from osyris metadata, tolerating plain numbers and quantities.
    Returns None when the key is missing or not convertible.
    """
    if key not in meta:
        return None
    value = meta[key]
    try:
        if hasattr(value, "magnitude"):
            value = value.magnitude
        elif hasattr(value, "values"):
            value = value.values
        return float(value)
    except Exception:
        logger.debug("Metadata entry '%s' is not a scalar: %r", key, value)
        return None


def _vector_components(vec_field) -> np.ndarray:
    """
    Extract an (n, 3) array from an osyris vector field.

    Tries the component accessors first and falls back to per-element iteration.
    """
    try:
        return np.column_stack(
            [np.asarray(vec_field.x.values, dtype=float),
             np.asarray(vec_field.y.values, dtype=float),
             np.asarray(vec_field.z.values, dtype=float)]
        )
    except Exception:
        logger.debug("Fast path vector extraction failed; using safe fallback.", exc_info=True)

    rows = [(float(v.x.values), float(v.y.values), float(v.z.values)) for v in vec_field]
    return np.asarray(rows, dtype=float).reshape(-1, 3)


def _to_si(field, unit: str) -> np.ndarray:
    """Values of an osyris array in the given SI unit, or raw values if conversion fails."""
    try:
        return np.asarray(field.to(unit).values, dtype=float)
    except Exception:
        logger.debug("Unit conversion to '%s' failed; keeping raw values.", unit, exc_info=True)
        return np.asarray(field.values, dtype=float)


class OsyrisCellSource(CellSource):
    """
    Cell source over a RAMSES output loaded with osyris.

    osyris already returns physical quantities, so fields are converted to SI and
    the header reports unit scales of 1. osyris meshes hold leaf cells only, so
    batches carry no refinement flags. osyris reports the level of the cell
    itself (dx = box / 2**level); cells here are indexed by the level of their
    parent oct, i.e. one less.

    The whole mesh is loaded at once, so the source exposes a single domain.
    """

    def __init__(self, data):
        self._data = data
        meta = data.meta if isinstance(getattr(data, "meta", None), dict) else {}
        mesh = data["mesh"]

        osyris_levels = np.asarray(mesh["level"].values, dtype=np.int64)
        positions = _vector_components(mesh["position"])
        dx = np.asarray(mesh["dx"].values, dtype=float) if "dx" in mesh.keys() else None

        box = self._infer_box_size(dx, osyris_levels, meta)
        self._cells = CellBatch(
            positions=positions / box,
            levels=np.maximum(osyris_levels - 1, 0),
            density=_to_si(mesh["density"], "kg/m**3"),
            pressure=_to_si(mesh["pressure"], "Pa") if "pressure" in mesh.keys() else np.zeros(len(positions)),
        )

        levelmin = _meta_float(meta, "levelmin")
        levelmax = _meta_float(meta, "levelmax")
        self.header = SnapshotHeader(
            aexp=_meta_float(meta, "aexp") or 1.0,
            omega_b=_meta_float(meta, "omega_b") or 0.0,
            omega_m=_meta_float(meta, "omega_m") or 0.0,
            H0=_meta_float(meta, "H0") or 0.0,
            unit_d=1.0,
            unit_l=1.0,
            unit_t=1.0,
            levelmin=max(int(levelmin) - 1, 0) if levelmin is not None else int(self._cells.levels.min(initial=0)),
            levelmax=max(int(levelmax) - 1, 0) if levelmax is not None else int(self._cells.levels.max(initial=0)),
            ncpu=1,
            boxlen=box,
        )
        logger.debug("osyris source: %d cells, box size %.6g, levels %d..%d",
                     len(self._cells), box, self.header.levelmin, self.header.levelmax)

    @staticmethod
    def _infer_box_size(dx: Optional[np.ndarray], levels: np.ndarray, meta: Dict[str, Any]) -> float:
        """
        Physical box size in position units: dx * 2**level is the same for every
        cell. Falls back to meta['boxlen'], then to 1.
        """
        if dx is not None and len(dx):
            sizes = dx * np.exp2(levels.astype(float))
            box = float(np.median(sizes))
            if math.isfinite(box) and box > 0:
                return box
        boxlen = _meta_float(meta, "boxlen")
        if boxlen is not None and math.isfinite(boxlen) and boxlen > 0:
            return boxlen
        logger.warning("Box size could not be inferred; assuming positions are already normalized.")
        return 1.0

    @classmethod
    def load(cls, output_num: int, input_folder: str) -> "OsyrisCellSource":
        data = osyris.RamsesDataset(output_num, path=input_folder).load()
        return cls(data)

    def domains(self) -> List[int]:
        return [1]

    def read_domain(self, domain: int, min_level: int, max_level: int) -> CellBatch:
        if domain != 1:
            return CellBatch.empty()
        cells = self._cells
        mask = (cells.levels >= min_level) & (cells.levels <= max_level)
        return cells.select(mask)

    def __getstate__(self):
        # The osyris dataset is only needed at construction time.
        state = dict(self.__dict__)
        state["_data"] = None
        return state
