# -*- coding: utf-8 -*-

"""

Shared data model: converted cell instances and the dense volume they end up in.

"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np


def half_size_for_level(levels) -> np.ndarray:
    """Half-extent in normalized box units of a cell whose parent oct sits at `levels`."""
    return 0.5 / np.exp2(np.asarray(levels, dtype=np.float64) + 1.0)


@dataclass
class FieldInstances:
    """
    Column-wise list of accepted cells, ready to be rasterized.

    centers are wrapped into [0,1)^3, density is finite and >= 0 (overdensity or
    kg/m^3), temperature is in Kelvin, levels are the source refinement levels.
    refined marks cells that have children in the source; such cells are only
    rasterized when the build stops at or above their level (see `leaves`).
    """

    centers: np.ndarray
    half_sizes: np.ndarray
    density: np.ndarray
    temperature: np.ndarray
    levels: np.ndarray
    refined: Optional[np.ndarray] = None

    def __post_init__(self):
        self.centers = np.asarray(self.centers, dtype=np.float64).reshape(-1, 3)
        self.half_sizes = np.asarray(self.half_sizes, dtype=np.float64).reshape(-1)
        self.density = np.asarray(self.density, dtype=np.float64).reshape(-1)
        self.temperature = np.asarray(self.temperature, dtype=np.float64).reshape(-1)
        self.levels = np.asarray(self.levels, dtype=np.int64).reshape(-1)
        n = len(self.centers)
        if self.refined is None:
            self.refined = np.zeros(n, dtype=bool)
        else:
            self.refined = np.asarray(self.refined, dtype=bool).reshape(-1)
        for name in ("half_sizes", "density", "temperature", "levels", "refined"):
            if len(getattr(self, name)) != n:
                raise ValueError(f"FieldInstances.{name} has {len(getattr(self, name))} entries, expected {n}")

    def __len__(self) -> int:
        return len(self.centers)

    def __getitem__(self, index) -> "FieldInstances":
        return FieldInstances(
            centers=self.centers[index],
            half_sizes=self.half_sizes[index],
            density=self.density[index],
            temperature=self.temperature[index],
            levels=self.levels[index],
            refined=self.refined[index],
        )

    @classmethod
    def empty(cls) -> "FieldInstances":
        return cls(np.empty((0, 3)), np.empty(0), np.empty(0), np.empty(0), np.empty(0, dtype=np.int64))

    @classmethod
    def concatenate(cls, parts: Sequence["FieldInstances"]) -> "FieldInstances":
        parts = [p for p in parts if len(p)]
        if not parts:
            return cls.empty()
        return cls(
            centers=np.concatenate([p.centers for p in parts]),
            half_sizes=np.concatenate([p.half_sizes for p in parts]),
            density=np.concatenate([p.density for p in parts]),
            temperature=np.concatenate([p.temperature for p in parts]),
            levels=np.concatenate([p.levels for p in parts]),
            refined=np.concatenate([p.refined for p in parts]),
        )

    def leaf_mask(self, max_level: int) -> np.ndarray:
        """Cells that carry the finest data of their region in a build ending at max_level."""
        return ~self.refined | (self.levels >= max_level)

    def leaves(self, max_level: int) -> "FieldInstances":
        return self[self.leaf_mask(max_level)]

    def by_level(self, n_levels: int = 0) -> List["FieldInstances"]:
        """
        Split into one list per refinement level (index = level).

        The result has max(n_levels, highest level + 1) entries; levels without
        instances get an empty list.
        """
        top = int(self.levels.max()) + 1 if len(self) else 0
        return [self[self.levels == lvl] for lvl in range(max(n_levels, top))]


@dataclass(frozen=True)
class VolumeGrid:
    """
    Dense cubic volume handed to the renderer.

    density and temperature have shape (N, N, N), indexed [z, y, x], and are
    read-only once the grid is built.
    """

    density: np.ndarray
    temperature: np.ndarray

    def __post_init__(self):
        if self.density.shape != self.temperature.shape or self.density.ndim != 3:
            raise ValueError("density and temperature must be matching 3D arrays.")
        if len(set(self.density.shape)) != 1:
            raise ValueError(f"Volume must be cubic, got shape {self.density.shape}.")
        self.density.setflags(write=False)
        self.temperature.setflags(write=False)

    @property
    def resolution(self) -> int:
        return int(self.density.shape[0])
