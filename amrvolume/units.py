# -*- coding: utf-8 -*-

"""

Unit & derived-field conversion.

Turns raw code-unit cell samples into the values that end up in the volume:

- density as a dimensionless baryon overdensity (cosmological snapshots, Omega_b > 0)
  or as an absolute density in kg/m^3 (everything else);
- gas temperature in Kelvin from the ideal-gas relation T = P / rho * m_H / k_B.

Missing or broken unit scales never raise: they fall back to identity scaling and
the values stay in code units.

"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .instances import FieldInstances, half_size_for_level
from .source import CellBatch, SnapshotHeader

logger = logging.getLogger("amrvolume")

# SI constants
G = 6.67430e-11                 # m^3 kg^-1 s^-2
MPC_IN_M = 3.085677581491367e22  # m
K_B = 1.380649e-23              # J/K
M_H = 1.6735575e-27             # kg


def _valid_scale(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0.0


def critical_density(H0_km_s_Mpc: float) -> float:
    """
    Critical density of the universe today, rho_crit0 = 3 H0^2 / (8 pi G), in kg/m^3.

    Args:
        H0_km_s_Mpc: Hubble constant in km/s/Mpc.
    """
    H0 = H0_km_s_Mpc * 1000.0 / MPC_IN_M
    return 3.0 * H0 * H0 / (8.0 * math.pi * G)


def mean_baryon_density(header: SnapshotHeader) -> float:
    """
    Mean baryon density at the snapshot's expansion factor, Omega_b rho_crit0 / a^3.

    Returns 1 (identity) when H0 or the expansion factor make the value unusable.
    """
    try:
        rho_bar = header.omega_b * critical_density(header.H0) / header.aexp ** 3
    except (TypeError, ZeroDivisionError, OverflowError):
        rho_bar = float("nan")
    if not _valid_scale(rho_bar):
        logger.warning("Mean baryon density is not usable (H0=%r, aexp=%r); overdensity left unscaled.",
                       header.H0, header.aexp)
        return 1.0
    return rho_bar


def pressure_unit(header: SnapshotHeader) -> float:
    """Code-to-Pa pressure scale unit_d * unit_l^2 / unit_t^2, or 1 if any scale is unusable."""
    if _valid_scale(header.unit_d) and _valid_scale(header.unit_l) and _valid_scale(header.unit_t):
        return header.unit_d * header.unit_l ** 2 / header.unit_t ** 2
    return 1.0


@dataclass
class ConversionStats:
    """Per-build cell counters; merged across domains."""

    accepted: int = 0
    rejected_invalid: int = 0
    rejected_window: int = 0
    skipped_refined: int = 0

    def merge(self, other: "ConversionStats") -> "ConversionStats":
        return ConversionStats(
            accepted=self.accepted + other.accepted,
            rejected_invalid=self.rejected_invalid + other.rejected_invalid,
            rejected_window=self.rejected_window + other.rejected_window,
            skipped_refined=self.skipped_refined + other.skipped_refined,
        )

    @property
    def rejected(self) -> int:
        return self.rejected_invalid + self.rejected_window


class UnitConverter:
    """
    Converts raw cell batches into FieldInstances for one build.

    The density interpretation (overdensity or absolute) is decided once from the
    header and stays fixed for the whole build.
    """

    def __init__(
        self,
        is_overdensity: bool,
        density_scale: Optional[float],
        mean_density: float,
        pressure_scale: float,
        min_overdensity: float = 0.0,
        max_overdensity: float = 1e12,
    ):
        self.is_overdensity = is_overdensity
        self.density_scale = density_scale
        self.mean_density = mean_density
        self.pressure_scale = pressure_scale
        self.min_overdensity = min_overdensity
        self.max_overdensity = max_overdensity

    @classmethod
    def from_header(
        cls,
        header: SnapshotHeader,
        min_overdensity: float = 0.0,
        max_overdensity: float = 1e12,
    ) -> "UnitConverter":
        is_overdensity = header.omega_b > 0.0
        density_scale = header.unit_d if _valid_scale(header.unit_d) else None
        if density_scale is None:
            logger.info("No usable density unit (unit_d=%r); densities stay in code units.", header.unit_d)

        conv = cls(
            is_overdensity=is_overdensity,
            density_scale=density_scale,
            mean_density=mean_baryon_density(header) if is_overdensity else 1.0,
            pressure_scale=pressure_unit(header),
            min_overdensity=min_overdensity,
            max_overdensity=max_overdensity,
        )
        logger.debug(
            "Converter: mode=%s, density scale=%r, mean baryon density=%.6g, pressure unit=%.6g",
            "overdensity" if is_overdensity else "absolute",
            density_scale,
            conv.mean_density,
            conv.pressure_scale,
        )
        return conv

    def density_values(self, raw_density: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Physical density and display density for raw samples.

        Returns:
            (rho_phys, value): rho_phys in kg/m^3 (or code units without a scale),
            value is the overdensity or rho_phys depending on the mode.
        """
        if self.density_scale is None:
            return raw_density, raw_density
        rho_phys = raw_density * self.density_scale
        if self.is_overdensity:
            return rho_phys, rho_phys / self.mean_density
        return rho_phys, rho_phys

    def temperature(self, rho_phys: np.ndarray, raw_pressure: np.ndarray) -> np.ndarray:
        """Ideal-gas temperature in K; 0 where rho_phys <= 0 or the result is not finite."""
        p_phys = raw_pressure * self.pressure_scale
        positive = rho_phys > 0.0
        temp = np.zeros_like(rho_phys)
        temp[positive] = (p_phys[positive] / rho_phys[positive]) * (M_H / K_B)
        temp[~np.isfinite(temp)] = 0.0
        return temp

    def convert(
        self,
        batch: CellBatch,
        max_level: Optional[int] = None,
        keep_refined: bool = False,
    ) -> Tuple[FieldInstances, ConversionStats]:
        """
        Convert one batch of raw cells.

        Cells with non-finite or negative density are rejected, and in
        overdensity mode so are cells outside the [min_overdensity,
        max_overdensity] window.

        Args:
            batch: raw cells of one domain.
            max_level: finest level of the build. Refined cells below it are
                       covered by their children and skipped; refined cells at
                       or above it are the finest data left and count as leaves.
                       None treats every refined cell as covered.
            keep_refined: keep the skipped refined cells in the result (with
                          their `refined` flag) so a later build with a lower
                          max_level can use them.

        Returns:
            (instances, stats); stats always describe the leaves of this build.
        """
        stats = ConversionStats()

        leaf = batch.leaf_mask(max_level)
        stats.skipped_refined = int(np.count_nonzero(~leaf))
        if not keep_refined and not leaf.all():
            batch = batch.select(leaf)
            leaf = np.ones(len(batch), dtype=bool)

        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            rho_phys, value = self.density_values(batch.density)
            temp = self.temperature(rho_phys, batch.pressure)

            valid = np.isfinite(value) & (value >= 0.0)
            stats.rejected_invalid = int(np.count_nonzero(~valid & leaf))

            keep = valid
            if self.is_overdensity:
                in_window = (value >= self.min_overdensity) & (value <= self.max_overdensity)
                stats.rejected_window = int(np.count_nonzero(valid & ~in_window & leaf))
                keep = valid & in_window

        stats.accepted = int(np.count_nonzero(keep & leaf))

        centers = batch.positions[keep]
        centers = centers - np.floor(centers)
        # Tiny negatives round up to exactly 1.0 above.
        centers[centers >= 1.0] = 0.0
        levels = batch.levels[keep]
        refined = np.zeros(len(levels), dtype=bool) if batch.refined is None else batch.refined[keep]

        instances = FieldInstances(
            centers=centers,
            half_sizes=half_size_for_level(levels),
            density=value[keep],
            temperature=temp[keep],
            levels=levels,
            refined=refined,
        )
        return instances, stats
