"""Lorentz vectors as `numpy` arrays with the energy as first component."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np

from ampcache.accessor import DataAccessor
from ampcache.cached import RealCachedValue
from ampcache.combination import equal_by_orderless_content

if TYPE_CHECKING:
    from ampcache.cached import StatusManager
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPoint


def invariant_mass_squared(momentum: np.ndarray) -> float:
    energy, p_x, p_y, p_z = momentum
    return float(energy**2 - p_x**2 - p_y**2 - p_z**2)


def three_momentum_norm(momentum: np.ndarray) -> float:
    return float(np.linalg.norm(momentum[1:]))


def polar_angles(momentum: np.ndarray) -> tuple[float, float]:
    r"""Azimuthal angle :math:`\phi` and polar angle :math:`\theta` of a momentum."""
    _, p_x, p_y, p_z = momentum
    norm = three_momentum_norm(momentum)
    if norm == 0:
        return 0.0, 0.0
    phi = math.atan2(p_y, p_x)
    theta = math.acos(min(1.0, max(-1.0, p_z / norm)))
    return phi, theta


def boost_matrix(momentum: np.ndarray) -> np.ndarray:
    """Lorentz transformation into the rest frame of a four-momentum."""
    energy = momentum[0]
    beta_x, beta_y, beta_z = momentum[1:] / energy
    beta_sq = beta_x**2 + beta_y**2 + beta_z**2
    if beta_sq == 0:
        return np.identity(4)
    g = 1 / np.sqrt(1 - beta_sq)
    return np.array([
        [g, -g * beta_x, -g * beta_y, -g * beta_z],
        [
            -g * beta_x,
            1 + (g - 1) * beta_x**2 / beta_sq,
            (g - 1) * beta_y * beta_x / beta_sq,
            (g - 1) * beta_z * beta_x / beta_sq,
        ],
        [
            -g * beta_y,
            (g - 1) * beta_x * beta_y / beta_sq,
            1 + (g - 1) * beta_y**2 / beta_sq,
            (g - 1) * beta_z * beta_y / beta_sq,
        ],
        [
            -g * beta_z,
            (g - 1) * beta_x * beta_z / beta_sq,
            (g - 1) * beta_y * beta_z / beta_sq,
            1 + (g - 1) * beta_z**2 / beta_sq,
        ],
    ])


def rotation_y_matrix(angle: float) -> np.ndarray:
    return np.array([
        [1, 0, 0, 0],
        [0, np.cos(angle), 0, np.sin(angle)],
        [0, 0, 1, 0],
        [0, -np.sin(angle), 0, np.cos(angle)],
    ])


def rotation_z_matrix(angle: float) -> np.ndarray:
    return np.array([
        [1, 0, 0, 0],
        [0, np.cos(angle), -np.sin(angle), 0],
        [0, np.sin(angle), np.cos(angle), 0],
        [0, 0, 0, 1],
    ])


def combined_momentum(
    final_state_momenta: np.ndarray, combination: ParticleCombination
) -> np.ndarray:
    return final_state_momenta[list(combination.indices)].sum(axis=0)


class FourMomenta(DataAccessor):
    """Invariant masses of particle combinations."""

    def __init__(self) -> None:
        super().__init__(equal_by_orderless_content, name="FourMomenta")
        self.mass_squared = RealCachedValue(self, "m2")

    def momentum(
        self, point: DataPoint, combination: ParticleCombination
    ) -> np.ndarray:
        return combined_momentum(point.final_state_momenta, combination)

    def m2(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
    ) -> float:
        return self.mass_squared.get_or_compute(
            point,
            combination,
            status_manager,
            lambda: invariant_mass_squared(self.momentum(point, combination)),
        )

    def m(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
    ) -> float:
        m2 = self.m2(point, combination, status_manager)
        if m2 < 0:
            return math.nan
        return math.sqrt(m2)
