"""Breakup momenta and three-body phase space."""

from __future__ import annotations

import itertools
import math
from typing import TYPE_CHECKING

import numpy as np
from attrs import field, frozen

from ampcache.accessor import DataAccessor
from ampcache.cached import RealCachedValue
from ampcache.combination import equal_down_by_orderless_content
from ampcache.exceptions import ConstructionError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ampcache.cached import StatusManager
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPoint
    from ampcache.kinematics.lorentz import FourMomenta


def breakup_momentum_squared(m2_r: float, m_a: float, m_b: float) -> float:
    r"""Squared momentum :math:`q^2` of :math:`a` and :math:`b` in the rest frame of :math:`R`.

    Negative below threshold, `math.nan` if :math:`m^2_R` is not positive.
    """
    if m2_r <= 0:
        return math.nan
    if m_a == m_b:
        return m2_r / 4 - m_a * m_a
    return (m2_r - (m_a + m_b) ** 2) * (m2_r - (m_a - m_b) ** 2) / m2_r / 4


class MeasuredBreakupMomenta(DataAccessor):
    """Breakup momenta computed from the invariant masses of an event."""

    def __init__(self, four_momenta: FourMomenta) -> None:
        super().__init__(equal_down_by_orderless_content, name="MeasuredBreakupMomenta")
        self.four_momenta = four_momenta
        self.breakup_momentum_squared = RealCachedValue(self, "q2")
        self.breakup_momentum_squared.add_dependency(four_momenta.mass_squared)

    def add_symmetrization_index(self, combination: ParticleCombination) -> int:
        if len(combination.daughters) != 2:
            msg = (
                f"Breakup momentum of {combination} is undefined, it is no two-body"
                " decay"
            )
            raise ConstructionError(msg)
        return super().add_symmetrization_index(combination)

    def q2(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
    ) -> float:
        def compute() -> float:
            m2_r = self.four_momenta.m2(point, combination, status_manager)
            m_a = self.four_momenta.m(point, combination.daughters[0], status_manager)
            m_b = self.four_momenta.m(point, combination.daughters[1], status_manager)
            return breakup_momentum_squared(m2_r, m_a, m_b)

        return self.breakup_momentum_squared.get_or_compute(
            point, combination, status_manager, compute
        )


def _as_pair(pair: Sequence[int]) -> tuple[int, int]:
    first, second = pair
    return (first, second)


@frozen
class MassAxis:
    """Squared invariant mass of two final-state particles, given by their positions."""

    indices: tuple[int, int] = field(converter=_as_pair)

    def __str__(self) -> str:
        return f"m2{self.indices}"


def kallen(x: float, y: float, z: float) -> float:
    """Källén function, used for computing break-up momenta."""
    return x**2 + y**2 + z**2 - 2 * x * y - 2 * y * z - 2 * z * x


def compute_third_mandelstam(
    sigma1: float, sigma2: float, m0: float, m1: float, m2: float, m3: float
) -> float:
    """Compute the third Mandelstam variable in a three-body decay."""
    return m0**2 + m1**2 + m2**2 + m3**2 - sigma1 - sigma2


def kibble(
    sigma1: float,
    sigma2: float,
    sigma3: float,
    m0: float,
    m1: float,
    m2: float,
    m3: float,
) -> float:
    """Kibble function, negative inside the Dalitz plot."""
    return kallen(
        kallen(sigma2, m2**2, m0**2),
        kallen(sigma3, m3**2, m0**2),
        kallen(sigma1, m1**2, m0**2),
    )


def mass_range(
    parent_mass: float, final_state_masses: Sequence[float], axis: MassAxis
) -> tuple[float, float]:
    """Kinematically allowed range of a squared invariant mass."""
    i, j = axis.indices
    low = final_state_masses[i] + final_state_masses[j]
    others = sum(m for k, m in enumerate(final_state_masses) if k not in {i, j})
    high = parent_mass - others
    return low**2, high**2


def calculate_four_momenta(
    parent_mass: float,
    final_state_masses: Sequence[float],
    axes: Sequence[MassAxis],
    squared_masses: Sequence[float],
) -> np.ndarray | None:
    """Construct final-state four-momenta in the rest frame of the parent.

    Only three-body decays are supported, with two `MassAxis` instances that span the
    Dalitz plot. Returns `None` if the point lies outside of phase space.
    """
    if len(final_state_masses) != 3:
        msg = "Four-momenta can only be constructed for three-body decays"
        raise ValueError(msg)
    if len(axes) != 2 or len(squared_masses) != 2:
        msg = "Need exactly two mass axes and two squared masses for a three-body decay"
        raise ValueError(msg)
    pair_masses = {frozenset(a.indices): s for a, s in zip(axes, squared_masses)}
    if len(pair_masses) != 2:
        msg = f"Mass axes {list(map(str, axes))} are not independent"
        raise ValueError(msg)
    all_pairs = {frozenset(pair) for pair in itertools.combinations(range(3), 2)}
    (third_pair,) = all_pairs - set(pair_masses)
    m1, m2, m3 = final_state_masses
    pair_masses[third_pair] = compute_third_mandelstam(
        *pair_masses.values(), parent_mass, m1, m2, m3
    )
    sigma1 = pair_masses[frozenset({1, 2})]
    sigma2 = pair_masses[frozenset({0, 2})]
    sigma3 = pair_masses[frozenset({0, 1})]
    if kibble(sigma1, sigma2, sigma3, parent_mass, m1, m2, m3) > 0:
        return None

    masses = final_state_masses
    recoil = [sigma1, sigma2, sigma3]
    energies = [
        (parent_mass**2 + masses[n] ** 2 - recoil[n]) / (2 * parent_mass)
        for n in range(3)
    ]
    if any(e < m for e, m in zip(energies, masses)):
        return None
    norms = [math.sqrt(e**2 - m**2) for e, m in zip(energies, masses)]
    if norms[0] * norms[1] == 0:
        cos_theta = 1.0
    else:
        cos_theta = (energies[0] * energies[1] - (sigma3 - m1**2 - m2**2) / 2) / (
            norms[0] * norms[1]
        )
    if abs(cos_theta) > 1:
        return None
    sin_theta = math.sqrt(1 - cos_theta**2)
    p1 = np.array([energies[0], 0.0, 0.0, norms[0]])
    p2 = np.array([energies[1], norms[1] * sin_theta, 0.0, norms[1] * cos_theta])
    p3 = np.array([energies[2], *(-p1[1:] - p2[1:])])
    return np.array([p1, p2, p3])
