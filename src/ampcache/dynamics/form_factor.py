"""Blatt-Weisskopf barrier factors."""

from __future__ import annotations

import logging
import math
import weakref
from typing import TYPE_CHECKING

from ampcache.accessor import DataAccessor
from ampcache.cached import RealCachedValue
from ampcache.combination import equal_down_by_orderless_content
from ampcache.exceptions import ProtocolError, UnsupportedAngularMomentum
from ampcache.kinematics.phasespace import breakup_momentum_squared

if TYPE_CHECKING:
    from ampcache.cached import StatusManager
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPoint
    from ampcache.particle import DecayingParticle

_LOGGER = logging.getLogger(__name__)

MAX_ANGULAR_MOMENTUM = 2


def blatt_weisskopf_f2(angular_momentum: int, z: float) -> float:
    r"""Denominator :math:`F_L^2(z)` of the squared Blatt-Weisskopf function.

    Closed forms are implemented up to :math:`L=2`:

    .. math:: F_0^2 = 1, \quad F_1^2 = 1 + z, \quad F_2^2 = 9 + 3z + z^2
    """
    if angular_momentum == 0:
        return 1.0
    if angular_momentum == 1:
        return 1.0 + z
    if angular_momentum == 2:
        return 9.0 + 3.0 * z + z * z
    check_angular_momentum(angular_momentum)
    msg = f"Invalid angular momentum L = {angular_momentum}"
    raise ValueError(msg)


def check_angular_momentum(angular_momentum: int) -> None:
    if angular_momentum > MAX_ANGULAR_MOMENTUM:
        msg = (
            f"Blatt-Weisskopf factor does not support L = {angular_momentum} >"
            f" {MAX_ANGULAR_MOMENTUM}"
        )
        raise UnsupportedAngularMomentum(msg)


def blatt_weisskopf_squared(angular_momentum: int, z: float) -> float:
    r"""Normalized Blatt-Weisskopf function :math:`B_L^2(z)`, with :math:`B_L^2(1)=1`."""
    f2 = blatt_weisskopf_f2(angular_momentum, z)
    return blatt_weisskopf_f2(angular_momentum, 1.0) * z**angular_momentum / f2


def _sqrt(value: float) -> float:
    if math.isnan(value) or value < 0:
        return math.nan
    return math.sqrt(value)


class BlattWeisskopf(DataAccessor):
    """Barrier factor for decays of a `.DecayingParticle` with orbital angular momentum L.

    The factor is the ratio :math:`F_L(q_R) / F_L(q)`, where :math:`q_R` is the breakup
    momentum computed with the nominal mass of the decaying particle and :math:`q` the
    breakup momentum computed from the invariant mass of the event. Both halves are cached
    separately, because they depend on different parameters.
    """

    def __init__(self, particle: DecayingParticle, angular_momentum: int) -> None:
        check_angular_momentum(angular_momentum)
        super().__init__(
            equal_down_by_orderless_content,
            name=f"BlattWeisskopf(L={angular_momentum}, {particle.name})",
        )
        self.__particle = weakref.ref(particle)
        self.angular_momentum = angular_momentum
        model = particle.model
        self.nominal_factor = RealCachedValue(self, "Fq_r")
        self.nominal_factor.add_dependency(model.four_momenta.mass_squared)
        self.nominal_factor.add_dependency(particle.mass)
        self.nominal_factor.add_dependency(particle.radial_size)
        self.measured_factor = RealCachedValue(self, "Fq_ab")
        self.measured_factor.add_dependency(
            model.breakup_momenta.breakup_momentum_squared
        )
        self.measured_factor.add_dependency(particle.radial_size)

    @property
    def particle(self) -> DecayingParticle:
        particle = self.__particle()
        if particle is None:
            msg = f"Decaying particle of {self.name} no longer exists"
            raise ProtocolError(msg)
        return particle

    def amplitude(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
    ) -> float:
        particle = self.particle
        model = particle.model
        radius = particle.radial_size.value

        def compute_nominal() -> float:
            m2_r = particle.mass.value**2
            m_a = model.four_momenta.m(point, combination.daughters[0], status_manager)
            m_b = model.four_momenta.m(point, combination.daughters[1], status_manager)
            q2 = breakup_momentum_squared(m2_r, m_a, m_b)
            return _sqrt(blatt_weisskopf_f2(self.angular_momentum, radius**2 * q2))

        def compute_measured() -> float:
            q2 = model.breakup_momenta.q2(point, combination, status_manager)
            return _sqrt(blatt_weisskopf_f2(self.angular_momentum, radius**2 * q2))

        nominal = self.nominal_factor.get_or_compute(
            point, combination, status_manager, compute_nominal
        )
        measured = self.measured_factor.get_or_compute(
            point, combination, status_manager, compute_measured
        )
        if measured == 0:
            return math.nan
        return nominal / measured
