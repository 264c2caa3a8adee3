"""Lineshapes of resonances, cached per invariant mass of a combination.

.. seealso:: `.Resonance`
"""

from __future__ import annotations

import math
import weakref
from typing import TYPE_CHECKING

from ampcache.accessor import DataAccessor
from ampcache.cached import ComplexCachedValue
from ampcache.combination import equal_by_orderless_content
from ampcache.dynamics.form_factor import (
    blatt_weisskopf_squared,
    check_angular_momentum,
)
from ampcache.exceptions import ConstructionError, ProtocolError
from ampcache.kinematics.phasespace import breakup_momentum_squared
from ampcache.parameters import RealParameter

if TYPE_CHECKING:
    from ampcache.cached import StatusManager
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPoint
    from ampcache.model import Model
    from ampcache.particle import Resonance


def _check_width(width: float) -> None:
    if width <= 0:
        msg = f"Width has to be positive, got {width}"
        raise ConstructionError(msg)


class MassShape(DataAccessor):
    """Base class for lineshapes.

    A mass shape is created with a `.Model` and then handed over to a single
    `.Resonance`, which provides the pole mass and the radial size.
    """

    def __init__(self, model: Model, name: str | None = None) -> None:
        super().__init__(equal_by_orderless_content, name=name)
        self.model = model
        self.__resonance: weakref.ReferenceType[Resonance] | None = None
        self.__parameters: dict[str, RealParameter] = {}
        self.lineshape = ComplexCachedValue(self, "T")
        self.lineshape.add_dependency(model.four_momenta.mass_squared)
        model.register(self)

    @property
    def has_resonance(self) -> bool:
        return self.__resonance is not None and self.__resonance() is not None

    @property
    def resonance(self) -> Resonance:
        if self.__resonance is None or self.__resonance() is None:
            msg = f"{self.name} has not been assigned to a resonance"
            raise ProtocolError(msg)
        return self.__resonance()

    def set_resonance(self, resonance: Resonance) -> None:
        if self.__resonance is not None:
            msg = f"{self.name} is already the mass shape of {self.resonance.name}"
            raise ConstructionError(msg)
        self.__resonance = weakref.ref(resonance)
        self.name = f"{type(self).__name__}({resonance.name})"
        self.lineshape.add_dependency(resonance.mass)
        self.lineshape.add_dependency(resonance.radial_size)
        for name, parameter in self.__parameters.items():
            self.model.parameters.rename(parameter.index, f"{resonance.name}.{name}")

    def _create_parameter(self, value: float, name: str) -> RealParameter:
        """Create a fixed parameter that is renamed after the resonance once assigned."""
        parameter = RealParameter.create(self.model.parameters, value, name)
        self.__parameters[name] = parameter
        self.lineshape.add_dependency(parameter)
        return parameter

    def amplitude(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
    ) -> complex:
        return self.lineshape.get_or_compute(
            point,
            combination,
            status_manager,
            lambda: self.calculate(point, combination, status_manager),
        )

    def calculate(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
    ) -> complex:
        raise NotImplementedError


class BreitWigner(MassShape):
    r"""Breit-Wigner with fixed width, :math:`1 / (M^2 - s - iM\Gamma)`."""

    def __init__(self, model: Model, width: float) -> None:
        _check_width(width)
        super().__init__(model)
        self.width = self._create_parameter(width, "width")

    def calculate(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
    ) -> complex:
        s = self.model.four_momenta.m2(point, combination, status_manager)
        mass = self.resonance.mass.value
        return 1 / complex(mass**2 - s, -mass * self.width.value)


class RelativisticBreitWigner(MassShape):
    r"""Breit-Wigner with an energy-dependent width.

    The width is :math:`\Gamma(s) = \Gamma_0 \frac{B_L^2(q^2 R^2)}{B_L^2(q_0^2 R^2)}
    \frac{q / \sqrt{s}}{q_0 / M}`, with :math:`q` the breakup momentum for the invariant
    mass of the combination and :math:`q_0` the one for the pole mass :math:`M`.
    """

    def __init__(self, model: Model, width: float, angular_momentum: int = 0) -> None:
        _check_width(width)
        check_angular_momentum(angular_momentum)
        super().__init__(model)
        self.angular_momentum = angular_momentum
        self.width = self._create_parameter(width, "width")

    def calculate(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
    ) -> complex:
        four_momenta = self.model.four_momenta
        s = four_momenta.m2(point, combination, status_manager)
        m_a = four_momenta.m(point, combination.daughters[0], status_manager)
        m_b = four_momenta.m(point, combination.daughters[1], status_manager)
        mass = self.resonance.mass.value
        radius = self.resonance.radial_size.value
        q2 = breakup_momentum_squared(s, m_a, m_b)
        q2_0 = breakup_momentum_squared(mass**2, m_a, m_b)
        if s <= 0 or q2 < 0 or q2_0 <= 0:
            return complex(math.nan, math.nan)
        ff = blatt_weisskopf_squared(self.angular_momentum, q2 * radius**2)
        ff_0 = blatt_weisskopf_squared(self.angular_momentum, q2_0 * radius**2)
        rho = math.sqrt(q2 / s)
        rho_0 = math.sqrt(q2_0) / mass
        width = self.width.value * (ff / ff_0) * (rho / rho_0)
        return 1 / complex(mass**2 - s, -mass * width)
