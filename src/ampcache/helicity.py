"""Spin amplitudes of two-body decays in the helicity formalism.

All spins and spin projections are given as *twice* their value, so that half-integer
spins are represented by integers.
"""

from __future__ import annotations

import cmath
import logging
from functools import lru_cache
from math import factorial
from typing import TYPE_CHECKING, Callable

import sympy as sp

from ampcache.accessor import DataAccessor
from ampcache.cached import ComplexCachedValue
from ampcache.combination import equal_up_and_down
from ampcache.exceptions import AngularMomentumNotConserved

if TYPE_CHECKING:
    from ampcache.cached import StatusManager
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPoint
    from ampcache.model import Model

_LOGGER = logging.getLogger(__name__)


def triangle(two_j1: int, two_j2: int, two_j3: int) -> bool:
    """Check whether spins :math:`j_1` and :math:`j_2` can couple to :math:`j_3`."""
    if (two_j1 + two_j2 + two_j3) % 2:
        return False
    return abs(two_j1 - two_j2) <= two_j3 <= two_j1 + two_j2


def spin_projections(two_j: int) -> range:
    return range(-two_j, two_j + 1, 2)


@lru_cache(maxsize=None)
def clebsch_gordan(
    two_j1: int, two_m1: int, two_j2: int, two_m2: int, two_j: int, two_m: int
) -> float:
    r"""Clebsch-Gordan coefficient :math:`\langle j_1 m_1 j_2 m_2 | j m \rangle`."""
    from sympy.physics.quantum.cg import CG  # noqa: PLC0415

    if abs(two_m1) > two_j1 or abs(two_m2) > two_j2 or abs(two_m) > two_j:
        return 0.0
    coefficient = CG(
        j1=sp.Rational(two_j1, 2),
        m1=sp.Rational(two_m1, 2),
        j2=sp.Rational(two_j2, 2),
        m2=sp.Rational(two_m2, 2),
        j3=sp.Rational(two_j, 2),
        m3=sp.Rational(two_m, 2),
    )
    return float(coefficient.doit())


@lru_cache(maxsize=None)
def _get_wigner_small_d(two_j: int, two_m: int, two_n: int) -> Callable[[float], float]:
    r"""Get :math:`d^j_{mn}(\theta)` as a numerical function.

    The expression is built from the sum formula of Wigner and then lambdified, so
    that it is only constructed once for every combination of spin projections.
    """
    theta = sp.Symbol("theta", real=True)
    j_plus_m = (two_j + two_m) // 2
    j_minus_m = (two_j - two_m) // 2
    j_plus_n = (two_j + two_n) // 2
    j_minus_n = (two_j - two_n) // 2
    m_minus_n = (two_m - two_n) // 2
    norm = sp.sqrt(
        factorial(j_plus_m)
        * factorial(j_minus_m)
        * factorial(j_plus_n)
        * factorial(j_minus_n)
    )
    expr = sp.S.Zero
    for s in range(max(0, -m_minus_n), min(j_plus_n, j_minus_m) + 1):
        denominator = (
            factorial(j_plus_n - s)
            * factorial(s)
            * factorial(m_minus_n + s)
            * factorial(j_minus_m - s)
        )
        expr += (
            sp.Integer(-1) ** (m_minus_n + s)
            * norm
            / denominator
            * sp.cos(theta / 2) ** (two_j + (two_n - two_m) // 2 - 2 * s)
            * sp.sin(theta / 2) ** (m_minus_n + 2 * s)
        )
    return sp.lambdify(theta, expr, "math")


def wigner_small_d(two_j: int, two_m: int, two_n: int, theta: float) -> float:
    if abs(two_m) > two_j or abs(two_n) > two_j:
        return 0.0
    return float(_get_wigner_small_d(two_j, two_m, two_n)(theta))


def helicity_coefficient(  # noqa: PLR0917
    two_j: int,
    two_j1: int,
    two_j2: int,
    angular_momentum: int,
    two_s: int,
    two_lambda1: int,
    two_lambda2: int,
) -> float:
    r"""Coupling of helicities :math:`\lambda_1, \lambda_2` to :math:`L` and :math:`S`.

    .. math::
        \sqrt{\frac{2L+1}{2J+1}}
        C^{J,\lambda}_{L,0,S,\lambda} C^{S,\lambda}_{j_1,\lambda_1,j_2,-\lambda_2},
        \quad \lambda = \lambda_1 - \lambda_2
    """
    two_lambda = two_lambda1 - two_lambda2
    if abs(two_lambda) > two_j or abs(two_lambda) > two_s:
        return 0.0
    two_l = 2 * angular_momentum
    cg_ls = clebsch_gordan(two_l, 0, two_s, two_lambda, two_j, two_lambda)
    cg_ss = clebsch_gordan(two_j1, two_lambda1, two_j2, -two_lambda2, two_s, two_lambda)
    return ((2 * angular_momentum + 1) / (two_j + 1)) ** 0.5 * cg_ls * cg_ss


class SpinAmplitude(DataAccessor):
    r"""Angular part :math:`D^{J*}_{M\lambda}(\phi, \theta, 0)` of a two-body decay.

    There is one cached value for each combination of parent spin projection :math:`M`
    and daughter helicities :math:`\lambda_1, \lambda_2` with a non-zero coupling
    coefficient.
    """

    def __init__(  # noqa: PLR0917
        self,
        model: Model,
        two_j: int,
        two_j1: int,
        two_j2: int,
        angular_momentum: int,
        two_s: int,
    ) -> None:
        if not triangle(two_j, 2 * angular_momentum, two_s):
            msg = (
                f"J = {two_j}/2 cannot be formed from L = {angular_momentum} and"
                f" S = {two_s}/2"
            )
            raise AngularMomentumNotConserved(msg)
        if not triangle(two_j1, two_j2, two_s):
            msg = f"Spins {two_j1}/2 and {two_j2}/2 cannot couple to S = {two_s}/2"
            raise AngularMomentumNotConserved(msg)
        super().__init__(
            equal_up_and_down,
            name=(
                f"SpinAmplitude(J={two_j}/2 -> {two_j1}/2 + {two_j2}/2,"
                f" L={angular_momentum}, S={two_s}/2)"
            ),
        )
        self.two_j = two_j
        self.two_j1 = two_j1
        self.two_j2 = two_j2
        self.angular_momentum = angular_momentum
        self.two_s = two_s
        self.helicity_angles = model.helicity_angles
        self.__coefficients: dict[tuple[int, int, int], float] = {}
        self.__amplitudes: dict[tuple[int, int, int], ComplexCachedValue] = {}
        for two_m in spin_projections(two_j):
            for two_lambda1 in spin_projections(two_j1):
                for two_lambda2 in spin_projections(two_j2):
                    coefficient = helicity_coefficient(
                        two_j,
                        two_j1,
                        two_j2,
                        angular_momentum,
                        two_s,
                        two_lambda1,
                        two_lambda2,
                    )
                    if coefficient == 0:
                        continue
                    key = (two_m, two_lambda1, two_lambda2)
                    cached_value = ComplexCachedValue(
                        self, f"A({two_m}, {two_lambda1}, {two_lambda2})"
                    )
                    cached_value.add_dependency(self.helicity_angles.phi)
                    cached_value.add_dependency(self.helicity_angles.theta)
                    self.__coefficients[key] = coefficient
                    self.__amplitudes[key] = cached_value

    @property
    def quantum_numbers(self) -> tuple[int, int, int, int, int]:
        return (self.two_j, self.two_j1, self.two_j2, self.angular_momentum, self.two_s)

    def coefficient(self, two_m: int, two_lambda1: int, two_lambda2: int) -> float:
        return self.__coefficients.get((two_m, two_lambda1, two_lambda2), 0.0)

    def helicities(self, two_m: int) -> list[tuple[int, int]]:
        """Daughter helicities that contribute for parent spin projection :code:`two_m`."""
        return [(l1, l2) for m, l1, l2 in self.__amplitudes if m == two_m]

    def amplitude(  # noqa: PLR0917
        self,
        point: DataPoint,
        combination: ParticleCombination,
        two_m: int,
        two_lambda1: int,
        two_lambda2: int,
        status_manager: StatusManager,
    ) -> complex:
        key = (two_m, two_lambda1, two_lambda2)
        cached_value = self.__amplitudes.get(key)
        if cached_value is None:
            return 0j

        def compute() -> complex:
            phi, theta = self.helicity_angles.angles(point, combination, status_manager)
            d = wigner_small_d(self.two_j, two_m, two_lambda1 - two_lambda2, theta)
            return self.__coefficients[key] * cmath.exp(0.5j * two_m * phi) * d

        return cached_value.get_or_compute(point, combination, status_manager, compute)


class SpinAmplitudeCache:
    """Shares `SpinAmplitude` instances with equal quantum numbers within a `.Model`."""

    def __init__(self, model: Model) -> None:
        self.__model = model
        self.__amplitudes: dict[tuple[int, int, int, int, int], SpinAmplitude] = {}

    def get(  # noqa: PLR0917
        self,
        two_j: int,
        two_j1: int,
        two_j2: int,
        angular_momentum: int,
        two_s: int,
    ) -> SpinAmplitude:
        key = (two_j, two_j1, two_j2, angular_momentum, two_s)
        spin_amplitude = self.__amplitudes.get(key)
        if spin_amplitude is None:
            spin_amplitude = SpinAmplitude(self.__model, *key)
            self.__model.register(spin_amplitude)
            self.__amplitudes[key] = spin_amplitude
            _LOGGER.debug(f"Created {spin_amplitude.name}")
        return spin_amplitude

    def __len__(self) -> int:
        return len(self.__amplitudes)

    def __iter__(self):
        return iter(self.__amplitudes.values())
