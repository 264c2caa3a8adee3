"""Two-body decay channels of a `.DecayingParticle`."""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Iterable, Union

from ampcache.accessor import DataAccessor
from ampcache.cached import ComplexCachedValue
from ampcache.combination import equal_down, equal_up_and_down
from ampcache.dynamics.form_factor import check_angular_momentum
from ampcache.exceptions import (
    AngularMomentumNotConserved,
    ChargeNotConserved,
    ConstructionError,
    ProtocolError,
)
from ampcache.helicity import triangle
from ampcache.parameters import ComplexParameter

if TYPE_CHECKING:
    from ampcache.cached import StatusManager
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPoint
    from ampcache.particle import DecayingParticle, FinalStateParticle, QuantumNumbers

    Daughter = Union[DecayingParticle, FinalStateParticle]

_LOGGER = logging.getLogger(__name__)


def allowed_couplings(
    parent: QuantumNumbers, daughter1: QuantumNumbers, daughter2: QuantumNumbers
) -> list[tuple[int, int]]:
    r"""All :math:`(L, 2S)` through which a decay can proceed, sorted by L and then S.

    Both triangle inequalities, :math:`|j_1 - j_2| \leq S \leq j_1 + j_2` and
    :math:`|L - S| \leq J \leq L + S`, have to hold. If the parities of all three
    particles are known, :math:`P = P_1 P_2 (-1)^L` is required as well.
    """
    parities = (parent.parity, daughter1.parity, daughter2.parity)
    check_parity = all(p is not None for p in parities)
    max_l = (parent.two_j + daughter1.two_j + daughter2.two_j) // 2
    couplings = []
    for angular_momentum in range(max_l + 1):
        if check_parity:
            p, p1, p2 = parities
            if p != p1 * p2 * (-1) ** angular_momentum:
                continue
        for two_s in range(
            abs(daughter1.two_j - daughter2.two_j),
            daughter1.two_j + daughter2.two_j + 1,
            2,
        ):
            if triangle(parent.two_j, 2 * angular_momentum, two_s):
                couplings.append((angular_momentum, two_s))
    return couplings


def select_coupling(
    parent: QuantumNumbers,
    daughter1: QuantumNumbers,
    daughter2: QuantumNumbers,
    l: int | None = None,  # noqa: E741
    two_s: int | None = None,
) -> tuple[int, int]:
    """Check a given :math:`(L, 2S)` or choose the lowest allowed values."""
    candidates = [
        (angular_momentum, s)
        for angular_momentum, s in allowed_couplings(parent, daughter1, daughter2)
        if (l is None or angular_momentum == l) and (two_s is None or s == two_s)
    ]
    if not candidates:
        msg = (
            f"Spin {parent.two_j}/2 cannot decay into spins {daughter1.two_j}/2 and"
            f" {daughter2.two_j}/2 with L = {'any' if l is None else l} and 2S ="
            f" {'any' if two_s is None else two_s}"
        )
        raise AngularMomentumNotConserved(msg)
    return candidates[0]


class DecayChannel(DataAccessor):
    r"""Decay of a parent particle into two daughters with fixed L and S.

    The amplitude of a channel for parent spin projection :math:`M` is

    .. math::
        a \sum_{\lambda_1, \lambda_2} B_L \, A^J_{M \lambda_1 \lambda_2}
        \, A_1(\lambda_1) \, A_2(\lambda_2),

    with :math:`a` the free amplitude, :math:`B_L` the barrier factor of the parent,
    :math:`A^J` the `.SpinAmplitude`, and :math:`A_i` the amplitudes of the daughters
    for their helicities. The cached value holds the sum, without the free amplitude.

    All input is validated before anything is registered with the model, so a failing
    channel leaves the decay tree as it was.
    """

    def __init__(
        self,
        parent: DecayingParticle,
        daughters: Iterable[Daughter],
        l: int | None = None,  # noqa: E741
        two_s: int | None = None,
    ) -> None:
        model = parent.model
        if model.is_prepared:
            msg = f"Cannot add a channel to {parent.name} after the model was prepared"
            raise ProtocolError(msg)
        daughters = tuple(daughters)
        if len(daughters) != 2:
            msg = (
                f"Only two-body decays are supported, but {parent.name} was given"
                f" {len(daughters)} daughters"
            )
            raise ConstructionError(msg)
        names = " + ".join(d.name for d in daughters)
        charge = sum(d.quantum_numbers.charge for d in daughters)
        if charge != parent.quantum_numbers.charge:
            msg = (
                f"Charge of {parent.name} ({parent.quantum_numbers.charge}) differs"
                f" from the total charge of {names} ({charge})"
            )
            raise ChargeNotConserved(msg)
        mass_sum = sum(d.nominal_mass for d in daughters)
        if mass_sum > parent.nominal_mass:
            msg = (
                f"Masses of {names} add up to {mass_sum}, which is more than the mass"
                f" {parent.nominal_mass} of {parent.name}"
            )
            raise ConstructionError(msg)
        coupling = select_coupling(
            parent.quantum_numbers,
            daughters[0].quantum_numbers,
            daughters[1].quantum_numbers,
            l,
            two_s,
        )
        if l is None or two_s is None:
            _LOGGER.debug(f"Selected (L, 2S) = {coupling} for {parent.name} -> {names}")
        angular_momentum, two_s = coupling
        check_angular_momentum(angular_momentum)
        pairs = _combine(daughters)
        if not pairs:
            msg = f"{names} have no disjoint final-state combinations"
            raise ConstructionError(msg)

        super().__init__(
            equal_up_and_down,
            name=f"{parent.name} -> {names} (L={angular_momentum}, S={two_s}/2)",
        )
        self.model = model
        self.parent = parent
        self.daughters = daughters
        self.angular_momentum = angular_momentum
        self.two_s = two_s
        self.spin_amplitude = model.spin_amplitudes.get(
            parent.quantum_numbers.two_j,
            daughters[0].quantum_numbers.two_j,
            daughters[1].quantum_numbers.two_j,
            angular_momentum,
            two_s,
        )
        self.barrier_factor = parent.barrier_factor(angular_momentum)
        self.free_amplitude = ComplexParameter.create(
            model.parameters, 1, f"{self.name}.amplitude"
        )
        self.__amplitudes = {
            two_m: ComplexCachedValue(self, f"A({two_m})")
            for two_m in parent.quantum_numbers.spin_projections
        }
        for cached_value in self.__amplitudes.values():
            cached_value.add_dependency(self.barrier_factor.nominal_factor)
            cached_value.add_dependency(self.barrier_factor.measured_factor)
            for spin_value in self.spin_amplitude.cached_values:
                cached_value.add_dependency(spin_value)
            for daughter in daughters:
                for daughter_value in daughter.cached_amplitudes.values():
                    cached_value.add_dependency(daughter_value)

        for first, second in pairs:
            if self.__has_swapped(first, second):
                continue
            self.add_symmetrization_index(model.combinations.composite([first, second]))
        model.register(self)
        parent._add_channel(self)  # noqa: SLF001

    @property
    def cached_amplitudes(self) -> dict[int, ComplexCachedValue]:
        return dict(self.__amplitudes)

    def add_symmetrization_index(self, combination: ParticleCombination) -> int:
        """Register a combination with this channel and the accessors it relies on."""
        self.spin_amplitude.add_symmetrization_index(combination)
        self.barrier_factor.add_symmetrization_index(combination)
        self.model.breakup_momenta.add_symmetrization_index(combination)
        self.model.helicity_angles.add_symmetrization_index(combination)
        self.model.four_momenta.add_symmetrization_index(combination)
        for daughter in combination.daughters:
            self.model.four_momenta.add_symmetrization_index(daughter)
        return super().add_symmetrization_index(combination)

    def amplitude(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        two_m: int,
        status_manager: StatusManager,
    ) -> complex:
        cached_value = self.__amplitudes.get(two_m)
        if cached_value is None:
            return 0j
        value = cached_value.get_or_compute(
            point,
            combination,
            status_manager,
            lambda: self._calculate(point, combination, two_m, status_manager),
        )
        return self.free_amplitude.value * value

    def _calculate(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        two_m: int,
        status_manager: StatusManager,
    ) -> complex:
        barrier = self.barrier_factor.amplitude(point, combination, status_manager)
        total = 0j
        for two_lambda1, two_lambda2 in self.spin_amplitude.helicities(two_m):
            spin = self.spin_amplitude.amplitude(
                point, combination, two_m, two_lambda1, two_lambda2, status_manager
            )
            product = barrier * spin
            if product == 0:
                continue
            for daughter, sub_combination, helicity in zip(
                self.daughters, combination.daughters, (two_lambda1, two_lambda2)
            ):
                product *= daughter.amplitude(
                    point, sub_combination, helicity, status_manager
                )
            total += product
        return total

    def __has_swapped(
        self, first: ParticleCombination, second: ParticleCombination
    ) -> bool:
        """Check whether the pair has been registered in reversed order already."""
        for combination in self.particle_combinations:
            a, b = combination.daughters
            if equal_down(a, second) and equal_down(b, first):
                return True
        return False


def _combine(
    daughters: tuple[Daughter, ...],
) -> list[tuple[ParticleCombination, ParticleCombination]]:
    combinations = (d.particle_combinations for d in daughters)
    return [
        (first, second)
        for first, second in itertools.product(*combinations)
        if not first.shares_indices(second)
    ]
