"""Nodes of a decay tree that represent particles.

A `FinalStateParticle` terminates the recursion of the amplitude. A `DecayingParticle`
sums the amplitudes of its `.DecayChannel` instances, and a `Resonance` additionally
multiplies that sum with the lineshape of its `.MassShape`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from attrs import field, frozen
from attrs.validators import in_, instance_of, optional

from ampcache.accessor import DataAccessor
from ampcache.cached import ComplexCachedValue
from ampcache.combination import equal_up_and_down
from ampcache.dynamics.form_factor import BlattWeisskopf
from ampcache.exceptions import ConstructionError, ProtocolError
from ampcache.helicity import spin_projections
from ampcache.parameters import RealParameter

if TYPE_CHECKING:
    from ampcache.cached import StatusManager
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPoint
    from ampcache.decay import DecayChannel
    from ampcache.dynamics.lineshape import MassShape
    from ampcache.model import Model

_LOGGER = logging.getLogger(__name__)


def _check_spin(instance: QuantumNumbers, attribute, value: int) -> None:  # noqa: ARG001
    if value < 0:
        msg = f"{attribute.name} has to be non-negative, got {value}"
        raise ConstructionError(msg)


@frozen
class QuantumNumbers:
    """Spin (times two), electric charge, and optionally the intrinsic parity."""

    two_j: int = field(validator=[instance_of(int), _check_spin])
    charge: int = field(default=0, validator=instance_of(int))
    parity: int | None = field(default=None, validator=optional(in_({-1, +1})))

    @property
    def spin_projections(self) -> range:
        return spin_projections(self.two_j)


class FinalStateParticle:
    """Leaf of the decay tree with a fixed mass.

    The same instance can appear several times in the final state of a `.Model`, for
    identical particles. It is not a data accessor: its amplitude is always one.
    """

    def __init__(self, quantum_numbers: QuantumNumbers, mass: float, name: str) -> None:
        if mass < 0:
            msg = f"Mass of {name} has to be non-negative, got {mass}"
            raise ConstructionError(msg)
        self.quantum_numbers = quantum_numbers
        self.mass = float(mass)
        self.name = name
        self.__combinations: list[ParticleCombination] = []

    @property
    def nominal_mass(self) -> float:
        return self.mass

    @property
    def cached_amplitudes(self) -> dict[int, ComplexCachedValue]:
        return {}

    @property
    def particle_combinations(self) -> list[ParticleCombination]:
        """Final-state combinations at which this particle is positioned."""
        return list(self.__combinations)

    def _add_particle_combination(self, combination: ParticleCombination) -> None:
        if not combination.is_final_state_particle:
            msg = f"{combination!r} is not a final-state combination"
            raise ConstructionError(msg)
        self.__combinations.append(combination)

    def amplitude(
        self,
        point: DataPoint,  # noqa: ARG002
        combination: ParticleCombination,  # noqa: ARG002
        two_m: int,
        status_manager: StatusManager,  # noqa: ARG002
    ) -> complex:
        if abs(two_m) > self.quantum_numbers.two_j:
            return 0j
        return 1 + 0j

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class DecayingParticle(DataAccessor):
    """Particle that decays through one or more two-body `.DecayChannel` instances.

    The amplitude for a spin projection :math:`M` is the sum over the channels that
    produce the requested combination. There is one cached value per spin projection.
    """

    def __init__(  # noqa: PLR0917
        self,
        model: Model,
        quantum_numbers: QuantumNumbers,
        mass: float,
        name: str,
        radial_size: float | None = None,
    ) -> None:
        if model.is_prepared:
            msg = f"Cannot create {name}, the model has been prepared already"
            raise ProtocolError(msg)
        if radial_size is None:
            radial_size = model.configuration.default_radial_size
        if mass <= 0:
            msg = f"Mass of {name} has to be positive, got {mass}"
            raise ConstructionError(msg)
        if radial_size <= 0:
            msg = f"Radial size of {name} has to be positive, got {radial_size}"
            raise ConstructionError(msg)
        super().__init__(equal_up_and_down, name=name)
        self.model = model
        self.quantum_numbers = quantum_numbers
        self.mass = RealParameter.create(model.parameters, mass, f"{name}.mass")
        self.radial_size = RealParameter.create(
            model.parameters, radial_size, f"{name}.radial_size"
        )
        self.__channels: list[DecayChannel] = []
        self.__barrier_factors: dict[int, BlattWeisskopf] = {}
        self.__amplitudes = {
            two_m: ComplexCachedValue(self, f"A({two_m})")
            for two_m in quantum_numbers.spin_projections
        }
        model.register(self)

    @property
    def nominal_mass(self) -> float:
        return self.mass.value

    @property
    def channels(self) -> list[DecayChannel]:
        return list(self.__channels)

    @property
    def barrier_factors(self) -> dict[int, BlattWeisskopf]:
        return dict(self.__barrier_factors)

    @property
    def cached_amplitudes(self) -> dict[int, ComplexCachedValue]:
        return dict(self.__amplitudes)

    def add_channel(
        self,
        daughters: Iterable[FinalStateParticle | DecayingParticle],
        l: int | None = None,  # noqa: E741
        two_s: int | None = None,
    ) -> DecayChannel:
        """Add a two-body decay, see `.DecayChannel` for how L and S are chosen."""
        from ampcache.decay import DecayChannel  # noqa: PLC0415

        return DecayChannel(self, daughters, l=l, two_s=two_s)

    def barrier_factor(self, angular_momentum: int) -> BlattWeisskopf:
        """Get the barrier factor for decays of this particle with orbital momentum L."""
        barrier_factor = self.__barrier_factors.get(angular_momentum)
        if barrier_factor is None:
            barrier_factor = BlattWeisskopf(self, angular_momentum)
            self.model.register(barrier_factor)
            self.__barrier_factors[angular_momentum] = barrier_factor
        return barrier_factor

    def _add_channel(self, channel: DecayChannel) -> None:
        self.__channels.append(channel)
        for two_m, cached_value in self.__amplitudes.items():
            cached_value.add_dependency(channel.free_amplitude)
            channel_value = channel.cached_amplitudes.get(two_m)
            if channel_value is not None:
                cached_value.add_dependency(channel_value)
        for combination in channel.particle_combinations:
            self.add_symmetrization_index(combination)
        _LOGGER.debug(f"Added decay channel {channel.name} to {self.name}")

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
        return cached_value.get_or_compute(
            point,
            combination,
            status_manager,
            lambda: self._calculate(point, combination, two_m, status_manager),
        )

    def _calculate(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        two_m: int,
        status_manager: StatusManager,
    ) -> complex:
        total = 0j
        for channel in self.__channels:
            if channel.has_symmetrization_index(combination):
                total += channel.amplitude(point, combination, two_m, status_manager)
        return total


class Resonance(DecayingParticle):
    """Decaying particle with a lineshape, such as a `.BreitWigner`."""

    def __init__(  # noqa: PLR0917
        self,
        model: Model,
        quantum_numbers: QuantumNumbers,
        mass: float,
        name: str,
        mass_shape: MassShape,
        radial_size: float | None = None,
    ) -> None:
        if mass_shape.has_resonance:
            msg = (
                f"{mass_shape.name} is already the mass shape of"
                f" {mass_shape.resonance.name}"
            )
            raise ConstructionError(msg)
        super().__init__(model, quantum_numbers, mass, name, radial_size)
        self.mass_shape = mass_shape
        mass_shape.set_resonance(self)
        for cached_value in self.cached_amplitudes.values():
            cached_value.add_dependency(mass_shape.lineshape)

    def add_symmetrization_index(self, combination: ParticleCombination) -> int:
        self.mass_shape.add_symmetrization_index(combination)
        return super().add_symmetrization_index(combination)

    def clear_symmetrization_indices(self) -> None:
        self.mass_shape.clear_symmetrization_indices()
        super().clear_symmetrization_indices()

    def _calculate(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        two_m: int,
        status_manager: StatusManager,
    ) -> complex:
        total = super()._calculate(point, combination, two_m, status_manager)
        if total == 0:
            return total
        return total * self.mass_shape.amplitude(point, combination, status_manager)
