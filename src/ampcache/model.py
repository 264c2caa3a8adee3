"""The model owns a decay tree and drives its evaluation over a data set.

The life cycle of a `Model` is:

1. Define the final state with `Model.set_final_state`.
2. Build the decay tree bottom-up from `.DecayingParticle` and `.Resonance` instances
   and hand its root to `Model.set_initial_state_particle`.
3. Call `Model.prepare_data_accessors`, which assigns symmetrization indices along the
   complete decay chains and freezes the storage layout.
4. Optionally split the data set with `Model.set_data_partitions`.
5. Evaluate with `Model.sum_of_logs_of_squared_amplitudes`, change parameters, evaluate
   again. Only values that depend on a changed parameter are recomputed.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Iterable, Sequence

import numpy as np
from attrs import field, frozen
from attrs.validators import and_, ge, gt, instance_of, optional

from ampcache.accessor import AccessorIndex
from ampcache.cached import CalculationStatus, StatusManager
from ampcache.combination import ParticleCombinationCache
from ampcache.data import DataPoint, DataSet, DataPartitionWeave
from ampcache.decay import DecayChannel
from ampcache.exceptions import ConstructionError, ProtocolError
from ampcache.helicity import SpinAmplitudeCache
from ampcache.kinematics.angles import HelicityAngles
from ampcache.kinematics.lorentz import FourMomenta
from ampcache.kinematics.phasespace import (
    MassAxis,
    MeasuredBreakupMomenta,
    calculate_four_momenta,
    mass_range,
)
from ampcache.parameters import ParameterStore
from ampcache.particle import DecayingParticle, FinalStateParticle
from ampcache.tree import data_accessors, iterate_nodes, rebuild_symmetrization_indices

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

    from ampcache.accessor import DataAccessor
    from ampcache.cached import CachedValue
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPartition
    from ampcache.parameters import ComplexParameter

_LOGGER = logging.getLogger(__name__)


@frozen
class ModelConfiguration:
    default_radial_size: float = field(default=3.0, converter=float, validator=gt(0))
    """Radial size in GeV⁻¹ of decaying particles that are created without one."""
    skip_invalid_events: bool = field(default=True, validator=instance_of(bool))
    """Leave out events with a `math.nan` amplitude from sums of logarithms."""
    max_workers: int | None = field(
        default=None, validator=optional(and_(instance_of(int), ge(1)))
    )
    """Number of threads over which data partitions are distributed."""


@frozen
class ConsistencyReport:
    """Outcome of `Model.consistent`, evaluates to `True` if there are no issues."""

    issues: tuple[str, ...] = field(factory=tuple, converter=tuple)

    @property
    def passed(self) -> bool:
        return not self.issues

    def __bool__(self) -> bool:
        return self.passed


class Model:
    """Decay tree, data accessors, parameters, and data of an amplitude model."""

    def __init__(self, configuration: ModelConfiguration | None = None) -> None:
        if configuration is None:
            configuration = ModelConfiguration()
        self.configuration = configuration
        self.combinations = ParticleCombinationCache()
        self.parameters = ParameterStore()
        self.accessors = AccessorIndex()
        self.four_momenta = FourMomenta()
        self.breakup_momenta = MeasuredBreakupMomenta(self.four_momenta)
        self.helicity_angles = HelicityAngles()
        for accessor in self.__kinematic_accessors:
            self.register(accessor)
        self.spin_amplitudes = SpinAmplitudeCache(self)
        self.data_set = DataSet()
        self.__final_state: list[FinalStateParticle] = []
        self.__initial_state: DecayingParticle | None = None
        self.__top_combinations: list[ParticleCombination] = []
        self.__partitions: list[DataPartition] = []
        self.__dependents: dict[int, list[CachedValue]] = {}

    @property
    def __kinematic_accessors(self) -> list[DataAccessor]:
        return [self.four_momenta, self.breakup_momenta, self.helicity_angles]

    @property
    def is_prepared(self) -> bool:
        return self.accessors.is_frozen

    def register(self, accessor: DataAccessor) -> None:
        self.accessors.register(accessor)

    def set_final_state(self, particles: Iterable[FinalStateParticle]) -> None:
        """Define the final state. Its order is the order of the momenta of each event."""
        if self.__final_state:
            msg = "The final state has been set already"
            raise ProtocolError(msg)
        particles = list(particles)
        if not particles:
            msg = "The final state needs at least one particle"
            raise ConstructionError(msg)
        for particle in particles:
            if not isinstance(particle, FinalStateParticle):
                msg = f"{particle!r} is not a {FinalStateParticle.__name__}"
                raise ConstructionError(msg)
        for index, particle in enumerate(particles):
            particle._add_particle_combination(self.combinations.fsp(index))  # noqa: SLF001
        self.__final_state = particles

    @property
    def final_state_particles(self) -> list[FinalStateParticle]:
        return list(self.__final_state)

    def set_initial_state_particle(self, particle: DecayingParticle) -> None:
        if self.is_prepared:
            msg = "Cannot change the initial-state particle of a prepared model"
            raise ProtocolError(msg)
        if not isinstance(particle, DecayingParticle) or particle.model is not self:
            msg = f"{particle!r} is not a decaying particle of this model"
            raise ConstructionError(msg)
        if not particle.channels:
            msg = f"Initial-state particle {particle.name} has no decay channels"
            raise ConstructionError(msg)
        self.__initial_state = particle

    @property
    def initial_state_particle(self) -> DecayingParticle:
        if self.__initial_state is None:
            msg = "The initial-state particle has not been set"
            raise ProtocolError(msg)
        return self.__initial_state

    @property
    def top_combinations(self) -> list[ParticleCombination]:
        """Combinations of the complete final state that the amplitude is summed over."""
        return list(self.__top_combinations)

    def prepare_data_accessors(self) -> None:
        """Freeze the decay tree and allocate the storage of all events."""
        if self.is_prepared:
            msg = "Data accessors have been prepared already"
            raise ProtocolError(msg)
        if not self.__final_state:
            msg = "The final state has not been set"
            raise ProtocolError(msg)
        initial_state = self.initial_state_particle
        final_state = list(range(len(self.__final_state)))
        top_combinations = [
            c
            for c in initial_state.particle_combinations
            if sorted(c.indices) == final_state
        ]
        if not top_combinations:
            msg = f"{initial_state.name} does not decay into the complete final state"
            raise ConstructionError(msg)
        rebuild_symmetrization_indices(
            initial_state,
            top_combinations,
            self.four_momenta,
            [self.breakup_momenta, self.helicity_angles],
        )
        reachable = [*data_accessors(initial_state), *self.__kinematic_accessors]
        self.accessors.prune(reachable)
        self.accessors.freeze()
        self.__top_combinations = top_combinations
        dependents = defaultdict(list)
        for cached_value in self.accessors.cached_values:
            for index in cached_value.all_parameter_dependencies():
                dependents[index].append(cached_value)
        self.__dependents = dict(dependents)
        for point in self.data_set:
            point.allocate(self.accessors)
        self.combinations.prune()
        n_floats = sum(a.n_symmetrization_indices * a.size for a in self.accessors)
        _LOGGER.info(
            f"Prepared {len(self.accessors)} data accessors for"
            f" {len(top_combinations)} top-level combinations, {n_floats} values per"
            f" event for {len(self.data_set)} events"
        )
        self.set_data_partitions(DataPartitionWeave.create(self.data_set, 1))

    def add_data_point(self, final_state_momenta: ArrayLike) -> DataPoint:
        point = DataPoint(final_state_momenta)
        n_momenta = len(point.final_state_momenta)
        if self.__final_state and n_momenta != len(self.__final_state):
            msg = (
                f"Expecting {len(self.__final_state)} final-state momenta, got"
                f" {n_momenta}"
            )
            raise ValueError(msg)
        if self.is_prepared:
            point.allocate(self.accessors)
        self.data_set.add(point)
        return point

    @staticmethod
    def set_final_state_momenta(point: DataPoint, momenta: ArrayLike) -> None:
        """Replace the kinematics of an event, its cached values become invalid."""
        point.set_final_state_momenta(momenta)

    def set_data_partitions(self, partitions: Iterable[DataPartition]) -> None:
        if not self.is_prepared:
            msg = "Data partitions can only be set after prepare_data_accessors()"
            raise ProtocolError(msg)
        partitions = list(partitions)
        if not partitions:
            msg = "Need at least one data partition"
            raise ValueError(msg)
        for partition in partitions:
            if partition.data_set is not self.data_set:
                msg = "Data partitions have to be views on the data set of the model"
                raise ProtocolError(msg)
        cached_values = self.accessors.cached_values
        for partition in partitions:
            partition.status_manager = StatusManager(cached_values)
        self.__partitions = partitions

    @property
    def data_partitions(self) -> list[DataPartition]:
        if not self.is_prepared:
            msg = "Data partitions are only available after prepare_data_accessors()"
            raise ProtocolError(msg)
        return list(self.__partitions)

    def amplitudes(
        self, point: DataPoint, status_manager: StatusManager
    ) -> dict[int, complex]:
        """Amplitude per spin projection of the initial state, summed over combinations."""
        initial_state = self.initial_state_particle
        return {
            two_m: sum(
                (
                    initial_state.amplitude(point, c, two_m, status_manager)
                    for c in self.__top_combinations
                ),
                0j,
            )
            for two_m in initial_state.quantum_numbers.spin_projections
        }

    def amplitude(
        self, point: DataPoint, status_manager: StatusManager, two_m: int = 0
    ) -> complex:
        return self.amplitudes(point, status_manager).get(two_m, 0j)

    def intensity(self, point: DataPoint, status_manager: StatusManager) -> float:
        r"""Incoherent sum :math:`\sum_M |A_M|^2` over the initial-state projections."""
        amplitudes = self.amplitudes(point, status_manager).values()
        return sum(abs(a) ** 2 for a in amplitudes)

    def log_of_squared_amplitude(
        self, point: DataPoint, status_manager: StatusManager
    ) -> float:
        intensity = self.intensity(point, status_manager)
        if math.isnan(intensity):
            return math.nan
        if intensity == 0:
            return -math.inf
        return math.log(intensity)

    def evaluate(self, point: DataPoint) -> float:
        """Compute the intensity of a single event, independently of the partitions.

        The global calculation statuses are neither used nor updated.
        """
        if not self.is_prepared:
            msg = "Call prepare_data_accessors() before evaluating events"
            raise ProtocolError(msg)
        if not point.is_allocated:
            point.allocate(self.accessors)
        status_manager = StatusManager(self.accessors.cached_values)
        status_manager.begin_event(stale=True)
        return self.intensity(point, status_manager)

    def partial_sum_of_logs_of_squared_amplitudes(
        self, partition: DataPartition
    ) -> float:
        """Evaluate a single partition.

        Values that depend on a changed parameter are invalidated first. The parameters
        keep their changed flags until a pass over all partitions.
        """
        self.update_global_calculation_statuses()
        return self.__partial_sum(partition)

    def __partial_sum(self, partition: DataPartition) -> float:
        status_manager = partition.status_manager
        if status_manager is None:
            msg = "Data partition has not been registered with set_data_partitions()"
            raise ProtocolError(msg)
        status_manager.reset_for_pass()
        total = 0.0
        n_invalid = 0
        for point in partition:
            status_manager.begin_event(stale=point.stale)
            value = self.log_of_squared_amplitude(point, status_manager)
            status_manager.end_event()
            if math.isnan(value):
                n_invalid += 1
                if self.configuration.skip_invalid_events:
                    continue
            total += value
        if n_invalid:
            _LOGGER.warning(
                f"{n_invalid} of {len(partition)} events in partition"
                f" {partition.index} have an invalid amplitude"
            )
        return total

    def sum_of_logs_of_squared_amplitudes(self) -> float:
        """Evaluate all partitions and update the global calculation statuses."""
        partitions = self.data_partitions
        n_covered = sum(len(p) for p in partitions)
        if n_covered != len(self.data_set):
            msg = (
                f"Data partitions cover {n_covered} events, but the data set contains"
                f" {len(self.data_set)}"
            )
            raise ProtocolError(msg)
        self.update_global_calculation_statuses()
        max_workers = self.configuration.max_workers
        if max_workers is not None and max_workers > 1 and len(partitions) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                sums = list(executor.map(self.__partial_sum, partitions))
        else:
            sums = [self.__partial_sum(p) for p in partitions]
        for cached_value in self.accessors.cached_values:
            completed = [p.status_manager.completed(cached_value) for p in partitions]
            cached_value.global_calculation_statuses[:] = np.logical_and.reduce(
                completed
            )
        self.parameters.set_flags_to_unchanged()
        for point in self.data_set:
            point.stale = False
        return math.fsum(sums)

    def update_global_calculation_statuses(self) -> None:
        """Invalidate all cached values that depend on a changed parameter."""
        for index in self.parameters.changed_indices():
            for cached_value in self.__dependents.get(index, []):
                cached_value.set_global_calculation_status(
                    CalculationStatus.UNCALCULATED
                )

    def reset_calculation_statuses(self) -> None:
        """Mark all cached values as invalid, so that the next pass computes them anew."""
        for cached_value in self.accessors.cached_values:
            cached_value.set_global_calculation_status(CalculationStatus.UNCALCULATED)

    @property
    def free_amplitudes(self) -> list[ComplexParameter]:
        return [
            node.free_amplitude
            for node in iterate_nodes(self.initial_state_particle)
            if isinstance(node, DecayChannel) and not node.free_amplitude.is_fixed
        ]

    def consistent(self) -> ConsistencyReport:
        """Check the decay tree and the data accessors, without changing any state."""
        issues = []
        if not self.__final_state:
            issues.append("The final state has not been set")
        if self.__initial_state is None:
            issues.append("The initial-state particle has not been set")
        else:
            for accessor in data_accessors(self.__initial_state):
                if accessor not in self.accessors:
                    issues.append(f"{accessor.name} is in the tree but not registered")
        for accessor in self.accessors:
            issues.extend(accessor.consistency_issues())
        if self.is_prepared:
            if not self.__top_combinations:
                issues.append("There are no top-level combinations")
            for position, accessor in enumerate(self.accessors):
                if accessor.index != position:
                    issues.append(f"{accessor.name} has index {accessor.index}")
            for cached_value in self.accessors.cached_values:
                if cached_value.owner not in self.accessors:
                    issues.append(f"Owner of {cached_value.name} is not registered")
        report = ConsistencyReport(issues)
        if not report:
            _LOGGER.warning(f"Model is inconsistent, found {len(issues)} issues")
        return report

    def data_accessor_summary(self, show_combinations: bool = False) -> str:
        lines = [f"{'index':>5}  {'type':<24}  {'slots':>5}  {'size':>4}  name"]
        for accessor in self.accessors:
            index = accessor.index if accessor.is_frozen else "-"
            lines.append(
                f"{index!s:>5}  {type(accessor).__name__:<24}"
                f"  {accessor.n_symmetrization_indices:>5}  {accessor.size:>4}"
                f"  {accessor.name}"
            )
            if show_combinations:
                for combination, slot in accessor.symmetrization_indices:
                    lines.append(f"{'':>7}{slot:>3}: {combination!r}")
        return "\n".join(lines)

    def mass_axes(self, pairs: Iterable[Sequence[int]]) -> list[MassAxis]:
        """Create a `.MassAxis` for each pair of positions in the final state."""
        n_particles = len(self.__final_state)
        axes = []
        for indices in pairs:
            pair = tuple(indices)
            if (
                len(pair) != 2
                or pair[0] == pair[1]
                or not all(isinstance(i, int) and 0 <= i < n_particles for i in pair)
            ):
                msg = (
                    f"A mass axis needs two different final-state positions between 0"
                    f" and {n_particles - 1}, got {pair}"
                )
                raise ValueError(msg)
            axes.append(MassAxis(pair))
        return axes

    def mass_range(self, axis: MassAxis) -> tuple[float, float]:
        return mass_range(
            self.initial_state_particle.nominal_mass,
            [p.mass for p in self.__final_state],
            axis,
        )

    def calculate_four_momenta(
        self, axes: Sequence[MassAxis], squared_masses: Sequence[float]
    ) -> np.ndarray | None:
        """Final-state momenta for a point in the Dalitz plot, `None` if outside."""
        return calculate_four_momenta(
            self.initial_state_particle.nominal_mass,
            [p.mass for p in self.__final_state],
            axes,
            squared_masses,
        )
