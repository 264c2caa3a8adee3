"""Lazily computed values that are stored per event and per symmetrization index.

A `CachedValue` declares its dependencies (fit parameters and other cached values) when
it is constructed. Whether its value is valid for a given event is tracked on two levels:

- Each cached value has a **global** status per symmetrization index. It is
  `~CalculationStatus.CALCULATED` if the value is valid for *every* event in the data set.
  Before a pass over the data, the global status of every value that depends on a
  changed parameter is set to `~CalculationStatus.UNCALCULATED`.
- Each data partition has a `StatusManager`. When an event is evaluated, the statuses of
  the partition are initialized with the global statuses and each computed value is
  marked as `~CalculationStatus.CALCULATED`. After a pass over all partitions, the global
  status becomes `~CalculationStatus.CALCULATED` only if every event of every partition
  holds a valid value.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable, Union

import numpy as np

from ampcache.exceptions import ProtocolError
from ampcache.parameters import Parameter

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ampcache.accessor import DataAccessor
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPoint

_LOGGER = logging.getLogger(__name__)


class CalculationStatus(Enum):
    UNCALCULATED = 0
    CALCULATED = 1


class CachedValue:
    """Base class for cached values, see `RealCachedValue` and `ComplexCachedValue`."""

    size: int = 1

    def __init__(self, owner: DataAccessor, name: str) -> None:
        self.owner = owner
        self.name = f"{owner.name}.{name}"
        self.__parameter_dependencies: set[int] = set()
        self.__value_dependencies: list[CachedValue] = []
        self.__index: int | None = None
        self.__global_statuses: np.ndarray | None = None
        self.__offset = owner.add_cached_value(self)

    @property
    def offset(self) -> int:
        return self.__offset

    @property
    def index(self) -> int:
        if self.__index is None:
            msg = f"Cached value {self.name} has not been indexed yet"
            raise ProtocolError(msg)
        return self.__index

    def add_dependency(self, dependency: Parameter | CachedValue) -> None:
        if self.owner.is_frozen:
            msg = f"Cannot add dependencies to {self.name} after indexing"
            raise ProtocolError(msg)
        if isinstance(dependency, Parameter):
            self.__parameter_dependencies.add(dependency.index)
        elif isinstance(dependency, CachedValue):
            if dependency is self:
                msg = f"{self.name} cannot depend on itself"
                raise ValueError(msg)
            if dependency not in self.__value_dependencies:
                self.__value_dependencies.append(dependency)
        else:
            msg = f"Cannot add a dependency of type {type(dependency).__name__}"
            raise TypeError(msg)

    @property
    def parameter_dependencies(self) -> frozenset[int]:
        """Store indices of the parameters this value depends on directly."""
        return frozenset(self.__parameter_dependencies)

    @property
    def value_dependencies(self) -> list[CachedValue]:
        return list(self.__value_dependencies)

    def all_parameter_dependencies(self) -> frozenset[int]:
        """Parameters this value depends on, directly or through other cached values."""
        collected: set[int] = set()
        visited: set[int] = set()
        stack: list[CachedValue] = [self]
        while stack:
            cached_value = stack.pop()
            if id(cached_value) in visited:
                continue
            visited.add(id(cached_value))
            collected.update(cached_value.parameter_dependencies)
            stack.extend(cached_value.value_dependencies)
        return frozenset(collected)

    @property
    def n_symmetrization_indices(self) -> int:
        return self.owner.n_symmetrization_indices

    def global_calculation_status(self, slot: int) -> CalculationStatus:
        if self.__global_statuses[slot]:
            return CalculationStatus.CALCULATED
        return CalculationStatus.UNCALCULATED

    @property
    def global_calculation_statuses(self) -> np.ndarray:
        """Boolean array that is `True` where the value is valid for all events."""
        if self.__global_statuses is None:
            msg = f"Cached value {self.name} has not been indexed yet"
            raise ProtocolError(msg)
        return self.__global_statuses

    def set_global_calculation_status(
        self, status: CalculationStatus, slot: int | None = None
    ) -> None:
        flag = status is CalculationStatus.CALCULATED
        if slot is None:
            self.global_calculation_statuses[:] = flag
        else:
            self.global_calculation_statuses[slot] = flag

    def calculation_status(
        self, status_manager: StatusManager, combination: ParticleCombination
    ) -> CalculationStatus:
        slot = self.owner.symmetrization_index(combination)
        return status_manager.status(self, slot)

    def value(self, point: DataPoint, slot: int) -> float | complex:
        raise NotImplementedError

    def set_value(
        self,
        value: float | complex,
        point: DataPoint,
        slot: int,
        status_manager: StatusManager,
    ) -> None:
        self._write(value, point.storage(self.owner.index)[slot])
        status_manager.mark_calculated(self, slot)

    def get_or_compute(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
        compute: Callable[[], float | complex],
    ) -> float | complex:
        """Return the stored value, or compute, store, and return it."""
        slot = self.owner.symmetrization_index(combination)
        if status_manager.is_calculated(self, slot):
            return self.value(point, slot)
        value = compute()
        self.set_value(value, point, slot, status_manager)
        if _LOGGER.isEnabledFor(logging.DEBUG):
            _LOGGER.debug(f"Calculated {self.name} for {combination} = {value}")
        return self.value(point, slot)

    def _write(self, value: float | complex, row: np.ndarray) -> None:
        raise NotImplementedError

    def _freeze(self, index: int) -> None:
        self.__index = index
        self.__global_statuses = np.zeros(self.n_symmetrization_indices, dtype=bool)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class RealCachedValue(CachedValue):
    size = 1

    def value(self, point: DataPoint, slot: int) -> float:
        return float(point.storage(self.owner.index)[slot, self.offset])

    def _write(self, value: float | complex, row: np.ndarray) -> None:
        row[self.offset] = value


class ComplexCachedValue(CachedValue):
    """Complex value, stored as real and imaginary part."""

    size = 2

    def value(self, point: DataPoint, slot: int) -> complex:
        row = point.storage(self.owner.index)[slot]
        return complex(row[self.offset], row[self.offset + 1])

    def _write(self, value: float | complex, row: np.ndarray) -> None:
        value = complex(value)
        row[self.offset] = value.real
        row[self.offset + 1] = value.imag


AnyCachedValue = Union[RealCachedValue, ComplexCachedValue]


class StatusManager:
    """Calculation statuses of all cached values, for one data partition."""

    def __init__(self, cached_values: Sequence[CachedValue]) -> None:
        self.__cached_values = list(cached_values)
        self.__calculated = [
            np.zeros(cv.n_symmetrization_indices, dtype=bool)
            for cv in self.__cached_values
        ]
        self.__complete = [
            np.ones(cv.n_symmetrization_indices, dtype=bool)
            for cv in self.__cached_values
        ]

    def status(self, cached_value: CachedValue, slot: int) -> CalculationStatus:
        if self.__calculated[cached_value.index][slot]:
            return CalculationStatus.CALCULATED
        return CalculationStatus.UNCALCULATED

    def is_calculated(self, cached_value: CachedValue, slot: int) -> bool:
        return bool(self.__calculated[cached_value.index][slot])

    def set_status(
        self,
        cached_value: CachedValue,
        status: CalculationStatus,
        slot: int | None = None,
    ) -> None:
        flag = status is CalculationStatus.CALCULATED
        if slot is None:
            self.__calculated[cached_value.index][:] = flag
        else:
            self.__calculated[cached_value.index][slot] = flag

    def mark_calculated(self, cached_value: CachedValue, slot: int) -> None:
        self.__calculated[cached_value.index][slot] = True

    def set_all(self, status: CalculationStatus) -> None:
        flag = status is CalculationStatus.CALCULATED
        for statuses in self.__calculated:
            statuses[:] = flag

    def reset_for_pass(self) -> None:
        """Start a pass over the partition."""
        for complete in self.__complete:
            complete[:] = True

    def begin_event(self, stale: bool = False) -> None:
        """Initialize statuses for the next event from the global statuses.

        A stale event has new or modified kinematics, so nothing is valid for it yet.
        """
        if stale:
            self.set_all(CalculationStatus.UNCALCULATED)
            return
        for cached_value, statuses in zip(self.__cached_values, self.__calculated):
            statuses[:] = cached_value.global_calculation_statuses

    def end_event(self) -> None:
        for complete, calculated in zip(self.__complete, self.__calculated):
            complete &= calculated

    def completed(self, cached_value: CachedValue) -> np.ndarray:
        """Slots that were valid for every event of the last pass."""
        return self.__complete[cached_value.index]
