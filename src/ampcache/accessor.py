"""Per-event storage layout: data accessors and the index that numbers them.

A `DataAccessor` is any object that stores values per event. It maps each particle
combination it is evaluated for onto a *symmetrization index*: combinations that are
equivalent under the accessor's `.Equivalence` share one slot, so that a value is
computed only once per event for all of them. The `AccessorIndex` assigns every accessor
a dense storage index when the decay tree is complete. From then on, the layout is
frozen.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from ampcache.exceptions import ProtocolError, SymmetrizationIndexError

if TYPE_CHECKING:
    from collections.abc import Iterator

    import numpy as np

    from ampcache.cached import CachedValue
    from ampcache.combination import Equivalence, ParticleCombination
    from ampcache.data import DataPoint

_LOGGER = logging.getLogger(__name__)


class DataAccessor:
    """Object that stores its cached values per event and per symmetrization index."""

    def __init__(self, equivalence: Equivalence, name: str | None = None) -> None:
        self.__equivalence = equivalence
        self.name = type(self).__name__ if name is None else name
        self.__combinations: list[ParticleCombination] = []
        self.__slots: list[int] = []
        self.__slot_by_identity: dict[int, int] = {}
        self.__n_slots = 0
        self.__cached_values: list[CachedValue] = []
        self.__size = 0
        self.__index: int | None = None

    @property
    def equivalence(self) -> Equivalence:
        return self.__equivalence

    @property
    def is_frozen(self) -> bool:
        return self.__index is not None

    @property
    def index(self) -> int:
        """Position of this accessor in the storage of a `.DataPoint`."""
        if self.__index is None:
            msg = f"{self.name} has not been indexed yet, call prepare_data_accessors()"
            raise ProtocolError(msg)
        return self.__index

    def add_symmetrization_index(self, combination: ParticleCombination) -> int:
        """Register a combination, reusing the slot of an equivalent combination."""
        if self.is_frozen:
            msg = f"Cannot add {combination!r} to {self.name} after it has been indexed"
            raise ProtocolError(msg)
        slot = self.__slot_by_identity.get(id(combination))
        if slot is not None:
            return slot
        for known, known_slot in zip(self.__combinations, self.__slots):
            if self.__equivalence(known, combination):
                slot = known_slot
                break
        else:
            slot = self.__n_slots
            self.__n_slots += 1
        self.__combinations.append(combination)
        self.__slots.append(slot)
        self.__slot_by_identity[id(combination)] = slot
        return slot

    def clear_symmetrization_indices(self) -> None:
        if self.is_frozen:
            msg = f"Cannot clear symmetrization indices of {self.name} after indexing"
            raise ProtocolError(msg)
        self.__combinations = []
        self.__slots = []
        self.__slot_by_identity = {}
        self.__n_slots = 0

    def has_symmetrization_index(self, combination: ParticleCombination) -> bool:
        if id(combination) in self.__slot_by_identity:
            return True
        return any(self.__equivalence(c, combination) for c in self.__combinations)

    def symmetrization_index(self, combination: ParticleCombination) -> int:
        slot = self.__slot_by_identity.get(id(combination))
        if slot is not None:
            return slot
        for known, known_slot in zip(self.__combinations, self.__slots):
            if self.__equivalence(known, combination):
                return known_slot
        msg = f"{self.name} has no symmetrization index for {combination!r}"
        raise SymmetrizationIndexError(msg)

    @property
    def n_symmetrization_indices(self) -> int:
        return self.__n_slots

    @property
    def particle_combinations(self) -> list[ParticleCombination]:
        return list(self.__combinations)

    @property
    def symmetrization_indices(self) -> list[tuple[ParticleCombination, int]]:
        return list(zip(self.__combinations, self.__slots))

    def add_cached_value(self, cached_value: CachedValue) -> int:
        """Reserve storage for a cached value and return its offset."""
        if self.is_frozen:
            msg = f"Cannot add cached value {cached_value.name} to indexed {self.name}"
            raise ProtocolError(msg)
        offset = self.__size
        self.__cached_values.append(cached_value)
        self.__size += cached_value.size
        return offset

    @property
    def cached_values(self) -> list[CachedValue]:
        return list(self.__cached_values)

    @property
    def size(self) -> int:
        """Number of floats stored per symmetrization index."""
        return self.__size

    def data(self, point: DataPoint, slot: int) -> np.ndarray:
        return point.storage(self.index)[slot]

    def consistency_issues(self) -> list[str]:
        issues = []
        if self.__n_slots == 0:
            issues.append(f"{self.name} has no symmetrization indices")
        if sorted(set(self.__slots)) != list(range(self.__n_slots)):
            issues.append(f"Symmetrization indices of {self.name} are not contiguous")
        offset = 0
        for cached_value in self.__cached_values:
            if cached_value.owner is not self:
                issues.append(f"{cached_value.name} is not owned by {self.name}")
            if cached_value.offset != offset:
                issues.append(f"{cached_value.name} has a wrong offset in {self.name}")
            offset += cached_value.size
        if offset != self.__size:
            issues.append(f"Storage size of {self.name} does not match its values")
        return issues

    def _freeze(self, index: int) -> None:
        self.__index = index

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class AccessorIndex:
    """Registry of all data accessors of a model."""

    def __init__(self) -> None:
        self.__accessors: list[DataAccessor] = []
        self.__cached_values: list[CachedValue] = []
        self.__frozen = False

    @property
    def is_frozen(self) -> bool:
        return self.__frozen

    def register(self, accessor: DataAccessor) -> None:
        if self.__frozen:
            msg = (
                f"Cannot register {accessor.name}, accessors have been indexed already"
            )
            raise ProtocolError(msg)
        if accessor in self:
            msg = f"{accessor.name} has been registered already"
            raise ProtocolError(msg)
        self.__accessors.append(accessor)

    def prune(self, reachable: Iterable[DataAccessor]) -> list[DataAccessor]:
        """Remove accessors that are not in :code:`reachable`."""
        if self.__frozen:
            msg = "Cannot prune accessors after they have been indexed"
            raise ProtocolError(msg)
        keep = {id(a) for a in reachable}
        removed = [a for a in self.__accessors if id(a) not in keep]
        self.__accessors = [a for a in self.__accessors if id(a) in keep]
        for accessor in removed:
            _LOGGER.info(f"Removed unreachable data accessor {accessor.name}")
        return removed

    def freeze(self) -> None:
        """Assign dense indices to all accessors and their cached values."""
        if self.__frozen:
            msg = "Data accessors have been indexed already"
            raise ProtocolError(msg)
        cached_values = []
        for index, accessor in enumerate(self.__accessors):
            accessor._freeze(index)  # noqa: SLF001
            for cached_value in accessor.cached_values:
                cached_value._freeze(len(cached_values))  # noqa: SLF001
                cached_values.append(cached_value)
        self.__cached_values = cached_values
        self.__frozen = True
        _LOGGER.info(
            f"Indexed {len(self.__accessors)} data accessors with"
            f" {len(cached_values)} cached values"
        )

    @property
    def cached_values(self) -> list[CachedValue]:
        if not self.__frozen:
            msg = "Cached values are only numbered after indexing"
            raise ProtocolError(msg)
        return list(self.__cached_values)

    def __contains__(self, accessor: object) -> bool:
        return any(a is accessor for a in self.__accessors)

    def __iter__(self) -> Iterator[DataAccessor]:
        return iter(list(self.__accessors))

    def __len__(self) -> int:
        return len(self.__accessors)
