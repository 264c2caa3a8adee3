"""Fit parameters, kept in a single store and referenced by index.

Cached values declare their dependencies as store indices, so that the invalidation of
cached values after a parameter change is a direct lookup.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import TYPE_CHECKING, Union

from attrs import field, frozen
from attrs.validators import instance_of

if TYPE_CHECKING:
    from collections.abc import Sequence

ParameterValue = Union[float, complex]


class VariableStatus(Enum):
    CHANGED = auto()
    """Value has been modified since the last full evaluation pass."""
    UNCHANGED = auto()
    """Free parameter that kept its value since the last full evaluation pass."""
    FIXED = auto()
    """Parameter that is not adjusted by a fit and kept its value."""


class ParameterStore:
    """Values and statuses of all parameters of a model."""

    def __init__(self) -> None:
        self.__values: list[ParameterValue] = []
        self.__names: list[str] = []
        self.__fixed: list[bool] = []
        self.__changed: list[bool] = []

    def add(self, value: ParameterValue, name: str, fixed: bool = False) -> int:
        self.__values.append(value)
        self.__names.append(name)
        self.__fixed.append(fixed)
        self.__changed.append(True)
        return len(self.__values) - 1

    def value(self, index: int) -> ParameterValue:
        return self.__values[index]

    def set_value(self, index: int, value: ParameterValue) -> None:
        if self.__values[index] == value:
            return
        self.__values[index] = value
        self.__changed[index] = True

    def name(self, index: int) -> str:
        return self.__names[index]

    def rename(self, index: int, name: str) -> None:
        self.__names[index] = name

    def is_fixed(self, index: int) -> bool:
        return self.__fixed[index]

    def set_fixed(self, index: int, fixed: bool = True) -> None:
        self.__fixed[index] = fixed

    def status(self, index: int) -> VariableStatus:
        if self.__changed[index]:
            return VariableStatus.CHANGED
        if self.__fixed[index]:
            return VariableStatus.FIXED
        return VariableStatus.UNCHANGED

    def changed_indices(self) -> list[int]:
        return [i for i, changed in enumerate(self.__changed) if changed]

    def free_indices(self) -> list[int]:
        return [i for i, fixed in enumerate(self.__fixed) if not fixed]

    def set_flags_to_unchanged(self) -> None:
        """Mark all parameters as unchanged after a complete evaluation pass."""
        self.__changed = [False] * len(self.__changed)

    def snapshot(self) -> tuple[ParameterValue, ...]:
        return tuple(self.__values)

    def restore(self, snapshot: Sequence[ParameterValue]) -> None:
        if len(snapshot) != len(self.__values):
            msg = (
                f"Snapshot contains {len(snapshot)} values, but the store has"
                f" {len(self.__values)} parameters"
            )
            raise ValueError(msg)
        for index, value in enumerate(snapshot):
            self.set_value(index, value)

    def __len__(self) -> int:
        return len(self.__values)


@frozen
class Parameter:
    """Handle to a value in a `ParameterStore`."""

    store: ParameterStore = field(validator=instance_of(ParameterStore), repr=False)
    index: int = field(validator=instance_of(int))

    @property
    def name(self) -> str:
        return self.store.name(self.index)

    @property
    def value(self) -> ParameterValue:
        return self.store.value(self.index)

    @property
    def status(self) -> VariableStatus:
        return self.store.status(self.index)

    @property
    def is_fixed(self) -> bool:
        return self.store.is_fixed(self.index)

    def set_value(self, value: ParameterValue) -> None:
        self.store.set_value(self.index, value)

    def fix(self, fixed: bool = True) -> None:
        self.store.set_fixed(self.index, fixed)


@frozen
class RealParameter(Parameter):
    @classmethod
    def create(
        cls, store: ParameterStore, value: float, name: str, fixed: bool = True
    ) -> RealParameter:
        return cls(store, store.add(float(value), name, fixed))

    @property
    def value(self) -> float:
        return float(self.store.value(self.index).real)

    def set_value(self, value: float) -> None:
        self.store.set_value(self.index, float(value))


@frozen
class ComplexParameter(Parameter):
    @classmethod
    def create(
        cls, store: ParameterStore, value: complex, name: str, fixed: bool = False
    ) -> ComplexParameter:
        return cls(store, store.add(complex(value), name, fixed))

    @property
    def value(self) -> complex:
        return complex(self.store.value(self.index))

    def set_value(self, value: complex) -> None:
        self.store.set_value(self.index, complex(value))
