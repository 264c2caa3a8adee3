from __future__ import annotations

import numpy as np
import pytest
from attrs import frozen

from ampcache.accessor import AccessorIndex, DataAccessor
from ampcache.cached import (
    CalculationStatus,
    ComplexCachedValue,
    RealCachedValue,
    StatusManager,
)
from ampcache.combination import (
    ParticleCombination,
    ParticleCombinationCache,
    equal_by_orderless_content,
)
from ampcache.data import DataPoint
from ampcache.exceptions import ProtocolError, SymmetrizationIndexError
from ampcache.parameters import ParameterStore, RealParameter


@frozen
class Setup:
    cache: ParticleCombinationCache
    combinations: tuple[ParticleCombination, ...]
    accessor: DataAccessor
    real: RealCachedValue
    complex: ComplexCachedValue
    parameter: RealParameter
    status_manager: StatusManager
    points: tuple[DataPoint, ...]


@pytest.fixture()
def setup() -> Setup:
    cache = ParticleCombinationCache()
    f0, f1, f2 = (cache.fsp(i) for i in range(3))
    c01 = cache.composite([f0, f1])
    c10 = cache.composite([f1, f0])
    c02 = cache.composite([f0, f2])
    accessor = DataAccessor(equal_by_orderless_content, name="test")
    real = RealCachedValue(accessor, "x")
    complex_value = ComplexCachedValue(accessor, "z")
    store = ParameterStore()
    parameter = RealParameter.create(store, 2.0, "p", fixed=False)
    real.add_dependency(parameter)
    complex_value.add_dependency(real)
    accessor.add_symmetrization_index(c01)
    accessor.add_symmetrization_index(c10)
    index = AccessorIndex()
    index.register(accessor)
    index.freeze()
    points = tuple(DataPoint(np.zeros((3, 4))) for _ in range(2))
    for point in points:
        point.allocate(index)
    return Setup(
        cache,
        (c01, c10, c02),
        accessor,
        real,
        complex_value,
        parameter,
        StatusManager(index.cached_values),
        points,
    )


def test_get_or_compute_is_idempotent(setup: Setup):
    c01, c10, _ = setup.combinations
    point = setup.points[0]
    calls = []

    def compute() -> float:
        calls.append(None)
        return 0.5

    setup.status_manager.begin_event(stale=True)
    assert setup.real.get_or_compute(point, c01, setup.status_manager, compute) == 0.5
    assert setup.real.get_or_compute(point, c01, setup.status_manager, compute) == 0.5
    assert setup.real.get_or_compute(point, c10, setup.status_manager, compute) == 0.5
    assert len(calls) == 1
    status = setup.real.calculation_status(setup.status_manager, c10)
    assert status is CalculationStatus.CALCULATED

    setup.status_manager.begin_event(stale=True)
    setup.real.get_or_compute(point, c01, setup.status_manager, compute)
    assert len(calls) == 2


def test_complex_storage(setup: Setup):
    c01, _, _ = setup.combinations
    point = setup.points[0]
    setup.status_manager.begin_event(stale=True)
    value = setup.complex.get_or_compute(
        point, c01, setup.status_manager, lambda: 1.5 - 2j
    )
    assert value == 1.5 - 2j
    assert setup.complex.value(point, 0) == 1.5 - 2j
    assert setup.accessor.data(point, 0).tolist() == [0.0, 1.5, -2.0]


def test_unregistered_combination(setup: Setup):
    _, _, c02 = setup.combinations
    setup.status_manager.begin_event(stale=True)
    with pytest.raises(SymmetrizationIndexError):
        setup.real.get_or_compute(
            setup.points[0], c02, setup.status_manager, lambda: 1.0
        )


def test_global_statuses_are_reused(setup: Setup):
    c01, _, _ = setup.combinations
    status_manager = setup.status_manager
    parameter = setup.parameter
    real = setup.real

    def compute() -> float:
        return parameter.value * 10

    status_manager.reset_for_pass()
    for point in setup.points:
        status_manager.begin_event(stale=True)
        real.get_or_compute(point, c01, status_manager, compute)
        status_manager.end_event()
    real.global_calculation_statuses[:] = status_manager.completed(real)
    assert real.global_calculation_status(0) is CalculationStatus.CALCULATED
    assert not setup.complex.global_calculation_statuses.any()

    parameter.set_value(3.0)
    status_manager.begin_event(stale=False)
    assert real.get_or_compute(setup.points[0], c01, status_manager, compute) == 20

    for index in parameter.store.changed_indices():
        if index in real.all_parameter_dependencies():
            real.set_global_calculation_status(CalculationStatus.UNCALCULATED)
    status_manager.begin_event(stale=False)
    assert real.get_or_compute(setup.points[0], c01, status_manager, compute) == 30


def test_completed_requires_every_event(setup: Setup):
    c01, _, _ = setup.combinations
    status_manager = setup.status_manager
    status_manager.reset_for_pass()
    status_manager.begin_event(stale=True)
    setup.real.get_or_compute(setup.points[0], c01, status_manager, lambda: 1.0)
    status_manager.end_event()
    status_manager.begin_event(stale=True)
    status_manager.end_event()
    assert status_manager.completed(setup.real).tolist() == [False]


def test_status_manager_set_status(setup: Setup):
    status_manager = setup.status_manager
    status_manager.set_all(CalculationStatus.CALCULATED)
    assert status_manager.is_calculated(setup.complex, 0)
    status_manager.set_status(setup.complex, CalculationStatus.UNCALCULATED, slot=0)
    assert status_manager.status(setup.complex, 0) is CalculationStatus.UNCALCULATED
    assert status_manager.status(setup.real, 0) is CalculationStatus.CALCULATED


class TestDependencies:
    def test_transitive_parameter_dependencies(self, setup: Setup):
        index = setup.parameter.index
        assert setup.real.parameter_dependencies == {index}
        assert setup.complex.parameter_dependencies == frozenset()
        assert setup.complex.all_parameter_dependencies() == {index}
        assert setup.complex.value_dependencies == [setup.real]

    def test_invalid_dependencies(self):
        accessor = DataAccessor(equal_by_orderless_content)
        value = RealCachedValue(accessor, "x")
        with pytest.raises(ValueError, match="cannot depend on itself"):
            value.add_dependency(value)
        with pytest.raises(TypeError, match="int"):
            value.add_dependency(1)

    def test_no_dependencies_after_freeze(self, setup: Setup):
        with pytest.raises(ProtocolError):
            setup.real.add_dependency(setup.parameter)

    def test_cyclic_dependencies_terminate(self):
        accessor = DataAccessor(equal_by_orderless_content)
        store = ParameterStore()
        a = RealCachedValue(accessor, "a")
        b = RealCachedValue(accessor, "b")
        a.add_dependency(b)
        b.add_dependency(a)
        b.add_dependency(RealParameter.create(store, 1.0, "p"))
        assert a.all_parameter_dependencies() == {0}


def test_unindexed_cached_value():
    accessor = DataAccessor(equal_by_orderless_content, name="unindexed")
    value = RealCachedValue(accessor, "x")
    with pytest.raises(ProtocolError, match="has not been indexed"):
        value.index  # noqa: B018
    with pytest.raises(ProtocolError):
        value.global_calculation_statuses  # noqa: B018
