import pytest

from ampcache.parameters import (
    ComplexParameter,
    ParameterStore,
    RealParameter,
    VariableStatus,
)


class TestParameterStore:
    def test_new_parameters_are_changed(self):
        store = ParameterStore()
        assert store.add(1.0, "a") == 0
        assert store.add(2.0, "b", fixed=True) == 1
        assert len(store) == 2
        assert store.changed_indices() == [0, 1]
        assert store.status(1) is VariableStatus.CHANGED
        store.set_flags_to_unchanged()
        assert store.changed_indices() == []
        assert store.status(0) is VariableStatus.UNCHANGED
        assert store.status(1) is VariableStatus.FIXED
        assert store.free_indices() == [0]

    def test_setting_equal_value_keeps_status(self):
        store = ParameterStore()
        store.add(1.0, "a")
        store.set_flags_to_unchanged()
        store.set_value(0, 1.0)
        assert store.changed_indices() == []
        store.set_value(0, 1.5)
        assert store.changed_indices() == [0]
        assert store.value(0) == 1.5

    def test_snapshot_and_restore(self):
        store = ParameterStore()
        store.add(1.0, "a")
        store.add(2j, "b")
        snapshot = store.snapshot()
        store.set_value(1, 3j)
        store.set_flags_to_unchanged()
        store.restore(snapshot)
        assert store.snapshot() == (1.0, 2j)
        assert store.changed_indices() == [1]
        with pytest.raises(ValueError, match="contains 1 values"):
            store.restore((1.0,))


class TestParameter:
    def test_real_parameter(self):
        store = ParameterStore()
        mass = RealParameter.create(store, 1, "mass")
        assert mass.value == 1.0
        assert isinstance(mass.value, float)
        assert mass.name == "mass"
        assert mass.is_fixed
        mass.set_value(2)
        assert store.value(mass.index) == 2.0

    def test_complex_parameter(self):
        store = ParameterStore()
        amplitude = ComplexParameter.create(store, 1, "amplitude")
        assert amplitude.value == 1 + 0j
        assert not amplitude.is_fixed
        amplitude.set_value(2 - 1j)
        assert amplitude.status is VariableStatus.CHANGED
        store.set_flags_to_unchanged()
        assert amplitude.status is VariableStatus.UNCHANGED
        amplitude.fix()
        assert amplitude.status is VariableStatus.FIXED

    def test_parameters_are_handles(self):
        store = ParameterStore()
        parameter = RealParameter.create(store, 1.0, "a")
        assert RealParameter(store, parameter.index) == parameter
        with pytest.raises(TypeError):
            RealParameter(store, "0")
