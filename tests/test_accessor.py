import logging

import pytest

from ampcache.accessor import AccessorIndex, DataAccessor
from ampcache.cached import RealCachedValue
from ampcache.combination import (
    ParticleCombinationCache,
    equal_by_orderless_content,
    equal_up_and_down,
)
from ampcache.exceptions import ProtocolError, SymmetrizationIndexError


@pytest.fixture()
def cache() -> ParticleCombinationCache:
    return ParticleCombinationCache()


class TestDataAccessor:
    def test_equivalent_combinations_share_a_slot(
        self, cache: ParticleCombinationCache
    ):
        f0, f1, f2 = (cache.fsp(i) for i in range(3))
        c01 = cache.composite([f0, f1])
        c10 = cache.composite([f1, f0])
        c02 = cache.composite([f0, f2])
        accessor = DataAccessor(equal_by_orderless_content)
        assert accessor.name == "DataAccessor"
        assert accessor.add_symmetrization_index(c01) == 0
        assert accessor.add_symmetrization_index(c10) == 0
        assert accessor.add_symmetrization_index(c02) == 1
        assert accessor.add_symmetrization_index(c01) == 0
        assert accessor.n_symmetrization_indices == 2
        assert accessor.symmetrization_index(c10) == 0
        assert len(accessor.particle_combinations) == 3

    def test_structural_equivalence(self, cache: ParticleCombinationCache):
        f0, f1 = cache.fsp(0), cache.fsp(1)
        c01 = cache.composite([f0, f1])
        c10 = cache.composite([f1, f0])
        accessor = DataAccessor(equal_up_and_down, name="structural")
        accessor.add_symmetrization_index(c01)
        accessor.add_symmetrization_index(c10)
        assert accessor.n_symmetrization_indices == 2
        assert accessor.has_symmetrization_index(c10)
        assert not accessor.has_symmetrization_index(f0)

    def test_missing_symmetrization_index(self, cache: ParticleCombinationCache):
        accessor = DataAccessor(equal_by_orderless_content, name="empty")
        with pytest.raises(SymmetrizationIndexError, match="empty") as exception:
            accessor.symmetrization_index(cache.fsp(0))
        assert isinstance(exception.value, KeyError)
        assert isinstance(exception.value, ProtocolError)

    def test_clear_symmetrization_indices(self, cache: ParticleCombinationCache):
        accessor = DataAccessor(equal_by_orderless_content)
        accessor.add_symmetrization_index(cache.fsp(0))
        accessor.clear_symmetrization_indices()
        assert accessor.n_symmetrization_indices == 0
        assert accessor.symmetrization_indices == []
        assert accessor.consistency_issues() == [
            "DataAccessor has no symmetrization indices"
        ]

    def test_cached_value_offsets(self):
        accessor = DataAccessor(equal_by_orderless_content, name="values")
        first = RealCachedValue(accessor, "a")
        second = RealCachedValue(accessor, "b")
        assert first.name == "values.a"
        assert (first.offset, second.offset) == (0, 1)
        assert accessor.size == 2
        assert accessor.cached_values == [first, second]


class TestAccessorIndex:
    def test_freeze(self, cache: ParticleCombinationCache):
        index = AccessorIndex()
        accessors = [DataAccessor(equal_by_orderless_content, name=n) for n in "ab"]
        for accessor in accessors:
            accessor.add_symmetrization_index(cache.fsp(0))
            RealCachedValue(accessor, "x")
            index.register(accessor)
        with pytest.raises(ProtocolError, match="has not been indexed"):
            accessors[0].index  # noqa: B018
        with pytest.raises(ProtocolError, match="numbered after indexing"):
            index.cached_values  # noqa: B018
        index.freeze()
        assert index.is_frozen
        assert [a.index for a in accessors] == [0, 1]
        assert [v.index for v in index.cached_values] == [0, 1]
        assert all(a.consistency_issues() == [] for a in index)

    def test_protocol_errors_after_freeze(self, cache: ParticleCombinationCache):
        index = AccessorIndex()
        accessor = DataAccessor(equal_by_orderless_content, name="frozen")
        index.register(accessor)
        with pytest.raises(ProtocolError, match="registered already"):
            index.register(accessor)
        index.freeze()
        with pytest.raises(ProtocolError):
            index.freeze()
        with pytest.raises(ProtocolError):
            index.register(DataAccessor(equal_by_orderless_content))
        with pytest.raises(ProtocolError):
            accessor.add_symmetrization_index(cache.fsp(0))
        with pytest.raises(ProtocolError):
            accessor.clear_symmetrization_indices()
        with pytest.raises(ProtocolError):
            RealCachedValue(accessor, "late")
        with pytest.raises(ProtocolError):
            index.prune([])

    def test_prune(self, caplog: pytest.LogCaptureFixture):
        index = AccessorIndex()
        keep = DataAccessor(equal_by_orderless_content, name="keep")
        drop = DataAccessor(equal_by_orderless_content, name="drop")
        index.register(keep)
        index.register(drop)
        caplog.set_level(logging.INFO)
        removed = index.prune([keep])
        assert removed == [drop]
        assert list(index) == [keep]
        assert drop not in index
        assert "Removed unreachable data accessor drop" in caplog.text
