"""Groupings of final-state particles, the keys of all per-event caching.

A `ParticleCombination` describes a subset of final-state particles by their position in
the final state. A composite combination has an ordered tuple of daughter combinations,
and a daughter may have a (non-owning) link to the combination it was produced in. The
same grouping of particles can therefore appear several times: without a parent during
tree construction, and once per decay chain that produces it after the tree has been
prepared.

Whether two combinations share cached values is decided by an equivalence relation,
such as `equal_by_orderless_content` or `equal_up_and_down`. Each accessor is configured
with the relation that fits the quantity it computes.
"""

from __future__ import annotations

import logging
import weakref
from typing import TYPE_CHECKING, Callable, Iterable

from attrs import field, frozen

from ampcache.exceptions import ConstructionError

if TYPE_CHECKING:
    from collections.abc import Iterator

_LOGGER = logging.getLogger(__name__)


def _to_weak_reference(
    parent: ParticleCombination | None,
) -> weakref.ReferenceType[ParticleCombination] | None:
    if parent is None:
        return None
    return weakref.ref(parent)


@frozen(eq=False, repr=False)
class ParticleCombination:
    """Node in a tree of final-state particle groupings.

    Combinations are compared by identity. Create them through a
    `ParticleCombinationCache`, so that equal requests result in the same object.
    """

    indices: tuple[int, ...] = field(converter=tuple)
    daughters: tuple[ParticleCombination, ...] = field(default=(), converter=tuple)
    _parent: weakref.ReferenceType[ParticleCombination] | None = field(
        default=None, converter=_to_weak_reference
    )

    @property
    def parent(self) -> ParticleCombination | None:
        if self._parent is None:
            return None
        return self._parent()

    @property
    def is_final_state_particle(self) -> bool:
        return not self.daughters

    @property
    def origin(self) -> ParticleCombination:
        """Top-most combination in the parent chain."""
        combination = self
        while combination.parent is not None:
            combination = combination.parent
        return combination

    def shares_indices(self, other: ParticleCombination) -> bool:
        return not set(self.indices).isdisjoint(other.indices)

    def __str__(self) -> str:
        if self.is_final_state_particle:
            return str(self.indices[0])
        return "(" + ", ".join(map(str, self.daughters)) + ")"

    def __repr__(self) -> str:
        if self.parent is None:
            return f"{type(self).__name__}({self})"
        return f"{type(self).__name__}({self} in {self.parent})"


Equivalence = Callable[[ParticleCombination, ParticleCombination], bool]
"""Predicate that decides whether two combinations share a symmetrization slot."""


def equal_by_shared_pointer(a: ParticleCombination, b: ParticleCombination) -> bool:
    return a is b


def equal_by_ordered_content(a: ParticleCombination, b: ParticleCombination) -> bool:
    """Same final-state particles in the same order, structure is ignored."""
    return a.indices == b.indices


def equal_by_orderless_content(a: ParticleCombination, b: ParticleCombination) -> bool:
    """Same set of final-state particles, order and structure are ignored."""
    return sorted(a.indices) == sorted(b.indices)


def equal_down(a: ParticleCombination, b: ParticleCombination) -> bool:
    """Same ordered daughter structure all the way down, parents are ignored."""
    if a is b:
        return True
    if a.indices != b.indices:
        return False
    if len(a.daughters) != len(b.daughters):
        return False
    return all(equal_down(x, y) for x, y in zip(a.daughters, b.daughters))


def equal_up(a: ParticleCombination, b: ParticleCombination) -> bool:
    """Parent chains have the same structure."""
    parent_a = a.parent
    parent_b = b.parent
    if parent_a is None or parent_b is None:
        return parent_a is None and parent_b is None
    return equal_down(parent_a, parent_b) and equal_up(parent_a, parent_b)


def equal_up_and_down(a: ParticleCombination, b: ParticleCombination) -> bool:
    """Same structure, including the chain of parents the combination decays from."""
    if a is b:
        return True
    return equal_down(a, b) and equal_up(a, b)


def equal_down_by_orderless_content(
    a: ParticleCombination, b: ParticleCombination
) -> bool:
    """Same daughter structure, with the order of daughters ignored on every level."""
    return _orderless_signature(a) == _orderless_signature(b)


def _orderless_signature(combination: ParticleCombination) -> frozenset:
    if combination.is_final_state_particle:
        return frozenset(combination.indices)
    return frozenset(_orderless_signature(d) for d in combination.daughters)


class ParticleCombinationCache:
    """Interns combinations so that equal requests return the same object.

    The cache only holds weak references. A combination disappears from the cache once
    no accessor or parent combination refers to it anymore.
    """

    def __init__(self) -> None:
        self.__entries: list[weakref.ReferenceType[ParticleCombination]] = []

    def fsp(self, index: int) -> ParticleCombination:
        """Get the combination of a single final-state particle, without parent."""
        if not isinstance(index, int) or index < 0:
            msg = f"Final-state index has to be a non-negative integer, not {index!r}"
            raise ConstructionError(msg)
        return self.__leaf(index, parent=None)

    def composite(
        self, daughters: Iterable[ParticleCombination]
    ) -> ParticleCombination:
        """Get a combination without parent that consists of the given daughters."""
        return self.intern(None, daughters)

    def intern(
        self,
        parent: ParticleCombination | None,
        daughters: Iterable[ParticleCombination],
    ) -> ParticleCombination:
        """Get a canonical combination of daughters produced in :code:`parent`.

        The daughters are copied into the new combination so that each copy links back
        to it. Daughters have to be interned themselves, which means the tree has to be
        built from the final state upwards.
        """
        daughters = tuple(daughters)
        if len(daughters) < 2:
            msg = (
                "A composite combination needs at least two daughters, got"
                f" {len(daughters)}"
            )
            raise ConstructionError(msg)
        for daughter in daughters:
            if daughter not in self:
                msg = f"Daughter {daughter!r} has not been registered"
                raise ConstructionError(msg)
        for i, daughter in enumerate(daughters):
            for other in daughters[i + 1 :]:
                if daughter.shares_indices(other):
                    msg = (
                        f"Daughters {daughter} and {other} share final-state particles"
                    )
                    raise ConstructionError(msg)
        existing = self.__find_interned(parent, daughters)
        if existing is not None:
            return existing
        combination = ParticleCombination(
            indices=tuple(i for d in daughters for i in d.indices),
            parent=parent,
        )
        copies = tuple(self.__copy(d, parent=combination) for d in daughters)
        object.__setattr__(combination, "daughters", copies)
        self.__entries.append(weakref.ref(combination))
        return combination

    def find(
        self,
        combination: ParticleCombination,
        equivalence: Equivalence = equal_up_and_down,
    ) -> weakref.ReferenceType[ParticleCombination] | None:
        """Look up an equivalent combination without creating one."""
        for reference in self.__entries:
            candidate = reference()
            if candidate is not None and equivalence(candidate, combination):
                return reference
        return None

    def prune(self) -> int:
        """Drop references to combinations that have been garbage collected."""
        alive = [r for r in self.__entries if r() is not None]
        n_removed = len(self.__entries) - len(alive)
        self.__entries = alive
        if n_removed:
            _LOGGER.debug(f"Pruned {n_removed} expired particle combinations")
        return n_removed

    def __contains__(self, combination: object) -> bool:
        return any(r() is combination for r in self.__entries)

    def __iter__(self) -> Iterator[ParticleCombination]:
        for reference in list(self.__entries):
            combination = reference()
            if combination is not None:
                yield combination

    def __len__(self) -> int:
        self.prune()
        return len(self.__entries)

    def __copy(
        self, original: ParticleCombination, parent: ParticleCombination
    ) -> ParticleCombination:
        if original.is_final_state_particle:
            return self.__leaf(original.indices[0], parent)
        return self.intern(parent, original.daughters)

    def __leaf(
        self, index: int, parent: ParticleCombination | None
    ) -> ParticleCombination:
        for candidate in self:
            if (
                candidate.is_final_state_particle
                and candidate.parent is parent
                and candidate.indices == (index,)
            ):
                return candidate
        leaf = ParticleCombination(indices=(index,), parent=parent)
        self.__entries.append(weakref.ref(leaf))
        return leaf

    def __find_interned(
        self,
        parent: ParticleCombination | None,
        daughters: tuple[ParticleCombination, ...],
    ) -> ParticleCombination | None:
        for candidate in self:
            if candidate.parent is not parent:
                continue
            if len(candidate.daughters) != len(daughters):
                continue
            if all(equal_down(c, d) for c, d in zip(candidate.daughters, daughters)):
                return candidate
        return None
