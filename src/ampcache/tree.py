"""Traversal of a decay tree and assignment of symmetrization indices.

The structure of a tree is described by :func:`get_children`, so that traversals do not
depend on methods of the node classes.
"""

from __future__ import annotations

import logging
from functools import singledispatch
from typing import TYPE_CHECKING, Any, Callable, Iterable

from ampcache.accessor import DataAccessor
from ampcache.combination import equal_down
from ampcache.decay import DecayChannel
from ampcache.particle import DecayingParticle, FinalStateParticle, Resonance

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ampcache.combination import ParticleCombination
    from ampcache.kinematics.lorentz import FourMomenta

_LOGGER = logging.getLogger(__name__)


@singledispatch
def get_children(node: Any) -> list[Any]:  # noqa: ARG001
    return []


@get_children.register(DecayingParticle)
def _(node: DecayingParticle) -> list[Any]:
    return [*node.barrier_factors.values(), *node.channels]


@get_children.register(Resonance)
def _(node: Resonance) -> list[Any]:
    return [node.mass_shape, *node.barrier_factors.values(), *node.channels]


@get_children.register(DecayChannel)
def _(node: DecayChannel) -> list[Any]:
    return [node.barrier_factor, node.spin_amplitude, *node.daughters]


def iterate_nodes(root: Any) -> Iterator[Any]:
    """Visit every node below and including :code:`root` once, children first."""
    visited: set[int] = set()

    def visit(node: Any) -> Iterator[Any]:
        if id(node) in visited:
            return
        visited.add(id(node))
        for child in get_children(node):
            yield from visit(child)
        yield node

    yield from visit(root)


def traverse(root: Any, visit: Callable[[Any, Any], None], context: Any = None) -> None:
    """Call :code:`visit(node, context)` for every node, in post-order."""
    for node in iterate_nodes(root):
        visit(node, context)


def data_accessors(root: Any) -> list[DataAccessor]:
    return [node for node in iterate_nodes(root) if isinstance(node, DataAccessor)]


def rebuild_symmetrization_indices(
    initial_state: DecayingParticle,
    top_combinations: Iterable[ParticleCombination],
    four_momenta: FourMomenta,
    kinematic_accessors: Iterable[DataAccessor] = (),
) -> None:
    """Replace the symmetrization indices of the tree by those of complete decay chains.

    While the tree is built, every channel registers the combinations it creates, which
    have no parent. Here, all indices are cleared and then assigned again by following
    each top-level combination down the tree. A channel is followed for a combination
    if it created a combination with the same structure. The combinations that are
    registered in the end know the chain of parents they are produced in, which is
    needed for helicity angles.
    """
    accessors = data_accessors(initial_state)
    created = {
        id(channel): channel.particle_combinations
        for channel in accessors
        if isinstance(channel, DecayChannel)
    }
    for accessor in [*accessors, four_momenta, *kinematic_accessors]:
        accessor.clear_symmetrization_indices()

    def assign(
        particle: DecayingParticle | FinalStateParticle,
        combination: ParticleCombination,
    ) -> None:
        if isinstance(particle, FinalStateParticle):
            four_momenta.add_symmetrization_index(combination)
            return
        particle.add_symmetrization_index(combination)
        for channel in particle.channels:
            if not any(equal_down(c, combination) for c in created[id(channel)]):
                continue
            channel.add_symmetrization_index(combination)
            for daughter, sub_combination in zip(
                channel.daughters, combination.daughters
            ):
                assign(daughter, sub_combination)

    for combination in top_combinations:
        assign(initial_state, combination)
    _LOGGER.debug(
        f"Assigned symmetrization indices to {len(accessors)} nodes of the decay tree"
    )
