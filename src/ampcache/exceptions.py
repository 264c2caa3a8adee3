"""Exceptions raised while building or evaluating an amplitude model.

There are two families. A `ConstructionError` means that a node of the decay tree could
not be built from the given input (quantum numbers that cannot couple, a daughter mass
sum above the parent mass, an unsupported orbital angular momentum). The tree is left as
it was before the failing call. A `ProtocolError` means that the model is driven in the
wrong order, for instance when symmetrization slots are added after the accessors have
been indexed. These signal a defect in the calling code and are not meant to be caught.

Per-event problems, such as an event outside of phase space, are not exceptions. They
result in a `math.nan` amplitude for that event.
"""


class ConstructionError(ValueError):
    """A decay tree node could not be constructed."""


class AngularMomentumNotConserved(ConstructionError):
    """Spins and orbital angular momentum violate a triangle inequality."""


class ChargeNotConserved(ConstructionError):
    """Sum of daughter charges differs from the charge of the parent."""


class UnsupportedAngularMomentum(ConstructionError):
    """No closed form is implemented for this orbital angular momentum."""


class ProtocolError(RuntimeError):
    """The model or one of its accessors was used out of order."""


class SymmetrizationIndexError(ProtocolError, KeyError):
    """No equivalent particle combination is registered with an accessor."""
