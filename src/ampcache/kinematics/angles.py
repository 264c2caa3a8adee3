"""Helicity angles of two-body decays within a decay chain."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ampcache.accessor import DataAccessor
from ampcache.cached import RealCachedValue
from ampcache.combination import equal_up_and_down
from ampcache.exceptions import ConstructionError
from ampcache.kinematics.lorentz import (
    boost_matrix,
    combined_momentum,
    polar_angles,
    rotation_y_matrix,
    rotation_z_matrix,
)

if TYPE_CHECKING:
    import numpy as np

    from ampcache.cached import StatusManager
    from ampcache.combination import ParticleCombination
    from ampcache.data import DataPoint


def compute_helicity_angles(
    final_state_momenta: np.ndarray, combination: ParticleCombination
) -> tuple[float, float]:
    r"""Angles :math:`(\phi, \theta)` of the first daughter in the helicity frame.

    The helicity frame of a combination is reached by starting in the rest frame of the
    top-most combination of its parent chain, and then, for each combination down the
    chain, rotating its momentum onto the :math:`z`-axis and boosting into its rest
    frame.
    """
    chain = [combination]
    while chain[-1].parent is not None:
        chain.append(chain[-1].parent)
    chain.reverse()
    transformation = boost_matrix(combined_momentum(final_state_momenta, chain[0]))
    for node in chain[1:]:
        momentum = transformation @ combined_momentum(final_state_momenta, node)
        phi, theta = polar_angles(momentum)
        rotation = rotation_y_matrix(-theta) @ rotation_z_matrix(-phi)
        boost = boost_matrix(rotation @ momentum)
        transformation = boost @ rotation @ transformation
    daughter = combination.daughters[0]
    return polar_angles(
        transformation @ combined_momentum(final_state_momenta, daughter)
    )


class HelicityAngles(DataAccessor):
    """Cached helicity angles, see :func:`compute_helicity_angles`."""

    def __init__(self) -> None:
        super().__init__(equal_up_and_down, name="HelicityAngles")
        self.phi = RealCachedValue(self, "phi")
        self.theta = RealCachedValue(self, "theta")

    def add_symmetrization_index(self, combination: ParticleCombination) -> int:
        if combination.is_final_state_particle:
            msg = "Cannot compute helicity angles for a final-state particle"
            raise ConstructionError(msg)
        return super().add_symmetrization_index(combination)

    def angles(
        self,
        point: DataPoint,
        combination: ParticleCombination,
        status_manager: StatusManager,
    ) -> tuple[float, float]:
        slot = self.symmetrization_index(combination)
        if not (
            status_manager.is_calculated(self.phi, slot)
            and status_manager.is_calculated(self.theta, slot)
        ):
            phi, theta = compute_helicity_angles(point.final_state_momenta, combination)
            self.phi.set_value(phi, point, slot, status_manager)
            self.theta.set_value(theta, point, slot, status_manager)
        return self.phi.value(point, slot), self.theta.value(point, slot)
