import math

import numpy as np
import pytest

from ampcache.combination import ParticleCombinationCache
from ampcache.exceptions import ConstructionError
from ampcache.kinematics.angles import HelicityAngles, compute_helicity_angles
from ampcache.kinematics.lorentz import boost_matrix


@pytest.mark.parametrize(
    ("theta", "phi"), [(0.3, 0.2), (2.5, -1.0), (math.pi / 2, 3.0)]
)
def test_two_body_decay_at_rest(two_body_momenta, theta, phi):
    cache = ParticleCombinationCache()
    top = cache.composite([cache.fsp(0), cache.fsp(1)])
    momenta = two_body_momenta(0.95, 0.13957, 0.493677, theta, phi)
    assert compute_helicity_angles(momenta, top) == pytest.approx((phi, theta))


def test_angles_are_computed_in_the_rest_frame(two_body_momenta):
    cache = ParticleCombinationCache()
    top = cache.composite([cache.fsp(0), cache.fsp(1)])
    momenta = two_body_momenta(0.95, 0.13957, 0.493677, theta=1.1, phi=0.4)
    boost = boost_matrix(np.array([1.2, 0.0, 0.0, -0.5]))
    moving = np.array([np.linalg.inv(boost) @ p for p in momenta])
    assert compute_helicity_angles(moving, top) == pytest.approx((0.4, 1.1))


def test_polar_angle_in_decay_chain(create_d_plus_model, dalitz_points):
    model = create_d_plus_model(final_state=("pi+", "K-", "K+"))
    cache = model.combinations
    pi_plus, k_minus, k_plus = (cache.fsp(i) for i in range(3))
    top = cache.composite([cache.composite([pi_plus, k_minus]), k_plus])
    resonance = top.daughters[0]
    axes = model.mass_axes([(0, 1), (1, 2)])
    for squared_masses in dalitz_points:
        momenta = model.calculate_four_momenta(axes, squared_masses)
        _, theta = compute_helicity_angles(momenta, resonance)

        boost = boost_matrix(momenta[0] + momenta[1])
        pion = (boost @ momenta[0])[1:]
        kaon = (boost @ momenta[2])[1:]
        expected = -np.dot(pion, kaon) / (np.linalg.norm(pion) * np.linalg.norm(kaon))
        assert math.cos(theta) == pytest.approx(expected)


def test_no_angles_for_final_state_particles():
    accessor = HelicityAngles()
    with pytest.raises(ConstructionError, match="final-state particle"):
        accessor.add_symmetrization_index(ParticleCombinationCache().fsp(0))
