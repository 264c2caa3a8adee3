import math

import numpy as np
import pytest

from ampcache.cached import StatusManager
from ampcache.kinematics.lorentz import (
    boost_matrix,
    combined_momentum,
    invariant_mass_squared,
    polar_angles,
    rotation_y_matrix,
    rotation_z_matrix,
    three_momentum_norm,
)


def test_invariant_mass_squared():
    assert invariant_mass_squared(np.array([5.0, 1.0, 2.0, 3.0])) == 11.0
    assert invariant_mass_squared(np.array([1.0, 0.0, 0.0, 2.0])) == -3.0
    assert three_momentum_norm(np.array([5.0, 2.0, 3.0, 6.0])) == 7.0


@pytest.mark.parametrize(
    ("momentum", "expected"),
    [
        ([1.0, 0.0, 0.0, 0.0], (0.0, 0.0)),
        ([1.0, 0.0, 0.0, 0.5], (0.0, 0.0)),
        ([1.0, 0.0, 0.0, -0.5], (0.0, math.pi)),
        ([1.0, 0.0, 0.5, 0.0], (math.pi / 2, math.pi / 2)),
        ([1.0, -0.5, 0.0, 0.0], (math.pi, math.pi / 2)),
    ],
)
def test_polar_angles(momentum, expected):
    assert polar_angles(np.array(momentum)) == pytest.approx(expected)


@pytest.mark.parametrize(
    "momentum",
    [
        [5.0, 1.0, 2.0, 3.0],
        [2.0, 0.0, 0.0, -1.5],
        [1.2, 0.3, -0.4, 0.1],
    ],
)
def test_boost_into_rest_frame(momentum):
    momentum = np.array(momentum)
    mass = math.sqrt(invariant_mass_squared(momentum))
    boosted = boost_matrix(momentum) @ momentum
    assert boosted == pytest.approx([mass, 0, 0, 0], abs=1e-12)


def test_boost_preserves_invariant_mass():
    boost = boost_matrix(np.array([5.0, 1.0, 2.0, 3.0]))
    other = np.array([0.7, 0.1, -0.2, 0.3])
    assert invariant_mass_squared(boost @ other) == pytest.approx(
        invariant_mass_squared(other)
    )


def test_boost_at_rest_is_identity():
    np.testing.assert_array_equal(
        boost_matrix(np.array([1.0, 0.0, 0.0, 0.0])), np.identity(4)
    )


@pytest.mark.parametrize(
    "momentum",
    [
        [2.0, 0.3, 0.4, 0.5],
        [2.0, -0.3, 0.4, -0.5],
        [2.0, 0.0, -0.4, 0.0],
    ],
)
def test_rotation_onto_z_axis(momentum):
    momentum = np.array(momentum)
    phi, theta = polar_angles(momentum)
    rotated = rotation_y_matrix(-theta) @ rotation_z_matrix(-phi) @ momentum
    expected = [momentum[0], 0, 0, three_momentum_norm(momentum)]
    assert rotated == pytest.approx(expected, abs=1e-12)


class TestFourMomenta:
    def test_invariant_masses(self, create_kstar_model, two_body_momenta):
        model = create_kstar_model()
        momenta = two_body_momenta(0.95, 0.13957, 0.493677)
        point = model.add_data_point(momenta)
        model.prepare_data_accessors()
        status_manager = StatusManager(model.accessors.cached_values)
        status_manager.begin_event(stale=True)

        (top,) = model.top_combinations
        four_momenta = model.four_momenta
        np.testing.assert_allclose(
            four_momenta.momentum(point, top), combined_momentum(momenta, top)
        )
        assert four_momenta.m2(point, top, status_manager) == pytest.approx(0.95**2)
        assert four_momenta.m(point, top, status_manager) == pytest.approx(0.95)
        pion = top.daughters[0]
        assert four_momenta.m(point, pion, status_manager) == pytest.approx(0.13957)

    def test_spacelike_momentum(self, create_kstar_model):
        model = create_kstar_model()
        point = model.add_data_point([[0.1, 0.0, 0.0, 0.2], [0.5, 0.0, 0.0, 0.0]])
        model.prepare_data_accessors()
        status_manager = StatusManager(model.accessors.cached_values)
        status_manager.begin_event(stale=True)
        pion = model.top_combinations[0].daughters[0]
        assert math.isnan(model.four_momenta.m(point, pion, status_manager))
