from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Callable

import numpy as np
import pytest

from ampcache.dynamics.lineshape import BreitWigner, RelativisticBreitWigner
from ampcache.kinematics.phasespace import breakup_momentum_squared
from ampcache.model import Model, ModelConfiguration
from ampcache.particle import (
    DecayingParticle,
    FinalStateParticle,
    QuantumNumbers,
    Resonance,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ampcache.data import DataPoint

logging.getLogger().setLevel(level=logging.ERROR)

D_PLUS_MASS = 1.86962
KAON_MASS = 0.493677
PION_MASS = 0.13957


@pytest.fixture(scope="session")
def dalitz_points() -> list[tuple[float, float]]:
    """Squared masses of (pi+, K-) and (K-, K+) inside the D+ Dalitz plot."""
    return [(1.0, 1.5), (0.8, 2.0), (1.2, 1.4)]


@pytest.fixture(scope="session")
def dalitz_grid() -> list[tuple[float, float]]:
    return [
        (float(s1), float(s2))
        for s1 in np.linspace(0.45, 1.85, num=8)
        for s2 in np.linspace(1.0, 2.95, num=8)
    ]


@pytest.fixture(scope="session")
def create_d_plus_model() -> Callable[..., Model]:
    """D+ -> piK(J) K+ with piK(J) -> pi+ K- for J = 0, 1, 2."""

    def create(
        final_state: Sequence[str] = ("K-", "pi+", "K+"),
        free_amplitudes: Sequence[complex] = (0.5, 1, 30),
        configuration: ModelConfiguration | None = None,
    ) -> Model:
        model = Model(configuration)
        particles = {
            "pi+": FinalStateParticle(QuantumNumbers(0, +1), PION_MASS, "pi+"),
            "K-": FinalStateParticle(QuantumNumbers(0, -1), KAON_MASS, "K-"),
            "K+": FinalStateParticle(QuantumNumbers(0, +1), KAON_MASS, "K+"),
        }
        model.set_final_state([particles[name] for name in final_state])
        d_plus = DecayingParticle(
            model, QuantumNumbers(0, +1), D_PLUS_MASS, "D+", radial_size=3
        )
        for two_j, mass, amplitude in zip(
            (0, 2, 4), (0.75, 1.0, 1.25), free_amplitudes
        ):
            resonance = Resonance(
                model,
                QuantumNumbers(two_j, 0),
                mass,
                f"piK{two_j // 2}",
                BreitWigner(model, width=0.025),
                radial_size=3,
            )
            resonance.add_channel([particles["pi+"], particles["K-"]])
            channel = d_plus.add_channel([resonance, particles["K+"]])
            channel.free_amplitude.set_value(amplitude)
        model.set_initial_state_particle(d_plus)
        return model

    return create


@pytest.fixture(scope="session")
def add_dalitz_events(
    dalitz_points: list[tuple[float, float]],
) -> Callable[..., list[DataPoint]]:
    """Add events at Dalitz plot coordinates, skipping those outside phase space."""

    def add(
        model: Model, points: Sequence[tuple[float, float]] | None = None
    ) -> list[DataPoint]:
        names = [p.name for p in model.final_state_particles]
        axes = model.mass_axes([
            (names.index("pi+"), names.index("K-")),
            (names.index("K-"), names.index("K+")),
        ])
        if points is None:
            points = dalitz_points
        added = []
        for squared_masses in points:
            momenta = model.calculate_four_momenta(axes, squared_masses)
            if momenta is not None:
                added.append(model.add_data_point(momenta))
        return added

    return add


@pytest.fixture(scope="session")
def create_kstar_model() -> Callable[..., Model]:
    """Spin-1 resonance decaying to pi+ K-, used as initial state."""

    def create(
        lineshape: str = "BreitWigner",
        configuration: ModelConfiguration | None = None,
    ) -> Model:
        model = Model(configuration)
        pi_plus = FinalStateParticle(QuantumNumbers(0, +1), PION_MASS, "pi+")
        k_minus = FinalStateParticle(QuantumNumbers(0, -1), KAON_MASS, "K-")
        model.set_final_state([pi_plus, k_minus])
        if lineshape == "BreitWigner":
            mass_shape = BreitWigner(model, width=0.05)
        else:
            mass_shape = RelativisticBreitWigner(model, width=0.05, angular_momentum=1)
        kstar = Resonance(model, QuantumNumbers(2, 0), 0.892, "K*0", mass_shape)
        kstar.add_channel([pi_plus, k_minus])
        model.set_initial_state_particle(kstar)
        return model

    return create


@pytest.fixture(scope="session")
def two_body_momenta() -> Callable[..., np.ndarray]:
    """Back-to-back momenta of two particles in the rest frame of their parent."""

    def create(
        mass: float, m1: float, m2: float, theta: float = 0.3, phi: float = 0.2
    ) -> np.ndarray:
        q = math.sqrt(breakup_momentum_squared(mass**2, m1, m2))
        direction = np.array([
            math.sin(theta) * math.cos(phi),
            math.sin(theta) * math.sin(phi),
            math.cos(theta),
        ])
        return np.array([
            [math.sqrt(m1**2 + q**2), *(q * direction)],
            [math.sqrt(m2**2 + q**2), *(-q * direction)],
        ])

    return create
