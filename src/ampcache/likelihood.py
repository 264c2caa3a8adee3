"""Interface for minimizers that work on a flat vector of real parameters."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ampcache.model import Model
    from ampcache.parameters import ComplexParameter

_LOGGER = logging.getLogger(__name__)


class LogLikelihood:
    """Sum of the logarithms of the intensities of all events as a function.

    The argument is a flat vector :code:`[Re a0, Im a0, Re a1, Im a1, ...]` of the free
    amplitudes of the model, in the order of `.Model.free_amplitudes`.
    """

    def __init__(self, model: Model) -> None:
        self.model = model
        self.__parameters: list[ComplexParameter] = model.free_amplitudes

    @property
    def n_parameters(self) -> int:
        return 2 * len(self.__parameters)

    def parameter_names(self) -> list[str]:
        names = []
        for parameter in self.__parameters:
            names.extend((f"Re({parameter.name})", f"Im({parameter.name})"))
        return names

    def initial_values(self) -> list[float]:
        values = []
        for parameter in self.__parameters:
            values.extend((parameter.value.real, parameter.value.imag))
        return values

    def set_values(self, values: Sequence[float]) -> None:
        if len(values) != self.n_parameters:
            msg = f"Expecting {self.n_parameters} values, got {len(values)}"
            raise ValueError(msg)
        for i, parameter in enumerate(self.__parameters):
            parameter.set_value(complex(values[2 * i], values[2 * i + 1]))

    def __call__(self, values: Sequence[float]) -> float:
        self.set_values(values)
        result = self.model.sum_of_logs_of_squared_amplitudes()
        _LOGGER.debug(f"Log-likelihood {result} for {list(values)}")
        return result
