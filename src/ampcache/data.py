"""Events, data sets, and partitions of a data set.

A `DataPoint` holds the four-momenta of the final-state particles of one event, as an
array of shape :code:`(n, 4)` with the energy first. Once the data accessors of a model
have been indexed, every point also holds one storage array per accessor, of shape
:code:`(n_symmetrization_indices, size)`.

A `DataPartition` is a view on a part of a `DataSet`. Partitions of one data set are
disjoint and each comes with its own `.StatusManager`, so that they can be evaluated
concurrently.
"""

from __future__ import annotations

import logging
from collections import abc
from typing import TYPE_CHECKING, overload

import numpy as np

from ampcache.exceptions import ProtocolError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from numpy.typing import ArrayLike

    from ampcache.accessor import AccessorIndex
    from ampcache.cached import StatusManager

_LOGGER = logging.getLogger(__name__)


def _as_four_momenta(momenta: ArrayLike) -> np.ndarray:
    array = np.array(momenta, dtype=float)
    if array.ndim != 2 or array.shape[1] != 4:
        msg = f"Four-momenta have to be of shape (n, 4), got {array.shape}"
        raise ValueError(msg)
    return array


class DataPoint:
    """Kinematics and cached values of a single event."""

    def __init__(self, final_state_momenta: ArrayLike) -> None:
        self.__momenta = _as_four_momenta(final_state_momenta)
        self.__storage: list[np.ndarray] | None = None
        self.stale = True

    @property
    def final_state_momenta(self) -> np.ndarray:
        return self.__momenta

    def set_final_state_momenta(self, momenta: ArrayLike) -> None:
        momenta = _as_four_momenta(momenta)
        if momenta.shape != self.__momenta.shape:
            msg = (
                f"Expecting {len(self.__momenta)} final-state momenta,"
                f" got {len(momenta)}"
            )
            raise ValueError(msg)
        if np.array_equal(momenta, self.__momenta):
            return
        self.__momenta = momenta
        self.stale = True

    @property
    def is_allocated(self) -> bool:
        return self.__storage is not None

    def allocate(self, accessors: AccessorIndex) -> None:
        if not accessors.is_frozen:
            msg = "Cannot allocate event storage before the data accessors are indexed"
            raise ProtocolError(msg)
        self.__storage = [
            np.zeros((accessor.n_symmetrization_indices, accessor.size))
            for accessor in accessors
        ]
        self.stale = True

    def storage(self, accessor_index: int) -> np.ndarray:
        if self.__storage is None:
            msg = "Storage of this data point has not been allocated"
            raise ProtocolError(msg)
        return self.__storage[accessor_index]

    @property
    def n_bytes(self) -> int:
        n_bytes = self.__momenta.nbytes
        if self.__storage is not None:
            n_bytes += sum(array.nbytes for array in self.__storage)
        return n_bytes


class DataSet(abc.Sequence):
    """Ordered collection of `DataPoint` instances."""

    def __init__(self) -> None:
        self.__points: list[DataPoint] = []

    def add(self, point: DataPoint) -> None:
        self.__points.append(point)

    @overload
    def __getitem__(self, index: int) -> DataPoint: ...
    @overload
    def __getitem__(self, index: slice) -> list[DataPoint]: ...
    def __getitem__(self, index):
        return self.__points[index]

    def __len__(self) -> int:
        return len(self.__points)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_points={len(self)})"


class DataPartition(abc.Iterable):
    """View on a subset of the events in a `DataSet`."""

    def __init__(self, data_set: DataSet, index: int = 0) -> None:
        self.data_set = data_set
        self.index = index
        self.status_manager: StatusManager | None = None

    def _slice(self) -> slice:
        raise NotImplementedError

    def __iter__(self) -> Iterator[DataPoint]:
        return iter(self.data_set[self._slice()])

    def __len__(self) -> int:
        return len(range(*self._slice().indices(len(self.data_set))))


class DataPartitionBlock(DataPartition):
    """Contiguous range :code:`[start, stop)` of events."""

    def __init__(
        self, data_set: DataSet, start: int, stop: int, index: int = 0
    ) -> None:
        super().__init__(data_set, index)
        self.start = start
        self.stop = stop

    def _slice(self) -> slice:
        return slice(self.start, self.stop)

    @classmethod
    def create(cls, data_set: DataSet, n: int) -> list[DataPartitionBlock]:
        r"""Split into :code:`n` contiguous blocks whose sizes differ by at most one.

        The first :math:`N \bmod n` blocks hold one event more than the others. If
        :code:`n` exceeds the number of events :math:`N`, there are :math:`N` blocks of
        one event each.
        """
        if n < 1:
            msg = f"Number of partitions has to be positive, got {n}"
            raise ValueError(msg)
        n_points = len(data_set)
        if n > n_points:
            _LOGGER.info(
                f"Reducing number of blocks from {n} to the data set size {n_points}"
            )
            n = n_points
        if n == 0:
            _LOGGER.warning("Data set is empty, creating a single empty block")
            return [cls(data_set, 0, 0)]
        size, remainder = divmod(n_points, n)
        blocks = []
        start = 0
        for i in range(n):
            stop = start + size + (1 if i < remainder else 0)
            blocks.append(cls(data_set, start, stop, index=i))
            start = stop
        _LOGGER.info(
            f"Partitioned {n_points} events into {n} contiguous blocks of at most"
            f" {size + 1 if remainder else size} events"
        )
        return blocks

    @classmethod
    def create_by_size(cls, data_set: DataSet, size: int) -> list[DataPartitionBlock]:
        """Split into blocks of :code:`size` events, the last one may be smaller."""
        if size < 1:
            msg = f"Block size has to be positive, got {size}"
            raise ValueError(msg)
        n_points = len(data_set)
        blocks = [
            cls(data_set, start, min(start + size, n_points), index=i)
            for i, start in enumerate(range(0, n_points, size))
        ]
        if not blocks:
            blocks = [cls(data_set, 0, 0)]
        _LOGGER.info(
            f"Partitioned {n_points} events into {len(blocks)} contiguous blocks"
            f" of at most {size} events"
        )
        return blocks


class DataPartitionWeave(DataPartition):
    """Every :code:`spacing`-th event, starting at :code:`offset`.

    The view is open-ended, so it includes events that are added to the data set later.
    """

    def __init__(
        self, data_set: DataSet, offset: int, spacing: int, index: int = 0
    ) -> None:
        super().__init__(data_set, index)
        self.offset = offset
        self.spacing = spacing

    def _slice(self) -> slice:
        return slice(self.offset, None, self.spacing)

    @classmethod
    def create(cls, data_set: DataSet, n: int) -> list[DataPartitionWeave]:
        if n < 1:
            msg = f"Number of partitions has to be positive, got {n}"
            raise ValueError(msg)
        _LOGGER.info(
            f"Partitioning data set of size {len(data_set)} into {n} interwoven"
            " partitions"
        )
        return [cls(data_set, offset=i, spacing=n, index=i) for i in range(n)]
