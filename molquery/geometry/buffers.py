"""Result buffers for spatial range queries."""

from __future__ import annotations

from typing import Optional

import numpy as np

from molquery import config


class ResultIndexBuffer:
    """Append-only buffer that only remembers the hit indices.

    Attributes
    ----------
    count
        Number of valid entries.
    indices
        Backing index storage; only the first ``count`` entries are valid.
    has_priorities
        Always ``False`` for this buffer.
    priorities
        ``None`` for this buffer.
    """

    has_priorities = False

    def __init__(self, initial_capacity: int = config.DEFAULT_BUFFER_CAPACITY) -> None:
        self._capacity = max(int(initial_capacity), 1)
        self.count = 0
        self.indices = np.empty(self._capacity, dtype=np.int64)
        self.priorities = None

    def _ensure_capacity(self, required: int) -> None:
        if required <= self._capacity:
            return
        capacity = self._capacity
        while capacity < required:
            capacity *= 2
        self._grow(capacity)
        self._capacity = capacity

    def _grow(self, capacity: int) -> None:
        indices = np.empty(capacity, dtype=np.int64)
        indices[: self.count] = self.indices[: self.count]
        self.indices = indices

    def add(self, dist_sq: float, index: int) -> None:
        """Append a single hit."""
        self._ensure_capacity(self.count + 1)
        self.indices[self.count] = index
        self.count += 1

    def extend(self, dist_sq: np.ndarray, indices: np.ndarray) -> None:
        """Append a batch of hits in order."""
        n = len(indices)
        if not n:
            return
        self._ensure_capacity(self.count + n)
        self.indices[self.count : self.count + n] = indices
        self.count += n

    def reset(self) -> None:
        """Forget all hits without releasing storage."""
        self.count = 0

    def hits(self) -> np.ndarray:
        """Return a copy of the valid indices."""
        return self.indices[: self.count].copy()


class ResultPriorityBuffer(ResultIndexBuffer):
    """Buffer that remembers hit indices and their squared distances.

    The ``priorities`` array runs parallel to ``indices`` so callers can pick
    the nearest hits after a radius query.
    """

    has_priorities = True

    def __init__(self, initial_capacity: int = config.DEFAULT_BUFFER_CAPACITY) -> None:
        super().__init__(initial_capacity)
        self.priorities = np.empty(self._capacity, dtype=np.float64)

    def _grow(self, capacity: int) -> None:
        super()._grow(capacity)
        priorities = np.empty(capacity, dtype=np.float64)
        priorities[: self.count] = self.priorities[: self.count]
        self.priorities = priorities

    def add(self, dist_sq: float, index: int) -> None:
        self._ensure_capacity(self.count + 1)
        self.indices[self.count] = index
        self.priorities[self.count] = dist_sq
        self.count += 1

    def extend(self, dist_sq: np.ndarray, indices: np.ndarray) -> None:
        n = len(indices)
        if not n:
            return
        self._ensure_capacity(self.count + n)
        self.indices[self.count : self.count + n] = indices
        self.priorities[self.count : self.count + n] = dist_sq
        self.count += n

    def sorted_indices(self, k: Optional[int] = None) -> np.ndarray:
        """Return hit indices ordered by distance, nearest first.

        Parameters
        ----------
        k
            Optional limit on the number of indices returned.

        Returns
        -------
        numpy.ndarray
            Indices sorted by ascending squared distance (stable on ties).
        """

        order = np.argsort(self.priorities[: self.count], kind="stable")
        if k is not None:
            order = order[:k]
        return self.indices[: self.count][order]
