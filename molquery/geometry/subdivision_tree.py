"""A static kd-like tree for radius queries over 3D points."""

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence, Union

import numpy as np

from molquery import config
from molquery.errors import QueryError
from molquery.geometry.buffers import ResultIndexBuffer, ResultPriorityBuffer

logger = logging.getLogger(__name__)

ResultBuffer = Union[ResultIndexBuffer, ResultPriorityBuffer]


class Box3D:
    """Axis-aligned bounding box.

    Attributes
    ----------
    min
        Minimum corner ``[x, y, z]``.
    max
        Maximum corner ``[x, y, z]``.
    """

    def __init__(self, min_corner: Sequence[float], max_corner: Sequence[float]) -> None:
        self.min = [float(v) for v in min_corner]
        self.max = [float(v) for v in max_corner]

    @classmethod
    def of_positions(cls, positions: np.ndarray) -> "Box3D":
        if not len(positions):
            return cls((0.0, 0.0, 0.0), (0.0, 0.0, 0.0))
        return cls(positions.min(axis=0), positions.max(axis=0))


class SubdivisionTreeNode:
    """A tree node covering ``[start_index, end_index)`` of the tree arrays.

    Leaves have no children; internal nodes split their range at
    ``split_value`` along the dimension given by their depth.
    """

    __slots__ = ("split_value", "start_index", "end_index", "left", "right")

    def __init__(
        self,
        split_value: float,
        start_index: int,
        end_index: int,
        left: Optional["SubdivisionTreeNode"] = None,
        right: Optional["SubdivisionTreeNode"] = None,
    ) -> None:
        self.split_value = split_value
        self.start_index = start_index
        self.end_index = end_index
        self.left = left
        self.right = right

    @property
    def is_leaf(self) -> bool:
        return self.left is None and self.right is None

    def _nearest_leaf(self, ctx: "QueryContext") -> None:
        start, end = self.start_index, self.end_index
        delta = ctx.positions[start:end] - ctx.pivot
        dist_sq = (delta * delta).sum(axis=1)
        hits = np.flatnonzero(dist_sq <= ctx.radius_sq)
        if hits.size:
            ctx.buffer.extend(dist_sq[hits], ctx.indices[start + hits])

    def _nearest_node(self, ctx: "QueryContext", dim: int) -> None:
        pivot = ctx.pivot[dim]
        next_dim = (dim + 1) % 3
        if pivot - ctx.radius <= self.split_value:
            self.left.nearest(ctx, next_dim)
        if pivot + ctx.radius >= self.split_value:
            self.right.nearest(ctx, next_dim)

    def nearest(self, ctx: "QueryContext", dim: int) -> None:
        if self.is_leaf:
            self._nearest_leaf(ctx)
        else:
            self._nearest_node(ctx, dim)


class SubdivisionTree3D:
    """A kd-like tree to query 3D data.

    The tree is built once and is read-only afterwards. Positions are copied
    and reordered so that every node covers a contiguous block of
    ``indices`` and ``positions``.

    Attributes
    ----------
    data
        Payload per point, e.g. atom indices. Query results index into it.
    indices
        Permutation of ``0..len(data)-1`` produced by the build.
    positions
        ``(len(data), 3)`` C-contiguous array reordered to match ``indices``.
    root
        Root node, ``None`` for an empty point set.
    bounds
        Bounding box of all points.
    leaf_size
        Maximum number of points held by a leaf.
    """

    def __init__(
        self,
        data: Sequence[int],
        positions: np.ndarray,
        leaf_size: int = config.DEFAULT_LEAF_SIZE,
    ) -> None:
        """Build the tree.

        Parameters
        ----------
        data
            Payload per point.
        positions
            Array-like of shape ``(len(data), 3)``.
        leaf_size
            Maximum number of points per leaf, at least 1.

        Raises
        ------
        QueryError
            If the inputs are inconsistent.
        """

        positions = np.array(positions, dtype=np.float64, copy=True).reshape(-1, 3)
        if len(positions) != len(data):
            raise QueryError(
                "invalid_points",
                "Point payload and positions differ in length",
                {"data": len(data), "positions": len(positions)},
            )
        if int(leaf_size) < 1:
            raise QueryError("invalid_leaf_size", "Leaf size must be at least 1", leaf_size)

        start = time.perf_counter()
        self.data = np.asarray(data)
        self.leaf_size = int(leaf_size)
        self.indices = np.arange(len(positions), dtype=np.int64)
        self.positions = np.ascontiguousarray(positions)
        self.bounds = Box3D.of_positions(self.positions)
        self.root = self._build(0, len(positions), 0) if len(positions) else None
        # inverse permutation, used to look up the pivot for index queries
        self._slot_of = np.empty_like(self.indices)
        self._slot_of[self.indices] = np.arange(len(self.indices))
        logger.debug(
            "Built subdivision tree: points=%d leaf_size=%d in %.3fs",
            len(positions),
            self.leaf_size,
            time.perf_counter() - start,
        )

    def _build(self, start: int, end: int, depth: int) -> SubdivisionTreeNode:
        if end - start <= self.leaf_size:
            return SubdivisionTreeNode(float("nan"), start, end)
        dim = depth % 3
        mid = (start + end) // 2
        order = np.argpartition(self.positions[start:end, dim], mid - start)
        self.indices[start:end] = self.indices[start:end][order]
        self.positions[start:end] = self.positions[start:end][order]
        split_value = float(self.positions[mid, dim])
        left = self._build(start, mid, depth + 1)
        right = self._build(mid, end, depth + 1)
        return SubdivisionTreeNode(split_value, start, end, left, right)

    def __len__(self) -> int:
        return len(self.indices)

    def position_of(self, index: int) -> np.ndarray:
        """Return the position of the ``index``-th input point."""
        if not 0 <= index < len(self.indices):
            raise QueryError("invalid_index", f"Point index {index} out of range", index)
        return self.positions[self._slot_of[index]]

    def create_context_radius(
        self, radius_estimate: float, include_priorities: bool = False
    ) -> "QueryContext":
        """Create a context used for querying the tree.

        Parameters
        ----------
        radius_estimate
            Expected query radius, used to size the result buffer.
        include_priorities
            Record squared distances alongside hit indices.

        Returns
        -------
        QueryContext
            Reusable query context owning its own buffer.
        """

        capacity = _estimate_capacity(len(self), self.bounds, radius_estimate)
        if include_priorities:
            buffer: ResultBuffer = ResultPriorityBuffer(capacity)
        else:
            buffer = ResultIndexBuffer(capacity)
        return QueryContext(self, buffer)


def _estimate_capacity(count: int, bounds: Box3D, radius: float) -> int:
    if count == 0:
        return config.DEFAULT_BUFFER_CAPACITY
    volume = 1.0
    for lo, hi in zip(bounds.min, bounds.max):
        volume *= max(hi - lo, 1.0)
    radius = float(radius)
    if not radius > 0:
        radius = 0.0
    sphere = 4.0 / 3.0 * np.pi * radius ** 3
    estimate = int(count * min(sphere / volume, 1.0))
    return max(config.DEFAULT_BUFFER_CAPACITY, min(estimate, count))


class QueryContext:
    """Handles the actual querying of a tree.

    Each query overwrites the previous content of ``buffer``. Buffer entries
    are indices into ``tree.data``; use :meth:`hit_data` to map them.
    """

    def __init__(self, tree: SubdivisionTree3D, buffer: ResultBuffer) -> None:
        self.tree = tree
        self.buffer = buffer
        self.indices = tree.indices
        self.positions = tree.positions
        self.pivot = np.zeros(3, dtype=np.float64)
        self.radius = 0.0
        self.radius_sq = 0.0

    def nearest(self, x: float, y: float, z: float, radius: float) -> None:
        """Collect every point within ``radius`` of ``(x, y, z)``.

        The interval is closed: points at exactly ``radius`` are reported.

        Raises
        ------
        QueryError
            If ``radius`` is negative.
        """

        radius = float(radius)
        if radius < 0 or np.isnan(radius):
            raise QueryError("invalid_radius", "Radius must be non-negative", radius)
        self.pivot[0] = x
        self.pivot[1] = y
        self.pivot[2] = z
        self.radius = radius
        self.radius_sq = radius * radius
        self.buffer.reset()
        if self.tree.root is not None:
            self.tree.root.nearest(self, 0)

    def nearest_index(self, index: int, radius: float) -> None:
        """Query using the position of the ``index``-th point as pivot.

        The point itself is reported since its distance is zero.
        """

        x, y, z = self.tree.position_of(index)
        self.nearest(x, y, z, radius)

    def hit_data(self) -> np.ndarray:
        """Return the ``tree.data`` payload of the current hits."""
        return self.tree.data[self.buffer.indices[: self.buffer.count]]
