"""Geometry package exports."""

from molquery.geometry.buffers import ResultIndexBuffer, ResultPriorityBuffer
from molquery.geometry.subdivision_tree import (
    Box3D,
    QueryContext,
    SubdivisionTree3D,
    SubdivisionTreeNode,
)

__all__ = [
    "Box3D",
    "QueryContext",
    "ResultIndexBuffer",
    "ResultPriorityBuffer",
    "SubdivisionTree3D",
    "SubdivisionTreeNode",
]
