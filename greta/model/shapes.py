"""
Shape inference.

Every array in a graph is two-dimensional. The functions in this module take the
shapes of the operands of a construction and return the shape of the result, or
raise a :class:`.ShapeError` if no rule matches. They never look at numbers.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, NamedTuple

import numpy as np

from ..exceptions import ShapeError

__all__ = [
    "IndexSpec",
    "Shape",
    "bind",
    "broadcast",
    "index",
    "matmul",
    "normalize_dim",
    "reduce",
    "replace",
    "shape_of_value",
    "solve",
    "square",
    "transpose",
]

Shape = tuple[int, int]


def _check(shape: Shape) -> Shape:
    if len(shape) != 2 or min(shape) < 1:
        raise ShapeError(f"Arrays must have two dimensions of at least 1, not {shape}")
    return int(shape[0]), int(shape[1])


def normalize_dim(dim: int | Sequence[int]) -> Shape:
    """
    Turns a user-supplied ``dim`` into a shape.

    An integer ``n`` and a one-element sequence ``(n,)`` both mean a column vector
    ``(n, 1)``.
    """

    if isinstance(dim, (int, np.integer)):
        return _check((int(dim), 1))

    dim = tuple(int(d) for d in dim)

    if len(dim) == 1:
        return _check((dim[0], 1))

    if len(dim) != 2:
        raise ShapeError(f"dim must have one or two elements, not {len(dim)}")

    return _check(dim)  # type: ignore[arg-type]


def shape_of_value(value: np.ndarray) -> Shape:
    """Scalars become ``(1, 1)`` and 1-D arrays column vectors."""

    if value.ndim == 0:
        return (1, 1)

    if value.ndim == 1:
        return _check((value.shape[0], 1))

    if value.ndim == 2:
        return _check(value.shape)  # type: ignore[arg-type]

    raise ShapeError(
        f"Arrays can have at most two dimensions, got {value.ndim} dimensions"
    )


def broadcast(*shapes: Shape) -> Shape:
    """
    Elementwise broadcasting. Per dimension, the sizes must be equal or 1.

    >>> broadcast((3, 1), (1, 4))
    (3, 4)
    """

    if not shapes:
        return (1, 1)

    result = []

    for axis in (0, 1):
        sizes = {shape[axis] for shape in shapes} - {1}

        if len(sizes) > 1:
            raise ShapeError(
                f"Cannot broadcast shapes {', '.join(map(str, shapes))}: "
                f"dimension {axis + 1} has incompatible sizes {sorted(sizes)}"
            )

        result.append(sizes.pop() if sizes else 1)

    return result[0], result[1]


def matmul(a: Shape, b: Shape) -> Shape:
    if a[1] != b[0]:
        raise ShapeError(
            f"Incompatible dimensions for matrix multiplication: {a} and {b}"
        )
    return a[0], b[1]


def transpose(a: Shape) -> Shape:
    return a[1], a[0]


def square(a: Shape) -> Shape:
    if a[0] != a[1]:
        raise ShapeError(f"Expected a square matrix, got shape {a}")
    return a


def solve(a: Shape, b: Shape) -> Shape:
    square(a)

    if a[0] != b[0]:
        raise ShapeError(f"Cannot solve a system with shapes {a} and {b}")

    return b


def reduce(a: Shape, axis: int | None = None) -> Shape:
    """
    Reductions keep two dimensions: ``axis=None`` gives ``(1, 1)``, ``axis=0``
    reduces over rows ``(1, cols)`` and ``axis=1`` over columns ``(rows, 1)``.
    """

    if axis is None:
        return (1, 1)

    if axis == 0:
        return (1, a[1])

    if axis == 1:
        return (a[0], 1)

    raise ShapeError(f"Reduction axis must be None, 0 or 1, not {axis}")


def bind(shapes: Sequence[Shape], axis: int) -> Shape:
    """Concatenation along ``axis`` (0 for ``rbind``, 1 for ``cbind``)."""

    if not shapes:
        raise ShapeError("Need at least one array to bind")

    other = 1 - axis
    sizes = {shape[other] for shape in shapes}

    if len(sizes) > 1:
        name = "rows" if other == 0 else "columns"
        raise ShapeError(
            f"Arrays must have the same number of {name} to be bound, "
            f"got shapes {', '.join(map(str, shapes))}"
        )

    total = sum(shape[axis] for shape in shapes)
    return (total, sizes.pop()) if axis == 0 else (sizes.pop(), total)


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Indexing ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


class IndexSpec(NamedTuple):
    """
    A normalized index. Either ``rows`` and ``cols`` are set (matrix indexing) or
    ``linear`` is set (column-major linear indexing).
    """

    shape: Shape
    rows: np.ndarray | None = None
    cols: np.ndarray | None = None
    linear: np.ndarray | None = None


def _positions(key: Any, size: int) -> np.ndarray:
    """Normalizes one index component to an array of non-negative positions."""

    if isinstance(key, (bool, np.bool_)):
        raise TypeError("Boolean scalars cannot be used as an index")

    if isinstance(key, (int, np.integer)):
        positions = np.array([int(key)])
    elif isinstance(key, slice):
        positions = np.arange(*key.indices(size))
    elif key is Ellipsis:
        positions = np.arange(size)
    else:
        if hasattr(key, "graph"):
            raise TypeError("Indices must be fixed numbers, not greta arrays")

        positions = np.asarray(key)

        if positions.ndim != 1:
            raise ShapeError("Index sequences must be one-dimensional")

        if positions.dtype == np.bool_:
            if positions.shape[0] != size:
                raise ShapeError(
                    f"Boolean index of length {positions.shape[0]} does not match "
                    f"dimension of size {size}"
                )
            positions = np.flatnonzero(positions)
        elif positions.size and not np.issubdtype(positions.dtype, np.integer):
            raise TypeError(f"Indices must be integers, not {positions.dtype}")

        positions = positions.astype(int)

    if positions.size == 0:
        raise ShapeError("Indexing would produce an array with an empty dimension")

    if np.any(positions >= size) or np.any(positions < -size):
        raise IndexError(f"Index out of range for dimension of size {size}")

    return np.where(positions < 0, positions + size, positions)


def index(shape: Shape, key: Any) -> IndexSpec:
    """
    Shape rule for ``x[key]``.

    A pair ``(i, j)`` selects rows and columns and never drops a dimension, so
    ``x[0, :]`` is a row vector. Any other key indexes the elements in
    column-major order and yields a column vector.
    """

    if isinstance(key, tuple):
        if len(key) != 2:
            raise ShapeError(
                f"Arrays are indexed with one or two indices, not {len(key)}"
            )

        rows = _positions(key[0], shape[0])
        cols = _positions(key[1], shape[1])
        return IndexSpec((rows.size, cols.size), rows=rows, cols=cols)

    linear = _positions(key, shape[0] * shape[1])
    return IndexSpec((linear.size, 1), linear=linear)


def replace(shape: Shape, key: Any, value: Shape) -> IndexSpec:
    """
    Shape rule for replacing the elements selected by ``key``. The replacement
    must be a single element or match the selected block.
    """

    spec = index(shape, key)

    if value != (1, 1) and value != spec.shape:
        raise ShapeError(
            f"Replacement of shape {value} does not fit the selection of "
            f"shape {spec.shape}"
        )

    return spec._replace(shape=shape)
