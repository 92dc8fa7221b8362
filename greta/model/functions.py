"""
Functions on greta arrays.

Every function adds an operation node to the graph of its argument and returns
the new array.
"""

from __future__ import annotations

from typing import Any

from .nodes import GretaArray

__all__ = [
    "abs",
    "assign",
    "cbind",
    "chol",
    "colmeans",
    "colsums",
    "cos",
    "exp",
    "expm1",
    "ilogit",
    "log",
    "log1p",
    "logit",
    "mean",
    "rbind",
    "rowmeans",
    "rowsums",
    "sin",
    "solve",
    "sqrt",
    "sum",
    "t",
    "tanh",
]


def _graph_of(*xs: Any):
    for x in xs:
        if isinstance(x, GretaArray):
            return x.graph
    raise TypeError("At least one argument must be a greta array")


def _apply(name: str, x: GretaArray, **static: Any) -> GretaArray:
    return _graph_of(x).operation(name, x, **static)


def exp(x: GretaArray) -> GretaArray:
    return _apply("exp", x)


def log(x: GretaArray) -> GretaArray:
    return _apply("log", x)


def log1p(x: GretaArray) -> GretaArray:
    return _apply("log1p", x)


def expm1(x: GretaArray) -> GretaArray:
    return _apply("expm1", x)


def sqrt(x: GretaArray) -> GretaArray:
    return _apply("sqrt", x)


def abs(x: GretaArray) -> GretaArray:  # noqa: A001
    return _apply("abs", x)


def sin(x: GretaArray) -> GretaArray:
    return _apply("sin", x)


def cos(x: GretaArray) -> GretaArray:
    return _apply("cos", x)


def tanh(x: GretaArray) -> GretaArray:
    return _apply("tanh", x)


def ilogit(x: GretaArray) -> GretaArray:
    """The inverse logit (logistic sigmoid) function."""
    return _apply("ilogit", x)


def logit(x: GretaArray) -> GretaArray:
    return _apply("logit", x)


def sum(x: GretaArray) -> GretaArray:  # noqa: A001
    """Sum over all elements, a ``1 x 1`` array."""
    return _apply("sum", x)


def mean(x: GretaArray) -> GretaArray:
    """Mean over all elements, a ``1 x 1`` array."""
    return _apply("mean", x)


def rowsums(x: GretaArray) -> GretaArray:
    return _apply("rowsums", x)


def rowmeans(x: GretaArray) -> GretaArray:
    return _apply("rowmeans", x)


def colsums(x: GretaArray) -> GretaArray:
    return _apply("colsums", x)


def colmeans(x: GretaArray) -> GretaArray:
    return _apply("colmeans", x)


def t(x: GretaArray) -> GretaArray:
    """The transpose, same as ``x.T``."""
    return _apply("transpose", x)


def chol(x: GretaArray) -> GretaArray:
    """
    The Cholesky factor of a symmetric positive definite matrix. The factor is
    upper triangular, so ``t(chol(x)) @ chol(x)`` equals ``x``.
    """
    return _apply("chol", x)


def solve(a: Any, b: Any) -> GretaArray:
    """Solves the linear system ``a @ x = b`` for ``x``."""
    return _graph_of(a, b).operation("solve", a, b)


def cbind(*xs: Any) -> GretaArray:
    """Binds arrays with the same number of rows side by side."""
    return _graph_of(*xs).operation("cbind", *xs)


def rbind(*xs: Any) -> GretaArray:
    """Stacks arrays with the same number of columns on top of each other."""
    return _graph_of(*xs).operation("rbind", *xs)


def assign(x: GretaArray, key: Any, value: Any) -> GretaArray:
    """
    Replaces the elements of ``x`` selected by ``key`` with ``value`` and returns
    the result as a new array. ``x`` is not changed.

    Examples
    --------

    >>> gb = gm.GraphBuilder()
    >>> x = gb.data([1.0, 2.0, 3.0])
    >>> y = gm.assign(x, 1, gb.variable())
    >>> y.shape
    (3, 1)
    """
    return x.graph.assign(x, key, value)
