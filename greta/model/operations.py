"""
The closed set of operations that can appear in a graph.

Each operation pairs a shape rule (used while the graph is built) with a JAX
function (used when a compiled model evaluates the graph). Static arguments,
like normalized indices, are stored on the array and passed to both.
"""

from __future__ import annotations

from collections.abc import Callable
from types import MappingProxyType
from typing import Any, NamedTuple

import jax
import jax.numpy as jnp
import jax.scipy.special as jss
import numpy as np

from . import shapes
from .shapes import IndexSpec, Shape

__all__ = ["OPERATIONS", "Operation", "get_operation"]

Array = Any


class Operation(NamedTuple):
    """An entry of the operation table."""

    name: str
    """The name of the operation, also used in the graph description."""

    shape_rule: Callable[..., Shape]
    """Maps the operand shapes (and static arguments) to the result shape."""

    function: Callable[..., Array]
    """Computes the result from the operand values (and static arguments)."""


def _elementwise(operand_shapes: tuple[Shape, ...]) -> Shape:
    return shapes.broadcast(*operand_shapes)


def _index(x: Array, spec: IndexSpec) -> Array:
    if spec.linear is not None:
        # column-major, like the rest of the array conventions
        return x.T.reshape(-1)[spec.linear].reshape(-1, 1)
    return x[np.ix_(spec.rows, spec.cols)]


def _replace(x: Array, value: Array, spec: IndexSpec) -> Array:
    if spec.linear is not None:
        rows = spec.linear % x.shape[0]
        cols = spec.linear // x.shape[0]
        return x.at[rows, cols].set(jnp.ravel(value))
    return x.at[np.ix_(spec.rows, spec.cols)].set(value)


def _unary(name: str, fn: Callable[[Array], Array]) -> Operation:
    return Operation(name, lambda s: s[0], fn)


def _binary(name: str, fn: Callable[[Array, Array], Array]) -> Operation:
    return Operation(name, _elementwise, fn)


_table = [
    # elementwise arithmetic
    _binary("add", jnp.add),
    _binary("subtract", jnp.subtract),
    _binary("multiply", jnp.multiply),
    _binary("divide", jnp.divide),
    _binary("power", jnp.power),
    _unary("negative", jnp.negative),
    # elementwise functions
    _unary("exp", jnp.exp),
    _unary("log", jnp.log),
    _unary("log1p", jnp.log1p),
    _unary("expm1", jnp.expm1),
    _unary("sqrt", jnp.sqrt),
    _unary("abs", jnp.abs),
    _unary("sin", jnp.sin),
    _unary("cos", jnp.cos),
    _unary("tanh", jnp.tanh),
    _unary("ilogit", jax.nn.sigmoid),
    _unary("logit", jss.logit),
    # linear algebra
    Operation("matmul", lambda s: shapes.matmul(*s), jnp.matmul),
    Operation("transpose", lambda s: shapes.transpose(s[0]), jnp.transpose),
    Operation("solve", lambda s: shapes.solve(*s), jnp.linalg.solve),
    Operation(
        "chol",
        lambda s: shapes.square(s[0]),
        lambda x: jnp.transpose(jnp.linalg.cholesky(x)),
    ),
    # reductions
    Operation("sum", lambda s: shapes.reduce(s[0]), lambda x: jnp.sum(x).reshape(1, 1)),
    Operation(
        "mean", lambda s: shapes.reduce(s[0]), lambda x: jnp.mean(x).reshape(1, 1)
    ),
    Operation(
        "rowsums",
        lambda s: shapes.reduce(s[0], axis=1),
        lambda x: jnp.sum(x, axis=1, keepdims=True),
    ),
    Operation(
        "rowmeans",
        lambda s: shapes.reduce(s[0], axis=1),
        lambda x: jnp.mean(x, axis=1, keepdims=True),
    ),
    Operation(
        "colsums",
        lambda s: shapes.reduce(s[0], axis=0),
        lambda x: jnp.sum(x, axis=0, keepdims=True),
    ),
    Operation(
        "colmeans",
        lambda s: shapes.reduce(s[0], axis=0),
        lambda x: jnp.mean(x, axis=0, keepdims=True),
    ),
    # concatenation
    Operation(
        "cbind",
        lambda s: shapes.bind(s, axis=1),
        lambda *xs: jnp.concatenate(xs, axis=1),
    ),
    Operation(
        "rbind",
        lambda s: shapes.bind(s, axis=0),
        lambda *xs: jnp.concatenate(xs, axis=0),
    ),
    # indexing
    Operation("index", lambda s, spec: spec.shape, _index),
    Operation("replace", lambda s, spec: spec.shape, _replace),
]

OPERATIONS: MappingProxyType[str, Operation] = MappingProxyType(
    {op.name: op for op in _table}
)
"""All supported operations by name."""


def get_operation(name: str) -> Operation:
    try:
        return OPERATIONS[name]
    except KeyError:
        raise KeyError(
            f"Unknown operation {name!r}. Available: {', '.join(OPERATIONS)}"
        ) from None
