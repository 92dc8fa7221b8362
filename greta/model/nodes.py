"""
Arrays and distribution nodes.
"""

from __future__ import annotations

from enum import Enum
from itertools import count
from typing import TYPE_CHECKING, Any

import numpy as np

from .distributions import DistributionSpec, Truncation
from .shapes import Shape

if TYPE_CHECKING:
    from .builder import GraphBuilder

__all__ = ["DistributionNode", "GretaArray", "Kind", "Transform"]

_ids = count()


class Kind(Enum):
    """The kind of a :class:`.GretaArray`."""

    DATA = "data"
    VARIABLE = "variable"
    OPERATION = "operation"
    DISTRIBUTION_VALUE = "distribution_value"


class Transform(Enum):
    """The change of variables mapping the unconstrained space into the bounds."""

    IDENTITY = "identity"
    LOG = "log"
    LOGIT = "logit"


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Arrays ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


class GretaArray:
    """
    A node of a model graph.

    A greta array is a placeholder for a two-dimensional array. It knows its shape,
    its kind and the nodes it was computed from, but holds no numbers except for
    data arrays. Arrays are created through a :class:`.GraphBuilder`, e.g. with
    :meth:`.GraphBuilder.data`, :meth:`.GraphBuilder.variable` or one of the
    distribution constructors, and combined with the usual Python operators or the
    functions in :mod:`greta.model.functions`. Every combination returns a new
    array; existing arrays are never modified, except that a distribution can be
    bound to a data or variable array once.

    .. tip::
        Create arrays through the graph builder rather than calling this class
        directly.

    Parameters
    ----------
    graph
        The graph builder the array belongs to.
    shape
        The shape ``(rows, cols)``.
    source
        :attr:`Kind.DATA`, :attr:`Kind.VARIABLE` or :attr:`Kind.OPERATION`.
    name
        A display label. It is only used in diagnostics and never for identity.

    See Also
    --------
    .GraphBuilder : Creates and binds arrays.
    .DistributionNode : The distribution bound to an array.

    Examples
    --------

    >>> gb = gm.GraphBuilder()
    >>> x = gb.data([1.0, 2.0, 3.0], name="x")
    >>> y = 2 * x + 1
    >>> y
    GretaArray(name="", kind=operation, shape=(3, 1))
    >>> y[0:2, 0].shape
    (2, 1)
    """

    __array_ufunc__ = None  # numpy defers to the reflected operators

    __slots__ = (
        "_distribution",
        "_graph",
        "_id",
        "_lower",
        "_operands",
        "_operation",
        "_shape",
        "_source",
        "_static",
        "_upper",
        "_value",
        "name",
        "__weakref__",
    )

    def __init__(
        self,
        graph: GraphBuilder,
        shape: Shape,
        source: Kind,
        name: str = "",
    ):
        if source is Kind.DISTRIBUTION_VALUE:
            raise ValueError("Arrays are created as data, variables or operations")

        self._graph = graph
        self._shape = shape
        self._source = source
        self._id = next(_ids)
        self._distribution: DistributionNode | None = None

        self._operation: str | None = None
        self._operands: tuple[GretaArray, ...] = ()
        self._static: dict[str, Any] = {}
        self._value: np.ndarray | None = None
        self._lower: np.ndarray | None = None
        self._upper: np.ndarray | None = None

        self.name = name
        """The display label of the array."""

    # -- identity and structure --------------------------------------------------------

    @property
    def graph(self) -> GraphBuilder:
        """The graph builder the array belongs to."""
        return self._graph

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def kind(self) -> Kind:
        """
        The kind of the array. An array with a bound distribution is a
        :attr:`Kind.DISTRIBUTION_VALUE`, whether it holds data or is a variable.
        """
        if self._distribution is not None:
            return Kind.DISTRIBUTION_VALUE
        return self._source

    @property
    def is_data(self) -> bool:
        return self._source is Kind.DATA

    @property
    def is_variable(self) -> bool:
        return self._source is Kind.VARIABLE

    @property
    def is_operation(self) -> bool:
        return self._source is Kind.OPERATION

    @property
    def operation(self) -> str | None:
        """The name of the producing operation, see :mod:`.operations`."""
        return self._operation

    @property
    def operands(self) -> tuple[GretaArray, ...]:
        return self._operands

    @property
    def static(self) -> dict[str, Any]:
        """Static arguments of the producing operation, e.g. normalized indices."""
        return dict(self._static)

    @property
    def distribution(self) -> DistributionNode | None:
        """The distribution bound to this array."""
        return self._distribution

    def inputs(self) -> tuple[GretaArray | DistributionNode, ...]:
        """The nodes this array depends on: operands, or the bound distribution."""
        if self._distribution is not None:
            return (*self._operands, self._distribution)
        return self._operands

    # -- data --------------------------------------------------------------------------

    @property
    def value(self) -> np.ndarray:
        """The values of a data array. Other arrays hold no values."""
        if self._value is None:
            raise AttributeError(f"{self!r} is not a data array and holds no values")
        return self._value

    # -- variables ---------------------------------------------------------------------

    def _require_variable(self, attr: str) -> None:
        if not self.is_variable:
            raise AttributeError(f"{self!r} is not a variable and has no {attr}")

    @property
    def lower(self) -> np.ndarray:
        """The lower bound of a variable, broadcast to its shape."""
        self._require_variable("lower")
        return self._lower  # type: ignore[return-value]

    @property
    def upper(self) -> np.ndarray:
        """The upper bound of a variable, broadcast to its shape."""
        self._require_variable("upper")
        return self._upper  # type: ignore[return-value]

    @property
    def transform(self) -> Transform:
        """The transform to unconstrained space implied by the bounds."""
        self._require_variable("transform")
        has_lower = bool(np.all(np.isfinite(self._lower)))
        has_upper = bool(np.all(np.isfinite(self._upper)))

        if has_lower and has_upper:
            return Transform.LOGIT
        if has_lower or has_upper:
            return Transform.LOG
        return Transform.IDENTITY

    def _set_bounds(self, lower: np.ndarray, upper: np.ndarray) -> None:
        self._lower = lower
        self._upper = upper

    # -- operators ---------------------------------------------------------------------

    def _op(self, name: str, *operands: Any, **static: Any) -> GretaArray:
        return self._graph.operation(name, *operands, **static)

    def __add__(self, other: Any) -> GretaArray:
        return self._op("add", self, other)

    def __radd__(self, other: Any) -> GretaArray:
        return self._op("add", other, self)

    def __sub__(self, other: Any) -> GretaArray:
        return self._op("subtract", self, other)

    def __rsub__(self, other: Any) -> GretaArray:
        return self._op("subtract", other, self)

    def __mul__(self, other: Any) -> GretaArray:
        return self._op("multiply", self, other)

    def __rmul__(self, other: Any) -> GretaArray:
        return self._op("multiply", other, self)

    def __truediv__(self, other: Any) -> GretaArray:
        return self._op("divide", self, other)

    def __rtruediv__(self, other: Any) -> GretaArray:
        return self._op("divide", other, self)

    def __pow__(self, other: Any) -> GretaArray:
        return self._op("power", self, other)

    def __rpow__(self, other: Any) -> GretaArray:
        return self._op("power", other, self)

    def __neg__(self) -> GretaArray:
        return self._op("negative", self)

    def __matmul__(self, other: Any) -> GretaArray:
        return self._op("matmul", self, other)

    def __rmatmul__(self, other: Any) -> GretaArray:
        return self._op("matmul", other, self)

    @property
    def T(self) -> GretaArray:
        return self._op("transpose", self)

    def __getitem__(self, key: Any) -> GretaArray:
        return self._graph.index(self, key)

    def __bool__(self) -> bool:
        raise TypeError("The truth value of a greta array is unknown until sampling")

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}(name="{self.name}", kind={self.kind.value}, '
            f"shape={self._shape})"
        )


# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# Distributions ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
# ~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~


class DistributionNode:
    """
    A probability distribution in a model graph.

    The node references its parameter arrays and, once bound, the array whose
    distribution it defines (:attr:`value`). Its contribution to the model is the
    log-density of the value given the parameters.

    Parameters
    ----------
    spec
        The registry entry, see :data:`.DISTRIBUTIONS`.
    params
        The parameter arrays, in the order of ``spec.params``.
    dim
        The shape of the value.
    requested
        Truncation bounds requested by the user, as a pair of lower and upper
        bounds. The effective truncation is set when the node is bound.
    """

    __slots__ = (
        "_id",
        "_params",
        "_requested",
        "_spec",
        "_truncation",
        "_value",
        "dim",
        "name",
    )

    def __init__(
        self,
        spec: DistributionSpec,
        params: tuple[GretaArray, ...],
        dim: Shape,
        requested: tuple[np.ndarray, np.ndarray] | None = None,
        name: str = "",
    ):
        self._id = next(_ids)
        self._spec = spec
        self._params = params
        self._requested = requested
        self._truncation: Truncation | None = None
        self._value: GretaArray | None = None
        self.dim = dim
        self.name = name

    @property
    def spec(self) -> DistributionSpec:
        return self._spec

    @property
    def params(self) -> tuple[GretaArray, ...]:
        return self._params

    @property
    def truncation(self) -> Truncation | None:
        """The effective truncation, clipped to the support."""
        return self._truncation

    @property
    def requested_truncation(self) -> tuple[np.ndarray, np.ndarray] | None:
        return self._requested

    @property
    def value(self) -> GretaArray | None:
        """The array this distribution is bound to."""
        return self._value

    @property
    def discrete(self) -> bool:
        return self._spec.discrete

    def inputs(self) -> tuple[GretaArray, ...]:
        return self._params

    def _bind(self, value: GretaArray, truncation: Truncation | None) -> None:
        self._value = value
        self._truncation = truncation

    def __repr__(self) -> str:
        return f'{type(self).__name__}(name="{self.name}", spec={self._spec.name!r})'
