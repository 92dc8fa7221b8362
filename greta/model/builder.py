"""
The graph builder.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from ..exceptions import (
    DataValidationError,
    DuplicateDistributionError,
    ShapeError,
    TruncationError,
)
from . import shapes
from .distributions import DistributionSpec, Truncation, get_distribution
from .nodes import DistributionNode, GretaArray, Kind
from .operations import get_operation
from .shapes import Shape

if TYPE_CHECKING:
    from .model import Model

__all__ = ["GraphBuilder"]

logger = logging.getLogger(__name__)

inf = math.inf

Dim = int | Sequence[int] | None
Bounds = tuple[Any, Any] | None


def _as_float_array(x: Any, what: str) -> np.ndarray:
    x = np.asarray(x, dtype=float)

    if np.any(np.isnan(x)):
        raise ValueError(f"{what} must not be NaN")

    return x.reshape(shapes.shape_of_value(x))


class _DistributionConstructors(ABC):
    """One constructor per entry of the distribution registry."""

    @abstractmethod
    def _distribution(
        self, name: str, params: tuple, dim: Dim, truncation: Bounds, label: str
    ) -> GretaArray:
        """Creates a fresh variable with the distribution ``name`` bound to it."""

    def normal(self, mean, sd, dim: Dim = None, truncation: Bounds = None, name=""):
        """Normal distribution with ``mean`` and standard deviation ``sd``."""
        return self._distribution("normal", (mean, sd), dim, truncation, name)

    def lognormal(
        self, meanlog, sdlog, dim: Dim = None, truncation: Bounds = None, name=""
    ):
        """Log-normal distribution, parametrized on the log scale."""
        return self._distribution("lognormal", (meanlog, sdlog), dim, truncation, name)

    def student(
        self, df, mu, sigma, dim: Dim = None, truncation: Bounds = None, name=""
    ):
        """Student t distribution with location ``mu`` and scale ``sigma``."""
        return self._distribution("student", (df, mu, sigma), dim, truncation, name)

    def cauchy(
        self, location, scale, dim: Dim = None, truncation: Bounds = None, name=""
    ):
        return self._distribution("cauchy", (location, scale), dim, truncation, name)

    def logistic(
        self, location, scale, dim: Dim = None, truncation: Bounds = None, name=""
    ):
        return self._distribution("logistic", (location, scale), dim, truncation, name)

    def laplace(self, mu, sigma, dim: Dim = None, truncation: Bounds = None, name=""):
        return self._distribution("laplace", (mu, sigma), dim, truncation, name)

    def exponential(self, rate, dim: Dim = None, truncation: Bounds = None, name=""):
        return self._distribution("exponential", (rate,), dim, truncation, name)

    def gamma(self, shape, rate, dim: Dim = None, truncation: Bounds = None, name=""):
        """Gamma distribution with ``shape`` and ``rate``."""
        return self._distribution("gamma", (shape, rate), dim, truncation, name)

    def inverse_gamma(
        self, alpha, beta, dim: Dim = None, truncation: Bounds = None, name=""
    ):
        """Inverse gamma distribution with shape ``alpha`` and scale ``beta``."""
        return self._distribution("inverse_gamma", (alpha, beta), dim, truncation, name)

    def weibull(
        self, shape, scale, dim: Dim = None, truncation: Bounds = None, name=""
    ):
        return self._distribution("weibull", (shape, scale), dim, truncation, name)

    def chi_squared(self, df, dim: Dim = None, truncation: Bounds = None, name=""):
        return self._distribution("chi_squared", (df,), dim, truncation, name)

    def beta(self, shape1, shape2, dim: Dim = None, truncation: Bounds = None, name=""):
        return self._distribution("beta", (shape1, shape2), dim, truncation, name)

    def uniform(self, min, max, dim: Dim = None, name=""):
        """
        Uniform distribution between ``min`` and ``max``, which must be fixed data.
        A variable created from it is bounded by them.
        """
        return self._distribution("uniform", (min, max), dim, None, name)

    def poisson(self, lambda_, dim: Dim = None, name=""):
        """Poisson distribution. Discrete, so only usable as a likelihood."""
        return self._distribution("poisson", (lambda_,), dim, None, name)

    def binomial(self, size, prob, dim: Dim = None, name=""):
        return self._distribution("binomial", (size, prob), dim, None, name)

    def bernoulli(self, prob, dim: Dim = None, name=""):
        return self._distribution("bernoulli", (prob,), dim, None, name)

    def negative_binomial(self, size, prob, dim: Dim = None, name=""):
        """Number of failures before ``size`` successes with success ``prob``."""
        return self._distribution("negative_binomial", (size, prob), dim, None, name)

    def multivariate_normal(self, mean, Sigma, dim: Dim = None, name=""):
        """
        Multivariate normal distribution. Every row of the value is an independent
        draw with covariance ``Sigma`` (``k x k``). ``mean`` is ``1 x k`` or has one
        row per draw; an integer ``dim`` gives the number of draws.
        """
        return self._distribution("multivariate_normal", (mean, Sigma), dim, None, name)


class GraphBuilder(_DistributionConstructors):
    """
    A graph builder, the handle through which a model graph is constructed.

    Every array created through a graph builder is registered with it. Several
    graph builders can exist side by side; arrays of different builders cannot be
    combined.

    The standard workflow is to create data arrays, variables and distributions,
    combine them with operators, bind distributions to data (likelihoods) or
    variables (priors) with :meth:`.set_distribution`, and compile a model with
    :meth:`.build_model`. The builder stays usable after a model was built; later
    changes do not affect the compiled model.

    Parameters
    ----------
    to_float32
        Whether data is stored in single precision. Set to ``False`` together with
        JAX's ``jax_enable_x64`` option for double precision.

    See Also
    --------
    .GretaArray : The arrays of the graph.
    .Model : The compiled model.

    Examples
    --------

    A linear regression with a flat prior on the intercept:

    >>> gb = gm.GraphBuilder()
    >>> x = gb.data([0.5, 1.0, 1.5], name="x")
    >>> y = gb.data([1.1, 2.1, 2.9], name="y")
    >>> intercept = gb.variable(name="intercept")
    >>> slope = gb.normal(0.0, 10.0, name="slope")
    >>> sd = gb.lognormal(0.0, 1.0, name="sd")
    >>> _ = gb.set_distribution(y, gb.normal(intercept + slope * x, sd, dim=3))
    >>> model = gb.build_model()
    >>> model
    Model(3 parameters)
    """

    def __init__(self, to_float32: bool = True):
        self._arrays: dict[GretaArray, None] = {}
        self._fresh: set[GretaArray] = set()
        self._discarded: set[GretaArray] = set()
        self.to_float32 = to_float32

    # -- registry ----------------------------------------------------------------------

    @property
    def arrays(self) -> tuple[GretaArray, ...]:
        """All live arrays, in the order they were created."""
        return tuple(self._arrays)

    @property
    def dtype(self) -> type:
        return np.float32 if self.to_float32 else np.float64

    def _register(self, *arrays: GretaArray) -> None:
        for array in arrays:
            self._arrays.setdefault(array)

    def _as_array(self, x: Any) -> GretaArray:
        """Returns ``x`` if it is an array of this graph, otherwise new data."""

        if isinstance(x, GretaArray):
            if x.graph is not self:
                raise ValueError(
                    f"{x!r} belongs to a different graph builder and cannot be "
                    "combined with arrays of this one"
                )

            if x in self._discarded:
                raise ValueError(
                    f"{x!r} was replaced by a distribution binding and cannot be used"
                )

            return x

        return self._make_data(x)

    def __contains__(self, x: object) -> bool:
        return x in self._arrays

    def __len__(self) -> int:
        return len(self._arrays)

    def __repr__(self) -> str:
        n_dists = sum(a.distribution is not None for a in self._arrays)
        return f"{type(self).__name__}({len(self)} arrays, {n_dists} distributions)"

    # -- data and variables ------------------------------------------------------------

    def _make_data(self, values: Any, name: str = "") -> GretaArray:
        value = np.asarray(values)

        if value.dtype == np.bool_:
            value = value.astype(float)

        if value.dtype.kind not in "iuf":
            try:
                value = value.astype(float)
            except (TypeError, ValueError) as e:
                raise DataValidationError(
                    f"Data must be numeric, got values of type {value.dtype}"
                ) from e

        if np.any(np.isnan(value)):
            raise DataValidationError("Data must not contain missing values (NaN)")

        if not np.all(np.isfinite(value)):
            raise DataValidationError("Data must not contain infinite values")

        shape = shapes.shape_of_value(value)
        array = GretaArray(self, shape, Kind.DATA, name=name)
        array._value = value.reshape(shape).astype(self.dtype)
        return array

    def data(self, values: Any, name: str = "") -> GretaArray:
        """
        Creates a data array from numbers.

        Scalars become ``1 x 1`` arrays and 1-D sequences column vectors.

        Raises
        ------
        DataValidationError
            If the values are not numeric or contain missing or infinite values.
        ShapeError
            If the values have more than two dimensions.
        """
        array = self._make_data(values, name)
        self._register(array)
        return array

    def variable(
        self,
        lower: Any = -inf,
        upper: Any = inf,
        dim: Dim = None,
        name: str = "",
    ) -> GretaArray:
        """
        Creates a free variable.

        Without a distribution, the variable has a flat prior within its bounds.

        Parameters
        ----------
        lower, upper
            Scalar bounds or arrays broadcastable to ``dim``. Within one variable,
            either all or none of the lower bounds are finite, and the same holds
            for the upper bounds.
        dim
            The shape of the variable. If omitted, the shape of the bounds is used.
        name
            A display label.
        """
        lower = _as_float_array(lower, "lower")
        upper = _as_float_array(upper, "upper")

        bound_shape = shapes.broadcast(lower.shape, upper.shape)

        if dim is None:
            shape = bound_shape
        else:
            shape = shapes.normalize_dim(dim)
            if shapes.broadcast(bound_shape, shape) != shape:
                raise ShapeError(
                    f"Bounds of shape {bound_shape} do not fit dim {shape}"
                )

        lower = np.broadcast_to(lower, shape).copy()
        upper = np.broadcast_to(upper, shape).copy()

        if np.any(lower >= upper):
            raise ValueError("The lower bounds must be below the upper bounds")

        for bound, what in ((lower, "lower"), (upper, "upper")):
            finite = np.isfinite(bound)
            if finite.any() and not finite.all():
                raise ValueError(
                    f"The {what} bounds of a variable must be all finite or all "
                    "infinite"
                )

        array = GretaArray(self, shape, Kind.VARIABLE, name=name)
        array._set_bounds(lower, upper)
        self._register(array)
        return array

    # -- operations --------------------------------------------------------------------

    def operation(self, name: str, *operands: Any, **static: Any) -> GretaArray:
        """
        Applies an operation from :data:`.OPERATIONS` to the operands.

        Numbers among the operands are turned into data arrays. The shape of the
        result is inferred, nothing is evaluated.

        Raises
        ------
        ShapeError
            If the operand shapes do not fit the operation. The graph is unchanged.
        """
        op = get_operation(name)
        arrays = tuple(self._as_array(x) for x in operands)
        shape = op.shape_rule(tuple(a.shape for a in arrays), **static)

        result = GretaArray(self, shape, Kind.OPERATION)
        result._operation = name
        result._operands = arrays
        result._static = static

        self._register(*arrays, result)
        return result

    def index(self, x: GretaArray, key: Any) -> GretaArray:
        """Selects elements, see :func:`.shapes.index`. Equivalent to ``x[key]``."""
        x = self._as_array(x)
        return self.operation("index", x, spec=shapes.index(x.shape, key))

    def assign(self, x: GretaArray, key: Any, value: Any) -> GretaArray:
        """
        Returns a new array that equals ``x`` except for the elements selected by
        ``key``, which are replaced by ``value``. ``x`` itself is not changed.
        """
        x = self._as_array(x)
        value = self._as_array(value)
        spec = shapes.replace(x.shape, key, value.shape)
        return self.operation("replace", x, value, spec=spec)

    # -- distributions -----------------------------------------------------------------

    @staticmethod
    def _support(
        spec: DistributionSpec, params: Sequence[GretaArray], shape: Shape
    ) -> tuple[np.ndarray, np.ndarray]:
        fixed = [p.value if p.is_data else None for p in params]
        lower, upper = spec.support(fixed)
        lower = np.broadcast_to(np.asarray(lower, dtype=float), shape)
        upper = np.broadcast_to(np.asarray(upper, dtype=float), shape)
        return lower, upper

    @staticmethod
    def _truncate(
        spec: DistributionSpec,
        support: tuple[np.ndarray, np.ndarray],
        bounds: tuple[np.ndarray, np.ndarray],
    ) -> tuple[np.ndarray, np.ndarray, Truncation | None]:
        """
        Intersects the bounds with the support. Returns the new bounds and the
        truncation they imply, if any.
        """
        support_lower, support_upper = support
        lower = np.maximum(bounds[0], support_lower)
        upper = np.minimum(bounds[1], support_upper)

        if np.any(lower >= upper):
            raise ValueError(
                f"The bounds do not overlap with the support of the {spec.name} "
                "distribution"
            )

        truncate_lower = bool(np.any(lower > support_lower))
        truncate_upper = bool(np.any(upper < support_upper))

        if not (truncate_lower or truncate_upper):
            return lower, upper, None

        if not spec.truncatable:
            raise TruncationError(
                f"Truncation is not supported for the {spec.name} distribution"
            )

        return lower, upper, Truncation(lower, upper, truncate_lower, truncate_upper)

    def _distribution(
        self, name: str, params: tuple, dim: Dim, truncation: Bounds, label: str
    ) -> GretaArray:
        spec = get_distribution(name)
        param_arrays = tuple(self._as_array(p) for p in params)

        shape = spec.shape_rule(
            [p.shape for p in param_arrays],
            None if dim is None else shapes.normalize_dim(dim),
        )

        support = self._support(spec, param_arrays, shape)
        requested = None
        lower, upper = support
        trunc = None

        if truncation is not None:
            t_lower, t_upper = truncation
            t_lower = _as_float_array(-inf if t_lower is None else t_lower, "lower")
            t_upper = _as_float_array(inf if t_upper is None else t_upper, "upper")
            requested = (
                np.broadcast_to(t_lower, shape).copy(),
                np.broadcast_to(t_upper, shape).copy(),
            )
            lower, upper, trunc = self._truncate(spec, support, requested)

        node = DistributionNode(spec, param_arrays, shape, requested, name=label)

        # the distribution is bound to a fresh variable, which can be swapped for
        # another array with set_distribution()
        variable = GretaArray(self, shape, Kind.VARIABLE, name=label)
        variable._set_bounds(lower.copy(), upper.copy())
        variable._distribution = node
        node._bind(variable, trunc)

        self._register(*param_arrays, variable)
        self._fresh.add(variable)
        return variable

    def set_distribution(
        self, target: GretaArray, distribution: GretaArray
    ) -> GretaArray:
        """
        Binds a distribution to a data array or a variable.

        ``distribution`` is the array returned by a distribution constructor such
        as :meth:`.normal`. Its distribution is moved to ``target`` and the fresh
        variable created by the constructor is discarded. Bound to data, the
        distribution is a likelihood term; bound to a variable, a prior.

        A variable with bounds narrower than the support of the distribution
        truncates it. The bounds of a variable are narrowed to the support.

        Parameters
        ----------
        target
            The array whose distribution is defined.
        distribution
            The result of a distribution constructor.

        Returns
        -------
        The target array, now of kind :attr:`.Kind.DISTRIBUTION_VALUE`.

        Raises
        ------
        DuplicateDistributionError
            If the target already has a distribution, or the distribution is
            already bound to another array.
        ShapeError
            If the shapes of the distribution and the target differ.
        TruncationError
            If the target's bounds require truncation, but the distribution does
            not support it.
        """
        if not isinstance(target, GretaArray) or target not in self:
            raise ValueError(f"{target!r} is not an array of this graph builder")

        if (
            not isinstance(distribution, GretaArray)
            or distribution.distribution is None
        ):
            raise ValueError(
                "The right hand side must be created by a distribution constructor"
            )

        node = distribution.distribution

        if target.distribution is not None:
            raise DuplicateDistributionError(f"{target!r} already has a distribution")

        if node.value is not distribution or distribution not in self._fresh:
            raise DuplicateDistributionError(
                f"The {node.spec.name} distribution is already bound to "
                f"{node.value!r}"
            )

        if target.is_operation:
            raise ValueError(
                "Distributions can only be bound to data or variables, "
                f"not to the operation {target!r}"
            )

        if node.dim != target.shape:
            raise ShapeError(
                f"The distribution has dim {node.dim}, but {target!r} has shape "
                f"{target.shape}"
            )

        users = [a for a in self._arrays if any(o is distribution for o in a.inputs())]
        users += [
            a.distribution
            for a in self._arrays
            if a.distribution is not None
            and any(p is distribution for p in a.distribution.params)
        ]

        if users:
            raise ValueError(
                f"The {node.spec.name} distribution cannot be bound, because its "
                f"variable is already used by {users[0]!r}"
            )

        support = self._support(node.spec, node.params, target.shape)
        requested = node.requested_truncation

        if target.is_variable:
            bounds = (target.lower, target.upper)
            if requested is not None:
                bounds = (
                    np.maximum(bounds[0], requested[0]),
                    np.minimum(bounds[1], requested[1]),
                )
            lower, upper, trunc = self._truncate(node.spec, support, bounds)
            target._set_bounds(lower, upper)
        elif requested is not None:
            _, _, trunc = self._truncate(node.spec, support, requested)
        else:
            trunc = None

        node._bind(target, trunc)
        target._distribution = node

        del self._arrays[distribution]
        self._fresh.discard(distribution)
        self._discarded.add(distribution)

        logger.debug(f"Bound {node!r} to {target!r}")
        return target

    def distribution(self, array: GretaArray) -> GretaArray | None:
        """
        Returns the array carrying the distribution of ``array``, or ``None`` if no
        distribution is bound. This is ``array`` itself once bound.
        """
        self._as_array(array)
        return array if array.distribution is not None else None

    # -- compilation -------------------------------------------------------------------

    def build_model(self, *targets: GretaArray) -> Model:
        """
        Compiles a model.

        Parameters
        ----------
        *targets
            The arrays that define the model; everything they depend on is
            included. If omitted, every live array that is not plain data is used.

        See Also
        --------
        .Model : For the errors raised during compilation.
        """
        from .model import Model

        return Model(self, targets)
