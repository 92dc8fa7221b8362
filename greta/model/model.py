"""
The compiled model.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, NamedTuple

import jax
import jax.numpy as jnp
import networkx as nx
import numpy as np
import tensorflow_probability.substrates.jax.bijectors as jb

from ..exceptions import (
    CyclicGraphError,
    DiscreteParameterError,
    ShapeError,
    UnboundVariableError,
)
from .distributions import DistributionSpec, Truncation, log_density
from .nodes import DistributionNode, GretaArray, Kind, Transform
from .operations import get_operation
from .shapes import Shape

if TYPE_CHECKING:
    from .builder import GraphBuilder

__all__ = ["BoundDistribution", "Model", "Parameter"]

logger = logging.getLogger(__name__)

Array = Any
Position = Any


class Parameter(NamedTuple):
    """A free variable of a model and its slice of the unconstrained vector."""

    label: str
    array: GretaArray
    shape: Shape
    offset: int
    size: int
    transform: Transform
    bijector: jb.Bijector
    """Maps the unconstrained values to the bounds of the variable."""

    lower: np.ndarray
    """The lower bounds of the variable when the model was compiled."""

    upper: np.ndarray
    """The upper bounds of the variable when the model was compiled."""

    def __repr__(self) -> str:
        return (
            f'Parameter(label="{self.label}", shape={self.shape}, '
            f"offset={self.offset}, transform={self.transform.value})"
        )


class BoundDistribution(NamedTuple):
    """A distribution and the array it was bound to when the model was compiled."""

    node: DistributionNode
    spec: DistributionSpec
    params: tuple[GretaArray, ...]
    value: GretaArray
    truncation: Truncation | None


def _bijector(lower: np.ndarray, upper: np.ndarray, dtype: Any) -> jb.Bijector:
    has_lower = bool(np.all(np.isfinite(lower)))
    has_upper = bool(np.all(np.isfinite(upper)))
    lower = jnp.asarray(lower, dtype=dtype)
    upper = jnp.asarray(upper, dtype=dtype)

    if has_lower and has_upper:
        return jb.Sigmoid(low=lower, high=upper)

    if has_lower:
        return jb.Chain([jb.Shift(lower), jb.Exp()])

    if has_upper:
        return jb.Chain([jb.Shift(upper), jb.Scale(-1.0), jb.Exp()])

    return jb.Identity()


def _set_missing_labels(arrays: Iterable[GretaArray], prefix: str, used: set[str]):
    """Generates labels for the unnamed arrays, skipping the ones in use."""
    labels = {}
    counter = -1

    for array in arrays:
        if array.name:
            continue

        label = f"{prefix}{(counter := counter + 1)}"

        while label in used:
            label = f"{prefix}{(counter := counter + 1)}"

        labels[array] = label
        used.add(label)

    return labels


class Model:
    """
    A compiled model.

    The model is a snapshot of the part of a graph that the targets depend on. It
    evaluates the log-joint-density of the model as a function of one flat vector
    of unconstrained parameters: the free variables, each mapped from the real
    line into its bounds by a bijector. The log-density includes the log-density
    of every distribution and the log-determinant of the Jacobian of the
    bijectors.

    Changing the graph after compilation, e.g. binding further distributions,
    does not change the model.

    .. tip::
        Use :meth:`.GraphBuilder.build_model` instead of calling this class
        directly.

    Parameters
    ----------
    graph
        The graph builder holding the arrays.
    targets
        The arrays that define the model. If empty, all arrays of the graph except
        plain data are used.

    Raises
    ------
    UnboundVariableError
        If the model has no distribution or no free variable, or if it depends
        on a variable without a distribution that is not one of the explicit
        targets.
    CyclicGraphError
        If an array depends on itself, e.g. through the parameters of its own
        distribution.
    DiscreteParameterError
        If a discrete distribution is bound to a variable.
    ShapeError
        If the shape of a distribution does not match the array it is bound to.

    See Also
    --------
    .GraphBuilder : Builds the graph.
    .Sampler : Draws samples from the model.

    Examples
    --------

    >>> gb = gm.GraphBuilder()
    >>> mu = gb.normal(0.0, 1.0, name="mu")
    >>> model = gb.build_model()
    >>> model
    Model(1 parameters)
    >>> value, grad = model.log_density(jnp.zeros(1))
    >>> round(float(value), 4)
    -0.9189
    """

    def __init__(self, graph: GraphBuilder, targets: Sequence[GretaArray] = ()):
        self._graph_builder = graph
        self._dtype = graph.dtype

        explicit = bool(targets)

        if not targets:
            targets = [a for a in graph.arrays if a.kind is not Kind.DATA]

        for target in targets:
            if not isinstance(target, GretaArray) or target not in graph:
                raise ValueError(f"{target!r} is not an array of this graph builder")

        arrays, densities = self._reachable(targets)

        if explicit:
            self._check_unbound(arrays, targets)

        if not densities:
            raise UnboundVariableError(
                "The model has no distributions. Bind a distribution to data or a "
                "variable before building a model"
            )

        free = sorted((a for a in arrays if a.is_variable), key=lambda a: a._id)

        if not free:
            raise UnboundVariableError(
                "The model has no free variables, so there is nothing to sample"
            )

        for density in densities:
            self._check_density(density)

        self._generative_graph = self._build_generative_graph(arrays, densities)
        self._check_acyclic(self._generative_graph)

        self._arrays = [
            a for a in nx.topological_sort(self._generative_graph)
            if isinstance(a, GretaArray)
        ]
        self._densities = densities
        self._labels = self._make_labels(self._arrays, free)
        self._parameters = self._make_parameters(free)
        self._n_parameters = sum(p.size for p in self._parameters)

        bound = {d.value for d in densities}

        for parameter in self._parameters:
            if parameter.array not in bound:
                logger.debug(f"Variable {parameter.label!r} has a flat prior")

        self._value_and_grad = jax.jit(jax.value_and_grad(self.log_prob))

        logger.debug(
            f"Compiled a model with {len(self._arrays)} arrays, "
            f"{len(self._densities)} distributions and {self._n_parameters} "
            "unconstrained parameters"
        )

    # -- compilation -------------------------------------------------------------------

    @staticmethod
    def _reachable(
        targets: Iterable[GretaArray],
    ) -> tuple[list[GretaArray], list[BoundDistribution]]:
        """
        Returns all arrays and distributions that the targets depend on, through
        operands, bound distributions and distribution parameters.
        """
        stack: list[GretaArray | DistributionNode] = list(targets)
        seen: set[int] = set()
        arrays: list[GretaArray] = []
        densities: list[BoundDistribution] = []

        while stack:
            node = stack.pop()

            if id(node) in seen:
                continue

            seen.add(id(node))
            stack.extend(node.inputs())

            if isinstance(node, GretaArray):
                arrays.append(node)
            elif node.value is not None:
                densities.append(
                    BoundDistribution(
                        node, node.spec, node.params, node.value, node.truncation
                    )
                )

        return arrays, densities

    @staticmethod
    def _check_unbound(
        arrays: Iterable[GretaArray], targets: Iterable[GretaArray]
    ) -> None:
        """
        Only explicit targets may be variables without a distribution. Such a
        target gets a flat prior.
        """
        targets = set(targets)
        unbound = [
            a
            for a in arrays
            if a.is_variable and a.distribution is None and a not in targets
        ]

        if unbound:
            names = ", ".join(repr(a) for a in unbound)
            raise UnboundVariableError(
                f"The model depends on variables without a distribution: {names}. "
                "Bind a distribution to them or pass them to build_model() as "
                "targets to give them a flat prior"
            )

    @staticmethod
    def _check_density(density: BoundDistribution) -> None:
        if density.spec.discrete and density.value.is_variable:
            raise DiscreteParameterError(
                f"The {density.spec.name} distribution of {density.value!r} is "
                "discrete, but variables must be continuous to be sampled"
            )

        if density.node.dim != density.value.shape:
            raise ShapeError(
                f"The distribution of {density.value!r} has dim {density.node.dim}"
            )

    @staticmethod
    def _build_generative_graph(
        arrays: Iterable[GretaArray], densities: Iterable[BoundDistribution]
    ) -> nx.DiGraph:
        """
        Builds the directed graph with edges from operands to results, from
        parameters to distributions and from distributions to their values.
        """
        graph = nx.DiGraph()
        graph.add_nodes_from(arrays)

        for array in arrays:
            graph.add_edges_from((operand, array) for operand in array.operands)

        for density in densities:
            graph.add_node(density.node)
            graph.add_edges_from((param, density.node) for param in density.params)
            graph.add_edge(density.node, density.value)

        return graph

    @staticmethod
    def _check_acyclic(graph: nx.DiGraph) -> None:
        if nx.is_directed_acyclic_graph(graph):
            return

        cycle = nx.find_cycle(graph)
        names = " -> ".join(repr(edge[0]) for edge in cycle)
        raise CyclicGraphError(f"The graph has a cycle: {names}")

    @staticmethod
    def _make_labels(
        arrays: Sequence[GretaArray], free: Sequence[GretaArray]
    ) -> dict[GretaArray, str]:
        named = sorted((a for a in arrays if a.name), key=lambda a: a._id)
        names = {a.name for a in named}
        used: set[str] = set()
        labels = {}

        # names are not unique; later arrays with a taken name get a suffix
        for array in named:
            label = array.name
            counter = 0

            while label in used or (counter and label in names):
                counter += 1
                label = f"{array.name}_{counter}"

            labels[array] = label
            used.add(label)

        labels |= _set_missing_labels(free, "v", used)
        labels |= _set_missing_labels(
            (a for a in arrays if not a.is_variable), "n", used
        )
        return labels

    def _make_parameters(self, free: Sequence[GretaArray]) -> tuple[Parameter, ...]:
        parameters = []
        offset = 0

        for array in free:
            size = array.shape[0] * array.shape[1]
            bijector = _bijector(array.lower, array.upper, self._dtype)
            parameters.append(
                Parameter(
                    self._labels[array],
                    array,
                    array.shape,
                    offset,
                    size,
                    array.transform,
                    bijector,
                    np.array(array.lower),
                    np.array(array.upper),
                )
            )
            offset += size

        return tuple(parameters)

    # -- structure ---------------------------------------------------------------------

    @property
    def parameters(self) -> tuple[Parameter, ...]:
        """The free variables in the order of the unconstrained vector."""
        return self._parameters

    @property
    def n_parameters(self) -> int:
        """The length of the unconstrained vector."""
        return self._n_parameters

    @property
    def arrays(self) -> MappingProxyType[str, GretaArray]:
        """All arrays of the model in topological order, with their labels as keys."""
        return MappingProxyType({self._labels[a]: a for a in self._arrays})

    @property
    def distributions(self) -> tuple[BoundDistribution, ...]:
        return tuple(self._densities)

    @property
    def dtype(self) -> Any:
        return self._dtype

    def label(self, array: GretaArray) -> str:
        """The label of an array of the model."""
        try:
            return self._labels[array]
        except KeyError:
            raise ValueError(f"{array!r} is not part of the model") from None

    def graph(self) -> nx.DiGraph:
        """Describes the model graph, see :func:`.model_graph`."""
        from .viz import model_graph

        return model_graph(self)

    # -- evaluation --------------------------------------------------------------------

    def _natural(self, theta: Array) -> tuple[dict[GretaArray, Array], Array]:
        """Maps the unconstrained vector to the variables and the log-Jacobian."""
        theta = jnp.asarray(theta, dtype=self._dtype)

        if theta.shape != (self._n_parameters,):
            raise ValueError(
                f"Expected a position of shape ({self._n_parameters},), "
                f"got {theta.shape}"
            )

        values = {}
        log_jac = jnp.zeros((), dtype=self._dtype)

        for p in self._parameters:
            z = theta[p.offset : p.offset + p.size].reshape(p.shape)
            values[p.array] = p.bijector.forward(z)
            log_jac += jnp.sum(p.bijector.forward_log_det_jacobian(z, event_ndims=0))

        return values, log_jac

    @staticmethod
    def _evaluate(
        order: Iterable[GretaArray], values: dict[GretaArray, Array]
    ) -> dict[GretaArray, Array]:
        """Computes the arrays in ``order`` from the given variable values."""
        for array in order:
            if array in values:
                continue

            if array.is_data:
                values[array] = jnp.asarray(array.value)
            elif array.is_operation:
                fn = get_operation(array.operation).function  # type: ignore[arg-type]
                operands = (values[operand] for operand in array.operands)
                values[array] = fn(*operands, **array.static)
            else:
                raise ValueError(f"No value for the variable {array!r}")

        return values

    def _log_densities(self, theta: Array) -> tuple[Array, Array, Array]:
        values, log_jac = self._natural(theta)
        values = self._evaluate(self._arrays, values)

        log_lik = jnp.zeros((), dtype=self._dtype)
        log_prior = jnp.zeros((), dtype=self._dtype)

        for d in self._densities:
            params = [values[p] for p in d.params]
            lp = log_density(d.spec, params, values[d.value], d.truncation)

            if d.value.is_data:
                log_lik += lp
            else:
                log_prior += lp

        return log_lik, log_prior, log_jac

    def log_prob(self, theta: Position) -> Array:
        """
        The log-joint-density at the unconstrained position ``theta``, including
        the log-Jacobian of the transforms. Differentiable with JAX.
        """
        log_lik, log_prior, log_jac = self._log_densities(theta)
        return log_lik + log_prior + log_jac

    def log_lik(self, theta: Position) -> Array:
        """The sum of the log-densities of all distributions bound to data."""
        return self._log_densities(theta)[0]

    def log_prior(self, theta: Position) -> Array:
        """The sum of the log-densities of all distributions bound to variables."""
        return self._log_densities(theta)[1]

    def log_density(self, theta: Position) -> tuple[Array, Array]:
        """
        The log-joint-density and its gradient at ``theta``. Compiled with
        :func:`jax.jit` on the first call.
        """
        return self._value_and_grad(jnp.asarray(theta, dtype=self._dtype))

    def constrain(self, theta: Position) -> dict[str, Array]:
        """Maps an unconstrained position to the variable values, keyed by label."""
        values, _ = self._natural(theta)
        return {p.label: values[p.array] for p in self._parameters}

    def unconstrain(
        self,
        values: Mapping[str | GretaArray, Any],
        position: Position | None = None,
    ) -> Array:
        """
        Maps variable values to an unconstrained position.

        Parameters
        ----------
        values
            Values of the free variables, keyed by label or array. Scalars are
            broadcast to the shape of the variable.
        position
            Used for the variables missing in ``values``. If ``None``, all
            variables must be given.

        Raises
        ------
        ValueError
            If a value lies outside the bounds of its variable.
        """

        by_label = {
            (self.label(k) if isinstance(k, GretaArray) else k): v
            for k, v in values.items()
        }

        unknown = set(by_label) - {p.label for p in self._parameters}

        if unknown:
            raise KeyError(f"Not a free variable of the model: {', '.join(unknown)}")

        if position is None:
            missing = [p.label for p in self._parameters if p.label not in by_label]

            if missing:
                raise KeyError(f"Missing values for: {', '.join(missing)}")

            theta = jnp.zeros(self._n_parameters, dtype=self._dtype)
        else:
            theta = jnp.asarray(position, dtype=self._dtype)

        for p in self._parameters:
            if p.label not in by_label:
                continue

            value = np.broadcast_to(np.asarray(by_label[p.label], dtype=float), p.shape)
            lower, upper = p.lower, p.upper

            if np.any(value <= lower) or np.any(value >= upper):
                raise ValueError(
                    f"Values for {p.label!r} must lie strictly between the bounds of "
                    "the variable"
                )

            z = p.bijector.inverse(jnp.asarray(value, dtype=self._dtype))
            theta = theta.at[p.offset : p.offset + p.size].set(jnp.ravel(z))

        return theta

    def initial_position(self, key: jax.Array) -> Array:
        """A random position, uniform on (-2, 2) in unconstrained space."""
        return jax.random.uniform(
            key, (self._n_parameters,), dtype=self._dtype, minval=-2.0, maxval=2.0
        )

    def _closure(self, array: GretaArray) -> list[GretaArray]:
        """The operand closure of ``array`` in evaluation order."""
        stack = [array]
        seen: dict[GretaArray, None] = {}

        while stack:
            node = stack.pop()

            if node in seen:
                continue

            seen[node] = None
            stack.extend(node.operands)

        graph = nx.DiGraph()
        graph.add_nodes_from(seen)
        graph.add_edges_from((o, a) for a in seen for o in a.operands)
        return list(nx.topological_sort(graph))

    def calculate(self, array: GretaArray, theta: Any) -> np.ndarray:
        """
        Evaluates an array.

        The array may be part of the model or be computed from its variables
        afterwards.

        Parameters
        ----------
        array
            The array to evaluate.
        theta
            An unconstrained position, a matrix of positions (one per row), or
            :class:`.Draws`.

        Returns
        -------
        The value of the array, with a leading axis if multiple positions are
        given.
        """

        if not isinstance(array, GretaArray) or array.graph is not self._graph_builder:
            raise ValueError(f"{array!r} is not an array of the model's graph")

        order = self._closure(array)
        params = {p.array for p in self._parameters}

        for node in order:
            if node.is_variable and node not in params:
                raise ValueError(
                    f"{array!r} depends on {node!r}, which is not a variable of the "
                    "model"
                )

        if hasattr(theta, "unconstrained"):
            theta = theta.unconstrained

        def evaluate(position):
            values, _ = self._natural(position)
            return self._evaluate(order, values)[array]

        theta = jnp.asarray(theta, dtype=self._dtype)

        if theta.ndim == 2:
            return np.asarray(jax.vmap(evaluate)(theta))

        return np.asarray(evaluate(theta))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({len(self._parameters)} parameters)"
