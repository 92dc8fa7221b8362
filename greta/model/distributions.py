"""
The registry of supported probability distributions.

Every entry is a :class:`DistributionSpec`: the parameter names, a constructor
for the ``tensorflow_probability`` distribution that evaluates the log-density,
a shape rule, a support rule used for default variable bounds, and flags for
discreteness and truncation. The set of entries is fixed.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, NamedTuple

import jax.numpy as jnp
import numpy as np
import tensorflow_probability.substrates.jax.distributions as tfd

from ..exceptions import ShapeError
from . import shapes
from .shapes import Shape

__all__ = [
    "DISTRIBUTIONS",
    "DistributionSpec",
    "Truncation",
    "get_distribution",
    "log_density",
]

Array = Any
Bounds = tuple[Any, Any]

inf = math.inf


class Truncation(NamedTuple):
    """Truncation bounds, clipped to the support of the distribution."""

    lower: np.ndarray
    upper: np.ndarray
    truncate_lower: bool
    """Whether the lower bound cuts into the support."""
    truncate_upper: bool
    """Whether the upper bound cuts into the support."""


def _univariate_shape(param_shapes: Sequence[Shape], dim: Shape | None) -> Shape:
    shape = shapes.broadcast(*param_shapes)

    if dim is None:
        return shape

    if shapes.broadcast(shape, dim) != dim:
        raise ShapeError(
            f"Parameters of shape {', '.join(map(str, param_shapes))} "
            f"cannot be broadcast to dim {dim}"
        )

    return dim


def _mvn_shape(param_shapes: Sequence[Shape], dim: Shape | None) -> Shape:
    mean, sigma = param_shapes
    shapes.square(sigma)

    if mean[1] != sigma[0]:
        raise ShapeError(
            f"The mean of shape {mean} does not match the covariance of shape {sigma}"
        )

    if dim is None:
        return mean

    if dim[1] == 1 and mean[1] != 1:
        # an integer dim counts the realisations
        dim = (dim[0], mean[1])

    if dim[1] != mean[1] or mean[0] not in (1, dim[0]):
        raise ShapeError(
            f"A multivariate normal with mean of shape {mean} cannot have dim {dim}"
        )

    return dim


def _fixed_support(lower: float, upper: float) -> Callable[..., Bounds]:
    return lambda values: (lower, upper)


def _uniform_support(values: Sequence[np.ndarray | None]) -> Bounds:
    low, high = values

    if low is None or high is None:
        raise ValueError("The bounds of a uniform distribution must be fixed data")

    if np.any(np.asarray(low) >= np.asarray(high)):
        raise ValueError("The lower bound of a uniform must be below the upper bound")

    return low, high


@dataclass(frozen=True)
class DistributionSpec:
    """An entry of the distribution registry."""

    name: str
    params: tuple[str, ...]
    make: Callable[..., tfd.Distribution]
    """Builds the distribution from the parameter values, in order."""
    support: Callable[[Sequence[np.ndarray | None]], Bounds]
    """
    Maps the values of the fixed parameters (``None`` for parameters that are not
    data) to the lower and upper bound of the support.
    """
    discrete: bool = False
    truncatable: bool = False
    shape_rule: Callable[[Sequence[Shape], Shape | None], Shape] = _univariate_shape

    @property
    def multivariate(self) -> bool:
        return self.shape_rule is _mvn_shape

    def __repr__(self) -> str:
        return f"DistributionSpec(name={self.name!r})"


def _mvn(mean: Array, sigma: Array) -> tfd.Distribution:
    return tfd.MultivariateNormalTriL(loc=mean, scale_tril=jnp.linalg.cholesky(sigma))


_continuous = _fixed_support(-inf, inf)
_positive = _fixed_support(0.0, inf)

_specs = [
    DistributionSpec(
        "normal", ("mean", "sd"), tfd.Normal, _continuous, truncatable=True
    ),
    DistributionSpec(
        "lognormal", ("meanlog", "sdlog"), tfd.LogNormal, _positive, truncatable=True
    ),
    # the cdf of the student t needs gradients of the incomplete beta function with
    # respect to the degrees of freedom, which jax does not provide
    DistributionSpec("student", ("df", "mu", "sigma"), tfd.StudentT, _continuous),
    DistributionSpec(
        "cauchy", ("location", "scale"), tfd.Cauchy, _continuous, truncatable=True
    ),
    DistributionSpec(
        "logistic", ("location", "scale"), tfd.Logistic, _continuous, truncatable=True
    ),
    DistributionSpec(
        "laplace", ("mu", "sigma"), tfd.Laplace, _continuous, truncatable=True
    ),
    DistributionSpec(
        "exponential", ("rate",), tfd.Exponential, _positive, truncatable=True
    ),
    DistributionSpec(
        "gamma",
        ("shape", "rate"),
        lambda shape, rate: tfd.Gamma(concentration=shape, rate=rate),
        _positive,
        truncatable=True,
    ),
    DistributionSpec(
        "inverse_gamma",
        ("alpha", "beta"),
        lambda alpha, beta: tfd.InverseGamma(concentration=alpha, scale=beta),
        _positive,
        truncatable=True,
    ),
    DistributionSpec(
        "weibull",
        ("shape", "scale"),
        lambda shape, scale: tfd.Weibull(concentration=shape, scale=scale),
        _positive,
        truncatable=True,
    ),
    DistributionSpec("chi_squared", ("df",), tfd.Chi2, _positive, truncatable=True),
    DistributionSpec("beta", ("shape1", "shape2"), tfd.Beta, _fixed_support(0.0, 1.0)),
    DistributionSpec("uniform", ("min", "max"), tfd.Uniform, _uniform_support),
    DistributionSpec(
        "poisson",
        ("lambda",),
        lambda rate: tfd.Poisson(rate=rate),
        _positive,
        discrete=True,
    ),
    DistributionSpec(
        "binomial",
        ("size", "prob"),
        lambda size, prob: tfd.Binomial(total_count=size, probs=prob),
        _positive,
        discrete=True,
    ),
    DistributionSpec(
        "bernoulli",
        ("prob",),
        lambda prob: tfd.Bernoulli(probs=prob, dtype=prob.dtype),
        _fixed_support(0.0, 1.0),
        discrete=True,
    ),
    # counts failures before `size` successes, tfp counts the other way round
    DistributionSpec(
        "negative_binomial",
        ("size", "prob"),
        lambda size, prob: tfd.NegativeBinomial(total_count=size, probs=1.0 - prob),
        _positive,
        discrete=True,
    ),
    DistributionSpec(
        "multivariate_normal",
        ("mean", "Sigma"),
        _mvn,
        _continuous,
        shape_rule=_mvn_shape,
    ),
]

DISTRIBUTIONS: MappingProxyType[str, DistributionSpec] = MappingProxyType(
    {spec.name: spec for spec in _specs}
)
"""All supported distributions by name."""


def get_distribution(name: str) -> DistributionSpec:
    try:
        return DISTRIBUTIONS[name]
    except KeyError:
        raise KeyError(
            f"Unknown distribution {name!r}. Available: {', '.join(DISTRIBUTIONS)}"
        ) from None


def log_density(
    spec: DistributionSpec,
    param_values: Sequence[Array],
    value: Array,
    truncation: Truncation | None = None,
) -> Array:
    """
    Evaluates the summed log-density of ``value``.

    With a truncation, the density is renormalized by the probability mass between
    the bounds. Only the sides that cut into the support contribute.
    """

    dist = spec.make(*param_values)
    log_prob = dist.log_prob(value)

    if truncation is not None:
        lower = jnp.asarray(truncation.lower, dtype=log_prob.dtype)
        upper = jnp.asarray(truncation.upper, dtype=log_prob.dtype)

        if truncation.truncate_lower and truncation.truncate_upper:
            log_prob = log_prob - jnp.log(dist.cdf(upper) - dist.cdf(lower))
        elif truncation.truncate_lower:
            log_prob = log_prob - dist.log_survival_function(lower)
        elif truncation.truncate_upper:
            log_prob = log_prob - dist.log_cdf(upper)

    return jnp.sum(log_prob)
