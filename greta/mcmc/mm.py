"""
# Inverse mass matrix tuner
"""

from typing import Any

import jax.numpy as jnp

Array = Any


def tune_inv_mm_diag(history: Array) -> Array:
    """
    Tunes an inverse mass vector with the sample variances of the history, a matrix
    with one unconstrained position per row.

    The variances are shrunk towards a small constant, like Stan does, see:
    https://github.com/stan-dev/stan/blob/v2.28.2/src/stan/mcmc/var_adaptation.hpp
    """

    history = jnp.atleast_2d(history)
    n = history.shape[0]

    var = jnp.var(history, axis=0, ddof=1)
    var = jnp.atleast_1d(var)
    var = (n / (n + 5.0)) * var + 0.001 * (5.0 / (n + 5.0))

    return var


def adjust_step_size(step_size: float, old_inv_mm: Array, new_inv_mm: Array) -> Array:
    """
    Rescales the step size for a new inverse mass vector, keeping the typical
    distance travelled per leapfrog step.
    """

    adjustment = jnp.sqrt(jnp.sum(old_inv_mm) / jnp.sum(new_inv_mm))
    return adjustment * step_size
