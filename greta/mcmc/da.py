"""
# Dual averaging

Step size adaptation during warmup, in the form of Hoffman & Gelman,
[The No-U-Turn Sampler (2014)](https://jmlr.org/papers/v15/hoffman14a.html),
Algorithm 5.

The adaptation state is an immutable tuple; every update returns a new one.
"""

from __future__ import annotations

from typing import Any, NamedTuple

import jax.numpy as jnp

Array = Any


class DualAveraging(NamedTuple):
    log_step_size: Array
    """The log step size proposed for the next iteration."""

    log_avg_step_size: Array
    """The weighted average of the proposed log step sizes, used after the window."""

    avg_error: Array
    """The running average of the deviations from the target acceptance."""

    mu: Array
    """The point the log step size proposals are shrunk towards."""

    iteration: int

    @property
    def step_size(self) -> Array:
        return jnp.exp(self.log_step_size)

    @property
    def final_step_size(self) -> Array:
        return jnp.exp(self.log_avg_step_size)


def da_init(step_size: float) -> DualAveraging:
    """Starts an adaptation window at ``step_size``."""

    log_step_size = jnp.log(step_size)
    return DualAveraging(
        log_step_size=log_step_size,
        log_avg_step_size=log_step_size,
        avg_error=jnp.zeros_like(log_step_size),
        mu=jnp.log(10.0) + log_step_size,
        iteration=0,
    )


def da_update(
    da: DualAveraging,
    acceptance_prob: float,
    target_accept: float = 0.8,
    gamma: float = 0.05,
    kappa: float = 0.75,
    t0: int = 10,
) -> DualAveraging:
    """
    Updates the adaptation after one warmup iteration.

    ## Parameters

    - `da`: The current adaptation state.
    - `acceptance_prob`: The acceptance probability of the iteration. `NaN`
      counts as zero.
    - `target_accept`: The acceptance probability the step size is tuned for.
    - `gamma`: How strongly the proposals are shrunk towards `mu`.
    - `kappa`: How quickly the weight of new proposals in the average decays.
    - `t0`: Damps the first iterations of the window.
    """

    t = da.iteration + 1
    w = 1.0 / (t + t0)

    error = target_accept - jnp.nan_to_num(acceptance_prob)
    avg_error = (1.0 - w) * da.avg_error + w * error

    log_step_size = da.mu - jnp.sqrt(t) / gamma * avg_error

    weight = t ** (-kappa)
    log_avg_step_size = weight * log_step_size + (1.0 - weight) * da.log_avg_step_size

    return DualAveraging(log_step_size, log_avg_step_size, avg_error, da.mu, t)
