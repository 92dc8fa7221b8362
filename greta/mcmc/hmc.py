"""
# Hamiltonian/Hybrid Monte Carlo (HMC)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any, NamedTuple

import jax
import jax.numpy as jnp
from blackjax.adaptation.step_size import find_reasonable_step_size
from blackjax.mcmc import hmc

from .da import DualAveraging, da_init, da_update
from .mm import adjust_step_size, tune_inv_mm_diag

Array = Any
LogDensityFn = Callable[[Array], Array]


@dataclass
class HMCKernelState:
    """
    The tuning state of a `HMCKernel`: the current step size and inverse mass
    vector, and the dual averaging state of the current warmup window.
    """

    step_size: float
    inverse_mass_matrix: Array
    da: DualAveraging = field(init=False)

    def __post_init__(self):
        self.da = da_init(self.step_size)


class HMCTransitionInfo(NamedTuple):
    error_code: Array
    """0 for no errors, 1 for a divergent transition."""

    acceptance_prob: Array
    """The Metropolis acceptance probability, zero for divergent transitions."""

    position_moved: Array
    """Whether the proposal was accepted."""

    divergent: Array
    """
    Whether the difference in energy between the original and the new state
    exceeded the divergence threshold, or was not finite.
    """


class HMCKernel:
    """
    A HMC kernel with dual averaging and a diagonal inverse mass matrix tuner.

    The leapfrog trajectories and the Metropolis correction are computed by
    BlackJAX. The number of leapfrog steps is drawn uniformly between
    ``min_integration_steps`` and ``max_integration_steps`` in every iteration.
    A divergent transition is rejected.

    ## Parameters

    - `initial_step_size`: The step size to start from. If `None`, a reasonable
      step size is searched for at the initial position.
    - `initial_inverse_mass_matrix`: The diagonal of the inverse mass matrix to
      start from. If `None`, the identity is used.
    - `min_integration_steps`, `max_integration_steps`: The range of the number of
      leapfrog steps.
    - `da_target_accept`, `da_gamma`, `da_kappa`, `da_t0`: The parameters of the
      dual averaging step size adaptation, see `greta.mcmc.da.da_update`.
    - `divergence_threshold`: The energy difference above which a transition is
      divergent.
    """

    def __init__(
        self,
        initial_step_size: float | None = None,
        initial_inverse_mass_matrix: Array | None = None,
        min_integration_steps: int = 5,
        max_integration_steps: int = 10,
        da_target_accept: float = 0.8,
        da_gamma: float = 0.05,
        da_kappa: float = 0.75,
        da_t0: int = 10,
        divergence_threshold: float = 1000.0,
    ):
        if not 1 <= min_integration_steps <= max_integration_steps:
            raise ValueError(
                "Need 1 <= min_integration_steps <= max_integration_steps, got "
                f"{min_integration_steps} and {max_integration_steps}"
            )

        if initial_step_size is not None and not initial_step_size > 0:
            raise ValueError("initial_step_size must be positive")

        self.initial_step_size = initial_step_size
        self.initial_inverse_mass_matrix = initial_inverse_mass_matrix
        self.min_integration_steps = min_integration_steps
        self.max_integration_steps = max_integration_steps

        self.da_target_accept = da_target_accept
        self.da_gamma = da_gamma
        self.da_kappa = da_kappa
        self.da_t0 = da_t0

        self.divergence_threshold = divergence_threshold

    def _blackjax_kernel(self) -> Callable:
        return hmc.build_kernel(divergence_threshold=self.divergence_threshold)

    def init(self, position: Array, log_density_fn: LogDensityFn) -> hmc.HMCState:
        """Initializes the BlackJAX state at an unconstrained position."""
        return hmc.init(position, log_density_fn)

    def init_state(
        self, prng_key: Array, state: hmc.HMCState, log_density_fn: LogDensityFn
    ) -> HMCKernelState:
        """
        Initializes the kernel state with an identity inverse mass matrix and a
        reasonable step size (unless explicit arguments were provided by the user).
        """

        if self.initial_inverse_mass_matrix is None:
            inverse_mass_matrix = jnp.ones_like(state.position)
        else:
            inverse_mass_matrix = jnp.asarray(
                self.initial_inverse_mass_matrix, dtype=state.position.dtype
            )

            if inverse_mass_matrix.shape != state.position.shape:
                raise ValueError(
                    "The initial inverse mass matrix must be a vector of length "
                    f"{state.position.shape[0]}, the diagonal of the matrix"
                )

        if self.initial_step_size is None:
            blackjax_kernel = self._blackjax_kernel()

            def kernel_generator(step_size: float) -> Callable:
                return partial(
                    blackjax_kernel,
                    logdensity_fn=log_density_fn,
                    step_size=step_size,
                    inverse_mass_matrix=inverse_mass_matrix,
                    num_integration_steps=self.max_integration_steps,
                )

            step_size = find_reasonable_step_size(
                prng_key,
                kernel_generator,
                state,
                initial_step_size=0.001,
                target_accept=self.da_target_accept,
            )
        else:
            step_size = self.initial_step_size

        return HMCKernelState(step_size, inverse_mass_matrix)

    def build_step(self, log_density_fn: LogDensityFn) -> Callable:
        """
        Returns the jit-compiled transition
        ``step(prng_key, state, step_size, inverse_mass_matrix) -> (state, info)``.
        """

        blackjax_kernel = self._blackjax_kernel()
        min_steps = self.min_integration_steps
        max_steps = self.max_integration_steps

        def step(prng_key, state, step_size, inverse_mass_matrix):
            key_steps, key_kernel = jax.random.split(prng_key)
            num_steps = jax.random.randint(key_steps, (), min_steps, max_steps + 1)

            proposal, info = blackjax_kernel(
                key_kernel,
                state,
                log_density_fn,
                step_size,
                inverse_mass_matrix,
                num_steps,
            )

            divergent = info.is_divergent | ~jnp.isfinite(proposal.logdensity)
            moved = info.is_accepted & ~divergent

            state = jax.tree_util.tree_map(
                lambda new, old: jnp.where(moved, new, old), proposal, state
            )

            acceptance_prob = jnp.where(divergent, 0.0, info.acceptance_rate)
            info = HMCTransitionInfo(1 * divergent, acceptance_prob, moved, divergent)
            return state, info

        return jax.jit(step)

    def adapt(self, kernel_state: HMCKernelState, info: HMCTransitionInfo) -> None:
        """Performs a dual averaging update after a warmup transition."""

        kernel_state.da = da_update(
            kernel_state.da,
            info.acceptance_prob,
            self.da_target_accept,
            self.da_gamma,
            self.da_kappa,
            self.da_t0,
        )
        kernel_state.step_size = kernel_state.da.step_size

    def start_window(self, kernel_state: HMCKernelState) -> None:
        """Restarts dual averaging from the current step size."""
        kernel_state.da = da_init(kernel_state.step_size)

    def end_window(
        self, kernel_state: HMCKernelState, history: Array | None = None
    ) -> None:
        """
        Sets the step size to the dual averaging average. After a slow window,
        also tunes the inverse mass vector using the positions of the window and
        rescales the step size to it.
        """

        kernel_state.step_size = kernel_state.da.final_step_size

        if history is not None and len(history) > 1:
            new_inv_mm = tune_inv_mm_diag(history)
            kernel_state.step_size = adjust_step_size(
                kernel_state.step_size, kernel_state.inverse_mass_matrix, new_inv_mm
            )
            kernel_state.inverse_mass_matrix = new_inv_mm
