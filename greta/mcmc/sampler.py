"""
# Sampler

Runs warmup and sampling for a compiled model, and keeps the draws of an
interrupted run.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np
import pandas as pd
from tqdm import tqdm

from ..exceptions import NumericalInstabilityError
from ..model.model import Model
from .hmc import HMCKernel, HMCKernelState, HMCTransitionInfo
from .warmup import WindowType, stan_windows

logger = logging.getLogger(__name__)

MAX_INIT_TRIES = 20


class Phase(Enum):
    """The phase of a :class:`.Sampler`."""

    IDLE = "idle"
    WARMUP = "warmup"
    SAMPLING = "sampling"
    DONE = "done"
    INTERRUPTED = "interrupted"


@dataclass
class Draws:
    """
    The post-warmup draws of a sampler run, one row per iteration in draw order.
    """

    values: dict[str, np.ndarray]
    """
    The draws of every free variable in its natural space, keyed by label, each
    of shape ``(n_draws, rows, cols)``.
    """

    unconstrained: np.ndarray
    """The unconstrained positions, of shape ``(n_draws, n_parameters)``."""

    log_density: np.ndarray
    acceptance_prob: np.ndarray
    accepted: np.ndarray
    """Whether the iteration moved. A rejected iteration repeats the last draw."""

    divergent: np.ndarray
    step_size: float
    """The tuned step size used for sampling."""

    inverse_mass_matrix: np.ndarray
    """The diagonal of the tuned inverse mass matrix used for sampling."""

    def __len__(self) -> int:
        return self.unconstrained.shape[0]

    @property
    def n_divergent(self) -> int:
        return int(np.sum(self.divergent))

    def to_dataframe(self) -> pd.DataFrame:
        """
        Flattens the natural-space draws into a data frame with one column per
        element. Elements of non-scalar variables are named ``label[i,j]``,
        counting from 1 like R.
        """

        columns = {}

        for label, value in self.values.items():
            _, rows, cols = value.shape

            if rows == cols == 1:
                columns[label] = value[:, 0, 0]
                continue

            for j in range(cols):
                for i in range(rows):
                    columns[f"{label}[{i + 1},{j + 1}]"] = value[:, i, j]

        return pd.DataFrame(columns, index=pd.RangeIndex(len(self), name="iteration"))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({len(self)} draws, "
            f"{len(self.values)} variables, {self.n_divergent} divergent)"
        )


class Sampler:
    """
    Samples from a model with HMC.

    A run consists of warmup, where the step size and the diagonal inverse mass
    matrix of the kernel are tuned, and sampling. Only the draws of the sampling
    phase are returned.

    The sampler can be interrupted between iterations, either with
    :meth:`.cancel` from another thread or with a keyboard interrupt. The draws
    completed before the interruption are available from :meth:`.stashed_draws`.
    They are identical to the first draws of an uninterrupted run with the same
    seed.

    Parameters
    ----------
    model
        The compiled model.
    kernel
        The HMC kernel. If ``None``, a :class:`.HMCKernel` with default settings.
    seed
        The seed of the random number generator.
    show_progress
        Whether to show progress bars.
    max_consecutive_failures
        The number of consecutive divergent iterations after which the sampler
        gives up with a :class:`.NumericalInstabilityError`.

    Examples
    --------

    >>> gb = gm.GraphBuilder()
    >>> mu = gb.variable(name="mu")
    >>> y = gb.data([5.0])
    >>> _ = gb.set_distribution(y, gb.normal(mu, 1.0))
    >>> sampler = gc.Sampler(gb.build_model(), seed=1, show_progress=False)
    >>> draws = sampler.run(n_samples=200, warmup=100)
    >>> draws.values["mu"].shape
    (200, 1, 1)
    """

    def __init__(
        self,
        model: Model,
        kernel: HMCKernel | None = None,
        seed: int = 0,
        show_progress: bool = True,
        max_consecutive_failures: int = 100,
    ):
        self.model = model
        self.kernel = kernel if kernel is not None else HMCKernel()
        self.seed = seed
        self.show_progress = show_progress
        self.max_consecutive_failures = max_consecutive_failures

        self._step = self.kernel.build_step(model.log_prob)
        self._constrain = jax.jit(jax.vmap(model.constrain))

        self._phase = Phase.IDLE
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._stash: list[tuple] = []
        self._tuned: tuple[float, np.ndarray] | None = None

    @property
    def phase(self) -> Phase:
        return self._phase

    def cancel(self) -> None:
        """
        Asks a running sampler to stop after the current iteration. Safe to call
        from another thread.
        """
        self._cancel_event.set()

    # -- helpers -----------------------------------------------------------------------

    def _initial_position(
        self, prng_key: jax.Array, initial_values: Mapping | None
    ) -> jax.Array:
        for i in range(MAX_INIT_TRIES):
            theta = self.model.initial_position(jax.random.fold_in(prng_key, i))

            if initial_values:
                theta = self.model.unconstrain(initial_values, position=theta)

            value, grad = self.model.log_density(theta)

            if jnp.isfinite(value) and jnp.all(jnp.isfinite(grad)):
                return theta

            logger.debug(f"Initial position {i} has a non-finite log-density")

        raise NumericalInstabilityError(
            f"Could not find initial values with a finite log-density and gradient "
            f"in {MAX_INIT_TRIES} tries"
        )

    def _transition(
        self, prng_key: jax.Array, state: Any, kernel_state: HMCKernelState
    ) -> tuple[Any, HMCTransitionInfo]:
        dtype = self.model.dtype
        return self._step(
            prng_key,
            state,
            jnp.asarray(kernel_state.step_size, dtype=dtype),
            jnp.asarray(kernel_state.inverse_mass_matrix, dtype=dtype),
        )

    def _check_failures(self, failures: int, info: HMCTransitionInfo) -> int:
        failures = failures + 1 if bool(info.divergent) else 0

        if failures >= self.max_consecutive_failures:
            raise NumericalInstabilityError(
                f"The sampler made no progress in {failures} consecutive iterations. "
                "Try other initial values or a smaller step size"
            )

        return failures

    def _progress(self, total: int, desc: str) -> tqdm:
        return tqdm(
            total=total,
            ncols=80,
            unit="it",
            desc=desc,
            disable=not self.show_progress or None,
        )

    def _interrupt(self) -> None:
        phase = self._phase
        self._phase = Phase.INTERRUPTED
        logger.info(f"Interrupted during {phase.value}, {len(self._stash)} draws kept")

    # -- phases ------------------------------------------------------------------------

    def _warmup(
        self,
        prng_key: jax.Array,
        state: Any,
        kernel_state: HMCKernelState,
        duration: int,
    ) -> Any | None:
        """Runs the warmup windows. Returns ``None`` if cancelled."""

        windows = stan_windows(duration)
        logger.info(f"Starting warmup: {duration} iterations, {len(windows)} windows")

        i = 0
        failures = 0
        n_divergent = 0

        with self._progress(duration, "warmup") as progress:
            for window in windows:
                self.kernel.start_window(kernel_state)
                history = []

                for _ in range(window.duration):
                    if self._cancel_event.is_set():
                        return None

                    key = jax.random.fold_in(prng_key, i)
                    state, info = self._transition(key, state, kernel_state)
                    self.kernel.adapt(kernel_state, info)

                    failures = self._check_failures(failures, info)
                    n_divergent += int(info.divergent)

                    if window.type is WindowType.SLOW:
                        history.append(state.position)

                    i += 1
                    progress.update()

                history_matrix = jnp.stack(history) if history else None
                self.kernel.end_window(kernel_state, history_matrix)

        if n_divergent:
            logger.warning(
                f"Warmup had {n_divergent} / {duration} divergent transitions"
            )

        logger.info(f"Finished warmup, step size {float(kernel_state.step_size):.4g}")
        return state

    def _sample(
        self,
        prng_key: jax.Array,
        state: Any,
        kernel_state: HMCKernelState,
        n_samples: int,
    ) -> bool:
        """Runs the sampling phase. Returns ``False`` if cancelled."""

        logger.info(f"Starting sampling: {n_samples} iterations")
        failures = 0

        with self._progress(n_samples, "sampling") as progress:
            for i in range(n_samples):
                if self._cancel_event.is_set():
                    return False

                key = jax.random.fold_in(prng_key, i)
                state, info = self._transition(key, state, kernel_state)
                failures = self._check_failures(failures, info)

                row = (
                    np.asarray(state.position),
                    float(state.logdensity),
                    float(info.acceptance_prob),
                    bool(info.position_moved),
                    bool(info.divergent),
                )

                # published only once the iteration is complete
                with self._lock:
                    self._stash.append(row)

                progress.update()

        n_divergent = sum(row[4] for row in self._stash)

        if n_divergent:
            logger.warning(
                f"Sampling had {n_divergent} / {n_samples} divergent transitions"
            )

        logger.info("Finished sampling")
        return True

    # -- interface ---------------------------------------------------------------------

    def run(
        self,
        n_samples: int = 1000,
        warmup: int = 100,
        initial_values: Mapping | None = None,
    ) -> Draws | None:
        """
        Runs warmup and sampling.

        Parameters
        ----------
        n_samples
            The number of draws.
        warmup
            The number of warmup iterations.
        initial_values
            Values of free variables to start from, keyed by label or array, in
            their natural space. Missing variables are initialized randomly.

        Returns
        -------
        The draws, or ``None`` if the run was cancelled.

        Raises
        ------
        NumericalInstabilityError
            If no initial values with a finite log-density were found, or the
            sampler stopped making progress.
        """

        if n_samples < 0 or warmup < 0:
            raise ValueError("n_samples and warmup must not be negative")

        if self._phase in (Phase.WARMUP, Phase.SAMPLING):
            raise RuntimeError("The sampler is already running")

        self._cancel_event.clear()

        with self._lock:
            self._stash = []
            self._tuned = None

        key = jax.random.PRNGKey(self.seed)
        key_init, key_step_size, key_warmup, key_sampling = jax.random.split(key, 4)

        log_density_fn = self.model.log_prob
        theta = self._initial_position(key_init, initial_values)
        state = self.kernel.init(theta, log_density_fn)
        kernel_state = self.kernel.init_state(key_step_size, state, log_density_fn)

        try:
            self._phase = Phase.WARMUP
            state = self._warmup(key_warmup, state, kernel_state, warmup)

            if state is None:
                self._interrupt()
                return None

            with self._lock:
                self._tuned = (
                    float(kernel_state.step_size),
                    np.asarray(kernel_state.inverse_mass_matrix),
                )

            self._phase = Phase.SAMPLING

            if not self._sample(key_sampling, state, kernel_state, n_samples):
                self._interrupt()
                return None
        except KeyboardInterrupt:
            self._interrupt()
            raise

        self._phase = Phase.DONE
        return self._collect()

    def _collect(self) -> Draws:
        with self._lock:
            rows = list(self._stash)
            tuned = self._tuned

        step_size, inverse_mass_matrix = tuned if tuned else (np.nan, np.empty(0))
        n = len(rows)

        if n:
            positions, log_density, acceptance, accepted, divergent = map(
                np.asarray, zip(*rows)
            )
            constrained = self._constrain(jnp.asarray(positions))
            values = {k: np.asarray(v) for k, v in constrained.items()}
        else:
            positions = np.empty((0, self.model.n_parameters))
            log_density = acceptance = np.empty(0)
            accepted = divergent = np.empty(0, dtype=bool)
            values = {p.label: np.empty((0, *p.shape)) for p in self.model.parameters}

        return Draws(
            values,
            positions,
            log_density,
            acceptance,
            accepted,
            divergent,
            step_size,
            inverse_mass_matrix,
        )

    def stashed_draws(self) -> Draws | None:
        """
        Returns the draws completed so far by the current or last run, or ``None``
        if there are none, e.g. because the run was interrupted during warmup.
        """

        with self._lock:
            if not self._stash:
                return None

        return self._collect()


def mcmc(
    model: Model,
    n_samples: int = 1000,
    warmup: int = 100,
    initial_values: Mapping | None = None,
    seed: int = 0,
    show_progress: bool = True,
    **kernel_args: Any,
) -> Draws | None:
    """
    Samples from a model with a new :class:`.Sampler`.

    Keyword arguments not listed here configure the :class:`.HMCKernel`, e.g. a
    previously tuned ``initial_step_size`` and ``initial_inverse_mass_matrix``.
    """

    sampler = Sampler(model, HMCKernel(**kernel_args), seed, show_progress)
    return sampler.run(n_samples, warmup, initial_values)
