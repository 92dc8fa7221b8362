import jax
import jax.numpy as jnp
import numpy as np
import pytest

from greta.mcmc.hmc import HMCKernel, HMCKernelState


def log_density(x):
    return -0.5 * jnp.sum(x**2)


def test_invalid_integration_steps() -> None:
    with pytest.raises(ValueError, match="integration_steps"):
        HMCKernel(min_integration_steps=5, max_integration_steps=3)

    with pytest.raises(ValueError, match="positive"):
        HMCKernel(initial_step_size=0.0)


def test_init_state() -> None:
    kernel = HMCKernel()
    state = kernel.init(jnp.zeros(3), log_density)
    kernel_state = kernel.init_state(jax.random.PRNGKey(0), state, log_density)

    assert isinstance(kernel_state, HMCKernelState)
    assert float(kernel_state.step_size) > 0.0
    assert kernel_state.inverse_mass_matrix.tolist() == [1.0, 1.0, 1.0]


def test_init_state_user_values() -> None:
    kernel = HMCKernel(initial_step_size=0.3, initial_inverse_mass_matrix=[1.0, 2.0])
    state = kernel.init(jnp.zeros(2), log_density)
    kernel_state = kernel.init_state(jax.random.PRNGKey(0), state, log_density)

    assert kernel_state.step_size == 0.3
    assert kernel_state.inverse_mass_matrix.tolist() == [1.0, 2.0]


def test_init_state_wrong_mass_matrix() -> None:
    kernel = HMCKernel(initial_step_size=0.3, initial_inverse_mass_matrix=[1.0])
    state = kernel.init(jnp.zeros(2), log_density)

    with pytest.raises(ValueError, match="inverse mass matrix"):
        kernel.init_state(jax.random.PRNGKey(0), state, log_density)


def test_step() -> None:
    kernel = HMCKernel()
    step = kernel.build_step(log_density)
    state = kernel.init(jnp.zeros(2), log_density)

    positions = []
    key = jax.random.PRNGKey(1)

    for i in range(50):
        state, info = step(jax.random.fold_in(key, i), state, 0.5, jnp.ones(2))
        positions.append(state.position)

        assert 0.0 <= float(info.acceptance_prob) <= 1.0
        assert not bool(info.divergent)

    positions = np.stack(positions)
    assert np.all(np.isfinite(positions))
    assert np.unique(positions[:, 0]).size > 1


def test_step_is_deterministic() -> None:
    kernel = HMCKernel()
    step = kernel.build_step(log_density)
    state = kernel.init(jnp.ones(2), log_density)
    key = jax.random.PRNGKey(2)

    a, _ = step(key, state, 0.5, jnp.ones(2))
    b, _ = step(key, state, 0.5, jnp.ones(2))

    np.testing.assert_array_equal(a.position, b.position)


def test_divergent_transition_is_rejected() -> None:
    kernel = HMCKernel()
    step = kernel.build_step(log_density)
    state = kernel.init(jnp.ones(2), log_density)

    new_state, info = step(jax.random.PRNGKey(0), state, 1000.0, jnp.ones(2))

    assert bool(info.divergent)
    assert int(info.error_code) == 1
    assert not bool(info.position_moved)
    assert float(info.acceptance_prob) == 0.0
    np.testing.assert_array_equal(new_state.position, state.position)


def test_adaptation_window() -> None:
    kernel = HMCKernel(initial_step_size=0.5)
    state = kernel.init(jnp.zeros(2), log_density)
    kernel_state = kernel.init_state(jax.random.PRNGKey(0), state, log_density)
    step = kernel.build_step(log_density)

    kernel.start_window(kernel_state)
    history = []
    key = jax.random.PRNGKey(3)

    for time in range(30):
        state, info = step(
            jax.random.fold_in(key, time),
            state,
            kernel_state.step_size,
            kernel_state.inverse_mass_matrix,
        )
        kernel.adapt(kernel_state, info)
        history.append(state.position)

    kernel.end_window(kernel_state, jnp.stack(history))

    assert float(kernel_state.step_size) > 0.0
    assert kernel_state.inverse_mass_matrix.shape == (2,)
    assert not np.allclose(kernel_state.inverse_mass_matrix, 1.0)


def test_fast_window_keeps_mass_matrix() -> None:
    kernel = HMCKernel(initial_step_size=0.5)
    state = kernel.init(jnp.zeros(2), log_density)
    kernel_state = kernel.init_state(jax.random.PRNGKey(0), state, log_density)

    kernel.start_window(kernel_state)
    kernel.end_window(kernel_state)

    assert float(kernel_state.step_size) == pytest.approx(0.5)
    assert kernel_state.inverse_mass_matrix.tolist() == [1.0, 1.0]
