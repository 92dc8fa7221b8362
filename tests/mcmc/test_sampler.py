import jax
import jax.numpy as jnp
import numpy as np
import pytest

import greta.mcmc as gc
import greta.model as gm
from greta.exceptions import NumericalInstabilityError
from greta.mcmc.sampler import Phase


def make_sampler(model, seed=3, **kernel_args):
    kernel = gc.HMCKernel(**kernel_args)
    return gc.Sampler(model, kernel, seed=seed, show_progress=False)


def stop_after(monkeypatch, sampler, n, action):
    """Calls ``action`` in the ``n``-th transition of ``sampler``."""

    transition = sampler._transition
    calls = []

    def wrapper(*args):
        calls.append(None)

        if len(calls) == n:
            action()

        return transition(*args)

    monkeypatch.setattr(sampler, "_transition", wrapper)


def keyboard_interrupt():
    raise KeyboardInterrupt


class TestRun:
    def test_draws(self, regression_model) -> None:
        sampler = make_sampler(regression_model)
        assert sampler.phase is Phase.IDLE

        draws = sampler.run(n_samples=50, warmup=30)

        assert sampler.phase is Phase.DONE
        assert len(draws) == 50
        assert draws.values["mu"].shape == (50, 1, 1)
        assert draws.unconstrained.shape == (50, 1)
        assert draws.log_density.shape == (50,)
        assert draws.accepted.dtype == bool
        assert np.all((draws.acceptance_prob >= 0.0) & (draws.acceptance_prob <= 1.0))
        assert draws.step_size > 0.0
        assert draws.inverse_mass_matrix.shape == (1,)

    def test_no_samples(self, regression_model) -> None:
        draws = make_sampler(regression_model).run(n_samples=0, warmup=0)

        assert len(draws) == 0
        assert draws.values["mu"].shape == (0, 1, 1)
        assert draws.n_divergent == 0

    def test_no_samples_after_warmup(self, regression_model) -> None:
        sampler = make_sampler(regression_model)
        draws = sampler.run(n_samples=0, warmup=50)

        assert len(draws) == 0
        assert draws.values["mu"].shape == (0, 1, 1)
        assert draws.step_size > 0.0
        assert sampler.phase is Phase.DONE

    def test_negative_samples(self, regression_model) -> None:
        with pytest.raises(ValueError):
            make_sampler(regression_model).run(n_samples=-1)

    def test_same_seed_same_draws(self, regression_model) -> None:
        a = make_sampler(regression_model).run(n_samples=20, warmup=30)
        b = make_sampler(regression_model).run(n_samples=20, warmup=30)

        np.testing.assert_array_equal(a.unconstrained, b.unconstrained)

    def test_bounded_draws(self) -> None:
        gb = gm.GraphBuilder()
        sd = gb.gamma(2.0, 2.0, name="sd")
        y = gb.data([0.3, -0.5, 1.2])
        gb.set_distribution(y, gb.normal(0.0, sd, dim=3))

        draws = make_sampler(gb.build_model()).run(n_samples=50, warmup=50)
        assert np.all(draws.values["sd"] > 0.0)

    def test_mean(self, regression_model) -> None:
        draws = make_sampler(regression_model, seed=1).run(n_samples=300, warmup=100)
        assert draws.values["mu"].mean() == pytest.approx(5.0, abs=0.5)

    def test_end_to_end_mean(self, regression_model) -> None:
        draws = make_sampler(regression_model, seed=7).run(n_samples=1000, warmup=100)

        assert len(draws) == 1000
        assert draws.values["mu"].mean() == pytest.approx(5.0, abs=0.2)

    @pytest.mark.mcmc
    def test_mean_and_variance(self, regression_model, mcmc_seed) -> None:
        draws = gc.mcmc(
            regression_model,
            n_samples=1000,
            warmup=1000,
            seed=mcmc_seed,
            show_progress=False,
        )

        mu = draws.values["mu"].ravel()
        assert mu.mean() == pytest.approx(5.0, abs=0.2)
        assert mu.var() == pytest.approx(1.0, abs=0.3)


class TestInterruption:
    def test_cancel_keeps_prefix(self, regression_model, monkeypatch) -> None:
        full = make_sampler(regression_model, initial_step_size=0.5)
        expected = full.run(n_samples=20, warmup=0)

        sampler = make_sampler(regression_model, initial_step_size=0.5)
        stop_after(monkeypatch, sampler, 8, sampler.cancel)

        assert sampler.run(n_samples=20, warmup=0) is None
        assert sampler.phase is Phase.INTERRUPTED

        stashed = sampler.stashed_draws()
        assert len(stashed) == 8
        np.testing.assert_array_equal(
            stashed.unconstrained, expected.unconstrained[:8]
        )
        np.testing.assert_array_equal(stashed.values["mu"], expected.values["mu"][:8])
        assert stashed.step_size == expected.step_size

    def test_keyboard_interrupt(self, regression_model, monkeypatch) -> None:
        full = make_sampler(regression_model, initial_step_size=0.5)
        expected = full.run(n_samples=10, warmup=0)

        sampler = make_sampler(regression_model, initial_step_size=0.5)
        stop_after(monkeypatch, sampler, 5, keyboard_interrupt)

        with pytest.raises(KeyboardInterrupt):
            sampler.run(n_samples=10, warmup=0)

        assert sampler.phase is Phase.INTERRUPTED

        stashed = sampler.stashed_draws()
        assert len(stashed) == 4
        np.testing.assert_array_equal(
            stashed.unconstrained, expected.unconstrained[:4]
        )

    def test_cancel_during_warmup(self, regression_model, monkeypatch) -> None:
        sampler = make_sampler(regression_model)
        stop_after(monkeypatch, sampler, 3, sampler.cancel)

        assert sampler.run(n_samples=10, warmup=30) is None
        assert sampler.phase is Phase.INTERRUPTED
        assert sampler.stashed_draws() is None

    def test_run_again_after_cancel(self, regression_model, monkeypatch) -> None:
        sampler = make_sampler(regression_model, initial_step_size=0.5)
        stop_after(monkeypatch, sampler, 2, sampler.cancel)
        sampler.run(n_samples=10, warmup=0)

        draws = sampler.run(n_samples=10, warmup=0)
        assert len(draws) == 10
        assert sampler.phase is Phase.DONE


class TestFailures:
    def test_no_initial_values(self, regression_model, monkeypatch) -> None:
        def log_density(theta):
            return jnp.array(jnp.nan), jnp.zeros_like(theta)

        monkeypatch.setattr(regression_model, "log_density", log_density)
        sampler = make_sampler(regression_model)

        with pytest.raises(NumericalInstabilityError, match="initial values"):
            sampler.run(n_samples=10, warmup=0)

    def test_consecutive_divergences(self, regression_model, monkeypatch) -> None:
        sampler = gc.Sampler(
            regression_model,
            gc.HMCKernel(initial_step_size=0.5),
            show_progress=False,
            max_consecutive_failures=5,
        )
        transition = sampler._transition

        def divergent(*args):
            state, info = transition(*args)
            return state, info._replace(divergent=jnp.array(True))

        monkeypatch.setattr(sampler, "_transition", divergent)

        with pytest.raises(NumericalInstabilityError, match="5 consecutive"):
            sampler.run(n_samples=10, warmup=0)

    def test_divergences_are_logged(
        self, regression_model, monkeypatch, local_caplog
    ) -> None:
        sampler = make_sampler(regression_model, initial_step_size=0.5)
        transition = sampler._transition
        calls = []

        def sometimes_divergent(*args):
            calls.append(None)
            state, info = transition(*args)

            if len(calls) % 2:
                info = info._replace(divergent=jnp.array(True))

            return state, info

        monkeypatch.setattr(sampler, "_transition", sometimes_divergent)

        with local_caplog() as caplog:
            draws = sampler.run(n_samples=10, warmup=0)

        assert draws.n_divergent == 5
        messages = [record.message for record in caplog.records]
        assert "Sampling had 5 / 10 divergent transitions" in messages
        assert messages[-1] == "Finished sampling"


def test_initial_values(regression_model) -> None:
    sampler = make_sampler(regression_model)
    theta = sampler._initial_position(jax.random.PRNGKey(0), {"mu": 2.0})

    mu = regression_model.constrain(theta)["mu"]
    assert mu == pytest.approx(np.full((1, 1), 2.0))


def test_logging(regression_model, local_caplog) -> None:
    with local_caplog() as caplog:
        make_sampler(regression_model).run(n_samples=5, warmup=25)

    messages = [record.message for record in caplog.records]
    assert messages[0] == "Starting warmup: 25 iterations, 3 windows"
    assert "Starting sampling: 5 iterations" in messages
    assert messages[-1] == "Finished sampling"


def test_to_dataframe() -> None:
    gb = gm.GraphBuilder()
    gb.normal(0.0, 1.0, dim=2, name="beta")
    gb.exponential(1.0, name="sd")

    draws = make_sampler(gb.build_model()).run(n_samples=7, warmup=0)
    df = draws.to_dataframe()

    assert list(df.columns) == ["beta[1,1]", "beta[2,1]", "sd"]
    assert df.shape == (7, 3)
    assert df.index.name == "iteration"
    np.testing.assert_array_equal(df["beta[2,1]"], draws.values["beta"][:, 1, 0])


def test_repr(regression_model) -> None:
    sampler = make_sampler(regression_model, initial_step_size=0.5)
    draws = sampler.run(n_samples=3, warmup=0)
    assert repr(draws) == "Draws(3 draws, 1 variables, 0 divergent)"
