import logging
from collections.abc import Generator
from contextlib import contextmanager

import pytest
from _pytest.logging import LogCaptureHandler

import greta.model as gm


def pytest_addoption(parser):
    parser.addoption(
        "--run-mcmc", action="store_true", default=False, help="run mcmc tests"
    )

    parser.addoption(
        "--mcmc-seed", action="store", default=42, help="set mcmc seed", type=int
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "mcmc: mark test as mcmc test")


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-mcmc"):
        # --run-mcmc given in cli: do not skip mcmc tests
        return

    skip_mcmc = pytest.mark.skip(reason="need --run-mcmc option to run")

    for item in items:
        if "mcmc" in item.keywords:
            item.add_marker(skip_mcmc)


@pytest.fixture
def mcmc_seed(request):
    return request.config.getoption("--mcmc-seed")


@contextmanager
def local_caplog_fn(
    level: int = logging.INFO, name: str = "greta"
) -> Generator[LogCaptureHandler]:
    """
    Context manager that captures records from non-propagating loggers.

    After the end of the ``with`` statement, the log level is restored to its original
    value. Code adapted from `this GitHub comment <GH_>`_.

    .. _GH: https://github.com/pytest-dev/pytest/issues/3697#issuecomment-790925527

    Parameters
    ----------
    level
        The log level.
    name
        The name of the logger to update.
    """

    logger = logging.getLogger(name)

    old_level = logger.level
    logger.setLevel(level)

    handler = LogCaptureHandler()
    logger.addHandler(handler)

    try:
        yield handler
    finally:
        logger.setLevel(old_level)
        logger.removeHandler(handler)


@pytest.fixture
def local_caplog():
    """
    Fixture that yields a context manager for capturing records from non-propagating
    loggers.

    Examples
    --------
    Usage example::

        def test_sampler_logs(local_caplog):
            with local_caplog() as caplog:
                sampler.run(n_samples=10, warmup=0)
                assert caplog.records[-1].message == "Finished sampling"
    """

    yield local_caplog_fn


@pytest.fixture
def gb() -> gm.GraphBuilder:
    return gm.GraphBuilder()


@pytest.fixture
def normal_model() -> gm.Model:
    """A scalar variable with a standard normal prior and no data."""
    gb = gm.GraphBuilder()
    gb.normal(0.0, 1.0, name="x")
    return gb.build_model()


@pytest.fixture
def regression_model() -> gm.Model:
    """A flat prior on the mean of one observation ``y = 5``."""
    gb = gm.GraphBuilder()
    mu = gb.variable(name="mu")
    y = gb.data([5.0], name="y")
    gb.set_distribution(y, gb.normal(mu, 1.0))
    return gb.build_model()
