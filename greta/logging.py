"""
Logging utilities.
"""

import logging
from pathlib import Path


def setup_logger() -> None:
    """
    Sets up a ``StreamHandler`` for the ``"greta"`` logger that prints log messages
    to the terminal at level "info".

    The sampler reports its warmup and sampling phases through this logger. To see
    less, raise the level of the package logger::

        import logging
        logging.getLogger("greta").setLevel(logging.WARNING)
    """

    logger = logging.getLogger("greta")

    # importing the package twice must not stack handlers
    if any(getattr(h, "_greta_default", False) for h in logger.handlers):
        return

    logger.setLevel(logging.INFO)

    # greta messages are not passed on to the root logger, so they show up once
    logger.propagate = False

    handler = logging.StreamHandler()
    handler._greta_default = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter("%(name)s - %(levelname)s - %(message)s"))

    logger.addHandler(handler)


def reset_logger() -> None:
    """
    Resets the greta logger.

    The level goes back to ``logging.NOTSET``, messages propagate to the root logger
    again and *all* handlers are removed. Use this before installing a custom logging
    configuration.
    """

    logger = logging.getLogger("greta")
    logger.setLevel(logging.NOTSET)
    logger.propagate = True

    for handler in list(logger.handlers):
        logger.removeHandler(handler)


def add_file_handler(
    path: str | Path,
    level: str | int,
    logger: str = "greta",
    fmt: str = "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
) -> logging.FileHandler:
    """
    Adds a file handler to a logger and returns it.

    Parameters
    ----------
    path
        Absolute path to the log file. Missing parent directories are created.
    level
        The lowest level written to the file, as a number or a name like
        ``"debug"`` or ``"warning"``.
    logger
        The name of the logger, e.g. ``"greta.mcmc"`` to capture only the sampler.
    fmt
        Formatting string, see :class:`logging.Formatter`.

    Examples
    --------
    Writing the sampler warnings to a file::

        import greta

        greta.logging.add_file_handler(
            path="/tmp/greta/sampler.log", level="warning", logger="greta.mcmc"
        )
    """

    path = Path(path)

    if not path.is_absolute():
        raise ValueError(f"The path of a log file must be absolute, got {path}")

    path.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, "%Y-%m-%d %H:%M:%S"))

    logging.getLogger(logger).addHandler(handler)
    return handler
