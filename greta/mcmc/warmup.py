"""
# Warmup schedule
"""

from enum import Enum
from typing import NamedTuple


class WindowType(Enum):
    """The kind of adaptation in a warmup window."""

    FAST = "fast"
    """Step size adaptation only."""

    SLOW = "slow"
    """Step size adaptation, then an inverse mass matrix tuned on the window."""


class Window(NamedTuple):
    type: WindowType
    duration: int


def stan_windows(
    warmup_duration: int = 100,
    init_duration: int = 75,
    term_duration: int = 50,
    base_duration: int = 25,
) -> list[Window]:
    """
    Splits the warmup into adaptation windows, following the Stan Development Team,
    [Stan Reference Manual, Automatic parameter tuning](
    https://mc-stan.org/docs/reference-manual/mcmc.html).

    An initial fast window is followed by slow windows that double in length, and
    a terminal fast window. If the warmup is too short for the requested
    durations, the windows take 15%, 75% and 10% of it. Warmups shorter than 20
    iterations only adapt the step size.

    ## Parameters

    - `warmup_duration`: The number of warmup iterations.
    - `init_duration`: The number of iterations in the *initial fast* window.
    - `term_duration`: The number of iterations in the *terminal fast* window.
    - `base_duration`: The number of iterations in the *first slow* window.
    """

    if warmup_duration < 0:
        raise ValueError("warmup_duration must not be negative")

    if warmup_duration == 0:
        return []

    if warmup_duration < 20:
        return [Window(WindowType.FAST, warmup_duration)]

    if warmup_duration < init_duration + term_duration + base_duration:
        init_duration = int(0.15 * warmup_duration)
        term_duration = int(0.1 * warmup_duration)
        base_duration = warmup_duration - init_duration - term_duration

    windows = [Window(WindowType.FAST, init_duration)]

    time_left = warmup_duration - init_duration - term_duration
    this_time = base_duration

    while 3 * this_time <= time_left:
        windows.append(Window(WindowType.SLOW, this_time))
        time_left -= this_time
        this_time *= 2

    windows.append(Window(WindowType.SLOW, time_left))
    windows.append(Window(WindowType.FAST, term_duration))

    return windows
