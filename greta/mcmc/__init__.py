"""
Greta MCMC: Hamiltonian Monte Carlo for compiled models.
"""

from .hmc import HMCKernel, HMCKernelState, HMCTransitionInfo
from .sampler import Draws, Phase, Sampler, mcmc
from .warmup import Window, WindowType, stan_windows

__all__ = [
    "Draws",
    "HMCKernel",
    "HMCKernelState",
    "HMCTransitionInfo",
    "Phase",
    "Sampler",
    "Window",
    "WindowType",
    "mcmc",
    "stan_windows",
]
