"""
Greta probabilistic modelling framework.
"""

from .__version__ import __version__, __version_info__  # isort: skip

from . import exceptions, mcmc, model
from .logging import reset_logger, setup_logger

# because logger setup takes place after importing the submodules, it only affects
# log messages emitted at runtime
setup_logger()
