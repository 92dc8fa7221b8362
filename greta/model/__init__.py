"""
Greta modelling: arrays, distributions, graph construction and compiled models.
"""

from .builder import GraphBuilder
from .distributions import DISTRIBUTIONS, DistributionSpec, Truncation, log_density
from .functions import (
    abs,
    assign,
    cbind,
    chol,
    colmeans,
    colsums,
    cos,
    exp,
    expm1,
    ilogit,
    log,
    log1p,
    logit,
    mean,
    rbind,
    rowmeans,
    rowsums,
    sin,
    solve,
    sqrt,
    sum,
    t,
    tanh,
)
from .model import BoundDistribution, Model, Parameter
from .nodes import DistributionNode, GretaArray, Kind, Transform
from .operations import OPERATIONS, Operation
from .viz import model_graph
