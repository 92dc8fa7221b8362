"""
Exceptions raised while building, compiling and sampling models.

Every exception derives from :class:`GretaError`, so all package errors can be
caught at once. Each one also derives from the closest builtin exception.
"""


class GretaError(Exception):
    """Base class for all greta exceptions."""


class ShapeError(GretaError, ValueError):
    """
    The dimensions of the operands do not fit the operation.

    Raised by the statement that tried to build the array; the graph is unchanged.
    """


class DataValidationError(GretaError, ValueError):
    """Input data is not numeric, or contains missing or non-finite values."""


class DuplicateDistributionError(GretaError, RuntimeError):
    """A distribution is already bound to the array (or the distribution is bound)."""


class TruncationError(GretaError, ValueError):
    """Truncation was requested for a distribution that does not implement it."""


class UnboundVariableError(GretaError, RuntimeError):
    """
    A variable the model depends on has no distribution and is not a target, or
    the graph has no density or no free variable.
    """


class CyclicGraphError(GretaError, RuntimeError):
    """The graph of the model contains a cycle."""


class DiscreteParameterError(GretaError, RuntimeError):
    """A discrete distribution is bound to a variable that would have to be sampled."""


class NumericalInstabilityError(GretaError, RuntimeError):
    """The sampler could not find or keep a finite log-density and gradient."""
