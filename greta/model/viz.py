"""
Model graph description.

Rendering is left to other tools, e.g. :func:`networkx.draw` or Graphviz.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import networkx as nx

if TYPE_CHECKING:
    from .model import Model

__all__ = ["model_graph"]

logger = logging.getLogger(__name__)


def model_graph(model: Model) -> nx.DiGraph:
    """
    Describes the graph of a compiled model.

    Vertices are keyed by the labels of the arrays. A distribution is keyed by
    ``"<name>(<label>)"``, with the label of the array it is bound to. Every vertex
    has the attributes

    - ``label``: the array label or the name of the distribution,
    - ``kind``: ``"data"``, ``"variable"``, ``"operation"`` or ``"distribution"``,
    - ``shape``: the shape of the array or of the values of the distribution.

    Operations additionally carry ``operation``. Every edge has the attribute
    ``role``: ``"operand"`` from an operand to the result, ``"parameter"`` from
    a parameter to its distribution, and ``"distribution"`` from a distribution to
    the array it is bound to.

    Parameters
    ----------
    model
        The model to describe.

    Examples
    --------

    >>> gb = gm.GraphBuilder()
    >>> mu = gb.normal(0.0, 1.0, name="mu")
    >>> graph = gm.model_graph(gb.build_model())
    >>> sorted(graph.nodes)
    ['mu', 'n0', 'n1', 'normal(mu)']
    """

    graph = nx.DiGraph()
    labels = {array: label for label, array in model.arrays.items()}

    for array, label in labels.items():
        if array.is_operation:
            kind = "operation"
        elif array.is_data:
            kind = "data"
        else:
            kind = "variable"

        graph.add_node(label, label=label, kind=kind, shape=array.shape)

        if array.is_operation:
            graph.nodes[label]["operation"] = array.operation

        for operand in array.operands:
            graph.add_edge(labels[operand], label, role="operand")

    for dist in model.distributions:
        value = labels[dist.value]
        key = f"{dist.spec.name}({value})"
        graph.add_node(
            key, label=dist.spec.name, kind="distribution", shape=dist.node.dim
        )

        for param in dist.params:
            graph.add_edge(labels[param], key, role="parameter")

        graph.add_edge(key, value, role="distribution")

    logger.debug(
        f"Described a model graph with {graph.number_of_nodes()} vertices and "
        f"{graph.number_of_edges()} edges"
    )
    return graph
