"""
Graph invariant checks and analysis helpers.

This module provides stateless functions that verify the structural
invariants every rewrite must preserve:

- the graph is acyclic
- every consumed tensor is a graph input, an initializer or has exactly one
  producing node
- no input slot is left unbound or points at an unknown tensor, and every
  name a subgraph reads from the enclosing scope has a consumer edge
- every node's cached consumer-edge counts equal the live edge counts
"""

import collections
from typing import Dict, List

from ..errors import DanglingEdge, EdgeCountMismatch, GraphStructureError


def compute_edge_counts(graph) -> Dict[int, List[int]]:
    """
    Compute the live consumer-edge count of every node output.

    Args:
        graph: The graph to inspect

    Returns:
        Dict mapping node ids to per-output edge counts
    """
    counts = {}
    for node in graph.nodes():
        counts[node.id] = [
            len(graph.get_tensor(out_name).consumers) if out_name else 0
            for out_name in node.outputs
        ]
    return counts


def check_edge_counts(graph):
    """Raises EdgeCountMismatch if any cached count differs from the live count."""
    live = compute_edge_counts(graph)
    for node in graph.nodes():
        if list(node.output_edge_counts) != live[node.id]:
            raise EdgeCountMismatch(
                f"Node {node.name}: cached edge counts {list(node.output_edge_counts)} "
                f"!= live edge counts {live[node.id]}"
            )


def check_dangling_edges(graph):
    """Raises DanglingEdge for detached slots and references to unknown tensors."""
    for node in graph.nodes():
        for slot, in_name in enumerate(node.inputs):
            if graph.is_detached(node.id, slot):
                raise DanglingEdge(f"Node {node.name} input {slot} was detached and never re-bound")
            if in_name is None:
                continue
            if not graph.has_tensor(in_name):
                raise DanglingEdge(f"Node {node.name} input {slot} references unknown tensor '{in_name}'")
            if (node.id, slot) not in graph.get_tensor(in_name).consumers:
                raise DanglingEdge(
                    f"Node {node.name} input {slot} reads '{in_name}' without a consumer edge"
                )
        offset = len(node.inputs)
        for k, in_name in enumerate(node.implicit_inputs):
            if not graph.has_tensor(in_name):
                raise DanglingEdge(f"Node {node.name} subgraph reads unknown tensor '{in_name}'")
            if (node.id, offset + k) not in graph.get_tensor(in_name).consumers:
                raise DanglingEdge(
                    f"Node {node.name} subgraph reads '{in_name}' without a consumer edge"
                )


def check_producers(graph):
    """Every tensor is a graph input, an initializer, or has exactly one live producer."""
    for tensor in graph.tensors():
        if tensor.producer is not None:
            if not graph.has_node(tensor.producer):
                raise DanglingEdge(f"Tensor '{tensor.name}' names removed producer {tensor.producer}")
            producer = graph.get_node(tensor.producer)
            if producer.outputs[tensor.producer_index] != tensor.name:
                raise GraphStructureError(
                    f"Tensor '{tensor.name}' producer {producer.name} does not list it as output"
                )
            continue
        if tensor.is_initializer or graph.is_graph_input(tensor.name):
            continue
        if tensor.consumers or graph.is_graph_output(tensor.name):
            raise GraphStructureError(f"Tensor '{tensor.name}' has no producer")


def validate_graph(graph) -> bool:
    """
    Run every structural invariant check.

    Raises:
        GraphStructureError (or a subclass) on the first violation found.
    """
    graph.topological_order()  # raises GraphCycleError
    check_producers(graph)
    check_dangling_edges(graph)
    check_edge_counts(graph)
    return True


def count_op_types(graph) -> Dict[str, int]:
    """Histogram of op types, used for before/after summaries."""
    return dict(collections.Counter(node.op_type for node in graph.nodes()))
