from .graph_io import (
    ModelBuilder,
    attribute_from_onnx,
    attribute_to_onnx,
    graph_from_onnx,
    graph_to_onnx,
    load_model,
    save_model,
)
from .graph_utils import (
    check_dangling_edges,
    check_edge_counts,
    check_producers,
    compute_edge_counts,
    count_op_types,
    validate_graph,
)
from .logger import logger
from .visualize import export_to_dot, save_dot

__all__ = [
    # graph_io
    "ModelBuilder",
    "attribute_from_onnx",
    "attribute_to_onnx",
    "graph_from_onnx",
    "graph_to_onnx",
    "load_model",
    "save_model",
    # graph_utils
    "check_dangling_edges",
    "check_edge_counts",
    "check_producers",
    "compute_edge_counts",
    "count_op_types",
    "validate_graph",
    # logger
    "logger",
    # visualize
    "export_to_dot",
    "save_dot",
]
