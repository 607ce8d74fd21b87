from .core import (
    GraphRewriter,
    RewriteEffect,
    RewriteRecord,
    RewriteRule,
    RuleRegistry,
    matches_op,
)
from .constants import TypedByteView, is_constant, materialize
from .errors import (
    GraphRewriteError,
    NotFound,
    WrongAttributeType,
    NotConstant,
    UnknownRuleError,
    GraphStructureError,
    NodeStillReferenced,
    GraphOutputProtected,
    DanglingEdge,
    EdgeCountMismatch,
    GraphCycleError,
    ReadOnlyGraphError,
    IterationLimitExceeded,
)
from .ir import AttributeType, AttributeValue, Graph, Node, Tensor
from .schema import OpSchemaLookup
from .utils import (
    ModelBuilder,
    graph_from_onnx,
    graph_to_onnx,
    load_model,
    save_model,
    validate_graph,
)
from .runner import OptimizationPipeline
from .utils.logger import set_log_level, DEBUG, INFO, WARNING, ERROR

# Import transforms to register all rules
from . import transforms

__version__ = "0.1.0"

__all__ = [
    "GraphRewriter",
    "RewriteEffect",
    "RewriteRecord",
    "RewriteRule",
    "RuleRegistry",
    "matches_op",
    "TypedByteView",
    "is_constant",
    "materialize",
    "GraphRewriteError",
    "NotFound",
    "WrongAttributeType",
    "NotConstant",
    "UnknownRuleError",
    "GraphStructureError",
    "NodeStillReferenced",
    "GraphOutputProtected",
    "DanglingEdge",
    "EdgeCountMismatch",
    "GraphCycleError",
    "ReadOnlyGraphError",
    "IterationLimitExceeded",
    "AttributeType",
    "AttributeValue",
    "Graph",
    "Node",
    "Tensor",
    "OpSchemaLookup",
    "ModelBuilder",
    "graph_from_onnx",
    "graph_to_onnx",
    "load_model",
    "save_model",
    "validate_graph",
    "OptimizationPipeline",
    "set_log_level",
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
]
