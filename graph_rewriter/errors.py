"""
Error taxonomy for the graph rewriter.

Precondition failures are never errors: rules answer them with a boolean.
Everything below signals either a programming error in a rule or a broken
structural invariant, and aborts the optimization of the whole graph.
"""


class GraphRewriteError(Exception):
    """Base class for all rewriter errors."""


class NotFound(GraphRewriteError, KeyError):
    """A node id or tensor name does not exist in the graph."""

    def __str__(self):
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class WrongAttributeType(GraphRewriteError, TypeError):
    """A typed attribute accessor was used on an attribute of another kind."""


class NotConstant(GraphRewriteError):
    """A tensor that is not a compile-time constant was materialized."""


class UnknownRuleError(GraphRewriteError, ValueError):
    """A rule name is not present in the rule registry."""


class GraphStructureError(GraphRewriteError):
    """A structural invariant of the graph was violated."""


class NodeStillReferenced(GraphStructureError):
    """A node was removed while consumer edges still read its outputs."""


class GraphOutputProtected(GraphStructureError):
    """A node producing a graph output was removed."""


class DanglingEdge(GraphStructureError):
    """An input slot references a tensor that is unbound or unknown."""


class EdgeCountMismatch(GraphStructureError):
    """A cached consumer-edge count differs from the live edge count."""


class GraphCycleError(GraphStructureError):
    """The graph contains a cycle."""


class ReadOnlyGraphError(GraphStructureError):
    """A mutation primitive was called while the graph was read-only."""


class IterationLimitExceeded(GraphRewriteError):
    """The driver did not reach a fixpoint within its pass budget."""

    def __init__(self, max_iterations, rule_names):
        self.max_iterations = max_iterations
        self.rule_names = sorted(set(rule_names))
        super().__init__(
            f"No fixpoint after {max_iterations} passes; "
            f"rules still firing: {', '.join(self.rule_names) or '<none>'}"
        )
