from ...core import RewriteEffect, RewriteRule, RuleRegistry, matches_op
from ...utils.logger import logger as logging

IDENTITY_VERSIONS = (1, 13, 14, 16, 19, 21, 23)


@RuleRegistry.register("identity_elimination", opt_level=1, priority=10)
class IdentityEliminationRule(RewriteRule):
    """
    Remove Identity nodes by bypassing them.

    Transform: consumer(Identity(x))
    Into: consumer(x)

    Note: an Identity producing a graph output, or whose output a subgraph
    reads by name, is kept; removing it would rename that value.
    """

    op_types = ("Identity",)

    def __init__(self):
        super().__init__(name="IdentityElimination")

    def _satisfies_condition(self, graph, node):
        if not matches_op(node, "Identity", IDENTITY_VERSIONS):
            return False
        if not node.inputs or node.inputs[0] is None or len(node.present_outputs) != 1:
            return False
        if graph.node_produces_graph_output(node):
            return False
        # A subgraph read cannot be rewired to another name
        return not graph.has_implicit_consumers(node.present_outputs[0])

    def _apply(self, graph, node):
        source = node.inputs[0]
        for consumer_id, slot in graph.consumer_edges(node.outputs[0]):
            graph.replace_node_input(graph.get_node(consumer_id), slot, source)
        logging.debug(f"[IdentityElimination] Bypassing {node.name} -> {source}")
        graph.remove_node(node.id)
        return RewriteEffect.NODE_REMOVED
