"""
Graph IR Tests - 图 IR 测试
===========================

测试内容：
1. 消费边计数缓存与实际边一致
2. 节点 id 不复用
3. remove_node / replace_node_input / remove_node_output_edges 的边簿记
4. 图输出保护、只读窗口
5. 拓扑序与环检测
6. 类型化属性访问
7. 子图对外层张量的隐式读取计为消费边；快照恢复
"""

import unittest
import numpy as np
from graph_rewriter.ir import AttributeType, AttributeValue, Graph
from graph_rewriter.errors import (
    DanglingEdge,
    GraphCycleError,
    GraphOutputProtected,
    GraphStructureError,
    NodeStillReferenced,
    NotFound,
    ReadOnlyGraphError,
    WrongAttributeType,
)
from graph_rewriter.utils.graph_utils import compute_edge_counts, validate_graph


def _diamond_graph():
    """x -> relu -> sigmoid -> add(relu, sigmoid) -> y"""
    graph = Graph("diamond")
    graph.add_input("x", [1, 3, 4, 4], 1)
    graph.add_output("y")
    relu = graph.add_node("Relu", ["x"], ["r"], name="relu")
    sigmoid = graph.add_node("Sigmoid", ["r"], ["s"], name="sigmoid")
    add = graph.add_node("Add", ["r", "s"], ["y"], name="add")
    return graph, relu, sigmoid, add


class TestGraphIR(unittest.TestCase):
    """Graph IR 测试套件。"""

    def test_edge_counts_cached(self):
        graph, relu, sigmoid, add = _diamond_graph()
        self.assertEqual(relu.output_edge_counts, (2,))
        self.assertEqual(sigmoid.output_edge_counts, (1,))
        self.assertEqual(add.output_edge_counts, (0,))
        self.assertEqual(graph.output_edge_count(relu), 2)
        self.assertEqual(compute_edge_counts(graph)[relu.id], [2])
        self.assertTrue(validate_graph(graph))

    def test_consumer_added_before_producer(self):
        graph = Graph()
        graph.add_input("x")
        graph.add_output("y")
        graph.add_node("Neg", ["t"], ["y"], name="neg")
        relu = graph.add_node("Relu", ["x"], ["t"], name="relu")
        self.assertEqual(relu.output_edge_counts, (1,))
        self.assertEqual([graph.get_node(i).name for i in graph.topological_order()], ["relu", "neg"])
        self.assertTrue(validate_graph(graph))

    def test_lookup_not_found(self):
        graph, _, _, _ = _diamond_graph()
        with self.assertRaises(NotFound):
            graph.get_node(42)
        with self.assertRaises(KeyError):
            graph.get_tensor("missing")
        self.assertIsNone(graph.find_node("missing"))
        self.assertEqual(graph.find_node("relu").op_type, "Relu")

    def test_node_ids_never_reused(self):
        graph, _, _, _ = _diamond_graph()
        dead = graph.add_node("Neg", ["x"], ["n"], name="dead")
        graph.remove_node(dead.id)
        self.assertFalse(graph.has_node(dead.id))
        self.assertFalse(graph.has_tensor("n"))
        fresh = graph.add_node("Neg", ["x"], ["n"], name="dead")
        self.assertGreater(fresh.id, dead.id)

    def test_remove_node_still_referenced(self):
        graph, relu, _, _ = _diamond_graph()
        with self.assertRaises(NodeStillReferenced):
            graph.remove_node(relu.id)
        # Graph untouched
        self.assertTrue(graph.has_node(relu.id))
        self.assertEqual(relu.output_edge_counts, (2,))
        self.assertTrue(validate_graph(graph))

    def test_remove_node_producing_graph_output(self):
        graph, _, _, add = _diamond_graph()
        self.assertTrue(graph.produces_graph_output("y"))
        self.assertFalse(graph.produces_graph_output("r"))
        with self.assertRaises(GraphOutputProtected):
            graph.remove_node(add.id)

    def test_replace_node_input_updates_counts(self):
        graph, relu, _, add = _diamond_graph()
        graph.replace_node_input(add, 0, "x")
        self.assertEqual(add.inputs, ["x", "s"])
        self.assertEqual(relu.output_edge_counts, (1,))
        self.assertIn((add.id, 0), graph.consumer_edges("x"))
        self.assertTrue(validate_graph(graph))

    def test_replace_node_input_unknown_tensor(self):
        graph, _, _, add = _diamond_graph()
        with self.assertRaises(NotFound):
            graph.replace_node_input(add, 0, "nope")
        with self.assertRaises(NotFound):
            graph.replace_node_input(add, 5, "x")
        self.assertTrue(validate_graph(graph))

    def test_remove_node_output_edges_then_rebind(self):
        graph, relu, sigmoid, add = _diamond_graph()
        detached = graph.remove_node_output_edges(sigmoid)
        self.assertEqual(detached, [(add.id, 1, "s")])
        self.assertIsNone(add.inputs[1])
        self.assertEqual(sigmoid.output_edge_counts, (0,))
        with self.assertRaises(DanglingEdge):
            validate_graph(graph)

        graph.replace_node_input(add, 1, "r")
        self.assertEqual(relu.output_edge_counts, (3,))
        graph.remove_node(sigmoid.id)
        self.assertTrue(validate_graph(graph))
        self.assertEqual(relu.output_edge_counts, (2,))

    def test_read_only_window(self):
        graph, relu, _, add = _diamond_graph()
        with graph.read_only():
            self.assertTrue(graph.is_read_only)
            with self.assertRaises(ReadOnlyGraphError):
                graph.replace_node_input(add, 0, "x")
            with self.assertRaises(ReadOnlyGraphError):
                graph.set_node_attribute(relu, "alpha", 1.0)
            with self.assertRaises(ReadOnlyGraphError):
                graph.remove_node(add.id)
        self.assertFalse(graph.is_read_only)
        graph.set_node_attribute(relu, "alpha", 1.0)
        self.assertEqual(relu.get_float("alpha"), 1.0)

    def test_duplicate_producer_rejected(self):
        graph, _, _, _ = _diamond_graph()
        with self.assertRaises(GraphStructureError):
            graph.add_node("Neg", ["x"], ["r"], name="other")
        with self.assertRaises(GraphStructureError):
            graph.add_node("Neg", ["r"], ["x"], name="writes_input")
        with self.assertRaises(GraphStructureError):
            graph.add_node("Neg", ["x"], ["z"], name="relu")

    def test_topological_order(self):
        graph = Graph()
        graph.add_input("x")
        graph.add_output("y")
        # Inserted consumers first
        graph.add_node("Add", ["a", "b"], ["y"], name="add")
        graph.add_node("Neg", ["a"], ["b"], name="neg")
        graph.add_node("Relu", ["x"], ["a"], name="relu")
        names = [graph.get_node(i).name for i in graph.topological_order()]
        self.assertEqual(names, ["relu", "neg", "add"])

    def test_cycle_detected(self):
        graph = Graph()
        graph.add_node("Relu", ["b"], ["a"], name="first")
        graph.add_node("Relu", ["a"], ["b"], name="second")
        with self.assertRaises(GraphCycleError):
            graph.topological_order()
        with self.assertRaises(GraphCycleError):
            validate_graph(graph)

    def test_typed_attributes(self):
        graph = Graph()
        graph.add_input("x")
        node = graph.add_node(
            "Pad",
            ["x"],
            ["y"],
            attributes={"pads": [0, 0, 1, 1], "mode": "constant", "value": 0.0, "axis": 1},
        )
        self.assertEqual(node.get_ints("pads"), [0, 0, 1, 1])
        self.assertEqual(node.get_string("mode"), "constant")
        self.assertEqual(node.get_float("value"), 0.0)
        self.assertEqual(node.get_int("axis"), 1)
        self.assertEqual(node.get_int("missing", 7), 7)
        with self.assertRaises(WrongAttributeType):
            node.get_ints("mode")
        with self.assertRaises(TypeError):
            node.get_float("axis")

    def test_attribute_inference(self):
        self.assertEqual(AttributeValue.infer([1, 2]).type, AttributeType.INTS)
        self.assertEqual(AttributeValue.infer([1, 2.5]).type, AttributeType.FLOATS)
        self.assertEqual(AttributeValue.infer([]).type, AttributeType.INTS)
        self.assertEqual(AttributeValue.infer(b"abc").value, "abc")
        self.assertEqual(AttributeValue.infer(np.int64(3)).type, AttributeType.INT)
        self.assertEqual(AttributeValue.infer(np.zeros(2)).type, AttributeType.TENSOR)
        with self.assertRaises(WrongAttributeType):
            AttributeValue.infer([1, "a"])

    def test_remove_unused_initializers(self):
        graph = Graph()
        graph.add_input("x")
        graph.add_output("y")
        graph.add_initializer("k", np.ones(1, dtype=np.float32))
        graph.add_initializer("unused", np.zeros(4, dtype=np.int64))
        graph.add_node("Add", ["x", "k"], ["y"])
        self.assertEqual(graph.remove_unused_initializers(), ["unused"])
        self.assertFalse(graph.has_tensor("unused"))
        self.assertTrue(graph.has_tensor("k"))

    def test_subgraph_reads_are_consumer_edges(self):
        graph = Graph("scoped")
        graph.add_input("cond")
        graph.add_input("x")
        graph.add_output("out")
        graph.add_initializer("c", np.ones(2, dtype=np.float32))
        # Added before the producer of "t": ordering must still follow the implicit read
        branch = graph.add_node("If", ["cond"], ["out"], name="branch", implicit_inputs=["t", "c"])
        ident = graph.add_node("Identity", ["x"], ["t"], name="ident")

        self.assertEqual(graph.consumer_edges("t"), [(branch.id, 1)])
        self.assertEqual(graph.consumer_edges("c"), [(branch.id, 2)])
        self.assertEqual(graph.output_edge_count(ident), 1)
        self.assertFalse(graph.is_implicit_edge(branch.id, 0))
        self.assertTrue(graph.is_implicit_edge(branch.id, 1))
        self.assertTrue(graph.has_implicit_consumers("t"))
        self.assertFalse(graph.has_implicit_consumers("cond"))
        self.assertEqual(
            [graph.get_node(i).name for i in graph.topological_order()], ["ident", "branch"]
        )
        self.assertEqual(graph.remove_unused_initializers(), [])
        self.assertTrue(graph.has_tensor("c"))
        self.assertTrue(validate_graph(graph))

    def test_subgraph_reads_block_removal_and_rewiring(self):
        graph = Graph("scoped")
        graph.add_input("cond")
        graph.add_input("x")
        graph.add_output("out")
        ident = graph.add_node("Identity", ["x"], ["t"], name="ident")
        branch = graph.add_node("If", ["cond"], ["out"], name="branch", implicit_inputs=["t"])

        with self.assertRaises(NodeStillReferenced):
            graph.remove_node(ident.id)
        with self.assertRaises(GraphStructureError):
            graph.remove_node_output_edges(ident)
        with self.assertRaises(NotFound):
            graph.replace_node_input(branch, 1, "x")
        self.assertEqual(graph.consumer_edges("t"), [(branch.id, 1)])
        self.assertTrue(validate_graph(graph))

        graph.get_tensor("t").consumers.clear()
        with self.assertRaises(DanglingEdge):
            validate_graph(graph)

    def test_restore_snapshot(self):
        graph, relu, sigmoid, add = _diamond_graph()
        snapshot = graph.copy()
        graph.replace_node_input(add, 1, "x")
        graph.remove_node(sigmoid.id)

        graph.restore(snapshot)
        self.assertEqual(graph.node_count, 3)
        self.assertEqual(graph.find_node("add").inputs, ["r", "s"])
        self.assertEqual(graph.find_node("relu").output_edge_counts, (2,))
        self.assertTrue(validate_graph(graph))

    def test_copy_is_independent(self):
        graph, relu, _, add = _diamond_graph()
        snapshot = graph.copy()
        graph.replace_node_input(add, 0, "x")
        copied_add = snapshot.find_node("add")
        self.assertEqual(copied_add.inputs, ["r", "s"])
        self.assertEqual(snapshot.find_node("relu").output_edge_counts, (2,))
        self.assertTrue(validate_graph(snapshot))


if __name__ == "__main__":
    unittest.main()
