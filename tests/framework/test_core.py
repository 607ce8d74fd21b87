"""
Core Engine Tests - 核心引擎基础功能测试
=========================================

测试内容：
1. test_matches_op           - op 类型 / 域 / since_version 精确匹配
2. test_rule_registry        - 规则注册、按级别与优先级选取、未知规则
3. test_indexed_candidates   - 规则按 op_type 索引，通配规则对所有节点生效
4. test_base_rule_abstract   - 基类 RewriteRule 未实现的方法

依赖：
- GraphRewriter : 规则驱动器
- RuleRegistry  : 规则注册表
"""

import unittest
from graph_rewriter.ir import Graph
from graph_rewriter.core import (
    GraphRewriter,
    RewriteEffect,
    RewriteRule,
    RuleRegistry,
    matches_op,
)
from graph_rewriter.errors import UnknownRuleError
from graph_rewriter.transforms import IdentityEliminationRule, PadFusionRule


class CountingRule(RewriteRule):
    """Never fires; counts how often its precondition was asked."""

    def __init__(self, op_types=()):
        super().__init__()
        self.op_types = tuple(op_types)
        self.asked = []

    def _satisfies_condition(self, graph, node):
        self.asked.append(node.name)
        return False


class TestCoreEngine(unittest.TestCase):
    """核心引擎基础功能测试套件。"""

    def _graph(self):
        graph = Graph()
        graph.add_input("x")
        graph.add_output("y")
        graph.add_node("Relu", ["x"], ["a"], name="relu")
        graph.add_node("Conv", ["a", "w"], ["b"], name="conv", since_version=11)
        graph.add_node("Add", ["b", "a"], ["y"], name="add", since_version=14)
        return graph

    def test_matches_op(self):
        conv = self._graph().find_node("conv")
        self.assertTrue(matches_op(conv, "Conv", {1, 11}))
        self.assertTrue(matches_op(conv, "Conv", (11,), domain="ai.onnx"))
        self.assertFalse(matches_op(conv, "Conv", {1}))
        self.assertFalse(matches_op(conv, "Conv", {11}, domain="com.microsoft"))
        self.assertFalse(matches_op(conv, "ConvTranspose", {1, 11}))

    def test_rule_registry(self):
        self.assertTrue(RuleRegistry.is_registered("pad_fusion"))
        self.assertTrue(RuleRegistry.is_registered("identity_elimination"))
        self.assertIn("pad_fusion", RuleRegistry.list_available_rules())

        level_one = RuleRegistry.get_rules_by_level(1)
        self.assertLess(level_one.index("identity_elimination"), level_one.index("pad_fusion"))
        self.assertNotIn("pad_fusion", RuleRegistry.get_rules_by_level(0))

        self.assertIsInstance(RuleRegistry.get_rule("pad_fusion"), PadFusionRule)
        self.assertIsInstance(RuleRegistry.get_rule("identity_elimination"), IdentityEliminationRule)
        with self.assertRaises(UnknownRuleError):
            RuleRegistry.get_rule("no_such_rule")
        with self.assertRaises(ValueError):
            RuleRegistry.get_rule("no_such_rule")

    def test_indexed_candidates(self):
        graph = self._graph()
        conv_only = CountingRule(["Conv"])
        mul_only = CountingRule(["Mul"])
        wildcard = CountingRule()
        rewriter = GraphRewriter(graph, [conv_only, mul_only, wildcard])

        self.assertEqual(rewriter.wildcard_rules, [wildcard])
        self.assertEqual(rewriter.rule_index["Conv"], [conv_only])
        rewriter.optimize()

        self.assertEqual(conv_only.asked, ["conv"])
        self.assertEqual(mul_only.asked, [])
        self.assertEqual(wildcard.asked, ["relu", "conv", "add"])
        self.assertEqual(rewriter.change_log, [])
        self.assertEqual(rewriter.iterations, 1)

    def test_candidates_keep_registration_order(self):
        graph = self._graph()
        wildcard = CountingRule()
        conv_only = CountingRule(["Conv"])
        rewriter = GraphRewriter(graph, [wildcard, conv_only])
        conv = graph.find_node("conv")
        self.assertEqual(rewriter._candidate_rules(conv), [wildcard, conv_only])

        rewriter.clear_rules()
        self.assertEqual(rewriter.rule_names, [])
        self.assertEqual(rewriter._candidate_rules(conv), [])

    def test_base_rule_abstract(self):
        graph = self._graph()
        rule = RewriteRule(name="Bare")
        self.assertEqual(rule.name, "Bare")
        self.assertEqual(rule.get_indexed_op_types(), ())
        with self.assertRaises(NotImplementedError):
            rule.satisfies_precondition(graph, graph.find_node("relu"))
        with self.assertRaises(NotImplementedError):
            rule.apply(graph, graph.find_node("relu"))

    def test_effect_changed(self):
        self.assertFalse(RewriteEffect.NO_CHANGE.changed)
        self.assertTrue(RewriteEffect.NODE_MODIFIED.changed)
        self.assertTrue(RewriteEffect.NODE_REMOVED.changed)
        self.assertEqual(RewriteEffect.NODE_REMOVED.value, "NodeRemoved")


if __name__ == "__main__":
    unittest.main()
