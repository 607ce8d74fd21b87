"""
Pad Fusion Rule (pad_fusion)

================================================================================
Rule 注册信息
================================================================================
Registration:
    Name: "pad_fusion"
    Optimization Level: 1 (basic optimization)
    Priority: 20
    Anchor op: Pad

Class:
    PadFusionRule (inherits from RewriteRule)

================================================================================
目的 (Purpose)
================================================================================
把零填充的 Pad 节点折叠进下游 Conv / AveragePool / MaxPool 的 pads 属性，
删除 Pad 节点，省掉一次整张量的拷贝。

================================================================================
算法 (Algorithm)
================================================================================
原始模式:
       x
       |
      Pad (mode=constant, value=0)
       |
      Cast (optional)
       |
    Conv / AveragePool / MaxPool

优化后:
       x
       |
      Cast (optional)
       |
    Conv / AveragePool / MaxPool  (pads += Pad 的空间维 pads)

Pad 的 pads 布局为 [x1_begin, x2_begin, ..., x1_end, x2_end, ...]，
前两维 (batch, channel) 必须为 0；消费者的 pads 只覆盖空间维，同样是
begin 一半、end 一半。逐维相加，begin 对 begin，end 对 end。

================================================================================
融合条件 (Fusion Conditions)
================================================================================
1. Pad 版本受支持；恰好一条消费边（且是消费者的第 0 个输入）；不产生图输出；
   输入不超过 3 个。子图（If/Loop/Scan）对输出的隐式读取也计为消费边
2. mode 为 constant（缺省即 constant）
3. pads 为编译期常量；填充值缺省或为全零常量
4. 可选的中间 Cast 只有一条消费边、不产生图输出
5. 消费者不使用 auto_pad（NOTSET 视为显式）
6. 消费者只有一个输出（MaxPool 的 indices 以未填充输入为基准，不能融合）
7. AveragePool 已有非零 pads 且不把填充计入分母时不能融合
8. pads 非负，batch / channel 维为 0

================================================================================
示例 (Examples)
================================================================================
示例 1 - Conv:
    Pad(pads=[0,0,1,1,0,0,1,1]) -> Conv(pads=[0,0,0,0])
    => Conv(pads=[1,1,1,1])

示例 2 - AveragePool:
    Pad(pads=[0,0,1,1,0,0,1,1]) -> AveragePool(pads=[0,0,0,0], count_include_pad=0)
    => AveragePool(pads=[1,1,1,1], count_include_pad=1)

示例 3 - 不融合（填充 batch 维）:
    Pad(pads=[1,0,0,0,1,0,0,0]) -> Conv
    不变
"""

from typing import List, Optional, Sequence

import numpy as np

from ...constants import is_constant, materialize
from ...core import RewriteEffect, RewriteRule, RuleRegistry, matches_op
from ...utils.logger import logger as logging

PAD_VERSIONS = (1, 2, 11, 13, 18, 19)
CAST_VERSIONS = (1, 6, 9, 13)
CONV_VERSIONS = (1, 11)
AVERAGE_POOL_VERSIONS = (7, 10, 11, 19)
MAX_POOL_VERSIONS = (1, 8, 10, 11, 12)


def merge_pads(consumer_pads: Sequence[int], pad_amounts: Sequence[int]) -> List[int]:
    """
    Adds the spatial part of a Pad's pad amounts onto a consumer's ``pads``.

    Args:
        consumer_pads: The consumer's existing pads (spatial dims only), may be empty
        pad_amounts: The Pad node's amounts over all dims (begin half, end half)

    Returns:
        The merged consumer pads
    """
    half = len(pad_amounts) // 2
    spatial = half - 2
    merged = list(consumer_pads) if consumer_pads else [0] * (2 * spatial)
    for i in range(spatial):
        merged[i] += pad_amounts[2 + i]
        merged[i + spatial] += pad_amounts[half + 2 + i]
    return merged


def pads_are_fusable(pad_amounts: Sequence[int]) -> bool:
    """Non-negative, even-length, and zero on the batch and channel dims."""
    size = len(pad_amounts)
    if size < 4 or size % 2:
        return False
    half = size // 2
    if pad_amounts[0] or pad_amounts[1] or pad_amounts[half] or pad_amounts[half + 1]:
        return False
    return all(value >= 0 for value in pad_amounts)


@RuleRegistry.register("pad_fusion", opt_level=1, priority=20)
class PadFusionRule(RewriteRule):
    """
    Folds a zero-fill Pad into the explicit padding of its Conv/Pool consumer.

    Transform: Conv(Cast?(Pad(x, pads)), pads=p)
    Into: Conv(Cast?(x), pads=p + spatial(pads))
    """

    op_types = ("Pad",)

    def __init__(self):
        super().__init__(name="PadFusion")

    # ------------------------------------------------------------------
    # Precondition
    # ------------------------------------------------------------------

    def _satisfies_condition(self, graph, node):
        if not matches_op(node, "Pad", PAD_VERSIONS):
            return False
        if graph.output_edge_count(node) != 1 or len(node.inputs) > 3:
            return False
        if graph.node_produces_graph_output(node):
            return False
        if node.get_string("mode", "constant") != "constant":
            return False
        if not self._has_zero_fill(graph, node):
            return False

        pad_amounts = self._read_pad_amounts(graph, node)
        if pad_amounts is None or not pads_are_fusable(pad_amounts):
            return False

        child, slot = self._single_consumer(graph, node)
        if slot != 0 or child.is_implicit_slot(slot):
            return False
        if matches_op(child, "Cast", CAST_VERSIONS):
            if graph.output_edge_count(child) != 1 or graph.node_produces_graph_output(child):
                return False
            child, slot = self._single_consumer(graph, child)
            if slot != 0 or child.is_implicit_slot(slot):
                return False
        return self._can_absorb_padding(child, len(pad_amounts))

    def _has_zero_fill(self, graph, node) -> bool:
        # Since opset 11 pads and constant_value are inputs
        if node.since_version >= 11:
            if len(node.inputs) < 2 or not is_constant(graph, node.inputs[1]):
                return False
            fill_value = node.inputs[2] if len(node.inputs) > 2 else None
            if fill_value is None:
                return True
            if not is_constant(graph, fill_value):
                return False
            # Conv and pooling pad with zeros only
            return materialize(graph, fill_value).all_bytes_zero()
        return node.get_float("value", 0.0) == 0.0

    def _read_pad_amounts(self, graph, node) -> Optional[List[int]]:
        if node.since_version >= 11:
            view = materialize(graph, node.inputs[1])
            if not np.issubdtype(view.dtype, np.integer):
                return None
            return view.as_int64()
        return node.get_ints("pads")

    def _single_consumer(self, graph, node):
        """(consumer node, input slot) of a node's only consumer edge."""
        consumer_id, slot = graph.consumer_edges(node.outputs[0])[0]
        return graph.get_node(consumer_id), slot

    def _can_absorb_padding(self, consumer, pads_size) -> bool:
        if not (
            matches_op(consumer, "Conv", CONV_VERSIONS)
            or matches_op(consumer, "AveragePool", AVERAGE_POOL_VERSIONS)
            or matches_op(consumer, "MaxPool", MAX_POOL_VERSIONS)
        ):
            return False

        # MaxPool indices are relative to the un-padded input
        if len(consumer.present_outputs) != 1:
            return False

        if consumer.get_string("auto_pad", "NOTSET") != "NOTSET":
            return False

        existing = consumer.get_ints("pads", [])
        if existing and len(existing) != pads_size - 4:
            return False

        if consumer.op_type == "AveragePool":
            # count_include_pad defaults to 0
            if any(existing) and consumer.get_int("count_include_pad", 0) == 0:
                return False
        return True

    # ------------------------------------------------------------------
    # Transform
    # ------------------------------------------------------------------

    def _apply(self, graph, pad_node):
        pad_amounts = self._read_pad_amounts(graph, pad_node)
        if pad_amounts is None or not pads_are_fusable(pad_amounts):
            return RewriteEffect.NO_CHANGE

        child, _ = self._single_consumer(graph, pad_node)
        target = self._single_consumer(graph, child)[0] if child.op_type == "Cast" else child
        merged = merge_pads(target.get_ints("pads", []), pad_amounts)
        pad_input = pad_node.inputs[0]

        graph.set_node_attribute(target, "pads", merged)
        if target.op_type == "AveragePool":
            # The absorbed padding was averaged in before the rewrite
            graph.set_node_attribute(target, "count_include_pad", 1)

        graph.replace_node_input(child, 0, pad_input)
        if child.op_type == "Cast":
            graph.set_tensor_shape(child.outputs[0], graph.get_tensor(pad_input).shape)

        logging.debug(
            f"[PadFusion] Folded {pad_node.name} into {target.name}: pads={merged}"
        )
        graph.remove_node(pad_node.id)
        return RewriteEffect.NODE_REMOVED
