"""
Fusion Rules - 融合规则
=======================

把一个节点的效果合并进相邻节点并删除前者。

包含的 Rule：
- pad_fusion.py : Pad -> [Cast] -> Conv/AveragePool/MaxPool 的 pads 折叠
"""

from .pad_fusion import PadFusionRule

__all__ = [
    'PadFusionRule',
]
