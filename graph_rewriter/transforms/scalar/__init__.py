"""
Scalar Rules - 标量/局部优化
============================

对单个节点进行局部变换，不改变计算本身。

包含的 Rule：
- identity_elimination.py : 旁路并删除 Identity 节点

特点：
- 低开销
- 通常先于融合类 Rule 执行，暴露更多融合机会
"""

from .identity_elimination import IdentityEliminationRule

__all__ = [
    'IdentityEliminationRule',
]
