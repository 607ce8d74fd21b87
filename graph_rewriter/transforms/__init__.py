"""
Graph Rewrite Rules
===================

按变换类型组织的改写规则集合。

目录结构：
transforms/
├── scalar/              # 标量/局部优化
│   └── identity_elimination.py   # Identity 旁路
│
└── fusion/              # 融合优化
    └── pad_fusion.py             # Pad 折叠进 Conv / Pool

Rule 执行顺序建议：
1. identity_elimination (priority=10) - 去掉 Identity，暴露 Pad -> Conv 相邻关系
2. pad_fusion           (priority=20) - Pad 融合
"""

# Scalar rules
from .scalar import (
    IdentityEliminationRule,
)

# Fusion rules
from .fusion import (
    PadFusionRule,
)

__all__ = [
    # Scalar
    'IdentityEliminationRule',
    # Fusion
    'PadFusionRule',
]
