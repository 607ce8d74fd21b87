"""
Transform Tests - 改写规则测试模块
==================================

按照 transforms 目录结构组织的测试：

tests/transforms/
├── scalar/              # 标量/局部规则测试
│   └── test_identity_elimination.py  # Identity 消除测试
│
└── fusion/              # 融合规则测试
    └── test_pad_fusion.py            # Pad 融合测试
"""
