"""
Graph Rewriter Test Suite
=========================

测试模块组织：

tests/
├── framework/           # 核心框架测试
│   ├── test_ir.py                # 图 IR 与边簿记
│   ├── test_constants.py         # 常量解析
│   ├── test_core.py              # op 匹配、规则注册与索引
│   ├── test_driver.py            # 规则驱动器
│   ├── test_graph_io.py          # 模型读写
│   ├── test_infrastructure.py    # Pipeline、回滚机制、命令行
│   ├── test_logging.py           # 日志系统测试
│   └── test_visualize.py         # DOT 导出
│
├── transforms/          # 改写规则测试
│   ├── scalar/
│   │   └── test_identity_elimination.py
│   └── fusion/
│       └── test_pad_fusion.py
│
└── test_consistency.py  # 改写前后数值一致性（onnx 参考实现）

运行测试：
    # 使用 pytest 运行全部
    python -m pytest tests/ -v

    # 运行特定模块
    python -m pytest tests/framework/ -v
    python -m pytest tests/transforms/ -v
"""
