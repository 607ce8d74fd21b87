"""
Framework Tests - 核心框架测试模块
===================================

测试图 IR、规则驱动器和周边设施：

模块列表：
- test_ir.py                : 图 IR（边簿记、删除保护、只读窗口、拓扑序、属性访问）
- test_constants.py         : 编译期常量判定与只读视图
- test_core.py              : op 匹配、规则注册表、按 op_type 索引
- test_driver.py            : 不动点迭代、NodeModified 重试、迭代上限
- test_graph_io.py          : ONNX 模型读写与版本解析
- test_infrastructure.py    : OptimizationPipeline、失败回滚、命令行
- test_logging.py           : 日志系统配置和级别控制
- test_visualize.py         : DOT 导出
"""
