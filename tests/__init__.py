"""
Fusion Harness Test Suite
=========================

测试模块组织：

tests/
├── framework/           # 核心框架测试
│   ├── test_core.py              # 基础引擎测试（节点查找、模式匹配、形状查询）
│   ├── test_control_dep_loss.py  # 控制依赖保留测试
│   ├── test_infrastructure.py    # Pipeline 优先级与失败处理测试
│   ├── test_logging.py           # 日志系统测试
│   └── test_pruning.py           # 图裁剪测试
│
├── transforms/          # Pass 测试
│   ├── combine/                  # GroupNormalization 融合测试
│   └── precision/                # I/O 精度与精度转换测试
│
├── runtime/             # 推理引擎与融合算子降级测试
├── harness/             # 参数、建图、比较、子进程隔离测试
│
├── test_consistency.py  # 端到端场景（融合 + 数值比较）
└── test_edge_cases.py   # 边界情况（rank 2、G == C、常量输入）

运行测试：
    # 使用 pytest 运行全部
    python -m pytest tests/ -v

    # 运行特定模块
    python -m pytest tests/framework/ -v
    python -m pytest tests/harness/ -v
"""
