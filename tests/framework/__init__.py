"""
Framework Tests - 核心框架测试模块
===================================

测试 GraphOptimizer 核心引擎的各项功能：

模块列表：
- test_core.py              : 基础功能（节点查找、交换律匹配、控制依赖、形状查询）
- test_control_dep_loss.py  : 控制依赖在 rewrite 过程中的保留
- test_infrastructure.py    : OptimizationPipeline 优先级、Pass 失败即终止
- test_logging.py           : 日志系统配置、级别控制、阶段日志
- test_pruning.py           : 死代码消除、引用计数、Placeholder 保留
"""
