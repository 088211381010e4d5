"""
Harness Tests - 融合等价性测试框架测试模块
==========================================

模块列表：
- test_params.py     : 参数校验、用例展开、静态形状实例化
- test_builder.py    : 参考图构建（节点命名、权重布局、可复现性）
- test_comparator.py : 数值比较阈值、输入配对、双端执行
- test_isolation.py  : 子进程隔离（通过 / 失败 / 跳过 / 崩溃 / 超时）与统计
"""
