"""
Runtime - 推理执行
==================

- engine.py   : InferenceEngine / CompiledModel（基于 tf.Session），进程级单例 get_engine()
- lowering.py : 将融合算子（GroupNormalization）展开为 TensorFlow 原语
"""

from .engine import (
    CompiledModel,
    InferenceEngine,
    get_engine,
    DEVICES,
    INFERENCE_PRECISION_HINT,
    INTRA_OP_THREADS,
    INTER_OP_THREADS,
)
from .lowering import GroupNormLoweringPass, KERNEL_LOWERINGS, lower_graph

__all__ = [
    'CompiledModel',
    'InferenceEngine',
    'get_engine',
    'DEVICES',
    'INFERENCE_PRECISION_HINT',
    'INTRA_OP_THREADS',
    'INTER_OP_THREADS',
    'GroupNormLoweringPass',
    'KERNEL_LOWERINGS',
    'lower_graph',
]
