"""
Harness - GroupNormalization 融合等价性测试
==========================================

执行顺序（每个用例）：
params.validate_params → builder.GraphBuilder → transformation.TransformationRunner
    → comparator.DualExecutionComparator
整体由 isolation.FaultIsolationHarness 在子进程中监控（崩溃 / 超时）。
"""

from .params import (
    EPS_BY_TYPE,
    ExecutionEnvironment,
    FusionTestParams,
    GraphSpec,
    expand_params,
    validate_params,
)
from .shapes import realize_static_shapes, shape_size, to_tensor_shape
from .builder import GraphBuilder, InitializerData, INPUT_NAME, OUTPUT_NAME
from .transformation import TransformationResult, TransformationRunner
from .comparator import ComparisonThreshold, DualExecutionComparator, match_parameters
from .report import OpsSummary, count_ops
from .isolation import CaseResult, FaultIsolationHarness, TestOutcome, execute_case
from .case import GroupNormFusionCase
from .cases import ALL_CASES, ELEMENT_TYPES, NEGATIVE_CASES, POSITIVE_CASES

__all__ = [
    'EPS_BY_TYPE',
    'ExecutionEnvironment',
    'FusionTestParams',
    'GraphSpec',
    'expand_params',
    'validate_params',
    'realize_static_shapes',
    'shape_size',
    'to_tensor_shape',
    'GraphBuilder',
    'InitializerData',
    'INPUT_NAME',
    'OUTPUT_NAME',
    'TransformationResult',
    'TransformationRunner',
    'ComparisonThreshold',
    'DualExecutionComparator',
    'match_parameters',
    'OpsSummary',
    'count_ops',
    'CaseResult',
    'FaultIsolationHarness',
    'TestOutcome',
    'execute_case',
    'GroupNormFusionCase',
    'ALL_CASES',
    'ELEMENT_TYPES',
    'NEGATIVE_CASES',
    'POSITIVE_CASES',
]
