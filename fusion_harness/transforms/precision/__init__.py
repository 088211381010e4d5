"""
Precision Transforms - 精度变换
================================

调整图中浮点张量的元素类型，不改变计算结构。

包含的 Pass：
- io_precision.py      : 在图的输入/输出处插入 Cast，使接口元素类型一致
- convert_precision.py : 将图内所有（或指定）浮点类型整体替换为目标类型
"""

from .io_precision import IOPrecisionPass
from .convert_precision import ConvertPrecisionPass

__all__ = [
    'IOPrecisionPass',
    'ConvertPrecisionPass',
]
