"""
Graph Transforms
================

按照 LLVM 风格组织的图变换 Pass 集合。

目录结构：
transforms/
├── combine/             # 组合/融合优化
│   └── group_norm_fusion.py   # GroupNormalization 融合
│
└── precision/           # 精度变换
    ├── io_precision.py        # 输入/输出元素类型归一化
    └── convert_precision.py   # 浮点精度整体转换

Pass 执行顺序建议：
1. group_norm_fusion  (priority=30)  - 融合按组归一化子图
2. io_precision       (priority=90)  - 统一输入输出精度（仅用于参考图）
3. convert_precision  (priority=95)  - 按推理精度提示转换（由运行时调用）
"""

# Combine transforms
from .combine import (
    GroupNormFusionPass,
)

# Precision transforms
from .precision import (
    IOPrecisionPass,
    ConvertPrecisionPass,
)

__all__ = [
    # Combine
    'GroupNormFusionPass',
    # Precision
    'IOPrecisionPass',
    'ConvertPrecisionPass',
]
