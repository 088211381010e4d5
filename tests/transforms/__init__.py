"""
Transform Tests - Pass 测试模块
===============================

按照 transforms 目录结构组织的测试：

tests/transforms/
├── combine/             # 融合测试
│   └── test_group_norm_fusion.py  # GroupNormalization 融合与拒绝条件
│
└── precision/           # 精度测试
    └── test_precision.py          # IOPrecisionPass / ConvertPrecisionPass
"""
