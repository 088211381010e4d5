"""
Combine Transforms - 组合/融合优化
===================================

将多个操作融合为单个操作，减少中间张量和内存拷贝。

包含的 Pass：
- group_norm_fusion.py : Reshape → MVN → [instance affine] → Reshape → affine
                         融合为单个 GroupNormalization

特点：
- 减少中间节点数量
- 融合失败时图保持不变
"""

from .group_norm_fusion import GroupNormFusionPass, FUSED_OP_TYPE

__all__ = [
    'GroupNormFusionPass',
    'FUSED_OP_TYPE',
]
