"""
Group Normalization Fusion Pass (group_norm_fusion)

================================================================================
Pass 注册信息
================================================================================
Registration:
    Name: "group_norm_fusion"
    Optimization Level: 1
    Priority: 30
    Iterative: Yes (runs until convergence)

Class:
    GroupNormFusionPass (inherits from PatternRewritePass)

================================================================================
目的 (Purpose)
================================================================================
将按组归一化的分解子图融合为单个 GroupNormalization 节点。

================================================================================
算法 (Algorithm)
================================================================================
原始模式:
    x ─→ Reshape([N, G, -1]) ─→ MVN(axis=2, eps inside sqrt)
      ─→ [Mul(instance_gamma)] ─→ [AddV2(instance_beta)]
      ─→ Reshape(Shape(x)) ─→ Mul(gamma) ─→ AddV2(beta) → out

    MVN 以 TensorFlow 原语表示:
        mean     = Mean(r, [2], keep_dims)
        variance = Mean(SquaredDifference(r, mean), [2], keep_dims)
        mvn      = Mul(Sub(r, mean), Rsqrt(AddV2(variance, eps)))

优化后:
    x ─→ GroupNormalization(x, scale[C], bias[C], num_groups=G, epsilon=eps) → out

    instance_gamma / instance_beta 被折叠进 per-channel 参数:
        scale = gamma * repeat(instance_gamma, C / G)
        bias  = beta + gamma * repeat(instance_beta, C / G)

================================================================================
融合条件 (Fusion Conditions)
================================================================================
1. x 的 rank 已知且 >= 2，通道维 (axis 1) 为静态且能被 G 整除。
2. 前置 Reshape 目标形状为 [batch, G, -1]（Const 或 Shape 切片拼接）。
3. MVN 在最后一维归一化，keep_dims=True，epsilon 在根号内。
4. instance_gamma / instance_beta（若存在）为 Const，恰有 G 个元素且位于组轴。
5. gamma / beta 为 Const，恰有 C 个元素且位于通道轴。
6. 后置 Reshape 恢复的是同一个 x 的 Shape。

任一条件不满足时 Pass 不改变图。
"""

import numpy as np
import tensorflow.compat.v1 as tf

from ...core import Op, Any, CommutativeOp, PassRegistry, PatternRewritePass
from ...utils.graph_utils import (
    create_node,
    create_const_node,
    data_inputs,
    get_const_array,
    make_output_shapes_attr,
    type_attr,
)
from ...utils.logger import logger as logging

FUSED_OP_TYPE = "GroupNormalization"

_FLOAT_TYPES = (tf.float16, tf.bfloat16, tf.float32, tf.float64)


def axis_aligned(shape, rank, axis):
    """True if ``shape`` broadcasts against a rank-``rank`` tensor along ``axis`` only."""
    shape = list(shape)
    if len(shape) > rank:
        return False
    padded = [1] * (rank - len(shape)) + shape
    return all(dim == 1 for i, dim in enumerate(padded) if i != axis)


@PassRegistry.register("group_norm_fusion", opt_level=1, priority=30)
class GroupNormFusionPass(PatternRewritePass):
    """
    Fuses the decomposed group normalization subgraph into one
    GroupNormalization node.
    """

    def __init__(self):
        pattern = CommutativeOp(
            "AddV2",
            CommutativeOp(
                "Mul",
                Op(
                    "Reshape",
                    Any(alias="normalized"),
                    Op("Shape", Any(alias="data"), alias="restore_shape"),
                    alias="post_reshape",
                ),
                Op("Const", alias="gamma"),
                alias="gamma_mul",
            ),
            Op("Const", alias="beta"),
            alias="root",
        )
        super().__init__(pattern, self._fuse_group_norm, name="GroupNormFusion")

        self.mvn_pattern = CommutativeOp(
            "Mul",
            Op(
                "Sub",
                Any(alias="centered_in"),
                Op("Mean", Any(alias="mean_in"), Op("Const", alias="mean_axes"), alias="mean"),
                alias="centered",
            ),
            Op(
                "Rsqrt",
                CommutativeOp(
                    "AddV2",
                    Op(
                        "Mean",
                        CommutativeOp("SquaredDifference", Any(alias="sq_a"), Any(alias="sq_b")),
                        Op("Const", alias="var_axes"),
                        alias="variance",
                    ),
                    Op("Const", alias="epsilon"),
                ),
                alias="rsqrt",
            ),
            alias="mvn",
        )

    def _decline(self, root, reason):
        logging.debug(f"[GroupNormFusion] Skipping {root.name}: {reason}")
        return None

    def _fuse_group_norm(self, match, optimizer):
        root = match.matched_nodes["root"]
        data = match.matched_nodes["data"]

        dtype = optimizer.get_node_attr(root, "T")
        if dtype is None or tf.as_dtype(dtype) not in _FLOAT_TYPES:
            return self._decline(root, "element type is not floating point")

        data_shape = optimizer.get_node_shape(data)
        if data_shape is None or len(data_shape) < 2:
            return self._decline(root, "input rank is unknown or below 2")
        rank = len(data_shape)
        num_channels = data_shape[1]
        if num_channels < 0:
            return self._decline(root, "channel dimension is dynamic")

        node, instance_beta = self._peel_affine(match.matched_nodes["normalized"], "AddV2", optimizer)
        node, instance_gamma = self._peel_affine(node, "Mul", optimizer)

        mvn = self.mvn_pattern.match(node, optimizer)
        if mvn is None:
            return self._decline(root, "no MVN subgraph before the affine tail")
        pre_reshape = mvn.matched_nodes["centered_in"]
        epsilon = self._check_mvn(mvn, pre_reshape, optimizer)
        if epsilon is None:
            return self._decline(root, "MVN axes, keep_dims or epsilon mode do not match")

        if pre_reshape.op != "Reshape" or optimizer.input_node(pre_reshape, 0) is not data:
            return self._decline(root, "normalized tensor is not a reshape of the restored input")
        num_groups = self._resolve_group_count(optimizer.input_node(pre_reshape, 1), data, data_shape, optimizer)
        if num_groups is None or num_groups <= 0 or num_channels % num_groups:
            return self._decline(root, f"cannot split {num_channels} channels into groups")

        gamma = self._affine_values(match.matched_nodes["gamma"], num_channels, rank)
        beta = self._affine_values(match.matched_nodes["beta"], num_channels, rank)
        if gamma is None or beta is None:
            return self._decline(root, f"gamma/beta must hold exactly {num_channels} per-channel values")

        per_group = num_channels // num_groups
        scale, bias = gamma, beta
        if instance_gamma is not None:
            values = self._affine_values(instance_gamma, num_groups, 3)
            if values is None:
                return self._decline(root, f"instance gamma must hold exactly {num_groups} values")
            scale = gamma * np.repeat(values, per_group)
        if instance_beta is not None:
            values = self._affine_values(instance_beta, num_groups, 3)
            if values is None:
                return self._decline(root, f"instance beta must hold exactly {num_groups} values")
            bias = beta + gamma * np.repeat(values, per_group)

        scale_node = create_const_node(f"{root.name}/scale", scale, dtype, shape=[num_channels])
        bias_node = create_const_node(f"{root.name}/bias", bias, dtype, shape=[num_channels])
        fused = create_node(
            FUSED_OP_TYPE,
            root.name,
            inputs=[pre_reshape.input[0], scale_node.name, bias_node.name],
            attr={"T": type_attr(dtype)},
        )
        fused.attr["num_groups"].i = num_groups
        fused.attr["epsilon"].f = epsilon
        fused.attr["_output_shapes"].CopyFrom(make_output_shapes_attr([data_shape]))

        logging.info(
            f"[GroupNormFusion] Fused: {root.name} (channels={num_channels}, groups={num_groups}, "
            f"epsilon={epsilon})"
        )
        return [fused, scale_node, bias_node]

    @staticmethod
    def _peel_affine(node, op_type, optimizer):
        """Split ``op_type(x, Const)`` into (x, Const); (node, None) otherwise."""
        if node.op != op_type or len(data_inputs(node)) != 2:
            return node, None
        for const_idx in (1, 0):
            const = optimizer.input_node(node, const_idx)
            other = optimizer.input_node(node, 1 - const_idx)
            if const is not None and other is not None and const.op == "Const" and other.op != "Const":
                return other, const
        return node, None

    def _check_mvn(self, mvn, pre_reshape, optimizer):
        """Returns epsilon when the MVN is over the last axis with eps inside sqrt."""
        nodes = mvn.matched_nodes
        mean = nodes["mean"]
        if nodes["mean_in"] is not pre_reshape:
            return None
        if {nodes["sq_a"].name, nodes["sq_b"].name} != {pre_reshape.name, mean.name}:
            return None
        for mean_node, axes_node in ((mean, nodes["mean_axes"]), (nodes["variance"], nodes["var_axes"])):
            if not optimizer.get_node_attr(mean_node, "keep_dims", False):
                return None
            axes = [optimizer.canonicalize_axis(int(a), 3) for a in get_const_array(axes_node).reshape(-1)]
            if axes != [2]:
                return None
        eps = get_const_array(nodes["epsilon"])
        if eps.size != 1 or float(eps.reshape(-1)[0]) < 0:
            return None
        return float(eps.reshape(-1)[0])

    @staticmethod
    def _resolve_group_count(target, data, data_shape, optimizer):
        """Group count G from a reshape target of the form [batch, G, -1]."""
        if target is None:
            return None
        if target.op == "Const":
            values = get_const_array(target).reshape(-1).tolist()
            if len(values) != 3 or values[2] != -1 or values[0] != data_shape[0] or values[0] < 0:
                return None
            return int(values[1])

        if target.op != "ConcatV2" or len(data_inputs(target)) != 3:
            return None
        batch = optimizer.input_node(target, 0)
        groups = optimizer.input_node(target, 1)
        axis = optimizer.input_node(target, 2)
        if axis is None or axis.op != "Const" or int(get_const_array(axis)) != 0:
            return None
        if batch is None or batch.op != "StridedSlice":
            return None
        shape_of = optimizer.input_node(batch, 0)
        if shape_of is None or shape_of.op != "Shape" or optimizer.input_node(shape_of, 0) is not data:
            return None
        begin = optimizer.get_const_value(optimizer.input_node(batch, 1))
        end = optimizer.get_const_value(optimizer.input_node(batch, 2))
        if begin is None or end is None or begin.reshape(-1).tolist() != [0] or end.reshape(-1).tolist() != [1]:
            return None
        if groups is None or groups.op != "Const":
            return None
        values = get_const_array(groups).reshape(-1).tolist()
        if len(values) != 2 or values[1] != -1:
            return None
        return int(values[0])

    @staticmethod
    def _affine_values(const_node, size, rank):
        """Flat float64 values of a constant laid out on axis 1, or None."""
        values = get_const_array(const_node)
        if values.size != size or not axis_aligned(values.shape, rank, 1):
            return None
        return values.astype(np.float64).reshape(-1)
