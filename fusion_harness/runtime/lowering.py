"""
Kernel lowering: expands fused operators that TensorFlow has no kernel for
into primitive ops before a graph is imported.

GroupNormalization(x, scale[C], bias[C]) is lowered as

    r    = Reshape(x, [N, G, -1])
    norm = (r - mean(r)) * rsqrt(var(r) + eps)       # over axis 2
    out  = Reshape(norm, Shape(x)) * scale[C, 1..] + bias[C, 1..]
"""

import tensorflow.compat.v1 as tf
from tensorflow.core.framework import attr_value_pb2

from ..core import Op, Any, GraphOptimizer, PatternRewritePass
from ..errors import CompilationError
from ..utils.graph_utils import SubgraphBuilder, create_node, type_attr
from ..utils.logger import logger as logging

_INT32 = type_attr(tf.int32)


class GroupNormLoweringPass(PatternRewritePass):
    """Replaces each GroupNormalization node with its primitive decomposition."""

    def __init__(self):
        pattern = Op(
            "GroupNormalization",
            Any(alias="data"),
            Any(alias="scale"),
            Any(alias="bias"),
            alias="fused",
        )
        super().__init__(pattern, self._lower, name="GroupNormLowering")

    def _lower(self, match, optimizer):
        fused = match.matched_nodes["fused"]
        rank = optimizer.get_node_rank(fused)
        if rank is None:
            rank = optimizer.get_node_rank(match.matched_nodes["data"])
        if rank is None or rank < 2:
            raise CompilationError(f"Cannot lower {fused.name}: input rank must be static and at least 2")

        dtype = fused.attr["T"]
        num_groups = fused.attr["num_groups"].i
        epsilon = fused.attr["epsilon"].f
        data, scale, bias = fused.input[0], fused.input[1], fused.input[2]
        keep_dims = attr_value_pb2.AttrValue(b=True)

        b = SubgraphBuilder(f"{fused.name}/")
        shape = b.add_node("Shape", "shape", [data], {"T": dtype, "out_type": _INT32})
        begin = b.add_const("begin", [0], tf.int32, shape=[1])
        end = b.add_const("end", [1], tf.int32, shape=[1])
        strides = b.add_const("strides", [1], tf.int32, shape=[1])
        batch = b.add_node(
            "StridedSlice",
            "batch",
            [shape, begin, end, strides],
            {
                "T": _INT32,
                "Index": _INT32,
                "begin_mask": attr_value_pb2.AttrValue(i=0),
                "end_mask": attr_value_pb2.AttrValue(i=0),
                "ellipsis_mask": attr_value_pb2.AttrValue(i=0),
                "new_axis_mask": attr_value_pb2.AttrValue(i=0),
                "shrink_axis_mask": attr_value_pb2.AttrValue(i=0),
            },
        )
        groups = b.add_const("groups", [num_groups, -1], tf.int32, shape=[2])
        concat_axis = b.add_const("concat_axis", 0, tf.int32)
        target = b.add_node(
            "ConcatV2",
            "target",
            [batch, groups, concat_axis],
            {"N": attr_value_pb2.AttrValue(i=2), "T": _INT32, "Tidx": _INT32},
        )
        grouped = b.add_node("Reshape", "grouped", [data, target], {"T": dtype, "Tshape": _INT32})

        axes = b.add_const("axes", [2], tf.int32, shape=[1])
        mean = b.add_node("Mean", "mean", [grouped, axes], {"T": dtype, "Tidx": _INT32, "keep_dims": keep_dims})
        sq_diff = b.add_node("SquaredDifference", "sq_diff", [grouped, mean], {"T": dtype})
        variance = b.add_node(
            "Mean", "variance", [sq_diff, axes], {"T": dtype, "Tidx": _INT32, "keep_dims": keep_dims}
        )
        eps = b.add_const("epsilon", epsilon, tf.as_dtype(dtype.type))
        add_eps = b.add_node("AddV2", "add_eps", [variance, eps], {"T": dtype})
        rsqrt = b.add_node("Rsqrt", "rsqrt", [add_eps], {"T": dtype})
        centered = b.add_node("Sub", "centered", [grouped, mean], {"T": dtype})
        norm = b.add_node("Mul", "norm", [centered, rsqrt], {"T": dtype})
        restored = b.add_node("Reshape", "restored", [norm, shape], {"T": dtype, "Tshape": _INT32})

        param_shape = b.add_const("param_shape", [-1] + [1] * (rank - 2), tf.int32, shape=[rank - 1])
        scale_r = b.add_node("Reshape", "scale_bcast", [scale, param_shape], {"T": dtype, "Tshape": _INT32})
        bias_r = b.add_node("Reshape", "bias_bcast", [bias, param_shape], {"T": dtype, "Tshape": _INT32})
        scaled = b.add_node("Mul", "scaled", [restored, scale_r], {"T": dtype})

        nodes = b.get_nodes()
        out_node = create_node("AddV2", fused.name, [scaled, bias_r], {"T": dtype})
        if "_output_shapes" in fused.attr:
            out_node.attr["_output_shapes"].CopyFrom(fused.attr["_output_shapes"])
        logging.debug(f"[{self.name}] Lowered {fused.name} into {len(nodes) + 1} nodes")
        return nodes + [out_node]


# Fused op type -> lowering pass class
KERNEL_LOWERINGS = {
    "GroupNormalization": GroupNormLoweringPass,
}


def lower_graph(graph_def, protected_nodes=None):
    """Expands every fused op with a registered lowering; returns a new GraphDef."""
    present = {node.op for node in graph_def.node}
    optimizer = GraphOptimizer(graph_def)
    for op_type, pass_cls in KERNEL_LOWERINGS.items():
        if op_type in present:
            pass_cls().transform(optimizer, protected_nodes=protected_nodes)
    return optimizer.graph_def

