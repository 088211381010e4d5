"""
Reference graph of the group normalization decomposition.

    input ─→ pre_reshape [N, G, -1] ─→ mvn (axis 2, eps inside sqrt)
          ─→ [instance_gamma_mul] ─→ [instance_beta_add]
          ─→ post_reshape (Shape(input)) ─→ gamma_mul ─→ output (beta add)
"""

from typing import Dict, Optional

import numpy as np
import tensorflow.compat.v1 as tf
from tensorflow.core.framework import attr_value_pb2

from ..utils.graph_utils import SubgraphBuilder, shape_attr, type_attr
from .params import GraphSpec
from .shapes import shape_size

INPUT_NAME = "input"
OUTPUT_NAME = "output"

# One fixed seed per weight tensor.
WEIGHT_SEEDS = {
    "instance_gamma": 1,
    "instance_beta": 2,
    "gamma": 3,
    "beta": 4,
}

_INT32 = type_attr(tf.int32)


class InitializerData:
    """Deterministic values of the weight tensors present in a GraphSpec."""

    LOW = 1.0
    HIGH = 11.0

    def __init__(self, values: Dict[str, np.ndarray]):
        self.values = values

    @classmethod
    def generate(cls, spec: GraphSpec) -> "InitializerData":
        shapes = {
            "instance_gamma": spec.instance_gamma_shape if spec.instance_gamma_present else None,
            "instance_beta": spec.instance_beta_shape if spec.instance_beta_present else None,
            "gamma": spec.gamma_shape,
            "beta": spec.beta_shape,
        }
        np_dtype = tf.as_dtype(spec.element_type).as_numpy_dtype
        values = {}
        for name, shape in shapes.items():
            if shape is None:
                continue
            rng = np.random.RandomState(WEIGHT_SEEDS[name])
            values[name] = rng.uniform(cls.LOW, cls.HIGH, size=shape_size(shape)).astype(np_dtype)
        return cls(values)

    def get(self, name) -> Optional[np.ndarray]:
        return self.values.get(name)


class GraphBuilder:
    """Builds a fresh GraphDef for a GraphSpec on every build() call."""

    def __init__(self, spec: GraphSpec, init: InitializerData):
        self.spec = spec
        self.init = init

    def _weight(self, b, name, rank):
        """Const laid out on axis 0 of a rank-``rank`` tensor: [K, 1, ...]."""
        values = self.init.get(name)
        shape = [values.size] + [1] * (rank - 1)
        return b.add_const(name, values, self.spec.element_type, shape=shape)

    def build(self) -> tf.GraphDef:
        spec = self.spec
        dtype = tf.as_dtype(spec.element_type)
        t_attr = type_attr(dtype)
        rank = spec.rank
        keep_dims = attr_value_pb2.AttrValue(b=True)
        b = SubgraphBuilder()

        data = b.add_node("Placeholder", INPUT_NAME, attr={"dtype": t_attr, "shape": shape_attr(spec.data_shape)})

        # [N, G, -1] with N taken from the runtime shape
        data_shape = b.add_node("Shape", "pre_reshape/shape", [data], {"T": t_attr, "out_type": _INT32})
        begin = b.add_const("pre_reshape/begin", [0], tf.int32, shape=[1])
        end = b.add_const("pre_reshape/end", [1], tf.int32, shape=[1])
        strides = b.add_const("pre_reshape/strides", [1], tf.int32, shape=[1])
        batch = b.add_node(
            "StridedSlice",
            "pre_reshape/batch",
            [data_shape, begin, end, strides],
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
        groups = b.add_const("pre_reshape/groups", [spec.num_groups, -1], tf.int32, shape=[2])
        axis = b.add_const("pre_reshape/axis", 0, tf.int32)
        target = b.add_node(
            "ConcatV2",
            "pre_reshape/target",
            [batch, groups, axis],
            {"N": attr_value_pb2.AttrValue(i=2), "T": _INT32, "Tidx": _INT32},
        )
        grouped = b.add_node("Reshape", "pre_reshape", [data, target], {"T": t_attr, "Tshape": _INT32})

        axes = b.add_const("mvn/axes", [2], tf.int32, shape=[1])
        mean = b.add_node("Mean", "mvn/mean", [grouped, axes], {"T": t_attr, "Tidx": _INT32, "keep_dims": keep_dims})
        sq_diff = b.add_node("SquaredDifference", "mvn/sq_diff", [grouped, mean], {"T": t_attr})
        variance = b.add_node(
            "Mean", "mvn/variance", [sq_diff, axes], {"T": t_attr, "Tidx": _INT32, "keep_dims": keep_dims}
        )
        epsilon = b.add_const("mvn/epsilon", spec.epsilon, dtype)
        add_eps = b.add_node("AddV2", "mvn/add_eps", [variance, epsilon], {"T": t_attr})
        rsqrt = b.add_node("Rsqrt", "mvn/rsqrt", [add_eps], {"T": t_attr})
        centered = b.add_node("Sub", "mvn/centered", [grouped, mean], {"T": t_attr})
        current = b.add_node("Mul", "mvn", [centered, rsqrt], {"T": t_attr})

        if spec.instance_gamma_present:
            weight = self._weight(b, "instance_gamma", 2)
            current = b.add_node("Mul", "instance_gamma_mul", [current, weight], {"T": t_attr})
        if spec.instance_beta_present:
            weight = self._weight(b, "instance_beta", 2)
            current = b.add_node("AddV2", "instance_beta_add", [current, weight], {"T": t_attr})

        restore_shape = b.add_node("Shape", "post_reshape/shape", [data], {"T": t_attr, "out_type": _INT32})
        current = b.add_node("Reshape", "post_reshape", [current, restore_shape], {"T": t_attr, "Tshape": _INT32})

        gamma = self._weight(b, "gamma", rank - 1)
        current = b.add_node("Mul", "gamma_mul", [current, gamma], {"T": t_attr})
        beta = self._weight(b, "beta", rank - 1)
        b.add_node("AddV2", OUTPUT_NAME, [current, beta], {"T": t_attr})

        graph_def = tf.GraphDef()
        graph_def.node.extend(b.get_nodes())
        return graph_def
