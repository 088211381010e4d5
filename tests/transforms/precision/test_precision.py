"""
Precision Transform Tests - 精度变换测试
=======================================

测试内容：
1. test_io_precision_inserts_casts    - 输入/输出插入 Cast，输出保留原名
2. test_io_precision_noop             - 类型一致时图不变
3. test_convert_precision_all_floats  - 所有浮点类型属性与 Const 数值被转换
4. test_convert_precision_only_src    - 只转换指定的源类型，整数不受影响
"""

import unittest
import numpy as np
import tensorflow.compat.v1 as tf
from fusion_harness.core import GraphOptimizer
from fusion_harness.transforms.precision import IOPrecisionPass, ConvertPrecisionPass
from fusion_harness.utils import (
    create_const_node,
    create_node,
    get_const_array,
    get_node_dtype,
    shape_attr,
    type_attr,
)

tf.disable_v2_behavior()


def make_graph(dtype=tf.float32):
    t_attr = type_attr(dtype)
    graph_def = tf.GraphDef()
    graph_def.node.extend([
        create_node("Placeholder", "x", attr={"dtype": t_attr, "shape": shape_attr([2, 3])}),
        create_const_node("w", [[1.5, 2.5, 3.5]], dtype, shape=[1, 3]),
        create_const_node("axis", [1], tf.int32, shape=[1]),
        create_node("Mul", "mul", inputs=["x", "w"], attr={"T": t_attr}),
        create_node("Sum", "out", inputs=["mul", "axis"], attr={"T": t_attr, "Tidx": type_attr(tf.int32)}),
    ])
    return graph_def


class TestIOPrecision(unittest.TestCase):
    def test_io_precision_inserts_casts(self):
        optimizer = GraphOptimizer(make_graph(tf.float32))
        result = IOPrecisionPass("float16", output_nodes=["out"]).transform(optimizer)
        node_map = {n.name: n for n in result.node}

        self.assertEqual(get_node_dtype(node_map["x"]), tf.float16)
        self.assertEqual(node_map["x/convert"].op, "Cast")
        self.assertEqual(list(node_map["mul"].input), ["x/convert", "w"])

        self.assertEqual(node_map["out"].op, "Cast")
        self.assertEqual(list(node_map["out"].input), ["out/pre_convert"])
        self.assertEqual(get_node_dtype(node_map["out"]), tf.float16)
        self.assertEqual(node_map["out/pre_convert"].op, "Sum")
        # Optimizer state follows the new graph
        self.assertIn("out/pre_convert", optimizer.nodes)

    def test_io_precision_noop(self):
        graph_def = make_graph(tf.float32)
        optimizer = GraphOptimizer(graph_def)
        result = IOPrecisionPass(tf.float32).transform(optimizer)
        self.assertEqual(result, graph_def)

    def test_find_sinks(self):
        self.assertEqual(IOPrecisionPass.find_sinks(make_graph()), ["out"])


class TestConvertPrecision(unittest.TestCase):
    def test_convert_precision_all_floats(self):
        optimizer = GraphOptimizer(make_graph(tf.float32))
        result = ConvertPrecisionPass(dst="float16").transform(optimizer)
        node_map = {n.name: n for n in result.node}

        for name in ("x", "w", "mul", "out"):
            self.assertEqual(get_node_dtype(node_map[name]), tf.float16, name)
        w = get_const_array(node_map["w"])
        self.assertEqual(w.dtype, np.float16)
        np.testing.assert_array_equal(w, np.array([[1.5, 2.5, 3.5]], dtype=np.float16))
        self.assertEqual(node_map["out"].attr["Tidx"].type, tf.int32.as_datatype_enum)
        self.assertEqual(get_const_array(node_map["axis"]).dtype, np.int32)

    def test_convert_precision_only_src(self):
        optimizer = GraphOptimizer(make_graph(tf.float64))
        result = ConvertPrecisionPass(dst="float32", src="float16").transform(optimizer)
        for node in result.node:
            if node.name != "axis":
                self.assertEqual(get_node_dtype(node), tf.float64, node.name)


if __name__ == "__main__":
    unittest.main()
