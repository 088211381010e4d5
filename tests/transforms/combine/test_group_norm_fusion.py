"""
Group Norm Fusion Tests - GroupNormalization 融合测试
====================================================

测试内容：
1. test_fuses_basic_pattern          - [2,6,4,4], G=3 融合为单个 GroupNormalization
2. test_folds_instance_affine        - instance gamma/beta 折叠进 per-channel scale/bias
3. test_dynamic_batch                - batch 维动态时仍可融合
4. test_const_reshape_target         - 前置 Reshape 目标为 Const [N, G, -1]
5. test_declines_*                   - 各种不满足条件的图保持不变

融合后：
    input ─→ GroupNormalization(input, output/scale, output/bias) "output"
"""

import unittest
import numpy as np
import tensorflow.compat.v1 as tf
from tensorflow.core.framework import attr_value_pb2
from fusion_harness.core import GraphOptimizer
from fusion_harness.harness import FusionTestParams, GraphBuilder, InitializerData, validate_params
from fusion_harness.transforms.combine import GroupNormFusionPass, FUSED_OP_TYPE
from fusion_harness.utils import count_ops_of_type, create_const_node, create_node, get_const_array

tf.disable_v2_behavior()


def build_graph(data_shape, num_groups, instance_gamma=(), instance_beta=(), gamma=None, beta=None,
                positive=True, element_type="float32", epsilon=1e-5):
    channels = data_shape[1]
    params = FusionTestParams(
        data_shape=data_shape,
        instance_gamma_shape=instance_gamma,
        instance_beta_shape=instance_beta,
        gamma_shape=gamma if gamma is not None else (channels,),
        beta_shape=beta if beta is not None else (channels,),
        num_groups=num_groups,
        epsilon=epsilon,
        positive=positive,
    )
    spec = validate_params(params, element_type)
    init = InitializerData.generate(spec)
    return GraphBuilder(spec, init).build(), init


def run_fusion(graph_def):
    optimizer = GraphOptimizer(graph_def)
    return GroupNormFusionPass().transform(optimizer, protected_nodes=["output"])


class TestGroupNormFusion(unittest.TestCase):
    """GroupNormalization 融合测试套件。"""
    def setUp(self):
        tf.reset_default_graph()

    def _replace_node(self, graph_def, new_node):
        for node in graph_def.node:
            if node.name == new_node.name:
                node.CopyFrom(new_node)
                return
        raise KeyError(new_node.name)

    def _assert_unchanged(self, graph_def):
        original_size = len(graph_def.node)
        optimized = run_fusion(graph_def)
        self.assertEqual(count_ops_of_type(optimized, FUSED_OP_TYPE), 0)
        self.assertEqual(len(optimized.node), original_size)

    def test_fuses_basic_pattern(self):
        graph_def, init = build_graph((2, 6, 4, 4), 3)
        optimized = run_fusion(graph_def)

        node_map = {n.name: n for n in optimized.node}
        self.assertEqual(count_ops_of_type(optimized, FUSED_OP_TYPE), 1)
        fused = node_map["output"]
        self.assertEqual(fused.op, FUSED_OP_TYPE)
        self.assertEqual(list(fused.input), ["input", "output/scale", "output/bias"])
        self.assertEqual(fused.attr["num_groups"].i, 3)
        self.assertAlmostEqual(fused.attr["epsilon"].f, 1e-5)
        self.assertEqual(fused.attr["T"].type, tf.float32.as_datatype_enum)

        np.testing.assert_allclose(get_const_array(node_map["output/scale"]), init.get("gamma"), rtol=1e-6)
        np.testing.assert_allclose(get_const_array(node_map["output/bias"]), init.get("beta"), rtol=1e-6)
        # The whole decomposition is gone
        self.assertEqual(sorted(node_map), ["input", "output", "output/bias", "output/scale"])

    def test_folds_instance_affine(self):
        graph_def, init = build_graph((2, 6, 4, 4), 3, instance_gamma=(3,), instance_beta=(3,))
        optimized = run_fusion(graph_def)
        node_map = {n.name: n for n in optimized.node}
        self.assertEqual(count_ops_of_type(optimized, FUSED_OP_TYPE), 1)

        gamma = init.get("gamma").astype(np.float64)
        beta = init.get("beta").astype(np.float64)
        instance_gamma = np.repeat(init.get("instance_gamma").astype(np.float64), 2)
        instance_beta = np.repeat(init.get("instance_beta").astype(np.float64), 2)
        np.testing.assert_allclose(get_const_array(node_map["output/scale"]), gamma * instance_gamma, rtol=1e-6)
        np.testing.assert_allclose(
            get_const_array(node_map["output/bias"]), beta + gamma * instance_beta, rtol=1e-6
        )

    def test_folds_instance_gamma_only(self):
        graph_def, init = build_graph((1, 8, 3), 4, instance_gamma=(4,))
        optimized = run_fusion(graph_def)
        node_map = {n.name: n for n in optimized.node}
        self.assertEqual(count_ops_of_type(optimized, FUSED_OP_TYPE), 1)
        np.testing.assert_allclose(get_const_array(node_map["output/bias"]), init.get("beta"), rtol=1e-6)

    def test_dynamic_batch(self):
        graph_def, _ = build_graph((None, 6, None), 2)
        optimized = run_fusion(graph_def)
        self.assertEqual(count_ops_of_type(optimized, FUSED_OP_TYPE), 1)
        fused = next(n for n in optimized.node if n.op == FUSED_OP_TYPE)
        shape = fused.attr["_output_shapes"].list.shape[0]
        self.assertEqual([d.size for d in shape.dim], [-1, 6, -1])

    def test_const_reshape_target(self):
        graph_def, _ = build_graph((2, 6, 4, 4), 3)
        self._replace_node(
            graph_def, create_const_node("pre_reshape/target", [2, 3, -1], tf.int32, shape=[3])
        )
        optimized = run_fusion(graph_def)
        self.assertEqual(count_ops_of_type(optimized, FUSED_OP_TYPE), 1)

    def test_declines_mismatched_instance_gamma(self):
        graph_def, _ = build_graph((2, 6, 4, 4), 3, instance_gamma=(2,), positive=False)
        self._assert_unchanged(graph_def)

    def test_declines_mismatched_gamma(self):
        graph_def, _ = build_graph((2, 6, 4, 4), 3, gamma=(5,), positive=False)
        self._assert_unchanged(graph_def)

    def test_declines_indivisible_channels(self):
        graph_def, _ = build_graph((2, 6, 4, 4), 4, positive=False)
        self._assert_unchanged(graph_def)

    def test_declines_wrong_mvn_axis(self):
        graph_def, _ = build_graph((2, 6, 4, 4), 3)
        self._replace_node(graph_def, create_const_node("mvn/axes", [1], tf.int32, shape=[1]))
        self._assert_unchanged(graph_def)

    def test_declines_without_keep_dims(self):
        graph_def, _ = build_graph((2, 6, 4, 4), 3)
        mean = next(n for n in graph_def.node if n.name == "mvn/variance")
        mean.attr["keep_dims"].CopyFrom(attr_value_pb2.AttrValue(b=False))
        self._assert_unchanged(graph_def)

    def test_declines_gamma_on_wrong_axis(self):
        graph_def, init = build_graph((2, 6, 4, 4), 3)
        self._replace_node(graph_def, create_const_node("gamma", init.get("gamma"), tf.float32, shape=[6]))
        self._assert_unchanged(graph_def)

    def test_declines_epsilon_outside_sqrt(self):
        graph_def, _ = build_graph((2, 6, 4, 4), 3)
        # (x - mean) / (sqrt(var) + eps) instead of rsqrt(var + eps)
        add_eps = next(n for n in graph_def.node if n.name == "mvn/add_eps")
        t_attr = add_eps.attr["T"]
        add_eps.input[0] = "mvn/sqrt"
        graph_def.node.extend([create_node("Sqrt", "mvn/sqrt", inputs=["mvn/variance"], attr={"T": t_attr})])
        next(n for n in graph_def.node if n.name == "mvn/rsqrt").op = "Reciprocal"
        self._assert_unchanged(graph_def)


if __name__ == "__main__":
    unittest.main()
