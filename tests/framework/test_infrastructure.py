"""
Infrastructure Tests - 基础设施测试
====================================

测试内容：
1. test_pipeline_runs_in_priority_order - 按 priority 执行并写出结果图
2. test_failing_pass_is_hard_failure    - Pass 抛异常时以 PassExecutionError 终止（不回滚、不继续）
3. test_unregistered_pass               - 未注册的 Pass 名直接报错
4. test_output_nodes_are_protected      - 输出节点不会被裁剪
5. test_level_selection                 - 按 opt_level 选择 Pass

Mock Passes：
- MockFailingPass  : 模拟失败的 Pass（添加节点后抛异常）
- MockSuccessPass  : 模拟成功的 Pass（正常添加节点）
"""

import unittest
import os
import tempfile
import tensorflow.compat.v1 as tf
from fusion_harness.core import (
    BasePass,
    PassRegistry,
)
from fusion_harness.errors import PassExecutionError
from fusion_harness.runner import OptimizationPipeline
from fusion_harness.utils import create_node, load_graph

tf.disable_v2_behavior()


# --- Mock passes for testing infrastructure ---
class MockFailingPass(BasePass):
    def transform(self, optimizer, step=None, debug_dir=None, **kwargs):
        optimizer.graph_def.node.extend([tf.NodeDef(name="BAD_NODE", op="NoOp")])
        optimizer.load_state(optimizer.graph_def)
        raise RuntimeError("Fail")


class MockSuccessPass(BasePass):
    def transform(self, optimizer, step=None, debug_dir=None, **kwargs):
        name = f"GOOD_NODE_{len(optimizer.graph_def.node)}"
        optimizer.graph_def.node.extend([tf.NodeDef(name=name, op="NoOp")])
        optimizer.load_state(optimizer.graph_def)
        return optimizer.graph_def


class TestInfrastructure(unittest.TestCase):
    def setUp(self):
        if "mock_fail" not in PassRegistry._registered_passes:
            PassRegistry.register("mock_fail", opt_level=9, priority=10)(MockFailingPass)
        if "mock_success" not in PassRegistry._registered_passes:
            PassRegistry.register("mock_success", opt_level=9, priority=20)(MockSuccessPass)

        self.tmp_dir = tempfile.TemporaryDirectory()
        self.input_graph = os.path.join(self.tmp_dir.name, "input.pb")
        self.output_graph = os.path.join(self.tmp_dir.name, "output.pb")
        graph = tf.GraphDef()
        graph.node.extend([create_node("Placeholder", "Input")])
        with open(self.input_graph, "wb") as f:
            f.write(graph.SerializeToString())

    def tearDown(self):
        self.tmp_dir.cleanup()

    def test_pipeline_runs_in_priority_order(self):
        pipeline = OptimizationPipeline(
            input_graph=self.input_graph,
            output_graph=self.output_graph,
            passes=["mock_success"],
        )
        pipeline.run()

        graph = load_graph(self.output_graph)
        self.assertIn("GOOD_NODE_1", [n.name for n in graph.node])
        self.assertEqual(pipeline.pass_stats["mock_success"]["nodes_before"], 1)
        self.assertEqual(pipeline.pass_stats["mock_success"]["nodes_after"], 2)

    def test_failing_pass_is_hard_failure(self):
        pipeline = OptimizationPipeline(
            input_graph=self.input_graph,
            output_graph=self.output_graph,
            passes=["mock_success", "mock_fail"],
        )
        with self.assertRaises(PassExecutionError) as ctx:
            pipeline.run()

        self.assertEqual(ctx.exception.pass_name, "mock_fail")
        self.assertIsInstance(ctx.exception.cause, RuntimeError)
        # mock_fail has the higher priority, so mock_success never ran
        self.assertNotIn("mock_success", pipeline.pass_stats)
        self.assertFalse(os.path.exists(self.output_graph))

    def test_unregistered_pass(self):
        pipeline = OptimizationPipeline(graph_def=tf.GraphDef(), passes=["no_such_pass"])
        with self.assertRaises(PassExecutionError):
            pipeline.run()

    def test_output_nodes_are_protected(self):
        pipeline = OptimizationPipeline(
            graph_def=tf.GraphDef(),
            output_nodes=["out"],
            protected_nodes=["keep"],
            config={"output_nodes": ["out2"]},
        )
        self.assertEqual(pipeline.protected_nodes, ["keep", "out", "out2"])

    def test_level_selection(self):
        self.assertIn("group_norm_fusion", PassRegistry.get_passes_by_level(1))
        self.assertNotIn("mock_success", PassRegistry.get_passes_by_level(1))
        self.assertNotIn("io_precision", PassRegistry.get_passes_by_level(1))
        level_9 = PassRegistry.get_passes_by_level(9)
        self.assertLess(level_9.index("mock_fail"), level_9.index("mock_success"))


if __name__ == "__main__":
    unittest.main()
