"""
Pruning Tests - 图裁剪测试
===========================

测试内容：
1. test_dead_nodes_after_rewrite - 重写后失去消费者的节点被删除
2. test_reference_counts         - 引用计数计算
3. test_preserve_placeholders    - Placeholder 节点保留（即使无引用）
4. test_final_prune_is_iterative - final_prune 反复删除直到没有零引用节点
5. test_protected_nodes          - 受保护节点（输出）不被删除
"""

import unittest
import tensorflow.compat.v1 as tf
from fusion_harness.core import GraphOptimizer, Op, Any
from fusion_harness.utils import (
    create_node,
    compute_reference_counts,
    final_prune,
    prune_dead_nodes,
)

tf.disable_v2_behavior()


class TestPruning(unittest.TestCase):
    """图裁剪测试套件。"""
    def setUp(self):
        tf.reset_default_graph()

    def test_dead_nodes_after_rewrite(self):
        graph_def = tf.GraphDef()
        graph_def.node.extend([
            create_node("Placeholder", "x"),
            create_node("Neg", "neg", inputs=["x"]),
            create_node("Neg", "neg2", inputs=["neg"]),
            create_node("Identity", "y", inputs=["neg2"]),
        ])
        optimizer = GraphOptimizer(graph_def)

        def bypass_double_neg(match, opt):
            return [create_node("Identity", match.matched_nodes["root"].name, inputs=["x"])]

        optimizer.add_transformation(Op("Neg", Op("Neg", Any()), alias="root"), bypass_double_neg)
        optimized = optimizer.optimize(protected_nodes=["y"])
        node_names = [n.name for n in optimized.node]
        self.assertEqual(sorted(node_names), ["neg2", "x", "y"])

    def test_reference_counts(self):
        graph_def = tf.GraphDef()
        graph_def.node.append(create_node("Const", "a"))
        graph_def.node.append(create_node("Add", "b", inputs=["a", "a"]))
        graph_def.node.append(create_node("Mul", "c", inputs=["a:0", "b", "^a"]))

        refs = compute_reference_counts(graph_def)
        self.assertEqual(refs["a"], 4)
        self.assertEqual(refs["b"], 1)
        self.assertEqual(refs["c"], 0)

    def test_preserve_placeholders(self):
        graph_def = tf.GraphDef()
        graph_def.node.append(create_node("Placeholder", "unused"))
        graph_def.node.append(create_node("Const", "unused_const"))
        pruned = final_prune(graph_def, "test")
        self.assertEqual([n.name for n in pruned.node], ["unused"])

    def test_final_prune_is_iterative(self):
        graph_def = tf.GraphDef()
        graph_def.node.extend([
            create_node("Placeholder", "x"),
            create_node("Relu", "a", inputs=["x"]),
            create_node("Relu", "b", inputs=["a"]),
            create_node("Relu", "c", inputs=["b"]),
        ])
        pruned = final_prune(graph_def, "test")
        self.assertEqual([n.name for n in pruned.node], ["x"])

    def test_protected_nodes(self):
        graph_def = tf.GraphDef()
        graph_def.node.extend([
            create_node("Placeholder", "x"),
            create_node("Relu", "out", inputs=["x"]),
            create_node("Const", "orphan"),
        ])
        pruned = prune_dead_nodes(graph_def, "test", protected_nodes={"out"})
        self.assertEqual([n.name for n in pruned.node], ["x", "out"])
        pruned = final_prune(pruned, "test", protected_nodes={"out"})
        self.assertEqual([n.name for n in pruned.node], ["x", "out"])


if __name__ == "__main__":
    unittest.main()
