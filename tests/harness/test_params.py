"""
Parameter Tests - 参数校验测试
==============================

测试内容：
1. test_valid_positive_params      - 合法参数生成 GraphSpec
2. test_instance_gamma_mismatch    - 正向路径实例 gamma 元素数必须等于 numGroups
3. test_rank_and_channel_checks    - 秩与通道维检查
4. test_negative_path_presence     - 反向路径只按形状是否为空判定存在
5. test_expand_params              - 笛卡尔积展开
6. test_realize_static_shapes      - 动态维度实例化
"""

import unittest
import tensorflow.compat.v1 as tf
from fusion_harness.errors import ParameterValidationError
from fusion_harness.harness import (
    ExecutionEnvironment,
    FusionTestParams,
    expand_params,
    realize_static_shapes,
    shape_size,
    validate_params,
)
from fusion_harness.runtime import INFERENCE_PRECISION_HINT

tf.disable_v2_behavior()


def make_params(**kwargs):
    values = dict(
        data_shape=(2, 6, 4, 4),
        gamma_shape=(6,),
        beta_shape=(6,),
        num_groups=3,
    )
    values.update(kwargs)
    return FusionTestParams(**values)


class TestValidateParams(unittest.TestCase):
    def test_valid_positive_params(self):
        spec = validate_params(make_params(instance_gamma_shape=(3,), instance_beta_shape=(3, 1)), "float16")
        self.assertEqual(spec.rank, 4)
        self.assertEqual(spec.num_channels, 6)
        self.assertEqual(spec.element_type, "float16")
        self.assertTrue(spec.instance_gamma_present)
        self.assertTrue(spec.instance_beta_present)
        self.assertTrue(spec.positive)

    def test_absent_instance_tensors(self):
        spec = validate_params(make_params(), tf.float32)
        self.assertFalse(spec.instance_gamma_present)
        self.assertFalse(spec.instance_beta_present)
        self.assertEqual(spec.element_type, "float32")

    def test_instance_gamma_mismatch(self):
        with self.assertRaises(ParameterValidationError) as ctx:
            validate_params(make_params(instance_gamma_shape=(2,)), "float32")
        self.assertIn("instance norm gamma", str(ctx.exception))
        with self.assertRaises(ParameterValidationError) as ctx:
            validate_params(make_params(instance_beta_shape=(4,)), "float32")
        self.assertIn("instance norm beta", str(ctx.exception))

    def test_group_norm_weight_mismatch(self):
        with self.assertRaises(ParameterValidationError):
            validate_params(make_params(gamma_shape=(5,)), "float32")
        with self.assertRaises(ParameterValidationError):
            validate_params(make_params(beta_shape=()), "float32")

    def test_rank_and_channel_checks(self):
        with self.assertRaises(ParameterValidationError) as ctx:
            validate_params(make_params(data_shape=None), "float32")
        self.assertIn("static", str(ctx.exception))
        with self.assertRaises(ParameterValidationError):
            validate_params(make_params(data_shape=(6,)), "float32")
        with self.assertRaises(ParameterValidationError) as ctx:
            validate_params(make_params(data_shape=(2, None, 4)), "float32")
        self.assertIn("Channel dimension", str(ctx.exception))

    def test_scalar_checks(self):
        with self.assertRaises(ParameterValidationError):
            validate_params(make_params(num_groups=0), "float32")
        with self.assertRaises(ParameterValidationError):
            validate_params(make_params(epsilon=-1e-5), "float32")
        with self.assertRaises(ParameterValidationError):
            validate_params(make_params(), "int32")
        # ValueError keeps working for callers that do not know the harness
        with self.assertRaises(ValueError):
            validate_params(make_params(), "no_such_type")

    def test_negative_path_presence(self):
        spec = validate_params(make_params(instance_gamma_shape=(2,), gamma_shape=(5,), positive=False), "float32")
        self.assertTrue(spec.instance_gamma_present)
        self.assertEqual(spec.instance_gamma_shape, (2,))
        self.assertEqual(spec.gamma_shape, (5,))
        self.assertFalse(spec.positive)


class TestParamHelpers(unittest.TestCase):
    def test_describe(self):
        name = make_params(data_shape=(None, 6, 4)).describe()
        self.assertTrue(name.startswith("Input=[?,6,4]_InstNormGamma=[]_"))
        self.assertIn("_NumGroups=3_", name)
        self.assertIn("_PositiveTest=true_", name)
        self.assertTrue(name.endswith("_Device=CPU()_RefDevice=TEMPLATE()"))

    def test_expand_params(self):
        bases = [make_params(), make_params(num_groups=2)]
        expanded = expand_params(
            bases,
            positive=[True, False],
            target=[ExecutionEnvironment("CPU"), ExecutionEnvironment("GPU")],
        )
        self.assertEqual(len(expanded), 8)
        self.assertEqual([p.num_groups for p in expanded[:4]], [3, 3, 3, 3])
        self.assertEqual([p.target.device for p in expanded[:2]], ["CPU", "GPU"])
        self.assertEqual(len({p.describe() for p in expanded}), 8)
        # Bases are left untouched
        self.assertTrue(bases[0].positive)

    def test_precision_hint_on_copy(self):
        env = ExecutionEnvironment("CPU")
        copied = env.copy()
        copied.ensure_precision_hint("float16")
        self.assertEqual(copied.config[INFERENCE_PRECISION_HINT], "float16")
        self.assertNotIn(INFERENCE_PRECISION_HINT, env.config)

        copied.ensure_precision_hint("float32")
        self.assertEqual(copied.config[INFERENCE_PRECISION_HINT], "float16")


class TestShapes(unittest.TestCase):
    def test_realize_static_shapes(self):
        self.assertEqual(realize_static_shapes((2, 6, 4)), [(2, 6, 4)])
        self.assertEqual(realize_static_shapes((None, 320, None)), [(1, 320, 1), (3, 320, 3)])
        self.assertEqual(realize_static_shapes((None, 4), samples=(2, 2, 5)), [(2, 4), (5, 4)])
        with self.assertRaises(ValueError):
            realize_static_shapes(None)

    def test_shape_size(self):
        self.assertEqual(shape_size(()), 1)
        self.assertEqual(shape_size((320,)), 320)
        self.assertEqual(shape_size((32, 1)), 32)


if __name__ == "__main__":
    unittest.main()
