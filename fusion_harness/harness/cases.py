"""
Case table of the group normalization fusion harness.

Every entry of POSITIVE_CASES must fuse and match numerically; every entry of
NEGATIVE_CASES carries ill-shaped weights and must be left alone.
"""

from .params import ExecutionEnvironment, FusionTestParams, expand_params

ELEMENT_TYPES = ("float32", "float16", "bfloat16")

# (data_shape, instance_gamma, instance_beta, gamma, beta, num_groups, epsilon)
_POSITIVE_BASES = [
    ((1, 320), (), (), (320,), (320,), 1, 1e-5),
    ((1, 320, 2, 2), (1,), (1,), (320,), (320,), 1, 1e-5),
    ((5, 320, 2, 2, 2), (320,), (320,), (320,), (320,), 320, 1e-5),
    ((None, 320, None, None), (), (), (320,), (320,), 1, 1e-5),
    ((3, 320), (32,), (32,), (320,), (320,), 32, 1e-4),
    ((2, 9, 4, 5, 6), (3,), (3,), (9,), (9,), 3, 1e-4),
    ((1, 512, None, None), (128,), (128,), (512,), (512,), 128, 1e-6),
    ((2, 6, 4, 4), (), (), (6,), (6,), 3, 1e-5),
    ((1, 192, 2, 2), (64,), (64,), (192,), (192,), 64, 1e-6),
]

_NEGATIVE_BASES = [
    ((1, 320), (5,), (5,), (320,), (320,), 1, 1e-5),
    ((1, 320, 2, 2), (1,), (1,), (160,), (320,), 1, 1e-5),
    ((1, 320, 2, 2), (), (), (320,), (), 1, 1e-5),
    ((1, 320, 2, 2), (2,), (), (320,), (320,), 1, 1e-5),
    ((5, 320, 2, 2, 2), (320,), (), (320,), (), 20, 1e-5),
    ((1, 512, 2, 2), (16,), (32,), (512,), (512,), 32, 1e-6),
    ((2, 6, 4, 4), (2,), (), (6,), (6,), 3, 1e-5),
    ((2, 6, 4, 4), (), (), (5,), (6,), 3, 1e-5),
]

DEFAULT_ENVIRONMENTS = {
    "target": [ExecutionEnvironment("CPU")],
    "reference": [ExecutionEnvironment("TEMPLATE")],
}


def _to_params(bases, positive):
    return [
        FusionTestParams(
            data_shape=data_shape,
            instance_gamma_shape=instance_gamma,
            instance_beta_shape=instance_beta,
            gamma_shape=gamma,
            beta_shape=beta,
            num_groups=num_groups,
            epsilon=epsilon,
            positive=positive,
        )
        for data_shape, instance_gamma, instance_beta, gamma, beta, num_groups, epsilon in bases
    ]


POSITIVE_CASES = expand_params(_to_params(_POSITIVE_BASES, True), **DEFAULT_ENVIRONMENTS)
NEGATIVE_CASES = expand_params(_to_params(_NEGATIVE_BASES, False), **DEFAULT_ENVIRONMENTS)
ALL_CASES = POSITIVE_CASES + NEGATIVE_CASES
