"""
Test parameters of the group normalization fusion harness.

FusionTestParams is the raw, picklable parameter set of one case;
validate_params turns it into an immutable GraphSpec before any graph is
built.
"""

import dataclasses
import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import tensorflow.compat.v1 as tf

from ..errors import ParameterValidationError
from ..runtime.engine import INFERENCE_PRECISION_HINT
from .shapes import shape_size, shape_to_str, to_tensor_shape

# Baseline per-element tolerance of each supported element type.
EPS_BY_TYPE = {
    "float64": 1e-8,
    "float32": 1e-4,
    "float16": 1e-3,
    "bfloat16": 1e-2,
}


@dataclass
class ExecutionEnvironment:
    """Device name plus the properties a graph is compiled with."""

    device: str = "CPU"
    config: Dict[str, Any] = field(default_factory=dict)

    def copy(self) -> "ExecutionEnvironment":
        return ExecutionEnvironment(self.device, dict(self.config))

    def ensure_precision_hint(self, element_type):
        """Sets the inference precision hint unless one is configured."""
        if INFERENCE_PRECISION_HINT not in self.config:
            self.config[INFERENCE_PRECISION_HINT] = tf.as_dtype(element_type).name

    def describe(self):
        cfg = "_".join(f"{k}={v}" for k, v in sorted(self.config.items()))
        return f"{self.device}({cfg})"


@dataclass
class FusionTestParams:
    """
    Raw parameters of one case.

    Shapes are tuples: ``None`` entries mark dynamic dimensions, a ``None``
    data shape marks a dynamic rank and ``()`` marks an absent optional
    tensor.
    """

    data_shape: Optional[Tuple[Optional[int], ...]]
    instance_gamma_shape: Tuple[int, ...] = ()
    instance_beta_shape: Tuple[int, ...] = ()
    gamma_shape: Tuple[int, ...] = ()
    beta_shape: Tuple[int, ...] = ()
    num_groups: int = 1
    epsilon: float = 1e-5
    positive: bool = True
    target: ExecutionEnvironment = field(default_factory=ExecutionEnvironment)
    reference: ExecutionEnvironment = field(default_factory=lambda: ExecutionEnvironment("TEMPLATE"))

    def describe(self) -> str:
        return (
            f"Input={shape_to_str(self.data_shape)}_"
            f"InstNormGamma={shape_to_str(self.instance_gamma_shape)}_"
            f"InstNormBeta={shape_to_str(self.instance_beta_shape)}_"
            f"GroupNormGamma={shape_to_str(self.gamma_shape)}_"
            f"GroupNormBeta={shape_to_str(self.beta_shape)}_"
            f"NumGroups={self.num_groups}_"
            f"Epsilon={self.epsilon:g}_"
            f"PositiveTest={str(self.positive).lower()}_"
            f"Device={self.target.describe()}_"
            f"RefDevice={self.reference.describe()}"
        )


@dataclass(frozen=True)
class GraphSpec:
    data_shape: tf.TensorShape
    instance_gamma_shape: Tuple[int, ...]
    instance_beta_shape: Tuple[int, ...]
    gamma_shape: Tuple[int, ...]
    beta_shape: Tuple[int, ...]
    num_groups: int
    epsilon: float
    element_type: str
    num_channels: int
    instance_gamma_present: bool
    instance_beta_present: bool
    positive: bool

    @property
    def rank(self) -> int:
        return self.data_shape.rank


def validate_params(params: FusionTestParams, element_type) -> GraphSpec:
    """
    Validates ``params`` for ``element_type`` and derives a GraphSpec.

    On the positive path present instance tensors must hold exactly
    ``num_groups`` elements and gamma/beta exactly ``num_channels``. On the
    negative path presence only depends on the shape being non-empty, so
    ill-shaped tensors stay in the graph.

    Raises:
        ParameterValidationError: If the parameters cannot describe a graph.
    """
    try:
        dtype = tf.as_dtype(element_type)
    except TypeError as e:
        raise ParameterValidationError(f"Unknown element type: {element_type}") from e
    if dtype.name not in EPS_BY_TYPE:
        raise ParameterValidationError(
            f"Unsupported element type {dtype.name}, expected one of {sorted(EPS_BY_TYPE)}"
        )

    data_shape = to_tensor_shape(params.data_shape)
    if data_shape.rank is None:
        raise ParameterValidationError("Rank of input tensor has to be static!")
    if data_shape.rank < 2:
        raise ParameterValidationError("Expected at least two dimensions in input tensor!")
    num_channels = data_shape.as_list()[1]
    if num_channels is None:
        raise ParameterValidationError("Channel dimension in input tensor has to be static!")

    if params.num_groups < 1:
        raise ParameterValidationError(f"Number of groups has to be positive, got {params.num_groups}")
    if params.epsilon < 0:
        raise ParameterValidationError(f"Epsilon has to be non-negative, got {params.epsilon}")

    instance_gamma_shape = tuple(params.instance_gamma_shape)
    instance_beta_shape = tuple(params.instance_beta_shape)
    gamma_shape = tuple(params.gamma_shape)
    beta_shape = tuple(params.beta_shape)

    instance_gamma_present = instance_gamma_shape != ()
    instance_beta_present = instance_beta_shape != ()

    if params.positive:
        if instance_gamma_present and shape_size(instance_gamma_shape) != params.num_groups:
            raise ParameterValidationError(
                "Shape of instance norm gamma has to either be empty or contain exactly <numGroups> elements"
            )
        if instance_beta_present and shape_size(instance_beta_shape) != params.num_groups:
            raise ParameterValidationError(
                "Shape of instance norm beta has to either be empty shape or contain exactly <numGroups> elements"
            )
        if shape_size(gamma_shape) != num_channels:
            raise ParameterValidationError("Shape of group norm gamma has to contain exactly <numChannels> elements")
        if shape_size(beta_shape) != num_channels:
            raise ParameterValidationError("Shape of group norm beta has to contain exactly <numChannels> elements")

    return GraphSpec(
        data_shape=data_shape,
        instance_gamma_shape=instance_gamma_shape,
        instance_beta_shape=instance_beta_shape,
        gamma_shape=gamma_shape,
        beta_shape=beta_shape,
        num_groups=params.num_groups,
        epsilon=float(params.epsilon),
        element_type=dtype.name,
        num_channels=num_channels,
        instance_gamma_present=instance_gamma_present,
        instance_beta_present=instance_beta_present,
        positive=params.positive,
    )


def expand_params(bases: Iterable[FusionTestParams], **axes) -> List[FusionTestParams]:
    """
    Cartesian product of ``bases`` with named field axes.

    Example:
        expand_params(BASES, positive=[True], target=[ExecutionEnvironment("CPU")])
    """
    names = list(axes)
    expanded = []
    for base in bases:
        for values in itertools.product(*(axes[name] for name in names)):
            expanded.append(dataclasses.replace(base, **dict(zip(names, values))))
    return expanded
