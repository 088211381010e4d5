"""
Numeric equivalence of a transformed graph and its reference.

Both graphs are compiled by the inference engine, fed the same generated
inputs and every output pair is compared with a tolerance of
sqrt(element count) * eps(element type), used as both atol and rtol.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import tensorflow.compat.v1 as tf

from ..errors import HarnessError, NumericMismatchError
from ..runtime.engine import INFERENCE_PRECISION_HINT, get_engine
from ..transforms.precision import IOPrecisionPass
from ..core import GraphOptimizer
from ..utils.graph_utils import clone_graph, get_node_dtype, get_placeholders, shape_from_proto
from ..utils.logger import logger as logging, report_stage
from .builder import OUTPUT_NAME
from .params import EPS_BY_TYPE, ExecutionEnvironment


@dataclass(frozen=True)
class ComparisonThreshold:
    value: float

    @classmethod
    def for_output(cls, element_count: int, element_type) -> "ComparisonThreshold":
        return cls(math.sqrt(element_count) * EPS_BY_TYPE[tf.as_dtype(element_type).name])

    @property
    def atol(self):
        return self.value

    @property
    def rtol(self):
        return self.value

    def compare(self, name, actual, expected):
        """
        Raises:
            NumericMismatchError: On a shape mismatch or when any element is
                outside |actual - expected| <= atol + rtol * |expected|.
        """
        actual = np.asarray(actual).astype(np.float64)
        expected = np.asarray(expected).astype(np.float64)
        if actual.shape != expected.shape:
            raise NumericMismatchError(
                f"Output '{name}': shape {actual.shape} differs from reference shape {expected.shape}"
            )

        close = np.isclose(actual, expected, rtol=self.rtol, atol=self.atol)
        if close.all():
            return
        mismatches = np.argwhere(~close)
        first = tuple(int(i) for i in mismatches[0])
        with np.errstate(invalid="ignore"):
            max_diff = float(np.nanmax(np.abs(actual - expected)))
        raise NumericMismatchError(
            f"Output '{name}': {len(mismatches)} of {actual.size} element(s) differ beyond "
            f"atol=rtol={self.value:.3e}, max abs diff {max_diff:.6g}; "
            f"first at {first}: actual {actual[first]!r}, expected {expected[first]!r}"
        )


def match_parameters(target_graph: tf.GraphDef, reference_graph: tf.GraphDef) -> List[Tuple[str, str]]:
    """
    Pairs the inputs of two independent graphs by position, element type
    and rank. Returns (target_name, reference_name) pairs.
    """
    target_inputs = get_placeholders(target_graph)
    reference_inputs = get_placeholders(reference_graph)
    if len(target_inputs) != len(reference_inputs):
        raise HarnessError(
            f"Graphs have {len(target_inputs)} and {len(reference_inputs)} inputs, cannot match them"
        )

    pairs = []
    for target, reference in zip(target_inputs, reference_inputs):
        target_shape = shape_from_proto(target.attr["shape"].shape) if "shape" in target.attr else None
        reference_shape = shape_from_proto(reference.attr["shape"].shape) if "shape" in reference.attr else None
        target_rank = None if target_shape is None else len(target_shape)
        reference_rank = None if reference_shape is None else len(reference_shape)
        if get_node_dtype(target) != get_node_dtype(reference) or target_rank != reference_rank:
            raise HarnessError(
                f"Input '{target.name}' ({get_node_dtype(target)}, rank {target_rank}) does not correspond "
                f"to '{reference.name}' ({get_node_dtype(reference)}, rank {reference_rank})"
            )
        pairs.append((target.name, reference.name))
    return pairs


class DualExecutionComparator:
    """Compiles and runs a transformed graph and its reference, then compares outputs."""

    INPUT_LOW = -5.0
    INPUT_HIGH = 5.0

    def __init__(
        self,
        element_type,
        target: ExecutionEnvironment,
        reference: ExecutionEnvironment,
        engine=None,
        output_nodes: Sequence[str] = (OUTPUT_NAME,),
        input_seed: int = 0,
        report_stages: bool = False,
    ):
        self.element_type = tf.as_dtype(element_type)
        self.target = target
        self.reference = reference
        self.engine = engine or get_engine()
        self.output_nodes = list(output_nodes)
        self.input_seed = input_seed
        self.report_stages = report_stages
        self.reference_precision: Optional[str] = None

    def configure_devices(self):
        self.target.ensure_precision_hint(self.element_type)
        self.reference.ensure_precision_hint(self.element_type)

    def configure_reference(self, reference_graph):
        """Copy of the reference graph with its I/O set to the element type."""
        optimizer = GraphOptimizer(clone_graph(reference_graph))
        return IOPrecisionPass(self.element_type, output_nodes=self.output_nodes).transform(optimizer)

    @report_stage("TARGET")
    def compile_model(self, transformed_graph):
        return self.engine.compile_model(
            transformed_graph, self.target.device, self.target.config, output_nodes=self.output_nodes
        )

    @report_stage("REFERENCE")
    def compile_ref_model(self, reference_graph):
        model = self.engine.compile_model(
            reference_graph, self.reference.device, self.reference.config, output_nodes=self.output_nodes
        )
        try:
            self.reference_precision = self.engine.get_property(self.reference.device, INFERENCE_PRECISION_HINT)
        except Exception as e:
            logging.warning(f"Impossible to get Inference Precision with exception: {e}")
        return model

    def generate_inputs(self, static_shapes: Sequence[Tuple[int, ...]], index=0) -> List[np.ndarray]:
        """One array per graph input, reproducible for a given shape index."""
        rng = np.random.RandomState(self.input_seed + index)
        np_dtype = self.element_type.as_numpy_dtype
        return [rng.uniform(self.INPUT_LOW, self.INPUT_HIGH, size=shape).astype(np_dtype) for shape in static_shapes]

    @report_stage("VALIDATE")
    def validate(self, target_model, reference_model, pairs, inputs):
        target_feeds: Dict[str, np.ndarray] = {}
        reference_feeds: Dict[str, np.ndarray] = {}
        for (target_name, reference_name), value in zip(pairs, inputs):
            target_feeds[target_name] = value
            reference_feeds[reference_name] = value

        actual = target_model.infer(target_feeds)
        expected = reference_model.infer(reference_feeds)
        if len(actual) != len(expected):
            raise NumericMismatchError(f"Target returned {len(actual)} outputs, reference {len(expected)}")
        for name, actual_value, expected_value in zip(target_model.outputs, actual, expected):
            threshold = ComparisonThreshold.for_output(np.asarray(expected_value).size, self.element_type)
            threshold.compare(name, actual_value, expected_value)
            logging.debug(f"Output '{name}' matches reference within {threshold.value:.3e}")

    def run(self, transformed_graph, reference_graph, input_shapes: Sequence[Sequence[Tuple[int, ...]]]):
        """
        Compares the graphs for every entry of ``input_shapes`` (one static
        shape per graph input).

        Raises:
            CompilationError: If either graph fails to compile.
            NumericMismatchError: If any output differs beyond tolerance.
        """
        self.configure_devices()
        reference_graph = self.configure_reference(reference_graph)
        pairs = match_parameters(transformed_graph, reference_graph)

        target_model = self.compile_model(transformed_graph)
        try:
            reference_model = self.compile_ref_model(reference_graph)
            try:
                for index, static_shapes in enumerate(input_shapes):
                    inputs = self.generate_inputs(static_shapes, index)
                    self.validate(target_model, reference_model, pairs, inputs)
            finally:
                reference_model.close()
        finally:
            target_model.close()
