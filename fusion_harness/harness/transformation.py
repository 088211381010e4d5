"""Applies the transformation under test to a clone of the reference graph."""

from dataclasses import dataclass
from typing import Sequence

import tensorflow.compat.v1 as tf

from ..errors import PassAssertionError
from ..runner import OptimizationPipeline
from ..transforms.combine import FUSED_OP_TYPE
from ..utils.graph_utils import clone_graph, count_ops_of_type, is_dynamic
from ..utils.logger import logger as logging, report_stage
from .builder import OUTPUT_NAME


@dataclass
class TransformationResult:
    graph_def: tf.GraphDef
    fused_count: int
    dynamic: bool


class TransformationRunner:
    """
    Runs registered passes on a copy of a graph and checks how many fused
    operators they produced: exactly one on the positive path, none on the
    negative path. The reference graph itself must never contain one.
    """

    def __init__(
        self,
        passes: Sequence[str] = ("group_norm_fusion",),
        fused_op_type: str = FUSED_OP_TYPE,
        output_nodes: Sequence[str] = (OUTPUT_NAME,),
        report_stages: bool = False,
    ):
        self.passes = list(passes)
        self.fused_op_type = fused_op_type
        self.output_nodes = list(output_nodes)
        self.report_stages = report_stages

    def expected_count(self, positive):
        return 1 if positive else 0

    @report_stage("TRANSFORM")
    def run(self, reference_graph: tf.GraphDef, positive: bool) -> TransformationResult:
        """
        Raises:
            PassExecutionError: If a pass raised.
            PassAssertionError: If a fused-operator count is unexpected.
        """
        before = count_ops_of_type(reference_graph, self.fused_op_type)
        if before != 0:
            raise PassAssertionError("Reference", self.fused_op_type, before, 0)

        pipeline = OptimizationPipeline(
            graph_def=clone_graph(reference_graph),
            passes=self.passes,
            output_nodes=self.output_nodes,
        )
        transformed = pipeline.run()

        after = count_ops_of_type(transformed, self.fused_op_type)
        expected = self.expected_count(positive)
        if after != expected:
            raise PassAssertionError("Transformed", self.fused_op_type, after, expected)

        dynamic = is_dynamic(transformed)
        if dynamic:
            logging.info("Transformed graph is dynamic, numeric validation will be skipped")
        return TransformationResult(transformed, after, dynamic)
