"""One end-to-end group normalization fusion case: validate, build, transform, compare."""

import tensorflow.compat.v1 as tf

from ..transforms.combine import FUSED_OP_TYPE
from ..utils.logger import logger as logging
from .builder import GraphBuilder, InitializerData
from .comparator import DualExecutionComparator
from .params import FusionTestParams, validate_params
from .report import count_ops
from .shapes import realize_static_shapes
from .transformation import TransformationRunner


class GroupNormFusionCase:
    """
    Picklable case object run by FaultIsolationHarness.

    The same scenario runs for any element type; the type is a constructor
    argument rather than a subclass.
    """

    op_type = FUSED_OP_TYPE

    def __init__(self, params: FusionTestParams, element_type, report_stages=False):
        self.params = params
        self.element_type = tf.as_dtype(element_type).name
        self.report_stages = report_stages
        self.name = f"GroupNormalizationFusion_T={self.element_type}_{params.describe()}"
        self.op_counts = {}

    def __repr__(self):
        return self.name

    def run(self):
        spec = validate_params(self.params, self.element_type)
        init = InitializerData.generate(spec)
        reference = GraphBuilder(spec, init).build()

        runner = TransformationRunner(report_stages=self.report_stages)
        result = runner.run(reference, spec.positive)
        self.op_counts = count_ops(result.graph_def)

        if not spec.positive:
            return self.op_counts
        if result.dynamic:
            logging.info(f"{self.name}: dynamic graph, numeric validation skipped")
            return self.op_counts

        comparator = DualExecutionComparator(
            self.element_type,
            self.params.target.copy(),
            self.params.reference.copy(),
            report_stages=self.report_stages,
        )
        input_shapes = [(shape,) for shape in realize_static_shapes(spec.data_shape)]
        comparator.run(result.graph_def, reference, input_shapes)
        return self.op_counts
