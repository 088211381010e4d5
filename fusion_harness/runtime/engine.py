"""
Inference engine on top of tf.Session.

A graph is compiled for a device by lowering fused ops, converting floating
precision to the device's inference precision hint and importing the result
into a private tf.Graph. One engine serves the whole process (get_engine).
"""

import atexit
import weakref
from typing import Dict, List, Optional

import numpy as np
import tensorflow.compat.v1 as tf
from tensorflow.core.protobuf import rewriter_config_pb2

from ..core import GraphOptimizer
from ..errors import CompilationError
from ..transforms.precision import ConvertPrecisionPass, IOPrecisionPass
from ..utils.graph_utils import clone_graph, get_node_dtype, get_placeholders
from ..utils.logger import logger as logging
from .lowering import lower_graph

INFERENCE_PRECISION_HINT = "INFERENCE_PRECISION_HINT"
INTRA_OP_THREADS = "INTRA_OP_THREADS"
INTER_OP_THREADS = "INTER_OP_THREADS"

DEVICES = {
    "CPU": "/device:CPU:0",
    "TEMPLATE": "/device:CPU:0",
    "GPU": "/device:GPU:0",
}

DEFAULT_PROPERTIES = {
    INFERENCE_PRECISION_HINT: "float32",
    INTRA_OP_THREADS: 0,
    INTER_OP_THREADS: 0,
}


def _check_property(key):
    if key not in DEFAULT_PROPERTIES:
        raise KeyError(f"Unsupported property: {key}")


class CompiledModel:
    """A graph imported into its own tf.Graph with an open session."""

    def __init__(self, graph_def, device, properties, output_names, output_dtypes):
        self.device = device
        self.properties = dict(properties)
        self.inputs: List[str] = [node.name for node in get_placeholders(graph_def)]
        self.outputs: List[str] = list(output_names)
        self._input_dtypes = {node.name: get_node_dtype(node) for node in get_placeholders(graph_def)}
        self._output_dtypes = list(output_dtypes)

        self.graph = tf.Graph()
        with self.graph.as_default(), tf.device(DEVICES[device]):
            tf.import_graph_def(graph_def, name="")

        session_config = tf.ConfigProto(
            allow_soft_placement=True,
            intra_op_parallelism_threads=int(self.properties[INTRA_OP_THREADS]),
            inter_op_parallelism_threads=int(self.properties[INTER_OP_THREADS]),
        )
        # The remapper rewrites Mul/AddV2 chains with [K, 1] constants into
        # FusedBatchNorm, which rejects scales that are not 1-D.
        session_config.graph_options.rewrite_options.remapping = rewriter_config_pb2.RewriterConfig.OFF
        self.session = tf.Session(graph=self.graph, config=session_config)

    def infer(self, feeds: Dict[str, np.ndarray]) -> List[np.ndarray]:
        """Runs the model; ``feeds`` maps input names to arrays."""
        if self.session is None:
            raise RuntimeError("Model is closed")
        missing = set(self.inputs) - set(feeds)
        if missing:
            raise ValueError(f"Missing inputs: {sorted(missing)}")

        feed_dict = {
            f"{name}:0": np.asarray(feeds[name]).astype(self._input_dtypes[name].as_numpy_dtype)
            for name in self.inputs
        }
        results = self.session.run([f"{name}:0" for name in self.outputs], feed_dict=feed_dict)
        return [
            np.asarray(value).astype(dtype.as_numpy_dtype) if dtype is not None else np.asarray(value)
            for value, dtype in zip(results, self._output_dtypes)
        ]

    def close(self):
        if self.session is not None:
            self.session.close()
            self.session = None


class InferenceEngine:
    """Compiles GraphDefs for named devices and answers property queries."""

    def __init__(self):
        self._properties = {device: dict(DEFAULT_PROPERTIES) for device in DEVICES}
        self._models = weakref.WeakSet()

    def _device_properties(self, device):
        if device not in DEVICES:
            raise CompilationError(f"Unknown device: {device}")
        return self._properties[device]

    def set_property(self, device, config):
        """Updates the default properties of ``device``."""
        for key in config:
            _check_property(key)
        self._device_properties(device).update(config)

    def get_property(self, device, key):
        _check_property(key)
        return self._device_properties(device)[key]

    def compile_model(self, graph_def, device, config=None, output_nodes=None) -> CompiledModel:
        """
        Compiles a copy of ``graph_def`` for ``device``.

        Args:
            graph_def: Graph to compile; it is not modified.
            device: One of DEVICES.
            config: Properties overriding the device defaults for this model.
            output_nodes: Result node names; defaults to the graph's sinks.

        Raises:
            CompilationError: For unknown devices or properties, or when the
                graph cannot be lowered or imported.
        """
        try:
            properties = dict(self._device_properties(device))
            for key, value in (config or {}).items():
                _check_property(key)
                properties[key] = value
            precision = tf.as_dtype(properties[INFERENCE_PRECISION_HINT])

            output_nodes = list(output_nodes or IOPrecisionPass.find_sinks(graph_def))
            nodes = {node.name: node for node in graph_def.node}
            output_dtypes = [get_node_dtype(nodes[name]) for name in output_nodes]

            lowered = lower_graph(clone_graph(graph_def), protected_nodes=output_nodes)
            optimizer = GraphOptimizer(lowered)
            compiled_def = ConvertPrecisionPass(dst=precision).transform(optimizer)

            model = CompiledModel(compiled_def, device, properties, output_nodes, output_dtypes)
        except CompilationError as e:
            logging.error(f"Compilation for {device} failed: {e}")
            raise
        except Exception as e:
            logging.error(f"Compilation for {device} failed: {type(e).__name__}: {e}")
            raise CompilationError(f"Cannot compile graph for {device}: {e}") from e

        self._models.add(model)
        logging.debug(
            f"Compiled model for {device} ({DEVICES[device]}), precision={precision.name}, "
            f"inputs={model.inputs}, outputs={model.outputs}"
        )
        return model

    def shutdown(self):
        """Closes every model this engine compiled that is still alive."""
        for model in list(self._models):
            model.close()
        self._models = weakref.WeakSet()


_ENGINE: Optional[InferenceEngine] = None


def get_engine() -> InferenceEngine:
    """The process-wide engine, created on first use and shut down at exit."""
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = InferenceEngine()
        atexit.register(_ENGINE.shutdown)
    return _ENGINE
