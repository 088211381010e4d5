"""
I/O Precision Pass (io_precision)

将图的输入 (Placeholder) 与输出的元素类型统一为指定类型，内部计算保持原类型。

    Placeholder(T_in) ─→ consumers
        ⇒ Placeholder(T) ─→ Cast(T → T_in) "<name>/convert" ─→ consumers

    out(T_out)
        ⇒ "<out>/pre_convert"(T_out) ─→ Cast(T_out → T) "<out>"

输出节点保留原名，因此下游按名字取结果的代码不受影响。
"""

import tensorflow.compat.v1 as tf
from tensorflow.core.framework import attr_value_pb2

from ...core import BasePass, PassRegistry
from ...utils.graph_utils import (
    build_consumer_index,
    create_node,
    get_node_dtype,
    type_attr,
    update_node_inputs,
)
from ...utils.logger import logger as logging


def make_cast_node(name, input_name, src_dtype, dst_dtype):
    return create_node(
        "Cast",
        name,
        inputs=[input_name],
        attr={
            "SrcT": type_attr(src_dtype),
            "DstT": type_attr(dst_dtype),
            "Truncate": attr_value_pb2.AttrValue(b=False),
        },
    )


@PassRegistry.register("io_precision", opt_level=3, priority=90)
class IOPrecisionPass(BasePass):
    """Normalizes the element type at graph inputs and outputs."""

    def __init__(self, element_type="float32", output_nodes=None):
        super().__init__(name="IOPrecision")
        self.element_type = tf.as_dtype(element_type)
        self.output_nodes = list(output_nodes) if output_nodes else None

    @staticmethod
    def find_sinks(graph_def):
        """Nodes nothing consumes, excluding constants and inputs."""
        consumers = build_consumer_index(graph_def)
        return [
            node.name
            for node in graph_def.node
            if node.op not in ("Const", "Placeholder") and not consumers.get(node.name)
        ]

    def transform(
        self,
        optimizer,
        step=None,
        debug_dir=None,
        auto_cleanup=True,
        protected_nodes=None,
    ):
        graph_def = optimizer.graph_def
        outputs = set(self.output_nodes or self.find_sinks(graph_def))

        renames = {}
        input_names = set()
        casts = []
        for node in graph_def.node:
            dtype = get_node_dtype(node)
            if dtype is None or dtype == self.element_type:
                continue
            if node.op == "Placeholder":
                renames[node.name] = f"{node.name}/convert"
                input_names.add(node.name)
                casts.append(make_cast_node(renames[node.name], node.name, self.element_type, dtype))
            elif node.name in outputs:
                renames[node.name] = f"{node.name}/pre_convert"
                casts.append(make_cast_node(node.name, renames[node.name], dtype, self.element_type))

        if not casts:
            logging.debug(f"[{self.name}] Inputs and outputs are already {self.element_type.name}")
            return graph_def

        result = tf.GraphDef()
        result.library.CopyFrom(graph_def.library)
        result.versions.CopyFrom(graph_def.versions)
        for node in graph_def.node:
            new_node = result.node.add()
            new_node.CopyFrom(node)
            update_node_inputs(new_node, renames)
            if node.name in input_names:
                new_node.attr["dtype"].CopyFrom(type_attr(self.element_type))
            elif node.name in renames:
                new_node.name = renames[node.name]
        result.node.extend(casts)

        logging.info(
            f"[{self.name}] Inserted {len(casts)} Cast node(s) "
            f"({len(input_names)} input(s)) for {self.element_type.name}"
        )
        optimizer.load_state(result)
        self._dump(result, step, debug_dir)
        return result
