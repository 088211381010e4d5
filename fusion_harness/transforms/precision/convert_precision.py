"""
Convert Precision Pass (convert_precision)

将图内浮点类型整体替换为目标类型：类型属性 (T / dtype / SrcT / DstT) 被改写，
Const 的数值按目标类型重新编码。整数类型（形状、轴等）不受影响。
"""

import tensorflow.compat.v1 as tf
from tensorflow.python.framework import tensor_util

from ...core import BasePass, PassRegistry
from ...utils.graph_utils import clone_graph, get_const_array
from ...utils.logger import logger as logging

_TYPE_ATTRS = ("T", "dtype", "SrcT", "DstT")


@PassRegistry.register("convert_precision", opt_level=3, priority=95)
class ConvertPrecisionPass(BasePass):
    """
    Rewrites floating point types to ``dst``.

    Args:
        dst: Target floating point type.
        src: Only this type is converted; ``None`` converts every floating type.
    """

    def __init__(self, dst="float32", src=None):
        super().__init__(name="ConvertPrecision")
        self.dst = tf.as_dtype(dst)
        self.src = tf.as_dtype(src) if src is not None else None

    def _should_convert(self, dtype):
        if not dtype.is_floating or dtype == self.dst:
            return False
        return self.src is None or dtype == self.src

    def transform(
        self,
        optimizer,
        step=None,
        debug_dir=None,
        auto_cleanup=True,
        protected_nodes=None,
    ):
        result = clone_graph(optimizer.graph_def)
        converted = 0
        for node in result.node:
            touched = False
            for key in _TYPE_ATTRS:
                if key not in node.attr or node.attr[key].WhichOneof("value") != "type":
                    continue
                if not self._should_convert(tf.as_dtype(node.attr[key].type)):
                    continue
                if node.op == "Const" and key == "dtype":
                    value = get_const_array(node).astype(self.dst.as_numpy_dtype)
                    node.attr["value"].tensor.CopyFrom(
                        tensor_util.make_tensor_proto(value, dtype=self.dst, shape=value.shape)
                    )
                node.attr[key].type = self.dst.as_datatype_enum
                touched = True
            converted += touched

        if converted:
            logging.info(f"[{self.name}] Converted {converted} node(s) to {self.dst.name}")
        optimizer.load_state(result)
        self._dump(result, step, debug_dir)
        return result
