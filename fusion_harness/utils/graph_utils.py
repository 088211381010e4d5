"""
Graph manipulation utility functions.

Stateless helpers shared by the pass engine, the graph builder and the
inference runtime: NodeDef construction, I/O, reference counting, pruning
and a few shape/dtype queries on GraphDef protos.
"""

import os
import collections
import numpy as np
from typing import Dict, Set, Optional, List

import tensorflow.compat.v1 as tf
from tensorflow.core.framework import node_def_pb2
from tensorflow.core.framework import attr_value_pb2
from tensorflow.python.framework import tensor_util
from google.protobuf import text_format


# =======================
# Graph I/O Operations
# =======================


def create_node(op, name, inputs=None, attr=None):
    """Creates a NodeDef proto."""
    node = node_def_pb2.NodeDef()
    node.op = op
    node.name = name
    if inputs:
        node.input.extend(inputs)
    if attr:
        for k, v in attr.items():
            node.attr[k].CopyFrom(v)
    return node


def save_graph(graph_def, path):
    """Saves a GraphDef proto to a file (binary or pbtxt)."""
    output_dir = os.path.dirname(path)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir, exist_ok=True)

    if path.endswith(".pbtxt"):
        with open(path, "w") as f:
            f.write(text_format.MessageToString(graph_def))
    else:
        with open(path, "wb") as f:
            f.write(graph_def.SerializeToString())


def load_graph(path):
    """Loads a GraphDef proto from a file."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Graph file not found: {path}")

    graph_def = tf.GraphDef()
    if path.endswith(".pbtxt"):
        with open(path, "r") as f:
            text_format.Merge(f.read(), graph_def)
    else:
        with open(path, "rb") as f:
            graph_def.ParseFromString(f.read())
    return graph_def


def clone_graph(graph_def: tf.GraphDef) -> tf.GraphDef:
    """Deep copy of a GraphDef; the clone shares nothing with the original."""
    cloned = tf.GraphDef()
    cloned.CopyFrom(graph_def)
    return cloned


class SubgraphBuilder:
    """Helper to build a set of nodes for replacement."""

    def __init__(self, name_prefix=""):
        self.nodes = []
        self.prefix = name_prefix

    def add_node(self, op, name, inputs=None, attr=None):
        full_name = self.prefix + name
        node = create_node(op, full_name, inputs, attr)
        self.nodes.append(node)
        return full_name

    def add_const(self, name, value, dtype, shape=None):
        full_name = self.prefix + name
        self.nodes.append(create_const_node(full_name, value, dtype, shape))
        return full_name

    def get_nodes(self):
        return self.nodes


def type_attr(dtype) -> attr_value_pb2.AttrValue:
    """AttrValue holding a DataType enum; ``dtype`` may be a name or tf.DType."""
    return attr_value_pb2.AttrValue(type=tf.as_dtype(dtype).as_datatype_enum)


def shape_attr(dims) -> attr_value_pb2.AttrValue:
    """AttrValue holding a (partial) shape; ``None`` means unknown rank."""
    return attr_value_pb2.AttrValue(shape=tf.TensorShape(dims).as_proto())


def create_const_node(name: str, value, dtype, shape: list = None):
    """Creates a Const NodeDef with given value, dtype and shape."""
    tf_dtype = tf.as_dtype(dtype)
    np_array = np.asarray(value).astype(tf_dtype.as_numpy_dtype)
    if shape is not None and np_array.size == int(np.prod(shape)):
        np_array = np_array.reshape(shape)
    tensor = tensor_util.make_tensor_proto(np_array, dtype=tf_dtype, shape=shape)

    node = node_def_pb2.NodeDef()
    node.op = "Const"
    node.name = name
    node.attr["dtype"].CopyFrom(type_attr(tf_dtype))
    node.attr["value"].tensor.CopyFrom(tensor)
    return node


def make_output_shapes_attr(shapes: List[Optional[List[Optional[int]]]]) -> attr_value_pb2.AttrValue:
    """
    Creates an AttrValue proto for _output_shapes.

    Args:
        shapes: List of shapes; a shape is a list of ints (``None`` or -1 for
            a dynamic dimension) or ``None`` for an unknown rank.

    Returns:
        attr_value_pb2.AttrValue: The formatted attribute
    """
    attr = attr_value_pb2.AttrValue()
    for shape in shapes:
        attr.list.shape.add().CopyFrom(
            tf.TensorShape(
                None if shape is None else [None if d is None or d < 0 else d for d in shape]
            ).as_proto()
        )
    return attr


def shape_from_proto(shape_proto) -> Optional[List[int]]:
    """List of dims (-1 for dynamic) from a TensorShapeProto, None for unknown rank."""
    if shape_proto.unknown_rank:
        return None
    return [dim.size for dim in shape_proto.dim]


def get_const_array(node: tf.NodeDef) -> np.ndarray:
    """Numpy value of a Const node."""
    return tensor_util.MakeNdarray(node.attr["value"].tensor)


# =======================
# Graph Analysis Utilities
# =======================


def extract_base_name(input_name: str) -> str:
    """
    Extract base node name from input (strip port and control marker).

    Examples:
        'node:0' -> 'node'
        '^control_dep' -> 'control_dep'
        'node' -> 'node'
    """
    return input_name.split(":")[0].lstrip("^")


def data_inputs(node: tf.NodeDef) -> List[str]:
    return [i for i in node.input if not i.startswith("^")]


def compute_reference_counts(graph_def: tf.GraphDef) -> Dict[str, int]:
    """Compute reference count for each node in the graph."""
    reference_counts: Dict[str, int] = collections.defaultdict(int)
    for node in graph_def.node:
        for input_name in node.input:
            reference_counts[extract_base_name(input_name)] += 1
    return reference_counts


def build_consumer_index(graph_def: tf.GraphDef) -> Dict[str, list]:
    """Dict mapping node names to lists of consumer node names."""
    consumers = collections.defaultdict(list)
    for node in graph_def.node:
        for input_name in node.input:
            consumers[extract_base_name(input_name)].append(node.name)
    return consumers


def update_node_inputs(node: tf.NodeDef, node_mapping: Dict[str, str]):
    """
    Update node's inputs based on node_mapping (old_name -> new_name).
    Preserves port numbers and control dependency markers.
    """
    updated_inputs = []
    for input_name in node.input:
        is_control = input_name.startswith("^")
        base_name = extract_base_name(input_name)
        port = ""
        if not is_control and ":" in input_name:
            port = ":" + input_name.split(":", 1)[1]

        # Resolve transitively to handle chained replacements
        target_base = base_name
        visited = {target_base}
        while target_base in node_mapping:
            target_base = node_mapping[target_base]
            if target_base in visited:
                break
            visited.add(target_base)

        if target_base != base_name:
            updated_inputs.append(f"^{target_base}" if is_control else f"{target_base}{port}")
        else:
            updated_inputs.append(input_name)

    del node.input[:]
    node.input.extend(updated_inputs)


def remove_nodes(
    graph_def: tf.GraphDef,
    nodes_to_remove: Set[str],
    pass_name: str = None,
    reason: str = None,
    logger=None,
) -> tf.GraphDef:
    """Create new GraphDef without specified nodes."""
    pruned_graph_def = tf.GraphDef()
    pruned_graph_def.library.CopyFrom(graph_def.library)
    pruned_graph_def.versions.CopyFrom(graph_def.versions)
    for node in graph_def.node:
        if node.name not in nodes_to_remove:
            pruned_graph_def.node.add().CopyFrom(node)

    if logger and nodes_to_remove:
        prefix = f"[{pass_name}] " if pass_name else ""
        reason_str = f", reason: {reason}" if reason else ""
        for node_name in sorted(nodes_to_remove):
            logger.debug(f"{prefix}Deleted: {node_name}{reason_str}")

    return pruned_graph_def


def prune_dead_nodes(
    graph_def: tf.GraphDef,
    pass_name: str = None,
    refs_before: Dict[str, int] = None,
    protected_nodes: Set[str] = None,
    logger=None,
) -> tf.GraphDef:
    """
    Remove nodes that became dead after one rewrite iteration.

    Unreferenced Const nodes are always dropped; other nodes only when they
    had consumers before the iteration and have none now. Placeholders and
    protected nodes are never touched.
    """
    refs_after = compute_reference_counts(graph_def)
    protected_nodes = protected_nodes or set()

    dead_nodes = set()
    for node in graph_def.node:
        if node.op == "Placeholder" or node.name in protected_nodes:
            continue

        if node.op == "Const" and refs_after[node.name] == 0:
            dead_nodes.add(node.name)
            continue

        if refs_before and refs_before.get(node.name, 0) > 0 and refs_after[node.name] == 0:
            dead_nodes.add(node.name)

    if dead_nodes:
        if logger:
            logger.info(f"[{pass_name or 'optimize'}] Pruning {len(dead_nodes)} dead nodes")
        return remove_nodes(graph_def, dead_nodes, pass_name, "dead node (ref_count=0)", logger)

    return graph_def


def final_prune(
    graph_def: tf.GraphDef,
    pass_name: str = None,
    protected_nodes: Set[str] = None,
    max_iterations: int = 100,
    logger=None,
) -> tf.GraphDef:
    """
    Iteratively removes nodes with zero references until none are left.
    Placeholders and protected nodes survive.
    """
    protected_nodes = protected_nodes or set()
    iteration = 0
    total_removed = 0

    while iteration < max_iterations:
        refs = compute_reference_counts(graph_def)
        dead_nodes = {
            node.name
            for node in graph_def.node
            if node.op != "Placeholder"
            and node.name not in protected_nodes
            and refs[node.name] == 0
        }
        if not dead_nodes:
            break

        graph_def = remove_nodes(graph_def, dead_nodes, pass_name, "final prune (ref_count=0)", logger)
        total_removed += len(dead_nodes)
        iteration += 1

    if logger:
        if iteration >= max_iterations:
            logger.warning(
                f"[{pass_name or 'optimize'}] Final prune reached max iterations ({max_iterations})"
            )
        elif total_removed > 0:
            logger.info(
                f"[{pass_name or 'optimize'}] Final prune: removed {total_removed} nodes "
                f"in {iteration} iteration(s)"
            )

    return graph_def


def count_ops_of_type(graph_def: tf.GraphDef, op_type: str) -> int:
    """Number of nodes in the graph whose op is ``op_type``."""
    return sum(1 for node in graph_def.node if node.op == op_type)


def get_placeholders(graph_def: tf.GraphDef) -> List[tf.NodeDef]:
    """Graph inputs in GraphDef order."""
    return [node for node in graph_def.node if node.op == "Placeholder"]


def get_node_dtype(node: tf.NodeDef):
    """Output dtype of a node from its ``T``/``dtype`` attr, or None."""
    for key in ("dtype", "DstT", "out_type", "T"):
        if key in node.attr:
            return tf.as_dtype(node.attr[key].type)
    return None


def is_dynamic(graph_def: tf.GraphDef) -> bool:
    """True when any graph input has an unknown rank or a dynamic dimension."""
    for node in get_placeholders(graph_def):
        if "shape" not in node.attr:
            return True
        dims = shape_from_proto(node.attr["shape"].shape)
        if dims is None or any(d < 0 for d in dims):
            return True
    return False
