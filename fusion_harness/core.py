import os
import collections
import tensorflow.compat.v1 as tf
from typing import Dict, List, Optional, Any as AnyType, Tuple
from .utils.logger import (
    logger as logging,
    trace_transformation,
    log_optimization,
    log_match,
)
from .utils.graph_utils import (
    build_consumer_index,
    compute_reference_counts,
    extract_base_name,
    data_inputs,
    get_const_array,
    prune_dead_nodes,
    final_prune,
    save_graph,
    shape_from_proto,
)


class GraphOptimizer:
    """
    Main engine for applying rewrite passes to a TensorFlow GraphDef.
    Manages graph state, consumer indexing, and iterative pattern matching.
    """

    def __init__(self, graph_def: tf.GraphDef):
        self.current_pass_name: Optional[str] = None
        self.load_state(graph_def)

    def load_state(self, graph_def: tf.GraphDef):
        """Restores the optimizer state from a GraphDef."""
        self.graph_def = graph_def
        self.nodes: Dict[str, tf.NodeDef] = {node.name: node for node in graph_def.node}
        self.consumers: Dict[str, List[str]] = build_consumer_index(graph_def)
        # op_type -> [(pattern, rewriter)]
        self.pattern_index: Dict[str, List[Tuple["Pattern", AnyType]]] = collections.defaultdict(list)
        # Patterns that match any op_type
        self.wildcard_patterns: List[Tuple["Pattern", AnyType]] = []

    def add_transformation(self, pattern, rewriter):
        """Adds a transformation rule (pattern -> rewriter)."""
        logging.debug(f"Adding transformation: rule={rewriter.__name__} pattern={pattern}")
        op_type = pattern.get_indexed_op_type()
        if op_type is None:
            self.wildcard_patterns.append((pattern, rewriter))
        else:
            self.pattern_index[op_type].append((pattern, rewriter))

    def clear_transformations(self):
        """Clears all registered transformations."""
        self.pattern_index = collections.defaultdict(list)
        self.wildcard_patterns = []

    @log_optimization
    def optimize(
        self,
        pass_name=None,
        max_iterations=100,
        auto_cleanup=True,
        protected_nodes=None,
    ):
        # protected_nodes: nodes with zero consumers that must survive pruning (e.g. outputs)
        protected_nodes = set(protected_nodes or [])
        self.current_pass_name = pass_name
        modified = True
        iteration = 0
        current_graph_def = self.graph_def

        while modified:
            if iteration >= max_iterations:
                logging.warning(
                    f"Optimization pass '{pass_name}' reached max iterations ({max_iterations}). Stopping."
                )
                break
            iteration += 1
            modified = False
            new_nodes = []

            self.nodes = {node.name: node for node in current_graph_def.node}
            self.consumers = build_consumer_index(current_graph_def)
            refs_before = compute_reference_counts(current_graph_def)

            for node in current_graph_def.node:
                candidates = self.pattern_index.get(node.op, []) + self.wildcard_patterns

                replacement = None
                for pattern, rewriter in candidates:
                    match = pattern.match(node, self)
                    if not match:
                        continue
                    replacement = rewriter(match, self)
                    if replacement is not None:
                        self._carry_control_inputs(node, match, replacement)
                        break

                if replacement is None:
                    new_nodes.append(node)
                else:
                    # Only the anchor is replaced; inner matched nodes die through pruning
                    # once nothing consumes them.
                    new_nodes.extend(replacement)
                    modified = True

            if modified:
                next_graph_def = tf.GraphDef()
                next_graph_def.library.CopyFrom(current_graph_def.library)
                next_graph_def.versions.CopyFrom(current_graph_def.versions)
                next_graph_def.node.extend(new_nodes)
                if auto_cleanup:
                    current_graph_def = prune_dead_nodes(
                        next_graph_def, pass_name, refs_before, protected_nodes, logging
                    )
                else:
                    current_graph_def = next_graph_def

        if auto_cleanup:
            current_graph_def = final_prune(
                current_graph_def, pass_name, protected_nodes, logger=logging
            )

        self.current_pass_name = None
        return current_graph_def

    @staticmethod
    def _carry_control_inputs(anchor, match, replacement):
        """Re-attach control deps that pointed into the match from outside."""
        relevant_controls = [
            ci for ci in sorted(match.control_inputs)
            if ci.lstrip("^") not in match.all_matched_nodes
        ]
        if not relevant_controls or not replacement:
            return
        target_node = next((n for n in replacement if n.name == anchor.name), replacement[0])
        existing = set(target_node.input)
        for ci in relevant_controls:
            if ci not in existing:
                target_node.input.append(ci)
                existing.add(ci)

    def canonicalize_axis(self, axis, rank):
        """Standardizes negative axes for easier comparison."""
        if axis is None:
            return None
        if axis >= 0:
            return axis
        if rank is None:
            return None
        return axis + rank

    def get_node(self, node_or_name):
        if isinstance(node_or_name, str):
            return self.nodes.get(extract_base_name(node_or_name))
        return node_or_name

    def get_node_attr(self, node_or_name, attr_name, default=None):
        """Returns the unwrapped attribute value of a node."""
        node = self.get_node(node_or_name)
        if not node or attr_name not in node.attr:
            return default
        return get_attr_value(node.attr[attr_name])

    def get_node_shape(self, node_or_name):
        """Returns the output shape of a node as a list of ints (-1 = dynamic).

        None when the node carries no shape information or its rank is unknown.
        """
        node = self.get_node(node_or_name)
        if not node:
            return None
        if "shape" in node.attr:
            return shape_from_proto(node.attr["shape"].shape)
        if "_output_shapes" in node.attr:
            shape_list = node.attr["_output_shapes"].list.shape
            if shape_list:
                return shape_from_proto(shape_list[0])
        if node.op == "Const":
            return list(get_const_array(node).shape)
        return None

    def get_node_rank(self, node_or_name):
        """Returns the rank of a node's output tensor."""
        shape = self.get_node_shape(node_or_name)
        return len(shape) if shape is not None else None

    def get_const_value(self, node_or_name):
        """Numpy value of a Const node, or None for anything else."""
        node = self.get_node(node_or_name)
        if node is None or node.op != "Const":
            return None
        return get_const_array(node)

    def input_node(self, node, index):
        """The producer of the ``index``-th data input of ``node``."""
        inputs = data_inputs(node)
        if index >= len(inputs):
            return None
        return self.get_node(inputs[index])


class MatchContext:
    def __init__(self):
        self.matched_nodes = {}  # alias -> NodeDef
        self.all_matched_nodes = set()  # set of node names
        self.control_inputs = set()  # set of "^node_name"

    def snapshot(self):
        return dict(self.matched_nodes), set(self.all_matched_nodes), set(self.control_inputs)

    def restore(self, state):
        self.matched_nodes, self.all_matched_nodes, self.control_inputs = state


class Pattern:
    def __init__(self, alias=None):
        self.alias = alias
        self.consumer_count = None  # Expected number of consumers

    @log_match
    def match(
        self,
        node: tf.NodeDef,
        optimizer: "GraphOptimizer",
        context: Optional["MatchContext"] = None,
    ) -> Optional["MatchContext"]:
        if context is None:
            context = MatchContext()
        if self._match_internal(node, optimizer, context):
            return context
        return None

    def _match_internal(self, node, optimizer, context):
        if not self._do_match(node, optimizer, context):
            return False
        if self.consumer_count is not None:
            if len(optimizer.consumers[node.name]) != self.consumer_count:
                return False
        context.all_matched_nodes.add(node.name)
        for input_name in node.input:
            if input_name.startswith("^"):
                context.control_inputs.add(input_name)
        if self.alias:
            context.matched_nodes[self.alias] = node
        return True

    def _do_match(self, node, optimizer, context):
        raise NotImplementedError()

    def get_indexed_op_type(self):
        """Op type to index under, or None for patterns that match any op."""
        return None


class OpPattern(Pattern):
    def __init__(self, op_type, inputs=None, attrs=None, alias=None):
        super().__init__(alias)
        self.op_type = op_type
        self.inputs = inputs or []  # List of Pattern
        self.attrs = attrs or {}  # Map of attr_name -> attr_value (or predicate)

    def __repr__(self):
        inner = ", ".join(repr(p) for p in self.inputs)
        return f"{self.op_type}({inner})"

    def get_indexed_op_type(self):
        """Wildcards (*) return None."""
        return None if self.op_type == "*" else self.op_type

    def _do_match(self, node, optimizer, context):
        if self.op_type != "*" and node.op != self.op_type:
            return False
        if not self._match_attrs(node):
            return False
        if not self.inputs:
            return True
        inputs = data_inputs(node)
        if len(inputs) != len(self.inputs):
            return False
        return self._match_inputs(inputs, self.inputs, optimizer, context)

    def _match_attrs(self, node):
        for attr_name, expected in self.attrs.items():
            if attr_name not in node.attr:
                return False
            actual = get_attr_value(node.attr[attr_name])
            if callable(expected):
                if not expected(actual):
                    return False
            elif actual != expected:
                return False
        return True

    @staticmethod
    def _match_inputs(inputs, patterns, optimizer, context):
        for input_name, input_pattern in zip(inputs, patterns):
            input_node = optimizer.get_node(input_name)
            if input_node is None:
                return False
            if not input_pattern._match_internal(input_node, optimizer, context):
                return False
        return True


class WildcardPattern(Pattern):
    def __repr__(self):
        return f"Any({self.alias or ''})"

    def _do_match(self, node, optimizer, context):
        return True


class CommutativeOpPattern(OpPattern):
    """Matches an Op where the order of its two data inputs doesn't matter."""

    def _do_match(self, node, optimizer, context):
        if self.op_type != "*" and node.op != self.op_type:
            return False
        if not self._match_attrs(node):
            return False
        inputs = data_inputs(node)
        if len(inputs) != 2 or len(self.inputs) != 2:
            return False

        state = context.snapshot()
        if self._match_inputs(inputs, self.inputs, optimizer, context):
            return True
        context.restore(state)
        if self._match_inputs(inputs[::-1], self.inputs, optimizer, context):
            return True
        context.restore(state)
        return False


def get_attr_value(attr_proto):
    """Unwraps a TensorFlow AttrValue proto into a Python literal."""
    field = attr_proto.WhichOneof("value")
    if field == "s":
        return attr_proto.s.decode("utf-8")
    if field == "i":
        return attr_proto.i
    if field == "f":
        return attr_proto.f
    if field == "b":
        return attr_proto.b
    if field == "type":
        return attr_proto.type
    if field == "shape":
        return shape_from_proto(attr_proto.shape)
    if field == "tensor":
        from tensorflow.python.framework import tensor_util
        import numpy as np

        t = tensor_util.MakeNdarray(attr_proto.tensor)
        if np.isscalar(t) or t.ndim == 0:
            return t.item()
        return t
    # Fallback to the proto itself for complex types
    return attr_proto


# Helper functions to build patterns
def Op(op_type, *inputs, alias=None, attrs=None, consumer_count=None):
    pattern = OpPattern(op_type, list(inputs), attrs, alias)
    pattern.consumer_count = consumer_count
    return pattern


def Any(alias=None, consumer_count=None):
    pattern = WildcardPattern(alias)
    pattern.consumer_count = consumer_count
    return pattern


def CommutativeOp(op_type, p1, p2, alias=None, attrs=None, consumer_count=None):
    pattern = CommutativeOpPattern(op_type, [p1, p2], attrs, alias)
    pattern.consumer_count = consumer_count
    return pattern


class BasePass:
    """Base class for all graph passes."""

    def __init__(self, name=None):
        self.name = name or self.__class__.__name__

    def transform(
        self,
        optimizer: GraphOptimizer,
        step=None,
        debug_dir=None,
        auto_cleanup=True,
        protected_nodes=None,
    ):
        """
        Applies the transformation to the optimizer's graph and returns the
        resulting GraphDef. The optimizer state must reflect the result.

        Args:
            optimizer: The GraphOptimizer instance
            step: Optional step number for debugging
            debug_dir: Optional directory to save debug output
            auto_cleanup: If True, prune dead nodes after rewriting (default: True)
            protected_nodes: Node names that must not be pruned (e.g. outputs)
        """
        raise NotImplementedError()

    def _dump(self, graph_def, step, debug_dir):
        if debug_dir and step is not None:
            save_graph(graph_def, os.path.join(debug_dir, f"{step:02d}_{self.name}.pb"))


class PatternRewritePass(BasePass):
    """A pass that applies a pattern-matching-based rewrite."""

    def __init__(self, pattern, rewriter, name=None):
        super().__init__(name)
        self.pattern = pattern
        self.rewriter = trace_transformation(rewriter)

    def transform(
        self,
        optimizer: GraphOptimizer,
        step=None,
        debug_dir=None,
        auto_cleanup=True,
        protected_nodes=None,
    ):
        """Apply this pass using GraphOptimizer.optimize()."""
        optimizer.clear_transformations()
        optimizer.add_transformation(self.pattern, self.rewriter)

        optimized_graph = optimizer.optimize(
            pass_name=self.name,
            auto_cleanup=auto_cleanup,
            protected_nodes=protected_nodes,
        )

        # Sync graph_def, nodes and consumers for the next pass
        optimizer.load_state(optimized_graph)
        self._dump(optimized_graph, step, debug_dir)
        return optimized_graph


class PassRegistry:
    """Registry for managing graph passes."""

    _registered_passes = {}
    _pass_metadata = {}

    @classmethod
    def register(cls, name, opt_level=1, priority=100):
        """Decorator to register a pass class with an optimization level and priority."""

        def decorator(pass_cls):
            cls._registered_passes[name] = pass_cls
            cls._pass_metadata[name] = {"opt_level": opt_level, "priority": priority}
            return pass_cls

        return decorator

    @classmethod
    def get_pass(cls, name, *args, **kwargs):
        """Creates an instance of the pass by its registered name."""
        if name not in cls._registered_passes:
            raise ValueError(f"Unknown pass: {name}")
        return cls._registered_passes[name](*args, **kwargs)

    @classmethod
    def list_available_passes(cls):
        return list(cls._registered_passes.keys())

    @classmethod
    def get_passes_by_level(cls, level):
        """Pass names enabled at the given level, sorted by priority then name."""
        candidates = [
            (name, meta["priority"])
            for name, meta in cls._pass_metadata.items()
            if meta["opt_level"] <= level
        ]
        candidates.sort(key=lambda x: (x[1], x[0]))
        return [name for name, _ in candidates]

    @classmethod
    def get_priority(cls, name):
        meta = cls._pass_metadata.get(name)
        if meta and "priority" in meta:
            return (meta["priority"], name)
        return (100, name)
