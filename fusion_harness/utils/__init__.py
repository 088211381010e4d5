from .graph_utils import (
    create_node,
    create_const_node,
    save_graph,
    load_graph,
    clone_graph,
    SubgraphBuilder,
    type_attr,
    shape_attr,
    make_output_shapes_attr,
    shape_from_proto,
    get_const_array,
    extract_base_name,
    data_inputs,
    compute_reference_counts,
    build_consumer_index,
    update_node_inputs,
    remove_nodes,
    prune_dead_nodes,
    final_prune,
    count_ops_of_type,
    get_placeholders,
    get_node_dtype,
    is_dynamic,
)
from .logger import logger

__all__ = [
    # graph I/O
    "create_node",
    "create_const_node",
    "save_graph",
    "load_graph",
    "clone_graph",
    "SubgraphBuilder",
    "type_attr",
    "shape_attr",
    "make_output_shapes_attr",
    "shape_from_proto",
    "get_const_array",
    # graph analysis
    "extract_base_name",
    "data_inputs",
    "compute_reference_counts",
    "build_consumer_index",
    "update_node_inputs",
    "remove_nodes",
    "prune_dead_nodes",
    "final_prune",
    "count_ops_of_type",
    "get_placeholders",
    "get_node_dtype",
    "is_dynamic",
    # logger
    "logger",
]
