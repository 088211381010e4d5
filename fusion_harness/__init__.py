from .core import (
    GraphOptimizer,
    OpPattern,
    WildcardPattern,
    CommutativeOpPattern,
    Op,
    Any,
    CommutativeOp,
    BasePass,
    PatternRewritePass,
    PassRegistry,
)
from .utils import (
    create_node,
    create_const_node,
    load_graph,
    save_graph,
    SubgraphBuilder,
)
from .runner import OptimizationPipeline
from .utils.logger import set_log_level, DEBUG, INFO, WARNING, ERROR

# Import transforms to register all passes
from . import transforms

__all__ = [
    "GraphOptimizer",
    "OpPattern",
    "WildcardPattern",
    "CommutativeOpPattern",
    "Op",
    "Any",
    "CommutativeOp",
    "BasePass",
    "PatternRewritePass",
    "PassRegistry",
    "create_node",
    "create_const_node",
    "load_graph",
    "save_graph",
    "SubgraphBuilder",
    "OptimizationPipeline",
    "set_log_level",
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
]
