import os
import time
import datetime
import traceback
from typing import List, Optional, Dict, Any, Iterable
from .core import GraphOptimizer, PassRegistry
from .errors import PassExecutionError
from .utils.graph_utils import load_graph, save_graph
from .utils.logger import logger as custom_logger


class OptimizationPipeline:
    """
    A facade to configure and run a sequence of registered passes on a graph.

    Passes run in priority order on one GraphOptimizer. A pass that raises is
    a hard failure: the error is logged and re-raised as PassExecutionError,
    nothing is rolled back and later passes are not attempted.
    """

    def __init__(
        self,
        input_graph: Optional[str] = None,
        output_graph: Optional[str] = None,
        graph_def=None,
        level: int = 1,
        debug: bool = False,
        passes: Optional[List[str]] = None,
        pass_options: Optional[Dict[str, Dict[str, Any]]] = None,
        config: Optional[Dict[str, Any]] = None,
        protected_nodes: Optional[Iterable[str]] = None,
        output_nodes: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            input_graph (str, optional): Path to input graph PB file.
            output_graph (str, optional): Path to save the resulting graph.
            graph_def (GraphDef, optional): Input graph_def object (takes priority over input_graph).
            level (int): Pass level used when ``passes`` is not given. Default 1.
            debug (bool): Dump the graph after every pass into a run directory.
            passes (list[str]): Explicit list of registered pass names (overrides level).
            pass_options (dict): pass name -> constructor kwargs.
            config (dict): Optional overrides; keys match constructor args.
            protected_nodes (Iterable[str], optional): Nodes to protect from pruning.
            output_nodes (Iterable[str], optional): Output nodes (automatically protected).
        """
        self.input_graph = input_graph
        self.graph_def = graph_def
        self.output_graph = output_graph
        self.level = level
        self.debug = debug
        self.passes = passes
        self.pass_options = dict(pass_options or {})
        self.output_nodes = list(output_nodes or [])
        self.protected_nodes = list(protected_nodes or [])

        if config:
            self._apply_config(config)

        for node_name in self.output_nodes:
            if node_name not in self.protected_nodes:
                self.protected_nodes.append(node_name)

        self.debug_dir = None
        self.resolved_passes = []
        self.pass_stats: Dict[str, Dict[str, Any]] = {}

    def _apply_config(self, config):
        """Merges configuration dict into instance attributes."""
        if "input_graph" in config and not self.input_graph:
            self.input_graph = config["input_graph"]
        if "output_graph" in config and not self.output_graph:
            self.output_graph = config["output_graph"]
        if "level" in config:
            self.level = config["level"]
        if "debug" in config:
            self.debug = config["debug"] or self.debug
        if "passes" in config:
            self.passes = config["passes"]
        if "pass_options" in config:
            self.pass_options.update(config["pass_options"])
        if "protected_nodes" in config:
            self.protected_nodes.extend(config["protected_nodes"])
        if "output_nodes" in config:
            self.output_nodes.extend(config["output_nodes"])

    def _setup_debug(self):
        if self.debug:
            timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            self.debug_dir = f"run_{timestamp}"
            os.makedirs(self.debug_dir, exist_ok=True)

    def _resolve_passes(self):
        """Determines the final list of passes to execute."""
        if self.passes:
            final_passes = list(self.passes)
            custom_logger.debug(f"Using explicit pass list: {final_passes}")
        else:
            final_passes = PassRegistry.get_passes_by_level(self.level)
            custom_logger.debug(f"Selected passes for Level {self.level}: {final_passes}")

        for name in final_passes:
            if name not in PassRegistry._registered_passes:
                raise PassExecutionError(name, "pass is not registered")

        final_passes.sort(key=PassRegistry.get_priority)
        self.resolved_passes = final_passes

    def _load_input(self):
        if self.graph_def is not None:
            custom_logger.debug("Using provided graph_def object")
            return self.graph_def
        if self.input_graph:
            custom_logger.info(f"Loading graph from {self.input_graph}")
            return load_graph(self.input_graph)
        raise ValueError("Either graph_def or input_graph must be provided.")

    def run(self):
        """Executes the pipeline and returns the resulting GraphDef."""
        self._setup_debug()
        self._resolve_passes()
        optimizer = GraphOptimizer(self._load_input())
        initial_node_count = len(optimizer.nodes)

        if self.debug_dir:
            save_graph(optimizer.graph_def, os.path.join(self.debug_dir, "00_initial.pb"))

        custom_logger.debug(f"Applying {len(self.resolved_passes)} passes: {self.resolved_passes}")
        start_time = time.time()

        for i, pass_name in enumerate(self.resolved_passes):
            nodes_before = len(optimizer.graph_def.node)
            pass_start = time.time()
            try:
                pass_instance = PassRegistry.get_pass(pass_name, **self.pass_options.get(pass_name, {}))
                pass_instance.transform(
                    optimizer,
                    step=i + 1,
                    debug_dir=self.debug_dir,
                    protected_nodes=self.protected_nodes,
                )
            except Exception as e:
                custom_logger.error(f"Error applying pass '{pass_name}': {e}")
                custom_logger.debug(f"Full traceback:\n{traceback.format_exc()}")
                raise PassExecutionError(pass_name, e) from e

            self.pass_stats[pass_name] = {
                "nodes_before": nodes_before,
                "nodes_after": len(optimizer.graph_def.node),
                "duration": time.time() - pass_start,
            }

        if self.output_graph:
            custom_logger.info(f"Saving graph to {self.output_graph}")
            save_graph(optimizer.graph_def, self.output_graph)

        self._log_final_summary(initial_node_count, len(optimizer.graph_def.node), time.time() - start_time)
        return optimizer.graph_def

    def _log_final_summary(self, initial_node_count, final_node_count, total_time):
        """Log per-pass statistics at DEBUG level."""
        for pass_name, stats in self.pass_stats.items():
            custom_logger.debug(
                f"  {pass_name:<28} {stats['nodes_before']:>5} -> {stats['nodes_after']:<5} "
                f"{stats['duration']:>7.3f}s"
            )
        custom_logger.debug(
            f"Pipeline finished in {total_time:.3f}s. Nodes: {initial_node_count} -> {final_node_count}"
        )

