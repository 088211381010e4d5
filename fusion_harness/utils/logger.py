import logging
import functools
import time

# Define Log Levels
DEBUG = logging.DEBUG
INFO = logging.INFO
WARNING = logging.WARNING
ERROR = logging.ERROR

LOG_FORMAT = "%(asctime)s - [%(levelname)s] - %(name)s - [%(filename)s:%(lineno)d] - %(message)s"


# Singleton logger setup
def get_logger(name="FusionHarness"):
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


logger = get_logger()


def set_log_level(level):
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)


def add_file_handler(path):
    """Mirror the package logger into a file. Returns the handler."""
    file_handler = logging.FileHandler(path)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
    logger.info(f"Logging to file: {path}")
    return file_handler


def trace_transformation(func):
    """Aspect: Log when a transformation/rewriter is executed."""

    @functools.wraps(func)
    def wrapper(match, optimizer, *args, **kwargs):
        start_time = time.time()
        result = func(match, optimizer, *args, **kwargs)
        duration = (time.time() - start_time) * 1000

        # Only log when a rewrite actually happened (result is not None)
        if result:
            anchor_name = next(iter(match.all_matched_nodes), "unknown")
            pass_name = getattr(optimizer, "current_pass_name", None)
            prefix = f"[{pass_name}] " if pass_name else ""
            logger.info(
                f"{prefix}Rewriter {func.__name__} matched at {anchor_name}, "
                f"generated {len(result)} nodes ({duration:.2f}ms)"
            )
        else:
            logger.debug(f"Rewriter {func.__name__} returned None")
        return result

    return wrapper


def log_optimization(func):
    """Aspect: Log the overall optimization process."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        pass_name = kwargs.get("pass_name")
        if pass_name is None and len(args) > 0:
            pass_name = args[0]

        prefix = f"[{pass_name}] " if pass_name else ""
        original_node_count = len(self.graph_def.node)
        logger.info(f"{prefix}Starting graph optimization pass... ({original_node_count} nodes)")
        start_time = time.time()

        result_graph = func(self, *args, **kwargs)

        duration = time.time() - start_time
        logger.info(
            f"{prefix}Optimization finished in {duration:.3f}s. "
            f"Nodes: {original_node_count} -> {len(result_graph.node)}"
        )
        return result_graph

    return wrapper


def log_match(func):
    """Aspect: Log matching attempts (DEBUG level)."""

    @functools.wraps(func)
    def wrapper(self, node, optimizer, context=None):
        res = func(self, node, optimizer, context)
        if res:
            logger.debug(f"Matched pattern on node: {node.name} (Op: {node.op})")
        return res

    return wrapper


def report_stage(stage):
    """Aspect: Report start, finish and duration of a harness stage.

    The owner object decides through its ``report_stages`` attribute; when it
    is off the stage is only traced at DEBUG level.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            level = INFO if getattr(self, "report_stages", False) else DEBUG
            owner = type(self).__name__
            logger.log(level, f"[ {stage:<10}] `{owner}.{func.__name__}()` is started")
            start_time = time.time()
            result = func(self, *args, **kwargs)
            duration = time.time() - start_time
            logger.log(
                level,
                f"[ {stage:<10}] `{owner}.{func.__name__}()` is finished successfully. "
                f"Duration is {duration:.3f}s",
            )
            return result

        return wrapper

    return decorator
