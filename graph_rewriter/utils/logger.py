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
def get_logger(name="GraphRewriter"):
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


logger = get_logger()


def set_log_level(level):
    logger.setLevel(level)


def trace_rewrite(func):
    """Aspect: Log when a rule's apply() is executed."""

    @functools.wraps(func)
    def wrapper(self, graph, node, *args, **kwargs):
        node_name = node.name
        start_time = time.time()
        effect = func(self, graph, node, *args, **kwargs)
        duration = (time.time() - start_time) * 1000

        # Only log at INFO when the graph actually changed
        if effect.changed:
            logger.info(
                f"[{self.name}] {effect.value} on {node_name} ({duration:.2f}ms)"
            )
        else:
            logger.debug(f"[{self.name}] apply on {node_name} made no change")
        return effect

    return wrapper


def log_optimization(func):
    """Aspect: Log the overall optimization process."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        logger.info(f"[{self.graph.name}] Starting graph rewrite with rules: {self.rule_names}")
        original_node_count = self.graph.node_count
        start_time = time.time()

        result = func(self, *args, **kwargs)

        duration = time.time() - start_time
        logger.info(
            f"[{self.graph.name}] Rewrite finished in {duration:.3f}s. "
            f"Nodes: {original_node_count} -> {self.graph.node_count}"
        )
        return result

    return wrapper


def log_match(func):
    """Aspect: Log precondition matches (DEBUG level)."""

    @functools.wraps(func)
    def wrapper(self, graph, node):
        res = func(self, graph, node)
        if res:
            logger.debug(f"[{self.name}] Matched node: {node.name} (Op: {node.op_type})")
        return res

    return wrapper
