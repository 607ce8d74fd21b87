import os
import datetime
import logging
import time
import traceback
from typing import List, Optional, Dict, Any

from .core import DEFAULT_MAX_ITERATIONS, GraphRewriter, RuleRegistry
from .utils import (
    count_op_types,
    graph_from_onnx,
    graph_to_onnx,
    load_model,
    save_dot,
    save_model,
    validate_graph,
    logger as custom_logger,
)
from .utils.logger import LOG_FORMAT


class OptimizationPipeline:
    """
    A facade class to configure and run the graph rewrite process:
    load the model, run the enabled rules to a fixpoint, clean up and save.
    """

    def __init__(
        self,
        input_model: Optional[str] = None,
        output_model: Optional[str] = None,
        model=None,
        level: int = 1,
        debug: bool = False,
        rules: Optional[List[str]] = None,
        add_rules: Optional[List[str]] = None,
        remove_rules: Optional[List[str]] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        log_file: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        auto_cleanup: bool = True,
    ):
        """
        Initialize the pipeline.

        Args:
            input_model (str, optional): Path to the input ONNX model.
            output_model (str, optional): Path to save the rewritten model.
            model (ModelProto, optional): Input model object (takes priority over input_model).
            level (int): Optimization level. Default 1.
            debug (bool): Dump DOT snapshots and validate the graph after every rewrite.
            rules (list[str]): Explicit ordered list of rules to run (overrides level).
            add_rules (list[str]): Rules to append to the default set.
            remove_rules (list[str]): Rules to remove from the set.
            max_iterations (int): Pass budget of the rule driver.
            log_file (str): Path to log file.
            config (dict): Optional dictionary containing configuration overrides.
                           Keys match constructor args.
            auto_cleanup (bool): Drop initializers left unused by rewrites. Default True.

        Note:
            If both model and input_model are provided, model takes priority.
        """
        self.input_model = input_model
        self.output_model = output_model
        self.model = model
        self.level = level
        self.debug = debug
        self.rules = rules
        self.add_rules = list(add_rules or [])
        self.remove_rules = list(remove_rules or [])
        self.max_iterations = max_iterations
        self.log_file = log_file
        self.auto_cleanup = auto_cleanup

        # Apply config overrides if provided
        if config:
            self._apply_config(config)

        self.debug_dir = None
        self.resolved_rules: List[str] = []
        self.graph = None
        self.change_log = []
        self.status = None

    def _apply_config(self, config):
        """Merges configuration dict into instance attributes."""
        if "input_model" in config and not self.input_model:
            self.input_model = config["input_model"]
        if "output_model" in config and not self.output_model:
            self.output_model = config["output_model"]
        if "level" in config:
            self.level = config["level"]
        if "debug" in config:
            self.debug = config["debug"] or self.debug
        if "log_file" in config:
            self.log_file = config["log_file"]
        if "rules" in config:
            self.rules = config["rules"]
        if "add_rules" in config:
            self.add_rules.extend(config["add_rules"])
        if "remove_rules" in config:
            self.remove_rules.extend(config["remove_rules"])
        if "max_iterations" in config:
            self.max_iterations = int(config["max_iterations"])
        if "auto_cleanup" in config:
            self.auto_cleanup = bool(config["auto_cleanup"])

    def _setup_logging_and_debug(self):
        """Configures logging and creates debug directory."""
        if self.debug:
            timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
            self.debug_dir = f"run_{timestamp}"
            os.makedirs(self.debug_dir, exist_ok=True)
            # Redirect log to debug dir if not explicit
            if not self.log_file:
                self.log_file = os.path.join(self.debug_dir, "optimization.log")

        if self.log_file:
            file_handler = logging.FileHandler(self.log_file)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            custom_logger.addHandler(file_handler)
            custom_logger.info(f"Logging to file: {self.log_file}")

    def _resolve_rules(self):
        """Determines the final ordered list of rules to run."""
        if self.rules:
            # Explicit lists keep the caller's order
            final_rules = list(self.rules)
            custom_logger.debug(f"Using explicit rule list: {final_rules}")
        else:
            final_rules = RuleRegistry.get_rules_by_level(self.level)
            custom_logger.info(f"Selected rules for Level {self.level}: {final_rules}")

            for r in self.add_rules:
                if r not in final_rules:
                    final_rules.append(r)
                    custom_logger.debug(f"Added rule: {r}")
            final_rules.sort(key=RuleRegistry.get_priority)

        for r in self.remove_rules:
            if r in final_rules:
                final_rules.remove(r)
                custom_logger.debug(f"Removed rule: {r}")
            else:
                custom_logger.warning(f"Rule '{r}' in remove_rules was not in the list")

        resolved = []
        for r in final_rules:
            if not RuleRegistry.is_registered(r):
                custom_logger.warning(f"Rule '{r}' not found in registry. Skipping.")
                continue
            resolved.append(r)
        self.resolved_rules = resolved

    def _load(self):
        # Priority: model > input_model
        if self.model is not None:
            custom_logger.debug("Using provided model object")
            return self.model
        if self.input_model:
            custom_logger.info(f"Loading model from {self.input_model}")
            try:
                return load_model(self.input_model)
            except Exception as e:
                custom_logger.error(f"Failed to load model: {e}")
                raise
        raise ValueError("Either model or input_model must be provided.")

    def run(self):
        """Executes the pipeline and returns the rewritten ModelProto."""
        self._setup_logging_and_debug()
        self._resolve_rules()

        model = self._load()
        graph = graph_from_onnx(model)
        initial_node_count = graph.node_count
        initial_op_types = count_op_types(graph)

        if self.debug_dir:
            save_dot(graph, os.path.join(self.debug_dir, "00_initial.dot"))

        custom_logger.info(f"Applying {len(self.resolved_rules)} rules: {self.resolved_rules}")

        # Snapshot for rollback; a failed rewrite leaves the model unoptimized
        backup_graph = graph.copy()
        rewriter = GraphRewriter(
            graph,
            [RuleRegistry.get_rule(name) for name in self.resolved_rules],
            max_iterations=self.max_iterations,
            validate_after_apply=self.debug,
        )

        start_time = time.time()
        try:
            rewriter.optimize()
            if self.auto_cleanup:
                removed = graph.remove_unused_initializers()
                if removed:
                    custom_logger.info(
                        f"Removed {len(removed)} unused initializer(s): {', '.join(removed)}"
                    )
            validate_graph(graph)
            self.change_log = list(rewriter.change_log)
            self.status = "optimized"
        except Exception as e:
            custom_logger.error(f"Error rewriting graph '{graph.name}': {e}")
            custom_logger.debug(f"Full traceback:\n{traceback.format_exc()}")
            custom_logger.warning("Rolling back graph state; optimization skipped")
            graph = backup_graph
            self.change_log = []
            self.status = "skipped"
        total_time = time.time() - start_time

        self.graph = graph
        result = graph_to_onnx(graph, template=model)

        if self.output_model:
            custom_logger.info(f"Saving rewritten model to {self.output_model}")
            save_model(result, self.output_model)

        if self.debug_dir:
            save_dot(
                graph,
                os.path.join(self.debug_dir, "final.dot"),
                highlight_nodes={record.node_name for record in self.change_log},
            )

        self._log_final_summary(initial_node_count, graph.node_count, total_time)
        custom_logger.debug(f"Op types: {initial_op_types} -> {count_op_types(graph)}")
        return result

    def _log_final_summary(self, initial_node_count, final_node_count, total_time):
        """Log final summary with per-rule statistics."""
        nodes_removed = initial_node_count - final_node_count
        per_rule = {}
        for record in self.change_log:
            per_rule[record.rule_name] = per_rule.get(record.rule_name, 0) + 1

        custom_logger.info("")
        custom_logger.info("=" * 70)
        custom_logger.info("REWRITE SUMMARY")
        custom_logger.info("=" * 70)

        if per_rule:
            custom_logger.info("")
            custom_logger.info("Per-Rule Statistics:")
            custom_logger.info("-" * 70)
            custom_logger.info(f"{'Rule':<30} {'Rewrites':>8}")
            custom_logger.info("-" * 70)
            for rule_name, count in per_rule.items():
                custom_logger.info(f"  {rule_name:<28} {count:>8}")
            custom_logger.info("-" * 70)

        custom_logger.info("")
        custom_logger.info("Overall:")
        custom_logger.info(f"  Status: {self.status}")
        custom_logger.info(f"  Total rewrites: {len(self.change_log)}")
        custom_logger.info(f"  Total time: {total_time:.3f}s")
        custom_logger.info(f"  Nodes: {initial_node_count} -> {final_node_count} (removed: {nodes_removed})")

        if initial_node_count > 0:
            reduction_pct = (nodes_removed / initial_node_count) * 100
            custom_logger.info(f"  Reduction: {reduction_pct:.1f}%")

        custom_logger.info("=" * 70)
