import argparse
import json
import sys

from . import transforms  # Register all rules
from .utils.logger import logger as custom_logger, set_log_level, DEBUG

# Prevent unused import warning
_ = transforms


def _split_list(value):
    return [n.strip() for n in value.split(",") if n.strip()] if value else None


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="ONNX graph rewriter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic usage
  graph-rewriter --input model.onnx --output model.opt.onnx

  # Run only some rules, in this order
  graph-rewriter --input model.onnx --output out.onnx --rules identity_elimination,pad_fusion

  # Use a config file, enable debug dumps
  graph-rewriter --config config.json --debug

Config file format (JSON):
  {
    "input_model": "path/to/model.onnx",
    "output_model": "path/to/model.opt.onnx",
    "level": 1,
    "debug": false,
    "rules": ["identity_elimination", "pad_fusion"],
    "add_rules": [],
    "remove_rules": [],
    "max_iterations": 10,
    "auto_cleanup": true,
    "log_file": "rewrite.log"
  }
        """,
    )
    parser.add_argument("--config", help="Path to JSON configuration file")
    parser.add_argument("--input", help="Override input model path")
    parser.add_argument("--output", help="Override output model path")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (DOT dumps, invariant checks after every rewrite)",
    )
    parser.add_argument(
        "--level",
        type=int,
        default=1,
        help="Optimization level (default: 1).",
    )
    parser.add_argument(
        "--rules",
        help="Comma-separated, ordered list of rules to run (overrides --level)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        help="Maximum number of full rewrite passes",
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument(
        "--list-rules",
        action="store_true",
        help="Print the registered rules and exit",
    )
    args = parser.parse_args(argv)

    if args.list_rules:
        from .core import RuleRegistry

        for name in RuleRegistry.get_rules_by_level(sys.maxsize):
            print(name)
        return 0

    # Load config if specified
    config = {}
    if args.config:
        try:
            with open(args.config, "r") as f:
                config = json.load(f)
        except Exception as e:
            custom_logger.error(f"Failed to load config file: {e}")
            return 1

    if args.rules:
        config["rules"] = _split_list(args.rules)
    if args.max_iterations is not None:
        config["max_iterations"] = args.max_iterations
    if args.debug:
        set_log_level(DEBUG)

    try:
        from .runner import OptimizationPipeline

        pipeline = OptimizationPipeline(
            input_model=args.input,      # Override from command line
            output_model=args.output,    # Override from command line
            level=args.level,
            debug=args.debug,
            rules=_split_list(args.rules),
            log_file=args.log_file,
            config=config,
        )
        pipeline.run()
    except Exception as e:
        custom_logger.error(f"Rewrite failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
