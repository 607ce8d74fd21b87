import collections
import enum
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import IterationLimitExceeded, UnknownRuleError
from .ir import DEFAULT_DOMAIN, Graph, Node, canonical_domain
from .utils.graph_utils import validate_graph
from .utils.logger import (
    logger as logging,
    trace_rewrite,
    log_optimization,
    log_match,
)

DEFAULT_MAX_ITERATIONS = 10


def matches_op(
    node: Node,
    op_type: str,
    versions: Iterable[int],
    domain: str = DEFAULT_DOMAIN,
) -> bool:
    """Exact op type and domain match, and version membership in ``versions``.

    ``versions`` holds the ``since_version`` values a rule was written for.
    """
    return (
        node.op_type == op_type
        and node.domain == canonical_domain(domain)
        and node.since_version in versions
    )


class RewriteEffect(enum.Enum):
    NO_CHANGE = "NoChange"
    NODE_MODIFIED = "NodeModified"
    NODE_REMOVED = "NodeRemoved"

    @property
    def changed(self) -> bool:
        return self is not RewriteEffect.NO_CHANGE


class RewriteRecord(collections.namedtuple("RewriteRecord", "rule_name node_id node_name effect")):
    """One entry of the change log: which rule rewrote which node, and how."""

    __slots__ = ()


class RewriteRule:
    """Base class for all rewrite rules.

    A rule is stateless apart from its configuration. Subclasses implement
    ``_satisfies_condition`` (pure, may only read the graph) and ``_apply``
    (performs the mutation and returns a ``RewriteEffect``).
    """

    # Op types the rule can fire on; empty means any op type.
    op_types: Sequence[str] = ()

    def __init__(self, name=None):
        self.name = name or self.__class__.__name__

    def get_indexed_op_types(self):
        """Return op types for indexing, or an empty tuple for wildcard rules."""
        return tuple(self.op_types)

    @log_match
    def satisfies_precondition(self, graph: Graph, node: Node) -> bool:
        return bool(self._satisfies_condition(graph, node))

    @trace_rewrite
    def apply(self, graph: Graph, node: Node) -> RewriteEffect:
        """Rewrites ``node``. Only valid right after the precondition held."""
        return self._apply(graph, node)

    def _satisfies_condition(self, graph: Graph, node: Node) -> bool:
        raise NotImplementedError()

    def _apply(self, graph: Graph, node: Node) -> RewriteEffect:
        raise NotImplementedError()

    def __repr__(self):
        return f"{self.__class__.__name__}(name={self.name!r})"


class GraphRewriter:
    """
    Rule driver: walks the graph in topological order, applies the first
    rule whose precondition holds on each node and repeats full passes until
    a pass makes no change.
    """

    def __init__(
        self,
        graph: Graph,
        rules: Optional[Iterable[RewriteRule]] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        validate_after_apply: bool = False,
    ):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self.graph = graph
        self.max_iterations = max_iterations
        self.validate_after_apply = validate_after_apply
        self.change_log: List[RewriteRecord] = []
        self.iterations = 0

        self.rules: List[RewriteRule] = []
        # Rule indexing for O(1) lookup by op_type
        self.rule_index: Dict[str, List[RewriteRule]] = collections.defaultdict(list)
        self.wildcard_rules: List[RewriteRule] = []
        for rule in rules or []:
            self.add_rule(rule)

    def add_rule(self, rule: RewriteRule):
        """Registers a rule; rules are tried in registration order."""
        logging.info(f"Adding rule: {rule.name} ops={list(rule.get_indexed_op_types()) or '*'}")
        self.rules.append(rule)
        op_types = rule.get_indexed_op_types()
        if not op_types:
            self.wildcard_rules.append(rule)
        for op_type in op_types:
            self.rule_index[op_type].append(rule)

    def clear_rules(self):
        self.rules = []
        self.rule_index = collections.defaultdict(list)
        self.wildcard_rules = []

    @property
    def rule_names(self) -> List[str]:
        return [rule.name for rule in self.rules]

    def _candidate_rules(self, node: Node) -> List[RewriteRule]:
        indexed = self.rule_index.get(node.op_type, [])
        if not self.wildcard_rules:
            return list(indexed)
        candidates = set(map(id, indexed)) | set(map(id, self.wildcard_rules))
        return [rule for rule in self.rules if id(rule) in candidates]

    @log_optimization
    def optimize(self) -> List[RewriteRecord]:
        """
        Runs passes until a fixpoint; returns the change log.

        ``max_iterations`` bounds the passes that rewrite something; one more
        pass confirms the fixpoint. If anything raises, the graph is restored
        to its state before the call and the error propagates.
        """
        snapshot = self.graph.copy()
        logged = len(self.change_log)
        try:
            return self._run_to_fixpoint()
        except Exception as e:
            logging.error(f"[{self.graph.name}] Rewrite aborted, restoring graph: {e}")
            self.graph.restore(snapshot)
            del self.change_log[logged:]
            raise

    def _run_to_fixpoint(self) -> List[RewriteRecord]:
        last_pass = []
        for iteration in range(1, self.max_iterations + 2):
            self.iterations = iteration
            last_pass = self._run_pass()
            if not last_pass:
                logging.info(
                    f"[{self.graph.name}] Fixpoint reached after {iteration} pass(es), "
                    f"{len(self.change_log)} rewrite(s)"
                )
                return self.change_log
            logging.debug(f"[{self.graph.name}] Pass {iteration}: {len(last_pass)} rewrite(s)")

        raise IterationLimitExceeded(
            self.max_iterations, [record.rule_name for record in last_pass]
        )

    def _run_pass(self) -> List[RewriteRecord]:
        records: List[RewriteRecord] = []
        for node_id in self.graph.topological_order():
            # Earlier rewrites in this pass may have removed it
            if not self.graph.has_node(node_id):
                continue
            effect = self._visit(node_id, records)
            if effect is RewriteEffect.NODE_MODIFIED:
                self._visit(node_id, records)
        return records

    def _visit(self, node_id: int, records: List[RewriteRecord]) -> RewriteEffect:
        node = self.graph.get_node(node_id)
        for rule in self._candidate_rules(node):
            with self.graph.read_only():
                matched = rule.satisfies_precondition(self.graph, node)
            if not matched:
                continue

            node_name = node.name
            effect = rule.apply(self.graph, node)
            if effect.changed:
                record = RewriteRecord(rule.name, node_id, node_name, effect)
                records.append(record)
                self.change_log.append(record)
                if self.validate_after_apply:
                    validate_graph(self.graph)
            return effect
        return RewriteEffect.NO_CHANGE

    def summary(self) -> Dict[str, int]:
        """Number of rewrites per rule name."""
        return dict(collections.Counter(record.rule_name for record in self.change_log))


class RuleRegistry:
    """Registry for managing rewrite rules."""

    _registered_rules = {}
    _rule_metadata = {}

    @classmethod
    def register(cls, name, opt_level=1, priority=100):
        """Decorator to register a rule class with an optimization level and priority."""

        def decorator(rule_cls):
            cls._registered_rules[name] = rule_cls
            cls._rule_metadata[name] = {"opt_level": opt_level, "priority": priority}
            return rule_cls

        return decorator

    @classmethod
    def is_registered(cls, name) -> bool:
        return name in cls._registered_rules

    @classmethod
    def get_rule(cls, name, *args, **kwargs) -> RewriteRule:
        """Creates an instance of the rule by its registered name."""
        if name not in cls._registered_rules:
            raise UnknownRuleError(f"Unknown rule: {name}")
        return cls._registered_rules[name](*args, **kwargs)

    @classmethod
    def get_priority(cls, name):
        meta = cls._rule_metadata.get(name)
        if meta and "priority" in meta:
            return (meta["priority"], name)
        return (100, name)  # Default priority

    @classmethod
    def list_available_rules(cls):
        """Returns a list of all registered rule names."""
        return list(cls._registered_rules.keys())

    @classmethod
    def get_rules_by_level(cls, level):
        """Returns the rule names enabled at the given optimization level, sorted by priority."""
        candidates = []
        for name, meta in cls._rule_metadata.items():
            if meta["opt_level"] <= level:
                candidates.append((name, meta["priority"]))

        # Sort by priority (asc), then name (asc)
        candidates.sort(key=lambda x: (x[1], x[0]))

        return [name for name, _ in candidates]
