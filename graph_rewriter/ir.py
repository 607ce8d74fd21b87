"""
In-memory graph IR used by the rewriter.

Nodes live in an arena keyed by integer ids that are never reused within a
graph. Tensors are keyed by name; each one records its producer (node id and
output index) and its consumer edges as ``(node_id, input_index)`` pairs.
Every node caches the number of consumer edges per output, and the mutation
primitives keep those caches in step with the live edge lists.

Names that a node's subgraph attributes (If/Loop/Scan bodies) read from the
enclosing scope are the node's implicit inputs. They get consumer edges too,
numbered after the explicit input slots, so every read of a tensor is counted
whether it is wired explicitly or captured by a subgraph.
"""

import contextlib
import copy
import enum
import heapq
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .errors import (
    GraphCycleError,
    GraphOutputProtected,
    GraphStructureError,
    NodeStillReferenced,
    NotFound,
    ReadOnlyGraphError,
    WrongAttributeType,
)

DEFAULT_DOMAIN = ""
_DEFAULT_DOMAIN_ALIASES = ("", "ai.onnx")


def canonical_domain(domain: Optional[str]) -> str:
    """Maps the aliases of the default operator domain to ``""``."""
    if domain is None or domain in _DEFAULT_DOMAIN_ALIASES:
        return DEFAULT_DOMAIN
    return domain


class AttributeType(enum.Enum):
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    INTS = "ints"
    FLOATS = "floats"
    STRINGS = "strings"
    TENSOR = "tensor"
    OPAQUE = "opaque"  # carried through unchanged (e.g. subgraphs)


_LIST_TYPES = (AttributeType.INTS, AttributeType.FLOATS, AttributeType.STRINGS)


class AttributeValue:
    """A typed attribute value: one of the ``AttributeType`` kinds."""

    __slots__ = ("type", "value")

    def __init__(self, attr_type: AttributeType, value: Any):
        if attr_type in _LIST_TYPES:
            value = tuple(value)
        self.type = attr_type
        self.value = value

    @classmethod
    def infer(cls, value: Any) -> "AttributeValue":
        """Builds an attribute from a plain Python value."""
        if isinstance(value, AttributeValue):
            return value
        if isinstance(value, (bool, int, np.integer)):
            return cls(AttributeType.INT, int(value))
        if isinstance(value, (float, np.floating)):
            return cls(AttributeType.FLOAT, float(value))
        if isinstance(value, bytes):
            return cls(AttributeType.STRING, value.decode("utf-8"))
        if isinstance(value, str):
            return cls(AttributeType.STRING, value)
        if isinstance(value, np.ndarray):
            return cls(AttributeType.TENSOR, value)
        if isinstance(value, (list, tuple)):
            items = list(value)
            if all(isinstance(v, (bool, int, np.integer)) for v in items):
                return cls(AttributeType.INTS, [int(v) for v in items])
            if all(isinstance(v, (bool, int, float, np.integer, np.floating)) for v in items):
                return cls(AttributeType.FLOATS, [float(v) for v in items])
            if all(isinstance(v, (str, bytes)) for v in items):
                return cls(
                    AttributeType.STRINGS,
                    [v.decode("utf-8") if isinstance(v, bytes) else v for v in items],
                )
            raise WrongAttributeType(f"Cannot infer attribute type of mixed list {value!r}")
        raise WrongAttributeType(f"Cannot infer attribute type of {type(value).__name__}")

    def __eq__(self, other):
        if not isinstance(other, AttributeValue):
            return NotImplemented
        if self.type != other.type:
            return False
        if self.type == AttributeType.TENSOR:
            return np.array_equal(self.value, other.value)
        return self.value == other.value

    def __repr__(self):
        return f"AttributeValue({self.type.value}, {self.value!r})"


class Tensor:
    """A named value flowing between nodes.

    ``data`` is set only for initializers (compile-time constants).
    """

    def __init__(self, name: str, shape=None, elem_type: Optional[int] = None, data=None):
        self.name = name
        self.shape = list(shape) if shape is not None else None
        self.elem_type = elem_type
        self.data: Optional[np.ndarray] = data
        self.producer: Optional[int] = None
        self.producer_index: Optional[int] = None
        self.consumers: List[Tuple[int, int]] = []

    @property
    def is_initializer(self) -> bool:
        return self.data is not None

    def __repr__(self):
        return (
            f"Tensor({self.name!r}, shape={self.shape}, producer={self.producer}, "
            f"consumers={self.consumers})"
        )


class Node:
    """One operator instance.

    Inputs are tensor names; ``None`` marks an omitted optional input.
    Outputs are tensor names; ``None`` marks an omitted optional output.
    Implicit inputs are outer-scope names read inside subgraph attributes;
    their edge slots start at ``len(inputs)``.
    """

    def __init__(
        self,
        node_id: int,
        name: str,
        op_type: str,
        inputs: Sequence[Optional[str]],
        outputs: Sequence[Optional[str]],
        attributes: Optional[Dict[str, Any]] = None,
        domain: str = DEFAULT_DOMAIN,
        since_version: int = 1,
        implicit_inputs: Sequence[str] = (),
    ):
        self.id = node_id
        self.name = name
        self.op_type = op_type
        self.domain = canonical_domain(domain)
        self.since_version = since_version
        self.inputs: List[Optional[str]] = [i or None for i in inputs]
        self.outputs: List[Optional[str]] = [o or None for o in outputs]
        self.implicit_inputs: List[str] = [i for i in implicit_inputs if i]
        self.attributes: Dict[str, AttributeValue] = {}
        for key, value in (attributes or {}).items():
            self.set_attribute(key, value)
        self._output_edge_counts: List[int] = [0] * len(self.outputs)

    @property
    def output_edge_counts(self) -> Tuple[int, ...]:
        """Cached consumer-edge count per output."""
        return tuple(self._output_edge_counts)

    @property
    def present_outputs(self) -> List[str]:
        return [o for o in self.outputs if o]

    def input_edges(self) -> List[Tuple[int, str]]:
        """(slot, tensor) for every bound explicit and implicit input."""
        edges = [(slot, name) for slot, name in enumerate(self.inputs) if name]
        offset = len(self.inputs)
        edges.extend((offset + k, name) for k, name in enumerate(self.implicit_inputs))
        return edges

    def is_implicit_slot(self, slot: int) -> bool:
        return slot >= len(self.inputs)

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    def get_attribute(self, name: str) -> Optional[AttributeValue]:
        return self.attributes.get(name)

    def set_attribute(self, name: str, value: Any):
        self.attributes[name] = AttributeValue.infer(value)

    def _typed(self, name, attr_type, default):
        attr = self.attributes.get(name)
        if attr is None:
            return default
        if attr.type != attr_type:
            raise WrongAttributeType(
                f"Attribute '{name}' of node {self.name} is {attr.type.value}, "
                f"not {attr_type.value}"
            )
        if attr_type in _LIST_TYPES:
            return list(attr.value)
        return attr.value

    def get_int(self, name: str, default=None):
        return self._typed(name, AttributeType.INT, default)

    def get_float(self, name: str, default=None):
        return self._typed(name, AttributeType.FLOAT, default)

    def get_string(self, name: str, default=None):
        return self._typed(name, AttributeType.STRING, default)

    def get_ints(self, name: str, default=None):
        return self._typed(name, AttributeType.INTS, default)

    def get_floats(self, name: str, default=None):
        return self._typed(name, AttributeType.FLOATS, default)

    def get_strings(self, name: str, default=None):
        return self._typed(name, AttributeType.STRINGS, default)

    def get_tensor(self, name: str, default=None):
        return self._typed(name, AttributeType.TENSOR, default)

    def __repr__(self):
        return f"Node(id={self.id}, name={self.name!r}, op={self.domain}:{self.op_type}-{self.since_version})"


class Graph:
    """Owns all nodes and tensors of a model graph.

    Rules receive the graph for the duration of one predicate/apply call and
    must not hold on to nodes or tensors across calls.
    """

    def __init__(self, name: str = "graph", opset_imports: Optional[Dict[str, int]] = None):
        self.name = name
        # domain -> opset version the node versions were resolved against
        self.opset_imports: Dict[str, int] = dict(opset_imports or {})
        self.inputs: List[str] = []
        self.outputs: List[str] = []
        self._nodes: Dict[int, Node] = {}
        self._names: Dict[str, int] = {}
        self._tensors: Dict[str, Tensor] = {}
        self._detached: set = set()  # (node_id, input_index) slots left unbound
        self._next_id = 0
        self._read_only_depth = 0

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_tensor(self, name: str, shape=None, elem_type=None, data=None) -> Tensor:
        """Creates a tensor or fills in metadata on an existing one."""
        self._check_writable()
        tensor = self._tensors.get(name)
        if tensor is None:
            tensor = Tensor(name, shape, elem_type, data)
            self._tensors[name] = tensor
            return tensor
        if shape is not None:
            tensor.shape = list(shape)
        if elem_type is not None:
            tensor.elem_type = elem_type
        if data is not None:
            if tensor.producer is not None:
                raise GraphStructureError(
                    f"Tensor '{name}' is produced by a node and cannot be an initializer"
                )
            tensor.data = data
        return tensor

    def add_input(self, name: str, shape=None, elem_type=None) -> Tensor:
        tensor = self.add_tensor(name, shape, elem_type)
        if name not in self.inputs:
            self.inputs.append(name)
        return tensor

    def add_initializer(self, name: str, data) -> Tensor:
        array = np.asarray(data)
        return self.add_tensor(name, list(array.shape), data=array)

    def add_output(self, name: str, shape=None, elem_type=None) -> Tensor:
        tensor = self.add_tensor(name, shape, elem_type)
        if name not in self.outputs:
            self.outputs.append(name)
        return tensor

    def add_node(
        self,
        op_type: str,
        inputs: Sequence[Optional[str]],
        outputs: Sequence[Optional[str]],
        attributes: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        domain: str = DEFAULT_DOMAIN,
        since_version: int = 1,
        implicit_inputs: Sequence[str] = (),
    ) -> Node:
        """Adds a node and wires its producer/consumer edges."""
        self._check_writable()
        node_id = self._next_id
        self._next_id += 1
        if not name:
            name = f"{op_type}_{node_id}"
        if name in self._names:
            raise GraphStructureError(f"Duplicate node name: {name}")

        node = Node(
            node_id, name, op_type, inputs, outputs, attributes, domain, since_version, implicit_inputs
        )

        for out_name in node.present_outputs:
            tensor = self._tensors.get(out_name)
            if tensor is not None and (
                tensor.producer is not None or tensor.is_initializer or out_name in self.inputs
            ):
                raise GraphStructureError(
                    f"Tensor '{out_name}' already has a producer; cannot be produced by {name}"
                )
        for index, out_name in enumerate(node.outputs):
            if not out_name:
                continue
            tensor = self.add_tensor(out_name)
            tensor.producer = node_id
            tensor.producer_index = index
            # consumers may have been added before their producer
            node._output_edge_counts[index] = len(tensor.consumers)

        for slot, in_name in node.input_edges():
            self._attach_edge(in_name, node_id, slot)

        self._nodes[node_id] = node
        self._names[name] = node_id
        return node

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_node(self, node_id: int) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: int) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NotFound(f"Node id {node_id} not found in graph '{self.name}'") from None

    def find_node(self, name: str) -> Optional[Node]:
        node_id = self._names.get(name)
        return self._nodes[node_id] if node_id is not None else None

    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    def has_tensor(self, name: str) -> bool:
        return name in self._tensors

    def get_tensor(self, name: str) -> Tensor:
        try:
            return self._tensors[name]
        except KeyError:
            raise NotFound(f"Tensor '{name}' not found in graph '{self.name}'") from None

    def tensors(self) -> List[Tensor]:
        return list(self._tensors.values())

    def initializers(self) -> List[Tensor]:
        return [t for t in self._tensors.values() if t.is_initializer]

    def producer(self, tensor_name: str) -> Optional[Node]:
        tensor = self.get_tensor(tensor_name)
        return self._nodes[tensor.producer] if tensor.producer is not None else None

    def consumer_edges(self, tensor_name: str) -> List[Tuple[int, int]]:
        return list(self.get_tensor(tensor_name).consumers)

    def consumers(self, tensor_name: str) -> List[Node]:
        """Consuming nodes, one entry per distinct node, in edge order."""
        seen = []
        for node_id, _ in self.get_tensor(tensor_name).consumers:
            if node_id not in seen:
                seen.append(node_id)
        return [self._nodes[i] for i in seen]

    def output_edge_count(self, node: Node) -> int:
        """Explicit and implicit consumer edges over all outputs of ``node``."""
        return sum(node._output_edge_counts)

    def is_implicit_edge(self, node_id: int, slot: int) -> bool:
        return self.get_node(node_id).is_implicit_slot(slot)

    def has_implicit_consumers(self, tensor_name: str) -> bool:
        """True iff some subgraph reads ``tensor_name`` from this scope."""
        return any(
            self.is_implicit_edge(node_id, slot)
            for node_id, slot in self.get_tensor(tensor_name).consumers
        )

    def output_nodes(self, node: Node) -> List[Node]:
        """Nodes consuming any output of ``node``, in edge order."""
        result = []
        for out_name in node.present_outputs:
            for consumer in self.consumers(out_name):
                if consumer not in result:
                    result.append(consumer)
        return result

    def is_graph_input(self, tensor_name: str) -> bool:
        return tensor_name in self.inputs

    def is_graph_output(self, tensor_name: str) -> bool:
        return tensor_name in self.outputs

    def produces_graph_output(self, tensor_name: str) -> bool:
        """True iff dropping the producer of ``tensor_name`` changes the model outputs."""
        tensor = self.get_tensor(tensor_name)
        return tensor.producer is not None and self.is_graph_output(tensor_name)

    def node_produces_graph_output(self, node: Node) -> bool:
        return any(self.is_graph_output(o) for o in node.present_outputs)

    def is_detached(self, node_id: int, slot: int) -> bool:
        return (node_id, slot) in self._detached

    def topological_order(self) -> List[int]:
        """Node ids in a stable topological order (ties broken by id)."""
        indegree: Dict[int, int] = {}
        for node_id, node in self._nodes.items():
            preds = set()
            for _, in_name in node.input_edges():
                if in_name in self._tensors:
                    producer = self._tensors[in_name].producer
                    if producer is not None:
                        preds.add(producer)
            indegree[node_id] = len(preds)

        ready = [i for i, d in indegree.items() if d == 0]
        heapq.heapify(ready)
        order = []
        while ready:
            node_id = heapq.heappop(ready)
            order.append(node_id)
            for successor in self.output_nodes(self._nodes[node_id]):
                indegree[successor.id] -= 1
                if indegree[successor.id] == 0:
                    heapq.heappush(ready, successor.id)

        if len(order) != len(self._nodes):
            visited = set(order)
            stuck = [self._nodes[i].name for i in self._nodes if i not in visited]
            raise GraphCycleError(f"Graph '{self.name}' has a cycle through: {', '.join(stuck)}")
        return order

    # ------------------------------------------------------------------
    # Mutation primitives
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def read_only(self) -> Iterator["Graph"]:
        """Rejects every mutation primitive while active."""
        self._read_only_depth += 1
        try:
            yield self
        finally:
            self._read_only_depth -= 1

    @property
    def is_read_only(self) -> bool:
        return self._read_only_depth > 0

    def _check_writable(self):
        if self._read_only_depth:
            raise ReadOnlyGraphError(f"Graph '{self.name}' is read-only")

    def _attach_edge(self, tensor_name: str, node_id: int, slot: int):
        tensor = self._tensors.get(tensor_name) or self.add_tensor(tensor_name)
        tensor.consumers.append((node_id, slot))
        if tensor.producer is not None and tensor.producer in self._nodes:
            self._nodes[tensor.producer]._output_edge_counts[tensor.producer_index] += 1

    def _detach_edge(self, tensor_name: str, node_id: int, slot: int):
        tensor = self.get_tensor(tensor_name)
        tensor.consumers.remove((node_id, slot))
        if tensor.producer is not None and tensor.producer in self._nodes:
            self._nodes[tensor.producer]._output_edge_counts[tensor.producer_index] -= 1

    def set_node_attribute(self, node: Node, name: str, value: Any):
        self._check_writable()
        node.set_attribute(name, value)

    def set_tensor_shape(self, tensor_name: str, shape):
        self._check_writable()
        self.get_tensor(tensor_name).shape = list(shape) if shape is not None else None

    def remove_node_output_edges(self, node: Node) -> List[Tuple[int, int, str]]:
        """Detaches every consumer edge from the outputs of ``node``.

        The node itself stays. Detached consumer slots are left unbound and
        must be re-bound with ``replace_node_input`` before the transform
        returns. Returns the detached ``(node_id, slot, tensor)`` triples.
        Subgraph reads cannot be re-bound, so an output with implicit
        consumers is rejected before anything is detached.
        """
        self._check_writable()
        for out_name in node.present_outputs:
            if self.has_implicit_consumers(out_name):
                raise GraphStructureError(
                    f"Node {node.name} output '{out_name}' is read inside a subgraph"
                )
        detached = []
        for out_name in node.present_outputs:
            for consumer_id, slot in list(self._tensors[out_name].consumers):
                self._detach_edge(out_name, consumer_id, slot)
                self._nodes[consumer_id].inputs[slot] = None
                self._detached.add((consumer_id, slot))
                detached.append((consumer_id, slot, out_name))
        return detached

    def replace_node_input(self, node: Node, input_index: int, new_tensor: str):
        """Rewires one input slot, attaching the new edge before detaching the old."""
        self._check_writable()
        if not 0 <= input_index < len(node.inputs):
            raise NotFound(f"Node {node.name} has no input slot {input_index}")
        if new_tensor not in self._tensors:
            raise NotFound(f"Tensor '{new_tensor}' not found in graph '{self.name}'")
        old_tensor = node.inputs[input_index]
        self._attach_edge(new_tensor, node.id, input_index)
        if old_tensor:
            self._detach_edge(old_tensor, node.id, input_index)
        node.inputs[input_index] = new_tensor
        self._detached.discard((node.id, input_index))

    def remove_node(self, node_id: int):
        """Deletes a node whose outputs have no consumer edges left."""
        self._check_writable()
        node = self.get_node(node_id)
        if self.node_produces_graph_output(node):
            raise GraphOutputProtected(f"Node {node.name} produces a graph output")
        for out_name in node.present_outputs:
            if self._tensors[out_name].consumers:
                raise NodeStillReferenced(
                    f"Node {node.name} output '{out_name}' still has "
                    f"{len(self._tensors[out_name].consumers)} consumer edge(s)"
                )
        if self.output_edge_count(node):
            raise NodeStillReferenced(
                f"Node {node.name} still has cached consumer edges {node.output_edge_counts}"
            )

        for slot, in_name in node.input_edges():
            self._detach_edge(in_name, node_id, slot)
        for out_name in node.present_outputs:
            del self._tensors[out_name]
        self._detached = {(n, s) for n, s in self._detached if n != node_id}
        del self._nodes[node_id]
        del self._names[node.name]

    def remove_unused_initializers(self) -> List[str]:
        """Drops initializers no node or subgraph reads and no graph input/output names."""
        self._check_writable()
        removed = [
            t.name
            for t in self._tensors.values()
            if t.is_initializer
            and not t.consumers
            and t.name not in self.outputs
            and t.name not in self.inputs
        ]
        for name in removed:
            del self._tensors[name]
        return removed

    def copy(self) -> "Graph":
        return copy.deepcopy(self)

    def restore(self, snapshot: "Graph"):
        """Replaces the contents of this graph with those of ``snapshot``.

        Callers holding this graph object see the restored state. The
        snapshot must not be used afterwards.
        """
        read_only_depth = self._read_only_depth
        self.__dict__.clear()
        self.__dict__.update(snapshot.__dict__)
        self._read_only_depth = read_only_depth

    def __repr__(self):
        return f"Graph({self.name!r}, nodes={len(self._nodes)}, tensors={len(self._tensors)})"
