import os
from typing import Dict, Optional

import numpy as np
import onnx
from onnx import AttributeProto, TensorProto, helper, numpy_helper

from ..ir import AttributeType, AttributeValue, Graph
from ..schema import OpSchemaLookup
from .logger import logger as logging

_TEXT_SUFFIXES = (".pbtxt", ".txt")


def save_model(model, path):
    """Saves a ModelProto to a file (binary or protobuf text)."""
    # Ensure output directory exists
    output_dir = os.path.dirname(path)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir, exist_ok=True)

    if path.endswith(_TEXT_SUFFIXES):
        from google.protobuf import text_format

        with open(path, "w") as f:
            f.write(text_format.MessageToString(model))
    else:
        onnx.save(model, path)


def load_model(path):
    """Loads a ModelProto from a file."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Model file not found: {path}")

    if path.endswith(_TEXT_SUFFIXES):
        from google.protobuf import text_format

        model = onnx.ModelProto()
        with open(path, "r") as f:
            text_format.Merge(f.read(), model)
        return model
    return onnx.load(path)


# =======================
# ONNX <-> Graph IR
# =======================


def _shape_and_type(value_info):
    """Extracts (shape, elem_type) from a ValueInfoProto; unknown parts are None."""
    if not value_info.type.HasField("tensor_type"):
        return None, None
    tensor_type = value_info.type.tensor_type
    elem_type = tensor_type.elem_type or None
    if not tensor_type.HasField("shape"):
        return None, elem_type
    shape = []
    for dim in tensor_type.shape.dim:
        if dim.HasField("dim_value"):
            shape.append(dim.dim_value)
        elif dim.HasField("dim_param"):
            shape.append(dim.dim_param)
        else:
            shape.append(None)
    return shape, elem_type


def attribute_from_onnx(attr: AttributeProto) -> AttributeValue:
    """Unwraps an ONNX AttributeProto into a typed AttributeValue."""
    if attr.type == AttributeProto.INT:
        return AttributeValue(AttributeType.INT, attr.i)
    if attr.type == AttributeProto.FLOAT:
        return AttributeValue(AttributeType.FLOAT, attr.f)
    if attr.type == AttributeProto.STRING:
        return AttributeValue(AttributeType.STRING, attr.s.decode("utf-8"))
    if attr.type == AttributeProto.INTS:
        return AttributeValue(AttributeType.INTS, list(attr.ints))
    if attr.type == AttributeProto.FLOATS:
        return AttributeValue(AttributeType.FLOATS, list(attr.floats))
    if attr.type == AttributeProto.STRINGS:
        return AttributeValue(AttributeType.STRINGS, [s.decode("utf-8") for s in attr.strings])
    if attr.type == AttributeProto.TENSOR:
        return AttributeValue(AttributeType.TENSOR, numpy_helper.to_array(attr.t))
    # Fallback to the proto itself for complex types (graphs, sparse tensors, ...)
    opaque = AttributeProto()
    opaque.CopyFrom(attr)
    return AttributeValue(AttributeType.OPAQUE, opaque)


def attribute_to_onnx(name: str, attr: AttributeValue) -> AttributeProto:
    proto = AttributeProto()
    if attr.type == AttributeType.OPAQUE:
        proto.CopyFrom(attr.value)
        proto.name = name
        return proto

    proto.name = name
    if attr.type == AttributeType.INT:
        proto.type = AttributeProto.INT
        proto.i = attr.value
    elif attr.type == AttributeType.FLOAT:
        proto.type = AttributeProto.FLOAT
        proto.f = attr.value
    elif attr.type == AttributeType.STRING:
        proto.type = AttributeProto.STRING
        proto.s = attr.value.encode("utf-8")
    elif attr.type == AttributeType.INTS:
        proto.type = AttributeProto.INTS
        proto.ints.extend(attr.value)
    elif attr.type == AttributeType.FLOATS:
        proto.type = AttributeProto.FLOATS
        proto.floats.extend(attr.value)
    elif attr.type == AttributeType.STRINGS:
        proto.type = AttributeProto.STRINGS
        proto.strings.extend(s.encode("utf-8") for s in attr.value)
    elif attr.type == AttributeType.TENSOR:
        proto.type = AttributeProto.TENSOR
        proto.t.CopyFrom(numpy_helper.from_array(np.asarray(attr.value)))
    return proto


def _subgraphs(node_proto):
    """Yields the GraphProtos held by GRAPH and GRAPHS attributes of a node."""
    for attr in node_proto.attribute:
        if attr.type == AttributeProto.GRAPH:
            yield attr.g
        elif attr.type == AttributeProto.GRAPHS:
            yield from attr.graphs


def outer_scope_names(graph_proto: onnx.GraphProto) -> list:
    """
    Names a subgraph reads without defining them, nested subgraphs included.

    These resolve against the enclosing scope at run time.
    """
    defined = {value_info.name for value_info in graph_proto.input}
    defined.update(initializer.name for initializer in graph_proto.initializer)
    defined.update(sparse.values.name for sparse in graph_proto.sparse_initializer)
    free = []

    def read(name):
        if name and name not in defined and name not in free:
            free.append(name)

    for node_proto in graph_proto.node:
        for name in node_proto.input:
            read(name)
        for subgraph in _subgraphs(node_proto):
            for name in outer_scope_names(subgraph):
                read(name)
        defined.update(name for name in node_proto.output if name)
    for value_info in graph_proto.output:
        read(value_info.name)
    return free


def implicit_inputs(node_proto) -> list:
    """Outer-scope names read by all subgraph attributes of a node, in first-use order."""
    names = []
    for subgraph in _subgraphs(node_proto):
        for name in outer_scope_names(subgraph):
            if name not in names:
                names.append(name)
    return names


def _unique_node_names(nodes) -> list:
    """Names for every NodeProto; unnamed or duplicate nodes get generated names."""
    taken = {n.name for n in nodes if n.name}
    names = []
    used = set()
    for index, node in enumerate(nodes):
        name = node.name
        if not name or name in used:
            base = node.name or node.op_type
            candidate = f"{base}_{index}"
            suffix = 0
            while candidate in taken or candidate in used:
                suffix += 1
                candidate = f"{base}_{index}_{suffix}"
            name = candidate
        used.add(name)
        names.append(name)
    return names


def graph_from_onnx(model: onnx.ModelProto, schema_lookup: Optional[OpSchemaLookup] = None) -> Graph:
    """
    Builds the graph IR from an ONNX model.

    Node versions are the ``since_version`` of each op's schema under the
    model's opset imports. Names read inside subgraph attributes from the
    main graph become implicit inputs of the owning node.

    Args:
        model: The ONNX ModelProto
        schema_lookup: Optional operator-schema lookup (defaults to onnx.defs)

    Returns:
        Graph: the in-memory graph
    """
    opsets = {opset.domain: opset.version for opset in model.opset_import}
    lookup = schema_lookup or OpSchemaLookup(opsets)
    onnx_graph = model.graph
    graph = Graph(onnx_graph.name or "graph", opset_imports=lookup.opset_imports)

    for value_info in onnx_graph.input:
        shape, elem_type = _shape_and_type(value_info)
        graph.add_input(value_info.name, shape, elem_type)
    for initializer in onnx_graph.initializer:
        tensor = graph.add_initializer(initializer.name, numpy_helper.to_array(initializer))
        tensor.elem_type = initializer.data_type
    if len(onnx_graph.sparse_initializer):
        logging.warning(
            f"[{graph.name}] {len(onnx_graph.sparse_initializer)} sparse initializer(s) "
            f"are treated as runtime values"
        )
    for value_info in onnx_graph.value_info:
        shape, elem_type = _shape_and_type(value_info)
        graph.add_tensor(value_info.name, shape, elem_type)
    for value_info in onnx_graph.output:
        shape, elem_type = _shape_and_type(value_info)
        graph.add_output(value_info.name, shape, elem_type)

    for node_proto, name in zip(onnx_graph.node, _unique_node_names(onnx_graph.node)):
        graph.add_node(
            node_proto.op_type,
            list(node_proto.input),
            list(node_proto.output),
            attributes={a.name: attribute_from_onnx(a) for a in node_proto.attribute},
            name=name,
            domain=node_proto.domain,
            since_version=lookup.since_version(node_proto.op_type, node_proto.domain),
            implicit_inputs=implicit_inputs(node_proto),
        )
    return graph


def _make_value_info(tensor) -> onnx.ValueInfoProto:
    if tensor.elem_type is None:
        value_info = onnx.ValueInfoProto()
        value_info.name = tensor.name
        return value_info
    return helper.make_tensor_value_info(tensor.name, tensor.elem_type, tensor.shape)


def graph_to_onnx(
    graph: Graph,
    template: Optional[onnx.ModelProto] = None,
    opset_imports: Optional[Dict[str, int]] = None,
) -> onnx.ModelProto:
    """
    Serializes the graph IR back into an ONNX model.

    Nodes are written in topological order. When ``template`` is given its
    metadata and opset imports are kept and only the graph is replaced.
    """
    node_protos = []
    for node_id in graph.topological_order():
        node = graph.get_node(node_id)
        proto = onnx.NodeProto()
        proto.op_type = node.op_type
        proto.name = node.name
        proto.domain = node.domain
        proto.input.extend(i or "" for i in node.inputs)
        proto.output.extend(o or "" for o in node.outputs)
        proto.attribute.extend(
            attribute_to_onnx(key, node.attributes[key]) for key in sorted(node.attributes)
        )
        node_protos.append(proto)

    initializers = []
    for tensor in graph.initializers():
        array = np.asarray(tensor.data)
        initializers.append(numpy_helper.from_array(array, tensor.name))

    inputs = [_make_value_info(graph.get_tensor(name)) for name in graph.inputs]
    outputs = [_make_value_info(graph.get_tensor(name)) for name in graph.outputs]
    value_info = [
        _make_value_info(t)
        for t in graph.tensors()
        if t.producer is not None
        and t.elem_type is not None
        and not graph.is_graph_output(t.name)
    ]
    graph_proto = helper.make_graph(
        node_protos, graph.name, inputs, outputs, initializer=initializers, value_info=value_info
    )

    if template is not None:
        model = onnx.ModelProto()
        model.CopyFrom(template)
        model.graph.CopyFrom(graph_proto)
        return model

    opsets = opset_imports or graph.opset_imports or {"": onnx.defs.onnx_opset_version()}
    return helper.make_model(
        graph_proto,
        producer_name="graph_rewriter",
        opset_imports=[helper.make_opsetid(domain, version) for domain, version in opsets.items()],
    )


class ModelBuilder:
    """Helper to assemble small ONNX models node by node."""

    def __init__(self, name="graph", opset=13, name_prefix=""):
        self.name = name
        self.opset = opset
        self.prefix = name_prefix
        self.nodes = []
        self.inputs = []
        self.outputs = []
        self.initializers = []

    def add_input(self, name, shape, elem_type=TensorProto.FLOAT):
        self.inputs.append(helper.make_tensor_value_info(name, elem_type, shape))
        return name

    def add_initializer(self, name, value, dtype=None):
        array = np.asarray(value, dtype=dtype)
        self.initializers.append(numpy_helper.from_array(array, name))
        return name

    def add_node(self, op_type, inputs, outputs=None, name=None, domain="", **attrs):
        full_name = self.prefix + (name or f"{op_type}_{len(self.nodes)}")
        outputs = list(outputs) if outputs is not None else [f"{full_name}_out"]
        node = helper.make_node(op_type, list(inputs), outputs, name=full_name, domain=domain, **attrs)
        self.nodes.append(node)
        return outputs[0]

    def add_output(self, name, shape=None, elem_type=TensorProto.FLOAT):
        self.outputs.append(helper.make_tensor_value_info(name, elem_type, shape))
        return name

    def build(self) -> onnx.ModelProto:
        graph = helper.make_graph(
            self.nodes, self.name, self.inputs, self.outputs, initializer=self.initializers
        )
        return helper.make_model(graph, opset_imports=[helper.make_opsetid("", self.opset)])
