from typing import Set, Optional


def export_to_dot(graph, highlight_nodes: Optional[Set[str]] = None) -> str:
    """
    Exports a graph to GraphViz DOT format.

    Args:
        graph: The Graph to export.
        highlight_nodes: Optional set of node names to highlight in the diagram.

    Returns:
        A string containing the DOT representation of the graph.
    """
    highlight_nodes = highlight_nodes or set()
    dot = ["digraph G {"]
    dot.append('  node [shape=box, style=filled, fillcolor=white, fontname="Courier"];')
    dot.append('  edge [fontname="Courier"];')

    # Graph inputs and initializers have no producing node; draw them as ellipses
    for tensor in graph.tensors():
        if tensor.producer is None and tensor.consumers:
            shape = "note" if tensor.is_initializer else "ellipse"
            dot.append(f'  "{tensor.name}" [shape={shape}, fillcolor="lightyellow"];')

    for node in graph.nodes():
        color = "lightblue" if node.name in highlight_nodes else "white"
        label = f"{node.name}\\n({node.op_type}-{node.since_version})"
        dot.append(f'  "{node.name}" [label="{label}", fillcolor="{color}"];')

        for slot, input_name in enumerate(node.inputs):
            if not input_name:
                continue
            tensor = graph.get_tensor(input_name)
            source = (
                graph.get_node(tensor.producer).name
                if tensor.producer is not None
                else tensor.name
            )
            dot.append(f'  "{source}" -> "{node.name}" [label="{slot}"];')

    for output_name in graph.outputs:
        tensor = graph.get_tensor(output_name)
        dot.append(f'  "out:{output_name}" [shape=ellipse, fillcolor="palegreen"];')
        if tensor.producer is not None:
            dot.append(f'  "{graph.get_node(tensor.producer).name}" -> "out:{output_name}";')

    dot.append("}")
    return "\n".join(dot)


def save_dot(graph, path: str, highlight_nodes: Optional[Set[str]] = None):
    """Saves the DOT representation of a graph to a file."""
    dot_content = export_to_dot(graph, highlight_nodes)
    with open(path, "w") as f:
        f.write(dot_content)
