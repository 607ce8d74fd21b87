"""
Constant resolution.

Legality of many fusions depends on values known at compile time (a pad
amount, a fill value) rather than on graph structure alone. This module
answers whether a tensor is such a constant and hands out read-only views
of its data.
"""

from typing import List

import numpy as np

from .errors import NotConstant
from .ir import Graph


class TypedByteView:
    """Read-only view of an initializer: element type, shape and flat bytes.

    The view borrows the graph-owned array; it must not be kept past a
    mutation that replaces or removes the underlying tensor.
    """

    def __init__(self, name: str, array: np.ndarray):
        view = np.ascontiguousarray(array).view()
        view.flags.writeable = False
        self.name = name
        self._array = view

    @property
    def dtype(self) -> np.dtype:
        return self._array.dtype

    @property
    def shape(self):
        return tuple(self._array.shape)

    @property
    def size(self) -> int:
        return int(self._array.size)

    @property
    def bytes(self) -> memoryview:
        return memoryview(self._array.reshape(-1).view(np.uint8))

    def as_array(self) -> np.ndarray:
        return self._array

    def as_int64(self) -> List[int]:
        """Values as a flat list of 64-bit integers."""
        if not np.issubdtype(self.dtype, np.integer):
            raise TypeError(f"Constant '{self.name}' has non-integer type {self.dtype}")
        return [int(v) for v in self._array.reshape(-1).astype(np.int64)]

    def all_bytes_zero(self) -> bool:
        return not np.any(self._array.reshape(-1).view(np.uint8))

    def __len__(self):
        return self.size

    def __repr__(self):
        return f"TypedByteView({self.name!r}, dtype={self.dtype}, shape={self.shape})"


def is_constant(graph: Graph, tensor_name: str) -> bool:
    """True iff the tensor is an initializer that cannot be overridden at run time.

    An initializer also listed as a graph input may be fed by the caller and
    is therefore a runtime value.
    """
    if not tensor_name or not graph.has_tensor(tensor_name):
        return False
    tensor = graph.get_tensor(tensor_name)
    return tensor.is_initializer and not graph.is_graph_input(tensor_name)


def materialize(graph: Graph, tensor_name: str) -> TypedByteView:
    if not is_constant(graph, tensor_name):
        raise NotConstant(f"Tensor '{tensor_name}' is not a compile-time constant")
    return TypedByteView(tensor_name, graph.get_tensor(tensor_name).data)
