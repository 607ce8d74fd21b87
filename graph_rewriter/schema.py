"""Operator-schema lookup backed by ``onnx.defs``."""

import functools
from typing import Dict, Optional

import onnx.defs

from .ir import canonical_domain
from .utils.logger import logger as logging


class OpSchemaLookup:
    """Resolves the ``since_version`` of an operator under a set of opset imports."""

    def __init__(self, opset_imports: Optional[Dict[str, int]] = None):
        self.opset_imports = {
            canonical_domain(domain): version
            for domain, version in (opset_imports or {}).items()
        }

    def opset_version(self, domain: str) -> Optional[int]:
        return self.opset_imports.get(canonical_domain(domain))

    def since_version(self, op_type: str, domain: str = "") -> int:
        domain = canonical_domain(domain)
        opset = self.opset_version(domain)
        if opset is None:
            opset = onnx.defs.onnx_opset_version() if domain == "" else 1
        version = _lookup_since_version(op_type, domain, opset)
        if version is None:
            logging.debug(
                f"No schema for {domain or 'ai.onnx'}::{op_type} at opset {opset}; "
                f"using opset version"
            )
            return opset
        return version


@functools.lru_cache(maxsize=None)
def _lookup_since_version(op_type: str, domain: str, opset: int) -> Optional[int]:
    try:
        schema = onnx.defs.get_schema(op_type, max_inclusive_version=opset, domain=domain)
    except onnx.defs.SchemaError:
        return None
    return schema.since_version
