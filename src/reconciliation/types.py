"""
Type definitions for the reconciliation engine.

Aliases used in public signatures so that resource-binding code only ever hands
the engine typed collections, requests and states.
"""

# AWS Client Types - Using Any for flexibility with boto3 clients
#
# boto3 service clients are generated at runtime and ship no static stubs, so
# client parameters are annotated with named aliases of Any.
from typing import Any, Dict, List, Mapping, Union

AWSClient = Any

# Status string reported by a describe call, e.g. "available" or "deleting"
State = str

# Item key -> item value, e.g. tag name -> tag value
DeclaredCollection = Mapping[str, str]

# Request payloads and responses built by the caller's schema mapping
RequestValue = Union[str, int, float, bool, List, Dict, None]
Request = Dict[str, RequestValue]
Response = Dict[str, Any]

ResourceId = str

# JSON-patch style entry, e.g. {"op": "replace", "path": "/name", "value": "x"}
PatchOperation = Dict[str, str]
