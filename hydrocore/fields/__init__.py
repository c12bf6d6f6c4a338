"""
Field management: structure, storage, ownership and the shared State.
"""

from hydrocore.fields.base import (
    DEFAULT_DOMAIN,
    ComponentSpec,
    Field,
    FieldData,
    FieldTemplate,
    IOFlags,
    get_key,
    key_domain,
)
from hydrocore.fields.graph import topological_order
from hydrocore.fields.state import READ_REQUEST, State

__all__ = [
    "DEFAULT_DOMAIN",
    "ComponentSpec",
    "Field",
    "FieldData",
    "FieldTemplate",
    "IOFlags",
    "READ_REQUEST",
    "State",
    "get_key",
    "key_domain",
    "topological_order",
]
