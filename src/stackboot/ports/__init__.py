"""Ports layer - collaborator interfaces consumed by the bring-up core.

The core depends on these abstractions; the adapters in
``stackboot.services`` implement them.
"""

from stackboot.ports.datastore import DataStorePort
from stackboot.ports.runtime import (
    CommandResult,
    ExecutionEnvironmentPort,
    RuntimeInspection,
)

__all__ = [
    "CommandResult",
    "DataStorePort",
    "ExecutionEnvironmentPort",
    "RuntimeInspection",
]
