"""
Data models for menubar-policy.

- policy: visibility policy enums and the boolean-pair encoding
- events: typed change events carried by the event bus
- state: Pydantic models for engine snapshots and tracked applications
- config: Pydantic model for daemon configuration
"""

from .policy import (
    VisibilityPolicy,
    SystemVisibilityPolicy,
    from_booleans,
    to_booleans,
    changed_components,
)
from .events import ChangeEvent, ChangeEventType
from .state import EngineState, TrackedAppState
from .config import DaemonConfig

__all__ = [
    "VisibilityPolicy",
    "SystemVisibilityPolicy",
    "from_booleans",
    "to_booleans",
    "changed_components",
    "ChangeEvent",
    "ChangeEventType",
    "EngineState",
    "TrackedAppState",
    "DaemonConfig",
]
