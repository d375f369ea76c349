"""Change event definitions.

The closed set of signals that invalidate cached policy state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Set


class ChangeEventType(str, Enum):
    """All change event kinds carried by the event bus."""

    # Preference changes (posted by any process, including the OS)
    FULL_SCREEN_VISIBILITY_CHANGED = "preferences::full_screen_visibility"
    HIDING_ON_DESKTOP_CHANGED = "preferences::hiding_on_desktop"

    # Workspace events
    APP_ACTIVATED = "app::activated"
    APP_TERMINATED = "app::terminated"

    # Posted after every successful policy write so companion surfaces refresh
    ALL_POLICIES_CHANGED = "policies::changed"

    @classmethod
    def preference_types(cls) -> Set["ChangeEventType"]:
        """Event kinds that signal an external preference change."""
        return {cls.FULL_SCREEN_VISIBILITY_CHANGED, cls.HIDING_ON_DESKTOP_CHANGED}

    @classmethod
    def requires_scope(cls, event_type: "ChangeEventType") -> bool:
        """Whether events of this kind must name the application scope."""
        return event_type in {cls.APP_ACTIVATED, cls.APP_TERMINATED}


@dataclass(frozen=True)
class ChangeEvent:
    """Single event delivered to bus subscribers."""

    event_type: ChangeEventType
    scope: Optional[str] = None  # Bundle identifier for app events
    origin: Optional[str] = None  # Identity of the posting actor, None if external
    posted_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        """Validate that app events name their scope."""
        if ChangeEventType.requires_scope(self.event_type) and not self.scope:
            raise ValueError(f"{self.event_type.value} event requires a scope")

    def is_from(self, identity: str) -> bool:
        """Check if this event was posted by the given actor."""
        return self.origin is not None and self.origin == identity
