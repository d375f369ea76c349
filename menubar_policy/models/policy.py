"""Menu bar visibility policy model.

A policy is stored as two independent preference booleans per scope:

| visible in full screen | hidden on desktop | policy             |
|------------------------|-------------------|--------------------|
| False                  | False             | in full screen only|
| False                  | True              | always             |
| True                   | False             | never              |
| True                   | True              | on desktop only    |
| missing                | missing           | system default     |

This module is the only place that knows the table. Everything else goes
through from_booleans() / to_booleans().
"""

from enum import Enum
from typing import Dict, Optional, Tuple, Union

BooleanPair = Tuple[Optional[bool], Optional[bool]]

# (visible_in_full_screen, hidden_on_desktop) -> encoded policy
_ENCODED_BY_BOOLEANS: Dict[Tuple[bool, bool], str] = {
    (False, False): "inFullScreenOnly",
    (False, True): "always",
    (True, False): "never",
    (True, True): "onDesktopOnly",
}
_BOOLEANS_BY_ENCODED: Dict[str, Tuple[bool, bool]] = {
    encoded: pair for pair, encoded in _ENCODED_BY_BOOLEANS.items()
}

_LABELS: Dict[str, str] = {
    "always": "Always",
    "onDesktopOnly": "On desktop only",
    "inFullScreenOnly": "In full screen only",
    "never": "Never",
    "systemDefault": "System default",
}


class VisibilityPolicy(str, Enum):
    """Menu bar visibility policy for an application scope.

    The enum value is the stable string encoding persisted in the
    tracked-app registry.
    """

    ALWAYS = "always"
    DESKTOP_ONLY = "onDesktopOnly"
    FULL_SCREEN_ONLY = "inFullScreenOnly"
    NEVER = "never"
    DEFAULT = "systemDefault"

    @property
    def label(self) -> str:
        """Human readable name."""
        return _LABELS[self.value]

    @classmethod
    def from_string(cls, value: Optional[str]) -> "VisibilityPolicy":
        """Decode a persisted policy string.

        Unrecognized (or missing) strings decode to DEFAULT; this never raises.
        """
        try:
            return cls(value)
        except ValueError:
            return cls.DEFAULT

    def to_booleans(self) -> BooleanPair:
        return to_booleans(self)


class SystemVisibilityPolicy(str, Enum):
    """Menu bar visibility policy for the system scope.

    Identical to VisibilityPolicy minus DEFAULT: the system scope always
    resolves to a concrete pair of booleans.
    """

    ALWAYS = "always"
    DESKTOP_ONLY = "onDesktopOnly"
    FULL_SCREEN_ONLY = "inFullScreenOnly"
    NEVER = "never"

    @property
    def label(self) -> str:
        """Human readable name."""
        return _LABELS[self.value]

    @classmethod
    def from_string(cls, value: Optional[str]) -> "SystemVisibilityPolicy":
        """Decode a persisted policy string.

        Unrecognized strings, including "systemDefault", decode to
        FULL_SCREEN_ONLY, the policy absent system keys read as.
        """
        try:
            return cls(value)
        except ValueError:
            return cls.FULL_SCREEN_ONLY

    @classmethod
    def from_booleans(
        cls, visible_in_full_screen: bool, hidden_on_desktop: bool
    ) -> "SystemVisibilityPolicy":
        return cls(_ENCODED_BY_BOOLEANS[(bool(visible_in_full_screen), bool(hidden_on_desktop))])

    def to_booleans(self) -> Tuple[bool, bool]:
        return _BOOLEANS_BY_ENCODED[self.value]


AnyPolicy = Union[VisibilityPolicy, SystemVisibilityPolicy]


def from_booleans(
    visible_in_full_screen: Optional[bool], hidden_on_desktop: Optional[bool]
) -> VisibilityPolicy:
    """Map the stored boolean pair to a policy.

    Args:
        visible_in_full_screen: Value of the full screen visibility key, None if absent
        hidden_on_desktop: Value of the hide on desktop key, None if absent

    Returns:
        DEFAULT if either value is absent, otherwise the table lookup
    """
    if visible_in_full_screen is None or hidden_on_desktop is None:
        return VisibilityPolicy.DEFAULT
    return VisibilityPolicy(_ENCODED_BY_BOOLEANS[(visible_in_full_screen, hidden_on_desktop)])


def to_booleans(policy: AnyPolicy) -> BooleanPair:
    """Map a policy to the boolean pair to store.

    Args:
        policy: Application or system policy

    Returns:
        (visible_in_full_screen, hidden_on_desktop); (None, None) for DEFAULT,
        meaning both keys are deleted
    """
    if policy.value == VisibilityPolicy.DEFAULT.value:
        return (None, None)
    return _BOOLEANS_BY_ENCODED[policy.value]


def changed_components(previous: AnyPolicy, new: AnyPolicy) -> Tuple[bool, bool]:
    """Compare two policies component by component.

    Computed from the raw boolean pairs so an absent value (DEFAULT) counts
    as different from an explicit False.

    Returns:
        (full_screen_changed, hidden_on_desktop_changed)
    """
    old_full_screen, old_hidden = to_booleans(previous)
    new_full_screen, new_hidden = to_booleans(new)
    return (old_full_screen != new_full_screen, old_hidden != new_hidden)
