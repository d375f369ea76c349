"""
EngineState and TrackedAppState Pydantic models.

Provides data validation and JSON serialization for the engine's cached
policy views and the tracked-application registry entries.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import SYSTEM_SCOPE
from .policy import SystemVisibilityPolicy, VisibilityPolicy


class EngineState(BaseModel):
    """Snapshot of the reconciliation engine's cached views.

    Never persisted as a source of truth: every field is re-derivable from
    the settings store.
    """

    model_config = ConfigDict(frozen=True)

    current_app_policy: VisibilityPolicy = Field(
        default=VisibilityPolicy.DEFAULT,
        description="Policy of the focused application"
    )
    system_policy: SystemVisibilityPolicy = Field(
        default=SystemVisibilityPolicy.FULL_SCREEN_ONLY,
        description="System-wide policy"
    )
    needs_elevated_access_for_current_app: bool = Field(
        default=False,
        description="Last selection was blocked by a missing privilege"
    )
    focused_scope: Optional[str] = Field(
        default=None,
        description="Bundle identifier the current app view refers to"
    )
    updated_at: datetime = Field(default_factory=datetime.now)

    def to_status_json(self) -> dict:
        """Serialize for the status file consumed by menu surfaces."""
        return {
            "current_app": {
                "scope": self.focused_scope,
                "policy": self.current_app_policy.value,
                "label": self.current_app_policy.label,
                "needs_elevated_access": self.needs_elevated_access_for_current_app,
            },
            "system": {
                "policy": self.system_policy.value,
                "label": self.system_policy.label,
            },
            "updated_at": self.updated_at.isoformat(),
        }


class TrackedAppState(BaseModel):
    """Application tracked by the registry with its saved policy."""

    scope: str = Field(..., min_length=1, description="Bundle identifier")
    display_name: str = Field(..., min_length=1)
    bundle_path: str = Field(..., min_length=1, description="Path to the .app bundle")
    icon: Optional[str] = Field(default=None, description="Icon file reference inside the bundle")
    policy: VisibilityPolicy = Field(default=VisibilityPolicy.DEFAULT)

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        """Reject the reserved system scope as an application identifier."""
        if v == SYSTEM_SCOPE or v.startswith("-"):
            raise ValueError(f"not an application bundle identifier: {v}")
        return v

    @field_validator("policy", mode="before")
    @classmethod
    def decode_policy(cls, v):
        """Decode persisted strings leniently (unknown values become DEFAULT)."""
        if isinstance(v, str):
            return VisibilityPolicy.from_string(v)
        return v

    def to_registry_json(self) -> dict:
        """Serialize to the registry file entry format."""
        return {
            "policy": self.policy.value,
            "bundle_path": self.bundle_path,
            "display_name": self.display_name,
            "icon": self.icon,
        }
