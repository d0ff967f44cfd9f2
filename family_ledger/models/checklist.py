"""
Checklist Models

Monthly checklist items, share links pointing at a live slice of a user's
checklist, and the capability a share viewer is granted.
"""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from family_ledger.models.ledger import LedgerDocument


DEFAULT_CHECKLIST_GROUP = "general"


class ChecklistItem(LedgerDocument):
    """A single to-do for a month, owned by one user."""
    
    user_id: str = Field(
        ...,
        description="Owner of the item"
    )
    group: str = Field(
        default=DEFAULT_CHECKLIST_GROUP,
        max_length=100,
        description="Group label"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=300,
    )
    completed: bool = False
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=9999)
    
    @field_validator('group', mode='before')
    @classmethod
    def default_group(cls, v):
        """Missing or blank groups fall back to the default group."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_CHECKLIST_GROUP
        return v


class ChecklistShare(LedgerDocument):
    """
    A link-shareable view of a checklist.
    
    Immutable once created. group=None shares the entire month.
    """
    
    created_by: str = Field(
        ...,
        description="Owner of the shared checklist"
    )
    group: Optional[str] = Field(
        default=None,
        description="Shared group, or None for every group"
    )
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=9999)
    
    def covers(self, item: ChecklistItem) -> bool:
        """Is the item inside this share's scope?"""
        if item.user_id != self.created_by:
            return False
        if item.month != self.month or item.year != self.year:
            return False
        return self.group is None or item.group == self.group


class ChecklistCapability(str, Enum):
    """
    What a share viewer may do.
    
    OWNER: create, rename, delete, toggle.
    VIEWER: toggle only.
    """
    OWNER = "owner"
    VIEWER = "viewer"
    
    @property
    def can_edit(self) -> bool:
        return self is ChecklistCapability.OWNER
    
    @property
    def can_toggle(self) -> bool:
        return True
