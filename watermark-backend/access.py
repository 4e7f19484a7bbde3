"""
Ownership/role authorization for audio assets.

One predicate for every operation that touches someone's asset (view, edit,
delete, download, detection association).
"""

from enum import Enum
from typing import Optional

from errors import PermissionDenied
from models import AudioAsset, UserRecord


class AccessLevel(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    DENIED = "denied"


def can_access(asset: AudioAsset, user: Optional[UserRecord]) -> AccessLevel:
    if user is None:
        return AccessLevel.DENIED
    if asset.owner_id == user.id:
        return AccessLevel.OWNER
    if user.is_admin:
        return AccessLevel.ADMIN
    return AccessLevel.DENIED


def require_access(asset: AudioAsset, user: Optional[UserRecord], action: str = "access") -> AccessLevel:
    """Return the caller's access level or raise PermissionDenied."""
    level = can_access(asset, user)
    if level == AccessLevel.DENIED:
        raise PermissionDenied(f"You don't have permission to {action} this audio file!")
    return level
