from learnlynk.platform.security.context import AuthContext
from learnlynk.platform.security.errors import AuthorizationError
from learnlynk.platform.security.policies import (
    ApplicationRow,
    LeadRow,
    MembershipRow,
    ResourceAction,
    TaskRow,
    TeamRow,
    UserRow,
    decide,
)
from learnlynk.platform.security.repository import BaseRepository
from learnlynk.platform.security.rls import apply_rls_filter, validate_rls_write

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "ApplicationRow",
    "LeadRow",
    "MembershipRow",
    "ResourceAction",
    "TaskRow",
    "TeamRow",
    "UserRow",
    "decide",
    "BaseRepository",
    "apply_rls_filter",
    "validate_rls_write",
]
