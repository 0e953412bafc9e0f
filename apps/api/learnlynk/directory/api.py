from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from learnlynk.core.auth import get_current_context
from learnlynk.core.database import get_db
from learnlynk.directory.schemas import MembershipRead, TeamRead, UserRead
from learnlynk.directory.service import DirectoryService
from learnlynk.platform.security.context import AuthContext

router = APIRouter(prefix="/api/directory", tags=["directory"])
directory_service = DirectoryService()


@router.get("/users", response_model=list[UserRead])
def list_users(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[UserRead]:
    return directory_service.list_users(db, ctx)


@router.get("/teams", response_model=list[TeamRead])
def list_teams(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[TeamRead]:
    return directory_service.list_teams(db, ctx)


@router.get("/memberships", response_model=list[MembershipRead])
def list_memberships(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_context),
) -> list[MembershipRead]:
    return directory_service.list_memberships(db, ctx)
