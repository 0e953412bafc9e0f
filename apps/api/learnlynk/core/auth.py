from dataclasses import dataclass

from fastapi import Depends
from jose import JWTError, jwt
from sqlalchemy.orm import Session
from starlette.requests import Request

from learnlynk.context import get_correlation_id
from learnlynk.core.config import get_settings
from learnlynk.core.database import get_db
from learnlynk.directory.service import with_team_ids
from learnlynk.platform.security.context import AuthContext, parse_uuid


@dataclass
class AuthUser:
    sub: str
    tenant_id: str | None
    role: str | None


ANONYMOUS = AuthUser(sub="anonymous", tenant_id=None, role=None)


def decode_token(token: str) -> AuthUser:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return ANONYMOUS

    subject = payload.get("sub")
    if not subject:
        return ANONYMOUS
    tenant_id = payload.get("tenant_id")
    role = payload.get("role")
    return AuthUser(
        sub=str(subject),
        tenant_id=str(tenant_id) if tenant_id else None,
        role=str(role).lower() if role else None,
    )


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return ANONYMOUS

    user = decode_token(token)
    context = getattr(request.state, "context", None)
    if context is not None and user is not ANONYMOUS:
        context.user_id = user.sub
        context.tenant_id = user.tenant_id
    return user


def get_current_context(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> AuthContext:
    """Resolve the request principal; unknown or partial claims yield a context that every policy denies."""

    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    ctx = AuthContext(
        user_id=parse_uuid(user.sub),
        tenant_id=parse_uuid(user.tenant_id),
        role=user.role,
        correlation_id=correlation_id,
    )
    if ctx.is_well_formed:
        with_team_ids(db, ctx)
    return ctx
