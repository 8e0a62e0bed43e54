from typing import Annotated, Set
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.security import verify_access_token
from app.core.permissions import PermissionChecker, Principal, Role, permissions_for_role
from app.core.enum_utils import normalize_to_lowercase


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Principal:
    """
    Dependency to get the current authenticated caller.

    Users live in the external auth provider; the bearer token's claims are
    the whole identity (``sub``, ``role``, optional ``name``).
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    claims = verify_access_token(credentials.credentials)
    if claims is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        user_uuid = uuid.UUID(str(claims["sub"]))
    except ValueError:
        logger.warning(f"Invalid user id in token: {claims.get('sub')}")
        raise credentials_exception

    try:
        role = normalize_to_lowercase(claims["role"], Role)
    except ValueError:
        logger.warning(f"Unknown role in token: {claims['role']}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role '{claims['role']}'"
        )

    return Principal(user_id=user_uuid, role=role, name=claims.get("name"))


async def get_user_permissions(
    user: Annotated[Principal, Depends(get_current_user)],
) -> Set[str]:
    """All permission codes granted to the caller's role."""
    return permissions_for_role(user.role)


async def get_permission_checker(
    user: Annotated[Principal, Depends(get_current_user)],
    permissions: Annotated[Set[str], Depends(get_user_permissions)]
) -> PermissionChecker:
    """
    Get a PermissionChecker instance for the current user.
    """
    return PermissionChecker(user, permissions)


def require_permissions(*required_permissions: str):
    """
    Dependency factory to require specific permissions.

    Usage:
        @router.post("/cancel", dependencies=[Depends(require_permissions("runs:cancel"))])
        async def cancel_runs():
            ...
    """
    async def permission_dependency(
        permission_checker: Annotated[PermissionChecker, Depends(get_permission_checker)]
    ):
        for permission in required_permissions:
            if not permission_checker.has_permission(permission):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission denied. Required: {permission}"
                )
        return True

    return permission_dependency


def ensure_can_pick(permission_checker: PermissionChecker, runner_id) -> None:
    """Runners may only work runs assigned to them or still unassigned."""
    if not permission_checker.can_pick_on_run(runner_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This run is assigned to another runner"
        )


# Type aliases for cleaner endpoint signatures
CurrentUser = Annotated[Principal, Depends(get_current_user)]
DB = Annotated[AsyncSession, Depends(get_db)]
Permissions = Annotated[PermissionChecker, Depends(get_permission_checker)]
