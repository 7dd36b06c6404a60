"""
Role-Based Access Control (RBAC) dependencies.
"""
from enum import Enum
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials

from landedcost.core.security import decode_token, security


class Role(str, Enum):
    ADMIN = "admin"
    OPERATOR = "operator"
    VIEWER = "viewer"


# Role hierarchy: higher index = more permissions
ROLE_HIERARCHY = {
    Role.VIEWER: 0,
    Role.OPERATOR: 1,
    Role.ADMIN: 2,
}


def has_permission(user_role: Role, required_role: Role) -> bool:
    """Check if user role has sufficient permissions."""
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


def _parse_role(raw) -> Role:
    try:
        return Role(raw or "viewer")
    except ValueError:
        return Role.VIEWER


async def get_current_user_context(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """Get the requester identity from the bearer token."""
    payload = decode_token(credentials.credentials)
    
    user_id_raw = payload.get("sub") or payload.get("user_id")
    if user_id_raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user identifier (sub)",
        )
    
    return {
        "sub": str(user_id_raw),
        "user_id": str(user_id_raw),
        "email": payload.get("email"),
        "role": _parse_role(payload.get("role")),
    }


class RBACChecker:
    """Dependency for checking role-based access."""
    
    def __init__(self, required_role: Role):
        self.required_role = required_role
    
    async def __call__(
        self,
        user_context: dict = Depends(get_current_user_context),
    ) -> dict:
        if not has_permission(user_context["role"], self.required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {self.required_role.value}",
            )
        return user_context


require_operator = RBACChecker(Role.OPERATOR)
require_admin = RBACChecker(Role.ADMIN)
