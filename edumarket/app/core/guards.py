"""
Security guards for role-based access control.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from edumarket.app.models.enums import UserRole
from edumarket.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/admin/payouts")
        async def list_payouts(current_user: dict = Depends(require_role([UserRole.ADMIN]))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        try:
            user_role = UserRole(current_user.get("role"))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


require_admin = require_role([UserRole.ADMIN])
require_teacher = require_role([UserRole.TEACHER])
require_student = require_role([UserRole.STUDENT])
