from typing import List

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer

from ..models.user import UserRole

security = HTTPBearer()


async def get_current_user(request: Request, token=Depends(security)) -> dict:
    user_data = request.app.state.session_manager.validate_token(token.credentials)
    if not user_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    if not user_data.get("is_active", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )
    return user_data


def _check_role(current_user: dict, allowed_roles: List[UserRole]) -> dict:
    if current_user.get("role") not in [r.value for r in allowed_roles]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return current_user


async def require_manager(current_user: dict = Depends(get_current_user)):
    return _check_role(current_user, [UserRole.MANAGER])


async def require_staff(current_user: dict = Depends(get_current_user)):
    return _check_role(current_user, list(UserRole))


async def require_floor_staff(current_user: dict = Depends(get_current_user)):
    """Captains and cashiers run orders at the tables and the POS."""
    return _check_role(current_user, [UserRole.CAPTAIN, UserRole.CASHIER, UserRole.MANAGER])


async def require_cashier_staff(current_user: dict = Depends(get_current_user)):
    return _check_role(current_user, [UserRole.CASHIER, UserRole.MANAGER])


async def require_kitchen_staff(current_user: dict = Depends(get_current_user)):
    # captains mark Ready items as Served from the same endpoint
    return _check_role(current_user, [UserRole.CHEF, UserRole.CAPTAIN, UserRole.MANAGER])
