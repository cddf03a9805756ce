import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel

from ..core.permissions import get_current_user, security
from ..core.session import SessionManager
from ..database import get_supabase, get_supabase_admin
from ..utils.clock import get_local_time
from .deps import get_session_manager

logger = logging.getLogger(__name__)


class UserLogin(BaseModel):
    email: str
    password: str


router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=dict)
async def login(
    credentials: UserLogin,
    sessions: SessionManager = Depends(get_session_manager),
):
    supabase = get_supabase()
    try:
        response = supabase.auth.sign_in_with_password({
            "email": credentials.email,
            "password": credentials.password,
        })
    except Exception as e:
        logger.warning("Login failed for %s: %s", credentials.email, e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    profile = get_supabase_admin().table("profiles").select("*").eq("id", response.user.id).single().execute()

    if not profile.data:
        supabase.auth.sign_out()
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User profile not found",
        )

    if not profile.data.get("is_active", True):
        supabase.auth.sign_out()
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account deactivated",
        )

    sessions.create_session(response.user.id, profile.data, response.session.access_token)

    supabase.table("profiles").update({
        "last_login": get_local_time().isoformat()
    }).eq("id", response.user.id).execute()

    logger.info("%s signed in as %s", profile.data["email"], profile.data["role"])
    return {
        "access_token": response.session.access_token,
        "refresh_token": response.session.refresh_token,
        "user": {
            "id": response.user.id,
            "email": profile.data["email"],
            "role": profile.data["role"],
        },
    }


@router.post("/logout")
async def logout(
    token: HTTPAuthorizationCredentials = Depends(security),
    current_user: dict = Depends(get_current_user),
    sessions: SessionManager = Depends(get_session_manager),
):
    sessions.destroy_session(current_user["id"], token.credentials)
    return {"message": "Logged out"}


@router.get("/me")
async def me(current_user: dict = Depends(get_current_user)):
    return {
        "id": current_user["id"],
        "email": current_user.get("email"),
        "role": current_user.get("role"),
    }
