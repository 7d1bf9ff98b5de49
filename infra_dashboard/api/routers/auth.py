"""Shared-password gate: login, logout, and whether a password is required at all."""

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from infra_dashboard.api.dependencies import Container

router = APIRouter()


class LoginRequest(BaseModel):
    password: str


@router.get("/login")
async def login_status(request: Request, container: Container):
    sessions = container.sessions
    token = request.cookies.get(container.settings.session_cookie_name)
    return {
        "password_required": sessions.enabled,
        "authenticated": sessions.is_valid(token),
    }


@router.post("/login")
async def login(body: LoginRequest, response: Response, container: Container):
    """Set the session cookie on a correct password. Wrong password -> 401."""
    token = container.sessions.login(body.password)
    if token is None:
        return {"success": True, "password_required": False}
    settings = container.settings
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=container.sessions.max_age_sec,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "prod",
    )
    return {"success": True, "password_required": True}


@router.post("/logout")
async def logout(response: Response, container: Container):
    response.delete_cookie(container.settings.session_cookie_name)
    return {"success": True}
