"""Account routes: register, login, logout and the profile of the session user."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from .. import auth
from ..deps import current_user, get_store
from ..errors import Unauthorized, ValidationError
from ..models import User
from ..store import Store

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Failed logins per client IP, kept in process memory.
_MAX_FAILED_LOGINS = 5
_FAILED_LOGIN_WINDOW_SECS = 300

_login_attempts: dict[str, list[float]] = {}


def _forget_stale_attempts(now: float) -> None:
    cutoff = now - _FAILED_LOGIN_WINDOW_SECS
    for ip in list(_login_attempts):
        recent = [t for t in _login_attempts[ip] if t > cutoff]
        if recent:
            _login_attempts[ip] = recent
        else:
            del _login_attempts[ip]


def _check_rate_limit(client_ip: str) -> None:
    _forget_stale_attempts(time.monotonic())
    if len(_login_attempts.get(client_ip, ())) >= _MAX_FAILED_LOGINS:
        raise HTTPException(
            status_code=429,
            detail=f"Too many login attempts. Try again in {_FAILED_LOGIN_WINDOW_SECS // 60} minutes.",
        )


def _user_to_public(user: User) -> dict[str, Any]:
    return {"id": user.id, "username": user.username, "email": user.email}


def _start_session(response: Response, user: User) -> dict[str, Any]:
    token = auth.issue_token(user.id)
    auth.set_session_cookie(response, token)
    return {"user": _user_to_public(user), "token": token}


class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    # ``login`` takes a username or an email; ``email`` is accepted as well.
    login: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


@router.post("/register", status_code=201)
def register(body: RegisterRequest, response: Response, store: Store = Depends(get_store)) -> dict[str, Any]:
    user = auth.register_user(store, body.username or "", body.email or "", body.password or "")
    return _start_session(response, user)


@router.post("/login")
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    identifier = (body.login or body.email or "").strip()
    if not identifier or not body.password:
        raise ValidationError("Please provide email and password")

    client_ip = request.client.host if request.client else "unknown"
    _check_rate_limit(client_ip)
    try:
        user = auth.authenticate(store, identifier, body.password)
    except Unauthorized:
        _login_attempts.setdefault(client_ip, []).append(time.monotonic())
        log.info("Failed login for %r from %s", identifier, client_ip)
        raise

    _login_attempts.pop(client_ip, None)
    return _start_session(response, user)


@router.get("/logout")
def logout(response: Response) -> dict[str, str]:
    auth.clear_session_cookie(response)
    return {"message": "Logged out"}


@router.get("/profile")
@router.get("/me")
def profile(user: User = Depends(current_user)) -> dict[str, Any]:
    return {"user": _user_to_public(user)}
