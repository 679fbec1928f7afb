"""Accounts and session tokens.

A session token is a signed JWT whose subject is the user id. Clients send it
as ``Authorization: Bearer <token>`` or in the ``wt_session`` cookie that the
register and login routes set. The user record itself is loaded from the
store on every request (see ``deps.current_user``), so a deleted account
stops working at once.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from passlib.context import CryptContext
from starlette.requests import Request
from starlette.responses import Response

from .errors import Unauthorized, ValidationError
from .models import User
from .refs import new_id
from .store import Store

log = logging.getLogger(__name__)

_pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

PASSWORD_MIN_LENGTH = 6
_USERNAME_RE = re.compile(r"^[a-z0-9_.-]{3,32}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

SESSION_COOKIE = "wt_session"
BEARER_PREFIX = "bearer "

_SECRET_ENV = "JWT_SECRET"
_LIFETIME_ENV = "JWT_EXPIRES_IN"
_DEFAULT_LIFETIME = "30d"
_ALGORITHM = "HS256"
_LIFETIME_RE = re.compile(r"^(\d+)\s*([smhd]?)$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    return _pwd_ctx.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return _pwd_ctx.verify(plain, hashed)


def check_registration(username: str, email: str, password: str) -> None:
    """Raise ``ValidationError`` for the first problem with a sign-up form."""
    if not username or not email or not password:
        raise ValidationError("Please provide username, email, and password")
    if not _USERNAME_RE.match(username):
        raise ValidationError("Username must be 3-32 characters: letters, digits, '.', '_' or '-'")
    if not _EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email address")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")


def register_user(store: Store, username: str, email: str, password: str) -> User:
    # Usernames and emails are stored lowercased so logins are case-insensitive.
    username = (username or "").strip().lower()
    email = (email or "").strip().lower()
    check_registration(username, email, password or "")

    # Conflict (409) propagates when the username or email is taken.
    user = store.insert_user(
        User(id=new_id(), username=username, email=email, password_hash=hash_password(password))
    )
    log.info("Registered user %s (%s)", user.username, user.id)
    return user


def authenticate(store: Store, login: str, password: str) -> User:
    """Return the user for a username-or-email and password pair."""
    user = store.get_user_by_login(login)
    if user is None or not verify_password(password, user.password_hash):
        raise Unauthorized("Invalid email or password")
    return user


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def _secret() -> str:
    # Development fallback; set JWT_SECRET in production.
    return os.environ.get(_SECRET_ENV, "") or "dev-secret-change-me"


def parse_lifetime(value: str) -> timedelta:
    """Parse ``JWT_EXPIRES_IN`` values such as ``30d``, ``12h``, ``45m`` or ``3600``."""
    m = _LIFETIME_RE.match(value.strip().lower())
    if not m or int(m.group(1)) == 0:
        raise ValueError(f"Invalid {_LIFETIME_ENV} value: {value!r}")
    return timedelta(seconds=int(m.group(1)) * _UNIT_SECONDS[m.group(2)])


def token_lifetime() -> timedelta:
    return parse_lifetime(os.environ.get(_LIFETIME_ENV, "") or _DEFAULT_LIFETIME)


@dataclass
class Session:
    user_id: str
    issued_at: datetime
    expires_at: datetime
    from_cookie: bool = False

    def needs_refresh(self, now: Optional[datetime] = None) -> bool:
        """Cookie sessions are reissued once half their lifetime has passed."""
        if not self.from_cookie:
            return False
        now = now or datetime.now(timezone.utc)
        return now - self.issued_at > (self.expires_at - self.issued_at) / 2


def issue_token(user_id: str, *, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + token_lifetime()).timestamp()),
    }
    return jwt.encode(claims, _secret(), algorithm=_ALGORITHM)


def read_token(token: str, *, from_cookie: bool = False) -> Session:
    try:
        claims = jwt.decode(token, _secret(), algorithms=[_ALGORITHM], options={"require": ["sub", "iat", "exp"]})
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Session expired") from None
    except jwt.PyJWTError:
        raise Unauthorized("Invalid session") from None
    return Session(
        user_id=str(claims["sub"]),
        issued_at=datetime.fromtimestamp(claims["iat"], timezone.utc),
        expires_at=datetime.fromtimestamp(claims["exp"], timezone.utc),
        from_cookie=from_cookie,
    )


def session_from_request(request: Request) -> Optional[Session]:
    """Read the bearer token, else the session cookie. None when neither is sent."""
    header = request.headers.get("authorization", "")
    if header.lower().startswith(BEARER_PREFIX):
        return read_token(header[len(BEARER_PREFIX):].strip())
    cookie = request.cookies.get(SESSION_COOKIE)
    if cookie:
        return read_token(cookie, from_cookie=True)
    return None


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        max_age=int(token_lifetime().total_seconds()),
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE, path="/")


def current_session(request: Request) -> Session:
    """The session ``AuthMiddleware`` attached to the request."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise Unauthorized("Not authenticated")
    return session
