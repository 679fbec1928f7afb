"""Accounts, session tokens and the login rate limit."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt
import pytest
from starlette.requests import Request

from worldtree import auth
from worldtree.errors import Conflict, Unauthorized, ValidationError
from worldtree.refs import new_id
from worldtree.routes.auth import _check_rate_limit, _login_attempts

_T0 = datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)


def _request(headers: dict[str, str] | None = None, cookies: dict[str, str] | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    if cookies:
        raw.append((b"cookie", "; ".join(f"{k}={v}" for k, v in cookies.items()).encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class TestRegisterAndAuthenticate:
    def test_register_normalizes_and_hashes(self, store) -> None:
        user = auth.register_user(store, "  Ada.L ", "ADA@Example.org", "hunter2")
        assert user.username == "ada.l"
        assert user.email == "ada@example.org"
        assert user.password_hash != "hunter2"
        assert store.get_user(user.id).username == "ada.l"

    @pytest.mark.parametrize(
        "username, email, password",
        [
            ("", "ada@example.org", "hunter2"),
            ("ada", "ada@example.org", ""),
            ("a", "ada@example.org", "hunter2"),
            ("has space", "ada@example.org", "hunter2"),
            ("ada", "ada@", "hunter2"),
            ("ada", "ada@example.org", "short"),
        ],
    )
    def test_register_rejects_bad_forms(self, store, username, email, password) -> None:
        with pytest.raises(ValidationError):
            auth.register_user(store, username, email, password)

    def test_username_and_email_are_unique(self, store) -> None:
        auth.register_user(store, "ada", "ada@example.org", "hunter2")
        with pytest.raises(Conflict):
            auth.register_user(store, "ADA", "other@example.org", "hunter2")
        with pytest.raises(Conflict):
            auth.register_user(store, "bob", "Ada@example.org", "hunter2")

    def test_authenticate_by_username_or_email(self, store) -> None:
        user = auth.register_user(store, "ada", "ada@example.org", "hunter2")
        assert auth.authenticate(store, "ADA", "hunter2").id == user.id
        assert auth.authenticate(store, "ada@example.org", "hunter2").id == user.id

    @pytest.mark.parametrize("login, password", [("ada", "wrong"), ("nobody", "hunter2")])
    def test_authenticate_failure(self, store, login, password) -> None:
        auth.register_user(store, "ada", "ada@example.org", "hunter2")
        with pytest.raises(Unauthorized) as exc_info:
            auth.authenticate(store, login, password)
        assert exc_info.value.message == "Invalid email or password"


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TestLifetime:
    @pytest.mark.parametrize(
        "value, expected",
        [("30d", timedelta(days=30)), ("12h", timedelta(hours=12)), ("45m", timedelta(minutes=45)), ("3600", timedelta(hours=1))],
    )
    def test_parse(self, value, expected) -> None:
        assert auth.parse_lifetime(value) == expected

    @pytest.mark.parametrize("value", ["", "0d", "soon", "3w"])
    def test_parse_rejects(self, value) -> None:
        with pytest.raises(ValueError):
            auth.parse_lifetime(value)

    def test_default_is_thirty_days(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            assert auth.token_lifetime() == timedelta(days=30)


@patch.dict("os.environ", {"JWT_SECRET": "test-secret", "JWT_EXPIRES_IN": "2h"})
class TestTokens:
    def test_issue_and_read(self) -> None:
        uid = new_id()
        session = auth.read_token(auth.issue_token(uid))
        assert session.user_id == uid
        assert session.expires_at - session.issued_at == timedelta(hours=2)
        assert not session.from_cookie

    def test_other_secret_is_invalid(self) -> None:
        token = auth.issue_token(new_id())
        with patch.dict("os.environ", {"JWT_SECRET": "another"}):
            with pytest.raises(Unauthorized) as exc_info:
                auth.read_token(token)
        assert exc_info.value.message == "Invalid session"

    def test_expired(self) -> None:
        token = auth.issue_token(new_id(), now=datetime.now(timezone.utc) - timedelta(hours=3))
        with pytest.raises(Unauthorized) as exc_info:
            auth.read_token(token)
        assert exc_info.value.message == "Session expired"

    def test_subject_is_required(self) -> None:
        now = int(time.time())
        token = jwt.encode({"iat": now, "exp": now + 60}, "test-secret", algorithm="HS256")
        with pytest.raises(Unauthorized):
            auth.read_token(token)

    def test_bearer_header_wins_over_cookie(self) -> None:
        a, b = new_id(), new_id()
        request = _request(
            headers={"Authorization": f"Bearer {auth.issue_token(a)}"},
            cookies={auth.SESSION_COOKIE: auth.issue_token(b)},
        )
        session = auth.session_from_request(request)
        assert session.user_id == a
        assert not session.from_cookie

    def test_cookie_session(self) -> None:
        uid = new_id()
        session = auth.session_from_request(_request(cookies={auth.SESSION_COOKIE: auth.issue_token(uid)}))
        assert session.user_id == uid
        assert session.from_cookie

    def test_no_credentials(self) -> None:
        assert auth.session_from_request(_request()) is None


class TestRefresh:
    def _session(self, *, from_cookie: bool) -> auth.Session:
        return auth.Session(new_id(), issued_at=_T0, expires_at=_T0 + timedelta(hours=24), from_cookie=from_cookie)

    def test_cookie_session_refreshes_after_half_its_lifetime(self) -> None:
        session = self._session(from_cookie=True)
        assert not session.needs_refresh(_T0 + timedelta(hours=11))
        assert session.needs_refresh(_T0 + timedelta(hours=13))

    def test_bearer_session_never_refreshes(self) -> None:
        assert not self._session(from_cookie=False).needs_refresh(_T0 + timedelta(hours=23))


def test_current_session_requires_middleware_state() -> None:
    with pytest.raises(Unauthorized):
        auth.current_session(_request())


# ---------------------------------------------------------------------------
# Login rate limit
# ---------------------------------------------------------------------------


class TestRateLimit:
    @pytest.fixture(autouse=True)
    def _clean(self):
        _login_attempts.clear()
        yield
        _login_attempts.clear()

    def test_blocks_after_five_recent_failures(self) -> None:
        from fastapi import HTTPException

        _login_attempts["10.0.0.1"] = [time.monotonic()] * 5
        with pytest.raises(HTTPException) as exc_info:
            _check_rate_limit("10.0.0.1")
        assert exc_info.value.status_code == 429

    def test_old_failures_are_forgotten_for_every_ip(self) -> None:
        old = time.monotonic() - 301
        _login_attempts["10.0.0.1"] = [old] * 5
        _login_attempts["10.0.0.2"] = [old, time.monotonic()]

        _check_rate_limit("10.0.0.3")

        assert "10.0.0.1" not in _login_attempts
        assert len(_login_attempts["10.0.0.2"]) == 1
        assert "10.0.0.3" not in _login_attempts
