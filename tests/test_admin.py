from __future__ import annotations

import sys
from contextlib import contextmanager
from unittest.mock import patch

import pytest

from worldtree import admin
from worldtree.worlds import create_world


@pytest.fixture()
def run_admin(monkeypatch, store):
    """Run ``worldtree-admin`` against the memory store instead of Postgres."""

    @contextmanager
    def _no_db():
        yield None

    monkeypatch.setattr(admin, "db_conn", _no_db)
    monkeypatch.setattr(admin, "PgStore", lambda conn: store)

    def _run(*argv: str) -> int:
        monkeypatch.setattr(sys, "argv", ["worldtree-admin", *argv])
        return admin.main()

    return _run


def test_create_user_then_list_worlds(run_admin, store, capsys) -> None:
    assert run_admin("create-user", "--username=Ada", "--email=ada@example.org", "--password=hunter2") == 0
    user = store.get_user_by_login("ada")
    assert user.username == "ada"

    create_world(store, user.id, {"name": "Westmarch"})
    assert run_admin("list-worlds", "--username=ada@example.org") == 0
    out = capsys.readouterr().out
    assert "User 'ada' created" in out
    assert "Westmarch" in out


def test_create_user_reports_validation_errors(run_admin) -> None:
    with pytest.raises(SystemExit) as exc_info:
        run_admin("create-user", "--username=ada", "--email=ada@example.org", "--password=short")
    assert "at least 6 characters" in str(exc_info.value.code)


def test_repair_spouses_prints_report(run_admin, world, capsys) -> None:
    assert run_admin("repair-spouses", f"--world={world.id}") == 0
    assert '"links_added": 0' in capsys.readouterr().out


def test_serve_runs_uvicorn(run_admin) -> None:
    with patch("uvicorn.run") as run:
        assert run_admin("serve", "--port=9000") == 0
    run.assert_called_once_with("worldtree.main:app", host="127.0.0.1", port=9000, reload=False)
