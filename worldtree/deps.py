from __future__ import annotations

import os
import threading
from typing import Iterator, Optional

from fastapi import Depends, Request

from .auth import current_session
from .db import db_conn
from .errors import Unauthorized
from .models import User, World
from .pgstore import PgStore
from .store import MemoryStore, Store
from .worlds import check_world_access

_STORE_ENV = "WORLDTREE_STORE"

_memory_store: Optional[MemoryStore] = None
_memory_lock = threading.Lock()


def store_backend() -> str:
    return os.environ.get(_STORE_ENV, "postgres").strip().lower() or "postgres"


def memory_store() -> MemoryStore:
    """Process-wide store used when ``WORLDTREE_STORE=memory``."""
    global _memory_store
    with _memory_lock:
        if _memory_store is None:
            _memory_store = MemoryStore()
        return _memory_store


def get_store() -> Iterator[Store]:
    backend = store_backend()
    if backend == "memory":
        yield memory_store()
        return
    if backend != "postgres":
        raise RuntimeError(f"Unknown {_STORE_ENV} value: {backend!r}")
    with db_conn() as conn:
        yield PgStore(conn)


def current_user(request: Request, store: Store = Depends(get_store)) -> User:
    """The account behind the request's session."""
    user = store.get_user(current_session(request).user_id)
    if user is None:
        raise Unauthorized("Not authorized, user not found")
    return user


def current_user_id(user: User = Depends(current_user)) -> str:
    return user.id


def world_access(
    world_id: str,
    user_id: str = Depends(current_user_id),
    store: Store = Depends(get_store),
) -> World:
    """The requested world, once its owner has been checked against the session."""
    return check_world_access(store, world_id, user_id)
