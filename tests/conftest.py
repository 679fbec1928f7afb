from __future__ import annotations

from datetime import date
from typing import Any, Callable

import pytest

from worldtree.models import Person, World
from worldtree.people import create_person
from worldtree.refs import new_id
from worldtree.store import MemoryStore


@pytest.fixture()
def fixed_today() -> date:
    # Keep tests deterministic.
    return date(2026, 1, 20)


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def owner_id() -> str:
    return new_id()


@pytest.fixture()
def world(store: MemoryStore, owner_id: str) -> World:
    return store.insert_world(World(id=new_id(), name="Westmarch", owner_id=owner_id))


@pytest.fixture()
def add_person(store: MemoryStore, world: World) -> Callable[..., Person]:
    """Create a person in ``world`` through the public create operation."""

    def _add(name: str, **payload: Any) -> Person:
        return create_person(store, world.id, {"name": name, **payload}).person

    return _add
