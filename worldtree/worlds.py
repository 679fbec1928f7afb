from __future__ import annotations

import logging
from typing import Any, Mapping

from .errors import Forbidden, NotFound, ValidationError
from .models import World
from .refs import new_id
from .store import Store

log = logging.getLogger(__name__)


def _clean_world_name(value: Any) -> str:
    name = str(value).strip() if value is not None else ""
    if not name:
        raise ValidationError("World name is required")
    return name


def check_world_access(store: Store, world_id: str, user_id: str) -> World:
    """Load ``world_id`` and make sure ``user_id`` owns it."""

    if not store.ref_check(world_id):
        raise ValidationError("Invalid World ID format")
    world = store.get_world(world_id)
    if world is None:
        raise NotFound("World not found")
    if world.owner_id != user_id:
        raise Forbidden("Not authorized to access this world")
    return world


def list_worlds(store: Store, owner_id: str) -> list[World]:
    return store.list_worlds(owner_id)


def create_world(store: Store, owner_id: str, payload: Mapping[str, Any]) -> World:
    world = World(
        id=new_id(),
        name=_clean_world_name(payload.get("name")),
        owner_id=owner_id,
        description=str(payload.get("description") or ""),
    )
    world = store.insert_world(world)
    log.info("Created world %s (%s) for user %s", world.id, world.name, owner_id)
    return world


def update_world(store: Store, world: World, payload: Mapping[str, Any]) -> World:
    if "name" in payload:
        world.name = _clean_world_name(payload["name"])
    if "description" in payload:
        world.description = str(payload["description"] or "")
    return store.save_world(world)


def delete_world(store: Store, world: World) -> None:
    if not store.delete_world(world.id):
        raise NotFound("World not found")
    log.info("Deleted world %s with its people and locations", world.id)
