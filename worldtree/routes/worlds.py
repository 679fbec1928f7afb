from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .. import worlds as world_ops
from ..deps import current_user_id, get_store, world_access
from ..models import World
from ..people import repair_spouse_links
from ..serialize import world_to_public
from ..store import Store

router = APIRouter(prefix="/worlds", tags=["worlds"])


class WorldCreate(BaseModel):
    name: str
    description: Optional[str] = None


class WorldUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


@router.get("")
def list_worlds(
    user_id: str = Depends(current_user_id),
    store: Store = Depends(get_store),
) -> list[dict[str, Any]]:
    return [world_to_public(w) for w in world_ops.list_worlds(store, user_id)]


@router.post("", status_code=201)
def create_world(
    body: WorldCreate,
    user_id: str = Depends(current_user_id),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    world = world_ops.create_world(store, user_id, body.model_dump(exclude_unset=True))
    return world_to_public(world)


@router.get("/{world_id}")
def get_world(world: World = Depends(world_access)) -> dict[str, Any]:
    return world_to_public(world)


@router.put("/{world_id}")
def update_world(
    body: WorldUpdate,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    world = world_ops.update_world(store, world, body.model_dump(exclude_unset=True))
    return world_to_public(world)


@router.delete("/{world_id}")
def delete_world(
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, str]:
    world_ops.delete_world(store, world)
    return {"message": "World and all associated data deleted"}


@router.post("/{world_id}/repair-spouses")
def repair_spouses(
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    """Restore spouse-link symmetry across the world."""
    return repair_spouse_links(store, world.id).as_dict()
