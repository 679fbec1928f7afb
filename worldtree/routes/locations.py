from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .. import locations as location_ops
from ..deps import get_store, world_access
from ..models import World
from ..serialize import location_to_public
from ..store import Store

router = APIRouter(prefix="/worlds/{world_id}/locations", tags=["locations"])


class ParentLocationIn(BaseModel):
    location: Optional[Any] = None


class LocationBody(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    parent_locations: Optional[list[ParentLocationIn]] = None
    founding_year: Optional[Any] = None
    dissolution_year: Optional[Any] = None


@router.get("")
def list_locations(
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> list[dict[str, Any]]:
    locations = location_ops.list_locations(store, world.id)
    by_id = {loc.id: loc for loc in locations}
    return [
        location_to_public(loc, [by_id[i] for i in loc.parent_location_ids if i in by_id])
        for loc in locations
    ]


@router.post("", status_code=201)
def create_location(
    body: LocationBody,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    loc = location_ops.create_location(store, world.id, body.model_dump(exclude_unset=True))
    return location_to_public(loc, location_ops.parents_of(store, loc))


@router.get("/{location_id}")
def get_location(
    location_id: str,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    loc = location_ops.get_location(store, world.id, location_id)
    return location_to_public(loc, location_ops.parents_of(store, loc))


@router.put("/{location_id}")
def update_location(
    location_id: str,
    body: LocationBody,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    loc = location_ops.update_location(store, world.id, location_id, body.model_dump(exclude_unset=True))
    return location_to_public(loc, location_ops.parents_of(store, loc))


@router.delete("/{location_id}")
def delete_location(
    location_id: str,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    result = location_ops.delete_location(store, world.id, location_id)
    return {"message": "Location removed successfully", "cleared_refs": result.cleared_refs}
