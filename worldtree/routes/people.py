"""People routes, all scoped to a world the session user owns."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from .. import people as people_ops
from ..deps import get_store, world_access
from ..models import World
from ..people import MAX_ANCESTOR_DEPTH, PersonWrite
from ..relatives import DEFAULT_ANCESTOR_DEPTH
from ..serialize import (
    child_to_public,
    person_detail_to_public,
    person_to_public,
    sibling_to_public,
)
from ..store import Store

router = APIRouter(prefix="/worlds/{world_id}/people", tags=["people"])


# Form input is loose (years may arrive as "" or "1850"); coercion happens in
# worldtree.people, so the bodies only fix the shape.
class ParentsIn(BaseModel):
    mother: Optional[Any] = None
    father: Optional[Any] = None


class AdoptiveParentsIn(BaseModel):
    mother: Optional[Any] = None
    father: Optional[Any] = None
    adoption_year: Optional[Any] = None


class SpouseIn(BaseModel):
    person: Optional[Any] = None
    marriage_year: Optional[Any] = None
    end_year: Optional[Any] = None
    reason_for_end: Optional[str] = None


class PersonBody(BaseModel):
    name: Optional[str] = None
    gender: Optional[str] = None
    birth_year: Optional[Any] = None
    death_year: Optional[Any] = None
    bio: Optional[str] = None
    nationality_id: Optional[Any] = None
    parents: Optional[ParentsIn] = None
    adoptive_parents: Optional[AdoptiveParentsIn] = None
    spouses: Optional[list[SpouseIn]] = None


def _write_to_public(result: PersonWrite) -> dict[str, Any]:
    out = person_to_public(result.person)
    out["sync_failures"] = [f.as_dict() for f in result.failures]
    return out


@router.get("")
def list_people(
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> list[dict[str, Any]]:
    return [person_to_public(p) for p in people_ops.list_people(store, world.id)]


@router.post("", status_code=201)
def create_person(
    body: PersonBody,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    result = people_ops.create_person(store, world.id, body.model_dump(exclude_unset=True))
    return _write_to_public(result)


@router.get("/{person_id}")
def get_person(
    person_id: str,
    depth: int = Query(DEFAULT_ANCESTOR_DEPTH, ge=1, le=MAX_ANCESTOR_DEPTH),
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    detail = people_ops.get_person_detail(store, world.id, person_id, depth=depth)
    return person_detail_to_public(detail)


@router.put("/{person_id}")
def update_person(
    person_id: str,
    body: PersonBody,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    result = people_ops.update_person(store, world.id, person_id, body.model_dump(exclude_unset=True))
    return _write_to_public(result)


@router.delete("/{person_id}")
def delete_person(
    person_id: str,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    result = people_ops.delete_person(store, world.id, person_id)
    return {
        "message": "Person deleted successfully",
        "cleared_refs": result.cleared_refs,
        "sync_failures": [f.as_dict() for f in result.sync.failures],
    }


@router.get("/{person_id}/children")
def get_children(
    person_id: str,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> list[dict[str, Any]]:
    return [child_to_public(c) for c in people_ops.get_children(store, world.id, person_id)]


@router.get("/{person_id}/siblings")
def get_siblings(
    person_id: str,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> list[dict[str, Any]]:
    return [sibling_to_public(s) for s in people_ops.get_siblings(store, world.id, person_id)]


@router.get("/{person_id}/family-tree")
def get_family_tree(
    person_id: str,
    world: World = Depends(world_access),
    store: Store = Depends(get_store),
) -> dict[str, Any]:
    return people_ops.get_family_tree(store, world.id, person_id).as_dict()
