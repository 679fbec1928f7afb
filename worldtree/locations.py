"""Location operations.

Locations are world-scoped places (countries by default). A location may sit
inside other locations of the same world, and a person's nationality points
at one. Unknown, cross-world and self parent references are dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from .errors import NotFound, ValidationError
from .models import DEFAULT_LOCATION_TYPE, Location
from .refs import clean_ref, coerce_year, new_id
from .store import Store

log = logging.getLogger(__name__)


@dataclass
class LocationDelete:
    location_id: str
    cleared_refs: dict[str, int]


def _clean_name(value: Any) -> str:
    name = str(value).strip() if value is not None else ""
    if not name:
        raise ValidationError("Location name is required")
    return name


def _clean_type(value: Any) -> str:
    if value is None:
        return DEFAULT_LOCATION_TYPE
    kind = str(value).strip()
    if not kind:
        raise ValidationError("Location type is required")
    return kind


def _sits_inside(store: Store, world_id: str, location_id: str, ancestor_id: str) -> bool:
    """True if ``ancestor_id`` is reachable from ``location_id`` via parent links."""
    seen: set[str] = set()
    stack = [location_id]
    while stack:
        current = store.get_location(world_id, stack.pop())
        if current is None or current.id in seen:
            continue
        seen.add(current.id)
        if ancestor_id in current.parent_location_ids:
            return True
        stack.extend(current.parent_location_ids)
    return False


def _parent_ids(store: Store, world_id: str, raw: Any, self_id: str) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("parent_locations must be a list")

    out: list[str] = []
    for entry in raw:
        # Accept bare ids as well as {"location": id} entries.
        value = entry.get("location") if isinstance(entry, Mapping) else entry
        ref = clean_ref(value, check=store.ref_check)
        if ref is None or ref == self_id or ref in out:
            continue
        if store.get_location(world_id, ref) is None:
            log.info("Dropping parent location %s on %s: not in world %s", ref, self_id, world_id)
            continue
        if _sits_inside(store, world_id, ref, self_id):
            log.info("Dropping parent location %s on %s: it would form a cycle", ref, self_id)
            continue
        out.append(ref)
    return out


def _apply_payload(
    store: Store,
    location: Location,
    payload: Mapping[str, Any],
    *,
    creating: bool,
) -> None:
    if creating or "name" in payload:
        location.name = _clean_name(payload.get("name"))
    if "type" in payload:
        location.type = _clean_type(payload["type"])
    if "description" in payload:
        location.description = str(payload["description"] or "")
    if "founding_year" in payload:
        location.founding_year = coerce_year(payload["founding_year"])
    if "dissolution_year" in payload:
        location.dissolution_year = coerce_year(payload["dissolution_year"])
    if "parent_locations" in payload:
        location.parent_location_ids = _parent_ids(
            store, location.world_id, payload["parent_locations"], location.id
        )


def _require_location(store: Store, world_id: str, location_id: str) -> Location:
    if not store.ref_check(location_id):
        raise ValidationError("Invalid Location ID format")
    location = store.get_location(world_id, location_id)
    if location is None:
        raise NotFound("Location not found in this world")
    return location


def list_locations(store: Store, world_id: str) -> list[Location]:
    return sorted(store.list_locations(world_id), key=lambda loc: (loc.type, loc.name, loc.id))


def get_location(store: Store, world_id: str, location_id: str) -> Location:
    return _require_location(store, world_id, location_id)


def parents_of(store: Store, location: Location) -> list[Location]:
    out = []
    for pid in location.parent_location_ids:
        parent = store.get_location(location.world_id, pid)
        if parent is not None:
            out.append(parent)
    return out


def create_location(store: Store, world_id: str, payload: Mapping[str, Any]) -> Location:
    if store.get_world(world_id) is None:
        raise NotFound("World not found")

    location = Location(id=new_id(), world_id=world_id, name="")
    _apply_payload(store, location, payload, creating=True)
    location = store.insert_location(location)
    log.info("Created location %s (%s) in world %s", location.id, location.name, world_id)
    return location


def update_location(
    store: Store,
    world_id: str,
    location_id: str,
    payload: Mapping[str, Any],
) -> Location:
    location = _require_location(store, world_id, location_id)
    _apply_payload(store, location, payload, creating=False)
    return store.save_location(location)


def delete_location(store: Store, world_id: str, location_id: str) -> LocationDelete:
    location = _require_location(store, world_id, location_id)

    cleared = store.clear_location_refs(world_id, location.id)
    if not store.delete_location(world_id, location.id):
        raise NotFound("Location not found in this world")

    log.info(
        "Deleted location %s from world %s (parent links removed: %d, nationalities cleared: %d)",
        location.id,
        world_id,
        cleared["parent_locations"],
        cleared["nationality"],
    )
    return LocationDelete(location_id=location.id, cleared_refs=cleared)
