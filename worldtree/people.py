"""Person operations: the entry points routes and the admin CLI call.

Update policy, the same for every field: a key missing from the payload
leaves the field alone, a present key replaces it. ``parents``,
``adoptive_parents`` and ``spouses`` are replaced as a whole.

References to other people that are malformed, unknown, cross-world or
self-referencing are dropped silently; the rest of the write proceeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .errors import InvalidReference, NotFound, PartialSyncFailure, ValidationError
from .models import PARENT_SLOTS, AdoptiveParents, Gender, ParentRefs, Person
from .refs import clean_ref, coerce_year, new_id
from .relatives import (
    DEFAULT_ANCESTOR_DEPTH,
    Sibling,
    children_of,
    expand_ancestors,
    siblings_of,
)
from .spouses import RepairReport, SpouseSync, SyncResult, clean_spouse_links
from .store import Store
from .tree import FamilyTree, PersonDetail, assemble_family_tree

log = logging.getLogger(__name__)

MAX_ANCESTOR_DEPTH = 6


@dataclass
class PersonWrite:
    person: Person
    sync: SyncResult = field(default_factory=SyncResult)

    @property
    def failures(self) -> list[PartialSyncFailure]:
        return self.sync.failures


@dataclass
class PersonDelete:
    person_id: str
    sync: SyncResult
    cleared_refs: dict[str, int]


def _clean_name(value: Any) -> str:
    name = str(value).strip() if value is not None else ""
    if not name:
        raise ValidationError("Person name is required")
    return name


def _coerce_gender(value: Any) -> Gender:
    if value is None or value == "":
        return Gender.UNKNOWN
    try:
        return Gender(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid gender: {value}") from None


def _check_person_ref(store: Store, world_id: str, value: Any, self_id: str) -> Optional[str]:
    if value is None or value == "":
        return None
    ref = clean_ref(value, check=store.ref_check)
    if ref is None:
        raise InvalidReference(f"malformed id {value!r}")
    if ref == self_id:
        raise InvalidReference("reference to self")
    if store.get_person(world_id, ref) is None:
        raise InvalidReference(f"{ref} is not a person in world {world_id}")
    return ref


def _same_world_ref(store: Store, world_id: str, value: Any, self_id: str) -> Optional[str]:
    try:
        return _check_person_ref(store, world_id, value, self_id)
    except InvalidReference as e:
        log.info("Dropping parent reference on %s: %s", self_id, e.message)
        return None


def _same_world_location(store: Store, world_id: str, value: Any, person_id: str) -> Optional[str]:
    if value is None or value == "":
        return None
    ref = clean_ref(value, check=store.ref_check)
    if ref is None or store.get_location(world_id, ref) is None:
        log.info("Dropping nationality on %s: %r is not a location in world %s", person_id, value, world_id)
        return None
    return ref


def _sub_object(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    raw = payload.get(key)
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{key} must be an object")
    return raw


def _apply_payload(
    store: Store,
    world_id: str,
    person: Person,
    payload: Mapping[str, Any],
    *,
    creating: bool,
) -> None:
    """Copy the present payload keys onto ``person``. No writes happen here."""

    if creating or "name" in payload:
        person.name = _clean_name(payload.get("name"))
    if "gender" in payload:
        person.gender = _coerce_gender(payload["gender"])
    if "birth_year" in payload:
        person.birth_year = coerce_year(payload["birth_year"])
    if "death_year" in payload:
        person.death_year = coerce_year(payload["death_year"])
    if "bio" in payload:
        person.bio = str(payload["bio"] or "")
    if "nationality_id" in payload:
        person.nationality_id = _same_world_location(store, world_id, payload["nationality_id"], person.id)

    if "parents" in payload:
        raw = _sub_object(payload, "parents")
        person.parents = ParentRefs(
            mother=_same_world_ref(store, world_id, raw.get("mother"), person.id),
            father=_same_world_ref(store, world_id, raw.get("father"), person.id),
        )
    if "adoptive_parents" in payload:
        raw = _sub_object(payload, "adoptive_parents")
        person.adoptive_parents = AdoptiveParents(
            mother=_same_world_ref(store, world_id, raw.get("mother"), person.id),
            father=_same_world_ref(store, world_id, raw.get("father"), person.id),
            adoption_year=coerce_year(raw.get("adoption_year")),
        )


def _require_person(store: Store, world_id: str, person_id: str) -> Person:
    if not store.ref_check(person_id):
        raise ValidationError("Invalid Person ID format")
    person = store.get_person(world_id, person_id)
    if person is None:
        raise NotFound("Person not found in this world")
    return person


def create_person(store: Store, world_id: str, payload: Mapping[str, Any]) -> PersonWrite:
    if store.get_world(world_id) is None:
        raise NotFound("World not found")

    person = Person(id=new_id(), world_id=world_id, name="")
    _apply_payload(store, world_id, person, payload, creating=True)

    sync = SpouseSync(store)
    links = clean_spouse_links(payload.get("spouses"), self_id=person.id, ref_check=store.ref_check)
    person.spouses, loaded = sync.resolve(world_id, person, links)

    person = store.insert_person(person)
    log.info("Created person %s (%s) in world %s", person.id, person.name, world_id)

    result = sync.reconcile(world_id, person, [], loaded=loaded)
    return PersonWrite(person, result)


def update_person(
    store: Store,
    world_id: str,
    person_id: str,
    payload: Mapping[str, Any],
) -> PersonWrite:
    person = _require_person(store, world_id, person_id)
    previous = list(person.spouses)
    previous_death_year = person.death_year

    _apply_payload(store, world_id, person, payload, creating=False)

    sync = SpouseSync(store)
    loaded: dict[str, Person] = {}
    if "spouses" in payload:
        links = clean_spouse_links(payload.get("spouses"), self_id=person.id, ref_check=store.ref_check)
        person.spouses, loaded = sync.resolve(world_id, person, links)

    # Raises StaleRecord if someone else saved this person in the meantime.
    person = store.save_person(person)
    log.info("Updated person %s in world %s", person.id, world_id)

    # A new death year changes the end year mirrored for marriages ended by death.
    if "spouses" in payload or person.death_year != previous_death_year:
        result = sync.reconcile(world_id, person, previous, loaded=loaded)
    else:
        result = SyncResult()
    return PersonWrite(person, result)


def delete_person(store: Store, world_id: str, person_id: str) -> PersonDelete:
    person = _require_person(store, world_id, person_id)

    result = SpouseSync(store).detach(world_id, person.id)
    cleared = {slot: store.clear_person_refs(world_id, slot, person.id) for slot in PARENT_SLOTS}
    if not store.delete_person(world_id, person.id):
        raise NotFound("Person not found in this world")

    log.info(
        "Deleted person %s from world %s (spouse links removed: %d, parent refs cleared: %d)",
        person.id,
        world_id,
        len(result.updated),
        sum(cleared.values()),
    )
    return PersonDelete(person_id=person.id, sync=result, cleared_refs=cleared)


def list_people(store: Store, world_id: str) -> list[Person]:
    return sorted(store.find_people(world_id), key=lambda p: (p.name, p.id))


def get_person(store: Store, world_id: str, person_id: str) -> Person:
    return _require_person(store, world_id, person_id)


def get_children(store: Store, world_id: str, person_id: str) -> list[Person]:
    person = _require_person(store, world_id, person_id)
    return children_of(store, world_id, person.id)


def get_siblings(store: Store, world_id: str, person_id: str) -> list[Sibling]:
    person = _require_person(store, world_id, person_id)
    return siblings_of(store, world_id, person)


def get_person_detail(
    store: Store,
    world_id: str,
    person_id: str,
    *,
    depth: int = DEFAULT_ANCESTOR_DEPTH,
) -> PersonDetail:
    if depth < 1 or depth > MAX_ANCESTOR_DEPTH:
        raise ValidationError(f"depth must be between 1 and {MAX_ANCESTOR_DEPTH}")
    person = _require_person(store, world_id, person_id)

    spouses: dict[str, Person] = {}
    for link in person.spouses:
        spouse = store.get_person(world_id, link.person)
        if spouse is not None:
            spouses[spouse.id] = spouse

    return PersonDetail(
        ancestors=expand_ancestors(store, world_id, person, depth=depth),
        spouses=spouses,
        nationality=store.get_location(world_id, person.nationality_id) if person.nationality_id else None,
    )


def get_family_tree(store: Store, world_id: str, person_id: str) -> FamilyTree:
    detail = get_person_detail(store, world_id, person_id)
    children = children_of(store, world_id, detail.person.id)
    siblings = siblings_of(store, world_id, detail.person)
    return assemble_family_tree(detail, children, siblings)


def repair_spouse_links(store: Store, world_id: str) -> RepairReport:
    if store.get_world(world_id) is None:
        raise NotFound("World not found")
    return SpouseSync(store).repair(world_id)
