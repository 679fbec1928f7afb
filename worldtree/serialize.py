from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Optional

from .models import (
    ADOPTIVE_FATHER,
    ADOPTIVE_MOTHER,
    FATHER,
    MOTHER,
    Location,
    Person,
    SpouseLink,
    World,
)
from .relatives import AncestorNode, Sibling
from .tree import PersonDetail, PersonStub


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


def _spouse_link_to_public(link: SpouseLink) -> dict[str, Any]:
    return {
        "person": link.person,
        "marriage_year": link.marriage_year,
        "end_year": link.end_year,
        "reason_for_end": link.reason_for_end.value if link.reason_for_end else None,
    }


def person_to_public(p: Person, *, today: date | None = None) -> dict[str, Any]:
    return {
        "id": p.id,
        "world_id": p.world_id,
        "name": p.name,
        "gender": p.gender.value,
        "birth_year": p.birth_year,
        "death_year": p.death_year,
        "age": p.age(today=today),
        "bio": p.bio,
        "nationality_id": p.nationality_id,
        "parents": {"mother": p.parents.mother, "father": p.parents.father},
        "adoptive_parents": {
            "mother": p.adoptive_parents.mother,
            "father": p.adoptive_parents.father,
            "adoption_year": p.adoptive_parents.adoption_year,
        },
        "adoption_age": p.adoption_age(),
        "spouses": [_spouse_link_to_public(s) for s in p.spouses],
        "version": p.version,
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    }


def _ancestor_to_public(node: Optional[AncestorNode]) -> Optional[dict[str, Any]]:
    # Expanded parents: a stub of the parent plus its own mother/father stubs.
    if node is None:
        return None
    out = PersonStub.of(node.person).as_dict()
    mother = node.parent(MOTHER)
    father = node.parent(FATHER)
    out["parents"] = {
        "mother": PersonStub.of(mother.person).as_dict() if mother else None,
        "father": PersonStub.of(father.person).as_dict() if father else None,
    }
    return out


def person_detail_to_public(detail: PersonDetail, *, today: date | None = None) -> dict[str, Any]:
    """Person payload with parent refs replaced by expanded records."""

    p = detail.person
    root = detail.ancestors
    out = person_to_public(p, today=today)
    out["parents"] = {
        "mother": _ancestor_to_public(root.parent(MOTHER)),
        "father": _ancestor_to_public(root.parent(FATHER)),
    }
    out["adoptive_parents"] = {
        "mother": _ancestor_to_public(root.parent(ADOPTIVE_MOTHER)),
        "father": _ancestor_to_public(root.parent(ADOPTIVE_FATHER)),
        "adoption_year": p.adoptive_parents.adoption_year,
    }

    spouses = []
    for link in p.spouses:
        entry = _spouse_link_to_public(link)
        spouse = detail.spouses.get(link.person)
        entry["person"] = PersonStub.of(spouse).as_dict() if spouse is not None else None
        entry["person_id"] = link.person
        spouses.append(entry)
    out["spouses"] = spouses
    out["nationality"] = _location_stub(detail.nationality)
    return out


def child_to_public(p: Person) -> dict[str, Any]:
    out = PersonStub.of(p).as_dict()
    out["parents"] = {"mother": p.parents.mother, "father": p.parents.father}
    out["adoptive_parents"] = {
        "mother": p.adoptive_parents.mother,
        "father": p.adoptive_parents.father,
        "adoption_year": p.adoptive_parents.adoption_year,
    }
    return out


def sibling_to_public(s: Sibling) -> dict[str, Any]:
    out = child_to_public(s.person)
    out["sibling_type"] = s.sibling_type.value
    return out


def world_to_public(w: World) -> dict[str, Any]:
    return {
        "id": w.id,
        "name": w.name,
        "description": w.description,
        "owner_id": w.owner_id,
        "created_at": _iso(w.created_at),
        "updated_at": _iso(w.updated_at),
    }


def _location_stub(loc: Optional[Location]) -> Optional[dict[str, Any]]:
    if loc is None:
        return None
    return {"id": loc.id, "name": loc.name, "type": loc.type}


def location_to_public(loc: Location, parents: Iterable[Location] = ()) -> dict[str, Any]:
    """Location payload; ``parents`` are the loaded parent records, in order."""
    return {
        "id": loc.id,
        "world_id": loc.world_id,
        "name": loc.name,
        "type": loc.type,
        "description": loc.description,
        "parent_locations": [_location_stub(p) for p in parents],
        "founding_year": loc.founding_year,
        "dissolution_year": loc.dissolution_year,
        "created_at": _iso(loc.created_at),
        "updated_at": _iso(loc.updated_at),
    }
