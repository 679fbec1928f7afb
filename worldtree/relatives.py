from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .models import (
    ADOPTIVE_FATHER,
    ADOPTIVE_MOTHER,
    FATHER,
    MOTHER,
    PARENT_SLOTS,
    Person,
    SiblingType,
)
from .store import Store

DEFAULT_ANCESTOR_DEPTH = 2


def person_sort_key(p: Person) -> tuple[int, int, str, str]:
    """Birth year ascending (unknown first), then name, then id."""
    return (
        0 if p.birth_year is None else 1,
        p.birth_year or 0,
        p.name,
        p.id,
    )


def children_of(store: Store, world_id: str, person_id: str) -> list[Person]:
    """Everyone in the world with ``person_id`` in any of their four parent slots."""
    children = store.find_people(world_id, [(slot, person_id) for slot in PARENT_SLOTS])
    return sorted(children, key=person_sort_key)


def _shares(focal: Person, other: Person, slot: str) -> bool:
    value = focal.slot(slot)
    return bool(value) and other.slot(slot) == value


def classify_sibling(focal: Person, other: Person) -> SiblingType:
    """Label the shared parentage of ``other`` as seen from ``focal``.

    Slots are only compared within their own category: a biological mother
    never matches an adoptive mother.
    """

    bio_mother = _shares(focal, other, MOTHER)
    bio_father = _shares(focal, other, FATHER)
    adoptive_mother = _shares(focal, other, ADOPTIVE_MOTHER)
    adoptive_father = _shares(focal, other, ADOPTIVE_FATHER)

    if bio_mother and bio_father:
        return SiblingType.FULL
    if adoptive_mother and adoptive_father:
        return SiblingType.ADOPTIVE
    if bio_mother or bio_father:
        return SiblingType.HALF_BIOLOGICAL
    if adoptive_mother or adoptive_father:
        return SiblingType.HALF_ADOPTIVE
    return SiblingType.COMPLEX


@dataclass
class Sibling:
    person: Person
    sibling_type: SiblingType


def siblings_of(store: Store, world_id: str, person: Person) -> list[Sibling]:
    filters = [(slot, person.slot(slot)) for slot in PARENT_SLOTS if person.slot(slot)]
    if not filters:
        return []

    matches = store.find_people(world_id, filters, exclude_id=person.id)
    by_id: dict[str, Person] = {}
    for m in matches:
        if m.id != person.id:
            by_id.setdefault(m.id, m)

    siblings = [Sibling(m, classify_sibling(person, m)) for m in by_id.values()]
    siblings.sort(key=lambda s: person_sort_key(s.person))
    return siblings


@dataclass
class AncestorNode:
    """A person with their parents expanded to a bounded depth.

    ``parents`` maps a parent slot name to the parent's node, or None when
    the slot is empty or the referenced person is not in the world.
    Unexpanded levels have an empty mapping.
    """

    person: Person
    parents: dict[str, Optional["AncestorNode"]] = field(default_factory=dict)

    def parent(self, slot: str) -> Optional["AncestorNode"]:
        return self.parents.get(slot)


def expand_ancestors(
    store: Store,
    world_id: str,
    person: Person,
    *,
    depth: int = DEFAULT_ANCESTOR_DEPTH,
) -> AncestorNode:
    """Expand parents up to ``depth`` generations.

    The first generation covers all four parent slots; higher generations
    follow biological parents only. A person already on the current path is
    not expanded again, so parent cycles in the data terminate.
    """

    cache: dict[str, Optional[Person]] = {person.id: person}

    def _load(pid: str) -> Optional[Person]:
        if pid not in cache:
            cache[pid] = store.get_person(world_id, pid)
        return cache[pid]

    def _expand(p: Person, level: int, path: frozenset[str]) -> AncestorNode:
        node = AncestorNode(p)
        if level >= depth:
            return node
        slots = PARENT_SLOTS if level == 0 else (MOTHER, FATHER)
        for slot in slots:
            pid = p.slot(slot)
            parent = _load(pid) if pid else None
            if parent is None:
                node.parents[slot] = None
            elif parent.id in path:
                node.parents[slot] = AncestorNode(parent)
            else:
                node.parents[slot] = _expand(parent, level + 1, path | {parent.id})
        return node

    return _expand(person, 0, frozenset((person.id,)))
