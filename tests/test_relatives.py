from __future__ import annotations

import itertools

import pytest

from worldtree.models import (
    ADOPTIVE_FATHER,
    ADOPTIVE_MOTHER,
    FATHER,
    MOTHER,
    Person,
    SiblingType,
    World,
)
from worldtree.people import create_person, delete_person, get_children, get_siblings, update_person
from worldtree.refs import new_id
from worldtree.relatives import children_of, classify_sibling, expand_ancestors, siblings_of


def _names(people) -> list[str]:
    return [p.name for p in people]


def _siblings(store, world_id: str, person_id: str) -> list[tuple[str, SiblingType]]:
    return [(s.person.name, s.sibling_type) for s in get_siblings(store, world_id, person_id)]


@pytest.fixture()
def family(store, world, add_person):
    """Aveline and Bram, married, with their child Cato."""
    a = add_person("Aveline", gender="Female", birth_year=1980)
    b = add_person("Bram", gender="Male", birth_year=1978)
    update_person(store, world.id, a.id, {"spouses": [{"person": b.id, "marriage_year": 2005}]})
    c = add_person("Cato", birth_year=2008, parents={"mother": a.id, "father": b.id})
    return a, b, c


# ---------------------------------------------------------------------------
# Walkthrough: children, siblings, deletion cascade
# ---------------------------------------------------------------------------


class TestWalkthrough:
    def test_children_of_mother(self, store, world, family) -> None:
        a, _b, c = family
        assert [p.id for p in get_children(store, world.id, a.id)] == [c.id]

    def test_only_child_has_no_siblings(self, store, world, family) -> None:
        _a, _b, c = family
        assert get_siblings(store, world.id, c.id) == []

    def test_second_child_is_full_sibling_both_ways(self, store, world, family, add_person) -> None:
        a, b, c = family
        d = add_person("Dara", birth_year=2010, parents={"mother": a.id, "father": b.id})

        assert _siblings(store, world.id, c.id) == [("Dara", SiblingType.FULL)]
        assert _siblings(store, world.id, d.id) == [("Cato", SiblingType.FULL)]

    def test_delete_parent_clears_refs(self, store, world, family, add_person) -> None:
        a, b, c = family
        d = add_person("Dara", parents={"mother": a.id, "father": b.id})

        result = delete_person(store, world.id, b.id)

        assert store.get_person(world.id, b.id) is None
        assert store.get_person(world.id, a.id).spouses == []
        for child in (c, d):
            now = store.get_person(world.id, child.id)
            assert now.parents.father is None
            assert now.parents.mother == a.id
        assert result.cleared_refs[FATHER] == 2
        assert result.cleared_refs[MOTHER] == 0

    def test_adoptive_slot_does_not_match_biological_slot(self, store, world, family, add_person) -> None:
        a, _b, c = family
        e = add_person("Edda", adoptive_parents={"mother": a.id})

        assert get_siblings(store, world.id, e.id) == []
        assert all(s.person.id != e.id for s in get_siblings(store, world.id, c.id))
        # Edda is still Aveline's child.
        assert {p.id for p in get_children(store, world.id, a.id)} == {c.id, e.id}


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _p(**slots: str) -> Person:
    p = Person(id=new_id(), world_id="w", name="x")
    for slot, value in slots.items():
        p.set_slot(slot, value)
    return p


class TestClassifySibling:
    m, f, am, af = "m", "f", "am", "af"

    def test_full(self) -> None:
        assert classify_sibling(_p(mother_id=self.m, father_id=self.f), _p(mother_id=self.m, father_id=self.f)) == SiblingType.FULL

    def test_adoptive(self) -> None:
        focal = _p(adoptive_mother_id=self.am, adoptive_father_id=self.af)
        other = _p(adoptive_mother_id=self.am, adoptive_father_id=self.af, mother_id="z")
        assert classify_sibling(focal, other) == SiblingType.ADOPTIVE

    def test_half_biological(self) -> None:
        assert classify_sibling(_p(mother_id=self.m, father_id=self.f), _p(mother_id=self.m, father_id="g")) == SiblingType.HALF_BIOLOGICAL
        assert classify_sibling(_p(father_id=self.f), _p(father_id=self.f)) == SiblingType.HALF_BIOLOGICAL

    def test_half_adoptive(self) -> None:
        assert classify_sibling(_p(adoptive_father_id=self.af), _p(adoptive_father_id=self.af)) == SiblingType.HALF_ADOPTIVE

    def test_biological_outranks_adoptive(self) -> None:
        focal = _p(mother_id=self.m, adoptive_father_id=self.af)
        other = _p(mother_id=self.m, adoptive_father_id=self.af)
        assert classify_sibling(focal, other) == SiblingType.HALF_BIOLOGICAL

    def test_full_outranks_adoptive(self) -> None:
        focal = _p(mother_id=self.m, father_id=self.f, adoptive_mother_id=self.am, adoptive_father_id=self.af)
        assert classify_sibling(focal, _p(**{MOTHER: self.m, FATHER: self.f, ADOPTIVE_MOTHER: self.am, ADOPTIVE_FATHER: self.af})) == SiblingType.FULL

    def test_complex_when_nothing_matches_in_category(self) -> None:
        # Same id in different categories is not a shared parent.
        assert classify_sibling(_p(mother_id=self.m), _p(adoptive_mother_id=self.m)) == SiblingType.COMPLEX

    def test_every_combination_gets_exactly_one_label(self) -> None:
        slots = (MOTHER, FATHER, ADOPTIVE_MOTHER, ADOPTIVE_FATHER)
        focal = _p(**{s: f"parent-{s}" for s in slots})
        seen = set()
        for mask in itertools.product((False, True), repeat=4):
            other = _p(**{s: f"parent-{s}" for s, shared in zip(slots, mask) if shared})
            seen.add(classify_sibling(focal, other))
        assert seen == set(SiblingType)


# ---------------------------------------------------------------------------
# Ordering and isolation
# ---------------------------------------------------------------------------


def test_children_order_unknown_birth_year_first_then_name(store, world, add_person) -> None:
    a = add_person("Aveline")
    add_person("Zed", birth_year=2001, parents={"mother": a.id})
    add_person("Yara", parents={"mother": a.id})
    add_person("Abel", birth_year=2001, parents={"mother": a.id})
    add_person("Mina", birth_year=1999, adoptive_parents={"mother": a.id})

    first = children_of(store, world.id, a.id)
    assert _names(first) == ["Yara", "Mina", "Abel", "Zed"]
    assert [p.id for p in children_of(store, world.id, a.id)] == [p.id for p in first]


def test_children_are_not_duplicated_across_slots(store, world, add_person) -> None:
    a = add_person("Aveline")
    add_person("Cato", parents={"mother": a.id}, adoptive_parents={"mother": a.id})
    assert _names(children_of(store, world.id, a.id)) == ["Cato"]


def test_queries_stay_inside_the_world(store, world, owner_id, add_person) -> None:
    a = add_person("Aveline")
    other = store.insert_world(World(id=new_id(), name="Elsewhere", owner_id=owner_id))

    # A parent ref into another world is dropped at write time.
    outsider = create_person(store, other.id, {"name": "Outsider", "parents": {"mother": a.id}}).person
    assert outsider.parents.mother is None
    assert children_of(store, world.id, a.id) == []
    assert children_of(store, other.id, a.id) == []


def test_self_and_unknown_parent_refs_are_dropped(store, world, add_person) -> None:
    c = add_person("Cato", parents={"mother": new_id(), "father": "nonsense"})
    assert c.parents.mother is None and c.parents.father is None

    update_person(store, world.id, c.id, {"parents": {"mother": c.id}})
    assert store.get_person(world.id, c.id).parents.mother is None


def test_siblings_sorted_and_deduplicated(store, world, add_person) -> None:
    a = add_person("Aveline")
    b = add_person("Bram")
    c = add_person("Cato", birth_year=2000, parents={"mother": a.id, "father": b.id})
    add_person("Dara", birth_year=2003, parents={"mother": a.id, "father": b.id})
    add_person("Eli", birth_year=1998, parents={"mother": a.id})

    sibs = siblings_of(store, world.id, store.get_person(world.id, c.id))
    assert [(s.person.name, s.sibling_type) for s in sibs] == [
        ("Eli", SiblingType.HALF_BIOLOGICAL),
        ("Dara", SiblingType.FULL),
    ]


# ---------------------------------------------------------------------------
# Ancestor expansion
# ---------------------------------------------------------------------------


class TestExpandAncestors:
    def test_two_levels_with_adoptive_first_level(self, store, world, add_person) -> None:
        gm = add_person("Gran")
        m = add_person("Mother", parents={"mother": gm.id})
        am = add_person("Adoptive Mother", parents={"mother": gm.id})
        c = add_person("Child", parents={"mother": m.id}, adoptive_parents={"mother": am.id})

        root = expand_ancestors(store, world.id, c)
        assert root.parent(MOTHER).person.id == m.id
        assert root.parent(MOTHER).parent(MOTHER).person.id == gm.id
        assert root.parent(ADOPTIVE_MOTHER).parent(MOTHER).person.id == gm.id
        assert root.parent(FATHER) is None
        # Depth 2 stops at grandparents.
        assert root.parent(MOTHER).parent(MOTHER).parents == {}

    def test_deeper_levels_follow_biological_parents_only(self, store, world, add_person) -> None:
        great = add_person("Great")
        adoptive = add_person("Adoptive")
        gm = add_person("Gran", parents={"mother": great.id}, adoptive_parents={"mother": adoptive.id})
        m = add_person("Mother", parents={"mother": gm.id})
        c = add_person("Child", parents={"mother": m.id})

        root = expand_ancestors(store, world.id, c, depth=3)
        gran = root.parent(MOTHER).parent(MOTHER)
        assert gran.parent(MOTHER).person.id == great.id
        assert ADOPTIVE_MOTHER not in gran.parents

    def test_parent_cycle_terminates(self, store, world, add_person) -> None:
        a = add_person("A")
        b = add_person("B", parents={"mother": a.id})
        update_person(store, world.id, a.id, {"parents": {"mother": b.id}})

        root = expand_ancestors(store, world.id, store.get_person(world.id, a.id), depth=6)
        assert root.parent(MOTHER).person.id == b.id
        # B's mother is A again, which is on the path and not expanded further.
        assert root.parent(MOTHER).parent(MOTHER).person.id == a.id
        assert root.parent(MOTHER).parent(MOTHER).parents == {}
