"""Family-tree view model.

Pure data transformation: takes a person with expanded ancestors, their
loaded spouses, children and classified siblings, and groups them into the
structure the family-tree page renders. Nothing here touches storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .models import (
    ADOPTIVE_FATHER,
    ADOPTIVE_MOTHER,
    FATHER,
    MOTHER,
    Location,
    Person,
    SpouseLink,
)
from .relatives import AncestorNode, Sibling

# Parent slot -> (line, lineage, role), in display order.
_PARENT_LINES = (
    (FATHER, "paternal", "biological", "father"),
    (MOTHER, "maternal", "biological", "mother"),
    (ADOPTIVE_FATHER, "paternal", "adoptive", "father"),
    (ADOPTIVE_MOTHER, "maternal", "adoptive", "mother"),
)


@dataclass
class PersonStub:
    id: str
    name: str
    birth_year: Optional[int] = None
    death_year: Optional[int] = None
    gender: Optional[str] = None

    @classmethod
    def of(cls, p: Person) -> "PersonStub":
        return cls(
            id=p.id,
            name=p.name,
            birth_year=p.birth_year,
            death_year=p.death_year,
            gender=p.gender.value,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "birth_year": self.birth_year,
            "death_year": self.death_year,
            "gender": self.gender,
        }


def _stub_dict(stub: Optional[PersonStub]) -> Optional[dict[str, Any]]:
    return stub.as_dict() if stub is not None else None


@dataclass
class GrandparentSlot:
    line: str
    lineage: str
    role: str
    person: Optional[PersonStub]


@dataclass
class ParentSlot:
    role: str
    adoptive: bool
    person: PersonStub


@dataclass
class ChildEntry:
    person: PersonStub
    is_adoptive_connection: bool


@dataclass
class SpouseGroup:
    spouse_id: str
    spouse: Optional[PersonStub]
    link: SpouseLink
    children: list[ChildEntry] = field(default_factory=list)


@dataclass
class PersonDetail:
    """A person with ancestors expanded, spouse records and nationality loaded."""

    ancestors: AncestorNode
    spouses: dict[str, Person] = field(default_factory=dict)
    nationality: Optional[Location] = None

    @property
    def person(self) -> Person:
        return self.ancestors.person


@dataclass
class FamilyTree:
    self_: PersonStub
    grandparents: list[GrandparentSlot]
    parents: list[ParentSlot]
    siblings: list[Sibling]
    spouses: list[SpouseGroup]
    unassigned_children: list[ChildEntry]

    def is_empty(self) -> bool:
        return not (
            self.parents or self.siblings or self.spouses or self.unassigned_children
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "self": self.self_.as_dict(),
            "grandparents": [
                {
                    "line": g.line,
                    "lineage": g.lineage,
                    "role": g.role,
                    "person": _stub_dict(g.person),
                }
                for g in self.grandparents
            ],
            "parents": [
                {"role": p.role, "adoptive": p.adoptive, "person": p.person.as_dict()}
                for p in self.parents
            ],
            "siblings": [
                {**PersonStub.of(s.person).as_dict(), "sibling_type": s.sibling_type.value}
                for s in self.siblings
            ],
            "spouses": [
                {
                    "spouse_id": g.spouse_id,
                    "spouse": _stub_dict(g.spouse),
                    "marriage_year": g.link.marriage_year,
                    "end_year": g.link.end_year,
                    "reason_for_end": g.link.reason_for_end.value if g.link.reason_for_end else None,
                    "children": [
                        {**c.person.as_dict(), "is_adoptive_connection": c.is_adoptive_connection}
                        for c in g.children
                    ],
                }
                for g in self.spouses
            ],
            "unassigned_children": [
                {**c.person.as_dict(), "is_adoptive_connection": c.is_adoptive_connection}
                for c in self.unassigned_children
            ],
            "is_empty": self.is_empty(),
        }


def _other_parent(child: Person, focal_id: str, first: str, second: str) -> tuple[bool, Optional[str]]:
    """Return (linked, other parent id) for one slot category of ``child``."""
    a, b = child.slot(first), child.slot(second)
    if a == focal_id:
        return True, b
    if b == focal_id:
        return True, a
    return False, None


def _place_child(
    child: Person,
    focal_id: str,
    groups: dict[str, SpouseGroup],
) -> tuple[Optional[SpouseGroup], bool]:
    """Pick the spouse group for ``child`` and its adoptive-connection flag.

    The other parent is taken from the slot category that links the child to
    the focal person. The biological pairing is tried before the adoptive one.
    """

    bio_linked, other_bio = _other_parent(child, focal_id, MOTHER, FATHER)
    adoptive_linked, other_adoptive = _other_parent(child, focal_id, ADOPTIVE_MOTHER, ADOPTIVE_FATHER)

    group: Optional[SpouseGroup] = None
    if bio_linked and other_bio in groups:
        group = groups[other_bio]
    elif adoptive_linked and other_adoptive in groups:
        group = groups[other_adoptive]

    if group is None:
        return None, adoptive_linked and not bio_linked

    # Purely biological only when both partners are the child's biological
    # parents and the two did not also adopt it together.
    both_biological = bio_linked and other_bio == group.spouse_id
    both_adoptive = adoptive_linked and other_adoptive == group.spouse_id
    return group, both_adoptive or not both_biological


def assemble_family_tree(
    detail: PersonDetail,
    children: list[Person],
    siblings: list[Sibling],
) -> FamilyTree:
    focal = detail.person
    root = detail.ancestors

    grandparents: list[GrandparentSlot] = []
    parents: list[ParentSlot] = []
    for slot, line, lineage, role in _PARENT_LINES:
        node = root.parent(slot)
        if node is None:
            continue
        parents.append(
            ParentSlot(role=role, adoptive=(lineage == "adoptive"), person=PersonStub.of(node.person))
        )
        for gp_slot, gp_role in ((FATHER, "grandfather"), (MOTHER, "grandmother")):
            gp = node.parent(gp_slot)
            grandparents.append(
                GrandparentSlot(
                    line=line,
                    lineage=lineage,
                    role=gp_role,
                    person=PersonStub.of(gp.person) if gp is not None else None,
                )
            )

    groups: dict[str, SpouseGroup] = {}
    for link in focal.spouses:
        spouse = detail.spouses.get(link.person)
        groups.setdefault(
            link.person,
            SpouseGroup(
                spouse_id=link.person,
                spouse=PersonStub.of(spouse) if spouse is not None else None,
                link=link,
            ),
        )

    unassigned: list[ChildEntry] = []
    for child in children:
        group, adoptive = _place_child(child, focal.id, groups)
        entry = ChildEntry(person=PersonStub.of(child), is_adoptive_connection=adoptive)
        if group is None:
            unassigned.append(entry)
        else:
            group.children.append(entry)

    return FamilyTree(
        self_=PersonStub.of(focal),
        grandparents=grandparents,
        parents=parents,
        siblings=list(siblings),
        spouses=list(groups.values()),
        unassigned_children=unassigned,
    )
