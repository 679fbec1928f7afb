"""Records for worlds, people, locations and the links between them.

People are plain dataclasses keyed by id. References to other people are
stored as ids only, never as nested objects, so a world is an arena of
records that the store indexes by slot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    NON_BINARY = "Non-binary"
    OTHER = "Other"
    UNKNOWN = "Unknown"


class EndReason(str, Enum):
    DIVORCE = "Divorce"
    DEATH = "Death"
    ANNULLMENT = "Annullment"
    OTHER = "Other"
    UNKNOWN = "Unknown"


class SiblingType(str, Enum):
    FULL = "Full Sibling"
    ADOPTIVE = "Adoptive Sibling"
    HALF_BIOLOGICAL = "Half-Sibling (Biological)"
    HALF_ADOPTIVE = "Half-Sibling (Adoptive)"
    COMPLEX = "Related (Complex)"


# Parent slot names double as the storage column names.
MOTHER = "mother_id"
FATHER = "father_id"
ADOPTIVE_MOTHER = "adoptive_mother_id"
ADOPTIVE_FATHER = "adoptive_father_id"
PARENT_SLOTS = (MOTHER, FATHER, ADOPTIVE_MOTHER, ADOPTIVE_FATHER)
SPOUSE = "spouse"

DEFAULT_LOCATION_TYPE = "Country"


@dataclass
class ParentRefs:
    mother: Optional[str] = None
    father: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.mother and not self.father


@dataclass
class AdoptiveParents:
    mother: Optional[str] = None
    father: Optional[str] = None
    adoption_year: Optional[int] = None

    def is_empty(self) -> bool:
        return not self.mother and not self.father and self.adoption_year is None


@dataclass
class SpouseLink:
    person: str
    marriage_year: Optional[int] = None
    end_year: Optional[int] = None
    reason_for_end: Optional[EndReason] = None

    def attrs(self) -> tuple[Optional[int], Optional[int], Optional[EndReason]]:
        return (self.marriage_year, self.end_year, self.reason_for_end)


@dataclass
class Person:
    id: str
    world_id: str
    name: str
    gender: Gender = Gender.UNKNOWN
    birth_year: Optional[int] = None
    death_year: Optional[int] = None
    bio: str = ""
    nationality_id: Optional[str] = None
    parents: ParentRefs = field(default_factory=ParentRefs)
    adoptive_parents: AdoptiveParents = field(default_factory=AdoptiveParents)
    spouses: list[SpouseLink] = field(default_factory=list)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def slot(self, name: str) -> Optional[str]:
        """Return the person id held in parent slot ``name``."""
        if name == MOTHER:
            return self.parents.mother
        if name == FATHER:
            return self.parents.father
        if name == ADOPTIVE_MOTHER:
            return self.adoptive_parents.mother
        if name == ADOPTIVE_FATHER:
            return self.adoptive_parents.father
        raise KeyError(name)

    def set_slot(self, name: str, value: Optional[str]) -> None:
        if name == MOTHER:
            self.parents.mother = value
        elif name == FATHER:
            self.parents.father = value
        elif name == ADOPTIVE_MOTHER:
            self.adoptive_parents.mother = value
        elif name == ADOPTIVE_FATHER:
            self.adoptive_parents.father = value
        else:
            raise KeyError(name)

    def spouse_link(self, person_id: str) -> Optional[SpouseLink]:
        for link in self.spouses:
            if link.person == person_id:
                return link
        return None

    def age(self, *, today: date | None = None) -> Optional[int]:
        if self.birth_year is None:
            return None
        end = self.death_year if self.death_year is not None else (today or date.today()).year
        return end - self.birth_year

    def adoption_age(self) -> Optional[int]:
        if self.birth_year is None or self.adoptive_parents.adoption_year is None:
            return None
        return self.adoptive_parents.adoption_year - self.birth_year


@dataclass
class World:
    id: str
    name: str
    owner_id: str
    description: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Location:
    """A place in a world; people point at one as their nationality."""

    id: str
    world_id: str
    name: str
    type: str = DEFAULT_LOCATION_TYPE
    description: str = ""
    parent_location_ids: list[str] = field(default_factory=list)
    founding_year: Optional[int] = None
    dissolution_year: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class User:
    id: str
    username: str
    email: str
    password_hash: str
    created_at: Optional[datetime] = None
