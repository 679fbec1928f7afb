from __future__ import annotations

from typing import Any, Optional, Sequence

import psycopg

from .errors import Conflict, StaleRecord
from .models import (
    PARENT_SLOTS,
    SPOUSE,
    AdoptiveParents,
    EndReason,
    Gender,
    Location,
    ParentRefs,
    Person,
    SpouseLink,
    User,
    World,
)
from .refs import RefCheck, is_valid_ref
from .store import _check_fields

_PERSON_COLUMNS = """
    id, world_id, name, gender, birth_year, death_year, bio, nationality_id,
    mother_id, father_id, adoptive_mother_id, adoptive_father_id, adoption_year,
    version, created_at, updated_at
""".strip()


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _row_to_person(r: tuple[Any, ...], spouses: list[SpouseLink]) -> Person:
    (
        pid,
        world_id,
        name,
        gender,
        birth_year,
        death_year,
        bio,
        nationality_id,
        mother_id,
        father_id,
        adoptive_mother_id,
        adoptive_father_id,
        adoption_year,
        version,
        created_at,
        updated_at,
    ) = r

    try:
        gender_out = Gender(gender)
    except ValueError:
        gender_out = Gender.UNKNOWN

    return Person(
        id=str(pid),
        world_id=str(world_id),
        name=name,
        gender=gender_out,
        birth_year=birth_year,
        death_year=death_year,
        bio=bio or "",
        nationality_id=_str_or_none(nationality_id),
        parents=ParentRefs(mother=_str_or_none(mother_id), father=_str_or_none(father_id)),
        adoptive_parents=AdoptiveParents(
            mother=_str_or_none(adoptive_mother_id),
            father=_str_or_none(adoptive_father_id),
            adoption_year=adoption_year,
        ),
        spouses=spouses,
        version=version,
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_spouse_link(r: tuple[Any, ...]) -> SpouseLink:
    spouse_id, marriage_year, end_year, reason = r
    reason_out: Optional[EndReason] = None
    if reason:
        try:
            reason_out = EndReason(reason)
        except ValueError:
            reason_out = EndReason.UNKNOWN
    return SpouseLink(
        person=str(spouse_id),
        marriage_year=marriage_year,
        end_year=end_year,
        reason_for_end=reason_out,
    )


def _person_params(p: Person) -> tuple[Any, ...]:
    return (
        p.name,
        p.gender.value,
        p.birth_year,
        p.death_year,
        p.bio,
        p.nationality_id,
        p.parents.mother,
        p.parents.father,
        p.adoptive_parents.mother,
        p.adoptive_parents.father,
        p.adoptive_parents.adoption_year,
    )


class PgStore:
    """``Store`` backed by PostgreSQL through psycopg 3.

    Expects an autocommit connection (see ``db.db_conn``); every write runs
    inside its own ``conn.transaction()`` block.
    """

    def __init__(self, conn: psycopg.Connection, *, ref_check: RefCheck = is_valid_ref) -> None:
        self.conn = conn
        self.ref_check = ref_check

    # -- people -----------------------------------------------------------

    def _fetch_spouses(self, person_ids: list[str]) -> dict[str, list[SpouseLink]]:
        out: dict[str, list[SpouseLink]] = {pid: [] for pid in person_ids}
        if not person_ids:
            return out
        rows = self.conn.execute(
            """
            SELECT person_id, spouse_id, marriage_year, end_year, reason_for_end
            FROM person_spouse
            WHERE person_id = ANY(%s::uuid[])
            ORDER BY person_id, position
            """.strip(),
            (person_ids,),
        ).fetchall()
        for r in rows:
            out.setdefault(str(r[0]), []).append(_row_to_spouse_link(tuple(r[1:])))
        return out

    def _write_spouses(self, p: Person) -> None:
        self.conn.execute("DELETE FROM person_spouse WHERE person_id = %s", (p.id,))
        for position, link in enumerate(p.spouses):
            self.conn.execute(
                """
                INSERT INTO person_spouse
                  (person_id, position, spouse_id, marriage_year, end_year, reason_for_end)
                VALUES (%s, %s, %s, %s, %s, %s)
                """.strip(),
                (
                    p.id,
                    position,
                    link.person,
                    link.marriage_year,
                    link.end_year,
                    link.reason_for_end.value if link.reason_for_end else None,
                ),
            )

    def get_person(self, world_id: str, person_id: str) -> Optional[Person]:
        if not self.ref_check(person_id) or not self.ref_check(world_id):
            return None
        row = self.conn.execute(
            f"SELECT {_PERSON_COLUMNS} FROM person WHERE id = %s AND world_id = %s",
            (str(person_id), world_id),
        ).fetchone()
        if not row:
            return None
        pid = str(row[0])
        return _row_to_person(tuple(row), self._fetch_spouses([pid])[pid])

    def find_people(
        self,
        world_id: str,
        any_of: Optional[Sequence[tuple[str, str]]] = None,
        *,
        exclude_id: Optional[str] = None,
    ) -> list[Person]:
        if not self.ref_check(world_id):
            return []

        where = ["world_id = %s"]
        params: list[Any] = [world_id]

        if any_of is not None:
            _check_fields(any_of)
            terms: list[str] = []
            for field, value in any_of:
                if not self.ref_check(value):
                    continue
                if field == SPOUSE:
                    terms.append("id IN (SELECT person_id FROM person_spouse WHERE spouse_id = %s)")
                else:
                    # field is whitelisted by _check_fields.
                    terms.append(f"{field} = %s")
                params.append(str(value))
            if not terms:
                return []
            where.append("(" + " OR ".join(terms) + ")")

        if exclude_id and self.ref_check(exclude_id):
            where.append("id <> %s")
            params.append(str(exclude_id))

        rows = self.conn.execute(
            f"SELECT {_PERSON_COLUMNS} FROM person WHERE {' AND '.join(where)} ORDER BY id",
            tuple(params),
        ).fetchall()
        ids = [str(r[0]) for r in rows]
        spouses = self._fetch_spouses(ids)
        return [_row_to_person(tuple(r), spouses.get(str(r[0]), [])) for r in rows]

    def insert_person(self, person: Person) -> Person:
        with self.conn.transaction():
            row = self.conn.execute(
                """
                INSERT INTO person
                  (id, world_id, name, gender, birth_year, death_year, bio, nationality_id,
                   mother_id, father_id, adoptive_mother_id, adoptive_father_id, adoption_year)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING version, created_at, updated_at
                """.strip(),
                (person.id, person.world_id, *_person_params(person)),
            ).fetchone()
            self._write_spouses(person)

        version, created_at, updated_at = row
        person.version = version
        person.created_at = created_at
        person.updated_at = updated_at
        return person

    def save_person(self, person: Person) -> Person:
        with self.conn.transaction():
            row = self.conn.execute(
                """
                UPDATE person SET
                  name = %s, gender = %s, birth_year = %s, death_year = %s, bio = %s,
                  nationality_id = %s, mother_id = %s, father_id = %s,
                  adoptive_mother_id = %s, adoptive_father_id = %s, adoption_year = %s,
                  version = version + 1, updated_at = now()
                WHERE id = %s AND world_id = %s AND version = %s
                RETURNING version, updated_at
                """.strip(),
                (*_person_params(person), person.id, person.world_id, person.version),
            ).fetchone()
            if not row:
                raise StaleRecord(f"person {person.id} was modified or removed concurrently")
            self._write_spouses(person)

        person.version, person.updated_at = row
        return person

    def delete_person(self, world_id: str, person_id: str) -> bool:
        if not self.ref_check(person_id):
            return False
        with self.conn.transaction():
            cur = self.conn.execute(
                "DELETE FROM person WHERE id = %s AND world_id = %s",
                (str(person_id), world_id),
            )
        return cur.rowcount == 1

    def clear_person_refs(self, world_id: str, field: str, person_id: str) -> int:
        if field not in PARENT_SLOTS:
            raise ValueError(f"not a parent slot: {field}")
        with self.conn.transaction():
            cur = self.conn.execute(
                f"""
                UPDATE person SET {field} = NULL, version = version + 1, updated_at = now()
                WHERE world_id = %s AND {field} = %s
                """.strip(),
                (world_id, person_id),
            )
        return cur.rowcount

    # -- worlds -----------------------------------------------------------

    def get_world(self, world_id: str) -> Optional[World]:
        if not self.ref_check(world_id):
            return None
        row = self.conn.execute(
            "SELECT id, name, owner_id, description, created_at, updated_at FROM world WHERE id = %s",
            (str(world_id),),
        ).fetchone()
        return _row_to_world(tuple(row)) if row else None

    def list_worlds(self, owner_id: str) -> list[World]:
        if not self.ref_check(owner_id):
            return []
        rows = self.conn.execute(
            """
            SELECT id, name, owner_id, description, created_at, updated_at
            FROM world
            WHERE owner_id = %s
            ORDER BY created_at DESC
            """.strip(),
            (owner_id,),
        ).fetchall()
        return [_row_to_world(tuple(r)) for r in rows]

    def insert_world(self, world: World) -> World:
        with self.conn.transaction():
            row = self.conn.execute(
                """
                INSERT INTO world (id, name, owner_id, description)
                VALUES (%s, %s, %s, %s)
                RETURNING created_at, updated_at
                """.strip(),
                (world.id, world.name, world.owner_id, world.description),
            ).fetchone()
        world.created_at, world.updated_at = row
        return world

    def save_world(self, world: World) -> World:
        with self.conn.transaction():
            row = self.conn.execute(
                """
                UPDATE world SET name = %s, description = %s, updated_at = now()
                WHERE id = %s
                RETURNING updated_at
                """.strip(),
                (world.name, world.description, world.id),
            ).fetchone()
        if not row:
            raise StaleRecord(f"world {world.id} no longer exists")
        world.updated_at = row[0]
        return world

    def delete_world(self, world_id: str) -> bool:
        if not self.ref_check(world_id):
            return False
        with self.conn.transaction():
            # person and person_spouse rows go with it (ON DELETE CASCADE).
            cur = self.conn.execute("DELETE FROM world WHERE id = %s", (str(world_id),))
        return cur.rowcount == 1

    # -- locations --------------------------------------------------------

    def get_location(self, world_id: str, location_id: str) -> Optional[Location]:
        if not self.ref_check(location_id) or not self.ref_check(world_id):
            return None
        row = self.conn.execute(
            f"SELECT {_LOCATION_COLUMNS} FROM location WHERE id = %s AND world_id = %s",
            (str(location_id), world_id),
        ).fetchone()
        return _row_to_location(tuple(row)) if row else None

    def list_locations(self, world_id: str) -> list[Location]:
        if not self.ref_check(world_id):
            return []
        rows = self.conn.execute(
            f"SELECT {_LOCATION_COLUMNS} FROM location WHERE world_id = %s ORDER BY id",
            (world_id,),
        ).fetchall()
        return [_row_to_location(tuple(r)) for r in rows]

    def insert_location(self, location: Location) -> Location:
        with self.conn.transaction():
            row = self.conn.execute(
                """
                INSERT INTO location
                  (id, world_id, name, type, description, parent_location_ids,
                   founding_year, dissolution_year)
                VALUES (%s, %s, %s, %s, %s, %s::uuid[], %s, %s)
                RETURNING created_at, updated_at
                """.strip(),
                (location.id, location.world_id, *_location_params(location)),
            ).fetchone()
        location.created_at, location.updated_at = row
        return location

    def save_location(self, location: Location) -> Location:
        with self.conn.transaction():
            row = self.conn.execute(
                """
                UPDATE location SET
                  name = %s, type = %s, description = %s, parent_location_ids = %s::uuid[],
                  founding_year = %s, dissolution_year = %s, updated_at = now()
                WHERE id = %s AND world_id = %s
                RETURNING updated_at
                """.strip(),
                (*_location_params(location), location.id, location.world_id),
            ).fetchone()
        if not row:
            raise StaleRecord(f"location {location.id} no longer exists")
        location.updated_at = row[0]
        return location

    def delete_location(self, world_id: str, location_id: str) -> bool:
        if not self.ref_check(location_id):
            return False
        with self.conn.transaction():
            cur = self.conn.execute(
                "DELETE FROM location WHERE id = %s AND world_id = %s",
                (str(location_id), world_id),
            )
        return cur.rowcount == 1

    def clear_location_refs(self, world_id: str, location_id: str) -> dict[str, int]:
        with self.conn.transaction():
            parents = self.conn.execute(
                """
                UPDATE location
                SET parent_location_ids = array_remove(parent_location_ids, %s::uuid), updated_at = now()
                WHERE world_id = %s AND %s::uuid = ANY(parent_location_ids)
                """.strip(),
                (location_id, world_id, location_id),
            )
            people = self.conn.execute(
                """
                UPDATE person SET nationality_id = NULL, version = version + 1, updated_at = now()
                WHERE world_id = %s AND nationality_id = %s
                """.strip(),
                (world_id, location_id),
            )
        return {"parent_locations": parents.rowcount, "nationality": people.rowcount}

    # -- users ------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        if not self.ref_check(user_id):
            return None
        row = self.conn.execute(
            "SELECT id, username, email, password_hash, created_at FROM app_user WHERE id = %s",
            (str(user_id),),
        ).fetchone()
        return _row_to_user(tuple(row)) if row else None

    def get_user_by_login(self, login: str) -> Optional[User]:
        row = self.conn.execute(
            """
            SELECT id, username, email, password_hash, created_at
            FROM app_user
            WHERE lower(username) = lower(%s) OR lower(email) = lower(%s)
            LIMIT 1
            """.strip(),
            (login.strip(), login.strip()),
        ).fetchone()
        return _row_to_user(tuple(row)) if row else None

    def insert_user(self, user: User) -> User:
        try:
            with self.conn.transaction():
                row = self.conn.execute(
                    """
                    INSERT INTO app_user (id, username, email, password_hash)
                    VALUES (%s, %s, %s, %s)
                    RETURNING created_at
                    """.strip(),
                    (user.id, user.username, user.email, user.password_hash),
                ).fetchone()
        except psycopg.errors.UniqueViolation as e:
            raise Conflict("username or email already registered") from e
        user.created_at = row[0]
        return user


def _row_to_world(r: tuple[Any, ...]) -> World:
    wid, name, owner_id, description, created_at, updated_at = r
    return World(
        id=str(wid),
        name=name,
        owner_id=str(owner_id),
        description=description or "",
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_user(r: tuple[Any, ...]) -> User:
    uid, username, email, password_hash, created_at = r
    return User(
        id=str(uid),
        username=username,
        email=email,
        password_hash=password_hash,
        created_at=created_at,
    )


_LOCATION_COLUMNS = """
    id, world_id, name, type, description, parent_location_ids,
    founding_year, dissolution_year, created_at, updated_at
""".strip()


def _location_params(loc: Location) -> tuple[Any, ...]:
    return (
        loc.name,
        loc.type,
        loc.description,
        list(loc.parent_location_ids),
        loc.founding_year,
        loc.dissolution_year,
    )


def _row_to_location(r: tuple[Any, ...]) -> Location:
    (
        lid,
        world_id,
        name,
        type_,
        description,
        parent_ids,
        founding_year,
        dissolution_year,
        created_at,
        updated_at,
    ) = r
    return Location(
        id=str(lid),
        world_id=str(world_id),
        name=name,
        type=type_,
        description=description or "",
        parent_location_ids=[str(i) for i in parent_ids or []],
        founding_year=founding_year,
        dissolution_year=dissolution_year,
        created_at=created_at,
        updated_at=updated_at,
    )
