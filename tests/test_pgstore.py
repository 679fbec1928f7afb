from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

import psycopg
import pytest

from worldtree.errors import Conflict, StaleRecord
from worldtree.models import FATHER, MOTHER, SPOUSE, EndReason, Gender, Location, Person, SpouseLink, User
from worldtree.pgstore import PgStore, _row_to_location, _row_to_person

_TS = datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)


@dataclass
class _FakeResult:
    rows: list[tuple] = field(default_factory=list)
    rowcount: int = 0

    def fetchall(self) -> list[tuple]:
        return list(self.rows)

    def fetchone(self):
        return self.rows[0] if self.rows else None


class _FakeConn:
    """Records every statement; answers with queued results in order."""

    def __init__(self, *results: _FakeResult, fail_with: Exception | None = None) -> None:
        self._results = list(results)
        self._fail_with = fail_with
        self.executed: list[tuple[str, tuple]] = []
        self.transactions = 0

    @contextmanager
    def transaction(self):
        self.transactions += 1
        yield

    def execute(self, query: str, params: tuple = ()) -> _FakeResult:
        self.executed.append((" ".join(query.split()), tuple(params)))
        if self._fail_with is not None:
            raise self._fail_with
        return self._results.pop(0) if self._results else _FakeResult()

    def statements(self) -> list[str]:
        return [q for q, _ in self.executed]


def _person_row(pid: uuid.UUID, world_id: uuid.UUID, name: str, *, mother=None, gender="Female") -> tuple:
    return (
        pid, world_id, name, gender, 1900, None, None, None,
        mother, None, None, None, None,
        3, _TS, _TS,
    )


W = uuid.uuid4()


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def test_row_to_person_maps_uuids_and_defaults() -> None:
    pid, mother = uuid.uuid4(), uuid.uuid4()
    p = _row_to_person(_person_row(pid, W, "Aveline", mother=mother, gender="Wizard"), [])
    assert p.id == str(pid)
    assert p.world_id == str(W)
    assert p.parents.mother == str(mother)
    assert p.parents.father is None
    assert p.gender == Gender.UNKNOWN
    assert p.bio == ""
    assert p.version == 3


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestFindPeople:
    def test_or_query_over_slots_and_spouse(self) -> None:
        a, c = str(uuid.uuid4()), uuid.uuid4()
        conn = _FakeConn(
            _FakeResult([_person_row(c, W, "Cato", mother=uuid.UUID(a))]),
            _FakeResult([(c, uuid.UUID(a), 2005, None, "Death")]),
        )
        store = PgStore(conn)

        out = store.find_people(str(W), [(MOTHER, a), (FATHER, a), (SPOUSE, a)], exclude_id=a)

        q, params = conn.executed[0]
        assert "(mother_id = %s OR father_id = %s OR id IN (SELECT person_id FROM person_spouse WHERE spouse_id = %s))" in q
        assert "id <> %s" in q
        assert q.endswith("ORDER BY id")
        assert params == (str(W), a, a, a, a)

        assert "ANY(%s::uuid[])" in conn.executed[1][0]
        [p] = out
        assert p.name == "Cato"
        assert p.spouses == [SpouseLink(a, 2005, None, EndReason.DEATH)]

    def test_whole_world_when_no_filter(self) -> None:
        conn = _FakeConn(_FakeResult([]))
        assert PgStore(conn).find_people(str(W)) == []
        assert conn.statements() == [
            "SELECT id, world_id, name, gender, birth_year, death_year, bio, nationality_id, "
            "mother_id, father_id, adoptive_mother_id, adoptive_father_id, adoption_year, "
            "version, created_at, updated_at FROM person WHERE world_id = %s ORDER BY id"
        ]

    def test_unknown_field_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            PgStore(_FakeConn()).find_people(str(W), [("name", "x")])

    def test_only_invalid_values_short_circuit(self) -> None:
        conn = _FakeConn()
        assert PgStore(conn).find_people(str(W), [(MOTHER, "junk")]) == []
        assert conn.executed == []


def test_malformed_ids_never_reach_the_database() -> None:
    conn = _FakeConn()
    store = PgStore(conn)
    assert store.get_person(str(W), "junk") is None
    assert store.get_person("junk", str(uuid.uuid4())) is None
    assert store.get_world("junk") is None
    assert store.delete_person(str(W), "junk") is False
    assert conn.executed == []


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _person(**kw) -> Person:
    return Person(id=str(uuid.uuid4()), world_id=str(W), name="Aveline", version=2, **kw)


class TestSavePerson:
    def test_rewrites_spouse_rows_in_order(self) -> None:
        b, c = str(uuid.uuid4()), str(uuid.uuid4())
        p = _person(spouses=[SpouseLink(b, 2000, 2004, EndReason.DIVORCE), SpouseLink(c, 2006)])
        conn = _FakeConn(_FakeResult([(3, _TS)]))

        out = PgStore(conn).save_person(p)

        assert out.version == 3
        assert conn.transactions == 1
        update, delete, first, second = conn.executed
        assert update[0].startswith("UPDATE person SET")
        assert "version = %s" in update[0]
        assert update[1][-3:] == (p.id, str(W), 2)
        assert delete == ("DELETE FROM person_spouse WHERE person_id = %s", (p.id,))
        assert first[1] == (p.id, 0, b, 2000, 2004, "Divorce")
        assert second[1] == (p.id, 1, c, 2006, None, None)

    def test_stale_version_raises(self) -> None:
        conn = _FakeConn(_FakeResult([]))
        with pytest.raises(StaleRecord):
            PgStore(conn).save_person(_person(spouses=[SpouseLink(str(uuid.uuid4()))]))
        # Spouse rows are left alone.
        assert len(conn.executed) == 1


def test_clear_person_refs_targets_one_column() -> None:
    conn = _FakeConn(_FakeResult(rowcount=2))
    pid = str(uuid.uuid4())

    assert PgStore(conn).clear_person_refs(str(W), FATHER, pid) == 2
    q, params = conn.executed[0]
    assert q.startswith("UPDATE person SET father_id = NULL, version = version + 1")
    assert q.endswith("WHERE world_id = %s AND father_id = %s")
    assert params == (str(W), pid)

    with pytest.raises(ValueError):
        PgStore(conn).clear_person_refs(str(W), "name", pid)


def test_insert_user_maps_unique_violation() -> None:
    conn = _FakeConn(fail_with=psycopg.errors.UniqueViolation("duplicate key"))
    user = User(id=str(uuid.uuid4()), username="ada", email="ada@example.org", password_hash="x")
    with pytest.raises(Conflict):
        PgStore(conn).insert_user(user)


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


def test_row_to_location_maps_parent_array() -> None:
    lid, parent = uuid.uuid4(), uuid.uuid4()
    loc = _row_to_location((lid, W, "Eldoria", "Country", None, [parent], 812, None, _TS, _TS))
    assert loc.id == str(lid)
    assert loc.parent_location_ids == [str(parent)]
    assert loc.description == ""
    assert loc.founding_year == 812


def test_save_location_casts_parent_ids() -> None:
    parent = str(uuid.uuid4())
    loc = Location(id=str(uuid.uuid4()), world_id=str(W), name="Eldoria", parent_location_ids=[parent])
    conn = _FakeConn(_FakeResult([(_TS,)]))

    PgStore(conn).save_location(loc)

    q, params = conn.executed[0]
    assert "parent_location_ids = %s::uuid[]" in q
    assert params == ("Eldoria", "Country", "", [parent], None, None, loc.id, str(W))

    with pytest.raises(StaleRecord):
        PgStore(_FakeConn(_FakeResult([]))).save_location(loc)


def test_clear_location_refs_updates_parents_and_nationality() -> None:
    conn = _FakeConn(_FakeResult(rowcount=1), _FakeResult(rowcount=3))
    lid = str(uuid.uuid4())

    assert PgStore(conn).clear_location_refs(str(W), lid) == {"parent_locations": 1, "nationality": 3}
    assert conn.transactions == 1
    parents, people = conn.executed
    assert "array_remove(parent_location_ids, %s::uuid)" in parents[0]
    assert parents[1] == (lid, str(W), lid)
    assert people[0].startswith("UPDATE person SET nationality_id = NULL")
    assert people[1] == (str(W), lid)
