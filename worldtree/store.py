"""Storage contract and the process-local store.

Everything above this layer talks to a ``Store``. Person queries are always
scoped by world id; ids are checked with the injected ``ref_check`` before
any lookup so that a malformed id simply finds nothing.
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol, Sequence

from .errors import Conflict, StaleRecord
from .models import PARENT_SLOTS, SPOUSE, Location, Person, User, World
from .refs import RefCheck, is_valid_ref

# Fields a person query may filter on.
QUERY_FIELDS = frozenset(PARENT_SLOTS) | {SPOUSE}


class Store(Protocol):
    ref_check: RefCheck

    # People
    def get_person(self, world_id: str, person_id: str) -> Optional[Person]: ...

    def find_people(
        self,
        world_id: str,
        any_of: Optional[Sequence[tuple[str, str]]] = None,
        *,
        exclude_id: Optional[str] = None,
    ) -> list[Person]: ...

    def insert_person(self, person: Person) -> Person: ...

    def save_person(self, person: Person) -> Person: ...

    def delete_person(self, world_id: str, person_id: str) -> bool: ...

    def clear_person_refs(self, world_id: str, field: str, person_id: str) -> int: ...

    # Worlds
    def get_world(self, world_id: str) -> Optional[World]: ...

    def list_worlds(self, owner_id: str) -> list[World]: ...

    def insert_world(self, world: World) -> World: ...

    def save_world(self, world: World) -> World: ...

    def delete_world(self, world_id: str) -> bool: ...

    # Locations
    def get_location(self, world_id: str, location_id: str) -> Optional[Location]: ...

    def list_locations(self, world_id: str) -> list[Location]: ...

    def insert_location(self, location: Location) -> Location: ...

    def save_location(self, location: Location) -> Location: ...

    def delete_location(self, world_id: str, location_id: str) -> bool: ...

    def clear_location_refs(self, world_id: str, location_id: str) -> dict[str, int]: ...

    # Users
    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_login(self, login: str) -> Optional[User]: ...

    def insert_user(self, user: User) -> User: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_fields(any_of: Iterable[tuple[str, str]]) -> None:
    for field, _value in any_of:
        if field not in QUERY_FIELDS:
            raise ValueError(f"unsupported person query field: {field}")


def _index_keys(person: Person) -> set[tuple[str, str, str]]:
    keys: set[tuple[str, str, str]] = set()
    for slot in PARENT_SLOTS:
        value = person.slot(slot)
        if value:
            keys.add((person.world_id, slot, value))
    for link in person.spouses:
        keys.add((person.world_id, SPOUSE, link.person))
    return keys


class MemoryStore:
    """Arena of records keyed by id, with per-slot indexes.

    Returned records are copies; the only way to change a stored person is
    ``save_person``. Selected with ``WORLDTREE_STORE=memory`` and used by
    the test suite.
    """

    def __init__(self, *, ref_check: RefCheck = is_valid_ref) -> None:
        self.ref_check = ref_check
        self._lock = threading.RLock()
        self._people: dict[str, Person] = {}
        self._index: dict[tuple[str, str, str], set[str]] = {}
        self._worlds: dict[str, World] = {}
        self._locations: dict[str, Location] = {}
        self._users: dict[str, User] = {}

    # -- people -----------------------------------------------------------

    def _reindex(self, old: Optional[Person], new: Optional[Person]) -> None:
        old_keys = _index_keys(old) if old is not None else set()
        new_keys = _index_keys(new) if new is not None else set()
        pid = (old or new).id  # type: ignore[union-attr]
        for key in old_keys - new_keys:
            ids = self._index.get(key)
            if ids is not None:
                ids.discard(pid)
                if not ids:
                    del self._index[key]
        for key in new_keys - old_keys:
            self._index.setdefault(key, set()).add(pid)

    def get_person(self, world_id: str, person_id: str) -> Optional[Person]:
        if not self.ref_check(person_id):
            return None
        with self._lock:
            p = self._people.get(str(person_id))
            if p is None or p.world_id != world_id:
                return None
            return copy.deepcopy(p)

    def find_people(
        self,
        world_id: str,
        any_of: Optional[Sequence[tuple[str, str]]] = None,
        *,
        exclude_id: Optional[str] = None,
    ) -> list[Person]:
        with self._lock:
            if any_of is None:
                ids = {pid for pid, p in self._people.items() if p.world_id == world_id}
            else:
                _check_fields(any_of)
                ids = set()
                for field, value in any_of:
                    if not self.ref_check(value):
                        continue
                    ids |= self._index.get((world_id, field, str(value)), set())
            ids.discard(exclude_id)  # type: ignore[arg-type]
            return [copy.deepcopy(self._people[pid]) for pid in sorted(ids)]

    def insert_person(self, person: Person) -> Person:
        with self._lock:
            if person.id in self._people:
                raise ValueError(f"duplicate person id: {person.id}")
            stored = copy.deepcopy(person)
            stored.version = 1
            stored.created_at = stored.updated_at = _now()
            self._people[stored.id] = stored
            self._reindex(None, stored)
            return copy.deepcopy(stored)

    def save_person(self, person: Person) -> Person:
        with self._lock:
            current = self._people.get(person.id)
            if current is None or current.world_id != person.world_id:
                raise StaleRecord(f"person {person.id} no longer exists")
            if current.version != person.version:
                raise StaleRecord(f"person {person.id} was modified concurrently")
            stored = copy.deepcopy(person)
            stored.version = current.version + 1
            stored.created_at = current.created_at
            stored.updated_at = _now()
            self._people[stored.id] = stored
            self._reindex(current, stored)
            return copy.deepcopy(stored)

    def delete_person(self, world_id: str, person_id: str) -> bool:
        with self._lock:
            current = self._people.get(person_id)
            if current is None or current.world_id != world_id:
                return False
            self._reindex(current, None)
            del self._people[person_id]
            return True

    def clear_person_refs(self, world_id: str, field: str, person_id: str) -> int:
        if field not in PARENT_SLOTS:
            raise ValueError(f"not a parent slot: {field}")
        with self._lock:
            ids = sorted(self._index.get((world_id, field, person_id), set()))
            for pid in ids:
                current = self._people[pid]
                updated = copy.deepcopy(current)
                updated.set_slot(field, None)
                updated.version = current.version + 1
                updated.updated_at = _now()
                self._people[pid] = updated
                self._reindex(current, updated)
            return len(ids)

    # -- worlds -----------------------------------------------------------

    def get_world(self, world_id: str) -> Optional[World]:
        if not self.ref_check(world_id):
            return None
        with self._lock:
            w = self._worlds.get(str(world_id))
            return copy.deepcopy(w) if w is not None else None

    def list_worlds(self, owner_id: str) -> list[World]:
        with self._lock:
            worlds = [copy.deepcopy(w) for w in self._worlds.values() if w.owner_id == owner_id]
        # Newest first.
        return sorted(worlds, key=lambda w: w.created_at or _now(), reverse=True)

    def insert_world(self, world: World) -> World:
        with self._lock:
            stored = copy.deepcopy(world)
            stored.created_at = stored.updated_at = _now()
            self._worlds[stored.id] = stored
            return copy.deepcopy(stored)

    def save_world(self, world: World) -> World:
        with self._lock:
            current = self._worlds.get(world.id)
            if current is None:
                raise StaleRecord(f"world {world.id} no longer exists")
            stored = copy.deepcopy(world)
            stored.created_at = current.created_at
            stored.updated_at = _now()
            self._worlds[stored.id] = stored
            return copy.deepcopy(stored)

    def delete_world(self, world_id: str) -> bool:
        with self._lock:
            if world_id not in self._worlds:
                return False
            for pid in [pid for pid, p in self._people.items() if p.world_id == world_id]:
                self._reindex(self._people[pid], None)
                del self._people[pid]
            for lid in [lid for lid, loc in self._locations.items() if loc.world_id == world_id]:
                del self._locations[lid]
            del self._worlds[world_id]
            return True

    # -- locations --------------------------------------------------------

    def get_location(self, world_id: str, location_id: str) -> Optional[Location]:
        if not self.ref_check(location_id):
            return None
        with self._lock:
            loc = self._locations.get(str(location_id))
            if loc is None or loc.world_id != world_id:
                return None
            return copy.deepcopy(loc)

    def list_locations(self, world_id: str) -> list[Location]:
        with self._lock:
            return [
                copy.deepcopy(loc)
                for _lid, loc in sorted(self._locations.items())
                if loc.world_id == world_id
            ]

    def insert_location(self, location: Location) -> Location:
        with self._lock:
            if location.id in self._locations:
                raise ValueError(f"duplicate location id: {location.id}")
            stored = copy.deepcopy(location)
            stored.created_at = stored.updated_at = _now()
            self._locations[stored.id] = stored
            return copy.deepcopy(stored)

    def save_location(self, location: Location) -> Location:
        with self._lock:
            current = self._locations.get(location.id)
            if current is None or current.world_id != location.world_id:
                raise StaleRecord(f"location {location.id} no longer exists")
            stored = copy.deepcopy(location)
            stored.created_at = current.created_at
            stored.updated_at = _now()
            self._locations[stored.id] = stored
            return copy.deepcopy(stored)

    def delete_location(self, world_id: str, location_id: str) -> bool:
        with self._lock:
            current = self._locations.get(location_id)
            if current is None or current.world_id != world_id:
                return False
            del self._locations[location_id]
            return True

    def clear_location_refs(self, world_id: str, location_id: str) -> dict[str, int]:
        """Drop ``location_id`` from parent lists and nationalities in the world."""
        cleared = {"parent_locations": 0, "nationality": 0}
        with self._lock:
            for loc in self._locations.values():
                if loc.world_id == world_id and location_id in loc.parent_location_ids:
                    loc.parent_location_ids = [i for i in loc.parent_location_ids if i != location_id]
                    loc.updated_at = _now()
                    cleared["parent_locations"] += 1
            for pid, p in self._people.items():
                if p.world_id == world_id and p.nationality_id == location_id:
                    updated = copy.deepcopy(p)
                    updated.nationality_id = None
                    updated.version = p.version + 1
                    updated.updated_at = _now()
                    self._people[pid] = updated
                    cleared["nationality"] += 1
        return cleared

    # -- users ------------------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            u = self._users.get(str(user_id))
            return copy.deepcopy(u) if u is not None else None

    def get_user_by_login(self, login: str) -> Optional[User]:
        needle = login.strip().lower()
        with self._lock:
            for u in self._users.values():
                if u.username.lower() == needle or u.email.lower() == needle:
                    return copy.deepcopy(u)
        return None

    def insert_user(self, user: User) -> User:
        with self._lock:
            if self.get_user_by_login(user.username) or self.get_user_by_login(user.email):
                raise Conflict("username or email already registered")
            stored = copy.deepcopy(user)
            stored.created_at = _now()
            self._users[stored.id] = stored
            return copy.deepcopy(stored)
