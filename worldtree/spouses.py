"""Spouse-link synchronisation.

A marriage is stored twice: each spouse holds a ``SpouseLink`` to the other
with the same marriage year, end year and reason. ``SpouseSync`` is the only
code that writes the other side of a link. It runs after the person being
edited has been saved; writes to the other side are sequential and
best-effort (a failure is logged and reported, never rolled back).

End years for marriages ended by death are filled per side: a link takes the
other spouse's death year, and the mirrored link falls back to the edited
person's own death year when the other spouse has none.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from .errors import PartialSyncFailure
from .models import SPOUSE, EndReason, Person, SpouseLink
from .refs import RefCheck, clean_ref, coerce_year, is_valid_ref
from .store import Store

log = logging.getLogger(__name__)

LinkAttrs = tuple[Optional[int], Optional[int], Optional[EndReason]]


def coerce_reason(value: Any) -> Optional[EndReason]:
    if value is None or value == "":
        return None
    if isinstance(value, EndReason):
        return value
    try:
        return EndReason(str(value).strip())
    except ValueError:
        return None


def clean_spouse_links(
    raw: Optional[Iterable[Any]],
    *,
    self_id: Optional[str] = None,
    ref_check: RefCheck = is_valid_ref,
) -> list[SpouseLink]:
    """Validate a submitted spouse list.

    Entries without a valid ``person`` id are dropped, as are links to
    ``self_id`` and repeated spouses (the first entry wins). Years are
    coerced to int or None.
    """

    out: list[SpouseLink] = []
    seen: set[str] = set()
    for entry in raw or []:
        if isinstance(entry, SpouseLink):
            entry = {
                "person": entry.person,
                "marriage_year": entry.marriage_year,
                "end_year": entry.end_year,
                "reason_for_end": entry.reason_for_end,
            }
        if not isinstance(entry, Mapping):
            continue
        ref = clean_ref(entry.get("person"), check=ref_check)
        if ref is None or ref == self_id or ref in seen:
            continue
        seen.add(ref)
        out.append(
            SpouseLink(
                person=ref,
                marriage_year=coerce_year(entry.get("marriage_year")),
                end_year=coerce_year(entry.get("end_year")),
                reason_for_end=coerce_reason(entry.get("reason_for_end")),
            )
        )
    return out


def back_link_attrs(person: Person, link: SpouseLink) -> LinkAttrs:
    """Attributes the spouse's mirrored link to ``person`` should carry."""
    end_year = link.end_year
    if link.reason_for_end == EndReason.DEATH and end_year is None:
        end_year = person.death_year
    return (link.marriage_year, end_year, link.reason_for_end)


def _links_agree(expected: LinkAttrs, actual: LinkAttrs) -> bool:
    if expected == actual:
        return True
    # Death end years are resolved independently on each side.
    return (
        expected[0] == actual[0]
        and expected[2] == actual[2] == EndReason.DEATH
    )


@dataclass
class SyncResult:
    updated: list[str] = field(default_factory=list)
    failures: list[PartialSyncFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class RepairReport:
    links_added: int = 0
    links_updated: int = 0
    links_removed: int = 0
    people_saved: int = 0
    failures: list[PartialSyncFailure] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "links_added": self.links_added,
            "links_updated": self.links_updated,
            "links_removed": self.links_removed,
            "people_saved": self.people_saved,
            "failures": [f.as_dict() for f in self.failures],
        }


class SpouseSync:
    def __init__(self, store: Store) -> None:
        self.store = store

    def resolve(
        self,
        world_id: str,
        person: Person,
        links: list[SpouseLink],
    ) -> tuple[list[SpouseLink], dict[str, Person]]:
        """Fill derived link attributes and drop links that leave the world.

        Returns the kept links and the spouse records loaded on the way, so
        that ``reconcile`` does not fetch them again.
        """

        kept: list[SpouseLink] = []
        loaded: dict[str, Person] = {}
        for link in links:
            spouse = self.store.get_person(world_id, link.person)
            if spouse is None:
                log.info(
                    "Dropping spouse link %s -> %s: not a person in world %s",
                    person.id,
                    link.person,
                    world_id,
                )
                continue
            loaded[spouse.id] = spouse

            if link.reason_for_end == EndReason.DEATH and link.end_year is None:
                link.end_year = spouse.death_year
            if link.reason_for_end is None and link.end_year is not None:
                link.reason_for_end = EndReason.UNKNOWN
            kept.append(link)
        return kept, loaded

    def reconcile(
        self,
        world_id: str,
        person: Person,
        previous: list[SpouseLink],
        *,
        loaded: Optional[dict[str, Person]] = None,
    ) -> SyncResult:
        """Mirror ``person.spouses`` onto the other side of every link.

        ``person`` must already be saved. ``previous`` is its spouse list
        before the change (empty on create); spouses that disappeared from
        the list lose their link back to ``person``.
        """

        result = SyncResult()
        loaded = loaded or {}

        for link in person.spouses:
            spouse = loaded.get(link.person) or self.store.get_person(world_id, link.person)
            if spouse is None:
                continue

            attrs = back_link_attrs(person, link)
            existing = spouse.spouse_link(person.id)
            if existing is None:
                spouse.spouses.append(SpouseLink(person.id, *attrs))
                action = "link"
            elif existing.attrs() != attrs:
                existing.marriage_year, existing.end_year, existing.reason_for_end = attrs
                action = "update"
            else:
                continue
            self._save_spouse(spouse, person.id, action, result)

        current_ids = {link.person for link in person.spouses}
        for old in previous:
            if old.person in current_ids:
                continue
            spouse = self.store.get_person(world_id, old.person)
            if spouse is None or spouse.spouse_link(person.id) is None:
                continue
            spouse.spouses = [s for s in spouse.spouses if s.person != person.id]
            self._save_spouse(spouse, person.id, "unlink", result)

        return result

    def detach(self, world_id: str, person_id: str) -> SyncResult:
        """Remove ``person_id`` from every spouse list in the world."""
        result = SyncResult()
        for spouse in self.store.find_people(world_id, [(SPOUSE, person_id)], exclude_id=person_id):
            spouse.spouses = [s for s in spouse.spouses if s.person != person_id]
            self._save_spouse(spouse, person_id, "unlink", result)
        return result

    def repair(self, world_id: str) -> RepairReport:
        """Restore link symmetry across a whole world.

        Removes links to people that no longer exist in the world, adds
        missing mirrored links and aligns mismatched pairs. For a mismatched
        pair, the side updated most recently wins.
        """

        report = RepairReport()
        people = {p.id: p for p in self.store.find_people(world_id)}
        dirty: set[str] = set()

        for p in people.values():
            kept: list[SpouseLink] = []
            seen: set[str] = set()
            for link in p.spouses:
                if link.person not in people or link.person == p.id or link.person in seen:
                    report.links_removed += 1
                    dirty.add(p.id)
                    continue
                seen.add(link.person)
                kept.append(link)
            p.spouses = kept

        done: set[frozenset[str]] = set()
        for pid in sorted(people):
            p = people[pid]
            for link in p.spouses:
                pair = frozenset((p.id, link.person))
                if pair in done:
                    continue
                done.add(pair)

                q = people[link.person]
                q_link = q.spouse_link(p.id)
                if q_link is None:
                    q.spouses.append(SpouseLink(p.id, *back_link_attrs(p, link)))
                    report.links_added += 1
                    dirty.add(q.id)
                    continue

                source, source_link, target, target_link = p, link, q, q_link
                if _newer(q, p):
                    source, source_link, target, target_link = q, q_link, p, link
                expected = back_link_attrs(source, source_link)
                if _links_agree(expected, target_link.attrs()):
                    continue
                target_link.marriage_year, target_link.end_year, target_link.reason_for_end = expected
                report.links_updated += 1
                dirty.add(target.id)

        result = SyncResult()
        for pid in sorted(dirty):
            if self._save_spouse(people[pid], pid, "repair", result):
                report.people_saved += 1
        report.failures = result.failures

        log.info(
            "Spouse repair for world %s: added=%d updated=%d removed=%d saved=%d failed=%d",
            world_id,
            report.links_added,
            report.links_updated,
            report.links_removed,
            report.people_saved,
            len(report.failures),
        )
        return report

    def _save_spouse(self, spouse: Person, person_id: str, action: str, result: SyncResult) -> bool:
        try:
            self.store.save_person(spouse)
        except Exception as e:
            log.warning(
                "Spouse link %s failed for %s <-> %s: %s",
                action,
                spouse.id,
                person_id,
                e,
            )
            result.failures.append(
                PartialSyncFailure(
                    person_id=person_id,
                    spouse_id=spouse.id,
                    action=action,
                    error=str(e),
                )
            )
            return False
        result.updated.append(spouse.id)
        return True


def _newer(a: Person, b: Person) -> bool:
    if a.updated_at is None or b.updated_at is None:
        return False
    return a.updated_at > b.updated_at
