"""Grouping of conflicting meetings into disjoint conflict sets.

Meetings are linked when they overlap in time and share an attendee; a
conflict set is a connected component of that relation. Each meeting gets
a stable integer index (first-seen order) and components are tracked with
union-find over those indices.
"""

from __future__ import annotations

from collections.abc import Iterable

from meeting_resolver.detection import to_conflicting_meeting
from meeting_resolver.logging import get_logger
from meeting_resolver.models import ConflictingMeeting, ConflictPair, Event
from meeting_resolver.utils import intervals_overlap

log = get_logger("meeting_resolver.grouping")


class _DisjointSet:
    """Union-find over ``0..size-1``. The lower index becomes the root."""

    def __init__(self, size: int) -> None:
        self._parent = list(range(size))

    def find(self, item: int) -> int:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if root_a < root_b:
            self._parent[root_b] = root_a
        else:
            self._parent[root_a] = root_b

    def components(self) -> list[list[int]]:
        """Components ordered by their smallest index, members ascending."""
        groups: dict[int, list[int]] = {}
        for item in range(len(self._parent)):
            groups.setdefault(self.find(item), []).append(item)
        return [groups[root] for root in sorted(groups)]


def _people(event: Event) -> set[str]:
    people = set(event.participants)
    if event.owner:
        people.add(event.owner)
    return people


def _linked(a: ConflictingMeeting, b: ConflictingMeeting) -> bool:
    if not intervals_overlap(a.start_time, a.end_time, b.start_time, b.end_time):
        return False
    return bool(set(a.attendee_emails) & set(b.attendee_emails))


def group_pairs(pairs: Iterable[ConflictPair]) -> list[list[ConflictingMeeting]]:
    """Merge detected overlap pairs into disjoint conflict sets.

    Pairs whose events share nobody are not linked; their events still
    appear, as singleton sets.
    """
    events: list[Event] = []
    index: dict[str | int, int] = {}
    links: list[tuple[int, int]] = []

    def _index_of(event: Event) -> int:
        # Events without an id are told apart by identity.
        key = event.event_id or id(event)
        if key not in index:
            index[key] = len(events)
            events.append(event)
        return index[key]

    for pair in pairs:
        first = _index_of(pair.first)
        second = _index_of(pair.second)
        if _people(pair.first) & _people(pair.second):
            links.append((first, second))

    forest = _DisjointSet(len(events))
    for a, b in links:
        forest.union(a, b)

    sets = [[to_conflicting_meeting(events[i]) for i in group] for group in forest.components()]
    log.debug("conflict_sets_grouped", source="pairs", meetings=len(events), sets=len(sets))
    return sets


def group_meetings(meetings: Iterable[ConflictingMeeting]) -> list[list[ConflictingMeeting]]:
    """Group an externally supplied list of conflicting meetings.

    Duplicate ids are collapsed to their first occurrence. Meetings linked
    to nothing come back as singleton sets.
    """
    unique: list[ConflictingMeeting] = []
    seen: set[str] = set()
    for meeting in meetings:
        if meeting.id in seen:
            continue
        seen.add(meeting.id)
        unique.append(meeting)

    forest = _DisjointSet(len(unique))
    for i, meeting in enumerate(unique):
        for j in range(i + 1, len(unique)):
            if _linked(meeting, unique[j]):
                forest.union(i, j)

    sets = [[unique[i] for i in group] for group in forest.components()]
    log.debug("conflict_sets_grouped", source="meetings", meetings=len(unique), sets=len(sets))
    return sets
