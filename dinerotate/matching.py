"""Step B: seat every non-hosting party at a host for each course."""

import logging
from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

import numpy as np

from dinerotate.models import (
    COURSES,
    HOST_ENVELOPE_NOTES,
    Assignment,
    Course,
    CoursePairing,
    Envelope,
    MatchingResult,
    MatchingStats,
    MatchingWarning,
    Party,
    pair_key,
)

logger = logging.getLogger(__name__)

RepeatMeetingPolicy = Literal["avoid", "forbid"]


@dataclass
class HostSlot:
    """A host's table for one course while it is being filled."""

    party_id: str
    address: str
    address_notes: str | None
    max_guests: int
    guests: list[str] = field(default_factory=list)
    seated: int = 0

    @property
    def fill_ratio(self) -> float:
        return self.seated / self.max_guests if self.max_guests > 0 else 1.0


def blocked_set(blocked_pairs: Iterable[Iterable[str]]) -> set[frozenset[str]]:
    """Normalize blocked pairs to a set of unordered pairs."""
    result: set[frozenset[str]] = set()
    for pair in blocked_pairs:
        members = frozenset(pair)
        if len(members) == 2:
            result.add(members)
    return result


def table_meetings(pairings: Iterable[CoursePairing]) -> Counter[tuple[str, str]]:
    """Count how often each pair of parties shares a table in the given pairings."""
    tables: dict[tuple[Course, str], list[str]] = defaultdict(list)
    for pairing in pairings:
        tables[(pairing.course, pairing.host_id)].append(pairing.guest_id)

    meetings: Counter[tuple[str, str]] = Counter()
    for (_course, host_id), guests in tables.items():
        for i, guest_id in enumerate(guests):
            meetings[pair_key(guest_id, host_id)] += 1
            for other_id in guests[:i]:
                meetings[pair_key(guest_id, other_id)] += 1
    return meetings


def match_guests_to_hosts(
    assignments: Iterable[Assignment],
    parties: Iterable[Party],
    blocked_pairs: Iterable[Iterable[str]] = (),
    frozen_courses: Iterable[Course] = (),
    *,
    plan_id: str | None = None,
    rng: np.random.Generator | None = None,
    frozen_pairings: Iterable[CoursePairing] = (),
    repeat_meetings: RepeatMeetingPolicy = "avoid",
) -> MatchingResult:
    """
    Greedily seat guests at hosts, one course at a time.

    Guests are visited in random order and each goes to the least-filled
    host that still has room, is not blocked against the guest or anyone
    already at the table, and does not repeat a meeting from an earlier
    course. When every host with room would repeat a meeting, the
    ``repeat_meetings`` policy decides: "avoid" seats the guest at the
    table with the fewest repeats (reported afterwards as unique_meeting
    warnings), "forbid" leaves the guest unplaced.

    Guests with no feasible host are reported as capacity warnings. This
    is a single-pass heuristic: a different guest order can seat guests
    that this one could not.
    """
    if rng is None:
        rng = np.random.default_rng()

    assignments = list(assignments)
    active = {p.id: p for p in parties if p.active}
    blocked = blocked_set(blocked_pairs)
    frozen = set(frozen_courses)

    meetings = table_meetings(p for p in frozen_pairings if p.course in frozen)

    def is_blocked(a: str, b: str) -> bool:
        return frozenset((a, b)) in blocked

    def repeated_meetings(guest_id: str, slot: HostSlot) -> int:
        """Number of people at this table the guest has already met tonight."""
        repeats = 1 if meetings[pair_key(guest_id, slot.party_id)] >= 1 else 0
        return repeats + sum(1 for other in slot.guests if meetings[pair_key(guest_id, other)] >= 1)

    warnings: list[MatchingWarning] = []
    pairings: list[CoursePairing] = []
    envelopes: list[Envelope] = []

    for course in COURSES:
        if course in frozen:
            warnings.append(
                MatchingWarning(kind="frozen", message=f"Course {course} is frozen and was not changed")
            )
            continue

        slots: list[HostSlot] = []
        for assignment in assignments:
            if assignment.course != course or not assignment.is_host:
                continue
            host = active.get(assignment.party_id)
            if host is None:
                logger.warning(
                    "Skipping %s host %s: party is cancelled or unknown",
                    course,
                    assignment.party_id,
                )
                continue
            slots.append(
                HostSlot(
                    party_id=host.id,
                    address=host.address,
                    address_notes=host.address_notes,
                    max_guests=assignment.max_guests,
                )
            )

        hosting = {slot.party_id for slot in slots}
        guest_ids = [party_id for party_id in active if party_id not in hosting]
        order = rng.permutation(len(guest_ids))

        for idx in order:
            guest = active[guest_ids[idx]]

            best: HostSlot | None = None
            best_score = float("-inf")
            fallback: HostSlot | None = None
            fallback_key = (float("inf"), float("inf"))
            for slot in slots:
                if slot.seated + guest.headcount > slot.max_guests:
                    continue
                if slot.party_id == guest.id:
                    continue
                if is_blocked(guest.id, slot.party_id):
                    continue
                if any(is_blocked(guest.id, other) for other in slot.guests):
                    continue
                repeats = repeated_meetings(guest.id, slot)
                if repeats:
                    key = (float(repeats), slot.fill_ratio)
                    if key < fallback_key:
                        fallback_key = key
                        fallback = slot
                    continue

                # Prefer the emptiest table
                score = -slot.fill_ratio
                if score > best_score:
                    best_score = score
                    best = slot

            if best is None and repeat_meetings == "avoid":
                best = fallback
                if best is not None:
                    logger.debug(
                        "Seating %s at %s for %s repeats %d meeting(s)",
                        guest.id,
                        best.party_id,
                        course,
                        int(fallback_key[0]),
                    )

            if best is None:
                warnings.append(
                    MatchingWarning(
                        kind="capacity",
                        message=f"Could not seat {guest.display_name} for {course}",
                        party_ids=[guest.id],
                    )
                )
                continue

            meetings[pair_key(guest.id, best.party_id)] += 1
            for other in best.guests:
                meetings[pair_key(guest.id, other)] += 1
            best.guests.append(guest.id)
            best.seated += guest.headcount

        for slot in slots:
            for guest_id in slot.guests:
                pairings.append(
                    CoursePairing(course=course, host_id=slot.party_id, guest_id=guest_id, plan_id=plan_id)
                )
                envelopes.append(
                    Envelope(
                        party_id=guest_id,
                        course=course,
                        host_id=slot.party_id,
                        destination_address=slot.address,
                        destination_notes=slot.address_notes,
                        plan_id=plan_id,
                    )
                )
            envelopes.append(
                Envelope(
                    party_id=slot.party_id,
                    course=course,
                    host_id=slot.party_id,
                    destination_address=slot.address,
                    destination_notes=HOST_ENVELOPE_NOTES,
                    plan_id=plan_id,
                )
            )

    for (a, b), count in sorted(meetings.items()):
        if count > 1:
            name_a = active[a].display_name if a in active else a
            name_b = active[b].display_name if b in active else b
            warnings.append(
                MatchingWarning(
                    kind="unique_meeting",
                    message=f"{name_a} and {name_b} meet {count} times",
                    party_ids=[a, b],
                )
            )

    matched = {p.host_id for p in pairings} | {p.guest_id for p in pairings}
    total_seats = sum(a.max_guests for a in assignments if a.is_host)
    seated = sum(active[p.guest_id].headcount for p in pairings)
    utilization = round(seated / total_seats, 2) if total_seats > 0 else 0.0

    logger.debug(
        "Matched %d pairings, %d warnings, utilization %.2f",
        len(pairings),
        len(warnings),
        utilization,
    )

    return MatchingResult(
        pairings=pairings,
        envelopes=envelopes,
        warnings=warnings,
        stats=MatchingStats(matched_count=len(matched), capacity_utilization=utilization),
    )
