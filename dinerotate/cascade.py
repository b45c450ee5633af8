"""
Cascade repairs: targeted changes to a published plan.

Each mutation touches only the assignments, pairings and envelopes it has
to. Nothing here re-runs course assignment or guest matching; guests who
lose their table are reported back so the organizer (or a follow-up
rematch) can seat them again.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from dinerotate.errors import PlanConflictError, PlanNotFoundError
from dinerotate.models import (
    COURSES,
    HOST_ENVELOPE_NOTES,
    Assignment,
    Course,
    CoursePairing,
    Envelope,
    EventConfig,
    Party,
)
from dinerotate.plan import MatchPlan
from dinerotate.schedule import schedule_envelopes
from dinerotate.store import PlanStore
from dinerotate.travel import TravelProvider

logger = logging.getLogger(__name__)

PROMOTED_MAX_GUESTS_COUPLE = 8
PROMOTED_MAX_GUESTS_SINGLE = 6


@dataclass(frozen=True)
class GuestDropout:
    party_id: str
    kind = "guest_dropout"


@dataclass(frozen=True)
class HostDropout:
    party_id: str
    kind = "host_dropout"


@dataclass(frozen=True)
class ResignHost:
    party_id: str
    course: Course | None = None  # None = every course the party hosts
    kind = "resign_host"


@dataclass(frozen=True)
class AddressChange:
    party_id: str
    new_address: str
    new_address_notes: str | None = None
    kind = "address_change"


@dataclass(frozen=True)
class Reassign:
    party_id: str
    course: Course
    new_host_id: str
    kind = "reassign"


@dataclass(frozen=True)
class TransferHost:
    party_id: str
    to_party_id: str
    courses: tuple[Course, ...]
    kind = "transfer_host"


@dataclass(frozen=True)
class PromoteHost:
    party_id: str
    course: Course
    guest_ids: tuple[str, ...] = ()
    max_guests: int | None = None
    kind = "promote_host"


@dataclass(frozen=True)
class Split:
    party_id: str
    new_party_id: str
    kind = "split"


Mutation = (
    GuestDropout
    | HostDropout
    | ResignHost
    | AddressChange
    | Reassign
    | TransferHost
    | PromoteHost
    | Split
)

MUTATION_KINDS: dict[str, type] = {
    cls.kind: cls
    for cls in (GuestDropout, HostDropout, ResignHost, AddressChange, Reassign, TransferHost, PromoteHost, Split)
}


@dataclass
class CascadeResult:
    """What a repair changed, and who now needs a seat."""

    kind: str
    success: bool = True
    envelopes_cancelled: int = 0
    envelopes_created: int = 0
    envelopes_updated: int = 0
    pairings_removed: int = 0
    pairings_created: int = 0
    assignments_removed: int = 0
    assignments_created: int = 0
    unplaced_guest_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def needs_reseating(self) -> bool:
        return bool(self.unplaced_guest_ids)


class CascadeRejected(Exception):
    """Raised inside a handler to abort the transaction with validation errors."""

    def __init__(self, *errors: str):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


@dataclass(frozen=True)
class Placement:
    guest_id: str
    host_id: str
    course: Course


@dataclass
class CascadeContext:
    """Collaborator data a handler may need besides the plan itself."""

    parties: dict[str, Party]
    event: EventConfig | None = None
    travel: TravelProvider | None = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def build_mutation(kind: str, party_id: str, details: Mapping[str, Any] | None = None) -> Mutation:
    """
    Build a typed mutation from a kind name and a details mapping.

    Raises CascadeRejected for unknown kinds or missing details.
    """
    details = dict(details or {})
    if not party_id:
        raise CascadeRejected("party_id is required")
    if kind not in MUTATION_KINDS:
        raise CascadeRejected(f"Unknown cascade type: {kind}")

    def require(*names: str) -> None:
        missing = [n for n in names if not details.get(n)]
        if missing:
            raise CascadeRejected(
                f"details.{' and details.'.join(missing)} required for {kind}"
            )

    if kind == "guest_dropout":
        return GuestDropout(party_id)
    if kind == "host_dropout":
        return HostDropout(party_id)
    if kind == "resign_host":
        return ResignHost(party_id, course=details.get("course"))
    if kind == "address_change":
        require("new_address")
        return AddressChange(party_id, details["new_address"], details.get("new_address_notes"))
    if kind == "reassign":
        require("course", "new_host_id")
        return Reassign(party_id, details["course"], details["new_host_id"])
    if kind == "transfer_host":
        require("to_party_id", "courses")
        return TransferHost(party_id, details["to_party_id"], tuple(details["courses"]))
    if kind == "promote_host":
        require("course")
        return PromoteHost(
            party_id,
            details["course"],
            guest_ids=tuple(details.get("guest_ids") or ()),
            max_guests=details.get("max_guests"),
        )
    require("new_party_id")
    return Split(party_id, details["new_party_id"])


def apply_cascade(
    store: PlanStore,
    plan_id: str,
    mutation: Mutation,
    parties: Iterable[Party] = (),
    event: EventConfig | None = None,
    travel: TravelProvider | None = None,
    expected_revision: int | None = None,
    now: datetime | None = None,
) -> CascadeResult:
    """
    Apply one mutation to a stored plan, all or nothing.

    Validation problems (missing details, unknown hosts, frozen courses)
    come back as errors on an unsuccessful result and leave the plan
    unchanged. A successful result may still list unplaced guests; that
    is follow-up work, not a failure.
    """
    result = CascadeResult(kind=getattr(mutation, "kind", type(mutation).__name__))
    handler = _HANDLERS.get(type(mutation))
    if handler is None:
        result.success = False
        result.errors.append(f"Unknown cascade type: {result.kind}")
        return result

    context = CascadeContext(
        parties={p.id: p for p in parties},
        event=event,
        travel=travel,
        now=now or datetime.now(timezone.utc),
    )
    try:
        with store.transaction(plan_id, expected_revision) as plan:
            handler(plan, mutation, context, result)
    except CascadeRejected as e:
        return CascadeResult(kind=result.kind, success=False, errors=e.errors)
    except (PlanNotFoundError, PlanConflictError) as e:
        return CascadeResult(kind=result.kind, success=False, errors=[str(e)])

    logger.info(
        "%s for %s on plan %s: -%d/+%d pairings, %d envelopes cancelled, %d unplaced",
        result.kind,
        mutation.party_id,
        plan_id,
        result.pairings_removed,
        result.pairings_created,
        result.envelopes_cancelled,
        len(result.unplaced_guest_ids),
    )
    return result


def apply_cascade_kind(
    store: PlanStore,
    plan_id: str,
    kind: str,
    party_id: str,
    details: Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> CascadeResult:
    """String-kind form of apply_cascade, for callers holding untyped request data."""
    try:
        mutation = build_mutation(kind, party_id, details)
    except CascadeRejected as e:
        return CascadeResult(kind=kind, success=False, errors=e.errors)
    return apply_cascade(store, plan_id, mutation, **kwargs)


def place_guests(
    store: PlanStore,
    plan_id: str,
    placements: Iterable[Placement],
    parties: Iterable[Party],
    event: EventConfig | None = None,
    travel: TravelProvider | None = None,
    expected_revision: int | None = None,
) -> CascadeResult:
    """
    Seat guests at hosts and give them envelopes, as one change.

    Each placement must name a host of that course, an active guest who
    has no seat for that course yet, and a pair that is not blocked.
    """
    placements = list(placements)
    result = CascadeResult(kind="place")
    context = CascadeContext(parties={p.id: p for p in parties}, event=event, travel=travel)
    try:
        with store.transaction(plan_id, expected_revision) as plan:
            for placement in placements:
                _check_course(placement.course)
                _check_not_frozen(plan, placement.course)
                guest = _require_party(context, placement.guest_id)
                if guest.cancelled:
                    raise CascadeRejected(f"Guest {guest.id} is cancelled")
                if _guest_pairing(plan, guest.id, placement.course) is not None:
                    raise CascadeRejected(f"Guest {guest.id} already has a seat for {placement.course}")
                _seat_guest(plan, context, result, guest.id, placement.host_id, placement.course)
    except CascadeRejected as e:
        return CascadeResult(kind="place", success=False, errors=e.errors)
    except (PlanNotFoundError, PlanConflictError) as e:
        return CascadeResult(kind="place", success=False, errors=[str(e)])
    return result


# --- Handlers ---------------------------------------------------------------


def _handle_guest_dropout(plan: MatchPlan, mutation: GuestDropout, context: CascadeContext, result: CascadeResult):
    party_id = mutation.party_id
    result.envelopes_cancelled += _cancel_envelopes(plan, lambda e: e.party_id == party_id)
    result.pairings_removed += _remove_pairings(plan, lambda p: p.guest_id == party_id)


def _handle_host_dropout(plan: MatchPlan, mutation: HostDropout, context: CascadeContext, result: CascadeResult):
    party_id = mutation.party_id
    unplaced = _unique(p.guest_id for p in plan.pairings if p.host_id == party_id and p.guest_id != party_id)

    result.envelopes_cancelled += _cancel_envelopes(
        plan, lambda e: e.host_id == party_id or e.party_id == party_id
    )
    result.pairings_removed += _remove_pairings(
        plan, lambda p: p.host_id == party_id or p.guest_id == party_id
    )
    result.assignments_removed += _remove_assignments(plan, lambda a: a.party_id == party_id)
    result.unplaced_guest_ids = unplaced


def _handle_resign_host(plan: MatchPlan, mutation: ResignHost, context: CascadeContext, result: CascadeResult):
    party_id = mutation.party_id
    course = mutation.course
    if course is not None:
        _check_course(course)
        _check_not_frozen(plan, course)
        if not plan.hosts_course(party_id, course):
            raise CascadeRejected(f"{party_id} does not host {course}")

    def in_scope(record_course: Course) -> bool:
        return course is None or record_course == course

    unplaced = _unique(
        p.guest_id
        for p in plan.pairings
        if p.host_id == party_id and p.guest_id != party_id and in_scope(p.course)
    )

    result.envelopes_cancelled += _cancel_envelopes(
        plan, lambda e: e.host_id == party_id and in_scope(e.course)
    )
    result.pairings_removed += _remove_pairings(
        plan, lambda p: p.host_id == party_id and in_scope(p.course)
    )
    result.assignments_removed += _remove_assignments(
        plan, lambda a: a.party_id == party_id and a.is_host and in_scope(a.course)
    )
    result.unplaced_guest_ids = unplaced


def _handle_address_change(
    plan: MatchPlan, mutation: AddressChange, context: CascadeContext, result: CascadeResult
):
    if not mutation.new_address:
        raise CascadeRejected("new_address is required for address_change")

    duplicates = sorted(
        p.id
        for p in context.parties.values()
        if p.active and p.id != mutation.party_id and p.address == mutation.new_address
    )
    if duplicates:
        result.warnings.append(
            f"Address {mutation.new_address} is already used by {len(duplicates)} other "
            f"part{'y' if len(duplicates) == 1 else 'ies'}: {', '.join(duplicates)}"
        )

    revealed = 0
    for idx, envelope in enumerate(plan.envelopes):
        if envelope.host_id == mutation.party_id and not envelope.cancelled:
            # Street opens before number, so this covers both
            if envelope.times is not None and envelope.times.street_at <= context.now:
                revealed += 1
            updated = replace(
                envelope,
                destination_address=mutation.new_address,
                destination_notes=(
                    HOST_ENVELOPE_NOTES if envelope.is_host_envelope else mutation.new_address_notes
                ),
            )
            plan.envelopes[idx] = _schedule(context, [updated])[0]
            result.envelopes_updated += 1

    if revealed:
        result.warnings.append(
            f"{revealed} envelope(s) already revealed the old address; guests may have seen it"
        )


def _handle_reassign(plan: MatchPlan, mutation: Reassign, context: CascadeContext, result: CascadeResult):
    party_id, course, new_host_id = mutation.party_id, mutation.course, mutation.new_host_id
    _check_course(course)
    _check_not_frozen(plan, course)
    _check_can_host(plan, party_id, new_host_id, course)

    result.pairings_removed += _remove_pairings(
        plan, lambda p: p.guest_id == party_id and p.course == course
    )
    # Deleted, not cancelled: the guest gets exactly one envelope per course
    before = len(plan.envelopes)
    plan.envelopes = [e for e in plan.envelopes if not (e.party_id == party_id and e.course == course)]
    result.envelopes_cancelled += before - len(plan.envelopes)

    plan.pairings.append(CoursePairing(course=course, host_id=new_host_id, guest_id=party_id, plan_id=plan.id))
    result.pairings_created += 1
    _warn_over_capacity(plan, context, result, new_host_id, course)


def _handle_transfer_host(
    plan: MatchPlan, mutation: TransferHost, context: CascadeContext, result: CascadeResult
):
    from_id, to_id = mutation.party_id, mutation.to_party_id
    courses = tuple(mutation.courses)
    if not courses:
        raise CascadeRejected("courses are required for transfer_host")
    if from_id == to_id:
        raise CascadeRejected("Cannot transfer hosting to the same party")
    for course in courses:
        _check_course(course)
        _check_not_frozen(plan, course)
    new_host = _require_party(context, to_id)
    if new_host.cancelled:
        raise CascadeRejected(f"{to_id} is cancelled")

    moved = [a for a in plan.assignments if a.party_id == from_id and a.is_host and a.course in courses]
    if not moved:
        raise CascadeRejected(f"{from_id} hosts none of: {', '.join(courses)}")
    for assignment in moved:
        if plan.hosts_course(to_id, assignment.course):
            raise CascadeRejected(f"{to_id} already hosts {assignment.course}")
        for guest_id in plan.guests_of(from_id, assignment.course):
            if guest_id != to_id and plan.is_blocked(to_id, guest_id):
                raise CascadeRejected(f"{to_id} is blocked from meeting {guest_id}")

    result.assignments_removed += _remove_assignments(plan, lambda a: a in moved)
    for assignment in moved:
        plan.assignments.append(replace(assignment, party_id=to_id))
        result.assignments_created += 1
    transferred = {a.course for a in moved}

    for course in transferred:
        # The new host cannot stay a guest anywhere for a course it now hosts
        result.pairings_removed += _remove_pairings(plan, lambda p: p.guest_id == to_id and p.course == course)
        result.envelopes_cancelled += _cancel_envelopes(
            plan, lambda e: e.party_id == to_id and e.course == course
        )
        # Nor can the old host stay home for it
        result.envelopes_cancelled += _cancel_envelopes(
            plan, lambda e: e.party_id == from_id and e.host_id == from_id and e.course == course
        )

    repointed_guests: set[tuple[str, Course]] = set()
    for idx, pairing in enumerate(plan.pairings):
        if pairing.host_id == from_id and pairing.course in transferred:
            plan.pairings[idx] = replace(pairing, host_id=to_id)
            repointed_guests.add((pairing.guest_id, pairing.course))
            result.pairings_created += 1

    for idx, envelope in enumerate(plan.envelopes):
        if envelope.cancelled:
            continue
        if (envelope.party_id, envelope.course) in repointed_guests and envelope.host_id == from_id:
            updated = replace(
                envelope,
                host_id=to_id,
                destination_address=new_host.address,
                destination_notes=new_host.address_notes,
            )
            plan.envelopes[idx] = _schedule(context, [updated])[0]
            result.envelopes_updated += 1

    for course in sorted(transferred, key=COURSES.index):
        plan.envelopes.extend(_schedule(context, [_host_envelope(plan, new_host, course)]))
        result.envelopes_created += 1

    # The old host now needs a table for the courses it gave away
    result.unplaced_guest_ids = [from_id]


def _handle_promote_host(
    plan: MatchPlan, mutation: PromoteHost, context: CascadeContext, result: CascadeResult
):
    party_id, course = mutation.party_id, mutation.course
    _check_course(course)
    _check_not_frozen(plan, course)
    party = _require_party(context, party_id)
    if party.cancelled:
        raise CascadeRejected(f"{party_id} is cancelled")
    if not party.address:
        raise CascadeRejected(f"{party_id} has no address and cannot host")
    if plan.hosts_course(party_id, course):
        raise CascadeRejected(f"{party_id} already hosts {course}")

    guest_ids = _unique(g for g in mutation.guest_ids if g != party_id)
    guests = [_require_party(context, g) for g in guest_ids]
    guests = [g for g in guests if not g.cancelled]
    for guest in guests:
        if plan.is_blocked(party_id, guest.id):
            raise CascadeRejected(f"{guest.id} is blocked from meeting {party_id}")
    for i, guest in enumerate(guests):
        for other in guests[:i]:
            if plan.is_blocked(guest.id, other.id):
                raise CascadeRejected(f"{guest.id} and {other.id} are blocked from sharing a table")

    result.pairings_removed += _remove_pairings(plan, lambda p: p.guest_id == party_id and p.course == course)
    result.envelopes_cancelled += _cancel_envelopes(
        plan, lambda e: e.party_id == party_id and e.course == course
    )

    if mutation.max_guests is not None:
        max_guests = mutation.max_guests
    elif party.headcount >= 2:
        max_guests = PROMOTED_MAX_GUESTS_COUPLE
    else:
        max_guests = PROMOTED_MAX_GUESTS_SINGLE
    plan.assignments.append(Assignment(party_id=party_id, course=course, is_host=True, max_guests=max_guests))
    result.assignments_created += 1

    plan.envelopes.extend(_schedule(context, [_host_envelope(plan, party, course)]))
    result.envelopes_created += 1

    for guest in guests:
        # Move the guest off whatever table it had for this course
        result.pairings_removed += _remove_pairings(plan, lambda p: p.guest_id == guest.id and p.course == course)
        result.envelopes_cancelled += _cancel_envelopes(
            plan, lambda e: e.party_id == guest.id and e.course == course
        )
        _seat_guest(plan, context, result, guest.id, party_id, course)


def _handle_split(plan: MatchPlan, mutation: Split, context: CascadeContext, result: CascadeResult):
    if not mutation.new_party_id:
        raise CascadeRejected("new_party_id is required for split")
    result.unplaced_guest_ids = [mutation.new_party_id]


_HANDLERS = {
    GuestDropout: _handle_guest_dropout,
    HostDropout: _handle_host_dropout,
    ResignHost: _handle_resign_host,
    AddressChange: _handle_address_change,
    Reassign: _handle_reassign,
    TransferHost: _handle_transfer_host,
    PromoteHost: _handle_promote_host,
    Split: _handle_split,
}


# --- Helpers ----------------------------------------------------------------


def _unique(ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(ids))


def _check_course(course: str) -> None:
    if course not in COURSES:
        raise CascadeRejected(f"Unknown course: {course}")


def _check_not_frozen(plan: MatchPlan, course: Course) -> None:
    if course in plan.frozen_courses:
        raise CascadeRejected(f"Course {course} is frozen")


def _require_party(context: CascadeContext, party_id: str) -> Party:
    party = context.parties.get(party_id)
    if party is None:
        raise CascadeRejected(f"Unknown party: {party_id}")
    return party


def _check_can_host(plan: MatchPlan, guest_id: str, host_id: str, course: Course) -> None:
    if guest_id == host_id:
        raise CascadeRejected("A party cannot be its own guest")
    if plan.hosts_course(guest_id, course):
        raise CascadeRejected(f"{guest_id} hosts {course} and cannot be seated as a guest")
    if not plan.hosts_course(host_id, course):
        raise CascadeRejected(f"{host_id} is not a host for {course}")
    if plan.is_blocked(guest_id, host_id):
        raise CascadeRejected(f"{guest_id} is blocked from meeting {host_id}")
    for other in plan.guests_of(host_id, course):
        if other != guest_id and plan.is_blocked(guest_id, other):
            raise CascadeRejected(f"{guest_id} is blocked from sharing a table with {other}")


def _guest_pairing(plan: MatchPlan, guest_id: str, course: Course) -> CoursePairing | None:
    for pairing in plan.pairings:
        if pairing.guest_id == guest_id and pairing.course == course:
            return pairing
    return None


def _cancel_envelopes(plan: MatchPlan, predicate) -> int:
    count = 0
    for envelope in plan.envelopes:
        if not envelope.cancelled and predicate(envelope):
            envelope.cancelled = True
            count += 1
    return count


def _remove_pairings(plan: MatchPlan, predicate) -> int:
    before = len(plan.pairings)
    plan.pairings = [p for p in plan.pairings if not predicate(p)]
    return before - len(plan.pairings)


def _remove_assignments(plan: MatchPlan, predicate) -> int:
    before = len(plan.assignments)
    plan.assignments = [a for a in plan.assignments if not predicate(a)]
    return before - len(plan.assignments)


def _host_envelope(plan: MatchPlan, host: Party, course: Course) -> Envelope:
    return Envelope(
        party_id=host.id,
        course=course,
        host_id=host.id,
        destination_address=host.address,
        destination_notes=HOST_ENVELOPE_NOTES,
        plan_id=plan.id,
    )


def _schedule(context: CascadeContext, envelopes: list[Envelope]) -> list[Envelope]:
    """Derive reveal times when the event is known; otherwise the caller schedules later."""
    if context.event is None:
        return envelopes
    return schedule_envelopes(envelopes, context.event, context.parties.values(), context.travel)


def _seat_guest(
    plan: MatchPlan,
    context: CascadeContext,
    result: CascadeResult,
    guest_id: str,
    host_id: str,
    course: Course,
) -> None:
    _check_can_host(plan, guest_id, host_id, course)
    host = _require_party(context, host_id)
    plan.pairings.append(CoursePairing(course=course, host_id=host_id, guest_id=guest_id, plan_id=plan.id))
    result.pairings_created += 1
    envelope = Envelope(
        party_id=guest_id,
        course=course,
        host_id=host_id,
        destination_address=host.address,
        destination_notes=host.address_notes,
        plan_id=plan.id,
    )
    plan.envelopes.extend(_schedule(context, [envelope]))
    result.envelopes_created += 1
    _warn_over_capacity(plan, context, result, host_id, course)


def _warn_over_capacity(
    plan: MatchPlan, context: CascadeContext, result: CascadeResult, host_id: str, course: Course
) -> None:
    assignment = plan.host_assignment(host_id, course)
    if assignment is None:
        return
    seated = sum(_headcount(context, g) for g in plan.guests_of(host_id, course))
    if seated > assignment.max_guests:
        result.warnings.append(
            f"{host_id} is over capacity for {course} ({seated}/{assignment.max_guests})"
        )


def _headcount(context: CascadeContext, party_id: str) -> int:
    party = context.parties.get(party_id)
    return party.headcount if party is not None else 2
