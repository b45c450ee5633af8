"""ILP-based suggestions for re-seating unplaced guests."""

from collections.abc import Iterable
from dataclasses import dataclass, field

import numpy as np
from scipy.optimize import Bounds, LinearConstraint, milp

from dinerotate.cascade import Placement
from dinerotate.matching import table_meetings
from dinerotate.models import COURSES, Course, Party, pair_key
from dinerotate.plan import MatchPlan


@dataclass
class PlacementSuggestion:
    placements: list[Placement] = field(default_factory=list)
    unplaceable: list[str] = field(default_factory=list)


def unplaced_guests(plan: MatchPlan, parties: Iterable[Party], course: Course) -> list[str]:
    """Active parties with neither a seat nor a table of their own for the course."""
    seated = {p.guest_id for p in plan.pairings if p.course == course}
    return [
        party.id
        for party in parties
        if party.active and party.id not in seated and not plan.hosts_course(party.id, course)
    ]


def suggest_placements(
    plan: MatchPlan,
    parties: Iterable[Party],
    course: Course,
    guest_ids: Iterable[str] | None = None,
) -> PlacementSuggestion:
    """
    Suggest a host for each unplaced guest of one course.

    Solves a small 0/1 program: every guest at most one host, no host over
    its remaining seats, and no guest placed where it would meet someone
    it is blocked against or has already met tonight (including other
    guests placed by this suggestion). Seats as many guests as possible,
    preferring emptier tables. Nothing is written to the plan.
    """
    if course not in COURSES:
        raise ValueError(f"Unknown course: {course}")

    parties = list(parties)
    by_id = {p.id: p for p in parties if p.active}
    if guest_ids is None:
        guest_ids = unplaced_guests(plan, parties, course)
    guests = [by_id[g] for g in dict.fromkeys(guest_ids) if g in by_id]

    hosts = [
        a for a in plan.assignments if a.course == course and a.is_host and a.party_id in by_id
    ]
    if not guests or not hosts:
        return PlacementSuggestion(unplaceable=[g.id for g in guests])

    # Meetings from every other course, plus the current tables of this one
    meetings = table_meetings(plan.pairings)
    seated_at = {a.party_id: plan.guests_of(a.party_id, course) for a in hosts}
    remaining = np.array(
        [
            a.max_guests - sum(by_id[g].headcount if g in by_id else 2 for g in seated_at[a.party_id])
            for a in hosts
        ],
        dtype=float,
    )

    def compatible(guest: Party, host_id: str) -> bool:
        if guest.id == host_id or plan.is_blocked(guest.id, host_id):
            return False
        if meetings[pair_key(guest.id, host_id)] > 0:
            return False
        for other in seated_at[host_id]:
            if plan.is_blocked(guest.id, other) or meetings[pair_key(guest.id, other)] > 0:
                return False
        return True

    # Only feasible (guest, host) pairs become variables
    variables: list[tuple[int, int]] = [
        (g_idx, h_idx)
        for g_idx, guest in enumerate(guests)
        for h_idx, host in enumerate(hosts)
        if guest.headcount <= remaining[h_idx] and compatible(guest, host.party_id)
    ]
    if not variables:
        return PlacementSuggestion(unplaceable=[g.id for g in guests])

    num_vars = len(variables)

    # Maximize seated guests; small bonus for emptier tables breaks ties
    c = np.zeros(num_vars)
    for v_idx, (_g_idx, h_idx) in enumerate(variables):
        fill = 1.0 - remaining[h_idx] / hosts[h_idx].max_guests if hosts[h_idx].max_guests else 1.0
        c[v_idx] = -(1.0 + 0.01 * (1.0 - fill))  # negate because milp minimizes

    A_rows: list[np.ndarray] = []
    b_ub: list[float] = []

    # Constraint 1: each guest at most one host
    for g_idx in range(len(guests)):
        row = np.zeros(num_vars)
        for v_idx, (vg, _vh) in enumerate(variables):
            if vg == g_idx:
                row[v_idx] = 1.0
        A_rows.append(row)
        b_ub.append(1.0)

    # Constraint 2: remaining seat capacity per host
    for h_idx in range(len(hosts)):
        row = np.zeros(num_vars)
        for v_idx, (vg, vh) in enumerate(variables):
            if vh == h_idx:
                row[v_idx] = guests[vg].headcount
        A_rows.append(row)
        b_ub.append(float(remaining[h_idx]))

    # Constraint 3: new guests who must not share a table
    for g1 in range(len(guests)):
        for g2 in range(g1 + 1, len(guests)):
            a, b = guests[g1].id, guests[g2].id
            if not (plan.is_blocked(a, b) or meetings[pair_key(a, b)] > 0):
                continue
            for h_idx in range(len(hosts)):
                row = np.zeros(num_vars)
                for v_idx, (vg, vh) in enumerate(variables):
                    if vh == h_idx and vg in (g1, g2):
                        row[v_idx] = 1.0
                if row.sum() > 1:
                    A_rows.append(row)
                    b_ub.append(1.0)

    constraints = [LinearConstraint(np.array(A_rows), -np.inf, np.array(b_ub))]
    integrality = np.ones(num_vars, dtype=np.intp)

    result = milp(c, constraints=constraints, bounds=Bounds(0, 1), integrality=integrality)
    if not result.success or result.x is None:
        return PlacementSuggestion(unplaceable=[g.id for g in guests])

    placed: set[int] = set()
    placements: list[Placement] = []
    for v_idx, (g_idx, h_idx) in enumerate(variables):
        if result.x[v_idx] > 0.5:  # binary, so check > 0.5
            placed.add(g_idx)
            placements.append(Placement(guest_id=guests[g_idx].id, host_id=hosts[h_idx].party_id, course=course))

    return PlacementSuggestion(
        placements=placements,
        unplaceable=[g.id for idx, g in enumerate(guests) if idx not in placed],
    )
