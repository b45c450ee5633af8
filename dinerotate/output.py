"""Output formatting for dinerotate."""

import csv
import io
from collections import defaultdict
from collections.abc import Iterable

from dinerotate.models import COURSES, MatchingWarning, Party
from dinerotate.plan import MatchPlan
from dinerotate.validation import PlanReport


def format_plan(
    plan: MatchPlan,
    parties: Iterable[Party] = (),
    warnings: Iterable[MatchingWarning] = (),
) -> str:
    """Format a plan for display, one block per course and host table."""
    lines: list[str] = []
    by_id = {p.id: p for p in parties}

    def name(party_id: str) -> str:
        party = by_id.get(party_id)
        return party.display_name if party is not None else party_id

    if not plan.assignments:
        lines.append("No hosts are assigned in this plan.")
        return "\n".join(lines)

    lines.append(f"=== Match Plan {plan.id} (version {plan.version}, {plan.status}) ===")
    if plan.stats:
        lines.append(f"Matched parties: {int(plan.stats.get('matched_count', 0))}")
        lines.append(f"Preference satisfaction: {plan.stats.get('preference_satisfaction', 1.0):.0%}")
        lines.append(f"Capacity utilization: {plan.stats.get('capacity_utilization', 0.0):.0%}")
    if plan.frozen_courses:
        frozen = [c for c in COURSES if c in plan.frozen_courses]
        lines.append(f"Frozen courses: {', '.join(frozen)}")
    lines.append("")

    guests_by_table: dict[str, dict[str, list[str]]] = defaultdict(lambda: defaultdict(list))
    for pairing in plan.pairings:
        guests_by_table[pairing.course][pairing.host_id].append(pairing.guest_id)

    for course in COURSES:
        hosts = [a for a in plan.assignments if a.course == course and a.is_host]
        if not hosts:
            continue
        lines.append(f"--- {course.title()} ---")
        for assignment in sorted(hosts, key=lambda a: name(a.party_id)):
            guests = guests_by_table[course].get(assignment.party_id, [])
            seated = sum(by_id[g].headcount if g in by_id else 2 for g in guests)
            lines.append(f"  {name(assignment.party_id)} hosts ({seated}/{assignment.max_guests} seats):")
            for guest_id in sorted(guests, key=name):
                lines.append(f"    - {name(guest_id)}")
        lines.append("")

    warnings = list(warnings)
    if warnings:
        lines.append("=== Warnings ===")
        for warning in warnings:
            lines.append(f"  [{warning.kind}] {warning.message}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_report(report: PlanReport) -> str:
    """Format a consistency report as a short summary."""
    lines = ["=== Plan Check ==="]
    lines.extend(report.summary())
    lines.append("OK" if report.ok else "Problems found")
    return "\n".join(lines)


def format_envelopes_csv(plan: MatchPlan) -> str:
    """Format active envelopes as CSV for export."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(
        [
            "party_id",
            "course",
            "host_id",
            "destination_address",
            "travel_minutes",
            "teasing_at",
            "clue_1_at",
            "clue_2_at",
            "street_at",
            "number_at",
            "opened_at",
        ]
    )

    # Sort by course, then host, then party
    envelopes = sorted(
        plan.active_envelopes(),
        key=lambda e: (COURSES.index(e.course), e.host_id, e.party_id),
    )
    for envelope in envelopes:
        times = [t.isoformat() for t in envelope.times.as_tuple()] if envelope.times else [""] * 6
        writer.writerow(
            [
                envelope.party_id,
                envelope.course,
                envelope.host_id,
                envelope.destination_address or "",
                "" if envelope.travel_minutes is None else envelope.travel_minutes,
                *times,
            ]
        )

    return buffer.getvalue().rstrip("\n")
