"""Consistency checks for a match plan."""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from dinerotate.models import Course, Party
from dinerotate.plan import MatchPlan

Key = tuple[str, Course]  # (party_id, course)


@dataclass
class PlanReport:
    missing_envelopes: list[Key] = field(default_factory=list)
    orphan_envelopes: list[Key] = field(default_factory=list)
    host_mismatches: list[Key] = field(default_factory=list)
    duplicate_envelopes: list[Key] = field(default_factory=list)
    duplicate_pairings: list[Key] = field(default_factory=list)
    cancelled_paired: list[Key] = field(default_factory=list)
    self_pairings: list[Key] = field(default_factory=list)
    blocked_violations: list[tuple[str, str, Course]] = field(default_factory=list)
    parties_without_host_course: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(
            (
                self.missing_envelopes,
                self.orphan_envelopes,
                self.host_mismatches,
                self.duplicate_envelopes,
                self.duplicate_pairings,
                self.cancelled_paired,
                self.self_pairings,
                self.blocked_violations,
                self.parties_without_host_course,
            )
        )

    def summary(self) -> list[str]:
        return [
            f"Missing envelopes: {len(self.missing_envelopes)}",
            f"Orphan envelopes: {len(self.orphan_envelopes)}",
            f"Host mismatches: {len(self.host_mismatches)}",
            f"Duplicate envelopes: {len(self.duplicate_envelopes)}",
            f"Duplicate pairings (same guest/course): {len(self.duplicate_pairings)}",
            f"Cancelled parties still paired: {len(self.cancelled_paired)}",
            f"Self pairings: {len(self.self_pairings)}",
            f"Blocked pairs seated together: {len(self.blocked_violations)}",
            f"Active parties hosting no course: {len(self.parties_without_host_course)}",
        ]


def check_plan(plan: MatchPlan, parties: Iterable[Party]) -> PlanReport:
    """Report pairings and envelopes that disagree with each other or with the roster."""
    report = PlanReport()
    by_id = {p.id: p for p in parties}

    pairing_counts = Counter((p.guest_id, p.course) for p in plan.pairings)
    report.duplicate_pairings = sorted(k for k, n in pairing_counts.items() if n > 1)
    pairing_host = {(p.guest_id, p.course): p.host_id for p in plan.pairings}

    active_envelopes = plan.active_envelopes()
    envelope_counts = Counter((e.party_id, e.course) for e in active_envelopes)
    report.duplicate_envelopes = sorted(k for k, n in envelope_counts.items() if n > 1)
    envelope_host = {(e.party_id, e.course): e.host_id for e in active_envelopes}

    for key, host_id in pairing_host.items():
        if key not in envelope_host:
            report.missing_envelopes.append(key)
        elif envelope_host[key] != host_id:
            report.host_mismatches.append(key)

    for envelope in active_envelopes:
        key = (envelope.party_id, envelope.course)
        if envelope.is_host_envelope:
            if not plan.hosts_course(envelope.party_id, envelope.course):
                report.orphan_envelopes.append(key)
        elif key not in pairing_host:
            report.orphan_envelopes.append(key)

    for pairing in plan.pairings:
        key = (pairing.guest_id, pairing.course)
        if pairing.host_id == pairing.guest_id:
            report.self_pairings.append(key)
        guest = by_id.get(pairing.guest_id)
        host = by_id.get(pairing.host_id)
        if (guest is not None and guest.cancelled) or (host is not None and host.cancelled):
            report.cancelled_paired.append(key)

    tables: dict[tuple[str, Course], list[str]] = {}
    for pairing in plan.pairings:
        tables.setdefault((pairing.host_id, pairing.course), [pairing.host_id]).append(pairing.guest_id)
    for (_host_id, course), members in tables.items():
        for i, a in enumerate(members):
            for b in members[i + 1 :]:
                if plan.is_blocked(a, b):
                    report.blocked_violations.append((*sorted((a, b)), course))

    hosting = {a.party_id for a in plan.assignments if a.is_host}
    report.parties_without_host_course = sorted(
        p.id for p in by_id.values() if p.active and p.id not in hosting
    )
    return report
