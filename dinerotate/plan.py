"""Versioned match plans."""

import copy
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Literal

import numpy as np

from dinerotate.engine import run_full_match, run_rematch
from dinerotate.matching import blocked_set
from dinerotate.models import (
    COURSES,
    Assignment,
    Course,
    CoursePairing,
    Envelope,
    EventConfig,
    FullMatchResult,
    MatchingResult,
    Party,
)
from dinerotate.schedule import schedule_envelopes
from dinerotate.travel import TravelProvider

PlanStatus = Literal["draft", "active", "superseded"]


@dataclass
class MatchPlan:
    """One version of the evening: who hosts what, who goes where, and when."""

    id: str
    event_id: str
    version: int = 1
    status: PlanStatus = "draft"
    assignments: list[Assignment] = field(default_factory=list)
    pairings: list[CoursePairing] = field(default_factory=list)
    envelopes: list[Envelope] = field(default_factory=list)
    blocked_pairs: set[frozenset[str]] = field(default_factory=set)
    frozen_courses: set[Course] = field(default_factory=set)
    stats: dict[str, float] = field(default_factory=dict)
    superseded_by: str | None = None
    revision: int = 0  # bumped on every committed change

    def is_blocked(self, a: str, b: str) -> bool:
        return frozenset((a, b)) in self.blocked_pairs

    def hosts_course(self, party_id: str, course: Course) -> bool:
        return any(a.party_id == party_id and a.course == course and a.is_host for a in self.assignments)

    def host_assignment(self, party_id: str, course: Course) -> Assignment | None:
        for assignment in self.assignments:
            if assignment.party_id == party_id and assignment.course == course and assignment.is_host:
                return assignment
        return None

    def active_envelopes(self) -> list[Envelope]:
        return [e for e in self.envelopes if not e.cancelled]

    def guests_of(self, host_id: str, course: Course) -> list[str]:
        return [p.guest_id for p in self.pairings if p.host_id == host_id and p.course == course]


def new_plan_id() -> str:
    return uuid.uuid4().hex


def create_plan(
    event: EventConfig,
    parties: Iterable[Party],
    blocked_pairs: Iterable[Iterable[str]] = (),
    *,
    rng: np.random.Generator | None = None,
    travel: TravelProvider | None = None,
    plan_id: str | None = None,
) -> tuple[MatchPlan, FullMatchResult]:
    """Run a full match and wrap it, with scheduled envelopes, in a first plan version."""
    parties = list(parties)
    blocked_pairs = blocked_set(blocked_pairs)
    plan_id = plan_id or new_plan_id()

    result = run_full_match(event, parties, blocked_pairs, rng=rng, plan_id=plan_id)
    envelopes = schedule_envelopes(result.step_b.envelopes, event, parties, travel)

    plan = MatchPlan(
        id=plan_id,
        event_id=event.id,
        assignments=list(result.step_a.assignments),
        pairings=list(result.step_b.pairings),
        envelopes=envelopes,
        blocked_pairs=set(blocked_pairs),
        stats={
            "matched_count": result.step_b.stats.matched_count,
            "preference_satisfaction": result.step_a.stats.preference_satisfaction,
            "capacity_utilization": result.step_b.stats.capacity_utilization,
        },
    )
    return plan, result


def rematch_plan(
    previous: MatchPlan,
    event: EventConfig,
    parties: Iterable[Party],
    frozen_courses: Iterable[Course] = (),
    *,
    rng: np.random.Generator | None = None,
    travel: TravelProvider | None = None,
    plan_id: str | None = None,
) -> tuple[MatchPlan, MatchingResult]:
    """
    Build the next plan version from an existing one.

    Course assignments are kept. Pairings and envelopes of frozen courses
    are carried over untouched; every other course is matched again. The
    previous plan is marked superseded.
    """
    parties = list(parties)
    frozen = set(frozen_courses) | previous.frozen_courses
    plan_id = plan_id or new_plan_id()

    kept_pairings = [replace(p, plan_id=plan_id) for p in previous.pairings if p.course in frozen]
    kept_envelopes = [replace(e, plan_id=plan_id) for e in previous.envelopes if e.course in frozen]

    result = run_rematch(
        event,
        parties,
        previous.assignments,
        previous.blocked_pairs,
        frozen,
        rng=rng,
        plan_id=plan_id,
        frozen_pairings=kept_pairings,
    )
    envelopes = schedule_envelopes(result.envelopes, event, parties, travel)

    plan = MatchPlan(
        id=plan_id,
        event_id=previous.event_id,
        version=previous.version + 1,
        assignments=copy.deepcopy(previous.assignments),
        pairings=kept_pairings + result.pairings,
        envelopes=kept_envelopes + envelopes,
        blocked_pairs=set(previous.blocked_pairs),
        frozen_courses=frozen,
        stats={
            "matched_count": result.stats.matched_count,
            "preference_satisfaction": previous.stats.get("preference_satisfaction", 1.0),
            "capacity_utilization": result.stats.capacity_utilization,
        },
    )
    previous.status = "superseded"
    previous.superseded_by = plan.id
    return plan, result


def freeze_courses(plan: MatchPlan, courses: Iterable[Course]) -> None:
    """Mark courses as frozen: repairs and rematches leave them alone."""
    for course in courses:
        if course not in COURSES:
            raise ValueError(f"Unknown course: {course}")
        plan.frozen_courses.add(course)
