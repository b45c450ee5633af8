"""Matching entry points: full match (Step A + B) and rematch (Step B only)."""

from collections.abc import Iterable

import numpy as np

from dinerotate.course_assignment import assign_courses
from dinerotate.matching import RepeatMeetingPolicy, match_guests_to_hosts
from dinerotate.models import (
    Assignment,
    Course,
    CoursePairing,
    EventConfig,
    FullMatchResult,
    MatchingResult,
    MatchingWarning,
    Party,
)

PREFERENCE_WARNING_THRESHOLD = 0.8


def run_full_match(
    event: EventConfig,
    parties: Iterable[Party],
    blocked_pairs: Iterable[Iterable[str]] = (),
    *,
    rng: np.random.Generator | None = None,
    plan_id: str | None = None,
    repeat_meetings: RepeatMeetingPolicy = "avoid",
) -> FullMatchResult:
    """Assign courses, then seat guests. Fatal Step A errors propagate."""
    parties = list(parties)
    step_a = assign_courses(parties, max_guests_per_host=event.max_guests_per_host)
    step_b = match_guests_to_hosts(
        step_a.assignments,
        parties,
        blocked_pairs,
        plan_id=plan_id,
        rng=rng,
        repeat_meetings=repeat_meetings,
    )

    warnings = list(step_b.warnings)
    satisfaction = step_a.stats.preference_satisfaction
    if satisfaction < PREFERENCE_WARNING_THRESHOLD:
        warnings.append(
            MatchingWarning(
                kind="preference",
                message=f"Only {round(satisfaction * 100)}% of course preferences were honored",
            )
        )

    return FullMatchResult(step_a=step_a, step_b=step_b, warnings=warnings)


def run_rematch(
    event: EventConfig,
    parties: Iterable[Party],
    assignments: Iterable[Assignment],
    blocked_pairs: Iterable[Iterable[str]] = (),
    frozen_courses: Iterable[Course] = (),
    *,
    rng: np.random.Generator | None = None,
    plan_id: str | None = None,
    frozen_pairings: Iterable[CoursePairing] = (),
    repeat_meetings: RepeatMeetingPolicy = "avoid",
) -> MatchingResult:
    """Re-run Step B against existing course assignments, leaving frozen courses alone."""
    return match_guests_to_hosts(
        assignments,
        parties,
        blocked_pairs,
        frozen_courses,
        plan_id=plan_id,
        rng=rng,
        frozen_pairings=frozen_pairings,
        repeat_meetings=repeat_meetings,
    )
