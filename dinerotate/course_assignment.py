"""Step A: decide which course each party hosts."""

import logging
import math
from collections.abc import Iterable
from typing import cast

from dinerotate.errors import InsufficientCapacityError, TooFewPartiesError
from dinerotate.models import (
    COURSES,
    DEFAULT_MAX_GUESTS,
    Assignment,
    Course,
    CourseAssignmentResult,
    CourseAssignmentStats,
    Party,
)

logger = logging.getLogger(__name__)

MIN_ACTIVE_PARTIES = 3


def assign_courses(
    parties: Iterable[Party],
    max_guests_per_host: int = DEFAULT_MAX_GUESTS,
) -> CourseAssignmentResult:
    """
    Assign every active party to host exactly one course.

    Parties with a course preference are placed first, as long as their
    preferred course holds fewer than ceil(N/3) + 1 hosts. Everyone else
    (including preference overflow) goes to whichever course currently has
    the fewest hosts.

    Raises TooFewPartiesError below three active parties and
    InsufficientCapacityError when any course cannot seat its guests.
    """
    active = [p for p in parties if p.active]
    if len(active) < MIN_ACTIVE_PARTIES:
        raise TooFewPartiesError(len(active), MIN_ACTIVE_PARTIES)

    hosts: dict[Course, list[str]] = {course: [] for course in COURSES}

    with_preference: list[Party] = []
    without_preference: list[Party] = []
    for party in active:
        if party.course_preference in COURSES:
            with_preference.append(party)
        else:
            without_preference.append(party)

    target = math.ceil(len(active) / len(COURSES))

    # Pass 1: honor preferences up to target + 1 hosts per course
    satisfied = 0
    for party in with_preference:
        preferred = cast(Course, party.course_preference)
        if len(hosts[preferred]) < target + 1:
            hosts[preferred].append(party.id)
            satisfied += 1
        else:
            without_preference.append(party)

    # Pass 2: fill the least-hosted course, ties in course order
    for party in without_preference:
        course = min(COURSES, key=lambda c: len(hosts[c]))
        hosts[course].append(party.id)

    capacity: dict[Course, int] = {}
    demand: dict[Course, int] = {}
    for course in COURSES:
        hosting = set(hosts[course])
        capacity[course] = len(hosting) * max_guests_per_host
        demand[course] = sum(p.headcount for p in active if p.id not in hosting)

    for course in COURSES:
        if capacity[course] < demand[course]:
            raise InsufficientCapacityError(course, capacity[course], demand[course])

    assignments = [
        Assignment(party_id=party_id, course=course, is_host=True, max_guests=max_guests_per_host)
        for course in COURSES
        for party_id in hosts[course]
    ]

    satisfaction = satisfied / len(with_preference) if with_preference else 1.0

    logger.debug(
        "Assigned %d hosts (%s), preference satisfaction %.2f",
        len(assignments),
        ", ".join(f"{c}={len(hosts[c])}" for c in COURSES),
        satisfaction,
    )

    return CourseAssignmentResult(
        assignments=assignments,
        stats=CourseAssignmentStats(
            preference_satisfaction=round(satisfaction, 2),
            capacity_per_course=capacity,
            hosts_per_course={c: len(hosts[c]) for c in COURSES},
            guests_per_course=demand,
        ),
    )
