"""Data models for dinerotate."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Literal

Course = Literal["starter", "main", "dessert"]
COURSES: tuple[Course, ...] = ("starter", "main", "dessert")

DEFAULT_MAX_GUESTS = 6

HOST_ENVELOPE_NOTES = "You are hosting! Your guests come to you."

WarningKind = Literal["capacity", "preference", "block", "unique_meeting", "frozen"]


@dataclass
class Party:
    """A registered unit (a couple or a single person) attending the event."""

    id: str
    name: str = ""
    headcount: int = 2
    address: str = ""
    address_notes: str | None = None
    course_preference: Course | None = None
    cancelled: bool = False
    coordinates: tuple[float, float] | None = None  # (lat, lng)

    @property
    def active(self) -> bool:
        return not self.cancelled

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass
class Assignment:
    """A party hosting one course."""

    party_id: str
    course: Course
    is_host: bool = True
    max_guests: int = DEFAULT_MAX_GUESTS


@dataclass
class CoursePairing:
    """Guest dines at host's home for one course."""

    course: Course
    host_id: str
    guest_id: str
    plan_id: str | None = None


@dataclass
class RevealTimes:
    """When each stage of an envelope becomes visible."""

    teasing_at: datetime
    clue_1_at: datetime
    clue_2_at: datetime
    street_at: datetime
    number_at: datetime
    opened_at: datetime

    def as_tuple(self) -> tuple[datetime, ...]:
        return (
            self.teasing_at,
            self.clue_1_at,
            self.clue_2_at,
            self.street_at,
            self.number_at,
            self.opened_at,
        )


@dataclass
class Envelope:
    """A party's destination and reveal schedule for one course."""

    party_id: str
    course: Course
    host_id: str
    destination_address: str | None
    destination_notes: str | None = None
    plan_id: str | None = None
    times: RevealTimes | None = None
    travel_minutes: float | None = None
    cancelled: bool = False

    @property
    def is_host_envelope(self) -> bool:
        return self.party_id == self.host_id


@dataclass
class EventTiming:
    """Minutes before course start at which each reveal stage opens."""

    teasing_minutes_before: int = 360
    clue_1_minutes_before: int = 120
    clue_2_minutes_before: int = 30
    street_minutes_before: int = 15
    number_minutes_before: int = 5
    distance_adjustment_enabled: bool = True


TIMING_FIELDS: tuple[str, ...] = (
    "teasing_minutes_before",
    "clue_1_minutes_before",
    "clue_2_minutes_before",
    "street_minutes_before",
    "number_minutes_before",
)


@dataclass
class EventConfig:
    """Event date, course times and reveal timing."""

    id: str
    event_date: date
    starter_time: str = "17:30"
    main_time: str = "19:00"
    dessert_time: str = "20:30"
    time_offset_minutes: int = 0
    timezone: str | None = None  # IANA name, None = UTC
    max_guests_per_host: int = DEFAULT_MAX_GUESTS
    timing: EventTiming = field(default_factory=EventTiming)
    course_timing_offsets: dict[Course, dict[str, int]] = field(default_factory=dict)

    def course_time(self, course: Course) -> str:
        return {
            "starter": self.starter_time,
            "main": self.main_time,
            "dessert": self.dessert_time,
        }[course]


@dataclass
class MatchingWarning:
    """A non-fatal problem found while matching."""

    kind: WarningKind
    message: str
    party_ids: list[str] = field(default_factory=list)


@dataclass
class CourseAssignmentStats:
    preference_satisfaction: float
    capacity_per_course: dict[Course, int]
    hosts_per_course: dict[Course, int]
    guests_per_course: dict[Course, int]  # guest headcount each course must seat


@dataclass
class CourseAssignmentResult:
    """Result of Step A."""

    assignments: list[Assignment]
    stats: CourseAssignmentStats


@dataclass
class MatchingStats:
    matched_count: int
    capacity_utilization: float


@dataclass
class MatchingResult:
    """Result of Step B."""

    pairings: list[CoursePairing]
    envelopes: list[Envelope]
    warnings: list[MatchingWarning]
    stats: MatchingStats


@dataclass
class FullMatchResult:
    step_a: CourseAssignmentResult
    step_b: MatchingResult
    warnings: list[MatchingWarning]


def pair_key(a: str, b: str) -> tuple[str, str]:
    """Canonical key for an unordered pair of party ids."""
    return (a, b) if a < b else (b, a)
