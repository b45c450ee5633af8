"""Reveal schedule derivation for envelopes."""

import dataclasses
from collections.abc import Iterable, Mapping
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dinerotate.errors import TimingConfigError
from dinerotate.models import (
    COURSES,
    TIMING_FIELDS,
    Course,
    Envelope,
    EventConfig,
    EventTiming,
    Party,
    RevealTimes,
)
from dinerotate.travel import TravelProvider


def merge_timing(
    timing: EventTiming | None = None,
    course_override: Mapping[str, int] | None = None,
) -> EventTiming:
    """Apply a per-course override on top of the event timing, field by field."""
    merged = timing or EventTiming()
    if course_override:
        unknown = set(course_override) - set(TIMING_FIELDS)
        if unknown:
            raise TimingConfigError(f"Unknown timing fields: {', '.join(sorted(unknown))}")
        merged = dataclasses.replace(merged, **course_override)

    minutes = [getattr(merged, name) for name in TIMING_FIELDS]
    if any(m <= 0 for m in minutes):
        raise TimingConfigError("Reveal minutes must be positive")
    if any(earlier <= later for earlier, later in zip(minutes, minutes[1:])):
        raise TimingConfigError(
            "Reveal stages must be strictly ordered: teasing > clue 1 > clue 2 > street > number "
            f"(got {', '.join(str(m) for m in minutes)})"
        )
    return merged


def derive_schedule(
    course_start: datetime,
    timing: EventTiming | None = None,
    course_override: Mapping[str, int] | None = None,
    travel_minutes: float | None = None,
) -> RevealTimes:
    """
    Compute the reveal timestamps for one envelope.

    Street and house number are revealed earlier for long trips so the
    party can make it in time: at least travel + 10 minutes (street) and
    travel minutes (number) ahead for trips over 15 minutes. When that
    pushes a reveal to or past the stage before it, the earlier stages
    move back too, keeping their configured spacing. Reveals never move
    later than configured and every stage opens strictly before the next.
    """
    t = merge_timing(timing, course_override)
    configured = [getattr(t, name) for name in TIMING_FIELDS]
    minutes = list(configured)

    if t.distance_adjustment_enabled and travel_minutes:
        street, number = minutes[3], minutes[4]
        if travel_minutes > 15:
            street = max(street, travel_minutes + 10)
            number = max(number, travel_minutes)
        elif travel_minutes > 8:
            street = max(street, travel_minutes + 5)
            number = max(number, travel_minutes - 3)
        minutes[3], minutes[4] = street, number

        # Walk back from street to teasing
        for i in range(3, 0, -1):
            if minutes[i - 1] <= minutes[i]:
                minutes[i - 1] = minutes[i] + (configured[i - 1] - configured[i])

    def before(minutes_before: float) -> datetime:
        return course_start - timedelta(minutes=minutes_before)

    teasing, clue_1, clue_2, street, number = minutes
    return RevealTimes(
        teasing_at=before(teasing),
        clue_1_at=before(clue_1),
        clue_2_at=before(clue_2),
        street_at=before(street),
        number_at=before(number),
        opened_at=course_start,
    )


def _parse_clock(value: str) -> time:
    try:
        parts = [int(p) for p in value.strip().split(":")]
        return time(parts[0], parts[1] if len(parts) > 1 else 0)
    except (ValueError, IndexError) as e:
        raise TimingConfigError(f"Invalid course time {value!r}, expected HH:MM") from e


def parse_course_starts(event: EventConfig) -> dict[Course, datetime]:
    """Course start datetimes for the event, with the global time offset applied."""
    try:
        tz = ZoneInfo(event.timezone) if event.timezone else timezone.utc
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise TimingConfigError(f"Unknown timezone: {event.timezone}") from e
    starts: dict[Course, datetime] = {}
    for course in COURSES:
        clock = _parse_clock(event.course_time(course))
        start = datetime.combine(event.event_date, clock, tzinfo=tz)
        starts[course] = start + timedelta(minutes=event.time_offset_minutes)
    return starts


def schedule_envelopes(
    envelopes: Iterable[Envelope],
    event: EventConfig,
    parties: Iterable[Party] = (),
    travel: TravelProvider | None = None,
) -> list[Envelope]:
    """
    Return copies of the envelopes with reveal times derived from the event.

    Host envelopes need no travel. Guest travel time is looked up from the
    guest's home to the host's home when a travel provider is given.
    Running this twice with the same inputs gives the same times.
    """
    starts = parse_course_starts(event)
    by_id = {p.id: p for p in parties}

    scheduled: list[Envelope] = []
    for envelope in envelopes:
        minutes: float | None = None
        if envelope.is_host_envelope:
            minutes = 0
        elif travel is not None:
            guest = by_id.get(envelope.party_id)
            host = by_id.get(envelope.host_id)
            if guest is not None and host is not None:
                minutes = travel.minutes(guest, host)

        times = derive_schedule(
            starts[envelope.course],
            event.timing,
            event.course_timing_offsets.get(envelope.course),
            minutes,
        )
        scheduled.append(dataclasses.replace(envelope, times=times, travel_minutes=minutes))
    return scheduled
