"""CSV and YAML parsing for dinerotate."""

import csv
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from dinerotate.errors import ConfigError
from dinerotate.models import COURSES, TIMING_FIELDS, EventConfig, EventTiming, Party

TRUE_VALUES = {"1", "true", "yes", "y", "x"}


def _parse_bool(raw: str | None) -> bool:
    return (raw or "").strip().lower() in TRUE_VALUES


def _parse_coordinates(row: dict[str, str]) -> tuple[float, float] | None:
    lat = (row.get("lat") or "").strip()
    lng = (row.get("lng") or "").strip()
    if not lat or not lng:
        return None
    return float(lat), float(lng)


def parse_parties_csv(csv_path: Path) -> list[Party]:
    """
    Parse the party roster CSV.

    Columns: id, name, headcount, address, address_notes,
    course_preference, cancelled, lat, lng. Only id is required; headcount
    defaults to 2 and an unknown course preference counts as none.
    """
    parties: list[Party] = []
    seen: set[str] = set()

    with csv_path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames or "id" not in reader.fieldnames:
            raise ConfigError(f"{csv_path}: missing required 'id' column")

        for line_no, row in enumerate(reader, start=2):
            party_id = (row.get("id") or "").strip()
            if not party_id:
                continue
            if party_id in seen:
                raise ConfigError(f"{csv_path}:{line_no}: duplicate party id {party_id!r}")
            seen.add(party_id)

            try:
                headcount = int((row.get("headcount") or "2").strip() or 2)
                coordinates = _parse_coordinates(row)
            except ValueError as e:
                raise ConfigError(f"{csv_path}:{line_no}: {e}") from e
            if headcount not in (1, 2):
                raise ConfigError(f"{csv_path}:{line_no}: headcount must be 1 or 2, got {headcount}")

            preference = (row.get("course_preference") or "").strip().lower()
            parties.append(
                Party(
                    id=party_id,
                    name=(row.get("name") or "").strip(),
                    headcount=headcount,
                    address=(row.get("address") or "").strip(),
                    address_notes=(row.get("address_notes") or "").strip() or None,
                    course_preference=preference if preference in COURSES else None,  # type: ignore[arg-type]
                    cancelled=_parse_bool(row.get("cancelled")),
                    coordinates=coordinates,
                )
            )

    return parties


def parse_event_yaml(yaml_path: Path) -> tuple[EventConfig, list[tuple[str, str]]]:
    """
    Parse the event configuration YAML file.

    Returns a tuple of (EventConfig, blocked pairs).
    """
    with yaml_path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not data or "event" not in data:
        raise ConfigError(f"{yaml_path}: missing 'event' section")
    return event_from_dict(data)


def event_from_dict(data: dict[str, Any]) -> tuple[EventConfig, list[tuple[str, str]]]:
    event = data["event"] or {}
    try:
        raw_date = event["date"]
        event_date = raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date))

        timing_data = data.get("timing") or {}
        unknown = set(timing_data) - set(TIMING_FIELDS) - {"distance_adjustment_enabled"}
        if unknown:
            raise ConfigError(f"Unknown timing fields: {', '.join(sorted(unknown))}")
        timing = EventTiming(
            **{k: int(v) for k, v in timing_data.items() if k in TIMING_FIELDS},
            distance_adjustment_enabled=bool(timing_data.get("distance_adjustment_enabled", True)),
        )

        offsets: dict = {}
        for course, override in (data.get("course_timing_offsets") or {}).items():
            if course not in COURSES:
                raise ConfigError(f"Unknown course in course_timing_offsets: {course}")
            offsets[course] = {k: int(v) for k, v in (override or {}).items()}

        config = EventConfig(
            id=str(event.get("id", "event")),
            event_date=event_date,
            starter_time=str(event.get("starter_time", "17:30")),
            main_time=str(event.get("main_time", "19:00")),
            dessert_time=str(event.get("dessert_time", "20:30")),
            time_offset_minutes=int(event.get("time_offset_minutes", 0)),
            timezone=event.get("timezone"),
            max_guests_per_host=int(event.get("max_guests_per_host", 6)),
            timing=timing,
            course_timing_offsets=offsets,
        )
    except (KeyError, TypeError, ValueError) as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(f"Invalid event configuration: {e}") from e

    blocked: list[tuple[str, str]] = []
    for pair in data.get("blocked_pairs") or []:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ConfigError(f"Blocked pair must list exactly two party ids: {pair!r}")
        blocked.append((str(pair[0]), str(pair[1])))

    return config, blocked


def create_event_template(output_path: Path, event_id: str = "my-event") -> None:
    """Create an event configuration template YAML file."""
    template = {
        "event": {
            "id": event_id,
            "date": date.today().isoformat(),
            "timezone": "Europe/Stockholm",
            "starter_time": "17:30",
            "main_time": "19:00",
            "dessert_time": "20:30",
            "time_offset_minutes": 0,
            "max_guests_per_host": 6,
        },
        "timing": {
            "teasing_minutes_before": 360,
            "clue_1_minutes_before": 120,
            "clue_2_minutes_before": 30,
            "street_minutes_before": 15,
            "number_minutes_before": 5,
            "distance_adjustment_enabled": True,
        },
        "course_timing_offsets": {},
        "blocked_pairs": [],
    }

    # Add a comment header
    header = """\
# Event configuration for dinerotate
#
# Course times are local HH:MM in the given timezone.
# time_offset_minutes postpones every course (e.g. 15 if everything runs late).
#
# timing: minutes before each course starts that a reveal stage opens.
# Stages must be ordered: teasing >= clue 1 >= clue 2 >= street >= number.
#
# course_timing_offsets: per-course overrides, field by field, e.g.
#   course_timing_offsets:
#     main:
#       street_minutes_before: 20
#
# blocked_pairs: parties that must never share a table, e.g.
#   blocked_pairs:
#     - [p3, p7]

"""

    with output_path.open("w", encoding="utf-8") as f:
        f.write(header)
        yaml.dump(template, f, default_flow_style=False, sort_keys=False)
