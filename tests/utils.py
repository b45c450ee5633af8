"""Builders shared by the dinerotate tests."""

from __future__ import annotations

import csv
from datetime import date
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

from dinerotate.models import Course, EventConfig, Party
from dinerotate.plan import MatchPlan, create_plan
from dinerotate.store import InMemoryPlanStore

EVENT_DATE = date(2025, 6, 14)

PARTY_COLUMNS: Sequence[str] = (
    "id",
    "name",
    "headcount",
    "address",
    "address_notes",
    "course_preference",
    "cancelled",
    "lat",
    "lng",
)


def make_party(idx: int, *, headcount: int = 2, preference: Course | None = None) -> Party:
    return Party(
        id=f"p{idx}",
        name=f"Party {idx}",
        headcount=headcount,
        address=f"{idx} Main Street",
        address_notes=f"Door {idx}",
        course_preference=preference,
    )


def make_parties(count: int, preferences: dict[int, Course] | None = None) -> list[Party]:
    preferences = preferences or {}
    return [make_party(i, preference=preferences.get(i)) for i in range(1, count + 1)]


def make_event(**overrides) -> EventConfig:
    return EventConfig(id="summer", event_date=EVENT_DATE, **overrides)


def stored_plan(
    parties: list[Party],
    *,
    seed: int = 1,
    blocked_pairs: Iterable[Iterable[str]] = (),
) -> tuple[InMemoryPlanStore, MatchPlan]:
    """Create a plan for the parties and put it in a fresh in-memory store."""
    plan, _result = create_plan(
        make_event(),
        parties,
        blocked_pairs,
        rng=np.random.default_rng(seed),
        plan_id="plan-1",
    )
    store = InMemoryPlanStore()
    store.save(plan)
    return store, plan


def hosted_course(plan: MatchPlan, party_id: str) -> Course:
    return next(a.course for a in plan.assignments if a.party_id == party_id and a.is_host)


def write_parties(path: Path, rows: Iterable[dict[str, str]]) -> None:
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=PARTY_COLUMNS)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)


def party_row(idx: int, **fields: str) -> dict[str, str]:
    row = {
        "id": f"p{idx}",
        "name": f"Party {idx}",
        "headcount": "2",
        "address": f"{idx} Main Street",
        "address_notes": "",
        "course_preference": "",
        "cancelled": "",
        "lat": "",
        "lng": "",
    }
    row.update(fields)
    return row
