"""Course assignment, guest matching and cascade repairs for rotating dinner events."""

from dinerotate.cascade import apply_cascade, apply_cascade_kind, place_guests
from dinerotate.course_assignment import assign_courses
from dinerotate.engine import run_full_match, run_rematch
from dinerotate.matching import match_guests_to_hosts
from dinerotate.plan import MatchPlan, create_plan, freeze_courses, rematch_plan
from dinerotate.schedule import derive_schedule, schedule_envelopes

__all__ = [
    "MatchPlan",
    "apply_cascade",
    "apply_cascade_kind",
    "assign_courses",
    "create_plan",
    "derive_schedule",
    "freeze_courses",
    "match_guests_to_hosts",
    "place_guests",
    "rematch_plan",
    "run_full_match",
    "run_rematch",
    "schedule_envelopes",
]
