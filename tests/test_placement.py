from __future__ import annotations

import pytest

from dinerotate.cascade import HostDropout, apply_cascade, place_guests
from dinerotate.models import Assignment, CoursePairing, Party
from dinerotate.placement import suggest_placements, unplaced_guests
from dinerotate.plan import MatchPlan
from tests.utils import make_parties, stored_plan


def _parties(*ids: str) -> list[Party]:
    return [Party(id=i, address=f"{i} Street") for i in ids]


def _plan(**kwargs) -> MatchPlan:
    return MatchPlan(
        id="manual",
        event_id="summer",
        assignments=[Assignment("h1", "main"), Assignment("h2", "main")],
        pairings=[CoursePairing("main", "h1", "x")],
        **kwargs,
    )


def test_unplaced_guests() -> None:
    parties = _parties("h1", "h2", "x", "a", "b")

    assert unplaced_guests(_plan(), parties, "main") == ["a", "b"]


def test_blocked_guests_go_to_different_hosts() -> None:
    parties = _parties("h1", "h2", "x", "a", "b")
    plan = _plan(blocked_pairs={frozenset(("a", "b"))})

    suggestion = suggest_placements(plan, parties, "main")

    assert suggestion.unplaceable == []
    hosts = {p.guest_id: p.host_id for p in suggestion.placements}
    assert set(hosts) == {"a", "b"}
    assert hosts["a"] != hosts["b"]


def test_earlier_meetings_are_respected() -> None:
    parties = _parties("h1", "h2", "x", "a", "b")
    plan = _plan(blocked_pairs={frozenset(("a", "b"))})
    plan.pairings.append(CoursePairing("starter", "h2", "a"))

    suggestion = suggest_placements(plan, parties, "main")

    hosts = {p.guest_id: p.host_id for p in suggestion.placements}
    assert hosts == {"a": "h1", "b": "h2"}


def test_guest_without_any_option_is_unplaceable() -> None:
    parties = _parties("h1", "h2", "x", "a")
    plan = _plan(blocked_pairs={frozenset(("a", "h2")), frozenset(("a", "x"))})

    suggestion = suggest_placements(plan, parties, "main")

    assert suggestion.placements == []
    assert suggestion.unplaceable == ["a"]


def test_remaining_capacity_limits_placements() -> None:
    parties = _parties("h1", "x", "a", "b")
    plan = MatchPlan(
        id="manual",
        event_id="summer",
        assignments=[Assignment("h1", "main", max_guests=4)],
        pairings=[CoursePairing("main", "h1", "x")],
    )

    suggestion = suggest_placements(plan, parties, "main")

    assert len(suggestion.placements) == 1
    assert len(suggestion.unplaceable) == 1


def test_unknown_course() -> None:
    with pytest.raises(ValueError, match="Unknown course"):
        suggest_placements(_plan(), [], "brunch")


def test_suggestions_can_be_applied_after_host_dropout() -> None:
    parties = make_parties(6)
    store, _ = stored_plan(parties)
    dropout = apply_cascade(store, "plan-1", HostDropout("p1"), parties)
    parties[0].cancelled = True

    plan = store.get("plan-1")
    suggestion = suggest_placements(plan, parties, "starter")

    assert sorted(unplaced_guests(plan, parties, "starter")) == sorted(dropout.unplaced_guest_ids)
    assert len(suggestion.placements) + len(suggestion.unplaceable) == len(dropout.unplaced_guest_ids)
    assert len(suggestion.placements) <= 1  # p4 has one couple's worth of seats left
    assert all(p.host_id == "p4" for p in suggestion.placements)

    result = place_guests(store, "plan-1", suggestion.placements, parties)
    assert result.success, result.errors
