from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone

import pytest

from dinerotate.cascade import (
    AddressChange,
    CascadeRejected,
    GuestDropout,
    HostDropout,
    Placement,
    PromoteHost,
    Reassign,
    ResignHost,
    Split,
    TransferHost,
    apply_cascade,
    apply_cascade_kind,
    build_mutation,
    place_guests,
)
from dinerotate.models import HOST_ENVELOPE_NOTES
from dinerotate.plan import freeze_courses
from dinerotate.travel import StaticTravel
from tests.utils import make_event, make_parties, stored_plan

# Step A on six parties without preferences:
# starter p1 p4, main p2 p5, dessert p3 p6


STARTER_START = datetime(2025, 6, 14, 17, 30, tzinfo=timezone.utc)
BEFORE_EVENT = datetime(2025, 6, 13, 12, 0, tzinfo=timezone.utc)
AFTER_STARTER = datetime(2025, 6, 14, 23, 0, tzinfo=timezone.utc)


def _forty_minutes_apart(count: int = 6) -> StaticTravel:
    ids = [f"p{i}" for i in range(1, count + 1)]
    return StaticTravel({(a, b): 40 for a in ids for b in ids if a < b})


@pytest.fixture
def parties():
    return make_parties(6)


@pytest.fixture
def setup(parties):
    store, _plan = stored_plan(parties)
    return store, parties


def test_guest_dropout(setup) -> None:
    store, parties = setup
    as_guest = [p for p in store.get("plan-1").pairings if p.guest_id == "p2"]

    result = apply_cascade(store, "plan-1", GuestDropout("p2"), parties)

    plan = store.get("plan-1")
    assert result.success
    assert result.pairings_removed == len(as_guest) == 2
    assert result.envelopes_cancelled == 3
    assert not [p for p in plan.pairings if p.guest_id == "p2"]
    assert all(e.cancelled for e in plan.envelopes if e.party_id == "p2")
    assert plan.revision == 1


def test_host_dropout_frees_its_guests(setup) -> None:
    store, parties = setup
    before = store.get("plan-1")
    guests = before.guests_of("p1", "starter")

    result = apply_cascade(store, "plan-1", HostDropout("p1"), parties)

    plan = store.get("plan-1")
    assert result.success
    assert result.unplaced_guest_ids == guests
    assert result.needs_reseating
    assert result.assignments_removed == 1
    assert result.pairings_removed == len(guests) + 2
    assert not [p for p in plan.pairings if "p1" in (p.host_id, p.guest_id)]
    assert not [e for e in plan.active_envelopes() if "p1" in (e.host_id, e.party_id)]
    assert not [a for a in plan.assignments if a.party_id == "p1"]


def _course_records(plan, course):
    pairings = sorted((p.host_id, p.guest_id) for p in plan.pairings if p.course == course)
    envelopes = sorted(
        (copy.deepcopy(e) for e in plan.envelopes if e.course == course),
        key=lambda e: (e.party_id, e.host_id, e.cancelled),
    )
    return pairings, envelopes


def test_resign_host_for_one_course(setup) -> None:
    store, parties = setup
    before = store.get("plan-1")
    guests = before.guests_of("p2", "main")
    untouched = {course: _course_records(before, course) for course in ("starter", "dessert")}

    result = apply_cascade(store, "plan-1", ResignHost("p2", course="main"), parties)

    plan = store.get("plan-1")
    assert result.success
    assert result.unplaced_guest_ids == guests
    assert not plan.hosts_course("p2", "main")
    assert not [p for p in plan.pairings if p.host_id == "p2"]
    assert all(e.cancelled for e in plan.envelopes if e.host_id == "p2")
    # Starter and dessert are left exactly as they were
    for course, records in untouched.items():
        assert _course_records(plan, course) == records


def test_resign_course_the_party_does_not_host(setup) -> None:
    store, parties = setup

    result = apply_cascade(store, "plan-1", ResignHost("p2", course="starter"), parties)

    assert not result.success
    assert result.errors == ["p2 does not host starter"]
    assert store.get("plan-1").revision == 0


def test_frozen_course_blocks_repairs_but_not_dropouts(setup) -> None:
    store, parties = setup
    with store.transaction("plan-1") as plan:
        freeze_courses(plan, ["main"])

    rejected = apply_cascade(store, "plan-1", ResignHost("p2", course="main"), parties)
    dropout = apply_cascade(store, "plan-1", GuestDropout("p1"), parties)

    assert not rejected.success
    assert rejected.errors == ["Course main is frozen"]
    assert dropout.success


def test_address_change(setup) -> None:
    store, parties = setup

    result = apply_cascade(
        store, "plan-1", AddressChange("p1", "9 New Road", "Ring twice"), parties, now=BEFORE_EVENT
    )

    plan = store.get("plan-1")
    hosted = [e for e in plan.active_envelopes() if e.host_id == "p1"]
    assert result.envelopes_updated == len(hosted) == len(plan.guests_of("p1", "starter")) + 1
    assert all(e.destination_address == "9 New Road" for e in hosted)
    for envelope in hosted:
        expected = HOST_ENVELOPE_NOTES if envelope.is_host_envelope else "Ring twice"
        assert envelope.destination_notes == expected
    assert result.warnings == []


def test_address_change_reschedules_guest_envelopes(setup) -> None:
    store, parties = setup
    assert all(e.travel_minutes is None for e in store.get("plan-1").envelopes if not e.is_host_envelope)

    result = apply_cascade(
        store,
        "plan-1",
        AddressChange("p1", "9 New Road"),
        parties,
        event=make_event(),
        travel=_forty_minutes_apart(),
        now=BEFORE_EVENT,
    )

    plan = store.get("plan-1")
    assert result.success, result.errors
    for envelope in plan.active_envelopes():
        if envelope.host_id != "p1":
            continue
        assert envelope.times is not None
        if envelope.is_host_envelope:
            assert envelope.travel_minutes == 0
        else:
            assert envelope.travel_minutes == 40
            assert STARTER_START - envelope.times.street_at >= timedelta(minutes=50)


def test_address_change_to_an_address_already_in_use(setup) -> None:
    store, parties = setup

    result = apply_cascade(store, "plan-1", AddressChange("p1", "3 Main Street"), parties, now=BEFORE_EVENT)

    assert result.success
    assert result.warnings == ["Address 3 Main Street is already used by 1 other party: p3"]


def test_address_change_after_reveal(setup) -> None:
    store, parties = setup
    hosted = [e for e in store.get("plan-1").active_envelopes() if e.host_id == "p1"]

    early = apply_cascade(store, "plan-1", AddressChange("p1", "9 New Road"), parties, now=BEFORE_EVENT)
    late = apply_cascade(store, "plan-1", AddressChange("p1", "10 New Road"), parties, now=AFTER_STARTER)

    assert early.warnings == []
    assert late.success
    assert late.warnings == [
        f"{len(hosted)} envelope(s) already revealed the old address; guests may have seen it"
    ]
    # The change still goes through
    plan = store.get("plan-1")
    assert all(e.destination_address == "10 New Road" for e in plan.active_envelopes() if e.host_id == "p1")


def test_reassign_guest_to_other_host(setup) -> None:
    store, parties = setup
    plan = store.get("plan-1")
    guest = plan.guests_of("p1", "starter")[0]

    result = apply_cascade(store, "plan-1", Reassign(guest, "starter", "p4"), parties)

    plan = store.get("plan-1")
    assert result.success, result.errors
    assert result.pairings_removed == 1
    assert result.pairings_created == 1
    assert result.envelopes_cancelled == 1
    assert [p.host_id for p in plan.pairings if p.guest_id == guest and p.course == "starter"] == ["p4"]
    assert not [e for e in plan.envelopes if e.party_id == guest and e.course == "starter"]


def test_reassign_into_full_table_warns(setup) -> None:
    store, parties = setup
    with store.transaction("plan-1") as plan:
        table = plan.host_assignment("p4", "starter")
        table.max_guests = 2 * len(plan.guests_of("p4", "starter"))
    full = table.max_guests
    guest = store.get("plan-1").guests_of("p1", "starter")[0]

    result = apply_cascade(store, "plan-1", Reassign(guest, "starter", "p4"), parties)

    assert result.success, result.errors
    assert result.warnings == [f"p4 is over capacity for starter ({full + 2}/{full})"]
    assert guest in store.get("plan-1").guests_of("p4", "starter")


@pytest.mark.parametrize(
    "mutation, error",
    [
        (Reassign("p2", "starter", "p3"), "p3 is not a host for starter"),
        (Reassign("p1", "starter", "p4"), "p1 hosts starter and cannot be seated as a guest"),
        (Reassign("p2", "brunch", "p4"), "Unknown course: brunch"),
    ],
)
def test_reassign_rejections(setup, mutation, error) -> None:
    store, parties = setup
    before = copy.deepcopy(store.get("plan-1"))

    result = apply_cascade(store, "plan-1", mutation, parties)

    assert not result.success
    assert result.errors == [error]
    assert store.get("plan-1") == before


def test_blocked_pairs_reject_reassign() -> None:
    parties = make_parties(6)
    store, plan = stored_plan(parties, blocked_pairs=[("p2", "p4")])
    assert "p2" in plan.guests_of("p1", "starter")

    result = apply_cascade(store, "plan-1", Reassign("p2", "starter", "p4"), parties)

    assert not result.success
    assert result.errors == ["p2 is blocked from meeting p4"]


def test_transfer_host(setup) -> None:
    store, parties = setup
    before = store.get("plan-1")
    new_host = before.guests_of("p1", "starter")[0]
    other_guests = [g for g in before.guests_of("p1", "starter") if g != new_host]

    result = apply_cascade(store, "plan-1", TransferHost("p1", new_host, ("starter",)), parties)

    plan = store.get("plan-1")
    assert result.success, result.errors
    assert plan.hosts_course(new_host, "starter")
    assert not plan.hosts_course("p1", "starter")
    assert plan.guests_of(new_host, "starter") == other_guests
    assert result.unplaced_guest_ids == ["p1"]

    active = plan.active_envelopes()
    for guest in other_guests:
        (envelope,) = [e for e in active if e.party_id == guest and e.course == "starter"]
        assert envelope.host_id == new_host
        assert envelope.destination_address == f"{new_host[1:]} Main Street"
    (own,) = [e for e in active if e.party_id == new_host and e.course == "starter"]
    assert own.is_host_envelope
    assert own.destination_notes == HOST_ENVELOPE_NOTES
    assert not [e for e in active if e.party_id == "p1" and e.course == "starter"]


def test_transfer_host_reschedules_repointed_envelopes(setup) -> None:
    store, parties = setup
    before = store.get("plan-1")
    new_host = before.guests_of("p1", "starter")[0]
    other_guests = [g for g in before.guests_of("p1", "starter") if g != new_host]

    result = apply_cascade(
        store,
        "plan-1",
        TransferHost("p1", new_host, ("starter",)),
        parties,
        event=make_event(),
        travel=_forty_minutes_apart(),
    )

    plan = store.get("plan-1")
    assert result.success, result.errors
    active = plan.active_envelopes()
    for guest in other_guests:
        (envelope,) = [e for e in active if e.party_id == guest and e.course == "starter"]
        assert envelope.travel_minutes == 40
        assert envelope.times is not None
        assert STARTER_START - envelope.times.street_at >= timedelta(minutes=50)
        assert STARTER_START - envelope.times.number_at >= timedelta(minutes=40)
    (own,) = [e for e in active if e.party_id == new_host and e.course == "starter"]
    assert own.travel_minutes == 0


def test_transfer_host_to_existing_host_is_rejected(setup) -> None:
    store, parties = setup

    result = apply_cascade(store, "plan-1", TransferHost("p1", "p4", ("starter",)), parties)

    assert not result.success
    assert result.errors == ["p4 already hosts starter"]


def test_promote_host(setup) -> None:
    store, parties = setup
    before = store.get("plan-1")
    promoted = before.guests_of("p2", "main")[0]
    moved = before.guests_of("p5", "main")[0]

    result = apply_cascade(
        store, "plan-1", PromoteHost(promoted, "main", guest_ids=(moved,)), parties, event=make_event()
    )

    plan = store.get("plan-1")
    assert result.success, result.errors
    assignment = plan.host_assignment(promoted, "main")
    assert assignment is not None
    assert assignment.max_guests == 8
    assert plan.guests_of(promoted, "main") == [moved]
    assert moved not in plan.guests_of("p5", "main")
    assert promoted not in plan.guests_of("p2", "main")

    active = plan.active_envelopes()
    (own,) = [e for e in active if e.party_id == promoted and e.course == "main"]
    assert own.is_host_envelope
    assert own.times is not None
    (guest_envelope,) = [e for e in active if e.party_id == moved and e.course == "main"]
    assert guest_envelope.host_id == promoted
    assert guest_envelope.times is not None


def test_promote_host_without_address(setup) -> None:
    store, parties = setup
    parties[1].address = ""

    result = apply_cascade(store, "plan-1", PromoteHost("p2", "starter"), parties)

    assert not result.success
    assert result.errors == ["p2 has no address and cannot host"]


def test_split_reports_new_party(setup) -> None:
    store, parties = setup

    result = apply_cascade(store, "plan-1", Split("p3", "p3b"), parties)

    assert result.success
    assert result.unplaced_guest_ids == ["p3b"]


def test_unknown_kind_and_missing_details(setup) -> None:
    store, parties = setup

    unknown = apply_cascade_kind(store, "plan-1", "teleport", "p1", parties=parties)
    missing = apply_cascade_kind(store, "plan-1", "reassign", "p2", {"course": "main"}, parties=parties)

    assert not unknown.success
    assert unknown.errors == ["Unknown cascade type: teleport"]
    assert not missing.success
    assert missing.errors == ["details.new_host_id required for reassign"]
    assert store.get("plan-1").revision == 0


def test_build_mutation() -> None:
    assert build_mutation("transfer_host", "p1", {"to_party_id": "p2", "courses": ["main"]}) == TransferHost(
        "p1", "p2", ("main",)
    )
    assert build_mutation("resign_host", "p1") == ResignHost("p1")
    with pytest.raises(CascadeRejected, match="party_id is required"):
        build_mutation("guest_dropout", "")


def test_unknown_plan_and_stale_revision(setup) -> None:
    store, parties = setup

    missing = apply_cascade(store, "nope", GuestDropout("p1"), parties)
    stale = apply_cascade(store, "plan-1", GuestDropout("p1"), parties, expected_revision=5)

    assert not missing.success
    assert missing.errors == ["Unknown match plan: nope"]
    assert not stale.success
    assert "expected 5" in stale.errors[0]


def test_place_guests_after_host_dropout(setup) -> None:
    store, parties = setup
    dropout = apply_cascade(store, "plan-1", HostDropout("p1"), parties)
    guest = dropout.unplaced_guest_ids[0]

    result = place_guests(
        store, "plan-1", [Placement(guest, "p4", "starter")], parties, event=make_event()
    )

    plan = store.get("plan-1")
    assert result.success, result.errors
    assert guest in plan.guests_of("p4", "starter")
    (envelope,) = [e for e in plan.active_envelopes() if e.party_id == guest and e.course == "starter"]
    assert envelope.host_id == "p4"
    assert envelope.times is not None


def test_place_guests_is_all_or_nothing(setup) -> None:
    store, parties = setup
    dropout = apply_cascade(store, "plan-1", HostDropout("p1"), parties)
    guest = dropout.unplaced_guest_ids[0]
    seated = store.get("plan-1").guests_of("p4", "starter")[0]
    before = copy.deepcopy(store.get("plan-1"))

    result = place_guests(
        store,
        "plan-1",
        [Placement(guest, "p4", "starter"), Placement(seated, "p4", "starter")],
        parties,
    )

    assert not result.success
    assert result.errors == [f"Guest {seated} already has a seat for starter"]
    assert store.get("plan-1") == before
