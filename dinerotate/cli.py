"""Command-line interface for dinerotate."""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

from dinerotate.cascade import Placement, apply_cascade_kind, place_guests
from dinerotate.errors import MatchingError, PlanNotFoundError
from dinerotate.models import COURSES, EventConfig, Party
from dinerotate.output import format_envelopes_csv, format_plan, format_report
from dinerotate.parser import create_event_template, parse_event_yaml, parse_parties_csv
from dinerotate.placement import suggest_placements
from dinerotate.plan import create_plan
from dinerotate.store import YamlPlanStore
from dinerotate.travel import HaversineTravel
from dinerotate.validation import check_plan


def _load_parties(path: Path | None) -> list[Party] | None:
    if path is None:
        return []
    if not path.exists():
        print(f"Error: Parties file not found: {path}", file=sys.stderr)
        return None
    try:
        return parse_parties_csv(path)
    except (OSError, ValueError) as e:
        print(f"Error parsing parties CSV: {e}", file=sys.stderr)
        return None


def _load_event(path: Path | None) -> tuple[EventConfig | None, list[tuple[str, str]]] | None:
    if path is None:
        return None, []
    if not path.exists():
        print(f"Error: Event file not found: {path}", file=sys.stderr)
        return None
    try:
        return parse_event_yaml(path)
    except (OSError, ValueError) as e:
        print(f"Error parsing event YAML: {e}", file=sys.stderr)
        return None


def cmd_match(args: argparse.Namespace) -> int:
    if args.event is None:
        template_path = args.output_template or Path("event_template.yaml")
        create_event_template(template_path)
        print(f"No event file provided. Created template at: {template_path}")
        print("Edit this file with your event date and times, then run again.")
        return 0

    parties = _load_parties(args.parties_csv)
    loaded = _load_event(args.event)
    if parties is None or loaded is None:
        return 1
    event, blocked_pairs = loaded
    if event is None:
        print(f"Error: No event configuration in {args.event}", file=sys.stderr)
        return 1

    active = [p for p in parties if p.active]
    print(f"Loaded {len(parties)} parties ({len(active)} active), {len(blocked_pairs)} blocked pairs")

    rng = np.random.default_rng(args.seed)
    try:
        plan, result = create_plan(event, parties, blocked_pairs, rng=rng, travel=HaversineTravel())
    except (MatchingError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.plan_dir:
        YamlPlanStore(args.plan_dir).save(plan)
        print(f"Saved plan {plan.id} to {args.plan_dir}")

    print()
    if args.csv:
        print(format_envelopes_csv(plan))
    else:
        print(format_plan(plan, parties, result.warnings))
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    parties = _load_parties(args.parties)
    if parties is None:
        return 1
    try:
        plan = YamlPlanStore(args.plan_dir).get(args.plan_id)
    except (PlanNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.csv:
        print(format_envelopes_csv(plan))
    else:
        print(format_plan(plan, parties))
    return 0


def cmd_cascade(args: argparse.Namespace) -> int:
    parties = _load_parties(args.parties)
    loaded = _load_event(args.event)
    if parties is None or loaded is None:
        return 1
    event, _blocked = loaded

    details = {
        "course": args.course,
        "new_host_id": args.new_host,
        "to_party_id": args.to,
        "courses": args.courses,
        "new_address": args.new_address,
        "new_address_notes": args.new_address_notes,
        "guest_ids": args.guests,
        "max_guests": args.max_guests,
        "new_party_id": args.new_party,
    }
    details = {k: v for k, v in details.items() if v is not None}

    store = YamlPlanStore(args.plan_dir)
    result = apply_cascade_kind(
        store,
        args.plan_id,
        args.kind,
        args.party,
        details,
        parties=parties,
        event=event,
        travel=HaversineTravel(),
        expected_revision=args.expected_revision,
    )

    if not result.success:
        for error in result.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    print(f"Applied {result.kind} for {args.party}")
    print(f"  Pairings: -{result.pairings_removed} / +{result.pairings_created}")
    print(
        f"  Envelopes: {result.envelopes_cancelled} cancelled, "
        f"{result.envelopes_created} created, {result.envelopes_updated} updated"
    )
    print(f"  Assignments: -{result.assignments_removed} / +{result.assignments_created}")
    for warning in result.warnings:
        print(f"  Warning: {warning}")
    if result.needs_reseating:
        print(f"  Needs a new seat: {', '.join(result.unplaced_guest_ids)}")
    return 0


def cmd_suggest(args: argparse.Namespace) -> int:
    parties = _load_parties(args.parties)
    loaded = _load_event(args.event)
    if parties is None or loaded is None:
        return 1
    event, _blocked = loaded

    store = YamlPlanStore(args.plan_dir)
    try:
        plan = store.get(args.plan_id)
    except (PlanNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    suggestion = suggest_placements(plan, parties, args.course, args.guests)
    if not suggestion.placements and not suggestion.unplaceable:
        print(f"Everyone has a seat for {args.course}.")
        return 0

    print(f"=== Suggested placements for {args.course} ===")
    for placement in suggestion.placements:
        print(f"  {placement.guest_id} -> {placement.host_id}")
    for guest_id in suggestion.unplaceable:
        print(f"  {guest_id}: no suitable host")

    if args.apply and suggestion.placements:
        result = place_guests(
            store,
            plan.id,
            suggestion.placements,
            parties,
            event=event,
            travel=HaversineTravel(),
            expected_revision=plan.revision,
        )
        if not result.success:
            for error in result.errors:
                print(f"Error: {error}", file=sys.stderr)
            return 1
        print(f"Seated {result.pairings_created} guests")
    return 0


def cmd_place(args: argparse.Namespace) -> int:
    parties = _load_parties(args.parties)
    loaded = _load_event(args.event)
    if parties is None or loaded is None:
        return 1
    event, _blocked = loaded

    result = place_guests(
        YamlPlanStore(args.plan_dir),
        args.plan_id,
        [Placement(guest_id=args.guest, host_id=args.host, course=args.course)],
        parties,
        event=event,
        travel=HaversineTravel(),
    )
    if not result.success:
        for error in result.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1
    print(f"Seated {args.guest} at {args.host} for {args.course}")
    for warning in result.warnings:
        print(f"  Warning: {warning}")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    parties = _load_parties(args.parties)
    if parties is None:
        return 1
    try:
        plan = YamlPlanStore(args.plan_dir).get(args.plan_id)
    except (PlanNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    report = check_plan(plan, parties)
    print(format_report(report))
    return 0 if report.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dinerotate",
        description="Plan and repair a rotating three-course dinner event.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  dinerotate match parties.csv --event event.yaml --seed 7 --plan-dir plans
  dinerotate cascade PLAN_ID --plan-dir plans --parties parties.csv --kind host_dropout --party p4
  dinerotate suggest PLAN_ID --plan-dir plans --parties parties.csv --course main --apply
  dinerotate check PLAN_ID --plan-dir plans --parties parties.csv
""",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    match = subparsers.add_parser("match", help="Assign courses and seat guests")
    match.add_argument("parties_csv", type=Path, help="Path to the CSV file with registered parties")
    match.add_argument("--event", type=Path, help="Path to the event configuration YAML file")
    match.add_argument("--seed", type=int, default=None, help="Random seed for guest order")
    match.add_argument("--plan-dir", type=Path, help="Directory to save the plan in")
    match.add_argument("--csv", action="store_true", help="Print envelopes as CSV")
    match.add_argument(
        "--output-template",
        type=Path,
        help="Path for event template (default: event_template.yaml)",
    )
    match.set_defaults(func=cmd_match)

    def plan_command(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("plan_id", help="Id of a saved plan")
        sub.add_argument("--plan-dir", type=Path, required=True, help="Directory holding saved plans")
        sub.add_argument("--parties", type=Path, help="Path to the CSV file with registered parties")
        return sub

    show = plan_command("show", "Print a saved plan")
    show.add_argument("--csv", action="store_true", help="Print envelopes as CSV")
    show.set_defaults(func=cmd_show)

    cascade = plan_command("cascade", "Apply a targeted repair to a saved plan")
    cascade.add_argument("--event", type=Path, help="Event YAML, used to schedule new envelopes")
    cascade.add_argument("--kind", required=True, help="Repair kind (e.g. guest_dropout, host_dropout)")
    cascade.add_argument("--party", required=True, help="Party the repair is about")
    cascade.add_argument("--course", choices=COURSES)
    cascade.add_argument("--courses", nargs="+", choices=COURSES, help="Courses to transfer")
    cascade.add_argument("--to", help="Party that takes over hosting")
    cascade.add_argument("--new-host", help="Host to move a guest to")
    cascade.add_argument("--new-address")
    cascade.add_argument("--new-address-notes")
    cascade.add_argument("--guests", nargs="+", help="Guests to seat at a promoted host")
    cascade.add_argument("--max-guests", type=int)
    cascade.add_argument("--new-party", help="Id of the party split off")
    cascade.add_argument("--expected-revision", type=int, help="Fail if the plan changed since this revision")
    cascade.set_defaults(func=cmd_cascade)

    suggest = plan_command("suggest", "Suggest hosts for guests without a seat")
    suggest.add_argument("--course", choices=COURSES, required=True)
    suggest.add_argument("--guests", nargs="+", help="Only place these guests")
    suggest.add_argument("--event", type=Path, help="Event YAML, used to schedule new envelopes")
    suggest.add_argument("--apply", action="store_true", help="Seat the suggested guests")
    suggest.set_defaults(func=cmd_suggest)

    place = plan_command("place", "Seat one guest at a host")
    place.add_argument("--guest", required=True)
    place.add_argument("--host", required=True)
    place.add_argument("--course", choices=COURSES, required=True)
    place.add_argument("--event", type=Path, help="Event YAML, used to schedule the new envelope")
    place.set_defaults(func=cmd_place)

    check = plan_command("check", "Report inconsistencies in a saved plan")
    check.set_defaults(func=cmd_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for dinerotate CLI."""
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
