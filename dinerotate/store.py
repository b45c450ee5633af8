"""Plan persistence: an in-memory store and a YAML file store."""

import copy
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import yaml

from dinerotate.errors import ConfigError, PlanConflictError, PlanNotFoundError
from dinerotate.models import Assignment, CoursePairing, Envelope, RevealTimes
from dinerotate.plan import MatchPlan

logger = logging.getLogger(__name__)


class PlanStore(Protocol):
    """Where plans live. Repairs read and write through a transaction."""

    def get(self, plan_id: str) -> MatchPlan: ...

    def save(self, plan: MatchPlan) -> None: ...

    def transaction(
        self, plan_id: str, expected_revision: int | None = None
    ) -> Any: ...  # context manager yielding a working copy of the plan


class InMemoryPlanStore:
    """
    Plans kept in a dict.

    A transaction hands out a deep copy of the plan; the copy replaces the
    stored plan only if the block finishes without raising, so a failed
    repair leaves nothing half-applied.
    """

    def __init__(self) -> None:
        self._plans: dict[str, MatchPlan] = {}

    def get(self, plan_id: str) -> MatchPlan:
        try:
            return self._plans[plan_id]
        except KeyError:
            raise PlanNotFoundError(f"Unknown match plan: {plan_id}") from None

    def save(self, plan: MatchPlan) -> None:
        self._plans[plan.id] = plan

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._plans

    @contextmanager
    def transaction(self, plan_id: str, expected_revision: int | None = None) -> Iterator[MatchPlan]:
        current = self.get(plan_id)
        if expected_revision is not None and current.revision != expected_revision:
            raise PlanConflictError(
                f"Plan {plan_id} is at revision {current.revision}, expected {expected_revision}"
            )
        working = copy.deepcopy(current)
        yield working
        working.revision = current.revision + 1
        self.save(working)


class YamlPlanStore(InMemoryPlanStore):
    """Plans stored as one YAML file per plan in a directory."""

    def __init__(self, directory: Path) -> None:
        super().__init__()
        self.directory = Path(directory)

    def path_for(self, plan_id: str) -> Path:
        return self.directory / f"{plan_id}.yaml"

    def get(self, plan_id: str) -> MatchPlan:
        path = self.path_for(plan_id)
        if not path.exists():
            raise PlanNotFoundError(f"Unknown match plan: {plan_id}")
        return load_plan(path)

    def save(self, plan: MatchPlan) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        dump_plan(plan, self.path_for(plan.id))
        logger.debug("Saved plan %s revision %d", plan.id, plan.revision)

    def __contains__(self, plan_id: object) -> bool:
        return isinstance(plan_id, str) and self.path_for(plan_id).exists()


def plan_to_dict(plan: MatchPlan) -> dict[str, Any]:
    """Plain-data form of a plan, suitable for YAML."""

    def envelope_dict(envelope: Envelope) -> dict[str, Any]:
        data = asdict(envelope)
        if envelope.times is not None:
            data["times"] = {k: v.isoformat() for k, v in asdict(envelope.times).items()}
        return data

    return {
        "id": plan.id,
        "event_id": plan.event_id,
        "version": plan.version,
        "status": plan.status,
        "revision": plan.revision,
        "superseded_by": plan.superseded_by,
        "frozen_courses": sorted(plan.frozen_courses),
        "blocked_pairs": sorted(sorted(pair) for pair in plan.blocked_pairs),
        "stats": dict(plan.stats),
        "assignments": [asdict(a) for a in plan.assignments],
        "pairings": [asdict(p) for p in plan.pairings],
        "envelopes": [envelope_dict(e) for e in plan.envelopes],
    }


def plan_from_dict(data: dict[str, Any]) -> MatchPlan:
    """Rebuild a plan written by plan_to_dict."""
    try:
        envelopes = []
        for raw in data.get("envelopes") or []:
            raw = dict(raw)
            times = raw.pop("times", None)
            if times:
                times = RevealTimes(**{k: datetime.fromisoformat(v) for k, v in times.items()})
            envelopes.append(Envelope(**raw, times=times))

        return MatchPlan(
            id=data["id"],
            event_id=data["event_id"],
            version=data.get("version", 1),
            status=data.get("status", "draft"),
            revision=data.get("revision", 0),
            superseded_by=data.get("superseded_by"),
            frozen_courses=set(data.get("frozen_courses") or []),
            blocked_pairs={frozenset(pair) for pair in data.get("blocked_pairs") or []},
            stats=dict(data.get("stats") or {}),
            assignments=[Assignment(**a) for a in data.get("assignments") or []],
            pairings=[CoursePairing(**p) for p in data.get("pairings") or []],
            envelopes=envelopes,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Malformed plan data: {e}") from e


def dump_plan(plan: MatchPlan, path: Path) -> None:
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(plan_to_dict(plan), f, default_flow_style=False, sort_keys=False)


def load_plan(path: Path) -> MatchPlan:
    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ConfigError(f"{path} does not contain a match plan")
    return plan_from_dict(data)
