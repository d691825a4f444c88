from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .db import ObservedState, StateStore
from .graph import DependencyGraph
from .resources import Reference, Resource, resolve_attributes


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    NOOP = "no-op"
    DELETE = "delete"


class _Unknown:
    """Output of an upstream that will only exist after it is (re)created."""

    def __repr__(self) -> str:
        return "(known after apply)"

    def __eq__(self, other: object) -> bool:
        return False

    def __hash__(self) -> int:
        return id(self)


UNKNOWN = _Unknown()


def changed_attributes(desired: dict[str, Any], observed: ObservedState) -> list[str]:
    keys = list(desired) + [k for k in observed.attributes if k not in desired]
    return [k for k in keys if desired.get(k) != observed.attributes.get(k)]


def diff(
    desired: dict[str, Any] | None,
    observed: ObservedState | None,
    mutable: frozenset[str] = frozenset(),
) -> Action:
    """Decide what to do with one resource.

    `desired` is the resolved attribute dict (None when the declaration is
    gone); `mutable` lists the attributes the kind can change in place.
    """
    if desired is None:
        return Action.DELETE if observed is not None else Action.NOOP
    if observed is None:
        return Action.CREATE
    changed = changed_attributes(desired, observed)
    if not changed:
        return Action.NOOP
    if all(k in mutable for k in changed):
        return Action.UPDATE
    return Action.REPLACE


@dataclass
class Step:
    resource_id: str
    kind: str
    action: Action
    resource: Resource | None = None  # None for a resource that is no longer declared
    observed: ObservedState | None = None
    desired: dict[str, Any] | None = None
    changed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "kind": self.kind,
            "action": self.action.value,
            "changed": self.changed,
            "desired": _jsonable(self.desired),
        }


@dataclass
class Plan:
    graph: DependencyGraph
    order: list[str]  # declared resources, topological
    steps: dict[str, Step]  # declared in `order`, then orphans

    def summary(self) -> dict[str, int]:
        counts = Counter(s.action.value for s in self.steps.values())
        return {a.value: counts.get(a.value, 0) for a in Action}

    def has_changes(self) -> bool:
        return any(s.action is not Action.NOOP for s in self.steps.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "summary": self.summary(),
            "has_changes": self.has_changes(),
            "steps": [s.to_dict() for s in self.steps.values()],
        }


def plan(graph: DependencyGraph, store: StateStore, allow_delete: bool = True) -> Plan:
    """Diff every declared resource in dependency order, then add orphans.

    References to an upstream that is being created or replaced resolve to
    UNKNOWN, so a dependent holding that reference in an immutable attribute
    is replaced as well.
    """
    order = graph.topological_order()
    steps: dict[str, Step] = {}

    def lookup(ref: Reference) -> Any:
        upstream = steps[ref.resource_id]
        if upstream.action in (Action.CREATE, Action.REPLACE):
            return UNKNOWN
        obs = store.get(ref.resource_id)
        if obs is None:
            return UNKNOWN
        return obs.outputs.get(ref.attribute, UNKNOWN)

    for rid in order:
        r = graph.resources[rid]
        observed = store.get(rid)
        desired = resolve_attributes(r, lookup)
        action = diff(desired, observed, r.mutable)
        changed = changed_attributes(desired, observed) if observed is not None else []
        # A refresh found the container stopped or gone.
        if observed is not None and observed.outputs.get("running") is False and action is not Action.REPLACE:
            action = Action.REPLACE
            changed.append("running")
        steps[rid] = Step(rid, r.kind, action, resource=r, observed=observed, desired=desired, changed=changed)

    for obs in store.list_states():
        if obs.resource_id in steps:
            continue
        action = Action.DELETE if allow_delete else Action.NOOP
        steps[obs.resource_id] = Step(obs.resource_id, obs.kind, action, observed=obs)

    return Plan(graph=graph, order=order, steps=steps)


def _jsonable(value: Any) -> Any:
    if value is UNKNOWN:
        return repr(UNKNOWN)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
