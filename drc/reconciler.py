from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import Event
from typing import Any, Callable

from .db import ObservedState, StateStore, utc_now
from .diff import Action, Plan, Step, plan as build_plan
from .errors import DaemonError
from .graph import DependencyGraph, build_graph
from .resources import PortMapping, Reference, Resource, resolve_attributes, validate_declarations
from .settings import settings


class Status(str, Enum):
    PLANNED = "planned"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


_BLOCKING = (Status.FAILED, Status.SKIPPED)


@dataclass
class ResourceResult:
    resource_id: str
    action: Action
    status: Status = Status.PLANNED
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "action": self.action.value,
            "status": self.status.value,
            "error": self.error,
        }


@dataclass
class RunReport:
    status: Status
    results: list[ResourceResult]
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None

    def by_status(self, status: Status) -> list[str]:
        return [r.resource_id for r in self.results if r.status is status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "results": [r.to_dict() for r in self.results],
        }


class Reconciler:
    """Brings the daemon in line with a set of declarations, one resource at a time."""

    def __init__(self, store: StateStore, daemon: Any, allow_delete: bool | None = None):
        self.store = store
        self.daemon = daemon
        self.allow_delete = settings.allow_delete if allow_delete is None else allow_delete

    def plan(self, resources: list[Resource]) -> Plan:
        """Validate, build the graph and diff. Raises before any daemon call."""
        return self._diff(self._graph(resources))

    def reconcile(self, resources: list[Resource], cancel: Event | None = None, refresh: bool = False) -> RunReport:
        # Declaration errors must surface before refresh talks to the daemon.
        graph = self._graph(resources)
        if refresh:
            self.refresh()
        return self.apply(self._diff(graph), cancel=cancel)

    def _graph(self, resources: list[Resource]) -> DependencyGraph:
        validate_declarations(resources)
        return build_graph(resources)

    def _diff(self, graph: DependencyGraph) -> Plan:
        p = build_plan(graph, self.store, allow_delete=self.allow_delete)
        summary = ", ".join(f"{k}={v}" for k, v in p.summary().items() if v)
        self.store.log_event("INFO", f"Planned {len(p.steps)} resources ({summary or 'empty'})")
        return p

    def refresh(self) -> None:
        """Record whether each known container is still running."""
        for obs in self.store.list_states():
            if obs.kind != "container" or "id" not in obs.outputs:
                continue
            try:
                running = self.daemon.container_is_running(obs.outputs["id"])
            except DaemonError as e:
                self.store.log_event("WARN", f"Refresh failed: {e}", resource_id=obs.resource_id)
                continue
            if obs.outputs.get("running") != running:
                outputs = {**obs.outputs, "running": running}
                self.store.put(ObservedState(obs.resource_id, obs.kind, obs.attributes, outputs, obs.depends_on))
                if not running:
                    self.store.log_event("WARN", "Container is not running", resource_id=obs.resource_id)

    def apply(self, plan: Plan, cancel: Event | None = None) -> RunReport:
        """Destroy phase (dependents first), then create/update phase (dependencies first).

        Already-applied resources are never rolled back; a failed resource
        blocks only the resources that depend on it.
        """
        results = {rid: ResourceResult(rid, step.action) for rid, step in plan.steps.items()}
        report = RunReport(status=Status.APPLYING, results=list(results.values()))

        for rid in self._destroy_order(plan):
            if self._cancelled(cancel, results):
                break
            step = plan.steps[rid]
            blocker = self._destroy_blocker(rid, plan, results)
            if blocker:
                self._skip(results[rid], f"dependent {blocker} was not removed")
                continue
            self._run(step, results[rid], self._destroy)
            if step.action is Action.DELETE and results[rid].status is Status.APPLYING:
                results[rid].status = Status.APPLIED

        for rid in plan.order:
            if self._cancelled(cancel, results):
                break
            result = results[rid]
            if result.status in _BLOCKING:
                continue
            blocked = [d for d in plan.graph.dependencies(rid) if results[d].status in _BLOCKING]
            if blocked:
                self._skip(result, f"upstream {blocked[0]} {results[blocked[0]].status.value}")
                continue
            self._run(plan.steps[rid], result, self._create_or_update)
            if result.status is Status.APPLYING:
                result.status = Status.APPLIED

        # Orphans left untouched (deletes disabled) are already where they should be.
        for rid, step in plan.steps.items():
            if step.resource is None and step.action is Action.NOOP and results[rid].status is Status.PLANNED:
                results[rid].status = Status.APPLIED

        ok = all(r.status is Status.APPLIED for r in report.results)
        report.status = Status.APPLIED if ok else Status.FAILED
        report.finished_at = utc_now()
        self.store.log_event(
            "INFO" if ok else "ERROR",
            f"Run {report.status.value}: applied={len(report.by_status(Status.APPLIED))} "
            f"failed={len(report.by_status(Status.FAILED))} skipped={len(report.by_status(Status.SKIPPED))}",
        )
        self.store.prune_events()
        return report

    # -- ordering -----------------------------------------------------------

    def _destroy_order(self, plan: Plan) -> list[str]:
        """Resources to remove, every resource before the ones it was using."""
        pending = [
            rid for rid, s in plan.steps.items()
            if s.action in (Action.DELETE, Action.REPLACE) and s.observed is not None
        ]
        users = {rid: [o for o in pending if rid in plan.steps[o].observed.depends_on] for rid in pending}
        order: list[str] = []
        while pending:
            ready = next((rid for rid in pending if all(u in order for u in users[rid])), pending[0])
            order.append(ready)
            pending.remove(ready)
        return order

    def _destroy_blocker(self, rid: str, plan: Plan, results: dict[str, ResourceResult]) -> str | None:
        for other, step in plan.steps.items():
            if step.observed is None or rid not in step.observed.depends_on:
                continue
            if results[other].status in _BLOCKING:
                return other
        return None

    # -- execution ----------------------------------------------------------

    def _run(self, step: Step, result: ResourceResult, fn: Callable[[Step], None]) -> None:
        result.status = Status.APPLYING
        try:
            fn(step)
        except DaemonError as e:
            hint = "retryable" if e.retryable else "needs manual intervention"
            self._fail(result, str(e), hint)
        except Exception as e:
            self._fail(result, f"{type(e).__name__}: {e}", "unexpected")

    def _fail(self, result: ResourceResult, message: str, hint: str) -> None:
        result.status = Status.FAILED
        result.error = message
        self.store.log_event("ERROR", f"{result.action.value} failed ({hint}): {message}", resource_id=result.resource_id)

    def _skip(self, result: ResourceResult, reason: str) -> None:
        result.status = Status.SKIPPED
        result.error = reason
        self.store.log_event("WARN", f"Skipped: {reason}", resource_id=result.resource_id)

    def _cancelled(self, cancel: Event | None, results: dict[str, ResourceResult]) -> bool:
        if cancel is None or not cancel.is_set():
            return False
        for r in results.values():
            if r.status in (Status.PLANNED, Status.APPLYING):
                self._skip(r, "run cancelled")
        return True

    def _destroy(self, step: Step) -> None:
        obs = step.observed
        if obs is None:
            raise ValueError(f"Nothing recorded for {step.resource_id}; cannot remove it")
        if obs.kind == "network":
            self.daemon.remove_network(obs.outputs["id"])
        elif obs.kind == "image":
            if not obs.attributes.get("keep_locally"):
                self.daemon.remove_image(obs.outputs["image_id"])
        elif obs.kind == "container":
            self.daemon.remove_container(obs.outputs["id"])
        else:
            raise ValueError(f"Unknown resource kind '{obs.kind}'")
        self.store.delete(step.resource_id)
        self.store.log_event("INFO", f"Removed {obs.kind}", resource_id=step.resource_id)

    def _create_or_update(self, step: Step) -> None:
        if step.action is Action.NOOP:
            return
        r = step.resource
        if r is None:
            raise ValueError(f"{step.resource_id} is not declared; cannot {step.action.value} it")
        attrs = resolve_attributes(r, self._lookup)

        if step.action is Action.UPDATE:
            # Only in-place attributes changed; for every kind so far that is state-only.
            if step.observed is None:
                raise ValueError(f"Nothing recorded for {step.resource_id}; cannot update it")
            outputs = dict(step.observed.outputs)
        elif r.kind == "network":
            outputs = {"id": self.daemon.create_network(attrs["name"]), "name": attrs["name"]}
        elif r.kind == "image":
            image_id, digest = self.daemon.pull_image(attrs["name"])
            outputs = {"image_id": image_id, "digest": digest}
        elif r.kind == "container":
            ports = [PortMapping(p["internal"], p["external"]) for p in attrs["ports"]]
            container_id = self.daemon.create_container(attrs["name"], attrs["image"], attrs["networks"], ports)
            outputs = {"id": container_id}
        else:
            raise ValueError(f"Unknown resource kind '{r.kind}'")

        depends_on = [ref.resource_id for ref in r.references()]
        self.store.put(ObservedState(step.resource_id, r.kind, attrs, outputs, depends_on))
        self.store.log_event("INFO", f"{step.action.value}: {attrs.get('name')}", resource_id=step.resource_id)

    def _lookup(self, ref: Reference) -> Any:
        obs = self.store.get(ref.resource_id)
        if obs is None or ref.attribute not in obs.outputs:
            raise KeyError(f"{ref} is not available; {ref.resource_id} has not been applied")
        return obs.outputs[ref.attribute]
