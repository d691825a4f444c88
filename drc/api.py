from __future__ import annotations

from threading import Lock
from typing import Any

from fastapi import FastAPI, HTTPException

from .db import StateStore
from .declarations import DeclarationSet
from .docker_ops import DockerDaemon
from .errors import CyclicDependency, InvalidAttribute
from .reconciler import Reconciler
from .resources import Resource


def create_app(store: StateStore | None = None, daemon: Any = None) -> FastAPI:
    """HTTP surface for planning and applying declarations.

    `store` and `daemon` default to the SQLite file from settings and the local
    Docker daemon; tests pass their own.
    """
    store = store or StateStore()
    daemon = daemon or DockerDaemon()
    reconciler = Reconciler(store, daemon)
    run_lock = Lock()

    app = FastAPI(title="Docker Resource Reconciler")

    @app.on_event("startup")
    def startup() -> None:
        store.init_db()

    def _resources(body: DeclarationSet) -> list[Resource]:
        try:
            return body.to_resources()
        except InvalidAttribute as e:
            raise HTTPException(status_code=422, detail=str(e))

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "healthy", "docker": bool(daemon.available())}

    @app.post("/plan")
    def plan(body: DeclarationSet) -> dict[str, Any]:
        try:
            return reconciler.plan(_resources(body)).to_dict()
        except (InvalidAttribute, CyclicDependency) as e:
            raise HTTPException(status_code=422, detail=str(e))

    @app.post("/apply")
    def apply(body: DeclarationSet, refresh: bool = False) -> dict[str, Any]:
        resources = _resources(body)
        if not run_lock.acquire(blocking=False):
            raise HTTPException(status_code=409, detail="Another reconciliation run is in progress.")
        try:
            report = reconciler.reconcile(resources, refresh=refresh)
        except (InvalidAttribute, CyclicDependency) as e:
            raise HTTPException(status_code=422, detail=str(e))
        finally:
            run_lock.release()
        return report.to_dict()

    @app.get("/state")
    def state() -> list[dict[str, Any]]:
        return [s.to_dict() for s in store.list_states()]

    @app.get("/events")
    def events(limit: int = 100) -> list[dict[str, Any]]:
        return store.latest_events(limit=max(1, min(limit, 1000)))

    app.state.reconciler = reconciler
    app.state.run_lock = run_lock
    return app


app = create_app()
