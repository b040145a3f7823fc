from __future__ import annotations

from threading import Lock, Thread

from fastapi import FastAPI, HTTPException, Query

from .api_models import ReconcileAccepted, ReconcileRequest, ServiceInfo
from .db import Journal
from .errors import ConnectivityError
from .reconciler import Reconciler
from .remote import Executor, SSHExecutor
from .settings import Settings, load_settings


def create_app(
    settings: Settings | None = None,
    executor: Executor | None = None,
    journal: Journal | None = None,
) -> FastAPI:
    """Status and trigger API. Run with ``uvicorn --factory ssr.api:create_app``."""
    settings = settings or load_settings()
    journal = journal or Journal(settings.db_path)
    journal.init()
    executor = executor or SSHExecutor(settings)
    rec = Reconciler(settings, executor, journal)

    # One reconciliation at a time against the shared swarm.
    busy = Lock()

    app = FastAPI(title="Swarm Stack Reconciler")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/services", response_model=list[ServiceInfo])
    def services(service: str | None = None) -> list[ServiceInfo]:
        try:
            found = rec.list_services(service)
        except ConnectivityError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return [
            ServiceInfo(
                name=s.name,
                has_credentials=s.has_credentials,
                has_build=s.has_build,
                has_deploy=s.has_deploy,
                build_kind=s.build_kind,
            )
            for s in found
        ]

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000), run_id: int | None = None) -> list[dict]:
        return journal.latest_events(limit=limit, run_id=run_id)

    @app.get("/runs/{run_id}")
    def get_run(run_id: int) -> dict:
        run = journal.get_run(run_id)
        if not run:
            raise HTTPException(status_code=404, detail="unknown run")
        return run

    @app.post("/reconcile", response_model=ReconcileAccepted, status_code=202)
    def reconcile(req: ReconcileRequest) -> ReconcileAccepted:
        if not busy.acquire(blocking=False):
            raise HTTPException(status_code=409, detail="a reconciliation is already running")
        try:
            run_id = journal.start_run("deploy")
        except Exception:
            busy.release()
            raise

        def _work() -> None:
            try:
                rec.run(only=req.service, workers=req.workers, sync=req.sync, run_id=run_id)
            except Exception as e:
                journal.log_event("ERROR", f"Reconciliation crashed: {type(e).__name__}: {e}", run_id=run_id)
                journal.finish_run(run_id, "aborted", {"fatal": str(e)})
            finally:
                busy.release()

        Thread(target=_work, daemon=True).start()
        return ReconcileAccepted(run_id=run_id)

    return app
