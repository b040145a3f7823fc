from __future__ import annotations

from pydantic import BaseModel, Field


class ReconcileRequest(BaseModel):
    service: str | None = Field(None, description="Only reconcile this service directory")
    workers: int | None = Field(None, ge=1, le=32, description="Services processed in parallel")
    sync: bool = Field(True, description="Pull the remote checkout before reconciling")


class ReconcileAccepted(BaseModel):
    run_id: int
    status: str = "running"


class ServiceInfo(BaseModel):
    name: str
    has_credentials: bool
    has_build: bool
    has_deploy: bool
    build_kind: str | None = None
