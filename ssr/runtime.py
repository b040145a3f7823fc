from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any


STAGES = ("secrets", "build", "deploy")

# Stage outcomes
OK = "ok"
SKIPPED = "skipped"
FAILED = "failed"

# Per-secret outcomes
CREATED = "created"
IN_USE = "in_use"


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class StageResult:
    service: str
    stage: str  # secrets|build|deploy
    outcome: str  # ok|skipped|failed
    message: str = ""
    exit_code: int | None = None
    output: str = ""


@dataclass(frozen=True)
class SecretResult:
    service: str
    secret: str
    outcome: str  # created|in_use|failed
    message: str = ""


@dataclass
class RunReport:
    """Append-only results of one reconciliation run.

    Safe to append from several worker threads.
    """

    action: str = "deploy"
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None
    stages: list[StageResult] = field(default_factory=list)
    secrets: list[SecretResult] = field(default_factory=list)
    fatal: str | None = None
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def add_stage(self, result: StageResult) -> None:
        with self._lock:
            self.stages.append(result)

    def add_secret(self, result: SecretResult) -> None:
        with self._lock:
            self.secrets.append(result)

    def merge(self, other: "RunReport") -> None:
        with other._lock:
            stages, secrets = list(other.stages), list(other.secrets)
        with self._lock:
            self.stages.extend(stages)
            self.secrets.extend(secrets)

    def finish(self, fatal: str | None = None) -> None:
        with self._lock:
            self.finished_at = utc_now()
            if fatal:
                self.fatal = fatal

    @property
    def failed(self) -> bool:
        with self._lock:
            return self.fatal is not None or any(s.outcome == FAILED for s in self.stages)

    def services(self) -> list[str]:
        with self._lock:
            return sorted({s.service for s in self.stages})

    def failed_services(self) -> list[str]:
        with self._lock:
            return sorted({s.service for s in self.stages if s.outcome == FAILED})

    def stage_of(self, service: str, stage: str) -> StageResult | None:
        with self._lock:
            for s in self.stages:
                if s.service == service and s.stage == stage:
                    return s
        return None

    def summary(self) -> dict[str, Any]:
        """Per stage: which services succeeded, were skipped or failed."""
        with self._lock:
            per_stage: dict[str, dict[str, list[str]]] = {
                st: {OK: [], SKIPPED: [], FAILED: []} for st in STAGES
            }
            for s in self.stages:
                per_stage.setdefault(s.stage, {OK: [], SKIPPED: [], FAILED: []})[s.outcome].append(s.service)
            for buckets in per_stage.values():
                for k in buckets:
                    buckets[k].sort()
            failures = [
                {
                    "service": s.service,
                    "stage": s.stage,
                    "message": s.message,
                    "exit_code": s.exit_code,
                    "output": s.output,
                }
                for s in sorted(self.stages, key=lambda x: (x.service, STAGES.index(x.stage) if x.stage in STAGES else 99))
                if s.outcome == FAILED
            ]
            secret_counts: dict[str, int] = {}
            for r in self.secrets:
                secret_counts[r.outcome] = secret_counts.get(r.outcome, 0) + 1
            return {
                "action": self.action,
                "started_at": self.started_at,
                "finished_at": self.finished_at,
                "fatal": self.fatal,
                "stages": per_stage,
                "secrets": secret_counts,
                "failures": failures,
            }
