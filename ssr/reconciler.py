from __future__ import annotations

import os
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from threading import Event

from . import swarm_ops
from .alerts import send_summary
from .credentials import CredentialEntry, parse, secret_name, secret_prefix
from .db import Journal
from .discovery import CREDENTIAL_FILE, ServiceDescriptor, describe, discover
from .errors import BuildError, ConnectivityError, DeployError, SecretOperationError, SyncError
from .remote import Executor
from .runtime import CREATED, FAILED, IN_USE, OK, SKIPPED, RunReport, SecretResult, StageResult
from .settings import Settings


class Reconciler:
    """Brings the swarm in line with the service directories, one service at a time.

    Per service: secrets -> build -> deploy. A failure stops that service's
    pipeline only. ConnectivityError and SyncError abort the whole run.
    """

    def __init__(self, settings: Settings, executor: Executor, journal: Journal | None = None):
        self.settings = settings
        self.ex = executor
        self.journal = journal

    # ---- journal helpers ----

    def _event(self, level: str, message: str, run_id: int | None, service: str | None = None, stage: str | None = None) -> None:
        if self.journal is not None:
            self.journal.log_event(level, message, run_id=run_id, service_name=service, stage=stage)

    def _start(self, action: str, run_id: int | None = None) -> tuple[RunReport, int | None]:
        report = RunReport(action=action)
        if run_id is None and self.journal is not None:
            run_id = self.journal.start_run(action)
        return report, run_id

    def _finish(self, report: RunReport, run_id: int | None, fatal: str | None = None) -> RunReport:
        report.finish(fatal)
        if fatal:
            status = "aborted"
        else:
            status = "failed" if report.failed else "ok"
        if self.journal is not None and run_id is not None:
            self.journal.finish_run(run_id, status, report.summary())
            self._event("ERROR" if status != "ok" else "INFO", f"Run finished: {status}", run_id)
        if report.failed:
            send_summary(self.settings, report)
        return report

    # ---- preparation ----

    def probe(self) -> None:
        res = self.ex.execute("true")
        if not res.ok:
            raise ConnectivityError(f"Remote probe failed on {self.settings.ssh_host}: {res.tail()}")

    def prepare(self, run_id: int | None = None, sync: bool = True) -> None:
        """Probe the channel, sync the checkout, make sure the swarm is active."""
        self.probe()

        if sync and self.settings.git_repo_url:
            self._event("INFO", f"Syncing {self.settings.remote_root} ({self.settings.git_branch})", run_id)
            res = swarm_ops.sync_repository(
                self.ex, self.settings.remote_root, self.settings.git_repo_url, self.settings.git_branch
            )
            if not res.ok:
                raise SyncError(f"Repository sync failed (exit {res.exit_code}): {res.tail()}")

        state = swarm_ops.swarm_state(self.ex)
        if state == "active":
            self._event("INFO", "Docker Swarm already initialized", run_id)
            return
        self._event("INFO", f"Initializing Docker Swarm (state: {state or 'unknown'})", run_id)
        res = swarm_ops.swarm_init(self.ex, self.settings.advertise_addr)
        if not res.ok:
            raise SyncError(f"Docker Swarm initialization failed (exit {res.exit_code}): {res.tail()}")

    # ---- discovery ----

    def list_services(self, only: str | None = None) -> list[ServiceDescriptor]:
        names = discover(self.settings, self.ex, only=only)
        return [describe(self.settings, self.ex, n) for n in sorted(names)]

    def credentials(self, service: str) -> list[CredentialEntry]:
        return parse(os.path.join(self.settings.local_service_dir(service), CREDENTIAL_FILE))

    @staticmethod
    def namespace_clashes(names: list[str]) -> set[str]:
        """Services whose names fold to the same secret namespace as another one."""
        by_lower: dict[str, list[str]] = defaultdict(list)
        for n in names:
            by_lower[n.lower()].append(n)
        return {n for group in by_lower.values() if len(group) > 1 for n in group}

    # ---- secrets ----

    def _replace_secret(self, service: str, name: str, value: str) -> str:
        in_use = swarm_ops.secret_in_use(self.ex, name)
        if in_use is None:
            raise SecretOperationError(service, f"could not query in-use status of {name}")
        if in_use:
            return IN_USE

        existing = swarm_ops.secret_names(self.ex)
        if existing is None:
            raise SecretOperationError(service, f"could not list secrets while replacing {name}")
        if name in existing:
            res = swarm_ops.remove_secret(self.ex, name)
            if not res.ok and not swarm_ops.secret_absent(res):
                raise SecretOperationError(service, f"failed to remove old {name}", res.exit_code, res.tail())

        res = swarm_ops.create_secret(self.ex, name, value, service)
        if not res.ok:
            raise SecretOperationError(service, f"failed to create {name}", res.exit_code, res.tail())
        return CREATED

    def reconcile_secrets(self, svc: ServiceDescriptor, report: RunReport, run_id: int | None = None, clash: bool = False) -> bool:
        try:
            entries = self.credentials(svc.name) if svc.has_credentials else []
        except (UnicodeDecodeError, OSError) as e:
            msg = f"cannot read {CREDENTIAL_FILE}: {e}"
            report.add_stage(StageResult(svc.name, "secrets", FAILED, msg))
            self._event("ERROR", msg, run_id, svc.name, "secrets")
            return False
        if not entries:
            report.add_stage(StageResult(svc.name, "secrets", SKIPPED, "no credential entries"))
            return True

        if clash:
            msg = "secret namespace clashes with another service differing only in case"
            report.add_stage(StageResult(svc.name, "secrets", FAILED, msg))
            self._event("ERROR", msg, run_id, svc.name, "secrets")
            return False

        seen: set[str] = set()
        failures: list[SecretOperationError] = []
        counts = {CREATED: 0, IN_USE: 0}
        for entry in entries:
            label = entry.key
            try:
                try:
                    name = secret_name(svc.name, entry.key)
                except ValueError as e:
                    raise SecretOperationError(svc.name, str(e)) from None
                label = name
                if name in seen:
                    raise SecretOperationError(svc.name, f"duplicate key {entry.key!r} maps to {name}")
                seen.add(name)
                outcome = self._replace_secret(svc.name, name, entry.value)
            except SecretOperationError as e:
                failures.append(e)
                report.add_secret(SecretResult(svc.name, label, FAILED, e.message))
                self._event("ERROR", str(e), run_id, svc.name, "secrets")
                continue
            counts[outcome] += 1
            report.add_secret(SecretResult(svc.name, name, outcome))
            if outcome == IN_USE:
                self._event("INFO", f"Secret {name} is in use by a running service, left untouched", run_id, svc.name, "secrets")
            else:
                self._event("INFO", f"Created secret: {name}", run_id, svc.name, "secrets")

        if failures:
            first = failures[0]
            report.add_stage(
                StageResult(
                    svc.name,
                    "secrets",
                    FAILED,
                    f"{len(failures)} of {len(entries)} secrets failed; first: {first.message}",
                    first.exit_code,
                    first.output,
                )
            )
            return False
        report.add_stage(
            StageResult(svc.name, "secrets", OK, f"{counts[CREATED]} created, {counts[IN_USE]} in use")
        )
        return True

    # ---- build / deploy ----

    def build(self, svc: ServiceDescriptor) -> str | None:
        """Build the service image. Returns a message, or None when there is nothing to build."""
        rdir = self.settings.remote_service_dir(svc.name)
        if svc.build_kind == "compose":
            res = swarm_ops.compose_build(self.ex, rdir)
            done = f"Built images for {svc.name} with docker compose"
        elif svc.build_kind == "dockerfile":
            res = swarm_ops.docker_build(self.ex, svc.name, rdir)
            done = f"Built image {swarm_ops.image_tag(svc.name)}"
        else:
            return None
        if not res.ok:
            raise BuildError(svc.name, "image build failed", res.exit_code, res.tail())
        return done

    def deploy(self, svc: ServiceDescriptor) -> str | None:
        if not svc.has_deploy:
            return None
        res = swarm_ops.stack_deploy(self.ex, svc.name, self.settings.remote_service_dir(svc.name))
        if not res.ok:
            raise DeployError(svc.name, "stack deploy failed", res.exit_code, res.tail())
        return f"Deployed stack {svc.name}"

    def _stage(self, svc: ServiceDescriptor, stage: str, fn, report: RunReport, run_id: int | None) -> bool:
        try:
            msg = fn(svc)
        except (BuildError, DeployError) as e:
            report.add_stage(StageResult(svc.name, stage, FAILED, e.message, e.exit_code, e.output))
            self._event("ERROR", str(e), run_id, svc.name, stage)
            return False
        if msg is None:
            report.add_stage(StageResult(svc.name, stage, SKIPPED, f"no {stage} descriptor"))
            return True
        report.add_stage(StageResult(svc.name, stage, OK, msg))
        self._event("INFO", msg, run_id, svc.name, stage)
        return True

    def reconcile_service(
        self,
        svc: ServiceDescriptor,
        report: RunReport,
        run_id: int | None = None,
        clash: bool = False,
        abort: Event | None = None,
    ) -> bool:
        """Secrets, then build, then deploy. ``abort`` is checked before each stage."""
        if abort is not None and abort.is_set():
            return False
        self._event("INFO", f"Processing service: {svc.name} ({', '.join(svc.artifacts()) or 'no artifacts'})", run_id, svc.name)
        try:
            swarm_ops.validate_service_name(svc.name)
        except ValueError as e:
            report.add_stage(StageResult(svc.name, "secrets", FAILED, str(e)))
            self._event("ERROR", str(e), run_id, svc.name)
            for stage in ("build", "deploy"):
                report.add_stage(StageResult(svc.name, stage, SKIPPED, "not attempted: invalid service name"))
            return False
        if not self.reconcile_secrets(svc, report, run_id, clash):
            for stage in ("build", "deploy"):
                report.add_stage(StageResult(svc.name, stage, SKIPPED, "not attempted: secrets failed"))
            return False
        if abort is not None and abort.is_set():
            return False
        if not self._stage(svc, "build", self.build, report, run_id):
            report.add_stage(StageResult(svc.name, "deploy", SKIPPED, "not attempted: build failed"))
            return False
        if abort is not None and abort.is_set():
            return False
        return self._stage(svc, "deploy", self.deploy, report, run_id)

    # ---- actions ----

    def run(
        self, only: str | None = None, workers: int | None = None, sync: bool = True, run_id: int | None = None
    ) -> RunReport:
        """Reconcile every discovered service (or just ``only``)."""
        report, run_id = self._start("deploy", run_id)
        try:
            self.prepare(run_id, sync=sync)
            # Clashes are judged against every service, not just the filtered one.
            names = discover(self.settings, self.ex)
            clashes = self.namespace_clashes(sorted(names))
            if only is not None:
                names = {n for n in names if n == only}
            services = [describe(self.settings, self.ex, n) for n in sorted(names)]
            if not services:
                self._event("WARN", f"No services discovered{f' matching {only!r}' if only else ''}", run_id)

            n = max(1, workers or self.settings.workers)
            if n == 1 or len(services) <= 1:
                for svc in services:
                    self.reconcile_service(svc, report, run_id, svc.name in clashes)
            else:
                abort = Event()

                def _guarded(svc: ServiceDescriptor) -> bool:
                    try:
                        return self.reconcile_service(svc, report, run_id, svc.name in clashes, abort)
                    except (ConnectivityError, SyncError):
                        abort.set()
                        raise

                with ThreadPoolExecutor(max_workers=n) as pool:
                    futures = [pool.submit(_guarded, svc) for svc in services]
                    try:
                        for f in futures:
                            f.result()
                    except (ConnectivityError, SyncError):
                        pool.shutdown(wait=True, cancel_futures=True)
                        raise
        except (ConnectivityError, SyncError) as e:
            self._event("ERROR", str(e), run_id)
            return self._finish(report, run_id, fatal=str(e))
        return self._finish(report, run_id)

    def cleanup(self, service: str) -> RunReport:
        """Remove every secret namespaced to ``service``. Ignores in-use protection."""
        report, run_id = self._start("cleanup")
        prefix = secret_prefix(service)
        try:
            self.probe()
            names = swarm_ops.secret_names(self.ex)
            if names is None:
                report.add_stage(StageResult(service, "secrets", FAILED, "could not list secrets"))
                return self._finish(report, run_id)

            removed, failed = 0, 0
            for name in sorted(n for n in names if n.startswith(prefix)):
                res = swarm_ops.remove_secret(self.ex, name)
                if res.ok or swarm_ops.secret_absent(res):
                    removed += 1
                    report.add_secret(SecretResult(service, name, "removed"))
                    self._event("INFO", f"Removed secret: {name}", run_id, service, "secrets")
                else:
                    failed += 1
                    report.add_secret(SecretResult(service, name, FAILED, res.tail()))
                    self._event("ERROR", f"Failed to remove secret {name}: {res.tail()}", run_id, service, "secrets")
            if failed:
                report.add_stage(StageResult(service, "secrets", FAILED, f"{failed} secrets could not be removed"))
            elif removed:
                report.add_stage(StageResult(service, "secrets", OK, f"{removed} secrets removed"))
            else:
                report.add_stage(StageResult(service, "secrets", SKIPPED, "no secrets found"))
        except ConnectivityError as e:
            self._event("ERROR", str(e), run_id)
            return self._finish(report, run_id, fatal=str(e))
        return self._finish(report, run_id)
