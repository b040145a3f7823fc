from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable

from .remote import Executor, quote
from .settings import Settings
from . import swarm_ops


RESERVED_NAMES = frozenset({"scripts", "docs", ".git"})
CREDENTIAL_FILE = ".env"


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    has_credentials: bool
    has_build: bool
    has_deploy: bool
    build_kind: str | None = None  # compose|dockerfile

    def artifacts(self) -> list[str]:
        out = []
        if self.has_credentials:
            out.append("credentials")
        if self.has_build:
            out.append(f"build:{self.build_kind}")
        if self.has_deploy:
            out.append("deploy")
        return out


def is_service_name(name: str, reserved: Iterable[str] = RESERVED_NAMES, only: str | None = None) -> bool:
    """Allow/deny predicate over discovered directory names."""
    if not name or name.startswith("."):
        return False
    if name in set(reserved):
        return False
    if only is not None and name != only:
        return False
    return True


def filter_names(names: Iterable[str], only: str | None = None, reserved: Iterable[str] = RESERVED_NAMES) -> set[str]:
    reserved = frozenset(reserved)
    return {n for n in names if is_service_name(n, reserved, only)}


def discover_local(root: str, only: str | None = None) -> set[str]:
    if not os.path.isdir(root):
        return set()
    return filter_names((e.name for e in os.scandir(root) if e.is_dir()), only=only)


def discover_remote(ex: Executor, root: str, only: str | None = None) -> set[str]:
    res = ex.execute(f"find {quote(root)} -mindepth 1 -maxdepth 1 -type d -printf '%f\\n'")
    if not res.ok:
        return set()
    return filter_names((line.strip() for line in res.stdout.splitlines()), only=only)


def discover(settings: Settings, ex: Executor, only: str | None = None) -> set[str]:
    if settings.discovery == "local":
        return discover_local(settings.local_root, only=only)
    return discover_remote(ex, settings.remote_root, only=only)


def describe(settings: Settings, ex: Executor, name: str) -> ServiceDescriptor:
    """Probe which artifacts a service has.

    Credentials are read from the local tree; build and deploy descriptors
    live on the remote checkout.
    """
    has_credentials = os.path.isfile(os.path.join(settings.local_service_dir(name), CREDENTIAL_FILE))
    rdir = settings.remote_service_dir(name)
    compose = f"{rdir}/{swarm_ops.COMPOSE_FILE}"

    has_deploy = swarm_ops.remote_file_exists(ex, compose)
    build_kind: str | None = None
    if has_deploy and swarm_ops.compose_has_build(ex, compose):
        build_kind = "compose"
    elif swarm_ops.remote_file_exists(ex, f"{rdir}/{swarm_ops.DOCKERFILE}"):
        build_kind = "dockerfile"

    return ServiceDescriptor(
        name=name,
        has_credentials=has_credentials,
        has_build=build_kind is not None,
        has_deploy=has_deploy,
        build_kind=build_kind,
    )
