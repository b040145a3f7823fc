import os
import shlex
import sys
import threading

import pytest

# Ensure project root is importable when the package is not installed.
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from ssr.db import Journal  # noqa: E402
from ssr.errors import ConnectivityError  # noqa: E402
from ssr.remote import CommandResult  # noqa: E402
from ssr.settings import Settings  # noqa: E402


REMOTE_ROOT = "/srv/box"


def _ok(stdout: str = "") -> CommandResult:
    return CommandResult(0, stdout, "")


def _err(stderr: str, code: int = 1) -> CommandResult:
    return CommandResult(code, "", stderr)


class FakeSwarm:
    """In-memory stand-in for a swarm host reached over SSH.

    Understands exactly the commands ssr.swarm_ops emits.
    """

    def __init__(self, remote_root: str = REMOTE_ROOT):
        self.root = remote_root
        self.dirs: set[str] = set()
        self.files: set[str] = set()
        self.compose_with_build: set[str] = set()
        self.secrets: dict[str, bytes] = {}
        # swarm service name -> secret names it references
        self.running: dict[str, set[str]] = {}
        # stack name -> secret names its descriptor references (become running on deploy)
        self.stack_secrets: dict[str, set[str]] = {}
        self.images: set[str] = set()
        self.deployed: list[str] = []
        self.fail_build: set[str] = set()
        self.fail_deploy: set[str] = set()
        self.fail_create: set[str] = set()
        self.swarm_active = True
        self.reachable = True
        self.fail_service_ls = False
        self.commands: list[str] = []
        self.inputs: list[bytes | None] = []
        self.removed: list[str] = []
        self.created: list[str] = []
        self.synced = 0
        self._lock = threading.Lock()

    # ---- setup helpers ----

    def add_service(self, name: str, compose: bool = False, build: bool = False, dockerfile: bool = False) -> None:
        d = f"{self.root}/{name}"
        self.dirs.add(name)
        if compose:
            self.files.add(f"{d}/docker-compose.yml")
            if build:
                self.compose_with_build.add(f"{d}/docker-compose.yml")
        if dockerfile:
            self.files.add(f"{d}/Dockerfile")

    def in_use(self) -> set[str]:
        return {s for refs in self.running.values() for s in refs}

    # ---- executor protocol ----

    def execute(self, command: str, input: bytes | None = None) -> CommandResult:
        if not self.reachable:
            raise ConnectivityError("fake host unreachable")
        with self._lock:
            self.commands.append(command)
            self.inputs.append(input)
            return self._dispatch(command, input)

    def _dispatch(self, command: str, input: bytes | None) -> CommandResult:
        if command == "true":
            return _ok()
        if command.startswith("mkdir -p ") and "git pull" in command:
            self.synced += 1
            return _ok("Already up to date.\n")
        if command == "docker service ls -q":
            if self.fail_service_ls:
                return _err("Error response from daemon: daemon busy")
            return _ok("".join(f"{s}\n" for s in sorted(self.running)))
        if command.startswith("cd "):
            first, rest = command.split(" && ", 1)
            return self._in_dir(shlex.split(first)[1], rest)

        argv = shlex.split(command)
        if argv[:3] == ["docker", "service", "inspect"]:
            unknown = [s for s in argv[5:] if s not in self.running]
            if unknown:
                return _err(f"Error: no such service: {unknown[0]}")
            return _ok("".join(f"{n}\n" for s in argv[5:] for n in sorted(self.running[s])))
        if argv[:3] == ["docker", "secret", "ls"]:
            return _ok("".join(f"{n}\n" for n in sorted(self.secrets)))
        if argv[:3] == ["docker", "secret", "rm"]:
            name = argv[3]
            if name not in self.secrets:
                return _err(f"Error: No such secret: {name}")
            if name in self.in_use():
                return _err(f"Error response from daemon: rpc error: secret '{name}' is in use by the following service: x")
            del self.secrets[name]
            self.removed.append(name)
            return _ok(f"{name}\n")
        if argv[:3] == ["docker", "secret", "create"]:
            name = argv[-2]
            if name in self.fail_create:
                return _err("Error response from daemon: invalid secret")
            if name in self.secrets:
                return _err(f"Error response from daemon: secret {name} already exists")
            self.secrets[name] = input or b""
            self.created.append(name)
            return _ok("abcdef123\n")
        if argv[:2] == ["test", "-f"]:
            return _ok() if argv[2] in self.files else _err("", 1)
        if argv[:2] == ["grep", "-Eq"]:
            return _ok() if argv[3] in self.compose_with_build else _err("", 1)
        if argv[:2] == ["docker", "build"]:
            tag, path = argv[3], argv[4]
            name = path.rsplit("/", 1)[-1]
            if name in self.fail_build:
                return _err("failed to solve: process did not complete successfully")
            self.images.add(tag)
            return _ok("Successfully built\n")
        if argv[:2] == ["docker", "info"]:
            return _ok("active\n" if self.swarm_active else "inactive\n")
        if argv[:3] == ["docker", "swarm", "init"]:
            self.swarm_active = True
            return _ok("Swarm initialized\n")
        if argv[0] == "find":
            return _ok("".join(f"{d}\n" for d in sorted(self.dirs)))
        return _err(f"fake: unknown command {command!r}", 127)

    def _in_dir(self, path: str, rest: str) -> CommandResult:
        name = path.rsplit("/", 1)[-1]
        argv = shlex.split(rest)
        if argv[:2] == ["docker", "compose"] and argv[-1] == "build":
            if name in self.fail_build:
                return _err("compose build failed")
            self.images.add(f"{name}:compose")
            return _ok()
        if argv[:3] == ["docker", "stack", "deploy"]:
            stack = argv[-1]
            if stack in self.fail_deploy:
                return _err("failed to create service: secret not found")
            missing = self.stack_secrets.get(stack, set()) - set(self.secrets)
            if missing:
                return _err(f"secret not found: {sorted(missing)[0]}")
            self.deployed.append(stack)
            self.running[f"{stack}_app"] = set(self.stack_secrets.get(stack, set()))
            return _ok(f"Updating service {stack}_app\n")
        return _err(f"fake: unknown command {rest!r}", 127)


@pytest.fixture()
def swarm() -> FakeSwarm:
    return FakeSwarm()


@pytest.fixture()
def local_root(tmp_path):
    root = tmp_path / "services"
    root.mkdir()
    return root


@pytest.fixture()
def settings(local_root, tmp_path) -> Settings:
    return Settings(
        ssh_host="box.example",
        remote_root=REMOTE_ROOT,
        local_root=str(local_root),
        db_path=str(tmp_path / "journal.db"),
    )


@pytest.fixture()
def journal(settings) -> Journal:
    j = Journal(settings.db_path)
    j.init()
    return j


@pytest.fixture()
def write_env(local_root):
    """Write ``<local_root>/<service>/.env`` with the given text."""

    def _write(service: str, text: str):
        d = local_root / service
        d.mkdir(exist_ok=True)
        p = d / ".env"
        p.write_text(text, encoding="utf-8")
        return p

    return _write
