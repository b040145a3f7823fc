from __future__ import annotations

import re

from .remote import CommandResult, Executor, quote


SERVICE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]{0,62}$")
SECRET_ABSENT_RE = re.compile(r"no such secret|not found", re.IGNORECASE)

COMPOSE_FILE = "docker-compose.yml"
DOCKERFILE = "Dockerfile"
SECRET_LABEL = "ssr.service"
IN_USE_FORMAT = "{{range .Spec.TaskTemplate.ContainerSpec.Secrets}}{{println .SecretName}}{{end}}"


def validate_service_name(name: str) -> None:
    # Also keeps names safe inside remote shell commands and as stack names.
    if not SERVICE_NAME_RE.match(name):
        raise ValueError(
            f"Invalid service name {name!r}. Use letters/numbers and -._ starting with a letter or digit (max 63 chars)."
        )


# ---- secrets ----

def list_secrets(ex: Executor) -> CommandResult:
    return ex.execute("docker secret ls --format '{{.Name}}'")


def secret_names(ex: Executor) -> set[str] | None:
    res = list_secrets(ex)
    if not res.ok:
        return None
    return {line.strip() for line in res.stdout.splitlines() if line.strip()}


def service_ids(ex: Executor) -> list[str] | None:
    res = ex.execute("docker service ls -q")
    if not res.ok:
        return None
    return [line.strip() for line in res.stdout.splitlines() if line.strip()]


def secrets_in_use(ex: Executor) -> set[str] | None:
    """Secret names referenced by every service currently known to the swarm, or None when either query fails."""
    ids = service_ids(ex)
    if ids is None:
        return None
    if not ids:
        return set()
    res = ex.execute(f"docker service inspect --format {quote(IN_USE_FORMAT)} " + " ".join(quote(i) for i in ids))
    if not res.ok:
        return None
    return {line.strip() for line in res.stdout.splitlines() if line.strip()}


def secret_in_use(ex: Executor, name: str) -> bool | None:
    """True/False, or None when the swarm could not be queried."""
    used = secrets_in_use(ex)
    if used is None:
        return None
    return name in used


def remove_secret(ex: Executor, name: str) -> CommandResult:
    return ex.execute(f"docker secret rm {quote(name)}")


def secret_absent(res: CommandResult) -> bool:
    return not res.ok and bool(SECRET_ABSENT_RE.search(res.stderr + res.stdout))


def create_secret(ex: Executor, name: str, value: str, service: str) -> CommandResult:
    # Payload travels on stdin, never on the command line.
    return ex.execute(
        f"docker secret create --label {quote(f'{SECRET_LABEL}={service}')} {quote(name)} -",
        input=value.encode("utf-8"),
    )


# ---- descriptors ----

def remote_file_exists(ex: Executor, path: str) -> bool:
    return ex.execute(f"test -f {quote(path)}").ok


def compose_has_build(ex: Executor, compose_path: str) -> bool:
    return ex.execute(f"grep -Eq '^[[:space:]]*build:' {quote(compose_path)}").ok


# ---- build / deploy ----

def compose_build(ex: Executor, service_dir: str) -> CommandResult:
    return ex.execute(f"cd {quote(service_dir)} && docker compose -f {COMPOSE_FILE} build")


def image_tag(service: str) -> str:
    # Image repository names must be lower case.
    return f"{service.lower()}:latest"


def docker_build(ex: Executor, service: str, service_dir: str) -> CommandResult:
    return ex.execute(f"docker build -t {quote(image_tag(service))} {quote(service_dir)}")


def stack_deploy(ex: Executor, service: str, service_dir: str) -> CommandResult:
    return ex.execute(f"cd {quote(service_dir)} && docker stack deploy -c {COMPOSE_FILE} {quote(service)}")


# ---- host preparation ----

def swarm_state(ex: Executor) -> str:
    res = ex.execute("docker info --format '{{.Swarm.LocalNodeState}}'")
    return res.stdout.strip() if res.ok else ""


def swarm_init(ex: Executor, advertise_addr: str | None = None) -> CommandResult:
    cmd = "docker swarm init"
    if advertise_addr:
        cmd += f" --advertise-addr {quote(advertise_addr)}"
    return ex.execute(cmd)


def sync_repository(ex: Executor, root: str, repo_url: str, branch: str) -> CommandResult:
    r, u, b = quote(root), quote(repo_url), quote(branch)
    return ex.execute(
        f"mkdir -p {r} && cd {r} && "
        f"if [ -d .git ]; then git pull origin {b}; "
        f"else git init && git remote add origin {u} && git pull origin {b}; fi"
    )
