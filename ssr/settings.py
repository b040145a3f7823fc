from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .credentials import parse
from .errors import ConfigurationError


DEFAULT_ENV_FILE = "deploy.env"


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}.") from None


def _env_str(env: Mapping[str, str], *names: str, default: str | None = None) -> str | None:
    # First non-empty wins; later names are legacy aliases.
    for name in names:
        raw = env.get(name)
        if raw is not None and raw.strip():
            return raw.strip()
    return default


@dataclass(frozen=True)
class Settings:
    # Remote endpoint
    ssh_host: str
    remote_root: str
    ssh_user: str | None = None
    ssh_port: int | None = None
    ssh_identity: str | None = None
    command_timeout_s: int = 300

    # Layout
    local_root: str = "."
    discovery: str = "remote"  # remote|local

    # Repository sync (optional)
    git_repo_url: str | None = None
    git_branch: str = "main"

    # Swarm
    advertise_addr: str | None = None

    # Run
    workers: int = 1
    db_path: str = "ssr.db"

    # Email alerting (optional)
    enable_email: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    email_from: str | None = None
    email_to: str | None = None

    @property
    def ssh_target(self) -> str:
        return f"{self.ssh_user}@{self.ssh_host}" if self.ssh_user else self.ssh_host

    def remote_service_dir(self, service: str) -> str:
        return f"{self.remote_root.rstrip('/')}/{service}"

    def local_service_dir(self, service: str) -> str:
        return os.path.join(self.local_root, service)


def read_env_file(path: str) -> dict[str, str]:
    """Load ``KEY=VALUE`` pairs from a deploy.env style file (missing file -> {})."""
    return {e.key: e.value for e in parse(path)}


def load_settings(env: Mapping[str, str] | None = None, env_file: str | None = DEFAULT_ENV_FILE) -> Settings:
    """Build Settings from a deploy.env file overlaid with the process environment.

    Raises ConfigurationError when required keys are missing or malformed.
    """
    merged: dict[str, str] = {}
    if env_file:
        merged.update(read_env_file(env_file))
    merged.update(os.environ if env is None else env)

    ssh_host = _env_str(merged, "SSR_SSH_HOST", "DROPLET_HOST")
    remote_root = _env_str(merged, "SSR_REMOTE_ROOT", "REMOTE_REPO_PATH")
    missing = [n for n, v in (("SSR_SSH_HOST", ssh_host), ("SSR_REMOTE_ROOT", remote_root)) if not v]
    if missing:
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}. "
            f"Set them in the environment or in {env_file or DEFAULT_ENV_FILE}."
        )

    discovery = (_env_str(merged, "SSR_DISCOVERY", default="remote") or "remote").lower()
    if discovery not in {"remote", "local"}:
        raise ConfigurationError(f"SSR_DISCOVERY must be 'remote' or 'local', got {discovery!r}.")

    port = _env_int(merged, "SSR_SSH_PORT", 0) or _env_int(merged, "SSH_PORT", 0)
    timeout = _env_int(merged, "SSR_COMMAND_TIMEOUT_S", 300)
    if timeout <= 0:
        raise ConfigurationError("SSR_COMMAND_TIMEOUT_S must be positive.")

    return Settings(
        ssh_host=ssh_host,  # type: ignore[arg-type]
        remote_root=remote_root,  # type: ignore[arg-type]
        ssh_user=_env_str(merged, "SSR_SSH_USER", "SSH_USER"),
        ssh_port=port or None,
        ssh_identity=_env_str(merged, "SSR_SSH_IDENTITY", "SSH_KEY_PATH"),
        command_timeout_s=timeout,
        local_root=_env_str(merged, "SSR_LOCAL_ROOT", default=".") or ".",
        discovery=discovery,
        git_repo_url=_env_str(merged, "GIT_REPO_URL"),
        git_branch=_env_str(merged, "GIT_BRANCH", default="main") or "main",
        advertise_addr=_env_str(merged, "SSR_ADVERTISE_ADDR"),
        workers=max(1, _env_int(merged, "SSR_WORKERS", 1)),
        db_path=_env_str(merged, "SSR_DB_PATH", default="ssr.db") or "ssr.db",
        enable_email=_env_bool(merged, "SSR_ENABLE_EMAIL", False),
        smtp_host=_env_str(merged, "SSR_SMTP_HOST", default="smtp.gmail.com") or "smtp.gmail.com",
        smtp_port=_env_int(merged, "SSR_SMTP_PORT", 587),
        smtp_user=_env_str(merged, "SSR_SMTP_USER"),
        smtp_password=_env_str(merged, "SSR_SMTP_PASSWORD"),
        email_from=_env_str(merged, "SSR_EMAIL_FROM"),
        email_to=_env_str(merged, "SSR_EMAIL_TO"),
    )
