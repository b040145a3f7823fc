from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass
from typing import Callable, Protocol

from .errors import ConnectivityError
from .settings import Settings


# ssh reserves 255 for its own failures (resolve, connect, auth).
SSH_TRANSPORT_FAILURE = 255


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def tail(self, limit: int = 400) -> str:
        text = (self.stderr.strip() or self.stdout.strip())
        return text[-limit:]


class Executor(Protocol):
    def execute(self, command: str, input: bytes | None = None) -> CommandResult: ...


def quote(value: str) -> str:
    return shlex.quote(value)


def _ssh_failure_hint(error_text: str) -> str:
    lowered = error_text.lower()
    if "no route to host" in lowered:
        return "No route to host. Check network reachability and SSR_SSH_HOST."
    if "connection timed out" in lowered:
        return "SSH timed out. Verify the server is online and the SSH port is reachable."
    if "connection refused" in lowered:
        return "SSH connection refused. Confirm the SSH daemon is running."
    if "permission denied" in lowered:
        return "SSH authentication failed. Check the key loaded in ssh-agent or SSR_SSH_IDENTITY."
    if "could not resolve hostname" in lowered:
        return "Host resolution failed. Check SSR_SSH_HOST for typos/DNS issues."
    return ""


class SSHExecutor:
    """Runs shell commands on one fixed host through the ``ssh`` client.

    No retries: callers decide. A transport failure or timeout raises
    ConnectivityError; any other exit status is returned to the caller.
    """

    def __init__(
        self,
        settings: Settings,
        on_command: Callable[[str, CommandResult], None] | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.settings = settings
        self.on_command = on_command
        self._run = runner

    def argv(self, command: str) -> list[str]:
        s = self.settings
        argv = ["ssh", "-o", "BatchMode=yes"]
        if s.ssh_port:
            argv.extend(["-p", str(s.ssh_port)])
        if s.ssh_identity:
            argv.extend(["-i", s.ssh_identity])
        argv.extend([s.ssh_target, command])
        return argv

    def execute(self, command: str, input: bytes | None = None) -> CommandResult:
        try:
            proc = self._run(
                self.argv(command),
                input=input if input is not None else b"",
                capture_output=True,
                timeout=self.settings.command_timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise ConnectivityError(
                f"Remote command timed out after {self.settings.command_timeout_s}s on {self.settings.ssh_host}: {command}"
            ) from None
        except OSError as e:
            raise ConnectivityError(f"Could not start ssh client: {e}") from e

        result = CommandResult(
            exit_code=proc.returncode,
            stdout=(proc.stdout or b"").decode("utf-8", errors="replace"),
            stderr=(proc.stderr or b"").decode("utf-8", errors="replace"),
        )
        if result.exit_code == SSH_TRANSPORT_FAILURE:
            detail = result.stderr.strip()
            hint = _ssh_failure_hint(detail)
            raise ConnectivityError(
                f"SSH to {self.settings.ssh_target} failed: {detail or 'exit 255'}" + (f" {hint}" if hint else "")
            )
        if self.on_command:
            self.on_command(command, result)
        return result
