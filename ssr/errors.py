from __future__ import annotations


class SSRError(Exception):
    """Base class for reconciler errors."""


class ConfigurationError(SSRError):
    """Required local configuration is missing or invalid. Fatal at startup."""


class ConnectivityError(SSRError):
    """The remote command channel could not be used. Fatal for the run."""


class SyncError(SSRError):
    """Run preparation (repository sync, swarm init) failed. Fatal for the run."""


class StageError(SSRError):
    """A per-service failure. Recorded in the run report; the run continues."""

    stage = "unknown"

    def __init__(self, service: str, message: str, exit_code: int | None = None, output: str = ""):
        super().__init__(message)
        self.service = service
        self.message = message
        self.exit_code = exit_code
        self.output = output

    def __str__(self) -> str:
        text = f"[{self.stage}] {self.service}: {self.message}"
        if self.exit_code is not None:
            text += f" (exit {self.exit_code})"
        return text


class SecretOperationError(StageError):
    stage = "secrets"


class BuildError(StageError):
    stage = "build"


class DeployError(StageError):
    stage = "deploy"
