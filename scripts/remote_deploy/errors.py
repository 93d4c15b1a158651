"""Error taxonomy for the remote deploy run.

Every stage raises its own subclass of :class:`DeploymentError`. The
orchestrator catches the base class, reports the failing stage and the log
file path, and aborts the run.
"""

from __future__ import annotations


class DeploymentError(Exception):
    stage = "deploy"

    def __init__(self, message: str, *, stage: str | None = None, detail: str = ""):
        super().__init__(message)
        self.message = message
        if stage:
            self.stage = stage
        self.detail = str(detail or "").strip()

    def format(self) -> str:
        text = f"{self.stage} failed: {self.message}"
        if self.detail:
            text = f"{text}\n{self.detail}"
        return text


class ValidationError(DeploymentError):
    stage = "collect"

    def __init__(self, message: str, *, problems: list[str] | None = None, **kwargs):
        self.problems = list(problems or [])
        detail = kwargs.pop("detail", "") or "\n".join(f"- {p}" for p in self.problems)
        super().__init__(message, detail=detail, **kwargs)


class SyncError(DeploymentError):
    stage = "sync"


class MissingDescriptorError(SyncError):
    pass


class ProvisionError(DeploymentError):
    stage = "provision"


class TransportError(DeploymentError):
    stage = "transport"


class DeployError(DeploymentError):
    stage = "deploy"


class ProxyConfigError(DeploymentError):
    stage = "proxy"


class CleanupError(DeploymentError):
    stage = "cleanup"
