"""Non-interactive SSH session to the deploy target.

Remote work is expressed as an ordered list of :class:`RemoteCommand`
descriptors. Each one is executed through the same multiplexed SSH
connection (ControlMaster), so a stage opens exactly one login on the host,
while every command still reports its own exit status.

Security note: this module shells out to `ssh`.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from scripts.remote_deploy.config import DeploymentConfig
from scripts.remote_deploy.errors import DeploymentError, ProvisionError


logger = logging.getLogger(__name__)

LOG_PREFIX = "[remote-deploy]"

CONNECTIVITY_TIMEOUT_SECONDS = 15

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass(frozen=True)
class RemoteCommand:
    command: str
    description: str
    tolerate_failure: bool = False
    input_text: str | None = None
    cwd: str | None = None

    def render(self) -> str:
        if self.cwd:
            return f"cd {shlex.quote(self.cwd)} && {self.command}"
        return self.command


@dataclass(frozen=True)
class CommandResult:
    command: RemoteCommand
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def output_text(self) -> str:
        return str(self.stderr or "").strip() or str(self.stdout or "").strip()


def ssh_failure_hint(error_text: str) -> str:
    lowered = str(error_text or "").lower()
    if "no route to host" in lowered:
        return "No route to host. Check VPN/LAN reachability and the remote host address."
    if "connection timed out" in lowered or "operation timed out" in lowered:
        return "SSH timed out. Verify the server is online and port 22 is reachable."
    if "connection refused" in lowered:
        return "SSH connection refused. Confirm SSH daemon is running and port 22 is open."
    if "permission denied" in lowered:
        return "SSH authentication failed. Verify the SSH key and the remote username."
    if "could not resolve hostname" in lowered:
        return "Host resolution failed. Check the remote host for typos/DNS issues."
    return ""


def ssh_base_options(*, ssh_key: Path) -> list[str]:
    return [
        "-i",
        str(ssh_key),
        "-o",
        "BatchMode=yes",
        "-o",
        "StrictHostKeyChecking=accept-new",
    ]


def build_ssh_cmd(*, config: DeploymentConfig, remote_command: str, control_path: str | None = None) -> list[str]:
    cmd = ["ssh", *ssh_base_options(ssh_key=config.ssh_key)]
    if control_path:
        cmd.extend(
            [
                "-o",
                "ControlMaster=auto",
                "-o",
                f"ControlPath={control_path}",
                "-o",
                "ControlPersist=60",
            ]
        )
    cmd.extend([config.ssh_target, remote_command])
    return cmd


def build_ssh_exit_cmd(*, config: DeploymentConfig, control_path: str) -> list[str]:
    return [
        "ssh",
        "-o",
        f"ControlPath={control_path}",
        "-O",
        "exit",
        config.ssh_target,
    ]


class RemoteSession:
    """One SSH login on the target, shared by every command of a stage."""

    def __init__(
        self,
        config: DeploymentConfig,
        *,
        runner: Runner | None = None,
        control_dir: str | Path | None = None,
        multiplex: bool = True,
    ):
        self.config = config
        self._runner = runner or subprocess.run
        self._tmpdir: tempfile.TemporaryDirectory | None = None
        self.control_path: str | None = None
        if multiplex:
            if control_dir is None:
                self._tmpdir = tempfile.TemporaryDirectory(prefix="remote-deploy-ssh-")
                control_dir = self._tmpdir.name
            # %C hashes host/port/user so the socket path stays short.
            self.control_path = str(Path(control_dir) / "cm-%C")
        self._opened = False

    def __enter__(self) -> "RemoteSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._opened and self.control_path:
            result = self._runner(
                build_ssh_exit_cmd(config=self.config, control_path=self.control_path),
                check=False,
                capture_output=True,
                text=True,
            )
            if result.returncode != 0:
                logger.debug("%s ssh master exit returned %s", LOG_PREFIX, result.returncode)
        self._opened = False
        if self._tmpdir is not None:
            self._tmpdir.cleanup()
            self._tmpdir = None

    def check_connectivity(self) -> None:
        cmd = build_ssh_cmd(config=self.config, remote_command="echo SSH_OK", control_path=self.control_path)
        try:
            result = self._runner(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=CONNECTIVITY_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            raise ProvisionError(
                f"SSH connectivity check timed out after {CONNECTIVITY_TIMEOUT_SECONDS}s",
                detail="Verify the server is online and reachable on port 22.",
            )
        self._opened = True
        if result.returncode != 0:
            text = str(result.stderr or "").strip() or str(result.stdout or "").strip()
            detail = " ".join(p for p in (text, ssh_failure_hint(text)) if p)
            raise ProvisionError(
                f"SSH connectivity check to {self.config.ssh_target} failed (exit code {result.returncode})",
                detail=detail,
            )
        logger.info("%s 🔗 Connected to %s", LOG_PREFIX, self.config.ssh_target)

    def run(self, command: RemoteCommand) -> CommandResult:
        """Run one command. Never raises on a non-zero exit."""
        rendered = command.render()
        logger.debug("%s $ %s", LOG_PREFIX, rendered)
        completed = self._runner(
            build_ssh_cmd(config=self.config, remote_command=rendered, control_path=self.control_path),
            input=command.input_text,
            check=False,
            capture_output=True,
            text=True,
        )
        self._opened = True
        result = CommandResult(
            command=command,
            returncode=int(completed.returncode),
            stdout=str(completed.stdout or ""),
            stderr=str(completed.stderr or ""),
        )
        if result.stdout.strip():
            logger.debug("%s stdout:\n%s", LOG_PREFIX, result.stdout.rstrip())
        if result.stderr.strip():
            logger.debug("%s stderr:\n%s", LOG_PREFIX, result.stderr.rstrip())
        return result

    def run_batch(
        self,
        commands: Sequence[RemoteCommand],
        *,
        error_cls: type[DeploymentError] = DeploymentError,
    ) -> list[CommandResult]:
        """Run commands in order, stopping at the first failure that is not tolerated."""
        results: list[CommandResult] = []
        for command in commands:
            logger.info("%s   • %s", LOG_PREFIX, command.description)
            result = self.run(command)
            results.append(result)
            if result.ok:
                continue
            if command.tolerate_failure:
                logger.info(
                    "%s     (ignored exit code %s: %s)",
                    LOG_PREFIX,
                    result.returncode,
                    result.output_text().splitlines()[0] if result.output_text() else "no output",
                )
                continue
            text = result.output_text()
            detail = " ".join(p for p in (text, ssh_failure_hint(text)) if p)
            raise error_cls(f"{command.description} (exit code {result.returncode})", detail=detail)
        return results
