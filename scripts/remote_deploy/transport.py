"""Copy the working copy (minus `.git`) to the remote app directory.

The copy is additive: remote files with the same name are overwritten, remote
files missing from the source are left alone.

Security note: this module shells out to `rsync` over `ssh`.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Callable

from scripts.remote_deploy.config import DeploymentConfig
from scripts.remote_deploy.errors import TransportError
from scripts.remote_deploy.remote_session import ssh_base_options, ssh_failure_hint
from scripts.remote_deploy.repo_sync import WorkingCopy


logger = logging.getLogger(__name__)

LOG_PREFIX = "[remote-deploy]"

EXCLUDED_ENTRY = ".git"

Runner = Callable[..., subprocess.CompletedProcess]


def build_rsync_cmd(*, source_dir: Path, config: DeploymentConfig) -> list[str]:
    ssh_cmd = " ".join(shlex.quote(part) for part in ["ssh", *ssh_base_options(ssh_key=config.ssh_key)])
    # Trailing slashes: copy the *contents* of source_dir into the remote dir.
    # rsync creates the last path component itself; <home> always exists.
    src = f"{str(source_dir).rstrip('/')}/"
    dest = f"{config.ssh_target}:{config.remote_app_dir}/"
    return ["rsync", "-az", "--exclude", EXCLUDED_ENTRY, "-e", ssh_cmd, src, dest]


def transport(config: DeploymentConfig, working_copy: WorkingCopy, *, runner: Runner | None = None) -> None:
    runner = runner or subprocess.run
    logger.info(
        "%s 📤 Transferring project files to %s:%s ...",
        LOG_PREFIX,
        config.ssh_target,
        config.remote_app_dir,
    )
    cmd = build_rsync_cmd(source_dir=working_copy.path, config=config)
    logger.debug("%s $ %s", LOG_PREFIX, " ".join(cmd))
    result = runner(cmd, check=False, capture_output=True, text=True)
    if str(result.stdout or "").strip():
        logger.debug("%s %s", LOG_PREFIX, str(result.stdout).strip())
    if result.returncode != 0:
        text = str(result.stderr or "").strip() or str(result.stdout or "").strip()
        detail = " ".join(p for p in (text, ssh_failure_hint(text)) if p)
        raise TransportError(
            f"Failed to copy {working_copy.path} to {config.ssh_target}:{config.remote_app_dir} "
            f"(exit code {result.returncode})",
            detail=detail,
        )
