"""Tear down everything a deploy put on the remote host."""

from __future__ import annotations

import logging
import shlex

from scripts.remote_deploy.config import DeploymentConfig
from scripts.remote_deploy.deployer import compose_cmd, stop_instance_commands
from scripts.remote_deploy.errors import CleanupError
from scripts.remote_deploy.proxy import site_paths
from scripts.remote_deploy.remote_session import RemoteCommand, RemoteSession
from scripts.remote_deploy.repo_sync import BuildDescriptor


logger = logging.getLogger(__name__)

LOG_PREFIX = "[remote-deploy]"


def cleanup_commands(config: DeploymentConfig, descriptor: BuildDescriptor | None = None) -> list[RemoteCommand]:
    app_dir = shlex.quote(config.remote_app_dir)
    paths = site_paths(config)

    commands = stop_instance_commands(config)
    if descriptor is not None and descriptor.is_multi_service:
        commands.append(
            RemoteCommand(
                f"cd {app_dir} && {compose_cmd(descriptor, 'down')}",
                "Tearing down compose stack",
                tolerate_failure=True,
            )
        )
    commands.extend(
        [
            RemoteCommand(f"sudo rm -rf {app_dir}", f"Removing {config.remote_app_dir}"),
            RemoteCommand(
                f"sudo rm -f {shlex.quote(paths.enabled)} {shlex.quote(paths.available)}",
                "Removing nginx site file and link",
            ),
            RemoteCommand("sudo systemctl reload nginx", "Reloading nginx"),
        ]
    )
    return commands


def cleanup(session: RemoteSession, config: DeploymentConfig, descriptor: BuildDescriptor | None = None) -> None:
    logger.info("%s 🧹 Cleaning up deployment resources...", LOG_PREFIX)
    session.run_batch(cleanup_commands(config, descriptor), error_cls=CleanupError)
    logger.info("%s 🧼 Cleanup complete.", LOG_PREFIX)
