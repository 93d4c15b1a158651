"""Build and start the application container on the remote host.

The instance name is fixed (``config.app_name``). Any previous instance is
stopped and removed first, so a redeploy always ends with exactly one.
"""

from __future__ import annotations

import logging
import shlex

from scripts.remote_deploy.config import DeploymentConfig
from scripts.remote_deploy.errors import DeployError
from scripts.remote_deploy.remote_session import RemoteCommand, RemoteSession
from scripts.remote_deploy.repo_sync import BuildDescriptor


logger = logging.getLogger(__name__)

LOG_PREFIX = "[remote-deploy]"


def stop_instance_commands(config: DeploymentConfig) -> list[RemoteCommand]:
    name = shlex.quote(config.app_name)
    return [
        RemoteCommand(f"sudo docker stop {name}", f"Stopping previous '{config.app_name}' container", tolerate_failure=True),
        RemoteCommand(f"sudo docker rm {name}", f"Removing previous '{config.app_name}' container", tolerate_failure=True),
    ]


def compose_cmd(descriptor: BuildDescriptor, *args: str) -> str:
    return " ".join(["sudo", "docker-compose", "-f", shlex.quote(descriptor.filename), *args])


def deploy_commands(config: DeploymentConfig, descriptor: BuildDescriptor) -> list[RemoteCommand]:
    app_dir = config.remote_app_dir
    commands = [
        RemoteCommand(c.command, c.description, tolerate_failure=c.tolerate_failure, cwd=app_dir)
        for c in stop_instance_commands(config)
    ]

    if descriptor.is_multi_service:
        commands.extend(
            [
                RemoteCommand(
                    compose_cmd(descriptor, "down"),
                    "Tearing down previous compose stack",
                    tolerate_failure=True,
                    cwd=app_dir,
                ),
                RemoteCommand(
                    compose_cmd(descriptor, "up", "-d", "--build"),
                    f"Starting compose stack from {descriptor.filename}",
                    cwd=app_dir,
                ),
            ]
        )
        return commands

    name = shlex.quote(config.app_name)
    port = int(config.app_port)
    commands.extend(
        [
            RemoteCommand(
                f"sudo docker build -t {name} -f {shlex.quote(descriptor.filename)} .",
                f"Building image '{config.app_name}'",
                cwd=app_dir,
            ),
            RemoteCommand(
                f"sudo docker run -d -p {port}:{port} --name {name} {name}",
                f"Running '{config.app_name}' on port {port}",
                cwd=app_dir,
            ),
        ]
    )
    return commands


def deploy(session: RemoteSession, config: DeploymentConfig, descriptor: BuildDescriptor) -> None:
    if descriptor.is_multi_service:
        logger.info("%s 🧱 Using docker-compose for deployment...", LOG_PREFIX)
        if descriptor.published_ports and config.app_port not in descriptor.published_ports:
            logger.warning(
                "%s ⚠️ Port %s is not published by %s (published: %s); nginx may get no upstream.",
                LOG_PREFIX,
                config.app_port,
                descriptor.filename,
                ", ".join(str(p) for p in descriptor.published_ports),
            )
    else:
        logger.info("%s 🐳 Using Dockerfile for deployment...", LOG_PREFIX)
    session.run_batch(deploy_commands(config, descriptor), error_cls=DeployError)
