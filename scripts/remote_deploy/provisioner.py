"""Prepare the remote host: packages, docker service, docker group."""

from __future__ import annotations

import logging
import shlex

from scripts.remote_deploy.config import DeploymentConfig
from scripts.remote_deploy.errors import ProvisionError
from scripts.remote_deploy.remote_session import RemoteCommand, RemoteSession


logger = logging.getLogger(__name__)

LOG_PREFIX = "[remote-deploy]"

REQUIRED_PACKAGES = ("docker.io", "docker-compose", "nginx", "curl", "rsync")


def provision_commands(config: DeploymentConfig) -> list[RemoteCommand]:
    packages = " ".join(REQUIRED_PACKAGES)
    return [
        RemoteCommand("sudo apt-get update -y", "Updating package index"),
        RemoteCommand(
            f"sudo DEBIAN_FRONTEND=noninteractive apt-get install -y {packages}",
            f"Installing {packages}",
        ),
        RemoteCommand("sudo systemctl enable docker", "Enabling docker service"),
        RemoteCommand("sudo systemctl start docker", "Starting docker service"),
        RemoteCommand(
            f"sudo usermod -aG docker {shlex.quote(config.ssh_user)}",
            f"Adding {config.ssh_user} to the docker group",
        ),
    ]


def provision(session: RemoteSession, config: DeploymentConfig) -> None:
    logger.info("%s 🧰 Updating packages and installing dependencies...", LOG_PREFIX)
    session.run_batch(provision_commands(config), error_cls=ProvisionError)
    # usermod only applies to new logins; docker calls below always use sudo.
    logger.info(
        "%s Note: docker group membership for %s takes effect on the next login.",
        LOG_PREFIX,
        config.ssh_user,
    )
