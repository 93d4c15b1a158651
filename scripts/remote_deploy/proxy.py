"""Install the nginx virtual host that fronts the application.

The site file is rewritten (never appended) on every run and activated via a
symlink into ``sites-enabled``. ``nginx -t`` gates the reload: when the full
configuration does not validate, the previous site file and link are put
back, nginx is not reloaded, and :class:`ProxyConfigError` is raised.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass

from scripts.remote_deploy.config import DeploymentConfig
from scripts.remote_deploy.errors import ProxyConfigError
from scripts.remote_deploy.remote_session import RemoteCommand, RemoteSession


logger = logging.getLogger(__name__)

LOG_PREFIX = "[remote-deploy]"

SITES_AVAILABLE_DIR = "/etc/nginx/sites-available"
SITES_ENABLED_DIR = "/etc/nginx/sites-enabled"

# Placeholder: {port}. Literal braces are doubled for str.format.
SITE_TEMPLATE = """\
server {{
    listen 80;
    server_name _;

    location / {{
        proxy_pass http://localhost:{port};
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
    }}
}}
"""


@dataclass(frozen=True)
class SitePaths:
    available: str
    enabled: str

    @property
    def backup(self) -> str:
        return f"{self.available}.bak"


def site_paths(config: DeploymentConfig) -> SitePaths:
    return SitePaths(
        available=f"{SITES_AVAILABLE_DIR}/{config.app_name}",
        enabled=f"{SITES_ENABLED_DIR}/{config.app_name}",
    )


def render_nginx_site(port: int) -> str:
    return SITE_TEMPLATE.format(port=int(port))


def _restore_commands(paths: SitePaths, *, had_file: bool, had_link: bool) -> list[RemoteCommand]:
    available = shlex.quote(paths.available)
    enabled = shlex.quote(paths.enabled)
    commands: list[RemoteCommand] = []
    if had_file:
        commands.append(
            RemoteCommand(f"sudo mv -f {shlex.quote(paths.backup)} {available}", "Restoring previous site file")
        )
    else:
        commands.append(RemoteCommand(f"sudo rm -f {available}", "Removing rejected site file"))
    if not had_link:
        commands.append(RemoteCommand(f"sudo rm -f {enabled}", "Removing rejected site link"))
    return commands


def configure_proxy(session: RemoteSession, config: DeploymentConfig) -> None:
    paths = site_paths(config)
    available = shlex.quote(paths.available)
    enabled = shlex.quote(paths.enabled)

    logger.info("%s ⚙️ Configuring Nginx reverse proxy -> http://localhost:%s", LOG_PREFIX, config.app_port)

    had_file = session.run(RemoteCommand(f"sudo test -f {available}", "Checking for an existing site file")).ok
    had_link = session.run(RemoteCommand(f"sudo test -L {enabled}", "Checking for an existing site link")).ok

    staging: list[RemoteCommand] = []
    if had_file:
        staging.append(
            RemoteCommand(f"sudo cp -p {available} {shlex.quote(paths.backup)}", "Backing up current site file")
        )
    staging.extend(
        [
            RemoteCommand(
                f"sudo tee {available} > /dev/null",
                f"Writing {paths.available}",
                input_text=render_nginx_site(config.app_port),
            ),
            RemoteCommand(f"sudo ln -sf {available} {enabled}", f"Linking {paths.enabled}"),
        ]
    )
    session.run_batch(staging, error_cls=ProxyConfigError)

    check = session.run(RemoteCommand("sudo nginx -t", "Validating nginx configuration"))
    if not check.ok:
        logger.error("%s ❌ nginx -t rejected the configuration; restoring the previous one.", LOG_PREFIX)
        session.run_batch(_restore_commands(paths, had_file=had_file, had_link=had_link), error_cls=ProxyConfigError)
        raise ProxyConfigError(
            "nginx configuration test failed; proxy was not reloaded",
            detail=check.output_text(),
        )

    finalize: list[RemoteCommand] = []
    if had_file:
        finalize.append(
            RemoteCommand(f"sudo rm -f {shlex.quote(paths.backup)}", "Dropping site backup", tolerate_failure=True)
        )
    finalize.append(RemoteCommand("sudo systemctl reload nginx", "Reloading nginx"))
    session.run_batch(finalize, error_cls=ProxyConfigError)
    logger.info("%s ✅ Nginx proxy configured successfully.", LOG_PREFIX)
