"""Post-deploy checks. Diagnostic only: nothing here aborts the run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import requests

from scripts.remote_deploy.config import DeploymentConfig
from scripts.remote_deploy.remote_session import RemoteCommand, RemoteSession


logger = logging.getLogger(__name__)

LOG_PREFIX = "[remote-deploy]"

EXTERNAL_PROBE_TIMEOUT_SECONDS = 10

LOCAL_PROBE_COMMAND = "curl -sS -o /dev/null -I -w '%{http_code}' http://localhost"


@dataclass(frozen=True)
class ValidationReport:
    containers: str
    local_status: int | None
    local_ok: bool
    external_status: int | None = None
    external_ok: bool | None = None

    @property
    def healthy(self) -> bool:
        if not self.local_ok:
            return False
        return self.external_ok is not False


def _parse_status(text: str) -> int | None:
    value = str(text or "").strip()[-3:]
    if not value.isdigit():
        return None
    status = int(value)
    # curl prints 000 when no response came back at all.
    return status or None


def _status_ok(status: int | None) -> bool:
    return status is not None and status < 500


def probe_external(
    config: DeploymentConfig,
    *,
    http_get: Callable[..., requests.Response] | None = None,
) -> int | None:
    http_get = http_get or requests.get
    url = f"http://{config.ssh_host}/"
    try:
        response = http_get(url, timeout=EXTERNAL_PROBE_TIMEOUT_SECONDS, allow_redirects=False)
    except requests.RequestException as exc:
        logger.warning("%s ⚠️ External probe of %s failed: %s", LOG_PREFIX, url, exc)
        return None
    return int(response.status_code)


def validate(
    session: RemoteSession,
    config: DeploymentConfig,
    *,
    http_get: Callable[..., requests.Response] | None = None,
    external_probe: bool = True,
) -> ValidationReport:
    logger.info("%s 🔍 Checking running containers...", LOG_PREFIX)
    ps = session.run(RemoteCommand("sudo docker ps", "Listing running containers"))
    if ps.ok:
        for line in ps.stdout.rstrip().splitlines():
            logger.info("%s   %s", LOG_PREFIX, line)
    else:
        logger.warning("%s ⚠️ Could not list containers: %s", LOG_PREFIX, ps.output_text())

    logger.info("%s 🌐 Testing application endpoint...", LOG_PREFIX)
    probe = session.run(RemoteCommand(LOCAL_PROBE_COMMAND, "Probing http://localhost on the remote host"))
    local_status = _parse_status(probe.stdout) if probe.ok else None
    local_ok = _status_ok(local_status)
    if local_ok:
        logger.info("%s ✅ http://localhost answered with HTTP %s", LOG_PREFIX, local_status)
    else:
        logger.warning("%s ⚠️ Warning: Application may not be responding locally.", LOG_PREFIX)

    external_status: int | None = None
    external_ok: bool | None = None
    if external_probe:
        external_status = probe_external(config, http_get=http_get)
        external_ok = _status_ok(external_status)
        if external_ok:
            logger.info("%s ✅ http://%s/ answered with HTTP %s", LOG_PREFIX, config.ssh_host, external_status)
        else:
            logger.warning(
                "%s ⚠️ Warning: http://%s/ is not reachable from here (firewall or proxy issue?).",
                LOG_PREFIX,
                config.ssh_host,
            )

    return ValidationReport(
        containers=ps.stdout if ps.ok else "",
        local_status=local_status,
        local_ok=local_ok,
        external_status=external_status,
        external_ok=external_ok,
    )
