"""Clone-or-pull the source repository and detect how to build it.

The working copy lives at ``<workdir>/<repo name>`` and survives across runs,
so a second run only fetches/checks out/pulls the requested branch.

The access token only ever appears in the clone URL handed to git; every
logged command and error message goes through :func:`redact`.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable
from urllib.parse import quote, urlsplit, urlunsplit

from scripts.remote_deploy import docker_compose_helpers as compose_helpers
from scripts.remote_deploy.config import DeploymentConfig
from scripts.remote_deploy.errors import MissingDescriptorError, SyncError


logger = logging.getLogger(__name__)

LOG_PREFIX = "[remote-deploy]"

DOCKERFILE_NAME = "Dockerfile"
REDACTED = "****"

SCP_STYLE_REMOTE = re.compile(r"^[\w.-]+@[\w.-]+:")

Runner = Callable[..., subprocess.CompletedProcess]


class DescriptorKind(str, Enum):
    SINGLE_IMAGE = "singleImage"
    MULTI_SERVICE = "multiService"


@dataclass(frozen=True)
class WorkingCopy:
    path: Path
    name: str


@dataclass(frozen=True)
class BuildDescriptor:
    kind: DescriptorKind
    filename: str
    services: tuple[str, ...] = ()
    published_ports: tuple[int, ...] = ()

    @property
    def is_multi_service(self) -> bool:
        return self.kind == DescriptorKind.MULTI_SERVICE


def repo_dir_name(url: str) -> str:
    """Final path segment of *url* without a trailing ``.git``.

    Handles https URLs and scp-style ``git@host:org/repo.git`` remotes.
    """
    text = str(url or "").strip().rstrip("/")
    tail = re.split(r"[/:]", text)[-1] if text else ""
    if tail.endswith(".git"):
        tail = tail[: -len(".git")]
    if not tail or tail in {".", ".."}:
        raise SyncError(f"Cannot derive a directory name from repository URL {url!r}")
    return tail


def _is_scheme_less_remote(url: str) -> bool:
    # `host/org/repo.git`: no scheme, not scp-style, not a local path.
    if not url or url.startswith(("/", ".", "~")) or SCP_STYLE_REMOTE.match(url):
        return False
    return "://" not in url and "/" in url


def authenticated_url(url: str, token: str) -> str:
    """Embed *token* in the authority of an http(s) URL.

    A URL without a scheme (``github.com/acme/app.git``) is taken as https.
    scp-style remotes and local paths pass through unchanged.
    """
    url = str(url or "").strip()
    if _is_scheme_less_remote(url):
        url = f"https://{url}"
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or not token:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{quote(token, safe='')}@{host}"
    return urlunsplit(parts._replace(netloc=netloc))


def redact(text: str, token: str) -> str:
    out = str(text or "")
    if not token:
        return out
    for variant in {token, quote(token, safe="")}:
        out = out.replace(variant, REDACTED)
    return out


def _git_env() -> dict[str, str]:
    # Never block on a credential prompt; a bad token must fail the run.
    return dict(os.environ, GIT_TERMINAL_PROMPT="0")


def _git(
    args: list[str],
    *,
    cwd: Path,
    token: str,
    runner: Runner,
    description: str,
) -> subprocess.CompletedProcess:
    cmd = ["git", *args]
    logger.info("%s $ %s", LOG_PREFIX, redact(" ".join(cmd), token))
    result = runner(cmd, cwd=str(cwd), env=_git_env(), check=False, capture_output=True, text=True)
    stdout = redact(str(result.stdout or ""), token).strip()
    stderr = redact(str(result.stderr or ""), token).strip()
    if stdout:
        logger.debug("%s %s", LOG_PREFIX, stdout)
    if stderr:
        logger.debug("%s %s", LOG_PREFIX, stderr)
    if result.returncode != 0:
        raise SyncError(f"{description} failed (exit code {result.returncode})", detail=stderr or stdout)
    return result


def sync_repository(config: DeploymentConfig, *, workdir: Path, runner: Runner | None = None) -> WorkingCopy:
    runner = runner or subprocess.run
    token = config.token.reveal()
    name = repo_dir_name(config.repo_url)
    path = workdir / name
    branch = config.branch

    if path.exists():
        if not (path / ".git").exists():
            raise SyncError(f"'{path}' exists but is not a git working copy")
        logger.info("%s 📂 Repository '%s' already exists. Pulling latest changes...", LOG_PREFIX, name)
        _git(["fetch", "origin", branch], cwd=path, token=token, runner=runner, description=f"git fetch of '{branch}'")
        _git(["checkout", branch], cwd=path, token=token, runner=runner, description=f"git checkout of '{branch}'")
        _git(["pull", "origin", branch], cwd=path, token=token, runner=runner, description=f"git pull of '{branch}'")
    else:
        logger.info("%s 📦 Cloning repository from %s ...", LOG_PREFIX, config.repo_url)
        workdir.mkdir(parents=True, exist_ok=True)
        _git(
            ["clone", authenticated_url(config.repo_url, token), name],
            cwd=workdir,
            token=token,
            runner=runner,
            description=f"git clone of {config.repo_url}",
        )
        _git(["checkout", branch], cwd=path, token=token, runner=runner, description=f"git checkout of '{branch}'")

    return WorkingCopy(path=path, name=name)


def detect_build_descriptor(working_copy: WorkingCopy) -> BuildDescriptor:
    """Dockerfile first, then a compose file; anything else cannot be deployed."""
    if (working_copy.path / DOCKERFILE_NAME).is_file():
        logger.info("%s 🐳 %s found - OK.", LOG_PREFIX, DOCKERFILE_NAME)
        return BuildDescriptor(kind=DescriptorKind.SINGLE_IMAGE, filename=DOCKERFILE_NAME)

    compose_path = compose_helpers.find_compose_file(working_copy.path)
    if compose_path is None:
        raise MissingDescriptorError(
            f"No {DOCKERFILE_NAME} or docker-compose.yml found in {working_copy.path}. Cannot proceed."
        )

    try:
        compose_config = compose_helpers.load_docker_compose_config(compose_path)
    except RuntimeError as exc:
        raise MissingDescriptorError(f"{compose_path.name} is not valid YAML", detail=str(exc))

    services = compose_helpers.list_services(compose_config)
    if not services:
        raise MissingDescriptorError(f"{compose_path.name} does not define any services")

    logger.info("%s 🧱 %s found - OK (services: %s).", LOG_PREFIX, compose_path.name, ", ".join(services))
    return BuildDescriptor(
        kind=DescriptorKind.MULTI_SERVICE,
        filename=compose_path.name,
        services=tuple(services),
        published_ports=tuple(compose_helpers.published_ports(compose_config)),
    )
