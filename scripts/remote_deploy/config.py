"""Deployment parameter collection.

Resolution per key: CLI flag -> process env -> `.env.deploy` (or
`.env.deploy.secrets` for secrets) -> interactive prompt -> schema default.

The resulting :class:`DeploymentConfig` is validated once and is immutable
for the rest of the run. Nothing here touches git, ssh or the network.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from scripts.remote_deploy.env_schema import (
    DEPLOY_SCHEMA,
    EnvKeySpec,
    EnvValidationError,
    SecretsEnum,
    VarsEnum,
    apply_defaults,
    parse_dotenv_file,
    validate_known_keys,
    validate_required,
)
from scripts.remote_deploy.errors import ValidationError


logger = logging.getLogger(__name__)

LOG_PREFIX = "[remote-deploy]"

DEPLOY_ENV_FILE = ".env.deploy"
DEPLOY_SECRETS_FILE = ".env.deploy.secrets"

# Keys that are read straight into DeploymentConfig.
CONFIG_KEYS: tuple[VarsEnum | SecretsEnum, ...] = (
    VarsEnum.DEPLOY_REPO_URL,
    SecretsEnum.DEPLOY_GIT_TOKEN,
    VarsEnum.DEPLOY_BRANCH,
    VarsEnum.DEPLOY_SSH_USER,
    VarsEnum.DEPLOY_SSH_HOST,
    VarsEnum.DEPLOY_SSH_KEY,
    VarsEnum.DEPLOY_APP_PORT,
    VarsEnum.DEPLOY_APP_NAME,
)

# argparse destination for each key that has a CLI flag.
FLAG_DESTS: dict[VarsEnum | SecretsEnum, str] = {
    VarsEnum.DEPLOY_REPO_URL: "repo_url",
    VarsEnum.DEPLOY_BRANCH: "branch",
    VarsEnum.DEPLOY_SSH_USER: "ssh_user",
    VarsEnum.DEPLOY_SSH_HOST: "ssh_host",
    VarsEnum.DEPLOY_SSH_KEY: "ssh_key",
    VarsEnum.DEPLOY_APP_PORT: "app_port",
    VarsEnum.DEPLOY_APP_NAME: "app_name",
    VarsEnum.DEPLOY_LOG_DIR: "log_dir",
    VarsEnum.DEPLOY_HOOKS_MODULE: "hooks_module",
}


class Secret:
    """Opaque handle for a credential. Only :meth:`reveal` exposes the value."""

    __slots__ = ("_value",)

    def __init__(self, value: str | None):
        self._value = str(value or "")

    def reveal(self) -> str:
        return self._value

    def __bool__(self) -> bool:
        return bool(self._value.strip())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(self._value)

    def __repr__(self) -> str:
        return "Secret('****')"

    def __str__(self) -> str:
        return "****"


@dataclass(frozen=True)
class DeploymentConfig:
    repo_url: str
    token: Secret
    ssh_user: str
    ssh_host: str
    ssh_key: Path
    app_port: int
    branch: str = "main"
    app_name: str = "myapp"

    def __post_init__(self) -> None:
        problems: list[str] = []
        for name in ("repo_url", "ssh_user", "ssh_host", "branch", "app_name"):
            if not str(getattr(self, name) or "").strip():
                problems.append(f"{name} must be non-empty")
        if not self.token:
            problems.append("token must be non-empty")
        if not str(self.ssh_key or "").strip() or str(self.ssh_key) == ".":
            problems.append("ssh_key must be non-empty")
        if not isinstance(self.app_port, int) or self.app_port < 1 or self.app_port > 65535:
            problems.append("app_port must be in range 1-65535")
        if problems:
            raise ValidationError("Invalid deployment configuration", problems=problems)

    @property
    def ssh_target(self) -> str:
        return f"{self.ssh_user}@{self.ssh_host}"

    @property
    def remote_home(self) -> str:
        if self.ssh_user == "root":
            return "/root"
        return f"/home/{self.ssh_user}"

    @property
    def remote_app_dir(self) -> str:
        return f"{self.remote_home}/app"


def read_dotenv_key(*, dotenv_path: Path, key: str) -> str:
    if not dotenv_path.exists():
        return ""
    raw = parse_dotenv_file(dotenv_path)
    return str(raw.get(key) or "").strip()


def read_deploy_key(*, repo_root: Path, key: str) -> str:
    return read_dotenv_key(dotenv_path=repo_root / DEPLOY_ENV_FILE, key=key)


def read_deploy_secret_key(*, repo_root: Path, key: str) -> str:
    return read_dotenv_key(dotenv_path=repo_root / DEPLOY_SECRETS_FILE, key=key)


def validate_deploy_files(*, repo_root: Path) -> None:
    """Reject unknown keys in `.env.deploy` and `.env.deploy.secrets`."""
    for name in (DEPLOY_ENV_FILE, DEPLOY_SECRETS_FILE):
        path = repo_root / name
        if not path.exists():
            continue
        validate_known_keys(DEPLOY_SCHEMA, parse_dotenv_file(path), context=str(path))


def resolve_key(spec: EnvKeySpec, *, args: argparse.Namespace | None, repo_root: Path) -> str:
    """Resolve one key without prompting: CLI -> env -> dotenv file."""
    dest = FLAG_DESTS.get(spec.key)
    value = ""
    if args is not None and dest:
        value = str(getattr(args, dest, None) or "").strip()
    if not value:
        value = str(os.getenv(spec.key.value) or "").strip()
    if not value:
        if spec.secret:
            value = read_deploy_secret_key(repo_root=repo_root, key=spec.key.value)
        else:
            value = read_deploy_key(repo_root=repo_root, key=spec.key.value)
    return value


def is_interactive() -> bool:
    try:
        return sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


def _prompt(spec: EnvKeySpec, prompt_fn: Callable[[str], str], secret_prompt_fn: Callable[[str], str]) -> str:
    fn = secret_prompt_fn if spec.secret else prompt_fn
    try:
        return str(fn(spec.prompt or f"{spec.key.value}: ") or "").strip()
    except EOFError:
        return ""


def collect_config(
    args: argparse.Namespace | None,
    repo_root: Path,
    *,
    interactive: bool | None = None,
    prompt_fn: Callable[[str], str] | None = None,
    secret_prompt_fn: Callable[[str], str] | None = None,
) -> DeploymentConfig:
    """Gather every deployment parameter and validate them once."""
    prompt_fn = prompt_fn or input
    secret_prompt_fn = secret_prompt_fn or getpass.getpass
    if interactive is None:
        interactive = not bool(getattr(args, "non_interactive", False)) and is_interactive()

    try:
        validate_deploy_files(repo_root=repo_root)
    except EnvValidationError as exc:
        raise ValidationError("Invalid deployment env file", problems=exc.problems, detail=exc.format())

    logger.info("%s 🔧 Collecting deployment parameters...", LOG_PREFIX)

    config_specs = [spec for spec in DEPLOY_SCHEMA if spec.key in CONFIG_KEYS]
    values: dict[str, str] = {}
    for spec in config_specs:
        value = resolve_key(spec, args=args, repo_root=repo_root)
        if not value and interactive and spec.prompt:
            value = _prompt(spec, prompt_fn, secret_prompt_fn)
        values[spec.key.value] = value
    values = apply_defaults(config_specs, values)

    try:
        validate_required(config_specs, values, context="deployment parameters")
    except EnvValidationError as exc:
        raise ValidationError(
            "All fields are required. Provide them via flags, env, .env.deploy or the prompts.",
            problems=exc.problems,
            detail=exc.format(),
        )

    raw_port = values[VarsEnum.DEPLOY_APP_PORT.value]
    try:
        app_port = int(raw_port)
    except ValueError:
        raise ValidationError(
            "Application port must be an integer",
            problems=[f"{VarsEnum.DEPLOY_APP_PORT.value}={raw_port!r}"],
        )

    ssh_key = Path(values[VarsEnum.DEPLOY_SSH_KEY.value]).expanduser()
    if not ssh_key.is_file():
        raise ValidationError("SSH key not found", problems=[f"{VarsEnum.DEPLOY_SSH_KEY.value}={ssh_key}"])

    config = DeploymentConfig(
        repo_url=values[VarsEnum.DEPLOY_REPO_URL.value],
        token=Secret(values[SecretsEnum.DEPLOY_GIT_TOKEN.value]),
        branch=values[VarsEnum.DEPLOY_BRANCH.value],
        ssh_user=values[VarsEnum.DEPLOY_SSH_USER.value],
        ssh_host=values[VarsEnum.DEPLOY_SSH_HOST.value],
        ssh_key=ssh_key,
        app_port=app_port,
        app_name=values[VarsEnum.DEPLOY_APP_NAME.value],
    )
    log_config_summary(config)
    return config


def log_config_summary(config: DeploymentConfig) -> None:
    logger.info("%s ✅ User input collected successfully.", LOG_PREFIX)
    logger.info("%s Repository: %s (branch %s)", LOG_PREFIX, config.repo_url, config.branch)
    logger.info("%s Remote Server: %s", LOG_PREFIX, config.ssh_target)
    logger.info("%s SSH key: %s", LOG_PREFIX, config.ssh_key)
    logger.info("%s Port: %s", LOG_PREFIX, config.app_port)
    logger.info("%s App name: %s", LOG_PREFIX, config.app_name)
