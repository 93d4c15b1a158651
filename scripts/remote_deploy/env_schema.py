"""Deterministic schema for deployment parameters.

This module is the single source of truth for:
- which keys exist (vars vs secrets)
- which are mandatory and which have defaults
- how each key is asked for when it has to be prompted interactively

Keys are resolved from CLI flags, the process env, `.env.deploy` /
`.env.deploy.secrets` and, as a last resort, an interactive prompt.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from dotenv import dotenv_values


class VarsEnum(str, Enum):
    # Source repository
    DEPLOY_REPO_URL = "DEPLOY_REPO_URL"
    DEPLOY_BRANCH = "DEPLOY_BRANCH"

    # Remote host
    DEPLOY_SSH_USER = "DEPLOY_SSH_USER"
    DEPLOY_SSH_HOST = "DEPLOY_SSH_HOST"
    DEPLOY_SSH_KEY = "DEPLOY_SSH_KEY"

    # Application
    DEPLOY_APP_PORT = "DEPLOY_APP_PORT"
    DEPLOY_APP_NAME = "DEPLOY_APP_NAME"

    # Local run
    DEPLOY_LOG_DIR = "DEPLOY_LOG_DIR"
    DEPLOY_HOOKS_MODULE = "DEPLOY_HOOKS_MODULE"
    DEPLOY_HOOKS_SOFT_FAIL = "DEPLOY_HOOKS_SOFT_FAIL"


class SecretsEnum(str, Enum):
    # Personal access token used to clone the repository over https
    DEPLOY_GIT_TOKEN = "DEPLOY_GIT_TOKEN"


@dataclass(frozen=True)
class EnvKeySpec:
    key: VarsEnum | SecretsEnum
    mandatory: bool
    default: str | None = None
    prompt: str | None = None
    secret: bool = False


class EnvValidationError(ValueError):
    def __init__(self, *, context: str, problems: list[str]):
        super().__init__("; ".join(problems))
        self.context = context
        self.problems = problems

    def format(self) -> str:
        lines = [f"[env] validation failed: {self.context}"]
        for p in self.problems:
            lines.append(f"- {p}")
        return "\n".join(lines)


# Order matters: it is the order in which missing values are prompted for.
DEPLOY_SCHEMA: tuple[EnvKeySpec, ...] = (
    EnvKeySpec(
        key=VarsEnum.DEPLOY_REPO_URL,
        mandatory=True,
        prompt="Enter Git Repository URL: ",
    ),
    EnvKeySpec(
        key=SecretsEnum.DEPLOY_GIT_TOKEN,
        mandatory=True,
        prompt="Enter Personal Access Token (PAT): ",
        secret=True,
    ),
    EnvKeySpec(
        key=VarsEnum.DEPLOY_BRANCH,
        mandatory=True,
        default="main",
        prompt="Enter Branch name (default: main): ",
    ),
    EnvKeySpec(
        key=VarsEnum.DEPLOY_SSH_USER,
        mandatory=True,
        prompt="Enter Remote Server Username: ",
    ),
    EnvKeySpec(
        key=VarsEnum.DEPLOY_SSH_HOST,
        mandatory=True,
        prompt="Enter Remote Server IP Address: ",
    ),
    EnvKeySpec(
        key=VarsEnum.DEPLOY_SSH_KEY,
        mandatory=True,
        prompt="Enter SSH Key Path (e.g., ~/.ssh/id_rsa): ",
    ),
    EnvKeySpec(
        key=VarsEnum.DEPLOY_APP_PORT,
        mandatory=True,
        prompt="Enter Application Port (internal container port): ",
    ),
    EnvKeySpec(
        key=VarsEnum.DEPLOY_APP_NAME,
        mandatory=True,
        default="myapp",
    ),
    EnvKeySpec(
        key=VarsEnum.DEPLOY_LOG_DIR,
        mandatory=False,
        default="logs",
    ),
    EnvKeySpec(
        key=VarsEnum.DEPLOY_HOOKS_MODULE,
        mandatory=False,
    ),
    EnvKeySpec(
        key=VarsEnum.DEPLOY_HOOKS_SOFT_FAIL,
        mandatory=False,
        default="false",
    ),
)


def _schema_keys(schema: Iterable[EnvKeySpec]) -> set[str]:
    return {spec.key.value for spec in schema}


def parse_dotenv_file(path: Path) -> dict[str, str]:
    """Parse dotenv file strictly.

    - Comments are ignored.
    - Keys are preserved even if they have empty values (""), so we can detect unknown keys.
    """
    kv: dict[str, str] = {}
    raw = dotenv_values(path)
    for k, v in raw.items():
        if k is None:
            continue
        key = str(k).strip()
        if not key:
            continue
        val = "" if v is None else str(v).strip()
        kv[key] = val
    return kv


def validate_known_keys(schema: Iterable[EnvKeySpec], kv: Mapping[str, str], *, context: str) -> None:
    allowed = _schema_keys(schema)
    unknown = sorted([k for k in kv.keys() if k not in allowed])
    if unknown:
        raise EnvValidationError(
            context=context,
            problems=["Unknown key(s): " + ", ".join(unknown)],
        )


def apply_defaults(schema: Iterable[EnvKeySpec], kv: dict[str, str]) -> dict[str, str]:
    out = dict(kv)
    for spec in schema:
        if spec.key.value in out and str(out.get(spec.key.value) or "").strip():
            continue
        if spec.default is None:
            continue
        out[spec.key.value] = spec.default
    return out


def missing_required(schema: Iterable[EnvKeySpec], kv: Mapping[str, str]) -> list[str]:
    missing: list[str] = []
    for spec in schema:
        if not spec.mandatory:
            continue
        val = str(kv.get(spec.key.value) or "").strip()
        if not val:
            missing.append(spec.key.value)
    return sorted(missing)


def validate_required(schema: Iterable[EnvKeySpec], kv: Mapping[str, str], *, context: str) -> None:
    missing = missing_required(schema, kv)
    if missing:
        raise EnvValidationError(context=context, problems=["Missing mandatory key(s): " + ", ".join(missing)])


def truthy(val: str | None) -> bool:
    v = str(val or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def get_spec(schema: Iterable[EnvKeySpec], key: VarsEnum | SecretsEnum) -> EnvKeySpec:
    for spec in schema:
        if spec.key == key:
            return spec
    raise KeyError(key)
