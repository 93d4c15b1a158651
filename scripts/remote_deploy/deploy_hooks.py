from __future__ import annotations

import argparse
import importlib
import importlib.util
import os
import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, MutableMapping

from scripts.remote_deploy.env_schema import VarsEnum, truthy

logger = logging.getLogger(__name__)

LOG_PREFIX = "[hooks]"

DEFAULT_HOOKS_FILE = Path("scripts") / "remote_deploy" / "deploy_customizations.py"

@dataclass
class DeployContext:
    """Context passed to hooks.

    'config' is filled in once parameters are collected; hooks running
    before that (pre_stage for "collect") see None.
    """
    repo_root: Path
    env: MutableMapping[str, str]
    args: argparse.Namespace
    config: Any = None
    log_file: Path | None = None

    def log(self, msg: str) -> None:
        logger.info("🪝 %s %s", LOG_PREFIX, msg)

class DeployHooks:
    """Wrapper that holds the loaded hooks object (if any) and safely calls methods."""
    def __init__(self, impl: Any | None, soft_fail: bool = False):
        self._impl = impl
        self._soft_fail = soft_fail

    def call(self, hook_name: str, *args, **kwargs) -> Any:
        if not self._impl:
            return None

        method = getattr(self._impl, hook_name, None)
        if not method:
            # Hook not implemented, no-op
            return None

        try:
            return method(*args, **kwargs)
        except Exception as e:
            if self._soft_fail:
                logger.warning("⚠️  %s Hook '%s' failed: %s (soft-fail enabled)", LOG_PREFIX, hook_name, e)
                return None
            logger.error("❌ %s Hook '%s' failed: %s", LOG_PREFIX, hook_name, e)
            raise

def load_hooks(repo_root: Path, module_path: str | None = None, soft_fail: bool | None = None) -> DeployHooks:
    """Load hooks from a module.

    Resolution order:
    1. CLI argument/Env var (if provided) -> Must exist or error.
    2. Default 'scripts/remote_deploy/deploy_customizations.py' -> If exists, load. Else no-op.

    Default case uses file-path loading to avoid PYTHONPATH issues.
    """

    # Soft fail config: CLI arg > Env Var > Default False
    if soft_fail is None:
        soft_fail = truthy(os.getenv(VarsEnum.DEPLOY_HOOKS_SOFT_FAIL.value))

    target_path = module_path
    must_exist = True

    if not target_path:
        target_path = os.getenv(VarsEnum.DEPLOY_HOOKS_MODULE.value)

    if not target_path:
        default_file = repo_root / DEFAULT_HOOKS_FILE
        if default_file.exists():
            target_path = str(default_file.resolve())
            must_exist = False
        else:
            return DeployHooks(None, soft_fail=soft_fail)

    logger.info("🪝 %s Loading hooks from: %s", LOG_PREFIX, target_path)

    try:
        if target_path.endswith(".py") or "/" in target_path or "\\" in target_path:
            path_obj = Path(target_path).resolve()
            if not path_obj.exists():
                if must_exist:
                    raise FileNotFoundError(f"Hook module not found at: {path_obj}")
                return DeployHooks(None, soft_fail=soft_fail)

            spec = importlib.util.spec_from_file_location("deploy_customizations", path_obj)
            if spec and spec.loader:
                module = importlib.util.module_from_spec(spec)
                sys.modules["deploy_customizations"] = module
                spec.loader.exec_module(module)
            else:
                raise ImportError(f"Could not load spec from {path_obj}")
        else:
            module = importlib.import_module(target_path)

        # Look for 'get_hooks'
        if hasattr(module, "get_hooks"):
            hooks_impl = module.get_hooks()
        else:
            # Assume module itself is the hooks object (standalone functions)
            hooks_impl = module

        return DeployHooks(hooks_impl, soft_fail=soft_fail)

    except Exception as e:
        if soft_fail:
            logger.warning("⚠️  %s Failed to load hooks from %s: %s (soft-fail enabled)", LOG_PREFIX, target_path, e)
            return DeployHooks(None, soft_fail=soft_fail)

        # A resolved module that fails to import is a hard error,
        # whether it was requested or picked up from the default path.
        raise ImportError(f"Failed to load hooks from {target_path}: {e}")
