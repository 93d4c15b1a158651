#!/usr/bin/env python3
"""Deploy a containerized app from a git repository to an Ubuntu server over SSH.

Stages, in order, each fail-fast:
  1. collect    - gather and validate deployment parameters
  2. sync       - clone or pull the repository, detect Dockerfile/compose
  3. provision  - install docker, docker-compose, nginx on the host
  4. transport  - rsync the working copy (minus .git) to ~/app
  5. deploy     - replace the fixed-name container (or compose stack)
  6. proxy      - install the nginx virtual host, validated before reload
  7. validate   - diagnostic probes; never aborts
  8. cleanup    - only with --cleanup: undo 5, 6 and the transported files

Usage:
  remote-deploy
  remote-deploy --cleanup
  python -m scripts.remote_deploy.ubuntu_deploy --non-interactive --repo-url ... --ssh-host ...

Security note: this script shells out to `git`, `ssh` and `rsync`.
"""

from __future__ import annotations

import argparse
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Callable

from scripts.remote_deploy import deploy_hooks
from scripts.remote_deploy.cleanup import cleanup
from scripts.remote_deploy.config import DeploymentConfig, collect_config, resolve_key
from scripts.remote_deploy.deployer import deploy
from scripts.remote_deploy.env_schema import DEPLOY_SCHEMA, VarsEnum, get_spec
from scripts.remote_deploy.errors import DeploymentError, ValidationError
from scripts.remote_deploy.logging_utils import (
    LOG_PREFIX,
    ROOT_LOGGER_NAME,
    StepLogger,
    setup_run_logging,
    shutdown_run_logging,
)
from scripts.remote_deploy.provisioner import provision
from scripts.remote_deploy.proxy import configure_proxy
from scripts.remote_deploy.remote_session import RemoteSession
from scripts.remote_deploy.repo_sync import detect_build_descriptor, sync_repository
from scripts.remote_deploy.transport import transport
from scripts.remote_deploy.validator import validate


logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.ubuntu_deploy")

EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Deploy a Dockerized app from git to an Ubuntu server with an nginx reverse proxy",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="After a successful deployment, tear down the container, the remote app dir and the nginx site",
    )
    parser.add_argument(
        "--repo-url",
        default=None,
        help="Git repository URL. Resolution: CLI -> DEPLOY_REPO_URL env var -> .env.deploy -> prompt",
    )
    parser.add_argument(
        "--branch",
        default=None,
        help="Branch to deploy. Resolution: CLI -> DEPLOY_BRANCH env var -> .env.deploy -> prompt -> main",
    )
    parser.add_argument(
        "--ssh-user",
        default=None,
        help="Remote username. Resolution: CLI -> DEPLOY_SSH_USER env var -> .env.deploy -> prompt",
    )
    parser.add_argument(
        "--ssh-host",
        default=None,
        help="Remote server address. Resolution: CLI -> DEPLOY_SSH_HOST env var -> .env.deploy -> prompt",
    )
    parser.add_argument(
        "--ssh-key",
        default=None,
        help="Path to the SSH private key. Resolution: CLI -> DEPLOY_SSH_KEY env var -> .env.deploy -> prompt",
    )
    parser.add_argument(
        "--app-port",
        default=None,
        help="Application port (published on the host and inside the container)",
    )
    parser.add_argument(
        "--app-name",
        default=None,
        help="Fixed container/image/nginx site name (default: myapp)",
    )
    parser.add_argument(
        "--workdir",
        default=None,
        help="Directory holding the local working copy (default: current directory)",
    )
    parser.add_argument(
        "--log-dir",
        default=None,
        help="Directory for per-run log files. Resolution: CLI -> DEPLOY_LOG_DIR -> .env.deploy -> ./logs",
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt; fail when a required value is missing",
    )
    parser.add_argument(
        "--skip-external-probe",
        action="store_true",
        help="Do not probe http://<host>/ from this machine during validation",
    )
    parser.add_argument(
        "--hooks-module",
        default=None,
        help=(
            "Optional hooks module path or import path. "
            "Resolution: CLI -> DEPLOY_HOOKS_MODULE env var -> scripts/remote_deploy/deploy_customizations.py"
        ),
    )
    parser.add_argument(
        "--hooks-soft-fail",
        action="store_true",
        help="Log hook failures and keep going (else DEPLOY_HOOKS_SOFT_FAIL env var)",
    )
    return parser


def _resolve_log_dir(args: argparse.Namespace, repo_root: Path) -> Path:
    spec = get_spec(DEPLOY_SCHEMA, VarsEnum.DEPLOY_LOG_DIR)
    raw = resolve_key(spec, args=args, repo_root=repo_root) or str(spec.default)
    path = Path(raw).expanduser()
    return path if path.is_absolute() else repo_root / path


def main(
    argv: list[str] | None = None,
    repo_root_override: Path | None = None,
    *,
    runner: Callable[..., subprocess.CompletedProcess] | None = None,
    http_get: Callable[..., Any] | None = None,
    prompt_fn: Callable[[str], str] | None = None,
    secret_prompt_fn: Callable[[str], str] | None = None,
    console: bool = True,
) -> None:
    args = build_arg_parser().parse_args(argv)

    repo_root = (repo_root_override or Path.cwd()).resolve()
    workdir = Path(args.workdir).expanduser().resolve() if args.workdir else repo_root

    log_file = setup_run_logging(_resolve_log_dir(args, repo_root), console=console)
    steps = StepLogger(logger)

    try:
        hooks = deploy_hooks.load_hooks(
            repo_root=repo_root,
            module_path=args.hooks_module,
            soft_fail=True if args.hooks_soft_fail else None,
        )
    except ImportError as exc:
        logger.error("%s ❌ %s", LOG_PREFIX, exc)
        shutdown_run_logging()
        raise SystemExit(EXIT_CONFIG_ERROR)

    ctx = deploy_hooks.DeployContext(repo_root=repo_root, env=os.environ, args=args, log_file=log_file)
    current_stage = ["collect"]

    def call_hook(hook_name: str, *hook_args: Any) -> None:
        try:
            hooks.call(hook_name, ctx, *hook_args)
        except DeploymentError:
            raise
        except Exception as exc:
            raise DeploymentError(
                f"Hook '{hook_name}' failed",
                stage=current_stage[0],
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc

    def run_stage(stage: str, message: str, icon: str, fn: Callable[[], Any], done: str) -> Any:
        current_stage[0] = stage
        steps.start(message, icon=icon)
        call_hook("pre_stage", stage)
        try:
            result = fn()
        except OSError as exc:
            # Missing local binary (git/ssh/rsync) or an unreadable path.
            raise DeploymentError(
                f"Could not run a local command: {exc}",
                stage=stage,
                detail=f"{type(exc).__name__}: {exc}",
            ) from exc
        call_hook("post_stage", stage, result)
        steps.done(done)
        return result

    def remote_session(config: DeploymentConfig) -> RemoteSession:
        return RemoteSession(config, runner=runner)

    try:
        config: DeploymentConfig = run_stage(
            "collect",
            "Collecting deployment parameters",
            "🔧",
            lambda: collect_config(args, repo_root, prompt_fn=prompt_fn, secret_prompt_fn=secret_prompt_fn),
            "Deployment parameters collected.",
        )
        ctx.config = config

        def _sync():
            working_copy = sync_repository(config, workdir=workdir, runner=runner)
            return working_copy, detect_build_descriptor(working_copy)

        working_copy, descriptor = run_stage(
            "sync",
            f"Synchronizing repository (branch {config.branch})",
            "📦",
            _sync,
            "Repository cloned and verified successfully.",
        )

        def _provision() -> None:
            with remote_session(config) as session:
                session.check_connectivity()
                provision(session, config)

        run_stage(
            "provision",
            f"Connecting to remote server: {config.ssh_target}",
            "🔗",
            _provision,
            "Remote environment setup complete.",
        )

        run_stage(
            "transport",
            "Transferring project files to remote server",
            "📤",
            lambda: transport(config, working_copy, runner=runner),
            f"Project files copied to {config.remote_app_dir}.",
        )

        def _deploy() -> None:
            with remote_session(config) as session:
                deploy(session, config, descriptor)

        run_stage(
            "deploy",
            "Deploying application remotely",
            "🚀",
            _deploy,
            "Application deployed successfully!",
        )

        def _proxy() -> None:
            with remote_session(config) as session:
                configure_proxy(session, config)

        run_stage(
            "proxy",
            "Configuring Nginx reverse proxy",
            "⚙️",
            _proxy,
            f"Nginx forwards port 80 to http://localhost:{config.app_port}.",
        )

        def _validate():
            with remote_session(config) as session:
                return validate(
                    session,
                    config,
                    http_get=http_get,
                    external_probe=not args.skip_external_probe,
                )

        report = run_stage(
            "validate",
            "Validating deployment",
            "🧪",
            _validate,
            "Deployment validation complete!",
        )

        if args.cleanup:

            def _cleanup() -> None:
                with remote_session(config) as session:
                    cleanup(session, config, descriptor)

            run_stage(
                "cleanup",
                "Cleaning up deployment resources",
                "🧹",
                _cleanup,
                "Cleanup complete.",
            )

        call_hook(
            "post_deploy",
            {
                "working_copy": str(working_copy.path),
                "descriptor": descriptor.kind.value,
                "healthy": report.healthy,
                "cleanup": bool(args.cleanup),
                "log_file": str(log_file),
            },
        )
        logger.info("%s 🚀 Deployment process completed successfully!", LOG_PREFIX)

    except DeploymentError as exc:
        logger.error("%s ❌ %s", LOG_PREFIX, exc.format())
        logger.error("%s ❌ Error occurred in stage '%s'. Check %s for details.", LOG_PREFIX, exc.stage, log_file)
        try:
            hooks.call("on_error", ctx, exc)
        except Exception as hook_exc:
            logger.error("%s ❌ Hook 'on_error' failed: %s", LOG_PREFIX, hook_exc)
        shutdown_run_logging()
        raise SystemExit(EXIT_CONFIG_ERROR if isinstance(exc, ValidationError) else EXIT_FAILURE)
    except KeyboardInterrupt:
        logger.warning(
            "%s ⚠️ Interrupted during stage '%s'. Remote state may be partially updated; re-run to converge.",
            LOG_PREFIX,
            current_stage[0],
        )
        logger.warning("%s Log file: %s", LOG_PREFIX, log_file)
        shutdown_run_logging()
        raise SystemExit(EXIT_INTERRUPTED)

    shutdown_run_logging()


if __name__ == "__main__":
    main()
