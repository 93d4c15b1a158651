from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeRemoteHost, FakeResponse
from scripts.remote_deploy.ubuntu_deploy import build_arg_parser, main

RUN_CMD = "cd /home/ubuntu/app && sudo docker run -d -p 8080:8080 --name myapp myapp"


def _argv(ssh_key: Path, *extra: str) -> list[str]:
    return [
        "--repo-url",
        "https://git.example.com/acme/app.git",
        "--ssh-user",
        "ubuntu",
        "--ssh-host",
        "203.0.113.10",
        "--ssh-key",
        str(ssh_key),
        "--app-port",
        "8080",
        "--non-interactive",
        *extra,
    ]


def _ok_get(url, **kwargs):
    return FakeResponse(200)


def _log_text(repo_root: Path) -> str:
    logs = sorted((repo_root / "logs").glob("deploy_*.log"))
    assert logs, "expected a run log file"
    return logs[-1].read_text(encoding="utf-8")


def _call_index(host: FakeRemoteHost, predicate) -> int:
    for i, (argv, _) in enumerate(host.calls):
        if predicate(argv):
            return i
    raise AssertionError("no matching call")


@pytest.fixture(autouse=True)
def token_env(monkeypatch):
    monkeypatch.setenv("DEPLOY_GIT_TOKEN", "tok-123")


def test_arg_parser_defaults() -> None:
    args = build_arg_parser().parse_args([])
    assert args.cleanup is False
    assert args.repo_url is None
    assert args.non_interactive is False


def test_full_deploy_runs_stages_in_order(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost()
    main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)

    assert host.git_calls[0][:2] == ["git", "clone"]
    assert (tmp_path / "app" / "Dockerfile").is_file()

    cmds = host.remote_commands
    assert cmds[0] == "echo SSH_OK"
    assert cmds.index("sudo usermod -aG docker ubuntu") < cmds.index(RUN_CMD)
    assert cmds.index(RUN_CMD) < cmds.index("sudo nginx -t") < cmds.index("sudo docker ps")
    assert not any("rm -rf" in c for c in cmds)

    rsync_at = _call_index(host, lambda argv: argv[0] == "rsync")
    provision_at = _call_index(host, lambda argv: argv[-1] == "sudo usermod -aG docker ubuntu")
    deploy_at = _call_index(host, lambda argv: argv[-1] == RUN_CMD)
    assert provision_at < rsync_at < deploy_at


def test_each_stage_closes_its_ssh_master(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost()
    main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)
    exits = [argv for argv, _ in host.calls if argv[0] == "ssh" and "-O" in argv]
    # provision, deploy, proxy, validate
    assert len(exits) == 4


def test_run_log_records_steps_without_token(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost()
    main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)

    text = _log_text(tmp_path)
    assert "Step 1: Collecting deployment parameters" in text
    assert "Deployment process completed successfully" in text
    assert "tok-123" not in text


def test_second_run_pulls_and_keeps_single_instance(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost()
    main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)
    main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)

    assert [c[1] for c in host.git_calls] == ["clone", "checkout", "fetch", "checkout", "pull"]
    runs = [c for c in host.remote_commands if "docker run" in c]
    stops = [c for c in host.remote_commands if c.endswith("sudo docker stop myapp")]
    assert len(runs) == 2
    assert len(stops) == 2


def test_cleanup_flag_tears_down_after_validation(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost()
    main(_argv(ssh_key, "--cleanup"), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)

    cmds = host.remote_commands
    assert cmds.index("sudo docker ps") < cmds.index("sudo rm -rf /home/ubuntu/app")
    assert cmds[-1] == "sudo systemctl reload nginx"


def test_missing_input_aborts_before_any_remote_call(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost()
    argv = [a for a in _argv(ssh_key) if a not in {"--ssh-host", "203.0.113.10"}]
    with pytest.raises(SystemExit) as exc:
        main(argv, repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)

    assert exc.value.code == 2
    assert host.calls == []
    assert "DEPLOY_SSH_HOST" in _log_text(tmp_path)


def test_missing_descriptor_fails_sync(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost(repo_files={"README.md": "no build files"})
    with pytest.raises(SystemExit) as exc:
        main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)

    assert exc.value.code == 1
    assert host.remote_commands == []
    assert "sync failed" in _log_text(tmp_path)


def test_deploy_failure_stops_before_proxy(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost(failures={"docker build": (1, "failed to solve")})
    with pytest.raises(SystemExit) as exc:
        main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)

    assert exc.value.code == 1
    assert "sudo nginx -t" not in host.remote_commands
    assert not any("sites-available" in c for c in host.remote_commands)
    text = _log_text(tmp_path)
    assert "deploy failed" in text
    assert "Check" in text and "deploy_" in text


def test_compose_repository_uses_compose(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost(repo_files={"docker-compose.yml": "services:\n  web:\n    build: .\n    ports:\n      - \"8080:8080\"\n"})
    main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)
    assert "cd /home/ubuntu/app && sudo docker-compose -f docker-compose.yml up -d --build" in host.remote_commands
    assert RUN_CMD not in host.remote_commands


def test_failed_validation_does_not_abort(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost(curl_status="502")
    main(_argv(ssh_key, "--skip-external-probe"), repo_root_override=tmp_path, runner=host, console=False)
    assert "Application may not be responding locally" in _log_text(tmp_path)


def test_hooks_see_every_stage(tmp_path: Path, ssh_key: Path) -> None:
    record = tmp_path / "stages.txt"
    hooks_file = tmp_path / "my_hooks.py"
    hooks_file.write_text(
        "from pathlib import Path\n"
        f"RECORD = Path({str(record)!r})\n"
        "def pre_stage(ctx, stage):\n"
        "    with RECORD.open('a') as f:\n"
        "        f.write(stage + '\\n')\n"
        "def post_deploy(ctx, summary):\n"
        "    with RECORD.open('a') as f:\n"
        "        f.write('done:' + summary['descriptor'] + '\\n')\n"
    )
    host = FakeRemoteHost()
    main(
        _argv(ssh_key, "--hooks-module", str(hooks_file), "--cleanup"),
        repo_root_override=tmp_path,
        runner=host,
        http_get=_ok_get,
        console=False,
    )
    assert record.read_text().split() == [
        "collect",
        "sync",
        "provision",
        "transport",
        "deploy",
        "proxy",
        "validate",
        "cleanup",
        "done:singleImage",
    ]


def test_on_error_hook_receives_failure(tmp_path: Path, ssh_key: Path) -> None:
    record = tmp_path / "error.txt"
    hooks_file = tmp_path / "err_hooks.py"
    hooks_file.write_text(
        "from pathlib import Path\n"
        "def on_error(ctx, exc):\n"
        f"    Path({str(record)!r}).write_text(exc.stage)\n"
    )
    host = FakeRemoteHost(failures={"rsync": (23, "some files could not be transferred")})
    with pytest.raises(SystemExit):
        main(
            _argv(ssh_key, "--hooks-module", str(hooks_file)),
            repo_root_override=tmp_path,
            runner=host,
            http_get=_ok_get,
            console=False,
        )
    assert record.read_text() == "transport"


def test_missing_rsync_binary_reports_transport_stage(tmp_path: Path, ssh_key: Path) -> None:
    record = tmp_path / "error.txt"
    hooks_file = tmp_path / "err_hooks.py"
    hooks_file.write_text(
        "from pathlib import Path\n"
        "def on_error(ctx, exc):\n"
        f"    Path({str(record)!r}).write_text(exc.stage)\n"
    )
    host = FakeRemoteHost(missing_programs={"rsync"})
    with pytest.raises(SystemExit) as exc:
        main(
            _argv(ssh_key, "--hooks-module", str(hooks_file)),
            repo_root_override=tmp_path,
            runner=host,
            http_get=_ok_get,
            console=False,
        )

    assert exc.value.code == 1
    assert record.read_text() == "transport"
    text = _log_text(tmp_path)
    assert "Error occurred in stage 'transport'" in text
    assert "No such file or directory" in text
    assert not any("docker run" in c for c in host.remote_commands)


def test_missing_ssh_binary_reports_provision_stage(tmp_path: Path, ssh_key: Path) -> None:
    host = FakeRemoteHost(missing_programs={"ssh"})
    with pytest.raises(SystemExit) as exc:
        main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)

    assert exc.value.code == 1
    assert "Error occurred in stage 'provision'" in _log_text(tmp_path)


def test_failing_hook_without_soft_fail_is_reported(tmp_path: Path, ssh_key: Path) -> None:
    hooks_file = tmp_path / "bad_hooks.py"
    hooks_file.write_text(
        "def pre_stage(ctx, stage):\n"
        "    if stage == 'deploy':\n"
        "        raise RuntimeError('hook exploded')\n"
    )
    host = FakeRemoteHost()
    with pytest.raises(SystemExit) as exc:
        main(
            _argv(ssh_key, "--hooks-module", str(hooks_file)),
            repo_root_override=tmp_path,
            runner=host,
            http_get=_ok_get,
            console=False,
        )

    assert exc.value.code == 1
    assert not any("docker run" in c for c in host.remote_commands)
    text = _log_text(tmp_path)
    assert "Hook 'pre_stage' failed" in text
    assert "Error occurred in stage 'deploy'" in text


def test_empty_token_aborts_before_any_subprocess_call(tmp_path: Path, ssh_key: Path, monkeypatch) -> None:
    monkeypatch.setenv("DEPLOY_GIT_TOKEN", "")
    (tmp_path / ".env.deploy.secrets").write_text("DEPLOY_GIT_TOKEN=\n", encoding="utf-8")
    host = FakeRemoteHost()
    with pytest.raises(SystemExit) as exc:
        main(_argv(ssh_key), repo_root_override=tmp_path, runner=host, http_get=_ok_get, console=False)

    assert exc.value.code == 2
    assert host.calls == []
    assert "DEPLOY_GIT_TOKEN" in _log_text(tmp_path)
