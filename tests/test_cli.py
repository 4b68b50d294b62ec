"""Tests for the cookspace command line."""

import json
import shlex
import sys

import pytest

from cookspace.cli import cli
from cookspace.error_logging import ErrorLogger, ErrorType
from cookspace.logging import CookLogger
from cookspace.process_registry import BackgroundProcessRegistry


def py(code):
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


@pytest.fixture
def no_summary_delay(isolated_home):
    config_dir = isolated_home / ".cookspace"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "config.yaml").write_text("summary_delay_seconds: 0\n")


class TestVersion:
    def test_version(self, cli_runner):
        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "cookspace" in result.output


class TestRun:
    def test_runs_commands_in_order(self, cli_runner):
        result = cli_runner.invoke(cli, ["run", py("print('first')"), py("print('second')")])
        assert result.exit_code == 0, result.output
        assert result.output.count("(completed)") == 2

    def test_failure_sets_exit_code(self, cli_runner, no_summary_delay):
        code = "import sys; sys.stderr.write('boom\\n'); sys.exit(4)"
        result = cli_runner.invoke(cli, ["run", py(code)])
        assert result.exit_code == 1
        assert "(error)" in result.output
        assert "boom" in result.output

    def test_failure_is_recorded(self, cli_runner, no_summary_delay):
        cli_runner.invoke(cli, ["run", py("import sys; sys.exit(2)")])
        [entry] = ErrorLogger().get_recent_errors()
        assert entry["error_type"] == ErrorType.TASK_FAILED.value

    def test_cwd(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, [
            "run", "--cwd", str(tmp_path), py("open('marker', 'w').close()"),
        ])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "marker").exists()

    def test_empty_command_rejected(self, cli_runner):
        result = cli_runner.invoke(cli, ["run", "  "])
        assert result.exit_code == 2
        assert "empty command" in result.output

    def test_json_results(self, cli_runner, mocker, fake_process, spawner_factory, runner_factory):
        spawner = spawner_factory(
            fake_process(stdout=[b"built\n"]),
            fake_process(stdout=[b"fatal: oops\n"], exit_code=3),
        )
        make_runner = mocker.patch("cookspace.run_commands.make_runner", return_value=runner_factory(spawner))

        result = cli_runner.invoke(cli, ["run", "--json", "make build", "make test"])

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["results"] == [
            {
                "label": "make build",
                "command": ["make", "build"],
                "outcome": "completed",
                "exit_code": 0,
                "output_tail": ["built"],
            },
            {
                "label": "make test",
                "command": ["make", "test"],
                "outcome": "error",
                "exit_code": 3,
                "output_tail": ["fatal: oops"],
                "error_message": "fatal: oops",
            },
        ]
        assert make_runner.call_args.kwargs["console"].stderr

    def test_lines_must_be_positive(self, cli_runner):
        result = cli_runner.invoke(cli, ["run", "--lines", "0", py("pass")])
        assert result.exit_code == 2


class TestClone:
    @pytest.fixture
    def checkout_dir(self, tmp_path):
        return tmp_path / "checkouts"

    def test_invalid_repo(self, cli_runner, checkout_dir):
        result = cli_runner.invoke(cli, ["clone", "--session", "demo", "--dest", str(checkout_dir), "nope"])
        assert result.exit_code == 2
        assert "Invalid repo format" in result.output

    def test_session_required(self, cli_runner):
        result = cli_runner.invoke(cli, ["clone", "acme/app"])
        assert result.exit_code == 2

    def test_existing_checkout_skipped(self, cli_runner, checkout_dir, mocker):
        (checkout_dir / "app").mkdir(parents=True)
        make_runner = mocker.patch("cookspace.run_commands.make_runner")

        result = cli_runner.invoke(cli, ["clone", "--session", "demo", "--dest", str(checkout_dir), "acme/app"])

        assert result.exit_code == 0
        assert "already exists" in result.output
        assert "Nothing to clone." in result.output
        make_runner.assert_not_called()

    def test_clones_into_dest(self, cli_runner, checkout_dir, mocker, fake_process, spawner_factory, runner_factory):
        spawner = spawner_factory(fake_process(), fake_process())
        mocker.patch("cookspace.run_commands.make_runner", return_value=runner_factory(spawner))

        result = cli_runner.invoke(cli, [
            "clone", "--session", "demo", "--dest", str(checkout_dir), "acme/app", "acme/lib:dev",
        ])

        assert result.exit_code == 0, result.output
        assert "2 of 2 repositories cloned" in result.output
        commands = [cmd for cmd, _ in spawner.calls]
        assert commands[0][-2:] == ["https://github.com/acme/app.git", str(checkout_dir / "app")]
        assert ["--branch", "dev"] == commands[1][5:7]
        assert all(cwd == str(checkout_dir) for _, cwd in spawner.calls)

    def test_default_dest_is_session_dir(self, cli_runner, isolated_home, mocker, fake_process, spawner_factory, runner_factory):
        spawner = spawner_factory(fake_process())
        mocker.patch("cookspace.run_commands.make_runner", return_value=runner_factory(spawner))

        result = cli_runner.invoke(cli, ["clone", "--session", "demo", "acme/app"])

        assert result.exit_code == 0, result.output
        assert spawner.calls[0][1] == str(isolated_home / ".cookspace" / "sessions" / "demo")

    def test_abort_removes_partial_checkouts(
        self, cli_runner, checkout_dir, mocker, fake_process, spawner_factory, runner_factory, press
    ):
        abort = press("a")

        def start_cloning():
            (checkout_dir / "app" / ".git").mkdir(parents=True)
            abort()

        spawner = spawner_factory(fake_process(hang=True, on_start=start_cloning))
        mocker.patch("cookspace.run_commands.make_runner", return_value=runner_factory(spawner))

        result = cli_runner.invoke(cli, [
            "clone", "--session", "demo", "--dest", str(checkout_dir), "acme/app", "acme/lib",
        ])

        assert result.exit_code == 0, result.output
        assert f"Removed partial checkout {checkout_dir / 'app'}" in result.output
        assert "0 of 2 repositories cloned" in result.output
        assert not (checkout_dir / "app").exists()
        assert len(spawner.calls) == 1

    def test_failed_clone_exit_code(self, cli_runner, checkout_dir, mocker, fake_process, spawner_factory, runner_factory):
        spawner = spawner_factory(fake_process(stderr=[b"fatal: repository not found\n"], exit_code=128))
        mocker.patch("cookspace.run_commands.make_runner", return_value=runner_factory(spawner))

        result = cli_runner.invoke(cli, ["clone", "--session", "demo", "--dest", str(checkout_dir), "acme/app"])

        assert result.exit_code == 1
        assert "fatal: repository not found" in result.output
        assert "0 of 1 repository cloned" in result.output


class TestBackgroundCommands:
    @pytest.fixture
    def registry(self, isolated_home, unused_pid):
        registry = BackgroundProcessRegistry()
        registry.register(unused_pid, "git clone a", "Cloning acme/app", "demo", output_path="/tmp/git-a.log")
        registry.register(unused_pid + 1, "git clone b", "Cloning acme/lib", "other")
        return registry

    def test_list_empty(self, cli_runner):
        result = cli_runner.invoke(cli, ["bg", "list"])
        assert result.exit_code == 0
        assert "No background processes registered." in result.output

    def test_list(self, cli_runner, registry):
        result = cli_runner.invoke(cli, ["bg", "list", "--session", "demo"])
        assert result.exit_code == 0
        assert "Cloning acme/app" in result.output
        assert "Cloning acme/lib" not in result.output
        assert "output: /tmp/git-a.log" in result.output

    def test_list_json(self, cli_runner, registry, unused_pid):
        result = cli_runner.invoke(cli, ["bg", "list", "--json"])
        data = json.loads(result.output)
        assert [p["pid"] for p in data["processes"]] == [unused_pid, unused_pid + 1]

    def test_kill_confirm_declined(self, cli_runner, registry):
        result = cli_runner.invoke(cli, ["bg", "kill"], input="n\n")
        assert result.exit_code == 1
        assert len(registry.list()) == 2

    def test_kill_session(self, cli_runner, registry):
        result = cli_runner.invoke(cli, ["bg", "kill", "--session", "demo", "--yes"])
        assert result.exit_code == 0
        assert "Killed 0 of 1 process(es)" in result.output
        assert [e.session_name for e in registry.list()] == ["other"]

    def test_prune(self, cli_runner, registry):
        result = cli_runner.invoke(cli, ["bg", "prune"])
        assert result.exit_code == 0
        assert "Removed 2 stale entries." in result.output
        assert registry.list() == []

    def test_prune_lock_timeout(self, cli_runner, registry, mocker):
        mocker.patch.object(
            BackgroundProcessRegistry, "prune",
            side_effect=TimeoutError("Could not acquire registry lock after 10s"),
        )

        result = cli_runner.invoke(cli, ["bg", "prune"])

        assert result.exit_code == 1
        assert "Could not acquire registry lock" in result.output
        [entry] = ErrorLogger().get_recent_errors()
        assert entry["error_type"] == ErrorType.REGISTRY_LOCKED.value

    def test_check_cancel(self, cli_runner, registry):
        result = cli_runner.invoke(cli, ["bg", "check", "demo"], input="cancel\n")
        assert result.exit_code == 1
        assert "1 background process still running" in result.output

    def test_check_continue(self, cli_runner, registry):
        result = cli_runner.invoke(cli, ["bg", "check", "demo"], input="\n")
        assert result.exit_code == 0
        assert len(registry.list("demo")) == 1

    def test_check_nothing_running(self, cli_runner):
        result = cli_runner.invoke(cli, ["bg", "check", "demo"])
        assert result.exit_code == 0
        assert result.output == ""


class TestErrorCommands:
    def test_no_errors(self, cli_runner):
        result = cli_runner.invoke(cli, ["errors"])
        assert result.exit_code == 0
        assert "No errors in the last 7 days." in result.output

    def test_summary(self, cli_runner):
        logger = ErrorLogger()
        logger.log_error("git clone a", "task", ErrorType.TASK_FAILED, "fatal: repository not found")
        logger.log_error("git clone b", "task", ErrorType.SPAWN_FAILED, "git not found")

        result = cli_runner.invoke(cli, ["errors"])

        assert result.exit_code == 0
        assert "TASK_FAILED" in result.output
        assert "SPAWN_FAILED" in result.output
        assert "fatal: repository not found" in result.output

    def test_type_filter_json(self, cli_runner):
        logger = ErrorLogger()
        logger.log_error("a", "task", ErrorType.TASK_FAILED, "x")
        logger.log_error("b", "task", ErrorType.SPAWN_FAILED, "y")

        result = cli_runner.invoke(cli, ["errors", "--type", "SPAWN_FAILED", "--json"])

        data = json.loads(result.output)
        assert data["stats"]["total"] == 1
        assert [e["command"] for e in data["recent_errors"]] == ["b"]

    def test_logs(self, cli_runner):
        logger = CookLogger()
        logger.log_event("batch", "Starting batch: demo", {})
        logger.log_error("registry", "Failed to register", {"reason": "disk full"})

        result = cli_runner.invoke(cli, ["logs", "--level", "error"])

        assert result.exit_code == 0
        assert "Failed to register: disk full" in result.output
        assert "Starting batch" not in result.output

    def test_logs_empty(self, cli_runner):
        result = cli_runner.invoke(cli, ["logs"])
        assert "No log entries." in result.output
