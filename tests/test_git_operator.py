"""Tests for GitOperator with a scripted command runner in place of git."""

import subprocess

import pytest

from errors import BranchCreateFailed, CloneFailed, InvocationTimeout, PushRejected, RemoteQueryFailed
from git_operator import Checkout, GitOperator, push_status_flag
from models.branch_spec import BranchSpec
from models.settings import RepositoryTarget
from tests.fakes import ScriptedRunner
from utils import CommandError, Deadline
from workspace import Workspace

TARGET = RepositoryTarget(url="git@github.com:mbonig/rds-tools.git")
SPEC = BranchSpec(name="rds-tools-1-2-0", package_name="rds-tools", version="1.2.0", base_ref="main")


@pytest.fixture
def workspace(tmp_path):
    return Workspace(str(tmp_path))


def command_error(returncode, stderr="", stdout=""):
    return CommandError(["git"], returncode, stdout, stderr)


def make_checkout(workspace, deadline=None):
    checkout = Checkout(workspace, {"GIT_SSH_COMMAND": "ssh"}, deadline)
    checkout.default_branch = "main"
    return checkout


class TestClone:
    def test_shallow_clone_over_ssh_with_key(self, workspace):
        runner = ScriptedRunner({"symbolic-ref": ("main", "")})
        git = GitOperator(runner=runner)

        checkout = git.clone(TARGET, "/tmp/key/deploy_key", workspace)

        clone = runner.commands[0]
        assert clone["command"] == [
            "git", "clone", "--depth", "1", "--no-tags", "--quiet",
            TARGET.url, workspace.repo_dir,
        ]
        ssh_command = clone["env"]["GIT_SSH_COMMAND"]
        assert "-i /tmp/key/deploy_key" in ssh_command
        assert "IdentitiesOnly=yes" in ssh_command
        assert "StrictHostKeyChecking=accept-new" in ssh_command
        assert f"UserKnownHostsFile={workspace.known_hosts}" in ssh_command
        assert clone["env"]["HOME"] == workspace.path
        assert clone["env"]["GIT_TERMINAL_PROMPT"] == "0"
        assert checkout.default_branch == "main"

    def test_default_branch_read_from_clone(self, workspace):
        runner = ScriptedRunner({"symbolic-ref": ("trunk", "")})

        checkout = GitOperator(runner=runner).clone(TARGET, "key", workspace)

        assert runner.subcommands() == ["clone", "symbolic-ref"]
        assert runner.commands[1]["cwd"] == workspace.repo_dir
        assert checkout.default_branch == "trunk"

    def test_configured_base_branch(self, workspace):
        runner = ScriptedRunner()
        target = RepositoryTarget(url=TARGET.url, base_branch="develop")

        checkout = GitOperator(runner=runner).clone(target, "key", workspace)

        assert runner.subcommands() == ["clone"]
        assert ["--branch", "develop"] == runner.commands[0]["command"][6:8]
        assert checkout.default_branch == "develop"

    def test_host_key_policy(self, workspace):
        git = GitOperator(strict_host_key_checking="yes", ssh_binary="/opt/bin/ssh")

        command = git.ssh_command("key", workspace)

        assert command.startswith("/opt/bin/ssh ")
        assert "StrictHostKeyChecking=yes" in command

    def test_clone_failure(self, workspace):
        runner = ScriptedRunner({"clone": command_error(128, "Host key verification failed.")})

        with pytest.raises(CloneFailed) as excinfo:
            GitOperator(runner=runner).clone(TARGET, "key", workspace)

        assert "Host key verification failed." in excinfo.value.stderr

    def test_missing_git_binary(self, workspace):
        runner = ScriptedRunner({"clone": FileNotFoundError("git")})

        with pytest.raises(CloneFailed):
            GitOperator(runner=runner).clone(TARGET, "key", workspace)

    def test_clone_timeout(self, workspace):
        runner = ScriptedRunner({"clone": subprocess.TimeoutExpired(["git", "clone"], 5)})

        with pytest.raises(InvocationTimeout):
            GitOperator(runner=runner).clone(TARGET, "key", workspace, Deadline(30))

    def test_deadline_bounds_each_command(self, workspace):
        runner = ScriptedRunner({"symbolic-ref": ("main", "")})

        GitOperator(runner=runner).clone(TARGET, "key", workspace, Deadline(30))

        assert all(0 < entry["timeout"] <= 30 for entry in runner.commands)

    def test_expired_deadline_runs_nothing(self, workspace):
        runner = ScriptedRunner()

        with pytest.raises(InvocationTimeout):
            GitOperator(runner=runner).clone(TARGET, "key", workspace, Deadline(0))

        assert runner.commands == []


class TestBranchExists:
    def test_no_match_exit_code_means_absent(self, workspace):
        runner = ScriptedRunner({"ls-remote": command_error(2)})

        assert GitOperator(runner=runner).branch_exists(make_checkout(workspace), SPEC) is False
        assert runner.commands[0]["command"] == [
            "git", "ls-remote", "--exit-code", "--heads", "origin", "refs/heads/rds-tools-1-2-0",
        ]

    def test_exact_ref_means_present(self, workspace):
        runner = ScriptedRunner({"ls-remote": ("0123abcd\trefs/heads/rds-tools-1-2-0", "")})

        assert GitOperator(runner=runner).branch_exists(make_checkout(workspace), SPEC) is True

    def test_suffix_match_is_not_the_branch(self, workspace):
        runner = ScriptedRunner({"ls-remote": ("0123abcd\trefs/heads/old/refs/heads/rds-tools-1-2-0", "")})

        assert GitOperator(runner=runner).branch_exists(make_checkout(workspace), SPEC) is False

    def test_query_failure(self, workspace):
        runner = ScriptedRunner({"ls-remote": command_error(128, "Could not read from remote repository.")})

        with pytest.raises(RemoteQueryFailed):
            GitOperator(runner=runner).branch_exists(make_checkout(workspace), SPEC)


class TestCreateBranch:
    def test_branches_from_remote_base(self, workspace):
        runner = ScriptedRunner()

        GitOperator(runner=runner).create_branch(make_checkout(workspace), SPEC)

        assert runner.commands[0]["command"] == ["git", "branch", "--no-track", "rds-tools-1-2-0", "origin/main"]
        assert runner.commands[0]["cwd"] == workspace.repo_dir

    def test_failure(self, workspace):
        runner = ScriptedRunner({"branch": command_error(128, "fatal: not a valid object name: 'origin/main'")})

        with pytest.raises(BranchCreateFailed):
            GitOperator(runner=runner).create_branch(make_checkout(workspace), SPEC)


class TestPush:
    def test_new_branch(self, workspace):
        runner = ScriptedRunner({"push": (
            "To github.com:mbonig/rds-tools.git\n"
            "*\trefs/heads/rds-tools-1-2-0:refs/heads/rds-tools-1-2-0\t[new branch]\nDone",
            "",
        )})

        assert GitOperator(runner=runner).push(make_checkout(workspace), SPEC) is True
        assert runner.commands[0]["command"] == [
            "git", "push", "--porcelain", "origin",
            "refs/heads/rds-tools-1-2-0:refs/heads/rds-tools-1-2-0",
        ]

    def test_up_to_date_is_not_a_new_push(self, workspace):
        runner = ScriptedRunner({"push": (
            "To github.com:mbonig/rds-tools.git\n"
            "=\trefs/heads/rds-tools-1-2-0:refs/heads/rds-tools-1-2-0\t[up to date]\nDone",
            "",
        )})

        assert GitOperator(runner=runner).push(make_checkout(workspace), SPEC) is False

    def test_rejected_ref_update_is_a_conflict(self, workspace):
        runner = ScriptedRunner({"push": command_error(
            1,
            stderr="error: failed to push some refs to 'github.com:mbonig/rds-tools.git'",
            stdout="!\trefs/heads/rds-tools-1-2-0:refs/heads/rds-tools-1-2-0\t[rejected] (fetch first)",
        )})

        with pytest.raises(PushRejected) as excinfo:
            GitOperator(runner=runner).push(make_checkout(workspace), SPEC)

        assert excinfo.value.conflict is True

    def test_transport_failure_is_not_a_conflict(self, workspace):
        runner = ScriptedRunner({"push": command_error(128, "git@github.com: Permission denied (publickey).")})

        with pytest.raises(PushRejected) as excinfo:
            GitOperator(runner=runner).push(make_checkout(workspace), SPEC)

        assert excinfo.value.conflict is False


class TestPushStatusFlag:
    @pytest.mark.parametrize("line, expected", [
        ("*\trefs/heads/a:refs/heads/a\t[new branch]", "*"),
        ("=\trefs/heads/a:refs/heads/a\t[up to date]", "="),
        ("!\trefs/heads/a:refs/heads/a\t[rejected] (fetch first)", "!"),
    ])
    def test_flags(self, line, expected):
        assert push_status_flag(f"To remote\n{line}\nDone", "refs/heads/a") == expected

    def test_other_ref_ignored(self):
        assert push_status_flag("*\trefs/heads/b:refs/heads/b\t[new branch]", "refs/heads/a") is None
