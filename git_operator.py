# git_operator.py

import logging
import os
import shlex
import subprocess
from typing import Callable, Dict, Optional, Sequence, Tuple, Type

from errors import (
    BranchCreateFailed,
    CloneFailed,
    GitOperationFailed,
    InvocationTimeout,
    PushRejected,
    RemoteQueryFailed,
)
from models.branch_spec import BranchSpec
from models.settings import RepositoryTarget
from utils import CommandError, Deadline, run_command
from workspace import Workspace

logger = logging.getLogger(__name__)

# git ls-remote --exit-code returns 2 when no ref matched.
LS_REMOTE_NO_MATCH = 2

# Push failures that mean the remote refused the ref update rather than being unreachable.
REJECTION_MARKERS = ("[rejected]", "[remote rejected]", "already exists", "fetch first", "non-fast-forward", "stale info")

Runner = Callable[..., Tuple[str, str]]


class Checkout:
    """A clone inside a workspace, plus the environment every later git call needs."""

    def __init__(self, workspace: Workspace, env: Dict[str, str], deadline: Optional[Deadline]):
        self.workspace = workspace
        self.env = env
        self.deadline = deadline
        self.default_branch: Optional[str] = None

    @property
    def repo_dir(self) -> str:
        return self.workspace.repo_dir


class GitOperator:
    """
    Clone, check, branch and push against the target remote over SSH.

    All git processes go through `runner` (utils.run_command by default), which must
    return (stdout, stderr) and raise CommandError on a non-zero exit.
    """

    def __init__(
            self,
            git_binary: str = "git",
            ssh_binary: str = "ssh",
            strict_host_key_checking: str = "accept-new",
            runner: Runner = run_command,
    ):
        self.git_binary = git_binary
        self.ssh_binary = ssh_binary
        self.strict_host_key_checking = strict_host_key_checking
        self.runner = runner

    def ssh_command(self, key_path: str, workspace: Workspace) -> str:
        parts = [
            self.ssh_binary,
            "-F", "/dev/null",
            "-i", key_path,
            "-o", "IdentitiesOnly=yes",
            "-o", "BatchMode=yes",
            "-o", f"StrictHostKeyChecking={self.strict_host_key_checking}",
            "-o", f"UserKnownHostsFile={workspace.known_hosts}",
        ]
        return " ".join(shlex.quote(part) for part in parts)

    def git_env(self, key_path: str, workspace: Workspace) -> Dict[str, str]:
        env = dict(os.environ)
        env["GIT_SSH_COMMAND"] = self.ssh_command(key_path, workspace)
        env["GIT_TERMINAL_PROMPT"] = "0"
        # Keep user/global git config out of the invocation (and give git a writable HOME).
        env["HOME"] = workspace.path
        env["GIT_CONFIG_NOSYSTEM"] = "1"
        return env

    def _git(
            self,
            args: Sequence[str],
            *,
            cwd: str,
            env: Dict[str, str],
            deadline: Optional[Deadline],
            error: Type[GitOperationFailed],
            action: str,
    ) -> Tuple[str, str]:
        timeout = None
        if deadline is not None:
            deadline.check(action)
            timeout = deadline.remaining()
        try:
            return self.runner([self.git_binary, *args], cwd=cwd, env=env, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise InvocationTimeout(f"{action} did not finish within the invocation budget") from e
        except OSError as e:
            raise error(f"Could not run {self.git_binary} for {action}: {e}") from e

    def clone(
            self,
            target: RepositoryTarget,
            key_path: str,
            into: Workspace,
            deadline: Optional[Deadline] = None,
    ) -> Checkout:
        """Shallow clone of the default (or configured base) branch into the workspace."""
        checkout = Checkout(into, self.git_env(key_path, into), deadline)
        args = ["clone", "--depth", "1", "--no-tags", "--quiet"]
        if target.base_branch:
            args += ["--branch", target.base_branch]
        args += [target.url, into.repo_dir]

        logger.info(f"Cloning {target.url}")
        try:
            self._git(args, cwd=into.path, env=checkout.env, deadline=deadline, error=CloneFailed, action="clone")
        except CommandError as e:
            raise CloneFailed(f"Clone of {target.url} failed: {e.stderr}", e.stderr) from e

        checkout.default_branch = target.base_branch or self._current_branch(checkout)
        logger.info(f"Cloned {target.url}; base branch is '{checkout.default_branch}'")
        return checkout

    def _current_branch(self, checkout: Checkout) -> str:
        # Right after a clone without --branch, HEAD is the remote's default branch.
        try:
            out, _ = self._git(
                ["symbolic-ref", "--short", "HEAD"],
                cwd=checkout.repo_dir, env=checkout.env, deadline=checkout.deadline,
                error=CloneFailed, action="default branch lookup",
            )
        except CommandError as e:
            raise CloneFailed(f"Could not determine the default branch: {e.stderr}", e.stderr) from e
        return out.strip()

    def branch_exists(self, checkout: Checkout, spec: BranchSpec) -> bool:
        """Ask the remote (not the clone) whether refs/heads/<name> already exists."""
        try:
            out, _ = self._git(
                ["ls-remote", "--exit-code", "--heads", "origin", spec.ref],
                cwd=checkout.repo_dir, env=checkout.env, deadline=checkout.deadline,
                error=RemoteQueryFailed, action="remote branch lookup",
            )
        except CommandError as e:
            if e.returncode == LS_REMOTE_NO_MATCH:
                return False
            raise RemoteQueryFailed(f"Could not query remote for {spec.ref}: {e.stderr}", e.stderr) from e

        # ls-remote patterns match on trailing path components; insist on the exact ref.
        return any(line.split()[-1] == spec.ref for line in out.splitlines() if line.strip())

    def create_branch(self, checkout: Checkout, spec: BranchSpec):
        base_ref = spec.base_ref or checkout.default_branch
        if not base_ref:
            raise BranchCreateFailed(f"No base ref known for branch '{spec.name}'")
        try:
            self._git(
                ["branch", "--no-track", spec.name, f"origin/{base_ref}"],
                cwd=checkout.repo_dir, env=checkout.env, deadline=checkout.deadline,
                error=BranchCreateFailed, action="branch creation",
            )
        except CommandError as e:
            raise BranchCreateFailed(f"Could not create '{spec.name}' from '{base_ref}': {e.stderr}", e.stderr) from e
        logger.info(f"Created local branch '{spec.name}' from '{base_ref}'")

    def push(self, checkout: Checkout, spec: BranchSpec) -> bool:
        """
        Push the new branch without force.

        Returns True if this push created the ref, False if the remote already had it at
        the same commit. Raises PushRejected otherwise; `conflict` tells a refused ref
        update apart from transport errors.
        """
        refspec = f"{spec.ref}:{spec.ref}"
        try:
            out, _ = self._git(
                ["push", "--porcelain", "origin", refspec],
                cwd=checkout.repo_dir, env=checkout.env, deadline=checkout.deadline,
                error=PushRejected, action="push",
            )
        except CommandError as e:
            output = f"{e.stdout}\n{e.stderr}"
            conflict = any(marker in output for marker in REJECTION_MARKERS)
            raise PushRejected(f"Push of '{spec.name}' failed: {e.stderr or e.stdout}", e.stderr, conflict=conflict) from e

        flag = push_status_flag(out, spec.ref)
        if flag == "=":
            logger.info(f"Remote already had '{spec.name}' at the same commit")
            return False
        logger.info(f"Pushed '{spec.name}'")
        return True


def push_status_flag(porcelain_output: str, ref: str) -> Optional[str]:
    """
    Status flag for `ref` from `git push --porcelain` output, e.g. "*" (new ref),
    "=" (up to date) or "!" (rejected).
    """
    for line in porcelain_output.splitlines():
        fields = line.split("\t")
        if len(fields) >= 2 and fields[1].endswith(f":{ref}"):
            return fields[0][:1] or None
    return None
