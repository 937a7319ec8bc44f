# workspace.py

import logging
import os
import shutil
import tempfile
import time
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "auto-brancher-ws-"


class Workspace:
    """A directory owned by exactly one invocation. The clone lives in `repo_dir`."""

    def __init__(self, path: str):
        self.path = path
        self.repo_dir = os.path.join(path, "repo")
        self.known_hosts = os.path.join(path, "known_hosts")

    def __repr__(self):
        return f"Workspace({self.path!r})"


class RepositoryWorkspace:
    def __init__(self, root: Optional[str] = None, prefix: str = WORKSPACE_PREFIX):
        self.root = root
        self.prefix = prefix

    def acquire(self) -> Workspace:
        if self.root:
            os.makedirs(self.root, exist_ok=True)
        # mkdtemp gives a fresh, unpredictable, 0700 directory.
        path = tempfile.mkdtemp(prefix=self.prefix, dir=self.root)
        logger.debug(f"Acquired workspace {path}")
        return Workspace(path)

    def release(self, workspace: Workspace):
        """Remove the workspace and whatever a (possibly partial) clone left in it."""
        if not os.path.exists(workspace.path):
            return
        shutil.rmtree(workspace.path, ignore_errors=True)
        if os.path.exists(workspace.path):
            logger.error(f"Could not fully remove workspace {workspace.path}")
        else:
            logger.debug(f"Released workspace {workspace.path}")

    @contextmanager
    def scoped(self) -> Iterator[Workspace]:
        workspace = self.acquire()
        try:
            yield workspace
        finally:
            self.release(workspace)


def sweep_stale(root: Optional[str], prefixes: Sequence[str], max_age: float, now: Optional[float] = None) -> int:
    """
    Remove directories under `root` whose name starts with one of `prefixes` and that
    were last modified more than `max_age` seconds ago.

    A cancelled invocation never runs its cleanup, and a warm execution environment
    keeps its temp directory, so leftovers (including key files) are removed here.
    Returns the number of directories removed.
    """
    root = root or tempfile.gettempdir()
    now = time.time() if now is None else now
    removed = 0
    try:
        entries = os.listdir(root)
    except FileNotFoundError:
        return 0

    for entry in entries:
        if not entry.startswith(tuple(prefixes)):
            continue
        path = os.path.join(root, entry)
        try:
            if not os.path.isdir(path) or now - os.path.getmtime(path) < max_age:
                continue
        except FileNotFoundError:
            # Removed concurrently.
            continue
        shutil.rmtree(path, ignore_errors=True)
        if not os.path.exists(path):
            removed += 1
            logger.warning(f"Removed stale directory {path}")
    return removed
