"""
Disposable run workspaces and repository snapshots.
"""

import asyncio
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

from controller.src.errors import ProvisioningError

logger = logging.getLogger(__name__)

class RepositorySnapshot(Protocol):
    def materialize(self, dest: Path) -> None:
        ...

class GitSnapshot:
    """A commit of a remote repository, fetched with a shallow clone."""

    def __init__(self, clone_url: str, commit_sha: str = "", branch: str = ""):
        self.clone_url = clone_url
        self.commit_sha = commit_sha
        self.branch = branch

    def materialize(self, dest: Path) -> None:
        clone = ["git", "clone", "--depth", "1"]
        if self.branch:
            clone += ["--branch", self.branch]
        try:
            subprocess.run(
                clone + [self.clone_url, str(dest)],
                check=True,
                capture_output=True,
                timeout=120,
            )

            if self.commit_sha:
                subprocess.run(
                    ["git", "fetch", "--depth", "1", "origin", self.commit_sha],
                    cwd=dest,
                    capture_output=True,
                    timeout=60,
                )
                subprocess.run(
                    ["git", "checkout", self.commit_sha],
                    cwd=dest,
                    check=True,
                    capture_output=True,
                    timeout=30,
                )
        except subprocess.TimeoutExpired:
            raise ProvisioningError("Repository clone timed out")
        except subprocess.CalledProcessError as e:
            raise ProvisioningError(f"Failed to clone repository: {e.stderr.decode(errors='replace')}")

    def __repr__(self):
        return f"GitSnapshot({self.clone_url!r}, {self.commit_sha!r})"

class LocalSnapshot:
    """A directory on the worker, copied as-is."""

    def __init__(self, path):
        self.path = Path(path)

    def materialize(self, dest: Path) -> None:
        if not self.path.is_dir():
            raise ProvisioningError(f"Snapshot directory {self.path} does not exist")
        shutil.copytree(self.path, dest, symlinks=True, dirs_exist_ok=True)

    def __repr__(self):
        return f"LocalSnapshot({str(self.path)!r})"

class Workspace:
    """
    Layout under <workspace_root>/<run_id>:
      src/        repository checkout, working directory of every step
      artifacts/  published artifacts
      home/       HOME for step processes
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.src = self.root / "src"
        self.artifacts = self.root / "artifacts"
        self.home = self.root / "home"

    def create(self):
        # exist_ok=False: a run never reuses another run's directory
        self.root.mkdir(parents=True, exist_ok=False)
        for path in (self.src, self.artifacts, self.home):
            path.mkdir()

    def base_env(self, inherit: Iterable[str], environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Environment every step starts from: allow-listed worker variables plus HOME."""
        environ = os.environ if environ is None else environ
        env = {name: environ[name] for name in inherit if name in environ}
        env["HOME"] = str(self.home)
        env["PIPELINEX_WORKSPACE"] = str(self.src)
        return env

    def teardown(self):
        shutil.rmtree(self.root, ignore_errors=True)
        logger.debug(f"Removed workspace {self.root}")

def _teardown_after(task: asyncio.Future, workspace: Workspace):
    if not task.cancelled() and task.exception() is not None:
        logger.warning(f"Snapshot copy for {workspace.root} failed after cancellation: {task.exception()}")
    workspace.teardown()

async def provision_workspace(base: Path, run_id: str, snapshot: Optional[RepositorySnapshot]) -> Workspace:
    """Create a clean workspace for a run and materialize the repository into it."""
    workspace = Workspace(Path(base) / run_id)
    try:
        workspace.create()
    except OSError as e:
        raise ProvisioningError(f"Could not create workspace {workspace.root}: {e}")

    if snapshot is not None:
        copy = asyncio.get_running_loop().run_in_executor(None, snapshot.materialize, workspace.src)
        try:
            await asyncio.shield(copy)
        except ProvisioningError:
            workspace.teardown()
            raise
        except OSError as e:
            workspace.teardown()
            raise ProvisioningError(f"Could not materialize {snapshot!r}: {e}")
        except Exception:
            workspace.teardown()
            raise
        except asyncio.CancelledError:
            # The thread cannot be interrupted; remove the directory again once it stops writing
            workspace.teardown()
            copy.add_done_callback(lambda task: _teardown_after(task, workspace))
            raise

    logger.info(f"Provisioned workspace {workspace.root}")
    return workspace
