"""
Artifact hand-off between steps of one run.
"""

import logging
import shutil
from pathlib import Path
from typing import Dict

from controller.src.errors import PipelineRunError

logger = logging.getLogger(__name__)

class ArtifactError(PipelineRunError):
    """Raised when an artifact cannot be published."""

class ArtifactNotReadyError(PipelineRunError):
    """Raised when a step consumes an artifact nobody has published yet."""

class ArtifactChannel:
    """
    Run-scoped artifact area.
    Each name has one producer; any later step may consume it.
    Nothing is shared across runs.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._published: Dict[str, Path] = {}
        self._producers: Dict[str, str] = {}

    def publish(self, step_name: str, name: str, path: Path) -> Path:
        """Copy the subtree at `path` into the channel under `name`."""
        if name in self._published:
            raise ArtifactError(
                f"Artifact '{name}' already published by step '{self._producers[name]}'"
            )

        source = Path(path)
        if not source.exists():
            raise ArtifactError(f"Step '{step_name}' did not produce artifact '{name}' at {source}")

        root = self.root.resolve()
        target = self.root / name
        if target.resolve().parent != root:
            raise ArtifactError(f"Artifact name '{name}' does not name a directory in the artifact area")

        try:
            self.root.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, target, symlinks=True)
            else:
                target.mkdir()
                shutil.copy2(source, target / source.name)
        except OSError as e:
            # shutil.Error is an OSError
            raise ArtifactError(f"Step '{step_name}' could not publish artifact '{name}': {e}")

        self._published[name] = target
        self._producers[name] = step_name
        logger.info(f"Step '{step_name}' published artifact '{name}'")
        return target

    def consume(self, name: str) -> Path:
        if name not in self._published:
            raise ArtifactNotReadyError(f"Artifact '{name}' has not been published")
        return self._published[name]

    def producer(self, name: str) -> str:
        return self._producers[name]

    def names(self):
        return list(self._published)

    def discard(self):
        shutil.rmtree(self.root, ignore_errors=True)
        self._published.clear()
        self._producers.clear()
