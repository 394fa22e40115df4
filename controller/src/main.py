"""
PipelineX Controller - Main entry point.
"""

import logging
import os
import shutil
import sys
from pathlib import Path
from typing import List

from controller.src.config import Settings, get_settings
from controller.src.worker import run_worker

logger = logging.getLogger(__name__)

def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

def preflight(settings: Settings) -> List[str]:
    """Return the problems that keep this host from running steps."""
    problems = []

    if not os.access("/bin/sh", os.X_OK):
        problems.append("/bin/sh is not executable")
    if shutil.which("git") is None:
        problems.append("git is not on PATH")

    root = Path(settings.workspace_root)
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        problems.append(f"cannot create workspace root {root}: {e}")
    else:
        if not os.access(root, os.W_OK):
            problems.append(f"workspace root {root} is not writable")

    return problems

def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("Starting PipelineX Controller")
    logger.info(f"Workspace root: {settings.workspace_root}")
    logger.info(f"Run slots: {settings.max_concurrent_runs}, step timeout: {settings.job_timeout}s")

    problems = preflight(settings)
    for problem in problems:
        logger.error(f"Preflight failed: {problem}")
    if problems:
        sys.exit(1)

    run_worker()

if __name__ == "__main__":
    main()
