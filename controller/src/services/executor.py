"""
Step executor - runs a pipeline step as a local process group.
"""

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from controller.src.config import get_settings
from controller.src.models.step import StepConfig, StepResult, StepStatus
from controller.src.services.log_collector import BoundedOutput, collect_output

logger = logging.getLogger(__name__)
settings = get_settings()

KILL_GRACE_SECONDS = 5
READER_DRAIN_SECONDS = 5

_EXITED = "exited"
_TIMED_OUT = "timed_out"
_CANCELLED = "cancelled"

def _no_mask(text: str) -> str:
    return text

@dataclass
class StepEnvironment:
    """Everything a step runs with. `env` is the complete process environment."""

    workdir: Path
    env: Dict[str, str]
    step_order: int = 0
    timeout: Optional[float] = None
    cancel_event: Optional[asyncio.Event] = None
    mask: Callable[[str], str] = field(default=_no_mask)
    mask_margin: int = 0

class LocalStepRunner:
    """
    Runs a step's commands with `/bin/sh -c`, joined with && so the first
    failing command fails the step.
    """

    def __init__(self, max_output_bytes: Optional[int] = None, shell: str = "/bin/sh"):
        self.max_output_bytes = max_output_bytes or settings.max_output_bytes
        self.shell = shell

    async def execute(self, step: StepConfig, environment: StepEnvironment) -> StepResult:
        started_at = datetime.utcnow()
        start = time.monotonic()
        buffer = BoundedOutput(self.max_output_bytes, environment.mask_margin)
        script = " && ".join(step.commands)

        logger.info(f"Executing step {environment.step_order}: {step.name}")

        try:
            process = await asyncio.create_subprocess_exec(
                self.shell, "-c", script,
                cwd=str(environment.workdir),
                env=environment.env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Step {environment.step_order} ({step.name}) could not start: {e}")
            return StepResult(
                step_order=environment.step_order,
                name=step.name,
                status=StepStatus.FAILED,
                output=environment.mask(str(e)),
                started_at=started_at,
                finished_at=datetime.utcnow(),
                duration_seconds=time.monotonic() - start,
                error=f"Step '{step.name}' could not start: {e}",
            )

        reader = asyncio.create_task(collect_output(process.stdout, buffer))
        try:
            outcome = await self._wait(process, environment)
        finally:
            if process.returncode is None:
                await self._terminate(process)
            await self._drain(reader)

        status, error = self._classify(step, outcome, process.returncode, environment.timeout)
        result = StepResult(
            step_order=environment.step_order,
            name=step.name,
            status=status,
            exit_code=process.returncode,
            output=buffer.text(environment.mask),
            truncated=buffer.truncated,
            started_at=started_at,
            finished_at=datetime.utcnow(),
            duration_seconds=time.monotonic() - start,
            error=error,
        )

        log = logger.info if result.succeeded else logger.error
        log(f"Step {environment.step_order} ({step.name}) {status.value} "
            f"(exit code {process.returncode}, {result.duration_seconds:.2f}s)")
        return result

    async def _wait(self, process, environment: StepEnvironment) -> str:
        wait_task = asyncio.create_task(process.wait())
        waiters = {wait_task}
        cancel_task = None
        if environment.cancel_event is not None:
            cancel_task = asyncio.create_task(environment.cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=environment.timeout or None,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()

        if wait_task in done:
            return _EXITED
        if cancel_task is not None and cancel_task in done:
            return _CANCELLED
        return _TIMED_OUT

    async def _terminate(self, process):
        """SIGTERM the whole process group, then SIGKILL after a grace period."""
        for sig in (signal.SIGTERM, signal.SIGKILL):
            try:
                os.killpg(process.pid, sig)
            except ProcessLookupError:
                break
            try:
                await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
                return
            except asyncio.TimeoutError:
                logger.warning(f"Process {process.pid} ignored {sig.name}")
        await process.wait()

    async def _drain(self, reader: asyncio.Task):
        # A detached grandchild can keep the pipe open after the group is gone
        try:
            await asyncio.wait_for(reader, timeout=READER_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Stopped reading output of a step that left the pipe open")

    @staticmethod
    def _classify(step: StepConfig, outcome: str, returncode: Optional[int], timeout: Optional[float]):
        if outcome == _TIMED_OUT:
            return StepStatus.TIMED_OUT, f"Step '{step.name}' timed out after {timeout}s"
        if outcome == _CANCELLED:
            return StepStatus.CANCELLED, f"Step '{step.name}' was cancelled"
        if returncode == 0:
            return StepStatus.SUCCEEDED, None
        return StepStatus.FAILED, f"Step '{step.name}' exited with code {returncode}"
