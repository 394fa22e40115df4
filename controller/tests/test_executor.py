"""Tests for the local step runner and output collection."""

import asyncio
import os
import time

import pytest

from controller.src.models.step import StepConfig, StepStatus
from controller.src.services.executor import LocalStepRunner, StepEnvironment
from controller.src.services.log_collector import BoundedOutput

@pytest.fixture
def environment(tmp_path):
    return StepEnvironment(workdir=tmp_path, env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")})

def run_step(commands, environment, runner=None):
    runner = runner or LocalStepRunner(max_output_bytes=1024 * 1024)
    return asyncio.run(runner.execute(StepConfig(name="step", commands=commands), environment))

def test_successful_step(environment):
    result = run_step(["echo hello", "echo world"], environment)

    assert result.status == StepStatus.SUCCEEDED
    assert result.exit_code == 0
    assert result.output == "hello\nworld\n"
    assert result.error is None
    assert result.started_at <= result.finished_at

def test_stderr_is_captured(environment):
    result = run_step(["echo oops >&2"], environment)
    assert "oops" in result.output

def test_nonzero_exit(environment):
    result = run_step(["echo before", "exit 3", "echo after"], environment)

    assert result.status == StepStatus.FAILED
    assert result.exit_code == 3
    assert "before" in result.output
    assert "after" not in result.output
    assert "exited with code 3" in result.error

def test_runs_in_workdir(environment, tmp_path):
    (tmp_path / "marker.txt").write_text("here")
    result = run_step(["cat marker.txt"], environment)
    assert result.output == "here"

def test_environment_is_exactly_what_was_given(tmp_path, monkeypatch):
    monkeypatch.setenv("WORKER_ONLY_VAR", "leaked")
    environment = StepEnvironment(
        workdir=tmp_path,
        env={"PATH": os.environ.get("PATH", "/usr/bin:/bin"), "GREETING": "hi"},
    )

    result = run_step(['echo "${WORKER_ONLY_VAR:-absent} $GREETING"'], environment)

    assert result.output.strip() == "absent hi"

def test_output_is_truncated(environment):
    runner = LocalStepRunner(max_output_bytes=100)
    result = run_step(["head -c 5000 /dev/zero | tr '\\0' 'x'"], environment, runner)

    assert result.status == StepStatus.SUCCEEDED
    assert result.truncated
    assert result.output.startswith("x" * 100)
    assert "4900 bytes omitted" in result.output

def test_output_is_masked(tmp_path):
    environment = StepEnvironment(
        workdir=tmp_path,
        env={"PATH": os.environ.get("PATH", "/usr/bin:/bin"), "TOKEN": "hunter2"},
        mask=lambda text: text.replace("hunter2", "***"),
    )

    result = run_step(['echo "token is $TOKEN"'], environment)

    assert result.output == "token is ***\n"

def test_secret_across_truncation_point_is_masked(tmp_path):
    environment = StepEnvironment(
        workdir=tmp_path,
        env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")},
        mask=lambda text: text.replace("ABCDEFGHIJ", "***"),
        mask_margin=10,
    )
    runner = LocalStepRunner(max_output_bytes=100)

    result = run_step(
        ["head -c 95 /dev/zero | tr '\\0' x; printf ABCDEFGHIJ; head -c 50 /dev/zero | tr '\\0' y"],
        environment,
        runner,
    )

    assert result.truncated
    assert "ABCDE" not in result.output
    assert result.output.startswith("x" * 95 + "***")

def test_timeout_kills_step(tmp_path):
    environment = StepEnvironment(
        workdir=tmp_path,
        env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")},
        timeout=0.5,
    )

    start = time.monotonic()
    result = run_step(["sleep 30"], environment)

    assert time.monotonic() - start < 10
    assert result.status == StepStatus.TIMED_OUT
    assert "timed out" in result.error

def test_cancel_event_stops_step(tmp_path):
    async def scenario():
        cancel = asyncio.Event()
        environment = StepEnvironment(
            workdir=tmp_path,
            env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")},
            cancel_event=cancel,
        )
        runner = LocalStepRunner(max_output_bytes=1024)
        task = asyncio.create_task(
            runner.execute(StepConfig(name="long", commands=["sleep 30"]), environment)
        )
        await asyncio.sleep(0.2)
        cancel.set()
        return await asyncio.wait_for(task, timeout=10)

    result = asyncio.run(scenario())

    assert result.status == StepStatus.CANCELLED

def test_unstartable_shell(environment):
    runner = LocalStepRunner(max_output_bytes=1024, shell="/nonexistent/sh")
    result = run_step(["true"], environment, runner)

    assert result.status == StepStatus.FAILED
    assert result.exit_code is None
    assert "could not start" in result.error

def test_bounded_output_counts_dropped_bytes():
    buffer = BoundedOutput(4)
    buffer.write(b"abc")
    buffer.write(b"defg")
    buffer.write(b"hij")

    assert buffer.dropped == 6
    assert buffer.truncated
    assert buffer.text().startswith("abcd\n")

def test_bounded_output_under_limit():
    buffer = BoundedOutput(10)
    buffer.write(b"ok")

    assert not buffer.truncated
    assert buffer.text() == "ok"

def test_bounded_output_masks_before_cutting():
    buffer = BoundedOutput(6, margin=4)
    buffer.write(b"abcdSECRET")
    buffer.write(b"tail")

    assert buffer.dropped == 8
    assert buffer.text(lambda t: t.replace("SECRET", "*")) == "abcd*\n... [output truncated: 8 bytes omitted]\n"
