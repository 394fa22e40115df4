"""Shared fixtures for controller tests."""

import pytest

from controller.src.services.definition import load_definition
from controller.src.services.orchestrator import RunOrchestrator
from controller.src.services.secrets import StaticSecretStore
from controller.src.services.status_reporter import RunReporter

class RecordingReporter(RunReporter):
    """Remembers every lifecycle call in order."""

    def __init__(self):
        self.events = []

    def run_created(self, run):
        self.events.append(("run_created", run.id))

    def run_started(self, run):
        self.events.append(("run_started", run.id))

    def step_started(self, run, step_order, step):
        self.events.append(("step_started", step_order, step.name))

    def step_finished(self, run, result):
        self.events.append(("step_finished", result.step_order, result.status.value))

    def run_finished(self, run):
        self.events.append(("run_finished", run.status.value))

    def started_steps(self):
        return [e[2] for e in self.events if e[0] == "step_started"]

@pytest.fixture
def workspace_root(tmp_path):
    return tmp_path / "workspaces"

@pytest.fixture
def reporter():
    return RecordingReporter()

@pytest.fixture
def make_orchestrator(workspace_root, reporter):
    def _factory(secrets=None, **overrides):
        options = {
            "secret_store": StaticSecretStore(secrets or {}),
            "reporter": reporter,
            "workspace_root": str(workspace_root),
            "inherit_env": ["PATH"],
        }
        options.update(overrides)
        return RunOrchestrator(**options)
    return _factory

@pytest.fixture
def deploy_config():
    """install -> build (publishes dist) -> deploy (consumes dist)."""
    return {
        "name": "Deploy site",
        "trigger": {"branches": ["main"]},
        "steps": [
            {"name": "install", "run": "echo installing"},
            {
                "name": "build",
                "commands": ["mkdir -p dist", "echo '<h1>hello</h1>' > dist/index.html"],
                "publishes": {"dist": "dist"},
            },
            {
                "name": "deploy",
                "run": 'cat "$PIPELINEX_ARTIFACT_DIST/index.html"',
                "consumes": ["dist"],
            },
        ],
    }

@pytest.fixture
def deploy_definition(deploy_config):
    return load_definition(deploy_config)
