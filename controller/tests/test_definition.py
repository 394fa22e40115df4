"""Tests for building pipeline definitions and rendering actions."""

import pytest

from controller.src.errors import PipelineConfigError
from controller.src.models.step import MatchPolicy
from controller.src.services.actions import available_actions, render_action
from controller.src.services.definition import load_definition

def test_load_definition(deploy_config):
    definition = load_definition(deploy_config)

    assert definition.name == "Deploy site"
    assert definition.trigger.branches == ["main"]
    assert definition.trigger.match == MatchPolicy.EXACT
    assert [s.name for s in definition.steps] == ["install", "build", "deploy"]
    assert definition.steps[0].commands == ["echo installing"]
    assert definition.steps[1].publishes == {"dist": "dist"}
    assert definition.steps[2].consumes == ["dist"]

def test_definition_collects_required_secrets():
    definition = load_definition({
        "steps": [
            {"name": "a", "run": "true", "secrets": ["TOKEN"]},
            {"name": "b", "run": "true", "env": {"K": "${{ secrets.KEY }}"}},
        ],
    })
    assert definition.required_secrets() == {"TOKEN", "KEY"}

def test_definition_is_frozen(deploy_definition):
    with pytest.raises(Exception):
        deploy_definition.name = "changed"

def test_uses_renders_commands():
    definition = load_definition({
        "steps": [{"name": "ship", "uses": "sync", "with": {"source": "dist", "target": "/srv/www"}}],
    })
    step = definition.steps[0]
    assert step.uses == "sync"
    assert step.inputs == {"source": "dist", "target": "/srv/www"}
    assert step.commands == ["rsync -a dist/ /srv/www"]

def test_empty_config():
    with pytest.raises(PipelineConfigError, match="Empty"):
        load_definition({})

def test_step_without_commands():
    with pytest.raises(PipelineConfigError, match="no commands"):
        load_definition({"steps": [{"name": "nothing"}]})

def test_invalid_field_type():
    with pytest.raises(PipelineConfigError, match="Invalid pipeline configuration"):
        load_definition({"steps": [{"name": "a", "run": "true", "timeout": "soon"}]})

def test_sync_flags():
    commands = render_action("sync", {"source": "out/", "target": "host:/var/www", "delete": True, "dry_run": "yes"})
    assert commands == ["rsync -a --delete --dry-run --itemize-changes out/ host:/var/www"]

def test_sync_quotes_paths():
    commands = render_action("sync", {"source": "my dir", "target": "/srv/a b"})
    assert commands == ["rsync -a 'my dir/' '/srv/a b'"]

def test_archive_action():
    assert render_action("archive", {"source": "dist", "output": "site.tgz"}) == [
        "tar -czf site.tgz -C dist ."
    ]

def test_shell_action():
    assert render_action("shell", {"script": "make deploy"}) == ["make deploy"]

def test_missing_action_input():
    with pytest.raises(PipelineConfigError, match="requires input 'target'"):
        render_action("sync", {"source": "dist"})

def test_unknown_action():
    with pytest.raises(PipelineConfigError, match="Unknown action 'helm'"):
        render_action("helm", {})

def test_available_actions():
    assert {"shell", "sync", "archive"} <= set(available_actions())

@pytest.mark.parametrize("step", [
    {"name": "build", "run": "true", "publishes": {"../../leak": "dist"}},
    {"name": "build", "run": "true", "publishes": {"a/b": "dist"}},
    {"name": "deploy", "run": "true", "consumes": [".."]},
])
def test_artifact_names_must_be_plain(step):
    with pytest.raises(PipelineConfigError, match="invalid artifact name"):
        load_definition({"steps": [step]})

def test_pipeline_env_cannot_reference_secrets():
    with pytest.raises(PipelineConfigError, match="cannot reference secrets"):
        load_definition({
            "env": {"TOKEN": "${{ secrets.TOKEN }}"},
            "steps": [{"name": "a", "run": "true"}],
        })
