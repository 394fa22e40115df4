from api.src.services.github import (
    verify_signature,
    split_ref,
    clone_repository,
    fetch_pipeline_config,
    parse_webhook_payload,
    cleanup_repo,
    RepositoryError,
)
from api.src.services.pipeline_parser import (
    parse_pipeline_config,
    parse_pipeline_dict,
    declared_secrets,
    PipelineConfigError,
)
from api.src.services.events import submit_event
from api.src.services.queue import (
    enqueue_event,
    get_run_status,
    get_event_run,
    request_cancel,
    get_queue_length,
)

__all__ = [
    "verify_signature",
    "split_ref",
    "clone_repository",
    "fetch_pipeline_config",
    "parse_webhook_payload",
    "cleanup_repo",
    "RepositoryError",
    "parse_pipeline_config",
    "parse_pipeline_dict",
    "declared_secrets",
    "PipelineConfigError",
    "submit_event",
    "enqueue_event",
    "get_run_status",
    "get_event_run",
    "request_cancel",
    "get_queue_length",
]
