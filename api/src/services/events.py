"""
Turn repository pushes and manual requests into queued trigger events.
"""

import logging
import uuid
from typing import Dict, Any

from api.src.services.github import (
    clone_repository,
    fetch_pipeline_config,
    cleanup_repo,
    RepositoryError,
)
from api.src.services.pipeline_parser import (
    parse_pipeline_dict,
    declared_secrets,
    PipelineConfigError,
)
from api.src.services.queue import enqueue_event

logger = logging.getLogger(__name__)

async def submit_event(repo_info: Dict[str, Any]) -> Dict[str, Any]:
    """
    Load the pipeline definition at the pushed commit and queue the event.
    Trigger rules are evaluated by the controller; a queued event may still
    produce no run.
    """
    repo_path = None
    try:
        repo_path = await clone_repository(
            repo_info["clone_url"],
            repo_info.get("commit_sha"),
            repo_info.get("branch"),
        )

        pipeline_config = await fetch_pipeline_config(repo_path)

        if not pipeline_config:
            logger.info(f"No pipeline config found in {repo_info['repo_full_name']}")
            return {"status": "skipped", "reason": "No pipeline configuration found"}

        # Validate config
        validated_config = parse_pipeline_dict(pipeline_config)

    except PipelineConfigError as e:
        logger.error(f"Invalid pipeline config: {e}")
        return {"status": "error", "reason": str(e)}
    except RepositoryError as e:
        logger.error(f"Failed to process repository: {e}")
        return {"status": "error", "reason": str(e)}
    finally:
        if repo_path:
            cleanup_repo(repo_path)

    event_id = str(uuid.uuid4())
    await enqueue_event(
        event_id=event_id,
        config=validated_config,
        repo_info=repo_info,
    )

    logger.info(
        f"Event {event_id} queued for {repo_info['repo_full_name']} "
        f"{repo_info.get('ref_type', 'branch')} '{repo_info['branch']}'"
    )

    return {
        "status": "queued",
        "event_id": event_id,
        "pipeline": validated_config["name"],
        "steps": len(validated_config["steps"]),
        "secrets": declared_secrets(validated_config),
    }
