"""
GitHub service for webhook validation and repo operations.
"""

import asyncio
import hmac
import hashlib
import tempfile
import subprocess
import shutil
import os
from typing import Optional, Dict, Any, Tuple

import yaml

from api.src.config import get_settings

settings = get_settings()

CONFIG_FILES = (".pipeline.yml", ".pipeline.yaml", "pipeline.yml", "pipeline.yaml")

class RepositoryError(Exception):
    """Raised when a repository cannot be fetched."""

def verify_signature(payload: bytes, signature: str) -> bool:
    """Verify GitHub webhook signature."""
    if not settings.github_webhook_secret:
        # Skip verification if no secret configured (development)
        return True

    expected = "sha256=" + hmac.new(
        settings.github_webhook_secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature or "")

def split_ref(ref: str) -> Tuple[str, str]:
    """refs/heads/main -> ("branch", "main"), refs/tags/v1 -> ("tag", "v1")."""
    if ref.startswith("refs/heads/"):
        return "branch", ref[len("refs/heads/"):]
    if ref.startswith("refs/tags/"):
        return "tag", ref[len("refs/tags/"):]
    return "branch", ref

def _git_checkout(clone_url: str, repo_path: str, commit_sha: Optional[str], branch: Optional[str]):
    clone = ["git", "clone", "--depth", "1"]
    if branch:
        clone += ["--branch", branch]

    subprocess.run(
        clone + [clone_url, repo_path],
        check=True,
        capture_output=True,
        timeout=120
    )

    # Checkout specific commit if provided
    if commit_sha:
        subprocess.run(
            ["git", "fetch", "--depth", "1", "origin", commit_sha],
            cwd=repo_path,
            capture_output=True,
            timeout=60
        )
        subprocess.run(
            ["git", "checkout", commit_sha],
            cwd=repo_path,
            check=True,
            capture_output=True,
            timeout=30
        )

async def clone_repository(clone_url: str, commit_sha: Optional[str] = None, branch: Optional[str] = None) -> str:
    """
    Clone repository to temporary directory.
    Returns path to cloned repo. git runs in a worker thread so the event
    loop keeps serving requests.
    """
    temp_dir = tempfile.mkdtemp(prefix="pipelinex_")
    repo_path = os.path.join(temp_dir, "repo")

    try:
        await asyncio.to_thread(_git_checkout, clone_url, repo_path, commit_sha, branch)
        return repo_path
    except subprocess.TimeoutExpired:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise RepositoryError("Repository clone timed out")
    except subprocess.CalledProcessError as e:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise RepositoryError(f"Failed to clone repository: {e.stderr.decode(errors='replace')}")


async def fetch_pipeline_config(repo_path: str) -> Optional[Dict[str, Any]]:
    """
    Read .pipeline.yml from repository.
    Returns parsed config or None if not found.
    """
    for name in CONFIG_FILES:
        config_path = os.path.join(repo_path, name)
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                return yaml.safe_load(f)

    return None

def parse_webhook_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Extract relevant info from GitHub webhook payload."""
    repo = payload.get("repository", {})
    head_commit = payload.get("head_commit") or {}

    ref_type, branch = split_ref(payload.get("ref", ""))

    return {
        "repo_name": repo.get("name", ""),
        "repo_full_name": repo.get("full_name", ""),
        "clone_url": repo.get("clone_url", ""),
        "commit_sha": head_commit.get("id", payload.get("after", "")),
        "branch": branch,
        "ref_type": ref_type,
        "commit_message": head_commit.get("message", ""),
        "pusher": payload.get("pusher", {}).get("name", ""),
        "deleted": bool(payload.get("deleted", False)),
    }

def cleanup_repo(repo_path: str):
    """Clean up cloned repository."""
    if repo_path:
        # Remove the parent temp directory
        shutil.rmtree(os.path.dirname(repo_path), ignore_errors=True)
