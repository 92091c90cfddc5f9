"""Adapters for external collaborators: GitHub Actions, cosign and git."""

from __future__ import annotations

from compliance_evidence.adapters.cosign import CosignRunner
from compliance_evidence.adapters.git import UNKNOWN_BLOB_SHA, git_blob_sha
from compliance_evidence.adapters.github_client import (
    GitHubActionsClient,
    WorkflowArtifactInfo,
    WorkflowJobInfo,
    WorkflowRunInfo,
)

__all__ = [
    "UNKNOWN_BLOB_SHA",
    "CosignRunner",
    "GitHubActionsClient",
    "WorkflowArtifactInfo",
    "WorkflowJobInfo",
    "WorkflowRunInfo",
    "git_blob_sha",
]
