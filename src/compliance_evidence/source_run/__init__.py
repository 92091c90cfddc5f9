"""Dispatch payload verification against the CI platform."""

from __future__ import annotations

from compliance_evidence.source_run.verifier import (
    DEFAULT_REQUIRED_DEPLOY_JOBS,
    SourceRunVerifier,
    load_dispatch_payload,
    parse_dispatch_payload,
)

__all__ = [
    "DEFAULT_REQUIRED_DEPLOY_JOBS",
    "SourceRunVerifier",
    "load_dispatch_payload",
    "parse_dispatch_payload",
]
