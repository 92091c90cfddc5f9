"""Manifest aggregation and validation."""

from __future__ import annotations

from compliance_evidence.manifests.aggregator import ManifestAggregator, MergeResult
from compliance_evidence.manifests.validator import ManifestValidator, ValidationReport

__all__ = [
    "ManifestAggregator",
    "ManifestValidator",
    "MergeResult",
    "ValidationReport",
]
