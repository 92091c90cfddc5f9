"""Test evidence producer for the unit and end-to-end suites.

Evaluates fixed source-content assertions and writes a per-suite manifest
plus sanitized JSON and JUnit artifacts, each anchored by its SHA-256.
"""

from __future__ import annotations

from compliance_evidence.evidence_producer.definitions import (
    DEFAULT_WORKFLOW_PATH,
    E2E_TEST_DEFINITIONS,
    UNIT_TEST_DEFINITIONS,
)
from compliance_evidence.evidence_producer.runner import TestEvidenceProducer

__all__ = [
    "DEFAULT_WORKFLOW_PATH",
    "E2E_TEST_DEFINITIONS",
    "UNIT_TEST_DEFINITIONS",
    "TestEvidenceProducer",
]
