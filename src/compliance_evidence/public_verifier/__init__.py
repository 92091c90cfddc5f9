"""Consumer-side verification of published evidence."""

from __future__ import annotations

from compliance_evidence.public_verifier.verifier import (
    DEFAULT_EVIDENCE_URL,
    DEFAULT_SCHEMA_URL,
    PublicVerifier,
    VerificationSummary,
)

__all__ = [
    "DEFAULT_EVIDENCE_URL",
    "DEFAULT_SCHEMA_URL",
    "PublicVerifier",
    "VerificationSummary",
]
