"""Shared data models, errors and validation for the evidence pipeline."""

from __future__ import annotations

from compliance_evidence.core.errors import (
    CompletenessError,
    DuplicateError,
    EvidenceError,
    IntegrityError,
    RemoteVerificationError,
    ShapeError,
    SignatureError,
    VerificationError,
)

__all__ = [
    "CompletenessError",
    "DuplicateError",
    "EvidenceError",
    "IntegrityError",
    "RemoteVerificationError",
    "ShapeError",
    "SignatureError",
    "VerificationError",
]
