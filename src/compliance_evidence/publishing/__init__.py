"""Evidence publication: composing current/ and archiving history/."""

from __future__ import annotations

from compliance_evidence.publishing.composer import (
    DEFAULT_DOCUMENTS,
    CompanionDocumentSpec,
    EvidenceComposer,
    build_checks,
    build_verification_commands,
)
from compliance_evidence.publishing.history import HistorySnapshotter, SnapshotResult, snapshot_name

__all__ = [
    "DEFAULT_DOCUMENTS",
    "CompanionDocumentSpec",
    "EvidenceComposer",
    "HistorySnapshotter",
    "SnapshotResult",
    "build_checks",
    "build_verification_commands",
    "snapshot_name",
]
