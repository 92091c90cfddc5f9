"""Standalone validation of one test evidence manifest and its artifacts.

Unlike the aggregator, the validator accepts entries whose result is
"failed" as long as they are internally consistent; it answers "is this
manifest truthful?", not "is it publishable?".
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from compliance_evidence.core.errors import CompletenessError, DuplicateError, ShapeError
from compliance_evidence.core.files import load_model
from compliance_evidence.core.models import TestManifest
from compliance_evidence.core.validation import (
    DEFAULT_REQUIRED_TEST_IDS,
    require_consistent_result,
    require_json_artifact,
    require_test_ids,
    resolve_artifact_path,
    validate_entry_structure,
    verify_artifact,
)
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)

_MIN_COMMIT_SHA_LENGTH = 7


@dataclass(frozen=True)
class ValidationReport:
    tests: int
    artifacts: int

    def summary(self) -> str:
        return f"Manifest validated successfully. tests={self.tests} artifacts={self.artifacts}"


class ManifestValidator:
    """Validates a manifest's structure, artifact hashes and required ids.

    Args:
        manifest_path: Manifest to validate.
        tests_dir: Where "current/tests/..." artifact paths resolve.
        base_dir: Base for other relative artifact paths.
        required_test_ids: Ids that must be present.
    """

    def __init__(
        self,
        manifest_path: Path,
        tests_dir: Path,
        base_dir: Path | None = None,
        required_test_ids: Sequence[str] = DEFAULT_REQUIRED_TEST_IDS,
    ) -> None:
        self._manifest_path = manifest_path
        self._tests_dir = tests_dir
        self._base_dir = base_dir or Path.cwd()
        self._required_test_ids = list(required_test_ids)

    def validate(self) -> ValidationReport:
        """Run every check.

        Returns:
            Counts of validated tests and artifacts.

        Raises:
            EvidenceError: The first violation found (ShapeError,
                CompletenessError, DuplicateError or IntegrityError).
        """
        manifest = load_model(self._manifest_path, TestManifest, "Manifest")
        if not manifest.test_evidence:
            raise CompletenessError("Manifest testEvidence must not be empty.", field="testEvidence")

        seen: set[str] = set()
        artifact_count = 0
        for entry in manifest.test_evidence:
            if entry.test_id in seen:
                raise DuplicateError(f"Duplicate testId in manifest: {entry.test_id}", field=entry.test_id)
            seen.add(entry.test_id)

            if len(entry.source_commit_sha) < _MIN_COMMIT_SHA_LENGTH:
                raise ShapeError(f"{entry.test_id}: sourceCommitSha is invalid.", field="sourceCommitSha")
            validate_entry_structure(entry, "Manifest")
            require_consistent_result(entry, "Manifest")
            require_json_artifact(entry)

            for artifact in entry.artifacts:
                local_path = resolve_artifact_path(artifact.path, self._tests_dir, self._base_dir)
                verify_artifact(entry, artifact, local_path)
                artifact_count += 1

        require_test_ids(seen, self._required_test_ids, "Manifest")

        report = ValidationReport(tests=len(seen), artifacts=artifact_count)
        logger.info("Validated test evidence manifest", tests=report.tests, artifacts=report.artifacts)
        return report
