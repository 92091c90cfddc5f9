"""Structural and integrity checks shared by the aggregator, validator and composer.

Each stage that consumes test evidence re-runs these checks itself instead of
trusting an earlier stage: the composer must be safe to call on a manifest
that never went through aggregation.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from compliance_evidence.core.errors import (
    CompletenessError,
    DuplicateError,
    IntegrityError,
)
from compliance_evidence.core.files import load_model, sha256_file
from compliance_evidence.core.models import (
    AssertionSummary,
    TestArtifact,
    TestArtifactDocument,
    TestAssertionSummary,
    TestEvidenceEntry,
)

PUBLISHED_TESTS_PREFIX = "current/tests/"

# Test ids every published evidence set must contain.
DEFAULT_REQUIRED_TEST_IDS: tuple[str, ...] = (
    "permission-analyzer-unit",
    "ttl-indexes-persistence-unit",
    "ttl-indexes-api-unit",
    "device-sync-e2e",
    "sos-e2e",
)


def validate_entry_structure(entry: TestEvidenceEntry, context: str) -> None:
    """Check the invariants the model alone cannot express.

    Args:
        entry: A parsed test evidence entry.
        context: Prefix for error messages (source file or stage name).

    Raises:
        CompletenessError: If assertions or artifacts are empty.
        DuplicateError: If an assertionId repeats within the entry.
    """
    if not entry.assertions:
        raise CompletenessError(
            f"{context}/{entry.test_id}: assertions must be a non-empty array.",
            field=entry.test_id,
        )
    if not entry.artifacts:
        raise CompletenessError(
            f"{context}/{entry.test_id}: artifacts must be a non-empty array.",
            field=entry.test_id,
        )

    seen: set[str] = set()
    for assertion in entry.assertions:
        if assertion.assertion_id in seen:
            raise DuplicateError(
                f"{context}/{entry.test_id}: duplicate assertionId '{assertion.assertion_id}'.",
                field=assertion.assertion_id,
            )
        seen.add(assertion.assertion_id)


def count_failed_assertions(entry: TestEvidenceEntry) -> int:
    return sum(1 for assertion in entry.assertions if assertion.status == "failed")


def require_all_assertions_passed(entry: TestEvidenceEntry, context: str) -> None:
    """Reject an entry carrying any failed assertion.

    Raises:
        CompletenessError: Naming the test and the number of failed assertions.
    """
    failed = count_failed_assertions(entry)
    if failed:
        raise CompletenessError(
            f"{context}/{entry.test_id}: found failed assertions ({failed}).",
            field=entry.test_id,
        )


def require_consistent_result(entry: TestEvidenceEntry, context: str) -> None:
    """Enforce result == "passed" implies every assertion passed."""
    if entry.result == "passed" and count_failed_assertions(entry):
        raise CompletenessError(
            f"{context}/{entry.test_id}: result=passed but found failed assertions.",
            field=entry.test_id,
        )


def require_test_ids(
    seen_test_ids: Iterable[str],
    required_test_ids: Iterable[str],
    context: str,
) -> None:
    """Raise for the first required test id that is absent.

    Raises:
        CompletenessError: Naming the missing test id.
    """
    present = set(seen_test_ids)
    for test_id in required_test_ids:
        if test_id not in present:
            raise CompletenessError(f"{context}: required testId is missing: {test_id}", field=test_id)


def summarize_assertions(entries: Iterable[TestEvidenceEntry]) -> AssertionSummary:
    """Count passed/failed assertions overall and per test in one pass."""
    total = passed = failed = 0
    by_test: list[TestAssertionSummary] = []
    for entry in entries:
        local_passed = local_failed = 0
        for assertion in entry.assertions:
            if assertion.status == "passed":
                local_passed += 1
            else:
                local_failed += 1
        total += local_passed + local_failed
        passed += local_passed
        failed += local_failed
        by_test.append(
            TestAssertionSummary(
                test_id=entry.test_id,
                total=local_passed + local_failed,
                passed=local_passed,
                failed=local_failed,
            )
        )
    return AssertionSummary(total=total, passed=passed, failed=failed, by_test=by_test)


def resolve_artifact_path(artifact_path: str, tests_dir: Path, base_dir: Path) -> Path:
    """Map a recorded artifact path to a local file.

    Published paths ("current/tests/<name>") resolve into tests_dir; absolute
    paths are used as-is; anything else is relative to base_dir.
    """
    if artifact_path.startswith(PUBLISHED_TESTS_PREFIX):
        return tests_dir / Path(artifact_path).name
    candidate = Path(artifact_path)
    if candidate.is_absolute():
        return candidate
    return base_dir / candidate


def verify_artifact(entry: TestEvidenceEntry, artifact: TestArtifact, local_path: Path) -> None:
    """Re-hash one artifact and, for JSON artifacts, cross-check its content.

    Args:
        entry: The entry that records the artifact.
        artifact: The recorded artifact (path and expected SHA-256).
        local_path: Where the artifact's bytes live on disk.

    Raises:
        CompletenessError: If the file is missing or has no assertions.
        IntegrityError: If the hash, embedded testId or result disagree.
        ShapeError: If a JSON artifact does not match the artifact schema.
    """
    if not local_path.is_file():
        raise CompletenessError(
            f"{entry.test_id}: artifact file not found at {local_path}.",
            field=artifact.path,
        )

    actual_sha = sha256_file(local_path)
    if actual_sha != artifact.sha256.lower():
        raise IntegrityError(
            f"{entry.test_id}: sha256 mismatch for {artifact.path}. "
            f"expected={artifact.sha256} actual={actual_sha}",
            field=artifact.path,
            expected=artifact.sha256,
            actual=actual_sha,
        )

    if artifact.format != "json":
        return

    document = load_model(local_path, TestArtifactDocument, f"{entry.test_id} json artifact")
    if document.test_id != entry.test_id:
        raise IntegrityError(
            f"{entry.test_id}: json artifact testId mismatch. "
            f"expected={entry.test_id} actual={document.test_id}",
            field=artifact.path,
            expected=entry.test_id,
            actual=document.test_id,
        )
    if document.result != entry.result:
        raise IntegrityError(
            f"{entry.test_id}: json artifact result mismatch. "
            f"expected={entry.result} actual={document.result}",
            field=artifact.path,
            expected=entry.result,
            actual=document.result,
        )
    if not document.assertions:
        raise CompletenessError(f"{entry.test_id}: json artifact assertions are missing.", field=artifact.path)


def require_json_artifact(entry: TestEvidenceEntry) -> None:
    if not any(artifact.format == "json" for artifact in entry.artifacts):
        raise CompletenessError(f"{entry.test_id}: missing json test artifact.", field=entry.test_id)
