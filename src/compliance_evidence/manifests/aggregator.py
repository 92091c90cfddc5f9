"""Manifest aggregator: merges the per-suite manifests into one.

Concurrency contract: the producers are independent writers that each own a
distinct directory below input_root; the aggregator is the single reader and
must only run after every producer has finished. The orchestrator enforces
that ordering. The aggregator checks it as far as it can: every directory in
expected_manifest_dirs must already contain its manifest.

There is no recovery path. A structurally invalid entry, a failed assertion,
a duplicate test id or a missing required test aborts the merge before
anything is written, so a bad manifest can never be laundered into a good
merged one.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from compliance_evidence.core.errors import CompletenessError, DuplicateError
from compliance_evidence.core.files import load_model, write_json
from compliance_evidence.core.models import (
    MANIFEST_FILENAME,
    TESTS_DIRNAME,
    TestEvidenceEntry,
    TestManifest,
    format_timestamp,
)
from compliance_evidence.core.validation import (
    DEFAULT_REQUIRED_TEST_IDS,
    require_all_assertions_passed,
    require_test_ids,
    validate_entry_structure,
)
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MergeResult:
    """Outcome of a merge.

    Attributes:
        manifest: The merged manifest (not yet written).
        manifest_files: Source manifests, in processing order.
        entry_sources: testId -> manifest file the kept entry came from.
    """

    manifest: TestManifest
    manifest_files: list[Path]
    entry_sources: dict[str, Path]


class ManifestAggregator:
    """Discovers, validates and merges per-job test evidence manifests.

    Args:
        input_root: Directory searched recursively for manifests.
        output_path: Merged manifest destination. Excluded from discovery so
            re-running a merge is stable. Defaults to input_root's manifest.
        required_test_ids: Test ids that must be present after merging.
        expected_manifest_dirs: Producer directories (relative to
            input_root) that must each hold a finished manifest.
        allow_duplicate_override: Legacy last-write-wins handling for a
            testId found in several manifests. Every override is logged.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        input_root: Path,
        output_path: Path | None = None,
        required_test_ids: Sequence[str] = DEFAULT_REQUIRED_TEST_IDS,
        expected_manifest_dirs: Sequence[str] = (),
        allow_duplicate_override: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._input_root = input_root
        self._output_path = output_path or input_root / MANIFEST_FILENAME
        self._required_test_ids = list(required_test_ids)
        self._expected_manifest_dirs = list(expected_manifest_dirs)
        self._allow_duplicate_override = allow_duplicate_override
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def output_path(self) -> Path:
        return self._output_path

    def discover(self) -> list[Path]:
        """Find every per-job manifest below input_root.

        Returns:
            Manifest paths sorted lexicographically, excluding output_path.
        """
        if not self._input_root.is_dir():
            raise CompletenessError(
                f"Test evidence directory not found: {self._input_root}",
                field=str(self._input_root),
            )
        output = self._output_path.resolve()
        found = [
            path
            for path in self._input_root.rglob(MANIFEST_FILENAME)
            if path.is_file() and path.resolve() != output
        ]
        return sorted(found, key=lambda path: path.as_posix())

    def _check_producers_finished(self) -> None:
        for directory in self._expected_manifest_dirs:
            expected = self._input_root / directory / MANIFEST_FILENAME
            if not expected.is_file():
                raise CompletenessError(
                    f"Producer manifest missing at {expected}; "
                    "merge must run after every producer has finished.",
                    field=directory,
                )

    def merge(self) -> MergeResult:
        """Validate and merge all discovered manifests without writing anything.

        Raises:
            ShapeError: If a manifest or entry is malformed.
            CompletenessError: On empty assertions/artifacts, failed
                assertions, unfinished producers or a missing required id.
            DuplicateError: If a testId appears in more than one manifest
                (unless allow_duplicate_override) or an assertionId repeats.
        """
        self._check_producers_finished()
        manifest_files = self.discover()

        merged: dict[str, TestEvidenceEntry] = {}
        sources: dict[str, Path] = {}
        for manifest_file in manifest_files:
            manifest = load_model(manifest_file, TestManifest, "Test evidence manifest")
            for entry in manifest.test_evidence:
                validate_entry_structure(entry, str(manifest_file))
                require_all_assertions_passed(entry, str(manifest_file))

                if entry.test_id in merged:
                    if not self._allow_duplicate_override:
                        raise DuplicateError(
                            f"Duplicate testId across manifests: '{entry.test_id}' "
                            f"({sources[entry.test_id]} and {manifest_file})",
                            field=entry.test_id,
                        )
                    logger.warning(
                        "Overriding duplicate testId with later manifest",
                        test_id=entry.test_id,
                        previous=str(sources[entry.test_id]),
                        replacement=str(manifest_file),
                    )
                merged[entry.test_id] = entry
                sources[entry.test_id] = manifest_file

        require_test_ids(merged.keys(), self._required_test_ids, "Merged manifests")

        manifest = TestManifest(
            generated_at=format_timestamp(self._clock()),
            test_evidence=list(merged.values()),
        )
        return MergeResult(manifest=manifest, manifest_files=manifest_files, entry_sources=sources)

    def run(self) -> MergeResult:
        """Merge, gather artifacts next to the merged manifest, and write it.

        The merged tests/ directory is cleared first so it holds only the
        artifacts of this merge, unless a producer wrote into it directly.
        """
        result = self.merge()

        tests_dir = self._output_path.parent / TESTS_DIRNAME
        sources = [
            manifest_file.parent / TESTS_DIRNAME
            for manifest_file in result.manifest_files
            if (manifest_file.parent / TESTS_DIRNAME).is_dir()
        ]
        if tests_dir.is_dir() and all(source.resolve() != tests_dir.resolve() for source in sources):
            logger.debug("Clearing merged tests directory", path=str(tests_dir))
            shutil.rmtree(tests_dir)

        for source_tests in sources:
            if source_tests.resolve() == tests_dir.resolve():
                continue
            tests_dir.mkdir(parents=True, exist_ok=True)
            for artifact in sorted(source_tests.iterdir()):
                if artifact.is_file():
                    shutil.copy2(artifact, tests_dir / artifact.name)

        write_json(self._output_path, result.manifest.to_wire())
        logger.info(
            "Merged test evidence manifests",
            manifests=len(result.manifest_files),
            tests=len(result.manifest.test_evidence),
            output=str(self._output_path),
        )
        return result
