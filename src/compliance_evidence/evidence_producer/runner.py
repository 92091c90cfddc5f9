"""Test evidence producer: evaluates assertion definitions and writes artifacts.

One producer instance runs one suite (unit or e2e) inside its own CI job. It
owns its output directory exclusively:

    <output_root>/
        compliance-test-evidence-manifest.json
        tests/<testId>.json
        tests/<testId>.junit.xml

Two producers never share an output directory, so they can run in parallel
without coordination. A failed assertion never stops evaluation; it is
recorded and surfaces downstream, where the aggregator rejects it.
"""

from __future__ import annotations

import re
import shutil
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from xml.sax.saxutils import escape

from compliance_evidence.core.files import dump_json, sha256_file, write_json
from compliance_evidence.core.models import (
    DEFAULT_RAW_BASE_URL,
    MANIFEST_FILENAME,
    TESTS_DIRNAME,
    AssertionDefinition,
    EvidenceRef,
    Result,
    TestArtifact,
    TestArtifactDocument,
    TestAssertion,
    TestDefinition,
    TestEvidenceEntry,
    TestManifest,
    format_timestamp,
)
from compliance_evidence.core.validation import PUBLISHED_TESTS_PREFIX
from compliance_evidence.evidence_producer.definitions import DEFAULT_WORKFLOW_PATH
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)

_XML_ATTRIBUTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def _xml(value: str) -> str:
    return escape(value, _XML_ATTRIBUTE_ENTITIES)


def assertion_matches(definition: AssertionDefinition, source: str) -> bool:
    """Evaluate one matcher against the full text of a source file.

    Args:
        definition: The assertion to evaluate.
        source: Complete file content.

    Returns:
        True if the substring is contained (includes) or the pattern is
        found anywhere in multiline mode (regex).
    """
    if definition.matcher_type == "includes":
        return definition.matcher in source
    return re.search(definition.matcher, source, re.MULTILINE) is not None


def evaluate_assertions(
    source_root: Path,
    definitions: Sequence[AssertionDefinition],
    verified_at: str,
) -> list[TestAssertion]:
    """Evaluate a test's assertions, reading each source file once.

    A missing source file makes the assertions that reference it fail; it
    does not abort evaluation of the remaining assertions.

    Args:
        source_root: Checked-out repository root.
        definitions: Assertions to evaluate, in order.
        verified_at: Timestamp recorded on every evaluated assertion.

    Returns:
        One TestAssertion per definition, in definition order.
    """
    cache: dict[str, str | None] = {}
    results: list[TestAssertion] = []

    for definition in definitions:
        if definition.file_path not in cache:
            path = source_root / definition.file_path
            # Undecodable bytes read as U+FFFD.
            cache[definition.file_path] = path.read_text(encoding="utf-8", errors="replace") if path.is_file() else None
        source = cache[definition.file_path]

        if source is None:
            logger.warning(
                "Assertion source file is missing",
                assertion_id=definition.assertion_id,
                file_path=definition.file_path,
            )
            matched = False
            actual = f"Source file {definition.file_path} not found."
        else:
            matched = assertion_matches(definition, source)
            actual = (
                f"Matched {definition.matcher_type} assertion in {definition.file_path}."
                if matched
                else f"Matcher '{definition.matcher}' not found in {definition.file_path}."
            )

        results.append(
            TestAssertion(
                assertion_id=definition.assertion_id,
                name=definition.name,
                status="passed" if matched else "failed",
                expected=definition.expected,
                actual=actual,
                evidence_ref=EvidenceRef(
                    file_path=definition.file_path,
                    matcher_type=definition.matcher_type,
                    matcher=definition.matcher,
                ),
                verified_at=verified_at,
            )
        )

    return results


def render_junit(test_id: str, suite_type: str, source_path: str, result: Result) -> str:
    """Render a single-case JUnit XML document for a test.

    A failed test carries exactly one failure element summarizing that at
    least one assertion did not pass.
    """
    header = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<testsuite name="{_xml(test_id)}" tests="1" failures="{0 if result == "passed" else 1}" '
        'errors="0" skipped="0" time="0">\n'
    )
    testcase = f'  <testcase classname="{_xml(suite_type)}" name="{_xml(source_path)}"'
    if result == "passed":
        return f"{header}{testcase} />\n</testsuite>\n"
    return (
        f"{header}{testcase}>\n"
        '    <failure message="Assertion check failed">'
        "At least one compliance assertion did not pass.</failure>\n"
        "  </testcase>\n</testsuite>\n"
    )


def build_verification_command(artifact_path: str, sha256: str, test_id: str, raw_base_url: str) -> str:
    """Build the shell one-liner a reader can run to re-check a JSON artifact.

    Downloads the artifact, checks its SHA-256 and asserts that it names the
    test and that all of its assertions passed.
    """
    artifact_name = Path(artifact_path).name
    return " && ".join(
        [
            f'curl -fsSL "{raw_base_url.rstrip("/")}/{artifact_path}" -o /tmp/{artifact_name}',
            f'echo "{sha256}  /tmp/{artifact_name}" | shasum -a 256 -c -',
            f"jq -e '.testId == \"{test_id}\" and (.assertions | type == \"array\" and length > 0) "
            f"and ([.assertions[].status == \"passed\"] | all)' /tmp/{artifact_name} >/dev/null",
        ]
    )


class TestEvidenceProducer:
    """Produces one suite's manifest and per-test artifacts.

    Args:
        definitions: The suite's test definitions.
        source_root: Checked-out repository root the assertions read from.
        output_root: Directory this producer owns; cleared on every run.
        run_id: CI run identifier recorded on every entry.
        source_commit_sha: Commit under test.
        job_name: CI job name recorded on every entry.
        job_result: Job-level outcome; "failed" forces every test to failed
            even when its static assertions hold (e.g. after a crash).
        workflow_path: Workflow file recorded on entries and artifacts.
        raw_base_url: Public raw-content URL used in verification commands.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        definitions: Sequence[TestDefinition],
        source_root: Path,
        output_root: Path,
        run_id: str = "local",
        source_commit_sha: str = "local",
        job_name: str = "Compliance Test Evidence (Public)",
        job_result: Result = "passed",
        workflow_path: str = DEFAULT_WORKFLOW_PATH,
        raw_base_url: str = DEFAULT_RAW_BASE_URL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._definitions = list(definitions)
        self._source_root = source_root
        self._output_root = output_root
        self._tests_dir = output_root / TESTS_DIRNAME
        self._run_id = run_id
        self._source_commit_sha = source_commit_sha
        self._job_name = job_name
        self._job_result = job_result
        self._workflow_path = workflow_path
        self._raw_base_url = raw_base_url
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def manifest_path(self) -> Path:
        return self._output_root / MANIFEST_FILENAME

    def run(self) -> TestManifest:
        """Evaluate every definition, write artifacts and the suite manifest.

        Returns:
            The manifest that was written to manifest_path.
        """
        shutil.rmtree(self._output_root, ignore_errors=True)
        self._tests_dir.mkdir(parents=True, exist_ok=True)

        logger.info(
            "Producing test evidence",
            tests=len(self._definitions),
            output_root=str(self._output_root),
            job_result=self._job_result,
        )

        entries = [self._produce_entry(definition) for definition in self._definitions]
        manifest = TestManifest(
            generated_at=format_timestamp(self._clock()),
            test_evidence=entries,
        )
        write_json(self.manifest_path, manifest.to_wire())

        failed = [entry.test_id for entry in entries if entry.result == "failed"]
        if failed:
            logger.warning("Test evidence recorded failures", failed_tests=failed)
        logger.info("Wrote test evidence manifest", path=str(self.manifest_path), tests=len(entries))
        return manifest

    def _produce_entry(self, definition: TestDefinition) -> TestEvidenceEntry:
        executed_at = format_timestamp(self._clock())
        assertions = evaluate_assertions(self._source_root, definition.assertions, executed_at)
        has_failed_assertion = any(assertion.status == "failed" for assertion in assertions)
        result: Result = "passed" if self._job_result == "passed" and not has_failed_assertion else "failed"

        artifacts = self._write_artifacts(definition, result, executed_at, assertions)
        primary = artifacts[0]

        return TestEvidenceEntry(
            test_id=definition.test_id,
            source_path=definition.source_path,
            suite_type=definition.suite_type,
            result=result,
            workflow_path=self._workflow_path,
            run_id=self._run_id,
            job_name=self._job_name,
            source_commit_sha=self._source_commit_sha,
            executed_at=executed_at,
            artifacts=artifacts,
            verification_command=build_verification_command(
                primary.path, primary.sha256, definition.test_id, self._raw_base_url
            ),
            assertions=assertions,
        )

    def _write_artifacts(
        self,
        definition: TestDefinition,
        result: Result,
        executed_at: str,
        assertions: list[TestAssertion],
    ) -> list[TestArtifact]:
        json_name = f"{definition.test_id}.json"
        junit_name = f"{definition.test_id}.junit.xml"
        json_path = self._tests_dir / json_name
        junit_path = self._tests_dir / junit_name

        document = TestArtifactDocument(
            test_id=definition.test_id,
            source_path=definition.source_path,
            suite_type=definition.suite_type,
            result=result,
            executed_at=executed_at,
            run_id=self._run_id,
            job_name=self._job_name,
            source_commit_sha=self._source_commit_sha,
            workflow_path=self._workflow_path,
            assertions=assertions,
        )
        json_path.write_text(dump_json(document.to_wire()), encoding="utf-8")
        junit_path.write_text(
            render_junit(definition.test_id, definition.suite_type, definition.source_path, result),
            encoding="utf-8",
        )

        return [
            TestArtifact(format="json", path=f"{PUBLISHED_TESTS_PREFIX}{json_name}", sha256=sha256_file(json_path)),
            TestArtifact(format="junit", path=f"{PUBLISHED_TESTS_PREFIX}{junit_name}", sha256=sha256_file(junit_path)),
        ]
