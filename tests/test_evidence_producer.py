"""Tests for the test evidence producer.

Covers: assertion matching, assertion evaluation, JUnit rendering,
verification commands and TestEvidenceProducer end to end.

Run with: pytest tests/test_evidence_producer.py -v
"""

from __future__ import annotations

import json
from pathlib import Path

from conftest import FIXED_NOW_ISO
from compliance_evidence.core.files import sha256_file
from compliance_evidence.core.models import AssertionDefinition, TestDefinition
from compliance_evidence.evidence_producer import (
    E2E_TEST_DEFINITIONS,
    UNIT_TEST_DEFINITIONS,
    TestEvidenceProducer,
)
from compliance_evidence.evidence_producer.runner import (
    assertion_matches,
    build_verification_command,
    evaluate_assertions,
    render_junit,
)


def make_definition(matcher_type: str = "includes", matcher: str = "needle", file_path: str = "a.ts") -> AssertionDefinition:
    """Build a minimal AssertionDefinition for tests."""
    return AssertionDefinition(
        assertion_id="a-1",
        name="Needle present",
        file_path=file_path,
        matcher_type=matcher_type,
        matcher=matcher,
        expected="needle is present",
    )


# ---------------------------------------------------------------------------
# Test 1: includes matcher is plain substring containment
# ---------------------------------------------------------------------------

def test_includes_matcher_is_substring_containment():
    definition = make_definition(matcher='.post("/devices/sync/v1")')
    assert assertion_matches(definition, 'await request.post("/devices/sync/v1").send()')
    assert not assertion_matches(definition, 'await request.post("/devices/sync/v2")')


# ---------------------------------------------------------------------------
# Test 2: regex matcher searches the whole file in multiline mode
# ---------------------------------------------------------------------------

def test_regex_matcher_uses_multiline_search():
    definition = make_definition(matcher_type="regex", matcher=r"^\s*expect\(inbox\)")
    source = "const inbox = load();\n  expect(inbox).toBeDefined();\n"
    assert assertion_matches(definition, source)
    assert not assertion_matches(definition, "const x = expect(inbox);")


# ---------------------------------------------------------------------------
# Test 3: missing source file fails only the assertions that reference it
# ---------------------------------------------------------------------------

def test_missing_source_file_fails_assertion_and_continues(tmp_path: Path):
    (tmp_path / "present.ts").write_text("needle\n", encoding="utf-8")
    definitions = [
        make_definition(file_path="missing.ts"),
        AssertionDefinition(
            assertion_id="a-2",
            name="Needle in present file",
            file_path="present.ts",
            matcher_type="includes",
            matcher="needle",
            expected="needle is present",
        ),
    ]

    results = evaluate_assertions(tmp_path, definitions, FIXED_NOW_ISO)

    assert [result.status for result in results] == ["failed", "passed"]
    assert results[0].actual == "Source file missing.ts not found."
    assert results[1].evidence_ref.file_path == "present.ts"
    assert all(result.verified_at == FIXED_NOW_ISO for result in results)


# ---------------------------------------------------------------------------
# Test 4: JUnit output escapes XML and carries a single failure when failed
# ---------------------------------------------------------------------------

def test_render_junit_escapes_and_reports_single_failure():
    passed = render_junit("a<b", "unit", 'src/"x".ts', "passed")
    failed = render_junit("sos-e2e", "e2e", "apps/api/test/sos.e2e.spec.ts", "failed")

    assert 'name="a&lt;b"' in passed
    assert 'name="src/&quot;x&quot;.ts"' in passed
    assert 'failures="0"' in passed
    assert "<failure" not in passed
    assert failed.count("<failure") == 1
    assert 'failures="1"' in failed


# ---------------------------------------------------------------------------
# Test 5: verification command checks hash, testId and assertion statuses
# ---------------------------------------------------------------------------

def test_verification_command_references_artifact_and_hash():
    command = build_verification_command(
        "current/tests/sos-e2e.json", "ab" * 32, "sos-e2e", "https://example.test/base/"
    )
    assert 'curl -fsSL "https://example.test/base/current/tests/sos-e2e.json" -o /tmp/sos-e2e.json' in command
    assert f'echo "{"ab" * 32}  /tmp/sos-e2e.json" | shasum -a 256 -c -' in command
    assert '.testId == "sos-e2e"' in command


# ---------------------------------------------------------------------------
# Test 6: producer writes a passing manifest and hashed artifacts
# ---------------------------------------------------------------------------

def test_producer_writes_manifest_and_artifacts(tmp_path: Path, source_tree: Path, fixed_clock):
    output_root = tmp_path / "out" / "unit"
    producer = TestEvidenceProducer(
        UNIT_TEST_DEFINITIONS,
        source_root=source_tree,
        output_root=output_root,
        run_id="4242",
        source_commit_sha="abcdef1234567",
        clock=fixed_clock,
    )

    manifest = producer.run()

    written = json.loads(producer.manifest_path.read_text(encoding="utf-8"))
    assert written["generatedAt"] == FIXED_NOW_ISO
    assert [entry["testId"] for entry in written["testEvidence"]] == [
        "permission-analyzer-unit",
        "ttl-indexes-persistence-unit",
        "ttl-indexes-api-unit",
    ]
    for entry in manifest.test_evidence:
        assert entry.result == "passed"
        assert entry.run_id == "4242"
        assert [artifact.format for artifact in entry.artifacts] == ["json", "junit"]
        for artifact in entry.artifacts:
            assert artifact.path.startswith("current/tests/")
            local = output_root / "tests" / Path(artifact.path).name
            assert sha256_file(local) == artifact.sha256


# ---------------------------------------------------------------------------
# Test 7: JSON artifact carries schemaVersion 1.1.0 and the entry's identity
# ---------------------------------------------------------------------------

def test_json_artifact_content(tmp_path: Path, source_tree: Path, fixed_clock):
    output_root = tmp_path / "e2e"
    TestEvidenceProducer(E2E_TEST_DEFINITIONS, source_tree, output_root, clock=fixed_clock).run()

    artifact = json.loads((output_root / "tests" / "sos-e2e.json").read_text(encoding="utf-8"))
    assert artifact["schemaVersion"] == "1.1.0"
    assert artifact["testId"] == "sos-e2e"
    assert artifact["suiteType"] == "e2e"
    assert artifact["result"] == "passed"
    assert len(artifact["assertions"]) == 3
    assert artifact["assertions"][0]["evidenceRef"]["matcherType"] == "includes"


# ---------------------------------------------------------------------------
# Test 8: failed job outcome forces every test to failed
# ---------------------------------------------------------------------------

def test_failed_job_result_forces_failed_tests(tmp_path: Path, source_tree: Path, fixed_clock):
    producer = TestEvidenceProducer(
        E2E_TEST_DEFINITIONS, source_tree, tmp_path / "e2e", job_result="failed", clock=fixed_clock
    )

    manifest = producer.run()

    assert {entry.result for entry in manifest.test_evidence} == {"failed"}
    assert all(a.status == "passed" for entry in manifest.test_evidence for a in entry.assertions)
    junit = (tmp_path / "e2e" / "tests" / "device-sync-e2e.junit.xml").read_text(encoding="utf-8")
    assert "<failure" in junit


# ---------------------------------------------------------------------------
# Test 9: a failed assertion fails its test without stopping the others
# ---------------------------------------------------------------------------

def test_failed_assertion_is_recorded_and_evaluation_continues(tmp_path: Path, source_tree: Path, fixed_clock):
    (source_tree / "apps/api/test/sos.e2e.spec.ts").write_text("nothing here\n", encoding="utf-8")

    manifest = TestEvidenceProducer(E2E_TEST_DEFINITIONS, source_tree, tmp_path / "e2e", clock=fixed_clock).run()

    results = {entry.test_id: entry.result for entry in manifest.test_evidence}
    assert results == {"device-sync-e2e": "passed", "sos-e2e": "failed"}
    sos = next(entry for entry in manifest.test_evidence if entry.test_id == "sos-e2e")
    assert [a.status for a in sos.assertions] == ["failed", "failed", "failed"]


# ---------------------------------------------------------------------------
# Test 10: producer clears its own output directory before writing
# ---------------------------------------------------------------------------

def test_producer_clears_previous_output(tmp_path: Path, source_tree: Path, fixed_clock):
    output_root = tmp_path / "unit"
    stale = output_root / "tests" / "stale.json"
    stale.parent.mkdir(parents=True)
    stale.write_text("{}", encoding="utf-8")

    TestEvidenceProducer(UNIT_TEST_DEFINITIONS, source_tree, output_root, clock=fixed_clock).run()

    assert not stale.exists()


# ---------------------------------------------------------------------------
# Test 11: custom definitions flow through unchanged
# ---------------------------------------------------------------------------

def test_custom_definitions(tmp_path: Path, fixed_clock):
    source_root = tmp_path / "src"
    source_root.mkdir()
    (source_root / "a.ts").write_text("needle\n", encoding="utf-8")
    definition = TestDefinition(
        test_id="custom-unit",
        source_path="a.ts",
        suite_type="unit",
        assertions=(make_definition(),),
    )

    manifest = TestEvidenceProducer([definition], source_root, tmp_path / "out", clock=fixed_clock).run()

    assert len(manifest.test_evidence) == 1
    assert manifest.test_evidence[0].assertions[0].actual == "Matched includes assertion in a.ts."


# ---------------------------------------------------------------------------
# Test 12: source files that are not valid UTF-8 are still evaluated
# ---------------------------------------------------------------------------

def test_non_utf8_source_is_evaluated(tmp_path: Path, fixed_clock):
    source_root = tmp_path / "src"
    source_root.mkdir()
    (source_root / "a.ts").write_bytes(b"// caf\xe9 \xff\xfe\nneedle\n")
    definition = TestDefinition(
        test_id="latin1-unit",
        source_path="a.ts",
        suite_type="unit",
        assertions=(
            make_definition(),
            AssertionDefinition(
                assertion_id="a-2",
                name="Accented word present",
                file_path="a.ts",
                matcher_type="includes",
                matcher="café",
                expected="café is present",
            ),
        ),
    )
    producer = TestEvidenceProducer([definition], source_root, tmp_path / "out", clock=fixed_clock)

    manifest = producer.run()

    assert producer.manifest_path.is_file()
    assert [assertion.status for assertion in manifest.test_evidence[0].assertions] == ["passed", "failed"]
    assert manifest.test_evidence[0].result == "failed"
