"""Tests for the command-line entry point and environment settings.

Commands run in a temporary working directory with their configuration
supplied through monkeypatched environment variables.

Run with: pytest tests/test_cli.py -v
"""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import COMMIT_SHA, read_json_file
from compliance_evidence.cli import COMMANDS, main
from compliance_evidence.core.errors import ShapeError
from compliance_evidence.core.validation import DEFAULT_REQUIRED_TEST_IDS
from compliance_evidence.settings import Settings


@pytest.fixture()
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run commands from an empty directory with a clean CI environment."""
    for name in (
        "GITHUB_RUN_ID",
        "GITHUB_SHA",
        "GITHUB_EVENT_NAME",
        "GITHUB_HEAD_REF",
        "GITHUB_REF_NAME",
        "BRANCH_NAME",
        "CHANGED_FILES_JSON",
        "REQUIRED_TEST_IDS_JSON",
        "TEST_EVIDENCE_MANIFEST_PATH",
        "TEST_MANIFEST_PATH",
        "TEST_EVIDENCE_TESTS_DIR",
        "FALCON_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Test 1: usage errors exit with status 2
# ---------------------------------------------------------------------------

def test_unknown_command_exits_2(workdir: Path, capsys: pytest.CaptureFixture[str]):
    assert main(["no-such-command"]) == 2
    assert "invalid choice" in capsys.readouterr().err


def test_missing_command_prints_usage(workdir: Path, capsys: pytest.CaptureFixture[str]):
    assert main([]) == 2
    assert "usage: compliance-evidence" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Test 2: every pipeline stage is registered
# ---------------------------------------------------------------------------

def test_commands_registered():
    assert sorted(COMMANDS) == [
        "build-evidence",
        "build-policy-input",
        "ingest-dispatch",
        "merge-test-evidence-manifests",
        "publish-snapshot",
        "run-e2e-test-evidence",
        "run-test-evidence",
        "sign-policy-package",
        "validate-test-evidence",
        "verify-current",
    ]


# ---------------------------------------------------------------------------
# Test 3: evidence errors become one prefixed line and status 1
# ---------------------------------------------------------------------------

def test_evidence_error_reported_with_command_prefix(workdir: Path, capsys: pytest.CaptureFixture[str]):
    assert main(["validate-test-evidence"]) == 1

    err = capsys.readouterr().err
    assert "[validate-test-evidence] Manifest not found at" in err


def test_missing_signing_key(workdir: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]):
    monkeypatch.delenv("POLICY_SIGNING_PRIVATE_KEY", raising=False)

    assert main(["sign-policy-package"]) == 1
    assert "[sign-policy-package] POLICY_SIGNING_PRIVATE_KEY secret is required." in capsys.readouterr().err


def test_invalid_required_test_ids(workdir: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]):
    monkeypatch.setenv("REQUIRED_TEST_IDS_JSON", '{"not": "a list"}')

    assert main(["merge-test-evidence-manifests"]) == 1
    assert "REQUIRED_TEST_IDS_JSON must be a JSON string array." in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Test 4: produce, merge and validate end to end
# ---------------------------------------------------------------------------

def test_produce_merge_validate(
    workdir: Path,
    source_tree: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
):
    monkeypatch.setenv("EVIDENCE_SOURCE_ROOT", str(source_tree))
    monkeypatch.setenv("GITHUB_RUN_ID", "4242")
    monkeypatch.setenv("GITHUB_SHA", COMMIT_SHA)

    assert main(["run-test-evidence"]) == 0
    assert main(["run-e2e-test-evidence"]) == 0
    assert main(["merge-test-evidence-manifests"]) == 0
    assert main(["validate-test-evidence"]) == 0

    out = capsys.readouterr().out
    assert "Merged 2 manifests" in out
    assert "Manifest validated successfully. tests=5 artifacts=10" in out
    merged = read_json_file(workdir / "out" / "test-evidence" / "compliance-test-evidence-manifest.json")
    assert {entry["runId"] for entry in merged["testEvidence"]} == {"4242"}
    e2e_jobs = {entry["jobName"] for entry in merged["testEvidence"] if entry["suiteType"] == "e2e"}
    assert e2e_jobs == {"Integration And E2E Tests"}


def test_merge_before_producers_finish(
    workdir: Path, source_tree: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
):
    monkeypatch.setenv("EVIDENCE_SOURCE_ROOT", str(source_tree))

    assert main(["run-test-evidence"]) == 0
    assert main(["merge-test-evidence-manifests"]) == 1
    assert "merge must run after every producer has finished" in capsys.readouterr().err


# ---------------------------------------------------------------------------
# Test 5: policy input from CI variables
# ---------------------------------------------------------------------------

def test_build_policy_input(workdir: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("GITHUB_EVENT_NAME", "pull_request")
    monkeypatch.setenv("GITHUB_HEAD_REF", "feature/sync")
    monkeypatch.setenv("GITHUB_REF_NAME", "12/merge")
    monkeypatch.setenv("CHANGED_FILES_JSON", '["apps/api/src/sync.ts"]')

    assert main(["build-policy-input"]) == 0

    assert read_json_file(workdir / "policy-input.json") == {
        "context": {"branch": "feature/sync", "eventName": "pull_request"},
        "changedFiles": ["apps/api/src/sync.ts"],
    }


# ---------------------------------------------------------------------------
# Test 6: settings defaults and overrides
# ---------------------------------------------------------------------------

def test_settings_defaults(workdir: Path):
    settings = Settings()

    assert settings.required_test_ids() == list(DEFAULT_REQUIRED_TEST_IDS)
    assert settings.merged_manifest_path == Path("out/test-evidence/compliance-test-evidence-manifest.json")
    assert settings.merged_tests_dir == Path("out/test-evidence/tests")
    assert settings.expected_manifest_dirs == ["unit", "e2e"]
    assert settings.job_passed is True


def test_settings_overrides(workdir: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("REQUIRED_TEST_IDS_JSON", '["sos-e2e"]')
    monkeypatch.setenv("TEST_MANIFEST_PATH", "custom/manifest.json")
    monkeypatch.setenv("EVIDENCE_RESULT", "FAILED")
    monkeypatch.setenv("EVIDENCE_ALLOW_DUPLICATE_TEST_IDS", "true")

    settings = Settings()

    assert settings.required_test_ids() == ["sos-e2e"]
    assert settings.merged_manifest_path == Path("custom/manifest.json")
    assert settings.merged_tests_dir == Path("custom/tests")
    assert settings.job_passed is False
    assert settings.allow_duplicate_test_ids is True


def test_settings_rejects_bad_required_ids(workdir: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("REQUIRED_TEST_IDS_JSON", "not json")

    with pytest.raises(ShapeError):
        Settings().required_test_ids()


# ---------------------------------------------------------------------------
# Test 7: filesystem errors are reported like evidence errors
# ---------------------------------------------------------------------------

def test_os_error_reported_with_command_prefix(workdir: Path, capsys: pytest.CaptureFixture[str]):
    (workdir / "policy-input.json").mkdir()

    assert main(["build-policy-input"]) == 1

    err = capsys.readouterr().err
    assert "[build-policy-input] IsADirectoryError:" in err
    assert "Traceback" not in err
