"""Environment-driven settings for the compliance evidence toolkit.

Toolkit-specific settings use the EVIDENCE_ prefix. Variables provided by the
CI platform (GITHUB_*) and the conventional names used by the evidence
workflows are read unchanged through validation aliases.

Every option has a default so each command runs locally without CI context.
Settings are only read by the CLI; components receive plain values through
their constructors.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from compliance_evidence.core.errors import ShapeError
from compliance_evidence.core.models import DEFAULT_RAW_BASE_URL, MANIFEST_FILENAME, TESTS_DIRNAME
from compliance_evidence.core.validation import DEFAULT_REQUIRED_TEST_IDS
from compliance_evidence.public_verifier.verifier import DEFAULT_EVIDENCE_URL, DEFAULT_SCHEMA_URL

UNIT_JOB_NAME = "Compliance Test Evidence (Public)"
E2E_JOB_NAME = "Integration And E2E Tests"


class Settings(BaseSettings):
    """Settings for every compliance-evidence command.

    Environment variable prefix: EVIDENCE_
    """

    model_config = SettingsConfigDict(
        env_prefix="EVIDENCE_",
        extra="ignore",
        populate_by_name=True,
    )

    log_level: str = Field(default="INFO", description="Minimum log level (EVIDENCE_LOG_LEVEL).")

    # -------------------------------------------------------------------------
    # CI run context
    # -------------------------------------------------------------------------

    run_id: str = Field(default="local", validation_alias="GITHUB_RUN_ID")
    commit_sha: str = Field(default="local", validation_alias="GITHUB_SHA")
    event_name: str = Field(default="", validation_alias="GITHUB_EVENT_NAME")
    head_ref: str | None = Field(default=None, validation_alias="GITHUB_HEAD_REF")
    ref_name: str | None = Field(default=None, validation_alias="GITHUB_REF_NAME")
    branch_name: str | None = Field(default=None, validation_alias="BRANCH_NAME")
    changed_files_json: str = Field(default="[]", validation_alias="CHANGED_FILES_JSON")

    # -------------------------------------------------------------------------
    # Test evidence production and aggregation
    # -------------------------------------------------------------------------

    source_root: Path = Field(
        default=Path("."),
        description="Checked-out repository the assertions read from.",
    )
    output_root: Path = Field(
        default=Path("out/test-evidence"),
        description="Root of the test evidence tree (producers write unit/ and e2e/ below it).",
    )
    job_name: str | None = Field(
        default=None,
        description="Job name recorded on evidence entries (EVIDENCE_JOB_NAME). "
        "Defaults depend on the suite.",
    )
    result: str = Field(
        default="passed",
        description="Job-level outcome (EVIDENCE_RESULT). Anything but 'failed' counts as passed.",
    )
    required_test_ids_json: str | None = Field(default=None, validation_alias="REQUIRED_TEST_IDS_JSON")
    expected_manifest_dirs: list[str] = Field(
        default_factory=lambda: ["unit", "e2e"],
        description="Producer directories that must hold a manifest before merging.",
    )
    allow_duplicate_test_ids: bool = Field(
        default=False,
        description="Legacy last-write-wins merging of duplicate test ids "
        "(EVIDENCE_ALLOW_DUPLICATE_TEST_IDS). Every override is logged.",
    )
    manifest_path: Path | None = Field(
        default=None,
        validation_alias=AliasChoices("TEST_EVIDENCE_MANIFEST_PATH", "TEST_MANIFEST_PATH"),
    )
    tests_dir: Path | None = Field(default=None, validation_alias="TEST_EVIDENCE_TESTS_DIR")

    # -------------------------------------------------------------------------
    # Dispatch ingest and publication
    # -------------------------------------------------------------------------

    dispatch_payload_path: Path = Field(default=Path("out/dispatch/payload.json"), validation_alias="DISPATCH_PAYLOAD_PATH")
    ingest_output_path: Path = Field(default=Path("out/ingest/falcon.json"), validation_alias="INGEST_OUTPUT_PATH")
    ingest_path: Path = Field(default=Path("out/ingest/falcon.json"), validation_alias="INGEST_PATH")
    policy_provenance_path: Path = Field(
        default=Path("out/policy/policy-provenance.json"),
        validation_alias="POLICY_PROVENANCE_PATH",
    )
    current_dir: Path = Field(default=Path("current"), validation_alias="CURRENT_DIR")
    history_dir: Path = Field(default=Path("history"), validation_alias="HISTORY_DIR")

    falcon_token: str | None = Field(default=None, validation_alias="FALCON_TOKEN")
    falcon_owner: str = Field(default="panalgin", validation_alias="FALCON_OWNER")
    falcon_repo: str = Field(default="falcon", validation_alias="FALCON_REPO")
    github_api_url: str = Field(default="https://api.github.com", validation_alias="GITHUB_API_URL")

    # -------------------------------------------------------------------------
    # Policy package
    # -------------------------------------------------------------------------

    policy_input_path: Path = Field(default=Path("policy-input.json"))
    policy_signing_private_key: str | None = Field(default=None, validation_alias="POLICY_SIGNING_PRIVATE_KEY")
    policy_manifest_path: Path = Field(default=Path("policy/version.json"), validation_alias="POLICY_MANIFEST_PATH")

    # -------------------------------------------------------------------------
    # Public verification
    # -------------------------------------------------------------------------

    evidence_url: str = Field(default=DEFAULT_EVIDENCE_URL, validation_alias="EVIDENCE_URL")
    schema_url: str = Field(default=DEFAULT_SCHEMA_URL, validation_alias="SCHEMA_URL")
    raw_base_url: str = Field(default=DEFAULT_RAW_BASE_URL, validation_alias="RAW_BASE_URL")
    run_cosign: bool = Field(default=False, validation_alias="RUN_COSIGN")

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------

    @property
    def job_passed(self) -> bool:
        return self.result.strip().lower() != "failed"

    @property
    def merged_manifest_path(self) -> Path:
        return self.manifest_path or self.output_root / MANIFEST_FILENAME

    @property
    def merged_tests_dir(self) -> Path:
        return self.tests_dir or self.merged_manifest_path.parent / TESTS_DIRNAME

    def required_test_ids(self) -> list[str]:
        """Required test ids, overridable with a JSON string array.

        Raises:
            ShapeError: If REQUIRED_TEST_IDS_JSON is not a JSON array of strings.
        """
        if not self.required_test_ids_json:
            return list(DEFAULT_REQUIRED_TEST_IDS)
        try:
            parsed = json.loads(self.required_test_ids_json)
        except json.JSONDecodeError as exc:
            raise ShapeError("REQUIRED_TEST_IDS_JSON must be a JSON string array.", field="REQUIRED_TEST_IDS_JSON") from exc
        if not isinstance(parsed, list) or not all(isinstance(value, str) for value in parsed):
            raise ShapeError("REQUIRED_TEST_IDS_JSON must be a JSON string array.", field="REQUIRED_TEST_IDS_JSON")
        return parsed
