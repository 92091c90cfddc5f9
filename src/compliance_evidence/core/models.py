"""Pydantic models for every document the evidence pipeline reads or writes.

Wire format is camelCase JSON; Python attributes are snake_case. All wire
models share WireModel's configuration so that:

- parsing accepts camelCase keys (and snake_case, for tests and callers),
- dumping with by_alias=True reproduces the camelCase wire format,
- instances are frozen once validated.

Timestamps are kept as the exact ISO-8601 strings found on the wire (so that
a merge re-emits them byte-for-byte) but are validated as parseable on load.

The only model that does not follow the camelCase convention is
DispatchPayload: the dispatching pipeline sends flat snake_case keys, and
that flat shape is the canonical one accepted here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
)
from pydantic.alias_generators import to_camel

SuiteType = Literal["unit", "e2e"]
Result = Literal["passed", "failed"]
AssertionStatus = Literal["passed", "failed"]
MatcherType = Literal["includes", "regex"]
ArtifactFormat = Literal["json", "junit"]
CheckStatus = Literal["passed", "failed"]

EVIDENCE_SCHEMA_VERSION = "1.0.0"
INGEST_SCHEMA_VERSION = "1.0.0"
TEST_ARTIFACT_SCHEMA_VERSION = "1.1.0"

# Well-known names of the publication layout.
MANIFEST_FILENAME = "compliance-test-evidence-manifest.json"
TESTS_DIRNAME = "tests"
EVIDENCE_FILENAME = "evidence.json"
DEPLOY_RUN_FILENAME = "deploy-run.json"
DEFAULT_RAW_BASE_URL = "https://raw.githubusercontent.com/daflan-org/fawa-compliance-evidence/main"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing "Z" for UTC.

    Args:
        value: Timestamp string, e.g. "2025-03-01T12:00:00.000Z".

    Returns:
        The parsed datetime.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp.
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def format_timestamp(moment: datetime) -> str:
    """Render a UTC datetime as ISO-8601 with millisecond precision and a "Z" suffix."""
    moment = moment.astimezone(UTC)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _check_timestamp(value: str) -> str:
    parse_timestamp(value)
    return value


NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]
TrimmedStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
IsoTimestamp = Annotated[str, StringConstraints(min_length=1), AfterValidator(_check_timestamp)]
Sha256Hex = Annotated[str, StringConstraints(pattern=r"^[A-Fa-f0-9]{64}$")]


class WireModel(BaseModel):
    """Base for camelCase JSON documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict:
        """Return the JSON-compatible camelCase representation."""
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Static assertion definitions (compiled into the producer, never user input)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssertionDefinition:
    """Immutable source-content check evaluated by the evidence producer.

    Attributes:
        assertion_id: Identifier unique within its test definition.
        name: Human-readable assertion name.
        file_path: Source file (relative to the checked-out root) to inspect.
        matcher_type: "includes" for substring containment, "regex" for a
            multiline pattern search over the whole file.
        matcher: The substring or pattern.
        expected: Human-readable statement of what must hold.
    """

    assertion_id: str
    name: str
    file_path: str
    matcher_type: MatcherType
    matcher: str
    expected: str


@dataclass(frozen=True)
class TestDefinition:
    """A named test whose evidence is a fixed list of assertions."""

    test_id: str
    source_path: str
    suite_type: SuiteType
    assertions: tuple[AssertionDefinition, ...]


# ---------------------------------------------------------------------------
# Test evidence
# ---------------------------------------------------------------------------


class EvidenceRef(WireModel):
    file_path: NonEmptyStr
    matcher_type: MatcherType
    matcher: NonEmptyStr


class TestAssertion(WireModel):
    """An evaluated AssertionDefinition."""

    assertion_id: NonEmptyStr
    name: NonEmptyStr
    status: AssertionStatus
    expected: NonEmptyStr
    actual: NonEmptyStr
    evidence_ref: EvidenceRef
    verified_at: IsoTimestamp


class TestArtifact(WireModel):
    """A published artifact; sha256 anchors every later integrity check."""

    format: ArtifactFormat
    path: NonEmptyStr
    sha256: Sha256Hex


class TestEvidenceEntry(WireModel):
    """Evidence for one test as recorded in a manifest.

    Non-emptiness of assertions and artifacts is enforced by the stage
    validators (as a CompletenessError), not by the model.
    """

    test_id: NonEmptyStr
    source_path: NonEmptyStr
    suite_type: SuiteType
    result: Result
    workflow_path: NonEmptyStr
    run_id: NonEmptyStr
    job_name: NonEmptyStr
    source_commit_sha: NonEmptyStr
    executed_at: IsoTimestamp
    artifacts: list[TestArtifact]
    verification_command: NonEmptyStr
    assertions: list[TestAssertion]


class TestManifest(WireModel):
    generated_at: IsoTimestamp
    test_evidence: list[TestEvidenceEntry]


class TestArtifactDocument(WireModel):
    """Sanitized per-test JSON artifact published under current/tests/."""

    schema_version: Literal["1.1.0"] = TEST_ARTIFACT_SCHEMA_VERSION
    test_id: NonEmptyStr
    source_path: NonEmptyStr
    suite_type: SuiteType
    result: Result
    executed_at: IsoTimestamp
    run_id: NonEmptyStr
    job_name: NonEmptyStr
    source_commit_sha: NonEmptyStr
    workflow_path: NonEmptyStr
    assertions: list[TestAssertion]


class TestAssertionSummary(WireModel):
    test_id: str
    total: int
    passed: int
    failed: int


class AssertionSummary(WireModel):
    total: int
    passed: int
    failed: int
    by_test: list[TestAssertionSummary]


# ---------------------------------------------------------------------------
# Policy package
# ---------------------------------------------------------------------------


class PolicyDescriptor(WireModel):
    file_path: NonEmptyStr
    sha256: NonEmptyStr
    signature_path: NonEmptyStr
    public_key_path: NonEmptyStr


class PolicyVerification(WireModel):
    checksum_verified: bool = False
    signature_verified: bool = False


class PolicyInputBuilderRef(WireModel):
    file_path: str | None = None
    sha256: str | None = None


class PolicyToolkit(WireModel):
    """Optional description of the toolkit that built the policy input."""

    version: str | None = None
    build_policy_input: PolicyInputBuilderRef | None = None
    package_name: str | None = None
    package_version: str | None = None
    command: str | None = None
    registry: str | None = None
    source_url: str | None = None


class PolicyProvenance(WireModel):
    version: NonEmptyStr
    policy: PolicyDescriptor
    policy_input_sha256: NonEmptyStr
    source_url: NonEmptyStr
    verification: PolicyVerification = Field(default_factory=PolicyVerification)
    toolkit: PolicyToolkit | None = None


class SignedPolicyDescriptor(WireModel):
    model_config = ConfigDict(extra="allow")

    file_path: NonEmptyStr
    sha256: str = ""
    signature_path: NonEmptyStr
    public_key_path: NonEmptyStr
    signature_algorithm: str = ""


class PolicyManifest(WireModel):
    """policy/version.json, rewritten by the policy signer. Unknown keys survive the rewrite."""

    model_config = ConfigDict(extra="allow")

    version: NonEmptyStr
    updated_at: str = ""
    policy: SignedPolicyDescriptor


class PolicyContext(WireModel):
    branch: str
    event_name: str


class PolicyInput(WireModel):
    """Input document handed to the external policy evaluator."""

    context: PolicyContext
    changed_files: list[str]


# ---------------------------------------------------------------------------
# Dispatch payload and ingest record
# ---------------------------------------------------------------------------


class DispatchPayload(BaseModel):
    """Cross-repository dispatch payload announcing a finished deploy.

    Flat snake_case keys are the canonical wire shape. Values are trimmed;
    every field must be non-empty, and the two run ids must be positive
    integers.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    source_repo: TrimmedStr
    source_ref: TrimmedStr
    source_sha: TrimmedStr
    environment: TrimmedStr
    ci_run_id: TrimmedStr
    ci_artifact_name: TrimmedStr
    policy_artifact_name: TrimmedStr
    deploy_run_id: TrimmedStr
    deploy_workflow_name: TrimmedStr
    deploy_run_number: TrimmedStr
    api_image: TrimmedStr
    api_digest: TrimmedStr
    worker_image: TrimmedStr
    worker_digest: TrimmedStr

    @field_validator("ci_run_id", "deploy_run_id")
    @classmethod
    def _positive_run_id(cls, value: str) -> str:
        if not value.isdigit() or int(value) <= 0:
            raise ValueError(f"must be a positive integer, got '{value}'")
        return str(int(value))


class WorkflowJob(WireModel):
    name: str
    status: str
    conclusion: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    html_url: str = ""


class SourceInfo(WireModel):
    owner: NonEmptyStr
    repo: NonEmptyStr
    ref: NonEmptyStr
    commit_sha: NonEmptyStr


class DispatchSummary(WireModel):
    source_repo: NonEmptyStr
    deploy_workflow_name: NonEmptyStr
    deploy_run_number: NonEmptyStr


class CiRunRecord(WireModel):
    run_id: NonEmptyStr
    run_number: str
    html_url: str
    artifact_name: NonEmptyStr
    policy_artifact_name: NonEmptyStr
    conclusion: str | None


class DeployRunRecord(WireModel):
    run_id: NonEmptyStr
    run_number: str
    workflow_name: str
    html_url: str
    conclusion: str | None
    jobs: list[WorkflowJob]


class ImageRef(WireModel):
    image: NonEmptyStr
    digest: NonEmptyStr


class ImageSet(WireModel):
    api: ImageRef
    worker: ImageRef


class IngestRecord(WireModel):
    """Verified, normalized view of a dispatch payload plus live CI state."""

    schema_version: Literal["1.0.0"] = INGEST_SCHEMA_VERSION
    generated_at: IsoTimestamp
    source: SourceInfo
    environment: NonEmptyStr
    dispatch_payload: DispatchSummary
    ci: CiRunRecord
    deploy: DeployRunRecord
    images: ImageSet


# ---------------------------------------------------------------------------
# Evidence document
# ---------------------------------------------------------------------------


class EvidenceCheck(WireModel):
    id: str
    name: str
    status: CheckStatus
    expected: str
    actual: str


class VerificationCommand(WireModel):
    label: str
    command: str


class PolicyStatus(WireModel):
    provider: str
    workflow_path: str
    policy_path: str
    input_builder_path: str


class AttestationStatus(WireModel):
    provider: str
    workflow_paths: list[str]


class CompanionDocument(WireModel):
    key: str
    title: str
    path: str
    url: str
    sha: str


class VerificationInfo(WireModel):
    dispatcher: Literal["repository_dispatch"] = "repository_dispatch"
    ci_artifacts_validated: bool
    deploy_jobs_validated: bool
    source_repo: str
    environment: str
    ci_run_id: str
    deploy_run_id: str


class PolicyPackage(WireModel):
    version: str
    file_path: str
    sha256: str
    signature_path: str
    public_key_path: str
    policy_input_sha256: str
    checksum_verified: bool
    signature_verified: bool
    source_url: str


class EvidenceDocument(WireModel):
    """The published unit: current/evidence.json."""

    schema_version: Literal["1.0.0"] = EVIDENCE_SCHEMA_VERSION
    generated_at: IsoTimestamp
    source: SourceInfo
    policy_status: PolicyStatus
    attestation_status: AttestationStatus
    documents: list[CompanionDocument]
    test_evidence: list[TestEvidenceEntry]
    assertion_summary: AssertionSummary
    verification_commands: list[VerificationCommand]
    limits: list[str]
    verification: VerificationInfo
    policy_package: PolicyPackage
    deploy_evidence: DeployRunRecord
    checks: list[EvidenceCheck]


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class HistorySnapshot(WireModel):
    """One history/index.json entry. Keys written by other versions are kept."""

    model_config = ConfigDict(extra="allow")

    snapshot: NonEmptyStr
    generated_at: str = ""
    source_ref: str = ""
    source_commit_sha: str = ""
    ci_run_id: str = ""
    deploy_run_id: str = ""


class HistoryIndex(WireModel):
    snapshots: list[HistorySnapshot] = Field(default_factory=list)
