"""Evidence composer: assembles and writes current/evidence.json.

Combines the verified IngestRecord, the merged TestManifest and the policy
provenance record into one EvidenceDocument. The composer re-checks the
manifest itself (structure, passing assertions, artifact hashes, required
test ids) and the ingest record's deploy outcome, so it is safe to call on
inputs that never went through aggregation or live verification.
Composition is pure; files are written only once the whole document has
been built, so a rejected manifest leaves the publication directory
untouched. evidence.json is written last and marks a completed publish.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from compliance_evidence.adapters.git import git_blob_sha
from compliance_evidence.core.errors import CompletenessError, DuplicateError, EvidenceError, RemoteVerificationError
from compliance_evidence.core.files import replace_json, write_json
from compliance_evidence.core.models import (
    DEFAULT_RAW_BASE_URL,
    DEPLOY_RUN_FILENAME,
    EVIDENCE_FILENAME,
    TESTS_DIRNAME,
    AssertionSummary,
    AttestationStatus,
    CompanionDocument,
    EvidenceCheck,
    EvidenceDocument,
    IngestRecord,
    PolicyPackage,
    PolicyProvenance,
    PolicyStatus,
    TestEvidenceEntry,
    TestManifest,
    VerificationCommand,
    VerificationInfo,
    format_timestamp,
)
from compliance_evidence.core.validation import (
    DEFAULT_REQUIRED_TEST_IDS,
    require_all_assertions_passed,
    require_json_artifact,
    require_test_ids,
    resolve_artifact_path,
    summarize_assertions,
    validate_entry_structure,
    verify_artifact,
)
from compliance_evidence.evidence_producer.definitions import DEFAULT_WORKFLOW_PATH
from compliance_evidence.observability import get_logger
from compliance_evidence.policy.provenance import input_builder_path
from compliance_evidence.source_run.verifier import DEFAULT_REQUIRED_DEPLOY_JOBS, required_job_violations

logger = get_logger(__name__)

POLICY_PROVIDER = "OPA + Conftest"
ATTESTATION_PROVIDER = "Sigstore Cosign"
DEFAULT_ATTESTATION_WORKFLOWS: tuple[str, ...] = (
    ".github/workflows/deploy-preprod.yml",
    ".github/workflows/deploy-prod.yml",
)
OIDC_ISSUER = "https://token.actions.githubusercontent.com"

DEFAULT_LIMITS: tuple[str, ...] = (
    "Evidence includes sanitized verification metadata and immutable links only.",
    "Operational secrets and sensitive runtime details are intentionally excluded.",
    "Runtime policy is fetched from public package and verified via checksum + detached signature.",
    "Assertion payloads are source-derived proof points; runtime DB drift is out of scope for this phase.",
)


@dataclass(frozen=True)
class CompanionDocumentSpec:
    """A Markdown document published next to evidence.json."""

    key: str
    title: str
    path: str


DEFAULT_DOCUMENTS: tuple[CompanionDocumentSpec, ...] = (
    CompanionDocumentSpec("trustCompliance", "Trust And Compliance Evidence", "current/trust-evidence.md"),
    CompanionDocumentSpec(
        "storeCompliance", "Store Compliance Backend Evidence DAF-418", "current/store-compliance.md"
    ),
)


def build_verification_commands(ingest: IngestRecord) -> list[VerificationCommand]:
    """Container signature and attestation checks for the deployed images.

    These are data for readers and the public verifier; the composer never
    runs them.
    """
    flags = (
        f'--certificate-identity-regexp "https://github.com/{ingest.source.owner}/{ingest.source.repo}'
        f'/.github/workflows/.*" --certificate-oidc-issuer "{OIDC_ISSUER}"'
    )
    api = f"{ingest.images.api.image}@{ingest.images.api.digest}"
    worker = f"{ingest.images.worker.image}@{ingest.images.worker.digest}"
    return [
        VerificationCommand(label="Verify API container signature", command=f"cosign verify {api} {flags}"),
        VerificationCommand(label="Verify Worker container signature", command=f"cosign verify {worker} {flags}"),
        VerificationCommand(
            label="Verify API container attestation", command=f"cosign verify-attestation {api} {flags}"
        ),
        VerificationCommand(
            label="Verify Worker container attestation", command=f"cosign verify-attestation {worker} {flags}"
        ),
    ]


def build_checks(
    ingest: IngestRecord,
    summary: AssertionSummary,
    required_deploy_jobs: Sequence[str] = DEFAULT_REQUIRED_DEPLOY_JOBS,
) -> list[EvidenceCheck]:
    """Derive the named checks recorded on the document."""
    job_violations = required_job_violations(ingest.deploy.jobs, required_deploy_jobs)
    return [
        EvidenceCheck(
            id="deploy-required-jobs",
            name="Deploy Required Jobs",
            status="failed" if job_violations else "passed",
            expected=f"{', '.join(required_deploy_jobs)} = success",
            actual=", ".join(f"{job.name}:{job.conclusion or 'unknown'}" for job in ingest.deploy.jobs),
        ),
        EvidenceCheck(
            id="ci-run-success",
            name="CI Run Success",
            status="passed" if ingest.ci.conclusion == "success" else "failed",
            expected="CI run conclusion is success",
            actual=f"CI run {ingest.ci.run_id} conclusion={ingest.ci.conclusion}",
        ),
        EvidenceCheck(
            id="test-assertions",
            name="Test Assertions",
            status="passed" if summary.failed == 0 else "failed",
            expected="All required tests include non-empty assertions and all assertions pass.",
            actual=f"total={summary.total}, passed={summary.passed}, failed={summary.failed}",
        ),
    ]


class EvidenceComposer:
    """Builds and publishes the evidence document.

    Args:
        manifest_path: Merged test evidence manifest.
        current_dir: Publication directory ("current").
        tests_dir: Directory holding the manifest's artifacts. Defaults to
            the tests/ directory next to the manifest.
        required_test_ids: Test ids the document must contain.
        required_deploy_jobs: Jobs named in the deploy check.
        workflow_path: CI workflow that runs the policy checks.
        attestation_workflows: Workflows that sign and attest images.
        documents: Companion documents referenced by the document.
        raw_base_url: Public raw-content URL of the evidence repository.
        limits: Stated limits of the evidence.
        blob_sha: Resolves a repository path to its git blob id.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        manifest_path: Path,
        current_dir: Path,
        tests_dir: Path | None = None,
        required_test_ids: Sequence[str] = DEFAULT_REQUIRED_TEST_IDS,
        required_deploy_jobs: Sequence[str] = DEFAULT_REQUIRED_DEPLOY_JOBS,
        workflow_path: str = DEFAULT_WORKFLOW_PATH,
        attestation_workflows: Sequence[str] = DEFAULT_ATTESTATION_WORKFLOWS,
        documents: Sequence[CompanionDocumentSpec] = DEFAULT_DOCUMENTS,
        raw_base_url: str = DEFAULT_RAW_BASE_URL,
        limits: Sequence[str] = DEFAULT_LIMITS,
        blob_sha: Callable[[str], str] = git_blob_sha,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._manifest_path = manifest_path
        self._current_dir = current_dir
        self._tests_dir = tests_dir or manifest_path.parent / TESTS_DIRNAME
        self._required_test_ids = list(required_test_ids)
        self._required_deploy_jobs = list(required_deploy_jobs)
        self._workflow_path = workflow_path
        self._attestation_workflows = list(attestation_workflows)
        self._documents = list(documents)
        self._raw_base_url = raw_base_url.rstrip("/")
        self._limits = list(limits)
        self._blob_sha = blob_sha
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def evidence_path(self) -> Path:
        return self._current_dir / EVIDENCE_FILENAME

    def validate_test_evidence(self, entries: Sequence[TestEvidenceEntry]) -> AssertionSummary:
        """Re-check every entry and artifact, then summarize assertions.

        Raises:
            CompletenessError: On an empty manifest, empty arrays, failed
                assertions, a non-passed result, a missing JSON artifact or
                a missing required test id.
            DuplicateError: On a repeated testId or assertionId.
            IntegrityError: If an artifact's bytes or identity disagree.
        """
        if not entries:
            raise CompletenessError("Test evidence manifest must contain at least one entry.", field="testEvidence")

        seen: set[str] = set()
        for entry in entries:
            if entry.test_id in seen:
                raise DuplicateError(f"Duplicate testId found in test evidence: {entry.test_id}", field=entry.test_id)
            seen.add(entry.test_id)

            validate_entry_structure(entry, "Test evidence")
            require_all_assertions_passed(entry, "Test evidence")
            if entry.result != "passed":
                raise CompletenessError(
                    f"{entry.test_id}: result is '{entry.result}', expected 'passed'.", field=entry.test_id
                )
            require_json_artifact(entry)
            for artifact in entry.artifacts:
                local_path = resolve_artifact_path(artifact.path, self._tests_dir, self._manifest_path.parent)
                verify_artifact(entry, artifact, local_path)

        require_test_ids(seen, self._required_test_ids, "Test evidence")
        return summarize_assertions(entries)

    def verify_ingest(self, ingest: IngestRecord) -> None:
        """Re-check that the ingest record describes a successful deploy.

        Raises:
            RemoteVerificationError: Carrying every violation found in the
                deploy conclusion, the required deploy jobs and the CI
                conclusion.
        """
        violations: list[str] = []
        if ingest.deploy.conclusion != "success":
            violations.append(f"deploy run conclusion is '{ingest.deploy.conclusion or 'unknown'}'")
        violations.extend(required_job_violations(ingest.deploy.jobs, self._required_deploy_jobs))
        if ingest.ci.conclusion != "success":
            violations.append(f"CI run conclusion is '{ingest.ci.conclusion or 'unknown'}'")

        if violations:
            logger.error("Ingest record failed verification", deploy_run_id=ingest.deploy.run_id, violations=violations)
            raise RemoteVerificationError(
                f"Ingest record for deploy run {ingest.deploy.run_id} failed verification: {'; '.join(violations)}",
                field="deploy_run_id",
                violations=violations,
            )

    def compose(
        self,
        ingest: IngestRecord,
        manifest: TestManifest,
        provenance: PolicyProvenance,
    ) -> EvidenceDocument:
        """Build the evidence document without writing anything."""
        self.verify_ingest(ingest)
        summary = self.validate_test_evidence(manifest.test_evidence)

        return EvidenceDocument(
            generated_at=format_timestamp(self._clock()),
            source=ingest.source,
            policy_status=PolicyStatus(
                provider=POLICY_PROVIDER,
                workflow_path=self._workflow_path,
                policy_path=provenance.policy.file_path,
                input_builder_path=input_builder_path(provenance),
            ),
            attestation_status=AttestationStatus(
                provider=ATTESTATION_PROVIDER,
                workflow_paths=self._attestation_workflows,
            ),
            documents=[
                CompanionDocument(
                    key=spec.key,
                    title=spec.title,
                    path=spec.path,
                    url=f"{self._raw_base_url}/{spec.path}",
                    sha=self._blob_sha(spec.path),
                )
                for spec in self._documents
            ],
            test_evidence=manifest.test_evidence,
            assertion_summary=summary,
            verification_commands=build_verification_commands(ingest),
            limits=self._limits,
            verification=VerificationInfo(
                ci_artifacts_validated=True,
                deploy_jobs_validated=True,
                source_repo=ingest.dispatch_payload.source_repo,
                environment=ingest.environment,
                ci_run_id=ingest.ci.run_id,
                deploy_run_id=ingest.deploy.run_id,
            ),
            policy_package=PolicyPackage(
                version=provenance.version,
                file_path=provenance.policy.file_path,
                sha256=provenance.policy.sha256,
                signature_path=provenance.policy.signature_path,
                public_key_path=provenance.policy.public_key_path,
                policy_input_sha256=provenance.policy_input_sha256,
                checksum_verified=provenance.verification.checksum_verified,
                signature_verified=provenance.verification.signature_verified,
                source_url=provenance.source_url,
            ),
            deploy_evidence=ingest.deploy,
            checks=build_checks(ingest, summary, self._required_deploy_jobs),
        )

    def publish(
        self,
        ingest: IngestRecord,
        manifest: TestManifest,
        provenance: PolicyProvenance,
    ) -> EvidenceDocument:
        """Compose the document, then write artifacts, deploy run and evidence.

        evidence.json is removed before anything else is written and is
        replaced last, so it only exists once the whole publication is on
        disk.

        Returns:
            The document written to current/evidence.json.

        Raises:
            EvidenceError: If composition fails or the publication cannot be
                written.
        """
        logger.info("Composing evidence document", tests=len(manifest.test_evidence))
        document = self.compose(ingest, manifest, provenance)

        try:
            self._current_dir.mkdir(parents=True, exist_ok=True)
            self.evidence_path.unlink(missing_ok=True)
            self._replace_tests()
            write_json(self._current_dir / DEPLOY_RUN_FILENAME, ingest.deploy.to_wire())
            replace_json(self.evidence_path, document.to_wire())
        except OSError as exc:
            logger.error("Failed to write publication", path=str(self._current_dir), error=str(exc))
            raise EvidenceError(
                f"Could not write publication under {self._current_dir}: {exc}", field=str(self._current_dir)
            ) from exc

        logger.info(
            "Wrote evidence document",
            path=str(self.evidence_path),
            assertions=document.assertion_summary.total,
            tests=len(document.test_evidence),
        )
        return document

    def _replace_tests(self) -> None:
        target = self._current_dir / TESTS_DIRNAME
        if target.resolve() == self._tests_dir.resolve():
            return
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        elif target.exists() or target.is_symlink():
            target.unlink()
        if self._tests_dir.is_dir():
            shutil.copytree(self._tests_dir, target)
