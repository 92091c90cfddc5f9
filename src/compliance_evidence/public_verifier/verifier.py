"""Public verifier: re-checks published evidence from the consumer side.

Runs against the public raw-content URLs only and shares no state with the
publishing stages. It downloads evidence.json and its schema, re-downloads
every referenced artifact and policy file, and recomputes their SHA-256.
Container signature checks are best-effort: they run only when requested
and when cosign is installed locally.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx
from jsonschema import Draft202012Validator
from jsonschema.validators import validator_for

from compliance_evidence.adapters.cosign import CosignRunner
from compliance_evidence.core.errors import (
    CompletenessError,
    IntegrityError,
    RemoteVerificationError,
    ShapeError,
)
from compliance_evidence.core.files import parse_model, sha256_bytes
from compliance_evidence.core.models import (
    DEFAULT_RAW_BASE_URL,
    EVIDENCE_SCHEMA_VERSION,
    EvidenceDocument,
)
from compliance_evidence.core.validation import summarize_assertions
from compliance_evidence.observability import get_logger
from compliance_evidence.schemas import TEST_ARTIFACT_SCHEMA, load_schema

logger = get_logger(__name__)

DEFAULT_EVIDENCE_URL = f"{DEFAULT_RAW_BASE_URL}/current/evidence.json"
DEFAULT_SCHEMA_URL = f"{DEFAULT_RAW_BASE_URL}/schemas/evidence.schema.json"


@dataclass(frozen=True)
class VerificationSummary:
    """Counts reported after a successful verification."""

    tests: int
    artifacts: int
    assertions: int
    policy_checked: bool
    cosign_commands: int
    cosign_skipped: str | None = None

    def summary(self) -> str:
        return (
            f"Evidence verification completed successfully. tests={self.tests} "
            f"artifacts={self.artifacts} assertions={self.assertions}"
        )


def _schema_errors(schema: dict[str, Any], instance: Any) -> list[str]:
    validator_cls = validator_for(schema, default=Draft202012Validator)
    validator = validator_cls(schema)
    messages = []
    for error in validator.iter_errors(instance):
        location = "/".join(str(part) for part in error.absolute_path) or "<root>"
        messages.append(f"{location}: {error.message}")
    return sorted(messages)


class PublicVerifier:
    """Verifies a published evidence document end to end.

    Args:
        evidence_url: URL of current/evidence.json.
        schema_url: URL of the published evidence schema.
        raw_base_url: Base URL that artifact and policy paths resolve against.
        client: Optional pre-built httpx.Client (closed by its creator).
        run_cosign: Whether to re-run the container signature commands.
        cosign: Runner for the signature commands.
        artifact_schema: Schema for JSON test artifacts; the packaged one by default.
        timeout_s: Request timeout for the client created here.
    """

    def __init__(
        self,
        evidence_url: str = DEFAULT_EVIDENCE_URL,
        schema_url: str = DEFAULT_SCHEMA_URL,
        raw_base_url: str = DEFAULT_RAW_BASE_URL,
        client: httpx.Client | None = None,
        run_cosign: bool = False,
        cosign: CosignRunner | None = None,
        artifact_schema: dict[str, Any] | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._evidence_url = evidence_url
        self._schema_url = schema_url
        self._raw_base_url = raw_base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_s, follow_redirects=True)
        self._run_cosign = run_cosign
        self._cosign = cosign or CosignRunner()
        self._artifact_schema = artifact_schema or load_schema(TEST_ARTIFACT_SCHEMA)

    def __enter__(self) -> PublicVerifier:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    def _download(self, url: str) -> bytes:
        try:
            response = self._client.get(url)
        except httpx.RequestError as exc:
            raise RemoteVerificationError(f"Download failed for {url}: {exc}", field=url) from exc
        if not response.is_success:
            raise RemoteVerificationError(f"Download failed ({response.status_code}) for {url}", field=url)
        return response.content

    def _download_json(self, url: str, label: str) -> Any:
        content = self._download(url)
        try:
            return json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ShapeError(f"{label} at {url} is not valid JSON.", field=url) from exc

    def _raw_url(self, path: str) -> str:
        return f"{self._raw_base_url}/{path.lstrip('/')}"

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_top_level(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise ShapeError("Evidence payload must be a JSON object.")
        if payload.get("schemaVersion") != EVIDENCE_SCHEMA_VERSION:
            raise ShapeError(
                f"Unsupported schemaVersion '{payload.get('schemaVersion')}', expected '{EVIDENCE_SCHEMA_VERSION}'.",
                field="schemaVersion",
            )
        source = payload.get("source")
        for key in ("owner", "repo", "ref", "commitSha"):
            if not isinstance(source, dict) or not source.get(key):
                raise ShapeError(f"Evidence source.{key} is required.", field=f"source.{key}")
        for key in ("testEvidence", "documents", "verificationCommands"):
            if not isinstance(payload.get(key), list):
                raise ShapeError(f"Evidence {key} must be an array.", field=key)

    def _verify_json_artifact(self, test_id: str, path: str, content: bytes) -> None:
        try:
            artifact = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ShapeError(f"{test_id}: json artifact {path} is not valid JSON.", field=path) from exc

        errors = _schema_errors(self._artifact_schema, artifact)
        if errors:
            raise ShapeError(f"{test_id}: json artifact {path} fails schema: {errors[0]}", field=path)
        if artifact["testId"] != test_id:
            raise IntegrityError(
                f"{test_id}: json artifact testId mismatch. expected={test_id} actual={artifact['testId']}",
                field=path,
                expected=test_id,
                actual=artifact["testId"],
            )
        failed = [item["assertionId"] for item in artifact["assertions"] if item["status"] != "passed"]
        if failed:
            raise CompletenessError(
                f"{test_id}: json artifact has non-passed assertions: {', '.join(failed)}", field=path
            )

    def _verify_artifacts(self, document: EvidenceDocument) -> int:
        verified = 0
        for entry in document.test_evidence:
            for artifact in entry.artifacts:
                content = self._download(self._raw_url(artifact.path))
                actual = sha256_bytes(content)
                if actual != artifact.sha256.lower():
                    raise IntegrityError(
                        f"{entry.test_id}: sha256 mismatch for {artifact.path}. "
                        f"expected={artifact.sha256} actual={actual}",
                        field=artifact.path,
                        expected=artifact.sha256,
                        actual=actual,
                    )
                if artifact.format == "json":
                    self._verify_json_artifact(entry.test_id, artifact.path, content)
                verified += 1
                logger.debug("Verified artifact", test_id=entry.test_id, path=artifact.path)
        return verified

    def _verify_summary(self, document: EvidenceDocument) -> None:
        recorded = document.assertion_summary
        if recorded.total < recorded.passed:
            raise IntegrityError(
                f"assertionSummary is inconsistent: total={recorded.total} < passed={recorded.passed}",
                field="assertionSummary",
            )
        if recorded.failed != 0:
            raise CompletenessError(f"assertionSummary reports failed={recorded.failed}.", field="assertionSummary")

        recomputed = summarize_assertions(document.test_evidence)
        for key in ("total", "passed", "failed"):
            if getattr(recomputed, key) != getattr(recorded, key):
                raise IntegrityError(
                    f"assertionSummary.{key} does not match testEvidence. "
                    f"expected={getattr(recorded, key)} actual={getattr(recomputed, key)}",
                    field=f"assertionSummary.{key}",
                    expected=str(getattr(recorded, key)),
                    actual=str(getattr(recomputed, key)),
                )

        for entry in document.test_evidence:
            if entry.result == "passed" and any(item.status != "passed" for item in entry.assertions):
                raise CompletenessError(
                    f"{entry.test_id}: result=passed but found failed assertions.", field=entry.test_id
                )

    def _verify_policy(self, document: EvidenceDocument) -> bool:
        package = document.policy_package
        if not package.file_path or not package.sha256:
            return False
        actual = sha256_bytes(self._download(self._raw_url(package.file_path)))
        if actual != package.sha256.lower():
            raise IntegrityError(
                f"Policy checksum mismatch for {package.file_path}. expected={package.sha256} actual={actual}",
                field=package.file_path,
                expected=package.sha256,
                actual=actual,
            )
        return True

    def _verify_signatures(self, document: EvidenceDocument) -> tuple[int, str | None]:
        if not self._run_cosign:
            logger.info("Skipping cosign verification (set RUN_COSIGN=1 to enable)")
            return 0, "disabled"
        if not self._cosign.is_available():
            logger.warning("cosign binary not found, skipping cosign verification")
            return 0, "cosign not installed"
        return self._cosign.run_all(document.verification_commands), None

    def verify(self) -> VerificationSummary:
        """Run every check in order, stopping at the first failure.

        Returns:
            Counts of what was verified.

        Raises:
            RemoteVerificationError: If a download fails.
            ShapeError: If the document or an artifact is malformed.
            IntegrityError: If a hash or recorded count disagrees.
            CompletenessError: If any assertion did not pass.
            SignatureError: If a requested cosign check fails.
        """
        payload = self._download_json(self._evidence_url, "Evidence payload")
        schema = self._download_json(self._schema_url, "Evidence schema")

        self._check_top_level(payload)
        errors = _schema_errors(schema, payload)
        if errors:
            raise ShapeError(f"Evidence payload fails schema: {errors[0]}", field="evidence")
        document = parse_model(EvidenceDocument, payload, "Evidence payload")

        artifacts = self._verify_artifacts(document)
        self._verify_summary(document)

        policy_checked = self._verify_policy(document)

        cosign_commands, skipped = self._verify_signatures(document)

        result = VerificationSummary(
            tests=len(document.test_evidence),
            artifacts=artifacts,
            assertions=document.assertion_summary.total,
            policy_checked=policy_checked,
            cosign_commands=cosign_commands,
            cosign_skipped=skipped,
        )
        logger.info(
            "Evidence verified",
            tests=result.tests,
            artifacts=result.artifacts,
            policy_checked=policy_checked,
            cosign_commands=cosign_commands,
        )
        return result
