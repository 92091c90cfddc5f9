"""Source run verifier: confirms a dispatch payload against live CI state.

The dispatch payload is only a claim. Before anything is published, the
verifier asks the CI platform whether the deploy run and the CI run it names
really exist, ran the claimed commit and succeeded. Checks run in a fixed
order and the first failing check aborts, except the required deploy job
check, which collects every violation so a single run reports all of them.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from compliance_evidence.adapters.github_client import GitHubActionsClient, WorkflowJobInfo
from compliance_evidence.core.errors import RemoteVerificationError
from compliance_evidence.core.files import load_model, parse_model
from compliance_evidence.core.models import (
    CiRunRecord,
    DeployRunRecord,
    DispatchPayload,
    DispatchSummary,
    ImageRef,
    ImageSet,
    IngestRecord,
    SourceInfo,
    WorkflowJob,
    format_timestamp,
)
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)

DEFAULT_REQUIRED_DEPLOY_JOBS: tuple[str, ...] = (
    "sign_and_attest",
    "deploy_api",
    "deploy_worker",
    "finalize_healthcheck",
)

# Jobs of the publishing workflow itself are not part of the deploy evidence.
_EXCLUDED_JOB_PREFIX = "publish_evidence"


def parse_dispatch_payload(data: Any, context: str = "Dispatch payload") -> DispatchPayload:
    """Validate a decoded dispatch payload.

    Raises:
        ShapeError: Naming the first missing, empty or malformed field.
    """
    return parse_model(DispatchPayload, data, context)


def load_dispatch_payload(path: Path) -> DispatchPayload:
    return load_model(path, DispatchPayload, "Dispatch payload")


def _normalize_job(job: WorkflowJobInfo) -> WorkflowJob:
    return WorkflowJob(
        name=job.name,
        status=job.status,
        conclusion=job.conclusion,
        started_at=job.started_at,
        completed_at=job.completed_at,
        html_url=job.html_url,
    )


def required_job_violations(
    jobs: Sequence[WorkflowJobInfo | WorkflowJob],
    required_jobs: Sequence[str],
) -> list[str]:
    """List every required job that is missing or did not succeed.

    When a job name repeats, the first entry is the one checked.
    """
    by_name = {job.name: job for job in reversed(jobs)}
    violations: list[str] = []
    for required in required_jobs:
        job = by_name.get(required)
        if job is None:
            violations.append(f"missing required job '{required}'")
        elif job.conclusion != "success":
            violations.append(f"job '{required}' conclusion is '{job.conclusion or 'unknown'}'")
    return violations


class SourceRunVerifier:
    """Verifies a dispatch payload and produces the IngestRecord.

    Args:
        client: GitHub Actions client bound to the expected repository.
        expected_owner: Owner the payload's source_repo must name.
        expected_repo: Repository the payload's source_repo must name.
        required_deploy_jobs: Jobs that must be present and successful in
            the deploy run.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        client: GitHubActionsClient,
        expected_owner: str,
        expected_repo: str,
        required_deploy_jobs: Sequence[str] = DEFAULT_REQUIRED_DEPLOY_JOBS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._owner = expected_owner
        self._repo = expected_repo
        self._required_deploy_jobs = list(required_deploy_jobs)
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def expected_source_repo(self) -> str:
        return f"{self._owner}/{self._repo}"

    def verify(self, payload: DispatchPayload) -> IngestRecord:
        """Run every check against the CI platform.

        Args:
            payload: A validated dispatch payload.

        Returns:
            The normalized IngestRecord.

        Raises:
            RemoteVerificationError: On the first failing check; for the
                required deploy jobs, carrying every violation found.
        """
        if payload.source_repo != self.expected_source_repo:
            raise RemoteVerificationError(
                f"Unexpected source_repo '{payload.source_repo}', expected '{self.expected_source_repo}'.",
                field="source_repo",
            )

        ci_run_id = int(payload.ci_run_id)
        deploy_run_id = int(payload.deploy_run_id)
        logger.info(
            "Verifying dispatch payload",
            source_repo=payload.source_repo,
            source_sha=payload.source_sha,
            ci_run_id=ci_run_id,
            deploy_run_id=deploy_run_id,
        )

        deploy_run = self._client.get_run(deploy_run_id)
        if deploy_run.head_sha != payload.source_sha:
            raise RemoteVerificationError(
                f"Deploy run {deploy_run_id} head_sha mismatch: "
                f"expected {payload.source_sha}, got {deploy_run.head_sha}.",
                field="deploy_run_id",
            )
        if deploy_run.conclusion != "success":
            raise RemoteVerificationError(
                f"Deploy run {deploy_run_id} conclusion is '{deploy_run.conclusion}', expected 'success'.",
                field="deploy_run_id",
            )

        deploy_jobs = self._client.list_jobs(deploy_run_id)
        self._check_required_jobs(deploy_run_id, deploy_jobs)

        ci_run = self._client.get_run(ci_run_id)
        if ci_run.head_sha != payload.source_sha:
            raise RemoteVerificationError(
                f"CI run {ci_run_id} head_sha mismatch: expected {payload.source_sha}, got {ci_run.head_sha}.",
                field="ci_run_id",
            )
        if ci_run.conclusion != "success":
            raise RemoteVerificationError(
                f"CI run {ci_run_id} conclusion is '{ci_run.conclusion}', expected 'success'.",
                field="ci_run_id",
            )

        available = [artifact.name for artifact in self._client.list_artifacts(ci_run_id) if not artifact.expired]
        for expected_artifact in (payload.ci_artifact_name, payload.policy_artifact_name):
            if expected_artifact not in available:
                raise RemoteVerificationError(
                    f"CI run {ci_run_id} is missing artifact '{expected_artifact}'. "
                    f"Available: {', '.join(available) or 'none'}.",
                    field=expected_artifact,
                )

        record = IngestRecord(
            generated_at=format_timestamp(self._clock()),
            source=SourceInfo(owner=self._owner, repo=self._repo, ref=payload.source_ref, commit_sha=payload.source_sha),
            environment=payload.environment,
            dispatch_payload=DispatchSummary(
                source_repo=payload.source_repo,
                deploy_workflow_name=payload.deploy_workflow_name,
                deploy_run_number=payload.deploy_run_number,
            ),
            ci=CiRunRecord(
                run_id=str(ci_run_id),
                run_number=str(ci_run.run_number),
                html_url=ci_run.html_url,
                artifact_name=payload.ci_artifact_name,
                policy_artifact_name=payload.policy_artifact_name,
                conclusion=ci_run.conclusion,
            ),
            deploy=DeployRunRecord(
                run_id=str(deploy_run_id),
                run_number=payload.deploy_run_number,
                workflow_name=payload.deploy_workflow_name,
                html_url=deploy_run.html_url,
                conclusion=deploy_run.conclusion,
                jobs=[_normalize_job(job) for job in deploy_jobs if not job.name.startswith(_EXCLUDED_JOB_PREFIX)],
            ),
            images=ImageSet(
                api=ImageRef(image=payload.api_image, digest=payload.api_digest),
                worker=ImageRef(image=payload.worker_image, digest=payload.worker_digest),
            ),
        )
        logger.info("Dispatch payload verified", deploy_jobs=len(record.deploy.jobs))
        return record

    def _check_required_jobs(self, deploy_run_id: int, jobs: list[WorkflowJobInfo]) -> None:
        violations = required_job_violations(jobs, self._required_deploy_jobs)
        if violations:
            logger.error("Deploy run failed job verification", deploy_run_id=deploy_run_id, violations=violations)
            raise RemoteVerificationError(
                f"Deploy run {deploy_run_id} failed verification: {'; '.join(violations)}",
                field="deploy_run_id",
                violations=violations,
            )
