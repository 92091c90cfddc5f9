"""Test fixtures for the compliance evidence toolkit.

Provides:
- fixed_clock: A deterministic UTC clock for producers and publishers
- source_tree: A checked-out repository where every built-in assertion holds
- write_suite: Factory that writes a hand-built manifest plus real artifacts
- github_client: Factory for a GitHubActionsClient backed by httpx.MockTransport
- rsa_key_pair / other_rsa_key_pair: PEM-encoded RSA key pairs
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest
import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from compliance_evidence.adapters.github_client import GitHubActionsClient
from compliance_evidence.core.files import dump_json, sha256_file, write_json
from compliance_evidence.core.models import (
    MANIFEST_FILENAME,
    TESTS_DIRNAME,
    CiRunRecord,
    DeployRunRecord,
    DispatchSummary,
    EvidenceRef,
    ImageRef,
    ImageSet,
    IngestRecord,
    PolicyDescriptor,
    PolicyProvenance,
    PolicyVerification,
    SourceInfo,
    TestArtifact,
    TestArtifactDocument,
    TestAssertion,
    TestEvidenceEntry,
    TestManifest,
    WorkflowJob,
)
from compliance_evidence.core.validation import PUBLISHED_TESTS_PREFIX
from compliance_evidence.evidence_producer import E2E_TEST_DEFINITIONS, UNIT_TEST_DEFINITIONS
from compliance_evidence.evidence_producer.runner import render_junit

FIXED_NOW = datetime(2025, 3, 1, 12, 0, 0, 123000, tzinfo=UTC)
FIXED_NOW_ISO = "2025-03-01T12:00:00.123Z"
COMMIT_SHA = "0123456789abcdef0123456789abcdef01234567"


@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop logging configuration made by CLI runs (it binds a captured stream)."""
    yield
    structlog.reset_defaults()


@pytest.fixture()
def fixed_clock() -> Callable[[], datetime]:
    """Return a clock that always reads FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture()
def source_tree(tmp_path: Path) -> Path:
    """Create a source checkout that satisfies every built-in assertion.

    Returns:
        Root of the checkout.
    """
    root = tmp_path / "source"
    contents: dict[str, list[str]] = {}
    for definition in (*UNIT_TEST_DEFINITIONS, *E2E_TEST_DEFINITIONS):
        for assertion in definition.assertions:
            contents.setdefault(assertion.file_path, []).append(assertion.matcher)
    for file_path, lines in contents.items():
        target = root / file_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return root


def build_entry(
    tests_dir: Path,
    test_id: str,
    suite_type: str,
    statuses: list[str],
    result: str | None = None,
) -> TestEvidenceEntry:
    """Write a test's JSON and JUnit artifacts and return its manifest entry."""
    if result is None:
        result = "passed" if all(status == "passed" for status in statuses) else "failed"
    assertions = [
        TestAssertion(
            assertion_id=f"{test_id}-assertion-{index}",
            name=f"Assertion {index}",
            status=status,
            expected="Matcher is present.",
            actual="Matched includes assertion." if status == "passed" else "Matcher not found.",
            evidence_ref=EvidenceRef(file_path=f"src/{test_id}.ts", matcher_type="includes", matcher="expect("),
            verified_at=FIXED_NOW_ISO,
        )
        for index, status in enumerate(statuses, start=1)
    ]
    document = TestArtifactDocument(
        test_id=test_id,
        source_path=f"src/{test_id}.ts",
        suite_type=suite_type,
        result=result,
        executed_at=FIXED_NOW_ISO,
        run_id="4242",
        job_name="Compliance Test Evidence (Public)",
        source_commit_sha=COMMIT_SHA,
        workflow_path=".github/workflows/ci-tests.yml",
        assertions=assertions,
    )
    tests_dir.mkdir(parents=True, exist_ok=True)
    json_path = tests_dir / f"{test_id}.json"
    junit_path = tests_dir / f"{test_id}.junit.xml"
    json_path.write_text(dump_json(document.to_wire()), encoding="utf-8")
    junit_path.write_text(render_junit(test_id, suite_type, f"src/{test_id}.ts", result), encoding="utf-8")

    return TestEvidenceEntry(
        test_id=test_id,
        source_path=f"src/{test_id}.ts",
        suite_type=suite_type,
        result=result,
        workflow_path=".github/workflows/ci-tests.yml",
        run_id="4242",
        job_name="Compliance Test Evidence (Public)",
        source_commit_sha=COMMIT_SHA,
        executed_at=FIXED_NOW_ISO,
        artifacts=[
            TestArtifact(format="json", path=f"{PUBLISHED_TESTS_PREFIX}{json_path.name}", sha256=sha256_file(json_path)),
            TestArtifact(
                format="junit", path=f"{PUBLISHED_TESTS_PREFIX}{junit_path.name}", sha256=sha256_file(junit_path)
            ),
        ],
        verification_command=f"echo verify {test_id}",
        assertions=assertions,
    )


WriteSuite = Callable[..., Path]


@pytest.fixture()
def write_suite() -> WriteSuite:
    """Factory writing a manifest with real, correctly hashed artifacts.

    Call as write_suite(directory, [(test_id, suite_type, statuses), ...]).

    Returns:
        The written manifest path.
    """

    def _write(directory: Path, tests: list[tuple[str, str, list[str]]]) -> Path:
        tests_dir = directory / TESTS_DIRNAME
        entries = [build_entry(tests_dir, test_id, suite_type, statuses) for test_id, suite_type, statuses in tests]
        manifest_path = directory / MANIFEST_FILENAME
        write_json(manifest_path, TestManifest(generated_at=FIXED_NOW_ISO, test_evidence=entries).to_wire())
        return manifest_path

    return _write


ALL_REQUIRED_UNIT = [
    ("permission-analyzer-unit", "unit", ["passed", "passed"]),
    ("ttl-indexes-persistence-unit", "unit", ["passed"]),
    ("ttl-indexes-api-unit", "unit", ["passed", "passed"]),
]
ALL_REQUIRED_E2E = [
    ("device-sync-e2e", "e2e", ["passed", "passed", "passed"]),
    ("sos-e2e", "e2e", ["passed"]),
]


class RecordingTransport:
    """httpx.MockTransport wrapper answering from a path -> response table."""

    def __init__(self, routes: dict[str, Any]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if isinstance(route, tuple):
            status, body = route
            return httpx.Response(status, json=body)
        if isinstance(route, bytes):
            return httpx.Response(200, content=route)
        return httpx.Response(200, json=route)

    @property
    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture()
def github_client() -> Callable[..., tuple[GitHubActionsClient, RecordingTransport]]:
    """Factory for a GitHub client answering from a route table."""

    def _build(routes: dict[str, Any], token: str | None = "test-token") -> tuple[GitHubActionsClient, RecordingTransport]:
        recorder = RecordingTransport(routes)
        client = GitHubActionsClient(
            owner="panalgin",
            repo="falcon",
            token=token,
            client=httpx.Client(transport=recorder.transport),
        )
        return client, recorder

    return _build


def _key_pair() -> tuple[str, str]:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("utf-8")
    )
    return private_pem, public_pem


@pytest.fixture(scope="session")
def rsa_key_pair() -> tuple[str, str]:
    """Return (private PEM, public PEM) for a fresh RSA-2048 key."""
    return _key_pair()


@pytest.fixture(scope="session")
def other_rsa_key_pair() -> tuple[str, str]:
    """Return a second, unrelated RSA key pair."""
    return _key_pair()


def read_json_file(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def make_ingest_record() -> IngestRecord:
    """A verified ingest record for a successful production deploy."""
    return IngestRecord(
        generated_at=FIXED_NOW_ISO,
        source=SourceInfo(owner="panalgin", repo="falcon", ref="refs/heads/main", commit_sha=COMMIT_SHA),
        environment="production",
        dispatch_payload=DispatchSummary(
            source_repo="panalgin/falcon", deploy_workflow_name="Deploy", deploy_run_number="57"
        ),
        ci=CiRunRecord(
            run_id="100",
            run_number="812",
            html_url="https://github.com/panalgin/falcon/actions/runs/100",
            artifact_name="compliance-test-evidence",
            policy_artifact_name="policy-provenance",
            conclusion="success",
        ),
        deploy=DeployRunRecord(
            run_id="200",
            run_number="57",
            workflow_name="Deploy",
            html_url="https://github.com/panalgin/falcon/actions/runs/200",
            conclusion="success",
            jobs=[
                WorkflowJob(name=name, status="completed", conclusion="success")
                for name in ("sign_and_attest", "deploy_api", "deploy_worker", "finalize_healthcheck")
            ],
        ),
        images=ImageSet(
            api=ImageRef(image="ghcr.io/panalgin/falcon-api", digest="sha256:" + "a" * 64),
            worker=ImageRef(image="ghcr.io/panalgin/falcon-worker", digest="sha256:" + "b" * 64),
        ),
    )


def make_provenance(policy_sha256: str = "c" * 64) -> PolicyProvenance:
    return PolicyProvenance(
        version="2025.03.1",
        policy=PolicyDescriptor(
            file_path="policy/release.rego",
            sha256=policy_sha256,
            signature_path="policy/release.rego.sig",
            public_key_path="policy/policy.pub",
        ),
        policy_input_sha256="d" * 64,
        source_url="https://github.com/panalgin/falcon/actions/runs/100",
        verification=PolicyVerification(checksum_verified=True, signature_verified=True),
    )
