"""Command-line entry point: one command per pipeline stage.

Usage: compliance-evidence <command>

Commands take no flags; everything is configured through environment
variables (see compliance_evidence.settings). Any EvidenceError, OSError or
httpx error is reported as a single "[<command>] <message>" line on stderr
with exit status 1. An unknown or missing command prints usage and exits
with status 2.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

import httpx
from pydantic import ValidationError

from compliance_evidence.adapters.github_client import GitHubActionsClient
from compliance_evidence.core.errors import EvidenceError
from compliance_evidence.core.files import load_model, write_json
from compliance_evidence.core.models import IngestRecord, TestManifest
from compliance_evidence.evidence_producer import (
    E2E_TEST_DEFINITIONS,
    UNIT_TEST_DEFINITIONS,
    TestEvidenceProducer,
)
from compliance_evidence.manifests import ManifestAggregator, ManifestValidator
from compliance_evidence.observability import configure_logging, get_logger
from compliance_evidence.policy import (
    PolicyProvenanceReader,
    PolicySigner,
    build_policy_input,
    resolve_branch,
    write_policy_input,
)
from compliance_evidence.public_verifier import PublicVerifier
from compliance_evidence.publishing import EvidenceComposer, HistorySnapshotter
from compliance_evidence.settings import E2E_JOB_NAME, UNIT_JOB_NAME, Settings
from compliance_evidence.source_run import SourceRunVerifier, load_dispatch_payload

logger = get_logger(__name__)

PROG = "compliance-evidence"


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def build_policy_input_command(settings: Settings) -> None:
    """Write policy-input.json for the policy evaluator."""
    branch = resolve_branch(settings.event_name, settings.head_ref, settings.ref_name, settings.branch_name)
    policy_input = build_policy_input(branch, settings.event_name, settings.changed_files_json)
    write_policy_input(policy_input, settings.policy_input_path)


def _run_suite(settings: Settings, suite: str) -> None:
    definitions, default_job_name = {
        "unit": (UNIT_TEST_DEFINITIONS, UNIT_JOB_NAME),
        "e2e": (E2E_TEST_DEFINITIONS, E2E_JOB_NAME),
    }[suite]
    producer = TestEvidenceProducer(
        definitions=definitions,
        source_root=settings.source_root,
        output_root=settings.output_root / suite,
        run_id=settings.run_id,
        source_commit_sha=settings.commit_sha,
        job_name=settings.job_name or default_job_name,
        job_result="passed" if settings.job_passed else "failed",
        raw_base_url=settings.raw_base_url,
    )
    producer.run()


def run_test_evidence_command(settings: Settings) -> None:
    """Produce unit-suite test evidence."""
    _run_suite(settings, "unit")


def run_e2e_test_evidence_command(settings: Settings) -> None:
    """Produce e2e-suite test evidence."""
    _run_suite(settings, "e2e")


def merge_test_evidence_manifests_command(settings: Settings) -> None:
    """Merge the per-suite manifests."""
    aggregator = ManifestAggregator(
        input_root=settings.output_root,
        output_path=settings.merged_manifest_path,
        required_test_ids=settings.required_test_ids(),
        expected_manifest_dirs=settings.expected_manifest_dirs,
        allow_duplicate_override=settings.allow_duplicate_test_ids,
    )
    result = aggregator.run()
    print(f"Merged {len(result.manifest_files)} manifests into {aggregator.output_path}")


def validate_test_evidence_command(settings: Settings) -> None:
    """Validate a manifest and its artifacts."""
    validator = ManifestValidator(
        manifest_path=settings.merged_manifest_path,
        tests_dir=settings.merged_tests_dir,
        base_dir=Path.cwd(),
        required_test_ids=settings.required_test_ids(),
    )
    print(validator.validate().summary())


def ingest_dispatch_command(settings: Settings) -> None:
    """Verify a dispatch payload against GitHub Actions."""
    payload = load_dispatch_payload(settings.dispatch_payload_path)
    with GitHubActionsClient(
        owner=settings.falcon_owner,
        repo=settings.falcon_repo,
        token=settings.falcon_token,
        api_url=settings.github_api_url,
    ) as client:
        record = SourceRunVerifier(client, settings.falcon_owner, settings.falcon_repo).verify(payload)
    write_json(settings.ingest_output_path, record.to_wire())


def build_evidence_command(settings: Settings) -> None:
    """Compose current/evidence.json."""
    ingest = load_model(settings.ingest_path, IngestRecord, "Ingest payload")
    manifest = load_model(settings.merged_manifest_path, TestManifest, "Compliance test evidence manifest")
    provenance = PolicyProvenanceReader(settings.policy_provenance_path).read()
    composer = EvidenceComposer(
        manifest_path=settings.merged_manifest_path,
        current_dir=settings.current_dir,
        tests_dir=settings.merged_tests_dir,
        required_test_ids=settings.required_test_ids(),
        raw_base_url=settings.raw_base_url,
    )
    composer.publish(ingest, manifest, provenance)


def publish_snapshot_command(settings: Settings) -> None:
    """Archive current/ into history/."""
    result = HistorySnapshotter(settings.current_dir, settings.history_dir).snapshot()
    print(f"Published snapshot {result.entry.snapshot}")


def sign_policy_package_command(settings: Settings) -> None:
    """Sign the policy package."""
    PolicySigner(Path.cwd(), settings.policy_signing_private_key, settings.policy_manifest_path).sign()


def verify_current_command(settings: Settings) -> None:
    """Re-verify the published evidence."""
    with PublicVerifier(
        evidence_url=settings.evidence_url,
        schema_url=settings.schema_url,
        raw_base_url=settings.raw_base_url,
        run_cosign=settings.run_cosign,
    ) as verifier:
        summary = verifier.verify()
    if summary.cosign_skipped:
        print(f"Skipped cosign verification ({summary.cosign_skipped}).")
    print(summary.summary())


COMMANDS: dict[str, Callable[[Settings], None]] = {
    "build-policy-input": build_policy_input_command,
    "run-test-evidence": run_test_evidence_command,
    "run-e2e-test-evidence": run_e2e_test_evidence_command,
    "merge-test-evidence-manifests": merge_test_evidence_manifests_command,
    "validate-test-evidence": validate_test_evidence_command,
    "ingest-dispatch": ingest_dispatch_command,
    "build-evidence": build_evidence_command,
    "publish-snapshot": publish_snapshot_command,
    "sign-policy-package": sign_policy_package_command,
    "verify-current": verify_current_command,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Produce, publish and verify compliance evidence. "
        "Commands are configured through environment variables.",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    for name, handler in COMMANDS.items():
        subparsers.add_parser(name, help=(handler.__doc__ or "").strip() or None)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run one command and return the process exit status."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return 2 if exc.code else 0
    if args.command is None:
        parser.print_usage(sys.stderr)
        return 2

    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"[{args.command}] invalid configuration: {exc.errors()[0]['msg']}", file=sys.stderr)
        return 1
    configure_logging(settings.log_level)

    try:
        COMMANDS[args.command](settings)
    except EvidenceError as exc:
        logger.error("Command failed", command=args.command, error=exc.message, field=exc.field)
        print(f"[{args.command}] {exc.message}", file=sys.stderr)
        return 1
    except (OSError, httpx.HTTPError) as exc:
        logger.error("Command failed", command=args.command, error=str(exc))
        print(f"[{args.command}] {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
