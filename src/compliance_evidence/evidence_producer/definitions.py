"""Built-in test definitions for the unit and end-to-end evidence suites.

Each TestDefinition names a test and the source-content assertions that
prove it exercises a compliance-relevant rule. Definitions are static: they
are part of the toolkit release, never read from user input.
"""

from __future__ import annotations

from compliance_evidence.core.models import AssertionDefinition, TestDefinition

DEFAULT_WORKFLOW_PATH = ".github/workflows/ci-tests.yml"

_PERMISSION_ANALYZER_SPEC = "packages/domain/src/device/services/permission-analyzer.service.spec.ts"
_TTL_API_SPEC = "apps/api/src/schemas/ttl-indexes.spec.ts"
_DEVICE_SYNC_E2E = "apps/api/test/device-sync.e2e.spec.ts"
_SOS_E2E = "apps/api/test/sos.e2e.spec.ts"

# ---------------------------------------------------------------------------
# Unit suite
# ---------------------------------------------------------------------------

UNIT_TEST_DEFINITIONS: tuple[TestDefinition, ...] = (
    TestDefinition(
        test_id="permission-analyzer-unit",
        source_path=_PERMISSION_ANALYZER_SPEC,
        suite_type="unit",
        assertions=(
            AssertionDefinition(
                assertion_id="location-denied-rule",
                name="Location denied rule is asserted",
                file_path=_PERMISSION_ANALYZER_SPEC,
                matcher_type="includes",
                matcher="IssueCode.LOCATION_DENIED",
                expected="Permission analyzer tests assert LOCATION_DENIED rule.",
            ),
            AssertionDefinition(
                assertion_id="location-denied-severity-critical",
                name="Location denied severity is critical",
                file_path=_PERMISSION_ANALYZER_SPEC,
                matcher_type="includes",
                matcher="IssueSeverity.CRITICAL",
                expected="Permission analyzer tests assert LOCATION_DENIED as CRITICAL.",
            ),
            AssertionDefinition(
                assertion_id="notifications-denied-rule",
                name="Notifications denied rule is asserted",
                file_path=_PERMISSION_ANALYZER_SPEC,
                matcher_type="includes",
                matcher="IssueCode.NOTIFICATIONS_DENIED",
                expected="Permission analyzer tests assert NOTIFICATIONS_DENIED rule.",
            ),
            AssertionDefinition(
                assertion_id="notifications-denied-severity-warning",
                name="Notifications denied severity is warning",
                file_path=_PERMISSION_ANALYZER_SPEC,
                matcher_type="includes",
                matcher="IssueSeverity.WARNING",
                expected="Permission analyzer tests assert NOTIFICATIONS_DENIED as WARNING.",
            ),
        ),
    ),
    TestDefinition(
        test_id="ttl-indexes-persistence-unit",
        source_path="packages/persistence/src/mongoose/ttl-indexes.spec.ts",
        suite_type="unit",
        assertions=(
            AssertionDefinition(
                assertion_id="location-records-ttl-30d",
                name="Location records TTL is 30 days",
                file_path="packages/persistence/src/mongoose/device-sync/schemas/location-record.schema.ts",
                matcher_type="includes",
                matcher='index: { expires: "30d" }',
                expected="location_records.recordedAt TTL must be 30d.",
            ),
            AssertionDefinition(
                assertion_id="heartbeat-records-ttl-30d",
                name="Heartbeat records TTL is 30 days",
                file_path="packages/persistence/src/mongoose/device-sync/schemas/heartbeat-record.schema.ts",
                matcher_type="includes",
                matcher='index: { expires: "30d" }',
                expected="heartbeat_records.recordedAt TTL must be 30d.",
            ),
            AssertionDefinition(
                assertion_id="outbox-archive-default-ttl-30d",
                name="Outbox archive default TTL is 30 days",
                file_path="packages/persistence/src/mongoose/outbox/schemas/outbox-archive.schema.ts",
                matcher_type="includes",
                matcher='process.env.OUTBOX_ARCHIVE_TTL_DAYS || "30"',
                expected="Outbox archive default TTL days must resolve to 30.",
            ),
        ),
    ),
    TestDefinition(
        test_id="ttl-indexes-api-unit",
        source_path=_TTL_API_SPEC,
        suite_type="unit",
        assertions=(
            AssertionDefinition(
                assertion_id="refresh-token-expiration-index",
                name="Refresh token TTL assertion exists",
                file_path=_TTL_API_SPEC,
                matcher_type="includes",
                matcher='expectExpireAfterSeconds(RefreshTokenSchema, "expiresAt", 0);',
                expected="RefreshTokenSchema expiresAt must use expireAfterSeconds=0.",
            ),
            AssertionDefinition(
                assertion_id="media-deleteat-expiration-index",
                name="Media deleteAt TTL assertion exists",
                file_path=_TTL_API_SPEC,
                matcher_type="includes",
                matcher='expectExpireAfterSeconds(MediaSchema, "deleteAt", 0);',
                expected="MediaSchema deleteAt must use expireAfterSeconds=0.",
            ),
        ),
    ),
)

# ---------------------------------------------------------------------------
# End-to-end suite
# ---------------------------------------------------------------------------

E2E_TEST_DEFINITIONS: tuple[TestDefinition, ...] = (
    TestDefinition(
        test_id="device-sync-e2e",
        source_path=_DEVICE_SYNC_E2E,
        suite_type="e2e",
        assertions=(
            AssertionDefinition(
                assertion_id="device-sync-endpoint-exists",
                name="Device sync endpoint assertion exists",
                file_path=_DEVICE_SYNC_E2E,
                matcher_type="includes",
                matcher='.post("/devices/sync/v1")',
                expected="Device sync E2E test must call /devices/sync/v1 endpoint.",
            ),
            AssertionDefinition(
                assertion_id="device-sync-durable-inbox-assertion",
                name="Device sync durable inbox assertion exists",
                file_path=_DEVICE_SYNC_E2E,
                matcher_type="includes",
                matcher="expect(inbox).toBeDefined();",
                expected="Device sync E2E test must assert durable inbox write with toBeDefined().",
            ),
            AssertionDefinition(
                assertion_id="device-sync-record-processing-assertion",
                name="Device sync record processing assertion exists",
                file_path=_DEVICE_SYNC_E2E,
                matcher_type="includes",
                matcher="expect(foundLocation).toBe(true);",
                expected="Device sync E2E test must assert asynchronous location record processing.",
            ),
        ),
    ),
    TestDefinition(
        test_id="sos-e2e",
        source_path=_SOS_E2E,
        suite_type="e2e",
        assertions=(
            AssertionDefinition(
                assertion_id="sos-endpoint-exists",
                name="SOS endpoint assertion exists",
                file_path=_SOS_E2E,
                matcher_type="includes",
                matcher='.post("/device/sos/v1")',
                expected="SOS E2E test must call /device/sos/v1 endpoint.",
            ),
            AssertionDefinition(
                assertion_id="sos-audit-action-assertion",
                name="SOS audit action assertion exists",
                file_path=_SOS_E2E,
                matcher_type="includes",
                matcher='action: "DEVICE.SOS_TRIGGERED"',
                expected="SOS E2E test must query audit log for DEVICE.SOS_TRIGGERED action.",
            ),
            AssertionDefinition(
                assertion_id="sos-audit-presence-assertion",
                name="SOS audit persistence assertion exists",
                file_path=_SOS_E2E,
                matcher_type="includes",
                matcher="expect(sosAuditLog).toBeDefined();",
                expected="SOS E2E test must assert persisted audit log with toBeDefined().",
            ),
        ),
    ),
)
