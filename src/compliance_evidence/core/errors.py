"""Error hierarchy for the evidence pipeline.

Every failure the pipeline can detect maps to exactly one category. None of
them are retried inside the pipeline: recovery is always "fix the input and
re-run the stage". The CLI turns any EvidenceError into a non-zero exit code
and a single descriptive message.
"""

from __future__ import annotations


class EvidenceError(Exception):
    """Base error for all evidence pipeline failures.

    Attributes:
        message: Human-readable error description.
        field: Offending field or identifier, when one applies.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize EvidenceError.

        Args:
            message: Error description.
            field: Optional name of the offending field, test id or path.
        """
        super().__init__(message)
        self.message = message
        self.field = field


class ShapeError(EvidenceError):
    """A payload, manifest or record is missing a field or has the wrong type."""


class IntegrityError(EvidenceError):
    """A SHA-256 digest or an artifact's embedded identity disagrees with its record.

    Attributes:
        expected: The recorded value.
        actual: The value observed on disk or over the network.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        expected: str | None = None,
        actual: str | None = None,
    ) -> None:
        """Initialize IntegrityError.

        Args:
            message: Error description (already contains expected=/actual=).
            field: Optional offending test id or artifact path.
            expected: The recorded value.
            actual: The observed value.
        """
        super().__init__(message, field=field)
        self.expected = expected
        self.actual = actual


class DuplicateError(EvidenceError):
    """The same test id or assertion id appears more than once."""


class CompletenessError(EvidenceError):
    """Required evidence is absent: a required test id, assertions or artifacts."""


class RemoteVerificationError(EvidenceError):
    """The CI platform does not confirm what the dispatch payload claims.

    Attributes:
        violations: Every violation found by the failing check. Deploy job
            checks collect all of them before raising.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        violations: list[str] | None = None,
    ) -> None:
        """Initialize RemoteVerificationError.

        Args:
            message: Error description.
            field: Optional identifier of the run or artifact concerned.
            violations: Individual violations, when more than one was found.
        """
        super().__init__(message, field=field)
        self.violations = list(violations or [])


VerificationError = RemoteVerificationError


class SignatureError(EvidenceError):
    """A signing key does not match its public key or a signature fails to verify."""
