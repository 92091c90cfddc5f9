"""Reads the policy provenance record produced by the CI policy job."""

from __future__ import annotations

from pathlib import Path

from compliance_evidence.core.files import load_model
from compliance_evidence.core.models import PolicyProvenance
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)

DEFAULT_INPUT_BUILDER = "falcon-compliance-toolkit build-policy-input"


class PolicyProvenanceReader:
    """Loads and validates a policy provenance file.

    Args:
        path: Location of policy-provenance.json.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def read(self) -> PolicyProvenance:
        """Return the validated provenance record.

        Raises:
            CompletenessError: If the file does not exist.
            ShapeError: If a required field is missing or malformed.
        """
        provenance = load_model(self._path, PolicyProvenance, "Policy provenance artifact")
        logger.info(
            "Loaded policy provenance",
            version=provenance.version,
            checksum_verified=provenance.verification.checksum_verified,
            signature_verified=provenance.verification.signature_verified,
        )
        return provenance


def input_builder_path(provenance: PolicyProvenance) -> str:
    """Describe what produced the policy input, most specific source first."""
    toolkit = provenance.toolkit
    if toolkit is not None:
        if toolkit.command:
            return toolkit.command
        if toolkit.build_policy_input is not None and toolkit.build_policy_input.file_path:
            return toolkit.build_policy_input.file_path
    return DEFAULT_INPUT_BUILDER
