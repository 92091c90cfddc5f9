"""Policy package: evaluator input, provenance and signing."""

from __future__ import annotations

from compliance_evidence.policy.input_builder import (
    build_policy_input,
    parse_changed_files,
    resolve_branch,
    write_policy_input,
)
from compliance_evidence.policy.provenance import PolicyProvenanceReader, input_builder_path
from compliance_evidence.policy.signer import PolicySigner

__all__ = [
    "PolicyProvenanceReader",
    "PolicySigner",
    "build_policy_input",
    "input_builder_path",
    "parse_changed_files",
    "resolve_branch",
    "write_policy_input",
]
