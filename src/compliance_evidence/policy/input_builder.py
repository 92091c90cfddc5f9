"""Builds the JSON input document handed to the external policy evaluator."""

from __future__ import annotations

import json
from pathlib import Path

from compliance_evidence.core.errors import ShapeError
from compliance_evidence.core.files import write_json
from compliance_evidence.core.models import PolicyContext, PolicyInput
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)

DEFAULT_POLICY_INPUT_PATH = Path("policy-input.json")


def resolve_branch(
    event_name: str,
    head_ref: str | None,
    ref_name: str | None,
    branch_name: str | None,
) -> str:
    """Pick the branch under evaluation.

    Pull request events evaluate the head branch; every other event the ref
    that triggered the run. BRANCH_NAME is the local fallback.
    """
    candidates = [ref_name, branch_name]
    if event_name == "pull_request":
        candidates.insert(0, head_ref)
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return ""


def _decode_changed_files(raw: str) -> list[str]:
    changed = json.loads(raw)
    if not isinstance(changed, list):
        raise ShapeError("CHANGED_FILES_JSON must be a JSON array.", field="CHANGED_FILES_JSON")
    # Non-string entries keep their JSON spelling (null, true, 1).
    return [value if isinstance(value, str) else json.dumps(value) for value in changed]


def parse_changed_files(raw: str) -> list[str]:
    """Parse the changed file list, tolerating escaped CI outputs.

    CI step outputs sometimes arrive as escaped arrays ([\\"a\\",\\"b\\"]);
    decoding is retried once with the escapes removed.

    Raises:
        ShapeError: If neither form decodes to a JSON array.
    """
    try:
        return _decode_changed_files(raw)
    except (json.JSONDecodeError, ShapeError):
        logger.debug("Retrying CHANGED_FILES_JSON with escapes removed")
    try:
        return _decode_changed_files(raw.replace('\\"', '"'))
    except json.JSONDecodeError as exc:
        raise ShapeError(f"CHANGED_FILES_JSON is not valid JSON: {exc.msg}", field="CHANGED_FILES_JSON") from exc


def build_policy_input(branch: str, event_name: str, changed_files_json: str = "[]") -> PolicyInput:
    return PolicyInput(
        context=PolicyContext(branch=branch, event_name=event_name),
        changed_files=parse_changed_files(changed_files_json),
    )


def write_policy_input(policy_input: PolicyInput, output_path: Path = DEFAULT_POLICY_INPUT_PATH) -> Path:
    """Write the policy input document.

    Returns:
        The path that was written.
    """
    write_json(output_path, policy_input.to_wire())
    logger.info(
        "Wrote policy input",
        path=str(output_path),
        branch=policy_input.context.branch,
        changed_files=len(policy_input.changed_files),
    )
    return output_path
