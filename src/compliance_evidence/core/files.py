"""File helpers shared by every stage: hashing, JSON documents, model loading.

All JSON written by the pipeline uses two-space indentation and a trailing
newline, so that a document's bytes (and therefore its SHA-256) depend only
on its content.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from compliance_evidence.core.errors import CompletenessError, ShapeError

ModelT = TypeVar("ModelT", bound=BaseModel)

_CHUNK_SIZE = 1024 * 1024


def sha256_bytes(content: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(content).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file's exact byte content.

    Args:
        path: File to hash.

    Returns:
        Lowercase hex digest.
    """
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def dump_json(payload: Any) -> str:
    """Serialize a payload the way every pipeline document is written."""
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def write_json(path: Path, payload: Any) -> None:
    """Write a JSON document, creating parent directories as needed.

    Args:
        path: Destination file.
        payload: JSON-compatible value (dicts from WireModel.to_wire()).
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_json(payload), encoding="utf-8")


def replace_json(path: Path, payload: Any) -> None:
    """Write a JSON document through a sibling temp file and os.replace.

    Readers see either the previous document or the complete new one.
    """
    temp_path = path.with_name(f".{path.name}.tmp")
    write_json(temp_path, payload)
    os.replace(temp_path, path)


def read_json(path: Path, label: str) -> Any:
    """Read and decode a JSON file.

    Args:
        path: File to read.
        label: Human-readable name used in error messages.

    Returns:
        The decoded JSON value.

    Raises:
        CompletenessError: If the file does not exist.
        ShapeError: If the file is not valid JSON.
    """
    if not path.is_file():
        raise CompletenessError(f"{label} not found at {path}", field=str(path))
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ShapeError(f"{label} at {path} is not valid JSON: {exc.msg}", field=str(path)) from exc


def format_location(loc: tuple[Any, ...]) -> str:
    """Render a pydantic error location as a dotted path, e.g. testEvidence.0.runId."""
    return ".".join(str(part) for part in loc) or "<root>"


def parse_model(model_cls: type[ModelT], data: Any, context: str) -> ModelT:
    """Validate untrusted data into a typed model.

    Args:
        model_cls: Target pydantic model.
        data: Decoded JSON value.
        context: Prefix for error messages (usually the source file).

    Returns:
        The validated model instance.

    Raises:
        ShapeError: Naming the first offending field.
    """
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = format_location(first["loc"])
        raise ShapeError(
            f"{context}: invalid field '{location}': {first['msg']}",
            field=location,
        ) from exc


def load_model(path: Path, model_cls: type[ModelT], label: str) -> ModelT:
    """Read a JSON file and validate it into a model."""
    return parse_model(model_cls, read_json(path, label), str(path))
