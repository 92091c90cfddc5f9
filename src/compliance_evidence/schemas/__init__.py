"""JSON Schema documents published alongside the evidence."""

from __future__ import annotations

import importlib.resources
import json
from typing import Any

EVIDENCE_SCHEMA = "evidence.schema.json"
TEST_ARTIFACT_SCHEMA = "test-artifact.schema.json"


def load_schema(name: str) -> dict[str, Any]:
    """Load a packaged schema by file name."""
    resource = importlib.resources.files(__name__).joinpath(name)
    return json.loads(resource.read_text(encoding="utf-8"))
