"""Git lookups used when describing companion documents."""

from __future__ import annotations

import subprocess
from pathlib import Path

UNKNOWN_BLOB_SHA = "unknown"


def git_blob_sha(file_path: str, repo_root: Path | None = None) -> str:
    """Return the blob id of a file at HEAD, or "unknown".

    Args:
        file_path: Path relative to the repository root.
        repo_root: Working directory for git; defaults to the current one.
    """
    try:
        completed = subprocess.run(
            ["git", "rev-parse", f"HEAD:{file_path}"],
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return UNKNOWN_BLOB_SHA
    if completed.returncode != 0:
        return UNKNOWN_BLOB_SHA
    return completed.stdout.strip() or UNKNOWN_BLOB_SHA
