"""History snapshotter: archives the current evidence under history/.

Each publish is copied to history/<YYYYMMDDTHHMMSSZ>-<commit[:12]>/ and
recorded at the head of history/index.json. A recurring snapshot name (same
commit, same second) replaces the earlier snapshot and its index entry, so
re-publishing is idempotent and the index never lists a name twice.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from datetime import UTC
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from compliance_evidence.core.errors import ShapeError
from compliance_evidence.core.files import load_model, parse_model, read_json, write_json
from compliance_evidence.core.models import (
    DEPLOY_RUN_FILENAME,
    EVIDENCE_FILENAME,
    TESTS_DIRNAME,
    HistoryIndex,
    HistorySnapshot,
    IsoTimestamp,
    parse_timestamp,
)
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)

INDEX_FILENAME = "index.json"
# Index entries name snapshots relative to the evidence repository root.
HISTORY_PREFIX = "history/"
SNAPSHOT_FILES: tuple[str, ...] = (
    EVIDENCE_FILENAME,
    DEPLOY_RUN_FILENAME,
    "trust-evidence.md",
    "store-compliance.md",
    TESTS_DIRNAME,
)


class _Header(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _SourceHeader(_Header):
    ref: str = "unknown"
    commit_sha: str = "unknown"


class _VerificationHeader(_Header):
    ci_run_id: str = ""
    deploy_run_id: str = ""


class PublishedEvidenceHeader(_Header):
    """The fields of a published evidence document that name its snapshot."""

    generated_at: IsoTimestamp
    source: _SourceHeader = Field(default_factory=_SourceHeader)
    verification: _VerificationHeader = Field(default_factory=_VerificationHeader)


def snapshot_name(generated_at: str, commit_sha: str) -> str:
    """Name a snapshot after its publish second and commit.

    Milliseconds are dropped, so same-second re-publishes of one commit
    share a name.

    Raises:
        ShapeError: If generated_at is not a valid timestamp.
    """
    try:
        moment = parse_timestamp(generated_at)
    except ValueError as exc:
        raise ShapeError(f"Invalid generatedAt value: {generated_at}", field="generatedAt") from exc
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return f"{moment.strftime('%Y%m%dT%H%M%SZ')}-{commit_sha[:12]}"


@dataclass(frozen=True)
class SnapshotResult:
    name: str
    directory: Path
    entry: HistorySnapshot


class HistorySnapshotter:
    """Copies the published evidence into an immutable, named snapshot.

    Args:
        current_dir: Publication directory holding evidence.json.
        history_dir: Archive root holding snapshots and index.json.
    """

    def __init__(self, current_dir: Path, history_dir: Path) -> None:
        self._current_dir = current_dir
        self._history_dir = history_dir

    @property
    def index_path(self) -> Path:
        return self._history_dir / INDEX_FILENAME

    def load_index(self) -> HistoryIndex:
        """Read the index.

        A missing index, or one without a snapshots list, counts as empty.
        Entries lacking a snapshot name are dropped with a warning; other
        missing fields read as empty strings.

        Raises:
            ShapeError: If index.json is not valid JSON.
        """
        if not self.index_path.is_file():
            return HistoryIndex()
        data = read_json(self.index_path, "History index")
        snapshots = data.get("snapshots") if isinstance(data, dict) else None
        if not isinstance(snapshots, list):
            logger.warning("Resetting history index without a snapshots list", path=str(self.index_path))
            return HistoryIndex()

        entries: list[HistorySnapshot] = []
        for position, item in enumerate(snapshots):
            try:
                entries.append(parse_model(HistorySnapshot, item, f"{self.index_path} snapshots.{position}"))
            except ShapeError as exc:
                logger.warning(
                    "Dropping malformed history index entry",
                    path=str(self.index_path),
                    position=position,
                    error=exc.message,
                )
        return HistoryIndex(snapshots=entries)

    def snapshot(self) -> SnapshotResult:
        """Archive current/ and prepend the snapshot to the index.

        Raises:
            CompletenessError: If current/evidence.json does not exist.
            ShapeError: If it lacks a valid generatedAt, or index.json is not
                valid JSON.
        """
        header = load_model(self._current_dir / EVIDENCE_FILENAME, PublishedEvidenceHeader, "Evidence file")
        name = snapshot_name(header.generated_at, header.source.commit_sha)
        directory = self._history_dir / name
        index = self.load_index()

        shutil.rmtree(directory, ignore_errors=True)
        directory.mkdir(parents=True)
        for item in SNAPSHOT_FILES:
            source = self._current_dir / item
            if source.is_dir():
                shutil.copytree(source, directory / item)
            elif source.is_file():
                shutil.copy2(source, directory / item)

        entry = HistorySnapshot(
            snapshot=f"{HISTORY_PREFIX}{name}",
            generated_at=header.generated_at,
            source_ref=header.source.ref,
            source_commit_sha=header.source.commit_sha,
            ci_run_id=header.verification.ci_run_id,
            deploy_run_id=header.verification.deploy_run_id,
        )
        existing = [item for item in index.snapshots if item.snapshot != entry.snapshot]
        write_json(self.index_path, HistoryIndex(snapshots=[entry, *existing]).to_wire())

        logger.info("Published history snapshot", snapshot=entry.snapshot, snapshots=len(existing) + 1)
        return SnapshotResult(name=name, directory=directory, entry=entry)
