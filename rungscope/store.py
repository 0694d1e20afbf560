"""
In-memory snapshot store.

Stands at the persistence boundary: it records files and their parsing
status, and keeps an append-only list of snapshots per file. A snapshot is
only inserted once parsing and reference extraction have both succeeded,
under the store lock, so readers never observe a half-built version.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from .config import RungscopeConfig
from .errors import SnapshotNotFound
from .models import FileKind, Snapshot
from .parser import DocumentParser, kind_for_path, resolve_kind
from .references import ReferenceExtractor

logger = logging.getLogger(__name__)


class ParsingStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class FileRecord:
    """A registered file and the state of its latest parse."""
    file_id: str
    project_id: str
    file_name: str
    kind: FileKind
    folder_id: Optional[str] = None
    parsing_status: ParsingStatus = ParsingStatus.PENDING
    current_version: int = 0
    error: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.parsing_status is ParsingStatus.COMPLETED


class SnapshotStore:
    """Thread-safe registry of files and their snapshot versions."""

    def __init__(self, config: Optional[RungscopeConfig] = None):
        self.config = config or RungscopeConfig()
        self.parser = DocumentParser(self.config)
        self._files: Dict[str, FileRecord] = {}
        self._versions: Dict[str, List[Snapshot]] = {}
        self._by_version_id: Dict[str, Snapshot] = {}
        self._lock = threading.RLock()

    def register_file(self, project_id: str, file_name: str,
                      kind: Optional[Union[str, FileKind]] = None,
                      folder_id: Optional[str] = None,
                      file_id: Optional[str] = None) -> FileRecord:
        """
        Register a file before its first ingest.

        Args:
            project_id: Owning project
            file_name: Display name; the kind defaults to its extension
            kind: Declared kind (``l5x``/``l5k``)
            folder_id: Optional folder used by folder comparison
            file_id: Explicit identity; a new UUID when omitted
        """
        file_kind = resolve_kind(kind) if kind is not None else kind_for_path(file_name)
        record = FileRecord(
            file_id=file_id or str(uuid.uuid4()),
            project_id=project_id,
            file_name=file_name,
            kind=file_kind,
            folder_id=folder_id,
        )
        with self._lock:
            self._files[record.file_id] = record
            self._versions.setdefault(record.file_id, [])
        logger.debug(f"Registered {file_kind.value} file {file_name} as {record.file_id}")
        return record

    def get_file(self, file_id: str) -> FileRecord:
        with self._lock:
            record = self._files.get(file_id)
        if record is None:
            raise SnapshotNotFound(f"File not found: {file_id}")
        return record

    def list_files(self, project_id: Optional[str] = None) -> List[FileRecord]:
        with self._lock:
            records = list(self._files.values())
        if project_id is not None:
            records = [r for r in records if r.project_id == project_id]
        return records

    def _set_status(self, file_id: str, status: ParsingStatus, error: Optional[str] = None) -> None:
        with self._lock:
            current = self._files.get(file_id)
            if current is not None:
                self._files[file_id] = replace(current, parsing_status=status, error=error)

    def ingest(self, file_id: str, data: bytes) -> Snapshot:
        """
        Parse ``data`` as a new version of ``file_id``.

        Parse, extract and insert run in order; the new snapshot is visible
        only after all three have succeeded.

        Raises:
            SnapshotNotFound: the file is not registered
            ParseError: the document was rejected; the file is marked failed
        """
        record = self.get_file(file_id)
        self._set_status(file_id, ParsingStatus.PROCESSING)

        try:
            document = self.parser.parse(data, record.kind)
            version_id = str(uuid.uuid4())
            extractor = ReferenceExtractor(aois=document.aois,
                                           max_workers=self.config.extract_workers)
            references = extractor.extract(document.rungs, file_id=file_id, version_id=version_id)
        except Exception as e:
            self._set_status(file_id, ParsingStatus.FAILED, str(e))
            logger.error(f"Failed to ingest {record.file_name}: {e}")
            raise

        with self._lock:
            current = self._files[file_id]
            snapshot = Snapshot(
                file_id=file_id,
                version_id=version_id,
                document=document,
                references=tuple(references),
                version_number=len(self._versions[file_id]) + 1,
                file_name=record.file_name,
                project_id=record.project_id,
            )
            self._versions[file_id].append(snapshot)
            self._by_version_id[version_id] = snapshot
            self._files[file_id] = replace(
                current,
                parsing_status=ParsingStatus.COMPLETED,
                current_version=snapshot.version_number,
                error=None,
            )

        logger.info(f"Ingested {record.file_name} v{snapshot.version_number}: "
                    f"{len(references)} references")
        return snapshot

    def add_file(self, project_id: str, path: Union[str, Path],
                 folder_id: Optional[str] = None,
                 kind: Optional[Union[str, FileKind]] = None) -> Snapshot:
        """Register a file from disk and ingest its contents as version 1."""
        path = Path(path)
        record = self.register_file(project_id, path.name, kind=kind, folder_id=folder_id)
        with open(path, 'rb') as f:
            data = f.read()
        return self.ingest(record.file_id, data)

    def get_snapshot(self, file_id: str, version_number: Optional[int] = None) -> Snapshot:
        """
        Return a file's current snapshot, or a specific version.

        Raises:
            SnapshotNotFound: unknown file, no completed parse, or no such version
        """
        record = self.get_file(file_id)
        with self._lock:
            versions = list(self._versions.get(file_id, []))
        if not versions:
            raise SnapshotNotFound(
                f"File {record.file_name} has no parsed data ({record.parsing_status.value})"
            )
        if version_number is None:
            if not record.is_completed:
                raise SnapshotNotFound(
                    f"File {record.file_name} is {record.parsing_status.value}"
                )
            version_number = record.current_version
        for snapshot in versions:
            if snapshot.version_number == version_number:
                return snapshot
        raise SnapshotNotFound(f"Version {version_number} of {record.file_name} not found")

    def get_version(self, version_id: str) -> Snapshot:
        with self._lock:
            snapshot = self._by_version_id.get(version_id)
        if snapshot is None:
            raise SnapshotNotFound(f"Version not found: {version_id}")
        return snapshot

    def list_versions(self, file_id: str) -> List[Snapshot]:
        self.get_file(file_id)
        with self._lock:
            return list(self._versions.get(file_id, []))

    def list_snapshots(self, project_id: str) -> List[Snapshot]:
        """Current snapshots of a project's completed files; others are skipped."""
        snapshots = []
        for record in self.list_files(project_id):
            if not record.is_completed:
                logger.debug(f"Skipping {record.file_name}: {record.parsing_status.value}")
                continue
            snapshots.append(self.get_snapshot(record.file_id))
        return snapshots

    def folder_files(self, folder_id: str) -> List[FileRecord]:
        """Completed files in a folder."""
        with self._lock:
            records = list(self._files.values())
        return [r for r in records if r.folder_id == folder_id and r.is_completed]

    def delete_file(self, file_id: str) -> None:
        """Delete a file and every version it has."""
        self.get_file(file_id)
        with self._lock:
            for snapshot in self._versions.pop(file_id, []):
                self._by_version_id.pop(snapshot.version_id, None)
            del self._files[file_id]
        logger.info(f"Deleted file {file_id}")
