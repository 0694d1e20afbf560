"""
Structural differencing of snapshots.

Entities are matched by key (tags by name, routines by program and name,
modules by name), compared field by field, and reported as added, removed
or modified. Unchanged entities are omitted. All output lists are sorted by
key so that the same pair of snapshots always yields the same report.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from .models import AOI, IOModule, Routine, Snapshot, Tag, Task, UDT
from .store import FileRecord

logger = logging.getLogger(__name__)

ARROW = "→"


def _show(value: Any) -> str:
    if value is None or value == "":
        return "none"
    return str(value)


def _delta(label: str, old: Any, new: Any) -> str:
    return f"{label}: {_show(old)} {ARROW} {_show(new)}"


@dataclass
class ChangeSet:
    """Added / removed / modified rows for one entity kind."""
    added: List[Dict[str, Any]] = field(default_factory=list)
    removed: List[Dict[str, Any]] = field(default_factory=list)
    modified: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.added) + len(self.removed) + len(self.modified)

    def to_dict(self) -> Dict[str, Any]:
        return {"added": self.added, "removed": self.removed, "modified": self.modified}


@dataclass
class DiffReport:
    """Changes between two snapshots."""
    tags: ChangeSet
    routines: ChangeSet
    modules: ChangeSet
    udts: ChangeSet = field(default_factory=ChangeSet)
    aois: ChangeSet = field(default_factory=ChangeSet)
    tasks: ChangeSet = field(default_factory=ChangeSet)

    @property
    def total_changes(self) -> int:
        """Added + removed + modified over tags, routines and modules."""
        return self.tags.count + self.routines.count + self.modules.count

    @property
    def definition_changes(self) -> int:
        """Changes to UDTs, AOIs and tasks (reported apart from ``total_changes``)."""
        return self.udts.count + self.aois.count + self.tasks.count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tags": self.tags.to_dict(),
            "routines": self.routines.to_dict(),
            "modules": self.modules.to_dict(),
            "udts": self.udts.to_dict(),
            "aois": self.aois.to_dict(),
            "tasks": self.tasks.to_dict(),
            "summary": {
                "totalChanges": self.total_changes,
                "tagsChanged": self.tags.count,
                "routinesChanged": self.routines.count,
                "modulesChanged": self.modules.count,
                "definitionChanges": self.definition_changes,
            },
        }


def _index(items: Iterable[Any], key: Callable[[Any], Hashable], kind: str) -> Dict[Hashable, Any]:
    """Index entities by key; the first declaration of a key wins."""
    indexed = {}
    for item in items:
        k = key(item)
        if k in indexed:
            logger.debug(f"Duplicate {kind} key {k!r}; keeping the first declaration")
            continue
        indexed[k] = item
    return indexed


def _compare(
    old_items: Iterable[Any],
    new_items: Iterable[Any],
    key: Callable[[Any], Hashable],
    summary: Callable[[Any], Dict[str, Any]],
    changes: Callable[[Any, Any], List[str]],
    kind: str,
) -> ChangeSet:
    old = _index(old_items, key, kind)
    new = _index(new_items, key, kind)
    result = ChangeSet()

    for k in sorted(old.keys() - new.keys()):
        result.removed.append(summary(old[k]))
    for k in sorted(new.keys() - old.keys()):
        result.added.append(summary(new[k]))
    for k in sorted(old.keys() & new.keys()):
        deltas = changes(old[k], new[k])
        if deltas:
            row = summary(new[k])
            row["changes"] = deltas
            result.modified.append(row)
    return result


def compare_tags(old: Iterable[Tag], new: Iterable[Tag]) -> ChangeSet:
    def changes(a: Tag, b: Tag) -> List[str]:
        deltas = []
        if a.data_type != b.data_type:
            deltas.append(_delta("Data type", a.data_type, b.data_type))
        if a.scope != b.scope:
            deltas.append(_delta("Scope", a.scope, b.scope))
        if a.description != b.description:
            deltas.append("Description changed")
        return deltas

    return _compare(
        old, new,
        key=lambda t: t.name,
        summary=lambda t: {"name": t.name, "data_type": t.data_type},
        changes=changes,
        kind="tag",
    )


def compare_routines(old: Iterable[Routine], new: Iterable[Routine]) -> ChangeSet:
    def changes(a: Routine, b: Routine) -> List[str]:
        deltas = []
        if a.type != b.type:
            deltas.append(_delta("Type", a.type, b.type))
        if a.rung_count != b.rung_count:
            deltas.append(_delta("Rung count", a.rung_count, b.rung_count))
        if a.description != b.description:
            deltas.append("Description changed")
        return deltas

    return _compare(
        old, new,
        key=lambda r: (r.program_name, r.name),
        summary=lambda r: {"name": r.name, "program_name": r.program_name, "type": r.type},
        changes=changes,
        kind="routine",
    )


def compare_modules(old: Iterable[IOModule], new: Iterable[IOModule]) -> ChangeSet:
    def changes(a: IOModule, b: IOModule) -> List[str]:
        deltas = []
        if a.catalog_number != b.catalog_number:
            deltas.append(_delta("Catalog", a.catalog_number, b.catalog_number))
        if a.parent_module != b.parent_module:
            deltas.append(_delta("Parent", a.parent_module, b.parent_module))
        if a.slot != b.slot:
            deltas.append(_delta("Slot", a.slot, b.slot))
        return deltas

    return _compare(
        old, new,
        key=lambda m: m.name,
        summary=lambda m: {"name": m.name, "catalog_number": m.catalog_number},
        changes=changes,
        kind="module",
    )


def _ordered_deltas(label: str, old: Sequence[Tuple], new: Sequence[Tuple]) -> List[str]:
    """
    Describe changes to an ordered member/parameter list.

    Each entry is ``(name, data_type, ...)``. Order matters: the same entries
    in a different order are reported as a reorder.
    """
    if tuple(old) == tuple(new):
        return []
    old_by_name = {entry[0]: entry for entry in old}
    new_by_name = {entry[0]: entry for entry in new}
    deltas = []
    for name in [e[0] for e in old if e[0] not in new_by_name]:
        deltas.append(f"{label} removed: {name}")
    for name in [e[0] for e in new if e[0] not in old_by_name]:
        deltas.append(f"{label} added: {name}")
    for entry in old:
        other = new_by_name.get(entry[0])
        if other is None:
            continue
        if entry[1] != other[1]:
            deltas.append(_delta(f"{label} {entry[0]} data type", entry[1], other[1]))
        elif entry != other:
            deltas.append(f"{label} {entry[0]} changed")
    common_old = [e[0] for e in old if e[0] in new_by_name]
    common_new = [e[0] for e in new if e[0] in old_by_name]
    if common_old != common_new:
        deltas.append(f"{label} order changed")
    return deltas


def compare_udts(old: Iterable[UDT], new: Iterable[UDT]) -> ChangeSet:
    def members(udt: UDT) -> List[Tuple]:
        return [(m.name, m.data_type, m.dimension) for m in udt.members]

    def changes(a: UDT, b: UDT) -> List[str]:
        deltas = []
        if a.description != b.description:
            deltas.append("Description changed")
        deltas.extend(_ordered_deltas("Member", members(a), members(b)))
        return deltas

    return _compare(
        old, new,
        key=lambda u: u.name,
        summary=lambda u: {"name": u.name, "member_count": len(u.members)},
        changes=changes,
        kind="udt",
    )


def compare_aois(old: Iterable[AOI], new: Iterable[AOI]) -> ChangeSet:
    def parameters(aoi: AOI) -> List[Tuple]:
        return [(p.name, p.data_type, p.usage, p.required) for p in aoi.parameters]

    def changes(a: AOI, b: AOI) -> List[str]:
        deltas = []
        if a.revision != b.revision:
            deltas.append(_delta("Revision", a.revision, b.revision))
        if a.description != b.description:
            deltas.append("Description changed")
        deltas.extend(_ordered_deltas("Parameter", parameters(a), parameters(b)))
        return deltas

    return _compare(
        old, new,
        key=lambda a: a.name,
        summary=lambda a: {"name": a.name, "revision": a.revision},
        changes=changes,
        kind="aoi",
    )


def compare_tasks(old: Iterable[Task], new: Iterable[Task]) -> ChangeSet:
    def changes(a: Task, b: Task) -> List[str]:
        deltas = []
        for label, attr in (("Type", "type"), ("Rate", "rate"), ("Priority", "priority"),
                            ("Watchdog", "watchdog"), ("Inhibit", "inhibit_task")):
            if getattr(a, attr) != getattr(b, attr):
                deltas.append(_delta(label, getattr(a, attr), getattr(b, attr)))
        if a.scheduled_programs != b.scheduled_programs:
            deltas.append(_delta("Programs", ", ".join(a.scheduled_programs),
                                 ", ".join(b.scheduled_programs)))
        return deltas

    return _compare(
        old, new,
        key=lambda t: t.name,
        summary=lambda t: {"name": t.name, "type": t.type},
        changes=changes,
        kind="task",
    )


def compare_snapshots(old: Snapshot, new: Snapshot) -> DiffReport:
    """Diff two snapshots (different files, or two versions of one file)."""
    report = DiffReport(
        tags=compare_tags(old.tags, new.tags),
        routines=compare_routines(old.routines, new.routines),
        modules=compare_modules(old.modules, new.modules),
        udts=compare_udts(old.udts, new.udts),
        aois=compare_aois(old.aois, new.aois),
        tasks=compare_tasks(old.tasks, new.tasks),
    )
    logger.debug(f"Compared {old.version_id} with {new.version_id}: "
                 f"{report.total_changes} changes, {report.definition_changes} definition changes")
    return report


@dataclass
class FilePairDiff:
    file_name: str
    file1_id: str
    file2_id: str
    result: DiffReport

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "file1Id": self.file1_id,
            "file2Id": self.file2_id,
            "result": self.result.to_dict(),
        }


@dataclass
class UnmatchedFile:
    file_name: str
    file_id: str
    side: str  # "left" or "right"

    def to_dict(self) -> Dict[str, Any]:
        return {"fileName": self.file_name, "fileId": self.file_id, "side": self.side}


@dataclass
class FolderComparison:
    """Result of matching two sets of files by name and diffing each pair."""
    folder1: str
    folder2: str
    comparisons: List[FilePairDiff]
    unmatched_files: List[UnmatchedFile]
    total_files: int

    @property
    def files_with_changes(self) -> int:
        return sum(1 for c in self.comparisons if c.result.total_changes > 0)

    @property
    def total_changes(self) -> int:
        return sum(c.result.total_changes for c in self.comparisons)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "folder",
            "folder1": self.folder1,
            "folder2": self.folder2,
            "matchedPairs": [
                {"fileName": c.file_name, "file1Id": c.file1_id, "file2Id": c.file2_id}
                for c in self.comparisons
            ],
            "comparisons": [c.to_dict() for c in self.comparisons],
            "unmatchedFiles": [u.to_dict() for u in self.unmatched_files],
            "summary": {
                "totalFiles": self.total_files,
                "matchedFiles": len(self.comparisons),
                "unmatchedLeft": sum(1 for u in self.unmatched_files if u.side == "left"),
                "unmatchedRight": sum(1 for u in self.unmatched_files if u.side == "right"),
                "filesWithChanges": self.files_with_changes,
                "totalChanges": self.total_changes,
            },
        }


class DiffEngine:
    """
    Computes diffs between stored snapshots.

    Snapshots are loaded through a ``SnapshotStore``; a missing file or
    version surfaces as ``SnapshotNotFound`` from the store.
    """

    def __init__(self, store, max_workers: int = 4):
        """
        Args:
            store: ``SnapshotStore`` to read snapshots from
            max_workers: Upper bound on concurrently diffed file pairs
        """
        self.store = store
        self.max_workers = max(1, max_workers)

    def compare_files(self, file1_id: str, file2_id: str,
                      version1: Optional[int] = None, version2: Optional[int] = None) -> DiffReport:
        """Diff two files' current snapshots, or specific version numbers."""
        old = self.store.get_snapshot(file1_id, version1)
        new = self.store.get_snapshot(file2_id, version2)
        return compare_snapshots(old, new)

    def compare_versions(self, version1_id: str, version2_id: str) -> DiffReport:
        return compare_snapshots(self.store.get_version(version1_id),
                                 self.store.get_version(version2_id))

    def _files_by_name(self, folder_id: str) -> Dict[str, FileRecord]:
        """Completed files keyed by name; the first registered wins a name clash."""
        files: Dict[str, FileRecord] = {}
        for record in self.store.folder_files(folder_id):
            kept = files.get(record.file_name)
            if kept is not None:
                logger.warning(f"Folder {folder_id} has more than one {record.file_name}; "
                               f"comparing {kept.file_id} and skipping {record.file_id}")
                continue
            files[record.file_name] = record
        return files

    def compare_folders(self, folder1_id: str, folder2_id: str) -> FolderComparison:
        """
        Compare two folders by matching their completed files on file name.

        Matched pairs are diffed concurrently (bounded by ``max_workers``);
        files without a same-named counterpart are listed by side.
        """
        left = self._files_by_name(folder1_id)
        right = self._files_by_name(folder2_id)

        matched = sorted(left.keys() & right.keys())
        unmatched = [UnmatchedFile(name, left[name].file_id, "left")
                     for name in sorted(left.keys() - right.keys())]
        unmatched.extend(UnmatchedFile(name, right[name].file_id, "right")
                         for name in sorted(right.keys() - left.keys()))

        def diff_pair(name: str) -> FilePairDiff:
            file1_id, file2_id = left[name].file_id, right[name].file_id
            return FilePairDiff(name, file1_id, file2_id, self.compare_files(file1_id, file2_id))

        workers = min(self.max_workers, len(matched) or 1)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            comparisons = list(executor.map(diff_pair, matched))

        result = FolderComparison(
            folder1=folder1_id,
            folder2=folder2_id,
            comparisons=comparisons,
            unmatched_files=unmatched,
            total_files=len(left) + len(right),
        )
        logger.info(f"Compared folders {folder1_id} and {folder2_id}: "
                    f"{len(comparisons)} matched, {len(unmatched)} unmatched, "
                    f"{result.total_changes} changes")
        return result
