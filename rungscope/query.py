"""
Read-only query API over parsed snapshots.
Provides tag cross-reference search, tag lookup and the I/O module tree.
"""

import re
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from .metrics import tag_path_prefixes
from .models import IOModule, Routine, Snapshot, Tag, TagReference, UsageType

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def paginate(items: Sequence[T], page: int = 1,
             page_size: int = DEFAULT_PAGE_SIZE) -> Tuple[List[T], int, int]:
    """
    Slice one page out of ``items``.

    Returns:
        ``(items, page, page_size)`` with page clamped to >= 1 and page size
        to 1..100
    """
    page = max(1, int(page))
    page_size = max(1, min(MAX_PAGE_SIZE, int(page_size)))
    start = (page - 1) * page_size
    return list(items[start:start + page_size]), page, page_size


def reference_to_dict(ref: TagReference) -> Dict[str, Any]:
    return {
        "tagName": ref.tag_name,
        "programName": ref.program_name,
        "routineName": ref.routine_name,
        "rungNumber": ref.rung_number,
        "usageType": ref.usage_type.value,
        "instruction": ref.instruction,
        "fileId": ref.file_id,
        "versionId": ref.version_id,
    }


@dataclass
class ReferencePage:
    references: List[TagReference]
    total_count: int
    page: int
    page_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "references": [reference_to_dict(r) for r in self.references],
            "totalCount": self.total_count,
            "page": self.page,
            "pageSize": self.page_size,
        }


class SnapshotQuery:
    """Query interface over one or more snapshots."""

    def __init__(self, snapshots: Union[Snapshot, Sequence[Snapshot]]):
        """
        Initialize the query interface.

        Args:
            snapshots: A snapshot, or the snapshots of a project
        """
        if isinstance(snapshots, Snapshot):
            snapshots = [snapshots]
        self.snapshots = list(snapshots)
        self._build_indexes()

    def _build_indexes(self):
        """Build lookup indexes."""
        self._tags: List[Tag] = []
        self._tag_by_type = defaultdict(list)
        self._tag_by_scope = defaultdict(list)
        self._routine_index: Dict[Tuple[str, str], Routine] = {}
        self._modules: Dict[str, IOModule] = {}
        self._references: List[TagReference] = []

        for snapshot in self.snapshots:
            for tag in snapshot.tags:
                self._tags.append(tag)
                self._tag_by_type[tag.data_type].append(tag)
                self._tag_by_scope[tag.scope].append(tag)

            for routine in snapshot.routines:
                self._routine_index.setdefault((routine.program_name, routine.name), routine)

            # first declaration of a module name wins
            for module in snapshot.modules:
                self._modules.setdefault(module.name, module)

            self._references.extend(snapshot.references)

    def search_references(self, search: Optional[str] = None,
                          usage_type: Optional[Union[str, UsageType]] = None,
                          program: Optional[str] = None, page: int = 1,
                          page_size: int = DEFAULT_PAGE_SIZE) -> ReferencePage:
        """
        Search the tag cross-reference.

        Args:
            search: Case-insensitive substring of the tag name
            usage_type: ``Read``, ``Write`` or ``Read/Write``; ``"all"`` keeps all
            program: Exact program name; ``"all"`` keeps all
            page: 1-based page number
            page_size: Page size, capped at 100

        Returns:
            One page of references sorted by tag, program, routine and rung
        """
        refs = self._references
        if search:
            needle = search.lower()
            refs = [r for r in refs if needle in r.tag_name.lower()]
        if usage_type and usage_type != "all":
            wanted = UsageType(usage_type)
            refs = [r for r in refs if r.usage_type is wanted]
        if program and program != "all":
            refs = [r for r in refs if r.program_name == program]

        refs = sorted(refs, key=lambda r: (r.tag_name, r.program_name, r.routine_name, r.rung_number))
        items, page, page_size = paginate(refs, page, page_size)
        return ReferencePage(references=items, total_count=len(refs), page=page, page_size=page_size)

    def references_to(self, tag_name: str, include_members: bool = False) -> List[TagReference]:
        """
        References to a tag.

        With ``include_members``, references to members or elements
        (``Tag.Member``, ``Tag[3]``) are included too.
        """
        result = []
        for ref in self._references:
            if ref.tag_name == tag_name:
                result.append(ref)
            elif include_members and tag_name in tag_path_prefixes(ref.tag_name):
                result.append(ref)
        return result

    def tag_usage(self, tag_name: str) -> Dict[str, Any]:
        """Readers and writers of a tag, as ``program/routine`` names."""
        readers, writers = set(), set()
        for ref in self.references_to(tag_name):
            location = f"{ref.program_name}/{ref.routine_name}"
            if ref.usage_type in (UsageType.READ, UsageType.READ_WRITE):
                readers.add(location)
            if ref.usage_type in (UsageType.WRITE, UsageType.READ_WRITE):
                writers.add(location)
        return {"tagName": tag_name, "readers": sorted(readers), "writers": sorted(writers)}

    def get_tag(self, tag_name: str, scope: Optional[str] = None) -> Optional[Tag]:
        for tag in self._tags:
            if tag.name == tag_name and (scope is None or tag.scope == scope):
                return tag
        return None

    def find_tags_by_prefix(self, prefix: str) -> List[Tag]:
        """
        Find tags whose name starts with the given prefix (case-insensitive).

        Args:
            prefix: The prefix to search for

        Returns:
            List of matching tags
        """
        prefix_lower = prefix.lower()
        return [tag for tag in self._tags if tag.name.lower().startswith(prefix_lower)]

    def find_tags_by_type(self, data_type: str) -> List[Tag]:
        return list(self._tag_by_type.get(data_type, []))

    def find_tags_by_scope(self, scope: str) -> List[Tag]:
        return list(self._tag_by_scope.get(scope, []))

    def search_tags(self, pattern: str, case_sensitive: bool = False) -> List[Tag]:
        """Search tag names with a regex pattern."""
        flags = 0 if case_sensitive else re.IGNORECASE
        regex = re.compile(pattern, flags)
        return [tag for tag in self._tags if regex.search(tag.name)]

    def get_routine(self, routine_name: str, program_name: Optional[str] = None) -> Optional[Routine]:
        if program_name is not None:
            return self._routine_index.get((program_name, routine_name))
        for (_, name), routine in self._routine_index.items():
            if name == routine_name:
                return routine
        return None

    def get_module(self, name: str) -> Optional[IOModule]:
        return self._modules.get(name)

    def _parent_of(self, module: IOModule) -> Optional[IOModule]:
        """The parent module, resolved by name; self-parented modules have none."""
        if not module.parent_module or module.parent_module == module.name:
            return None
        return self._modules.get(module.parent_module)

    def module_path(self, name: str) -> List[str]:
        """
        Names from the root module down to ``name``.

        Returns an empty list for an unknown module. A dangling parent name
        ends the walk.
        """
        module = self._modules.get(name)
        path = []
        seen = set()
        while module is not None and module.name not in seen:
            seen.add(module.name)
            path.append(module.name)
            module = self._parent_of(module)
        if module is not None:
            logger.warning(f"Module parent cycle detected at {module.name}")
        return list(reversed(path))

    def module_tree(self) -> List[Dict[str, Any]]:
        """
        The I/O tree rebuilt from parent names.

        Roots are modules with no parent, a self-reference, or a parent name
        that does not resolve; children keep declaration order.
        """
        children = defaultdict(list)
        roots = []
        for module in self._modules.values():
            parent = self._parent_of(module)
            if parent is None:
                if module.parent_module and module.parent_module != module.name:
                    logger.debug(f"Module {module.name} has unknown parent {module.parent_module}")
                roots.append(module)
            else:
                children[parent.name].append(module)

        def node(module: IOModule, seen: frozenset) -> Dict[str, Any]:
            return {
                "name": module.name,
                "catalogNumber": module.catalog_number,
                "slot": module.slot,
                "children": [node(child, seen | {module.name})
                             for child in children[module.name] if child.name not in seen],
            }

        return [node(root, frozenset()) for root in roots]

    def statistics(self) -> Dict[str, Any]:
        """
        Counts by scope, data type and usage.

        Returns:
            Dictionary containing tag and reference statistics
        """
        by_usage = defaultdict(int)
        for ref in self._references:
            by_usage[ref.usage_type.value] += 1
        referenced = {ref.tag_name for ref in self._references}
        return {
            "tags": {
                "total": len(self._tags),
                "by_scope": {scope: len(tags) for scope, tags in sorted(self._tag_by_scope.items())},
                "by_type": {dt: len(tags) for dt, tags in sorted(self._tag_by_type.items())},
            },
            "references": {
                "total": len(self._references),
                "distinct_tags": len(referenced),
                "by_usage": dict(sorted(by_usage.items())),
            },
            "routines": len(self._routine_index),
            "modules": len(self._modules),
        }
