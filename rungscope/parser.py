"""
Document parser entry point.

Dispatches raw bytes to the L5X or L5K reader, enforces the size/time
envelope, and checks the invariants every snapshot must satisfy before it
may be persisted.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from .config import RungscopeConfig
from .errors import MalformedDocument, ParseError, ParseLimitExceeded, UnsupportedFileKind
from .l5k_parser import parse_l5k
from .l5x_parser import parse_l5x
from .models import FileKind, ParsedDocument, TaskType

logger = logging.getLogger(__name__)

EXTENSIONS = {
    ".l5x": FileKind.L5X,
    ".l5k": FileKind.L5K,
}


def resolve_kind(kind: Union[str, FileKind]) -> FileKind:
    """Turn a declared kind (``"l5x"``, ``"L5K"``, ``FileKind``) into a ``FileKind``."""
    if isinstance(kind, FileKind):
        return kind
    try:
        return FileKind(str(kind).strip().lower())
    except ValueError:
        raise UnsupportedFileKind(f"Unsupported file kind: {kind!r} (expected l5x or l5k)")


def kind_for_path(path: Union[str, Path]) -> FileKind:
    """Infer the file kind from a file name extension."""
    suffix = Path(path).suffix.lower()
    if suffix not in EXTENSIONS:
        raise UnsupportedFileKind(f"Cannot infer file kind from {Path(path).name!r}")
    return EXTENSIONS[suffix]


def check_invariants(document: ParsedDocument) -> None:
    """
    Reject documents that violate snapshot invariants.

    Raises:
        MalformedDocument: duplicate tag within one scope, duplicate rung
            number within one routine, or more than one CONTINUOUS task.
    """
    kind = document.kind.value

    tag_keys = Counter((tag.scope, tag.name) for tag in document.tags)
    duplicates = sorted(key for key, count in tag_keys.items() if count > 1)
    if duplicates:
        scope, name = duplicates[0]
        raise MalformedDocument(f"Duplicate tag {name!r} in scope {scope!r}", kind=kind)

    rung_keys = Counter(
        (rung.program_name, rung.routine_name, rung.number) for rung in document.rungs
    )
    duplicates = sorted(key for key, count in rung_keys.items() if count > 1)
    if duplicates:
        program, routine, number = duplicates[0]
        raise MalformedDocument(
            f"Duplicate rung number {number} in routine {program}/{routine}", kind=kind
        )

    continuous = [t.name for t in document.tasks if t.type == TaskType.CONTINUOUS.value]
    if len(continuous) > 1:
        raise MalformedDocument(
            f"More than one CONTINUOUS task: {', '.join(continuous)}", kind=kind
        )


@dataclass
class ParseOutcome:
    """Result of one file in a multi-file parse."""
    key: str
    document: Optional[ParsedDocument] = None
    error: Optional[ParseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DocumentParser:
    """Parses PLC export bytes into ``ParsedDocument`` instances."""

    def __init__(self, config: Optional[RungscopeConfig] = None):
        self.config = config or RungscopeConfig()

    def parse(self, data: bytes, kind: Union[str, FileKind]) -> ParsedDocument:
        """
        Parse one document.

        Args:
            data: Raw file bytes
            kind: Declared file kind (``l5x`` or ``l5k``)

        Returns:
            The parsed document

        Raises:
            UnsupportedFileKind: kind is not l5x/l5k
            ParseError: the document is malformed, truncated, of an
                unsupported revision, or outside the size/time envelope
        """
        file_kind = resolve_kind(kind)

        if len(data) > self.config.max_input_bytes:
            raise ParseLimitExceeded(
                f"Input is {len(data)} bytes; limit is {self.config.max_input_bytes}",
                kind=file_kind.value,
            )

        timeout = self.config.parse_timeout_seconds
        if not timeout:
            document = self._parse_now(data, file_kind)
        else:
            executor = ThreadPoolExecutor(max_workers=1)
            try:
                future = executor.submit(self._parse_now, data, file_kind)
                try:
                    document = future.result(timeout=timeout)
                except FutureTimeout:
                    future.cancel()
                    raise ParseLimitExceeded(
                        f"Parsing exceeded {timeout} seconds", kind=file_kind.value
                    )
            finally:
                executor.shutdown(wait=False)

        logger.info(f"Parsed {file_kind.value} document: {len(document.tags)} tags, "
                    f"{len(document.routines)} routines, {len(document.rungs)} rungs")
        return document

    def _parse_now(self, data: bytes, kind: FileKind) -> ParsedDocument:
        if kind is FileKind.L5X:
            document = parse_l5x(data)
        else:
            document = parse_l5k(data)
        check_invariants(document)
        return document

    def parse_file(self, path: Union[str, Path], kind: Optional[Union[str, FileKind]] = None) -> ParsedDocument:
        """Parse a file from disk; the kind defaults to the file extension."""
        path = Path(path)
        file_kind = resolve_kind(kind) if kind is not None else kind_for_path(path)
        with open(path, 'rb') as f:
            data = f.read()
        return self.parse(data, file_kind)

    def parse_many(self, items: Iterable[Tuple[str, bytes, Union[str, FileKind]]]) -> List[ParseOutcome]:
        """
        Parse several independent documents concurrently.

        Args:
            items: ``(key, data, kind)`` triples

        Returns:
            One ``ParseOutcome`` per item, in input order. Parse failures are
            captured per item; any other exception propagates.
        """
        items = list(items)
        workers = max(1, min(self.config.parse_workers, len(items) or 1))

        def run(item):
            key, data, kind = item
            try:
                return ParseOutcome(key=key, document=self.parse(data, kind))
            except ParseError as e:
                logger.warning(f"Failed to parse {key}: {e}")
                return ParseOutcome(key=key, error=e)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(run, items))
