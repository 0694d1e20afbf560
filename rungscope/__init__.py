"""
Rungscope: parsing, reference indexing and differencing for Rockwell Studio 5000 exports.

Supports:
- L5X (XML) and L5K (text) parsing into an immutable snapshot model
- Static tag cross-reference extraction from ladder rungs
- File, version and folder comparison
- Unused-tag detection, comment coverage and health scoring
- Naming-rule validation
- JSON / CSV / Markdown export
"""

from .config import RungscopeConfig, load_config
from .diff import DiffEngine, DiffReport, compare_snapshots
from .errors import (
    InvalidNamingRule, MalformedDocument, ParseError, ParseLimitExceeded, RungscopeError,
    SnapshotNotFound, TruncatedInput, UnsupportedFileKind, UnsupportedSchemaVersion,
)
from .metrics import compute_health_score, find_unused_tags
from .models import Computed, NotApplicable, ParsedDocument, Snapshot, TagReference
from .naming import NamingRule, NamingRuleSet, NamingValidator
from .parser import DocumentParser
from .project import ProjectAnalysis
from .query import SnapshotQuery
from .references import ReferenceExtractor, extract_references
from .store import SnapshotStore

__version__ = "1.0.0"
__all__ = [
    "RungscopeConfig",
    "load_config",
    "DocumentParser",
    "ParsedDocument",
    "Snapshot",
    "TagReference",
    "ReferenceExtractor",
    "extract_references",
    "DiffEngine",
    "DiffReport",
    "compare_snapshots",
    "find_unused_tags",
    "compute_health_score",
    "Computed",
    "NotApplicable",
    "NamingRule",
    "NamingRuleSet",
    "NamingValidator",
    "SnapshotStore",
    "ProjectAnalysis",
    "SnapshotQuery",
    "RungscopeError",
    "ParseError",
    "MalformedDocument",
    "UnsupportedSchemaVersion",
    "TruncatedInput",
    "ParseLimitExceeded",
    "UnsupportedFileKind",
    "SnapshotNotFound",
    "InvalidNamingRule",
]
