"""
Derived metrics: unused tags, comment coverage, health scores and
partial-export analysis.

Nothing here raises on missing data. A metric whose inputs are absent (for
instance a routine-level export carrying no tags) is ``NotApplicable``,
which callers must handle separately from a low score.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .models import (
    Computed, ExportMetadata, MetricResult, NotApplicable, Rung, Tag, TagReference
)

logger = logging.getLogger(__name__)

WEIGHTS = {"tag_efficiency": 0.40, "documentation": 0.35, "tag_usage": 0.25}
WEIGHTS_WITH_NAMING = {
    "tag_efficiency": 0.32, "documentation": 0.28, "tag_usage": 0.20, "naming": 0.20,
}
WIRE_NAMES = {
    "tag_efficiency": "tagEfficiency", "documentation": "documentation",
    "tag_usage": "tagUsage", "naming": "naming", "overall": "overall",
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive scores."""
    return int(math.floor(value + 0.5))


def tag_path_prefixes(name: str) -> List[str]:
    """
    All path prefixes of a qualified tag name, shortest first.

    ``Motor1.Status[2].Bit`` gives ``Motor1``, ``Motor1.Status``,
    ``Motor1.Status[2]`` and the full name.
    """
    prefixes = []
    depth = 0
    for i, ch in enumerate(name):
        if ch == "[":
            if depth == 0 and i > 0:
                prefixes.append(name[:i])
            depth += 1
        elif ch == "]":
            depth = max(0, depth - 1)
        elif ch == "." and depth == 0 and i > 0:
            prefixes.append(name[:i])
    prefixes.append(name)
    return prefixes


def referenced_names(references: Iterable[TagReference],
                     include_member_references: bool = False) -> Set[str]:
    """
    Names that count as referenced.

    With ``include_member_references`` a reference to ``Timer1.DN`` also
    marks ``Timer1`` as referenced.
    """
    names = set()
    for ref in references:
        if include_member_references:
            names.update(tag_path_prefixes(ref.tag_name))
        else:
            names.add(ref.tag_name)
    return names


def is_tag_used(tag_name: str, referenced: Set[str]) -> bool:
    """
    Hierarchical usage check.

    A tag is used when its exact name, any dotted or indexed prefix of it,
    or its array base name is referenced.
    """
    return any(prefix in referenced for prefix in tag_path_prefixes(tag_name))


def find_unused_tags(tags: Iterable[Tag], references: Iterable[TagReference],
                     include_member_references: bool = False) -> List[Tag]:
    """Tags not covered by any reference, in declaration order."""
    referenced = referenced_names(references, include_member_references)
    return [tag for tag in tags if not is_tag_used(tag.name, referenced)]


def filter_unused_tags(tags: Iterable[Tag], search: Optional[str] = None,
                       scope: Optional[str] = None, data_type: Optional[str] = None) -> List[Tag]:
    """
    Filter an unused-tag listing and sort it by name.

    Args:
        tags: Unused tags
        search: Case-insensitive substring of the tag name
        scope: Exact scope string; ``None`` or ``"all"`` keeps every scope
        data_type: Exact data type; ``None`` or ``"all"`` keeps every type
    """
    result = list(tags)
    if search:
        needle = search.lower()
        result = [t for t in result if needle in t.name.lower()]
    if scope and scope != "all":
        result = [t for t in result if t.scope == scope]
    if data_type and data_type != "all":
        result = [t for t in result if t.data_type == data_type]
    return sorted(result, key=lambda t: (t.name, t.scope))


def comment_coverage(rungs: Sequence[Rung]) -> MetricResult:
    """Percentage of rungs with a non-blank comment; not applicable without rungs."""
    if not rungs:
        return NotApplicable("no rungs")
    commented = sum(1 for rung in rungs if rung.has_comment)
    return Computed(commented / len(rungs) * 100)


@dataclass
class HealthStats:
    """Inputs of the health score, aggregated over a project's snapshots."""
    total_tags: int = 0
    unused_tags: int = 0
    total_rungs: int = 0
    commented_rungs: int = 0
    total_references: int = 0
    tags_available: bool = True
    names_checked: int = 0
    naming_violations: int = 0
    partial_export: bool = False

    @property
    def comment_coverage(self) -> MetricResult:
        """Coverage rounded to a whole percent, the value the health score weighs."""
        if self.total_rungs == 0:
            return NotApplicable("no rungs")
        return Computed(float(round_half_up(self.commented_rungs / self.total_rungs * 100)))


def tag_efficiency(stats: HealthStats) -> MetricResult:
    if not stats.tags_available:
        return NotApplicable("no tag section in any export")
    if stats.total_tags == 0:
        return Computed(100.0)
    return Computed(max(0.0, 100 - (stats.unused_tags / stats.total_tags) * 200))


def tag_usage(stats: HealthStats) -> MetricResult:
    if not stats.tags_available:
        return NotApplicable("no tag section in any export")
    if stats.total_tags == 0:
        return Computed(0.0)
    return Computed(min(100.0, (stats.total_references / stats.total_tags) * 20))


def naming_compliance(stats: HealthStats) -> MetricResult:
    """``100 - violations/names * 200``, floored at 0; only errors and warnings count."""
    if stats.names_checked == 0:
        return NotApplicable("no names checked")
    return Computed(max(0.0, 100 - (stats.naming_violations / stats.names_checked) * 200))


def _rounded(result: MetricResult) -> Optional[int]:
    if isinstance(result, Computed):
        return round_half_up(result.value)
    return None


@dataclass
class HealthReport:
    """Composite health score with its sub-scores."""
    overall: MetricResult
    tag_efficiency: MetricResult
    documentation: MetricResult
    tag_usage: MetricResult
    naming: Optional[MetricResult] = None
    approximate: bool = False
    stats: HealthStats = field(default_factory=HealthStats)

    def components(self) -> Dict[str, MetricResult]:
        components = {
            "tag_efficiency": self.tag_efficiency,
            "documentation": self.documentation,
            "tag_usage": self.tag_usage,
        }
        if self.naming is not None:
            components["naming"] = self.naming
        return components

    def to_dict(self) -> Dict[str, Any]:
        """Rounded scores; a not-computable score is ``None`` with its reason listed."""
        result = {
            "overall": _rounded(self.overall),
            "tagEfficiency": _rounded(self.tag_efficiency),
            "documentation": _rounded(self.documentation),
            "tagUsage": _rounded(self.tag_usage),
            "approximate": self.approximate,
        }
        if self.naming is not None:
            result["naming"] = _rounded(self.naming)
        not_computable = {
            WIRE_NAMES[name]: metric.reason
            for name, metric in dict(self.components(), overall=self.overall).items()
            if isinstance(metric, NotApplicable)
        }
        if not_computable:
            result["notComputable"] = not_computable
        result["stats"] = {
            "totalTags": self.stats.total_tags,
            "unusedTags": self.stats.unused_tags,
            "totalRungs": self.stats.total_rungs,
            "commentedRungs": self.stats.commented_rungs,
            "totalReferences": self.stats.total_references,
        }
        return result


def compute_health_score(stats: HealthStats, naming_enabled: bool = False) -> HealthReport:
    """
    Compute the composite health score.

    ``overall = 0.40 * tagEfficiency + 0.35 * documentation + 0.25 * tagUsage``
    (0.32 / 0.28 / 0.20 plus 0.20 naming when naming is enabled). Sub-scores
    that are not computable are dropped and the remaining weights are
    re-normalised; the report is then marked approximate.
    """
    report = HealthReport(
        overall=NotApplicable("no computable component"),
        tag_efficiency=tag_efficiency(stats),
        documentation=stats.comment_coverage,
        tag_usage=tag_usage(stats),
        naming=naming_compliance(stats) if naming_enabled else None,
        stats=stats,
    )

    weights = WEIGHTS_WITH_NAMING if naming_enabled else WEIGHTS
    components = report.components()
    computable = {name: m.value for name, m in components.items() if isinstance(m, Computed)}

    report.approximate = stats.partial_export or len(computable) < len(components)
    if computable:
        total_weight = sum(weights[name] for name in computable)
        overall = sum(weights[name] * value for name, value in computable.items()) / total_weight
        report.overall = Computed(max(0.0, min(100.0, overall)))
    else:
        logger.debug("Health score not computable: no component has data")
    return report


@dataclass
class ExportTypeInfo:
    has_partial_exports: bool
    all_partial: bool
    file_breakdown: Dict[str, int]
    partial_files: List[Dict[str, Optional[str]]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasPartialExports": self.has_partial_exports,
            "allPartial": self.all_partial,
            "fileBreakdown": dict(self.file_breakdown),
            "partialFiles": list(self.partial_files),
        }


def analyze_export_types(metadata: Iterable[ExportMetadata]) -> ExportTypeInfo:
    """
    Classify exports as controller, program or routine level.

    A missing or unrecognised target type counts as a full controller export.
    """
    breakdown = {"controller": 0, "program": 0, "routine": 0}
    partial_files = []
    for meta in metadata:
        target = (meta.target_type or "").lower()
        if target == "program":
            breakdown["program"] += 1
            partial_files.append({"targetType": "Program", "targetName": meta.target_name})
        elif target == "routine":
            breakdown["routine"] += 1
            partial_files.append({"targetType": "Routine", "targetName": meta.target_name})
        else:
            breakdown["controller"] += 1
    has_partial = bool(partial_files)
    return ExportTypeInfo(
        has_partial_exports=has_partial,
        all_partial=has_partial and breakdown["controller"] == 0,
        file_breakdown=breakdown,
        partial_files=partial_files,
    )
