"""
Project-level analysis across several snapshots.

A project is the set of current snapshots of its completed files. Tags,
rungs and references are pooled across the files: a tag declared in one
export counts as used when a rung in any other export of the same project
references it.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .config import RungscopeConfig
from .metrics import (
    ExportTypeInfo, HealthReport, HealthStats, analyze_export_types, comment_coverage,
    compute_health_score, filter_unused_tags, find_unused_tags, round_half_up,
)
from .models import Computed, Rung, Section, Snapshot, Tag, TagReference
from .naming import NamingRuleSet, NamingValidator, ValidationResult
from .query import paginate

logger = logging.getLogger(__name__)


@dataclass
class UnusedTagPage:
    tags: List[Tag]
    total_count: int
    page: int
    page_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unusedTags": [
                {"name": t.name, "dataType": t.data_type, "scope": t.scope,
                 "description": t.description}
                for t in self.tags
            ],
            "totalCount": self.total_count,
            "page": self.page,
            "pageSize": self.page_size,
        }


class ProjectAnalysis:
    """Aggregated metrics over the snapshots of one project."""

    def __init__(self, snapshots: Sequence[Snapshot], config: Optional[RungscopeConfig] = None):
        """
        Args:
            snapshots: Current snapshots of the project's completed files
            config: Health options; defaults apply when omitted
        """
        self.snapshots = list(snapshots)
        self.config = config or RungscopeConfig()

    @property
    def tags(self) -> List[Tag]:
        return [tag for s in self.snapshots for tag in s.tags]

    @property
    def rungs(self) -> List[Rung]:
        return [rung for s in self.snapshots for rung in s.rungs]

    @property
    def references(self) -> List[TagReference]:
        return [ref for s in self.snapshots for ref in s.references]

    @property
    def tags_available(self) -> bool:
        """Whether any export carries a tag section at all."""
        return any(s.has_section(Section.TAGS) for s in self.snapshots)

    def unused_tags(self, search: Optional[str] = None, scope: Optional[str] = None,
                    data_type: Optional[str] = None) -> List[Tag]:
        """Unused tags across the project, filtered and sorted by name."""
        unused = find_unused_tags(
            self.tags, self.references,
            include_member_references=self.config.health.include_member_references,
        )
        return filter_unused_tags(unused, search=search, scope=scope, data_type=data_type)

    def unused_tag_page(self, search: Optional[str] = None, scope: Optional[str] = None,
                        data_type: Optional[str] = None, page: int = 1,
                        page_size: int = 50) -> UnusedTagPage:
        tags = self.unused_tags(search=search, scope=scope, data_type=data_type)
        items, page, page_size = paginate(tags, page, page_size)
        return UnusedTagPage(tags=items, total_count=len(tags), page=page, page_size=page_size)

    def comment_coverage(self) -> Dict[str, Any]:
        """Comment coverage overall, per program and per routine."""
        def row(rungs: List[Rung]) -> Dict[str, Any]:
            commented = sum(1 for rung in rungs if rung.has_comment)
            coverage = comment_coverage(rungs)
            return {
                "totalRungs": len(rungs),
                "commentedRungs": commented,
                "coveragePercent": (round_half_up(coverage.value)
                                    if isinstance(coverage, Computed) else None),
            }

        by_program: Dict[str, List[Rung]] = defaultdict(list)
        by_routine: Dict[tuple, List[Rung]] = defaultdict(list)
        for rung in self.rungs:
            by_program[rung.program_name].append(rung)
            by_routine[(rung.program_name, rung.routine_name)].append(rung)

        return {
            "summary": row(self.rungs),
            "byProgram": [dict(name=name, **row(rungs))
                          for name, rungs in sorted(by_program.items())],
            "byRoutine": [dict(programName=program, routineName=routine, **row(rungs))
                          for (program, routine), rungs in sorted(by_routine.items())],
        }

    def naming(self, rule_set: Optional[NamingRuleSet]) -> Optional[ValidationResult]:
        """Validate names against ``rule_set``; ``None`` when no set applies."""
        if rule_set is None:
            return None
        return NamingValidator.for_rule_set(rule_set).validate_snapshots(self.snapshots)

    def export_types(self) -> ExportTypeInfo:
        return analyze_export_types(s.metadata for s in self.snapshots)

    def stats(self, naming_result: Optional[ValidationResult] = None) -> HealthStats:
        tags = self.tags
        rungs = self.rungs
        references = self.references
        unused = find_unused_tags(
            tags, references,
            include_member_references=self.config.health.include_member_references,
        )
        stats = HealthStats(
            total_tags=len(tags),
            unused_tags=len(unused),
            total_rungs=len(rungs),
            commented_rungs=sum(1 for rung in rungs if rung.has_comment),
            total_references=len(references),
            tags_available=self.tags_available,
            partial_export=self.export_types().has_partial_exports,
        )
        if naming_result is not None:
            stats.names_checked = naming_result.names_checked
            stats.naming_violations = naming_result.penalized_violations
        return stats

    def health(self, rule_set: Optional[NamingRuleSet] = None) -> HealthReport:
        """
        Health score for the project.

        The naming component is included only when naming is enabled in the
        configuration and a rule set applies.
        """
        naming_result = None
        if self.config.health.naming_enabled:
            naming_result = self.naming(rule_set)
            if naming_result is None:
                logger.debug("Naming enabled but no rule set applies; scoring without it")
        stats = self.stats(naming_result)
        report = compute_health_score(stats, naming_enabled=naming_result is not None)
        logger.info(f"Health for {len(self.snapshots)} snapshot(s): {report.to_dict()['overall']}")
        return report
