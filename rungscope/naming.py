"""
Naming-rule validation.

Rules describe valid name shapes: a name that matches a rule's pattern is
compliant, a name that does not is a violation. Patterns are compiled when
a rule is created or updated, so validation never meets a bad pattern.
"""

import re
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

import yaml

from .errors import InvalidNamingRule
from .models import Snapshot, Tag, scope_program

logger = logging.getLogger(__name__)


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class EntityKind(Enum):
    TAG = "tag"
    ROUTINE = "routine"
    PROGRAM = "program_name"
    UDT = "udt"
    AOI = "aoi"
    MODULE = "module"
    TASK = "task"

    @property
    def label(self) -> str:
        return {
            EntityKind.TAG: "Tag",
            EntityKind.ROUTINE: "Routine",
            EntityKind.PROGRAM: "Program",
            EntityKind.UDT: "UDT",
            EntityKind.AOI: "AOI",
            EntityKind.MODULE: "Module",
            EntityKind.TASK: "Task",
        }[self]


APPLIES_TO_ALL = "all"
APPLIES_TO_CONTROLLER = "controller"
APPLIES_TO_PROGRAM = "program"
APPLIES_TO_VALUES = (
    {APPLIES_TO_ALL, APPLIES_TO_CONTROLLER, APPLIES_TO_PROGRAM}
    | {kind.value for kind in EntityKind}
)

# severities that feed the health score
PENALIZED_SEVERITIES = (Severity.ERROR.value, Severity.WARNING.value)


def _normalize_applies_to(applies_to: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    if isinstance(applies_to, str):
        values = [v.strip() for v in applies_to.split(",")]
    else:
        values = [str(v).strip() for v in applies_to]
    values = tuple(v.lower() for v in values if v)
    if not values:
        raise InvalidNamingRule("applies_to must name at least one entity kind")
    unknown = [v for v in values if v not in APPLIES_TO_VALUES]
    if unknown:
        raise InvalidNamingRule(
            f"Unknown applies_to value(s): {', '.join(unknown)}; "
            f"expected one of {', '.join(sorted(APPLIES_TO_VALUES))}"
        )
    return values


@dataclass(frozen=True)
class NamingRule:
    """A compiled naming rule. Build with ``NamingRule.create``."""
    id: str
    name: str
    pattern: str
    applies_to: Tuple[str, ...]
    severity: str = Severity.WARNING.value
    is_active: bool = True
    description: Optional[str] = None
    regex: Optional[Pattern] = field(default=None, compare=False, repr=False)

    @classmethod
    def create(cls, id: str, name: str, pattern: str,
               applies_to: Union[str, Sequence[str]] = APPLIES_TO_ALL,
               severity: Optional[str] = None, is_active: bool = True,
               description: Optional[str] = None) -> "NamingRule":
        """
        Validate and compile a rule.

        Raises:
            InvalidNamingRule: missing name/pattern, pattern that does not
                compile, unknown severity or applies-to value
        """
        if not name or not pattern:
            raise InvalidNamingRule("name and pattern are required")
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise InvalidNamingRule(f"Invalid regex pattern {pattern!r}: {e}") from e

        severity = (severity or Severity.WARNING.value).lower()
        if severity not in {s.value for s in Severity}:
            raise InvalidNamingRule(f"Unknown severity {severity!r}")

        return cls(
            id=str(id),
            name=name,
            pattern=pattern,
            applies_to=_normalize_applies_to(applies_to),
            severity=severity,
            is_active=bool(is_active),
            description=description,
            regex=regex,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NamingRule":
        return cls.create(
            id=data.get("id") or data.get("name"),
            name=data.get("name"),
            pattern=data.get("pattern"),
            applies_to=data.get("applies_to", APPLIES_TO_ALL),
            severity=data.get("severity"),
            is_active=data.get("is_active", True),
            description=data.get("description"),
        )

    def update(self, **changes) -> "NamingRule":
        """Return a re-validated copy with ``changes`` applied."""
        values = {
            "id": self.id, "name": self.name, "pattern": self.pattern,
            "applies_to": self.applies_to, "severity": self.severity,
            "is_active": self.is_active, "description": self.description,
        }
        values.update(changes)
        return NamingRule.create(**values)

    def applies(self, kind: EntityKind, scope: Optional[str] = None) -> bool:
        """Whether this rule covers an entity of ``kind`` (tags also by scope)."""
        for target in self.applies_to:
            if target == APPLIES_TO_ALL or target == kind.value:
                return True
            if kind is EntityKind.TAG and scope is not None:
                is_program = scope_program(scope) is not None
                if target == APPLIES_TO_CONTROLLER and not is_program:
                    return True
                if target == APPLIES_TO_PROGRAM and is_program:
                    return True
        return False

    def matches(self, name: str) -> bool:
        return self.regex.search(name) is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "pattern": self.pattern,
            "applies_to": list(self.applies_to),
            "severity": self.severity,
            "is_active": self.is_active,
        }


@dataclass
class NamingRuleSet:
    """A named, organization-owned collection of rules."""
    id: str
    name: str
    organization_id: Optional[str] = None
    is_default: bool = False
    rules: List[NamingRule] = field(default_factory=list)

    def active_rules(self) -> List[NamingRule]:
        return [rule for rule in self.rules if rule.is_active]

    def add_rule(self, rule: NamingRule) -> None:
        if any(existing.id == rule.id for existing in self.rules):
            raise InvalidNamingRule(f"Rule {rule.id!r} already exists in set {self.id!r}")
        self.rules.append(rule)

    def replace_rule(self, rule_id: str, **changes) -> NamingRule:
        """Update a rule in place; the new values are validated first."""
        for i, rule in enumerate(self.rules):
            if rule.id == rule_id:
                updated = rule.update(**changes)
                self.rules[i] = updated
                return updated
        raise InvalidNamingRule(f"No rule {rule_id!r} in set {self.id!r}")

    def remove_rule(self, rule_id: str) -> None:
        self.rules = [rule for rule in self.rules if rule.id != rule_id]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NamingRuleSet":
        rule_set = cls(
            id=str(data.get("id") or data.get("name")),
            name=data.get("name") or str(data.get("id")),
            organization_id=data.get("organization_id"),
            is_default=bool(data.get("is_default", False)),
        )
        for rule_data in data.get("rules") or []:
            rule_set.add_rule(NamingRule.from_dict(rule_data))
        return rule_set


def resolve_rule_set(rule_sets: Iterable[NamingRuleSet],
                     project_rule_set_id: Optional[str] = None,
                     organization_id: Optional[str] = None) -> Optional[NamingRuleSet]:
    """
    Pick the rule set that governs a project.

    The project's own assignment wins; otherwise the organization's default
    set; otherwise ``None`` (no validation).
    """
    candidates = [
        rs for rs in rule_sets
        if organization_id is None or rs.organization_id in (None, organization_id)
    ]
    if project_rule_set_id is not None:
        for rule_set in candidates:
            if rule_set.id == project_rule_set_id:
                return rule_set
        logger.warning(f"Assigned rule set {project_rule_set_id} not found; using default")
    for rule_set in candidates:
        if rule_set.is_default:
            return rule_set
    return None


class NamingRuleRegistry:
    """Rule sets plus per-project assignments."""

    def __init__(self, rule_sets: Iterable[NamingRuleSet] = ()):
        self.rule_sets: Dict[str, NamingRuleSet] = {}
        self.assignments: Dict[str, str] = {}
        for rule_set in rule_sets:
            self.add_rule_set(rule_set)

    def add_rule_set(self, rule_set: NamingRuleSet) -> None:
        if rule_set.is_default:
            for other in self.rule_sets.values():
                if other.organization_id == rule_set.organization_id and other.is_default:
                    other.is_default = False
        self.rule_sets[rule_set.id] = rule_set

    def assign(self, project_id: str, rule_set_id: Optional[str]) -> None:
        """Pin a project to a rule set; ``None`` reverts to the default."""
        if rule_set_id is None:
            self.assignments.pop(project_id, None)
            return
        if rule_set_id not in self.rule_sets:
            raise InvalidNamingRule(f"Unknown rule set {rule_set_id!r}")
        self.assignments[project_id] = rule_set_id

    def resolve(self, project_id: Optional[str] = None,
                organization_id: Optional[str] = None) -> Optional[NamingRuleSet]:
        return resolve_rule_set(
            self.rule_sets.values(),
            self.assignments.get(project_id) if project_id else None,
            organization_id,
        )


@dataclass(frozen=True)
class NamedEntity:
    kind: EntityKind
    name: str
    scope: Optional[str] = None


def collect_names(snapshots: Iterable[Snapshot]) -> List[NamedEntity]:
    """Every nameable entity in the snapshots (one entry per declaration)."""
    entities = []
    for snapshot in snapshots:
        entities.extend(NamedEntity(EntityKind.TAG, t.name, t.scope) for t in snapshot.tags)
        entities.extend(NamedEntity(EntityKind.ROUTINE, r.name, r.program_name)
                        for r in snapshot.routines)
        entities.extend(NamedEntity(EntityKind.PROGRAM, p)
                        for p in snapshot.document.program_names)
        entities.extend(NamedEntity(EntityKind.UDT, u.name) for u in snapshot.udts)
        entities.extend(NamedEntity(EntityKind.AOI, a.name) for a in snapshot.aois)
        entities.extend(NamedEntity(EntityKind.MODULE, m.name) for m in snapshot.modules)
        entities.extend(NamedEntity(EntityKind.TASK, t.name) for t in snapshot.tasks)
    return entities


@dataclass(frozen=True)
class Violation:
    rule_id: str
    rule_name: str
    severity: str
    entity_kind: EntityKind
    entity_name: str
    scope: Optional[str]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "severity": self.severity,
            "entityKind": self.entity_kind.value,
            "entityName": self.entity_name,
            "scope": self.scope,
            "message": self.message,
        }


@dataclass(frozen=True)
class ScopeConflict:
    """A tag name declared at controller scope and again inside programs."""
    tag_name: str
    programs: Tuple[str, ...]


def detect_scope_conflicts(tags: Iterable[Tag]) -> List[ScopeConflict]:
    controller_names = set()
    programs: Dict[str, set] = {}
    for tag in tags:
        if tag.is_controller_scoped:
            controller_names.add(tag.name)
        elif tag.program_name is not None:
            programs.setdefault(tag.name, set()).add(tag.program_name)
    conflicts = [
        ScopeConflict(tag_name=name, programs=tuple(sorted(programs[name])))
        for name in controller_names & programs.keys()
    ]
    return sorted(conflicts, key=lambda c: c.tag_name)


@dataclass
class ValidationResult:
    violations: List[Violation]
    scope_conflicts: List[ScopeConflict]
    names_checked: int
    rules_applied: int

    def count(self, severity: str) -> int:
        return sum(1 for v in self.violations if v.severity == severity)

    @property
    def penalized_violations(self) -> int:
        """Errors plus warnings; info findings are advisory."""
        return sum(1 for v in self.violations if v.severity in PENALIZED_SEVERITIES)

    def filtered(self, severity: Optional[str] = None) -> List[Violation]:
        if not severity or severity == "all":
            return list(self.violations)
        return [v for v in self.violations if v.severity == severity]

    def to_dict(self, severity: Optional[str] = None) -> Dict[str, Any]:
        return {
            "violations": [v.to_dict() for v in self.filtered(severity)],
            "scopeConflicts": [
                {"tagName": c.tag_name, "programs": list(c.programs)}
                for c in self.scope_conflicts
            ],
            "summary": {
                "errors": self.count(Severity.ERROR.value),
                "warnings": self.count(Severity.WARNING.value),
                "info": self.count(Severity.INFO.value),
                "total": len(self.violations),
                "scopeConflicts": len(self.scope_conflicts),
            },
            "namesChecked": self.names_checked,
            "rulesApplied": self.rules_applied,
        }


class NamingValidator:
    """Applies the active rules of a rule set to entity names."""

    def __init__(self, rules: Iterable[NamingRule]):
        self.rules = [rule for rule in rules if rule.is_active]

    @classmethod
    def for_rule_set(cls, rule_set: Optional[NamingRuleSet]) -> "NamingValidator":
        return cls(rule_set.rules if rule_set else [])

    def check(self, entity: NamedEntity) -> List[Violation]:
        violations = []
        for rule in self.rules:
            if not rule.applies(entity.kind, entity.scope):
                continue
            if not rule.matches(entity.name):
                violations.append(Violation(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    severity=rule.severity,
                    entity_kind=entity.kind,
                    entity_name=entity.name,
                    scope=entity.scope,
                    message=f'{entity.kind.label} "{entity.name}" does not match rule "{rule.name}"',
                ))
        return violations

    def validate(self, entities: Iterable[NamedEntity], tags: Iterable[Tag] = ()) -> ValidationResult:
        """
        Validate names and report violations sorted by kind, name and rule.

        Args:
            entities: Names to check
            tags: Tags inspected for controller/program scope conflicts
        """
        violations = []
        checked = 0
        for entity in entities:
            if not any(rule.applies(entity.kind, entity.scope) for rule in self.rules):
                continue
            checked += 1
            violations.extend(self.check(entity))

        violations.sort(key=lambda v: (v.entity_kind.value, v.entity_name, v.scope or "",
                                       v.rule_name, v.rule_id))
        return ValidationResult(
            violations=violations,
            scope_conflicts=detect_scope_conflicts(tags),
            names_checked=checked,
            rules_applied=len(self.rules),
        )

    def validate_snapshots(self, snapshots: Sequence[Snapshot]) -> ValidationResult:
        tags = [tag for snapshot in snapshots for tag in snapshot.tags]
        return self.validate(collect_names(snapshots), tags)


def rule_sets_from_data(data: Any) -> List[NamingRuleSet]:
    """Build rule sets from parsed YAML (a list, or a mapping with ``rule_sets``)."""
    if isinstance(data, dict):
        data = data.get("rule_sets") or data.get("naming", {}).get("rule_sets") or []
    if not isinstance(data, list):
        raise InvalidNamingRule("Rule set definitions must be a list")
    return [NamingRuleSet.from_dict(item) for item in data]


def load_rule_sets(path: Union[str, Path]) -> List[NamingRuleSet]:
    """Load naming rule sets from a YAML file."""
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or []
    rule_sets = rule_sets_from_data(data)
    logger.info(f"Loaded {len(rule_sets)} naming rule set(s) from {path}")
    return rule_sets
