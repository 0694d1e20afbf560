"""
Normalized entity model for Studio 5000 exports.

Every record produced by a parse run is immutable. A parse produces a
``ParsedDocument``; reference extraction then wraps it, together with its
tag references, into an addressable ``Snapshot``. Records reference each
other by name only (e.g. ``IOModule.parent_module``), never by object, so
snapshots stay trivially serializable.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

CONTROLLER_SCOPE = "controller"
PROGRAM_SCOPE_PREFIX = "program:"


def program_scope(program_name: str) -> str:
    """Return the scope string for a program-scoped tag."""
    return f"{PROGRAM_SCOPE_PREFIX}{program_name}"


def scope_program(scope: str) -> Optional[str]:
    """Return the program name encoded in a scope string, if any."""
    if scope.startswith(PROGRAM_SCOPE_PREFIX):
        return scope[len(PROGRAM_SCOPE_PREFIX):]
    return None


class FileKind(Enum):
    """Supported export formats."""
    L5X = "l5x"
    L5K = "l5k"


class Section(Enum):
    """Top-level sections an export may or may not contain."""
    TAGS = "tags"
    DATA_TYPES = "data_types"
    AOIS = "aois"
    PROGRAMS = "programs"
    MODULES = "modules"
    TASKS = "tasks"


class RoutineType(Enum):
    """Routine languages."""
    RLL = "RLL"
    ST = "ST"
    FBD = "FBD"
    SFC = "SFC"


class TaskType(Enum):
    CONTINUOUS = "CONTINUOUS"
    PERIODIC = "PERIODIC"
    EVENT = "EVENT"


class ParameterUsage(Enum):
    INPUT = "Input"
    OUTPUT = "Output"
    IN_OUT = "InOut"


class UsageType(Enum):
    """How a rung touches an operand."""
    READ = "Read"
    WRITE = "Write"
    READ_WRITE = "Read/Write"


@dataclass(frozen=True)
class Tag:
    """A named, typed memory location."""
    name: str
    data_type: str
    scope: str = CONTROLLER_SCOPE
    description: Optional[str] = None
    usage: Optional[str] = None
    value: Optional[str] = None
    alias_for: Optional[str] = None
    radix: Optional[str] = None
    external_access: Optional[str] = None
    dimensions: Optional[str] = None
    tag_type: Optional[str] = None
    constant: bool = False

    @property
    def is_controller_scoped(self) -> bool:
        return self.scope == CONTROLLER_SCOPE

    @property
    def program_name(self) -> Optional[str]:
        return scope_program(self.scope)


@dataclass(frozen=True)
class UDTMember:
    name: str
    data_type: str
    dimension: Optional[int] = None
    description: Optional[str] = None
    radix: Optional[str] = None
    external_access: Optional[str] = None


@dataclass(frozen=True)
class UDT:
    """User-defined type. Member order is significant."""
    name: str
    description: Optional[str] = None
    family_type: Optional[str] = None
    members: Tuple[UDTMember, ...] = ()


@dataclass(frozen=True)
class AOIParameter:
    name: str
    data_type: str
    usage: str = ParameterUsage.INPUT.value
    required: bool = False
    visible: bool = True
    description: Optional[str] = None
    external_access: Optional[str] = None
    default_value: Optional[str] = None


@dataclass(frozen=True)
class AOILocalTag:
    name: str
    data_type: str
    radix: Optional[str] = None
    external_access: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class AOIRoutine:
    name: str
    type: str
    description: Optional[str] = None
    rung_count: Optional[int] = None


@dataclass(frozen=True)
class AOI:
    """Add-on instruction definition. Parameter order is significant."""
    name: str
    revision: Optional[str] = None
    vendor: Optional[str] = None
    description: Optional[str] = None
    parameters: Tuple[AOIParameter, ...] = ()
    local_tags: Tuple[AOILocalTag, ...] = ()
    routines: Tuple[AOIRoutine, ...] = ()
    execute_prescan: bool = False
    execute_postscan: bool = False
    execute_enable_in_false: bool = False
    created_date: Optional[str] = None
    created_by: Optional[str] = None
    edited_date: Optional[str] = None
    edited_by: Optional[str] = None

    def call_parameters(self) -> Tuple[AOIParameter, ...]:
        """
        Parameters that appear as operands when the AOI is called from ladder.

        The backing instance tag comes first and is not listed here; after it,
        every required parameter follows in declaration order. InOut
        parameters are always required.
        """
        return tuple(
            p for p in self.parameters
            if p.required or p.usage == ParameterUsage.IN_OUT.value
        )


@dataclass(frozen=True)
class Routine:
    name: str
    program_name: str
    type: str
    description: Optional[str] = None
    rung_count: Optional[int] = None


@dataclass(frozen=True)
class Rung:
    """One ladder rung; the unit consumed by reference extraction."""
    program_name: str
    routine_name: str
    number: int
    logic_text: str
    comment: Optional[str] = None

    @property
    def has_comment(self) -> bool:
        return bool(self.comment and self.comment.strip())


@dataclass(frozen=True)
class IOModule:
    name: str
    catalog_number: Optional[str] = None
    parent_module: Optional[str] = None
    slot: Optional[int] = None
    connection_info: Optional[Dict[str, Any]] = field(default=None, hash=False, compare=True)


@dataclass(frozen=True)
class Task:
    name: str
    type: str
    priority: Optional[int] = None
    rate: Optional[int] = None
    watchdog: Optional[int] = None
    inhibit_task: bool = False
    disable_update_outputs: bool = False
    scheduled_programs: Tuple[str, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class TagReference:
    """A static occurrence of an operand inside a rung."""
    tag_name: str
    program_name: str
    routine_name: str
    rung_number: int
    usage_type: UsageType
    instruction: str = ""
    file_id: Optional[str] = None
    version_id: Optional[str] = None


@dataclass(frozen=True)
class ExportMetadata:
    project_name: Optional[str] = None
    processor_type: Optional[str] = None
    software_revision: Optional[str] = None
    target_type: Optional[str] = None
    target_name: Optional[str] = None
    export_date: Optional[str] = None
    schema_revision: Optional[str] = None

    @property
    def is_partial_export(self) -> bool:
        """Program- and routine-level exports are partial; anything else is not."""
        return (self.target_type or "").lower() in ("program", "routine")


@dataclass(frozen=True)
class ParsedDocument:
    """The result of one successful parse run, before reference extraction."""
    kind: FileKind
    metadata: ExportMetadata = field(default_factory=ExportMetadata)
    tags: Tuple[Tag, ...] = ()
    udts: Tuple[UDT, ...] = ()
    aois: Tuple[AOI, ...] = ()
    routines: Tuple[Routine, ...] = ()
    rungs: Tuple[Rung, ...] = ()
    modules: Tuple[IOModule, ...] = ()
    tasks: Tuple[Task, ...] = ()
    sections_present: FrozenSet[Section] = frozenset()

    def has_section(self, section: Section) -> bool:
        return section in self.sections_present

    @property
    def program_names(self) -> Tuple[str, ...]:
        seen = {}
        for routine in self.routines:
            seen.setdefault(routine.program_name, None)
        for tag in self.tags:
            if tag.program_name is not None:
                seen.setdefault(tag.program_name, None)
        return tuple(seen)


@dataclass(frozen=True)
class Snapshot:
    """
    An immutable, addressable parse result for one file version.

    Created atomically by the store once parsing and reference extraction
    have both finished; never mutated afterwards.
    """
    file_id: str
    version_id: str
    document: ParsedDocument
    references: Tuple[TagReference, ...] = ()
    version_number: int = 1
    file_name: Optional[str] = None
    project_id: Optional[str] = None

    @property
    def kind(self) -> FileKind:
        return self.document.kind

    @property
    def metadata(self) -> ExportMetadata:
        return self.document.metadata

    @property
    def tags(self) -> Tuple[Tag, ...]:
        return self.document.tags

    @property
    def udts(self) -> Tuple[UDT, ...]:
        return self.document.udts

    @property
    def aois(self) -> Tuple[AOI, ...]:
        return self.document.aois

    @property
    def routines(self) -> Tuple[Routine, ...]:
        return self.document.routines

    @property
    def rungs(self) -> Tuple[Rung, ...]:
        return self.document.rungs

    @property
    def modules(self) -> Tuple[IOModule, ...]:
        return self.document.modules

    @property
    def tasks(self) -> Tuple[Task, ...]:
        return self.document.tasks

    def has_section(self, section: Section) -> bool:
        return self.document.has_section(section)


@dataclass(frozen=True)
class Computed:
    """A metric that could be computed."""
    value: float


@dataclass(frozen=True)
class NotApplicable:
    """A metric with no data behind it (e.g. a partial export lacking the section)."""
    reason: str


MetricResult = Union[Computed, NotApplicable]
