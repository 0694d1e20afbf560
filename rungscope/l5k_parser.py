"""
L5K reader.

Parses the Studio 5000 ASCII export format (L5K) into the same normalized
``ParsedDocument`` produced for L5X:
- Controller metadata and the ``IE_VER`` format revision
- Controller- and program-scoped tag declarations
- DATATYPE (UDT) and ADD_ON_INSTRUCTION_DEFINITION blocks
- Programs, their routines and ladder rungs (``RC:``/``N:`` lines)
- I/O modules and tasks with their scheduled programs

Blocks are ``KEYWORD name (attributes) ... END_KEYWORD``; attribute values
may be quoted strings using ``$`` escapes.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import MalformedDocument, TruncatedInput, UnsupportedSchemaVersion
from .models import (
    AOI, AOILocalTag, AOIParameter, AOIRoutine, CONTROLLER_SCOPE, ExportMetadata,
    FileKind, IOModule, ParsedDocument, Routine, RoutineType, Rung, Section,
    Tag, Task, UDT, UDTMember, program_scope
)
from .utils import clean_logic, clean_text, parse_bool, parse_int, unique_in_order

logger = logging.getLogger(__name__)

SUPPORTED_IE_MAJOR = 2

ROUTINE_KEYWORDS = {
    "ROUTINE": RoutineType.RLL.value,
    "ST_ROUTINE": RoutineType.ST.value,
    "FBD_ROUTINE": RoutineType.FBD.value,
    "SFC_ROUTINE": RoutineType.SFC.value,
}

CONTROLLER_CHILDREN = {
    "TAG", "DATATYPE", "ADD_ON_INSTRUCTION_DEFINITION", "MODULE", "PROGRAM", "TASK"
}
PROGRAM_CHILDREN = {"TAG"} | set(ROUTINE_KEYWORDS)
AOI_CHILDREN = {"PARAMETERS", "LOCAL_TAGS"} | set(ROUTINE_KEYWORDS)

MODULE_FIELDS = {"CATALOGNUMBER", "PARENT", "PARENTMODULE", "SLOT"}

LEADING_WORD = re.compile(r'([A-Za-z_][A-Za-z0-9_]*)')
IE_VER_PATTERN = re.compile(r'^\s*IE_VER\s*:=\s*([^;\s]+)\s*;', re.MULTILINE)
ALIAS_PATTERN = re.compile(r"^(\S+)\s+OF\s+([^\s(]+)\s*(.*)$", re.DOTALL)
ARRAY_TYPE_PATTERN = re.compile(r'^([^\[\s]+)\s*\[([^\]]+)\]$')

STRING_ESCAPES = {"N": "\n", "L": "\n", "P": "\f", "R": "\r", "T": "\t",
                  "$": "$", '"': '"', "'": "'"}


@dataclass
class _Block:
    """One ``KEYWORD name (attrs) ... END_KEYWORD`` block."""
    keyword: str
    name: str
    attributes: Dict[str, str]
    body: List[str] = field(default_factory=list)


@dataclass
class _Declaration:
    """``name : TYPE[dims] (attrs) := value`` or ``name OF target (attrs)``."""
    name: str
    data_type: str
    attributes: Dict[str, str]
    dimensions: Optional[str] = None
    value: Optional[str] = None
    alias_for: Optional[str] = None


def _decode_string(text: str) -> str:
    """Decode an L5K quoted string body (``$N``, ``$"``, doubled quotes)."""
    result = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "$" and i + 1 < len(text):
            result.append(STRING_ESCAPES.get(text[i + 1].upper(), text[i + 1]))
            i += 2
            continue
        if ch == '"' and i + 1 < len(text) and text[i + 1] == '"':
            result.append('"')
            i += 2
            continue
        result.append(ch)
        i += 1
    return "".join(result)


def _scan(text: str) -> Iterable[Tuple[int, str, bool]]:
    """Yield ``(index, char, in_quote)`` treating ``$x`` escapes as opaque."""
    in_quote = False
    i = 0
    while i < len(text):
        ch = text[i]
        if in_quote:
            if ch == "$":
                i += 2
                continue
            if ch == '"':
                in_quote = False
                yield i, ch, True
                i += 1
                continue
            yield i, ch, True
        elif ch == '"':
            in_quote = True
            yield i, ch, True
        else:
            yield i, ch, False
        i += 1


def _paren_depth(text: str) -> int:
    depth = 0
    for _, ch, quoted in _scan(text):
        if quoted:
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
    return depth


def _paren_span(text: str) -> Optional[Tuple[int, int]]:
    """Locate the first top-level ``(...)`` group outside quotes."""
    depth = 0
    start = None
    for i, ch, quoted in _scan(text):
        if quoted:
            continue
        if ch == "(":
            if depth == 0:
                start = i
            depth += 1
        elif ch == ")" and depth > 0:
            depth -= 1
            if depth == 0:
                return start, i
    return None


def _split_top_level(text: str, separator: str) -> List[str]:
    """Split on ``separator`` outside quotes, parentheses and brackets."""
    parts = []
    depth = 0
    last = 0
    for i, ch, quoted in _scan(text):
        if quoted:
            continue
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(0, depth - 1)
        elif ch == separator and depth == 0:
            parts.append(text[last:i])
            last = i + 1
    parts.append(text[last:])
    return parts


def parse_attributes(attr_text: str) -> Dict[str, str]:
    """
    Parse ``Key := Value, Key := "quoted value"`` into a dict.

    Quoted values are decoded; unquoted values are trimmed. Key case is kept.
    """
    attributes = {}
    for pair in _split_top_level(attr_text, ","):
        if ":=" not in pair:
            continue
        key, value = pair.split(":=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = _decode_string(value[1:-1])
        attributes[key] = value
    return attributes


def _attr(attributes: Dict[str, str], key: str) -> Optional[str]:
    """Case-insensitive attribute lookup; blank values give ``None``."""
    wanted = key.upper()
    for name, value in attributes.items():
        if name.upper() == wanted:
            return clean_text(value)
    return None


def _statements(lines: Iterable[str]) -> List[str]:
    """Join body lines and split them into ``;``-terminated statements."""
    text = " ".join(line.strip() for line in lines if line.strip())
    return [s.strip() for s in _split_top_level(text, ";") if s.strip()]


def _leading_word(line: str) -> Optional[str]:
    match = LEADING_WORD.match(line)
    if not match:
        return None
    rest = line[match.end():match.end() + 1]
    if rest and not (rest.isspace() or rest in "(;"):
        return None
    return match.group(1)


class L5KParser:
    """Parses L5K text into a ``ParsedDocument``."""

    def __init__(self, content: str):
        """
        Initialize the L5K parser.

        Args:
            content: Decoded L5K text
        """
        self.content = content
        self.tags: List[Tag] = []
        self.udts: List[UDT] = []
        self.aois: List[AOI] = []
        self.routines: List[Routine] = []
        self.rungs: List[Rung] = []
        self.modules: List[IOModule] = []
        self.tasks: List[Task] = []
        self.sections = set()

    def parse(self) -> ParsedDocument:
        """Parse the L5K content; raises a ``ParseError`` subclass on failure."""
        if not self.content or not self.content.strip():
            raise TruncatedInput("Empty L5K document", kind="l5k")

        ie_version = self._check_version()

        controllers = self._blocks(self.content.splitlines(), {"CONTROLLER"})
        if not controllers:
            raise MalformedDocument("Invalid L5K file: missing CONTROLLER block", kind="l5k")
        controller = controllers[0]

        metadata = self._parse_controller(controller, ie_version)
        children = self._blocks(controller.body, CONTROLLER_CHILDREN)

        for block in children:
            if block.keyword == "TAG":
                self.sections.add(Section.TAGS)
                self._parse_tags(block, CONTROLLER_SCOPE)
            elif block.keyword == "DATATYPE":
                self.sections.add(Section.DATA_TYPES)
                self._parse_data_type(block)
            elif block.keyword == "ADD_ON_INSTRUCTION_DEFINITION":
                self.sections.add(Section.AOIS)
                self._parse_aoi(block)
            elif block.keyword == "MODULE":
                self.sections.add(Section.MODULES)
                self._parse_module(block)
            elif block.keyword == "PROGRAM":
                self.sections.add(Section.PROGRAMS)
                self._parse_program(block)
            elif block.keyword == "TASK":
                self.sections.add(Section.TASKS)
                self._parse_task(block)

        logger.debug(f"Parsed L5K: {len(self.tags)} tags, {len(self.udts)} UDTs, "
                     f"{len(self.aois)} AOIs, {len(self.routines)} routines, "
                     f"{len(self.rungs)} rungs, {len(self.modules)} modules, "
                     f"{len(self.tasks)} tasks")

        return ParsedDocument(
            kind=FileKind.L5K,
            metadata=metadata,
            tags=tuple(self.tags),
            udts=tuple(self.udts),
            aois=tuple(self.aois),
            routines=tuple(self.routines),
            rungs=tuple(self.rungs),
            modules=tuple(self.modules),
            tasks=tuple(self.tasks),
            sections_present=frozenset(self.sections),
        )

    def _check_version(self) -> Optional[str]:
        match = IE_VER_PATTERN.search(self.content)
        if not match:
            return None
        version = match.group(1)
        major = version.split(".")[0]
        if not major.isdigit() or int(major) != SUPPORTED_IE_MAJOR:
            raise UnsupportedSchemaVersion(
                f"Unsupported L5K IE_VER {version}", kind="l5k", version=version
            )
        return version

    def _blocks(self, lines: List[str], keywords: set) -> List[_Block]:
        """Collect the top-level blocks among ``lines`` opened by ``keywords``."""
        blocks = []
        i = 0
        while i < len(lines):
            keyword = _leading_word(lines[i].strip())
            if keyword not in keywords:
                i += 1
                continue

            header, i = self._read_header(lines, i)
            name, attributes = self._parse_header(header, keyword)
            end_keyword = f"END_{keyword}"
            body = []
            depth = 1
            i += 1
            while i < len(lines):
                word = _leading_word(lines[i].strip())
                if word == keyword:
                    depth += 1
                elif word == end_keyword:
                    depth -= 1
                    if depth == 0:
                        break
                body.append(lines[i])
                i += 1

            if depth > 0:
                error = TruncatedInput if keyword == "CONTROLLER" else MalformedDocument
                label = f"{keyword} {name}".strip()
                raise error(f"{label} is missing {end_keyword}", kind="l5k")

            blocks.append(_Block(keyword=keyword, name=name, attributes=attributes, body=body))
            i += 1
        return blocks

    def _read_header(self, lines: List[str], start: int) -> Tuple[str, int]:
        """Read a block header, which may continue over several lines."""
        text = lines[start].strip()
        end = start
        while _paren_depth(text) > 0 and end + 1 < len(lines):
            end += 1
            text += "\n" + lines[end].strip()
        return text, end

    def _parse_header(self, header: str, keyword: str) -> Tuple[str, Dict[str, str]]:
        rest = header[len(keyword):].lstrip()
        span = _paren_span(rest)
        if span is None:
            name_part = rest.rstrip(";")
            attributes = {}
        else:
            name_part = rest[:span[0]]
            attributes = parse_attributes(rest[span[0] + 1:span[1]])
        name = name_part.split()[0] if name_part.split() else ""
        return name, attributes

    def _parse_controller(self, controller: _Block, ie_version: Optional[str]) -> ExportMetadata:
        attrs = controller.attributes
        major = _attr(attrs, "Major")
        software_revision = None
        if major is not None:
            software_revision = f"{major}.{_attr(attrs, 'Minor') or '0'}"
        return ExportMetadata(
            project_name=controller.name or None,
            processor_type=_attr(attrs, "ProcessorType"),
            software_revision=software_revision,
            target_type="Controller",
            target_name=controller.name or None,
            export_date=_attr(attrs, "LastModifiedDate"),
            schema_revision=ie_version,
        )

    def _parse_declaration(self, statement: str) -> Optional[_Declaration]:
        """Parse one tag / parameter / local tag statement (without ``;``)."""
        alias_match = ALIAS_PATTERN.match(statement)
        if alias_match:
            name, target, rest = alias_match.groups()
            span = _paren_span(rest)
            attributes = parse_attributes(rest[span[0] + 1:span[1]]) if span else {}
            return _Declaration(name=name, data_type="Unknown", attributes=attributes,
                                alias_for=target)

        colon = -1
        for i, ch, quoted in _scan(statement):
            if not quoted and ch == ":" and statement[i + 1:i + 2] != "=":
                colon = i
                break
        if colon == -1:
            return None

        name = statement[:colon].strip()
        rest = statement[colon + 1:].strip()
        if not name:
            return None

        span = _paren_span(rest)
        assign = rest.find(":=")
        if span is not None and (assign == -1 or span[0] < assign):
            type_text = rest[:span[0]].strip()
            attributes = parse_attributes(rest[span[0] + 1:span[1]])
            after = rest[span[1] + 1:].strip()
        elif assign != -1:
            type_text = rest[:assign].strip()
            attributes = {}
            after = rest[assign:].strip()
        else:
            type_text = rest.strip()
            attributes = {}
            after = ""

        dimensions = None
        array_match = ARRAY_TYPE_PATTERN.match(type_text)
        if array_match:
            type_text = array_match.group(1)
            dimensions = " ".join(d.strip() for d in array_match.group(2).split(","))

        value = None
        if after.startswith(":="):
            value = clean_text(after[2:])

        return _Declaration(
            name=name,
            data_type=type_text or "Unknown",
            attributes=attributes,
            dimensions=dimensions or _attr(attributes, "Dimension"),
            value=value,
            alias_for=_attr(attributes, "AliasFor"),
        )

    def _declarations(self, lines: List[str]) -> List[_Declaration]:
        declarations = []
        for statement in _statements(lines):
            declaration = self._parse_declaration(statement)
            if declaration is None:
                logger.warning(f"Skipping unrecognized L5K declaration: {statement[:80]!r}")
                continue
            declarations.append(declaration)
        return declarations

    def _parse_tags(self, block: _Block, scope: str) -> None:
        """Parse the declarations of one TAG ... END_TAG block."""
        for decl in self._declarations(block.body):
            attrs = decl.attributes
            self.tags.append(Tag(
                name=decl.name,
                data_type=decl.data_type,
                scope=scope,
                description=_attr(attrs, "Description"),
                usage=_attr(attrs, "Usage"),
                value=decl.value,
                alias_for=decl.alias_for,
                radix=_attr(attrs, "Radix"),
                external_access=_attr(attrs, "ExternalAccess"),
                dimensions=decl.dimensions,
                tag_type="Alias" if decl.alias_for else "Base",
                constant=parse_bool(_attr(attrs, "Constant")),
            ))

    def _parse_data_type(self, block: _Block) -> None:
        members = []
        for statement in _statements(block.body):
            member = self._parse_member(statement)
            if member is not None:
                members.append(member)
        self.udts.append(UDT(
            name=block.name,
            description=_attr(block.attributes, "Description"),
            family_type=_attr(block.attributes, "FamilyType"),
            members=tuple(members),
        ))

    def _parse_member(self, statement: str) -> Optional[UDTMember]:
        """
        Parse a DATATYPE member statement.

        Accepts ``MEMBER Name (DataType := T, ...)``, ``T Name[dims] (...)``
        and ``BIT Name Host : bit (...)``. Hidden host members are skipped.
        """
        span = _paren_span(statement)
        head = statement[:span[0]] if span else statement
        attrs = parse_attributes(statement[span[0] + 1:span[1]]) if span else {}
        if parse_bool(_attr(attrs, "Hidden")):
            return None

        words = head.split()
        if len(words) < 2:
            logger.warning(f"Skipping unrecognized DATATYPE member: {statement[:80]!r}")
            return None

        if words[0].upper() == "MEMBER":
            name = words[1]
            data_type = _attr(attrs, "DataType") or "Unknown"
        else:
            data_type, name = words[0], words[1]

        dimension = parse_int(_attr(attrs, "Dimension"), "member dimension")
        array_match = ARRAY_TYPE_PATTERN.match(name)
        if array_match:
            name = array_match.group(1)
            dimension = parse_int(array_match.group(2).split(",")[0], "member dimension")

        if data_type.upper() == "BIT":
            data_type = "BOOL"

        return UDTMember(
            name=name,
            data_type=data_type,
            dimension=dimension,
            description=_attr(attrs, "Description"),
            radix=_attr(attrs, "Radix"),
            external_access=_attr(attrs, "ExternalAccess"),
        )

    def _parse_aoi(self, block: _Block) -> None:
        attrs = block.attributes
        parameters = []
        local_tags = []
        routines = []

        for child in self._blocks(block.body, AOI_CHILDREN):
            if child.keyword == "PARAMETERS":
                for decl in self._declarations(child.body):
                    usage = _attr(decl.attributes, "Usage") or "Input"
                    parameters.append(AOIParameter(
                        name=decl.name,
                        data_type=decl.data_type,
                        usage=usage,
                        required=parse_bool(_attr(decl.attributes, "Required")),
                        visible=parse_bool(_attr(decl.attributes, "Visible"), default=True),
                        description=_attr(decl.attributes, "Description"),
                        external_access=_attr(decl.attributes, "ExternalAccess"),
                        default_value=_attr(decl.attributes, "DefaultValue") or decl.value,
                    ))
            elif child.keyword == "LOCAL_TAGS":
                for decl in self._declarations(child.body):
                    local_tags.append(AOILocalTag(
                        name=decl.name,
                        data_type=decl.data_type,
                        radix=_attr(decl.attributes, "Radix"),
                        external_access=_attr(decl.attributes, "ExternalAccess"),
                        description=_attr(decl.attributes, "Description"),
                    ))
            else:
                routine_type = ROUTINE_KEYWORDS[child.keyword]
                rungs = self._parse_rungs(child, block.name)
                routines.append(AOIRoutine(
                    name=child.name,
                    type=routine_type,
                    description=_attr(child.attributes, "Description"),
                    rung_count=len(rungs) if routine_type == RoutineType.RLL.value else None,
                ))

        self.aois.append(AOI(
            name=block.name,
            revision=_attr(attrs, "Revision"),
            vendor=_attr(attrs, "Vendor"),
            description=_attr(attrs, "Description"),
            parameters=tuple(parameters),
            local_tags=tuple(local_tags),
            routines=tuple(routines),
            execute_prescan=parse_bool(_attr(attrs, "ExecutePrescan")),
            execute_postscan=parse_bool(_attr(attrs, "ExecutePostscan")),
            execute_enable_in_false=parse_bool(_attr(attrs, "ExecuteEnableInFalse")),
            created_date=_attr(attrs, "CreatedDate"),
            created_by=_attr(attrs, "CreatedBy"),
            edited_date=_attr(attrs, "EditedDate"),
            edited_by=_attr(attrs, "EditedBy"),
        ))

    def _parse_program(self, block: _Block) -> None:
        """Parse program-scoped tags and routines of one PROGRAM block."""
        program_name = block.name
        for child in self._blocks(block.body, PROGRAM_CHILDREN):
            if child.keyword == "TAG":
                self.sections.add(Section.TAGS)
                self._parse_tags(child, program_scope(program_name))
                continue

            routine_type = ROUTINE_KEYWORDS[child.keyword]
            rungs = self._parse_rungs(child, program_name)
            self.rungs.extend(rungs)
            self.routines.append(Routine(
                name=child.name,
                program_name=program_name,
                type=routine_type,
                description=_attr(child.attributes, "Description"),
                rung_count=len(rungs) if routine_type == RoutineType.RLL.value else None,
            ))

    def _parse_rungs(self, block: _Block, program_name: str) -> List[Rung]:
        """
        Split a ladder ROUTINE body into rungs.

        ``N:`` starts a rung that runs until the line ending with ``;``; an
        ``RC:`` comment attaches to the rung that follows it. Rungs are
        numbered in order of appearance.
        """
        if block.keyword != "ROUTINE":
            return []

        rungs = []
        comment = None
        current: Optional[List[str]] = None
        current_kind = None

        def flush():
            nonlocal comment
            text = "\n".join(current)
            if current_kind == "RC":
                pieces = re.findall(r'"((?:[^"$]|\$.|"")*)"', text)
                comment = clean_text("".join(_decode_string(p) for p in pieces))
            else:
                rungs.append(Rung(
                    program_name=program_name,
                    routine_name=block.name,
                    number=len(rungs),
                    logic_text=clean_logic(text),
                    comment=comment,
                ))
                comment = None

        for line in block.body:
            stripped = line.strip()
            if not stripped:
                continue
            if current is None:
                if stripped.startswith("N:"):
                    current_kind, current = "N", [stripped[2:].strip()]
                elif stripped.startswith("RC:"):
                    current_kind, current = "RC", [stripped[3:].strip()]
                else:
                    continue
            else:
                current.append(stripped)
            if len(_split_top_level(" ".join(current), ";")) > 1:
                flush()
                current = None

        if current is not None:
            logger.warning(f"Rung in routine {program_name}/{block.name} is missing its ';'")
            flush()
        return rungs

    def _parse_module(self, block: _Block) -> None:
        attrs = block.attributes
        configuration = {
            key: value for key, value in attrs.items()
            if key.upper() not in MODULE_FIELDS
        }
        self.modules.append(IOModule(
            name=block.name,
            catalog_number=_attr(attrs, "CatalogNumber"),
            parent_module=_attr(attrs, "Parent") or _attr(attrs, "ParentModule"),
            slot=parse_int(_attr(attrs, "Slot"), "slot"),
            connection_info=configuration or None,
        ))

    def _parse_task(self, block: _Block) -> None:
        """Parse a TASK block; its body lists the scheduled programs."""
        attrs = block.attributes
        scheduled = [statement.split()[0] for statement in _statements(block.body)]
        self.tasks.append(Task(
            name=block.name,
            type=(_attr(attrs, "Type") or "").upper(),
            priority=parse_int(_attr(attrs, "Priority"), "priority"),
            rate=parse_int(_attr(attrs, "Rate"), "rate"),
            watchdog=parse_int(_attr(attrs, "Watchdog"), "watchdog"),
            inhibit_task=parse_bool(_attr(attrs, "InhibitTask")),
            disable_update_outputs=parse_bool(_attr(attrs, "DisableUpdateOutputs")),
            scheduled_programs=tuple(unique_in_order(scheduled)),
            description=_attr(attrs, "Description"),
        ))


def decode_l5k(content: bytes) -> str:
    """Decode L5K bytes: UTF-8 (with or without BOM), else Latin-1."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("L5K content is not UTF-8, decoding as latin-1")
        return content.decode("latin-1")


def parse_l5k(content: bytes) -> ParsedDocument:
    """Parse L5K bytes into a ``ParsedDocument``."""
    return L5KParser(decode_l5k(content)).parse()
