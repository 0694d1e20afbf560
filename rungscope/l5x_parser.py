"""
L5X reader.

Walks a Studio 5000 XML export (``RSLogix5000Content``) and extracts
tags, UDTs, add-on instructions, programs with their routines and rungs,
I/O modules and tasks. Sections missing from the export (partial program
or routine exports, tags-only exports, ...) produce empty collections and
are left out of ``sections_present``.
"""

import logging
from typing import List, Optional, Tuple
import xml.etree.ElementTree as ET
from xml.parsers import expat

from .errors import MalformedDocument, TruncatedInput, UnsupportedSchemaVersion
from .models import (
    AOI, AOILocalTag, AOIParameter, AOIRoutine, CONTROLLER_SCOPE, ExportMetadata,
    FileKind, IOModule, ParsedDocument, Routine, RoutineType, Rung, Section,
    Tag, Task, UDT, UDTMember, program_scope
)
from .utils import (
    clean_logic, clean_text, element_to_dict, parse_bool, parse_int, unique_in_order
)

logger = logging.getLogger(__name__)

ROOT_ELEMENT = "RSLogix5000Content"
SUPPORTED_SCHEMA_MAJOR = 1

# expat errors raised when the input simply stops too early
TRUNCATION_ERROR_CODES = {
    expat.errors.codes[expat.errors.XML_ERROR_NO_ELEMENTS],
    expat.errors.codes[expat.errors.XML_ERROR_UNCLOSED_TOKEN],
    expat.errors.codes[expat.errors.XML_ERROR_UNCLOSED_CDATA_SECTION],
    expat.errors.codes[expat.errors.XML_ERROR_PARTIAL_CHAR],
}


def _description(elem: ET.Element, child: str = "Description") -> Optional[str]:
    """Read a (possibly localized) description or comment child."""
    node = elem.find(child)
    if node is None:
        return None
    text = clean_text(node.text)
    if text is None:
        for localized in node:
            text = clean_text(localized.text)
            if text is not None:
                break
    return text


def _l5k_data(elem: ET.Element, child: str) -> Optional[str]:
    for data in elem.findall(child):
        if data.get("Format") == "L5K":
            return clean_text(data.text)
    return None


class L5XParser:
    """Parses L5X content into a ``ParsedDocument``."""

    def __init__(self, content: bytes):
        """
        Initialize the L5X parser.

        Args:
            content: Raw bytes of the export
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
        """Parse the content; raises a ``ParseError`` subclass on failure."""
        root = self._load_root()
        metadata = self._check_root(root)

        controller = root.find("Controller")
        if controller is None:
            raise MalformedDocument("Invalid L5X file: missing Controller", kind="l5x")

        metadata = self._controller_metadata(controller, metadata)

        self._parse_controller_tags(controller)
        self._parse_data_types(controller)
        self._parse_aois(controller)
        self._parse_programs(controller)
        self._parse_modules(controller)
        self._parse_tasks(controller)

        logger.debug(f"Parsed L5X: {len(self.tags)} tags, {len(self.udts)} UDTs, "
                     f"{len(self.aois)} AOIs, {len(self.routines)} routines, "
                     f"{len(self.rungs)} rungs, {len(self.modules)} modules, "
                     f"{len(self.tasks)} tasks")

        return ParsedDocument(
            kind=FileKind.L5X,
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

    def _load_root(self) -> ET.Element:
        if not self.content or not self.content.strip():
            raise TruncatedInput("Empty L5X document", kind="l5x")
        try:
            return ET.fromstring(self.content)
        except ET.ParseError as e:
            if getattr(e, "code", None) in TRUNCATION_ERROR_CODES:
                raise TruncatedInput(f"L5X document ends unexpectedly: {e}", kind="l5x") from e
            raise MalformedDocument(f"L5X document is not well-formed XML: {e}", kind="l5x") from e

    def _check_root(self, root: ET.Element) -> ExportMetadata:
        if root.tag != ROOT_ELEMENT:
            raise MalformedDocument(
                f"Invalid L5X file: root element is <{root.tag}>, expected <{ROOT_ELEMENT}>",
                kind="l5x",
            )

        schema_revision = root.get("SchemaRevision")
        if schema_revision is not None:
            major = schema_revision.strip().split(".")[0]
            if not major.isdigit() or int(major) != SUPPORTED_SCHEMA_MAJOR:
                raise UnsupportedSchemaVersion(
                    f"Unsupported L5X SchemaRevision {schema_revision}",
                    kind="l5x",
                    version=schema_revision,
                )

        return ExportMetadata(
            target_type=root.get("TargetType"),
            target_name=root.get("TargetName"),
            export_date=root.get("ExportDate"),
            software_revision=root.get("SoftwareRevision"),
            schema_revision=schema_revision,
        )

    def _controller_metadata(self, controller: ET.Element, metadata: ExportMetadata) -> ExportMetadata:
        software_revision = metadata.software_revision
        if software_revision is None and controller.get("MajorRev"):
            software_revision = f"{controller.get('MajorRev')}.{controller.get('MinorRev', '0')}"
        return ExportMetadata(
            project_name=controller.get("Name"),
            processor_type=controller.get("ProcessorType"),
            software_revision=software_revision,
            target_type=metadata.target_type,
            target_name=metadata.target_name,
            export_date=metadata.export_date,
            schema_revision=metadata.schema_revision,
        )

    def _parse_controller_tags(self, controller: ET.Element) -> None:
        tags_elem = controller.find("Tags")
        if tags_elem is None:
            return
        self.sections.add(Section.TAGS)
        for tag_elem in tags_elem.findall("Tag"):
            self.tags.append(self._parse_tag(tag_elem, CONTROLLER_SCOPE))

    def _parse_tag(self, elem: ET.Element, scope: str) -> Tag:
        return Tag(
            name=(elem.get("Name") or "").strip(),
            data_type=elem.get("DataType") or "Unknown",
            scope=scope,
            description=_description(elem),
            usage=elem.get("Usage"),
            value=_l5k_data(elem, "Data"),
            alias_for=elem.get("AliasFor"),
            radix=elem.get("Radix"),
            external_access=elem.get("ExternalAccess"),
            dimensions=elem.get("Dimensions"),
            tag_type=elem.get("TagType"),
            constant=parse_bool(elem.get("Constant")),
        )

    def _parse_data_types(self, controller: ET.Element) -> None:
        types_elem = controller.find("DataTypes")
        if types_elem is None:
            return
        self.sections.add(Section.DATA_TYPES)
        for dt_elem in types_elem.findall("DataType"):
            members = []
            members_elem = dt_elem.find("Members")
            if members_elem is not None:
                for member in members_elem.findall("Member"):
                    if parse_bool(member.get("Hidden")):
                        continue
                    data_type = member.get("DataType") or "Unknown"
                    if data_type == "BIT":
                        data_type = "BOOL"
                    members.append(UDTMember(
                        name=(member.get("Name") or "").strip(),
                        data_type=data_type,
                        dimension=parse_int(member.get("Dimension"), "member dimension"),
                        description=_description(member),
                        radix=member.get("Radix"),
                        external_access=member.get("ExternalAccess"),
                    ))
            self.udts.append(UDT(
                name=(dt_elem.get("Name") or "").strip(),
                description=_description(dt_elem),
                family_type=dt_elem.get("Family"),
                members=tuple(members),
            ))

    def _parse_aois(self, controller: ET.Element) -> None:
        aois_elem = controller.find("AddOnInstructionDefinitions")
        if aois_elem is None:
            return
        self.sections.add(Section.AOIS)
        for aoi_elem in aois_elem.findall("AddOnInstructionDefinition"):
            self.aois.append(self._parse_aoi(aoi_elem))

    def _parse_aoi(self, elem: ET.Element) -> AOI:
        parameters = []
        params_elem = elem.find("Parameters")
        if params_elem is not None:
            for param in params_elem.findall("Parameter"):
                parameters.append(AOIParameter(
                    name=(param.get("Name") or "").strip(),
                    data_type=param.get("DataType") or "Unknown",
                    usage=param.get("Usage") or "Input",
                    required=parse_bool(param.get("Required")),
                    visible=parse_bool(param.get("Visible"), default=True),
                    description=_description(param),
                    external_access=param.get("ExternalAccess"),
                    default_value=_l5k_data(param, "DefaultData"),
                ))

        local_tags = []
        locals_elem = elem.find("LocalTags")
        if locals_elem is not None:
            for local in locals_elem.findall("LocalTag"):
                local_tags.append(AOILocalTag(
                    name=(local.get("Name") or "").strip(),
                    data_type=local.get("DataType") or "Unknown",
                    radix=local.get("Radix"),
                    external_access=local.get("ExternalAccess"),
                    description=_description(local),
                ))

        routines = []
        routines_elem = elem.find("Routines")
        if routines_elem is not None:
            for routine in routines_elem.findall("Routine"):
                rung_elems = self._rung_elements(routine)
                routine_type = routine.get("Type") or "Unknown"
                routines.append(AOIRoutine(
                    name=(routine.get("Name") or "").strip(),
                    type=routine_type,
                    description=_description(routine),
                    rung_count=len(rung_elems) if routine_type == RoutineType.RLL.value else None,
                ))

        return AOI(
            name=(elem.get("Name") or "").strip(),
            revision=elem.get("Revision"),
            vendor=elem.get("Vendor"),
            description=_description(elem),
            parameters=tuple(parameters),
            local_tags=tuple(local_tags),
            routines=tuple(routines),
            execute_prescan=parse_bool(elem.get("ExecutePrescan")),
            execute_postscan=parse_bool(elem.get("ExecutePostscan")),
            execute_enable_in_false=parse_bool(elem.get("ExecuteEnableInFalse")),
            created_date=elem.get("CreatedDate"),
            created_by=elem.get("CreatedBy"),
            edited_date=elem.get("EditedDate"),
            edited_by=elem.get("EditedBy"),
        )

    def _parse_programs(self, controller: ET.Element) -> None:
        programs_elem = controller.find("Programs")
        if programs_elem is None:
            return
        self.sections.add(Section.PROGRAMS)
        for program in programs_elem.findall("Program"):
            program_name = (program.get("Name") or "Unknown").strip()

            tags_elem = program.find("Tags")
            if tags_elem is not None:
                self.sections.add(Section.TAGS)
                for tag_elem in tags_elem.findall("Tag"):
                    self.tags.append(self._parse_tag(tag_elem, program_scope(program_name)))

            routines_elem = program.find("Routines")
            if routines_elem is None:
                continue
            for routine in routines_elem.findall("Routine"):
                self._parse_routine(routine, program_name)

    def _rung_elements(self, routine: ET.Element) -> List[ET.Element]:
        content = routine.find("RLLContent")
        if content is None:
            return []
        return content.findall("Rung")

    def _parse_routine(self, routine: ET.Element, program_name: str) -> None:
        routine_name = (routine.get("Name") or "").strip()
        routine_type = routine.get("Type") or "Unknown"
        rung_elems = self._rung_elements(routine)

        for index, rung_elem in enumerate(rung_elems):
            number = parse_int(rung_elem.get("Number"), "rung number")
            self.rungs.append(Rung(
                program_name=program_name,
                routine_name=routine_name,
                number=index if number is None else number,
                logic_text=clean_logic(rung_elem.findtext("Text")),
                comment=_description(rung_elem, "Comment"),
            ))

        self.routines.append(Routine(
            name=routine_name,
            program_name=program_name,
            type=routine_type,
            description=_description(routine),
            rung_count=len(rung_elems) if routine_type == RoutineType.RLL.value else None,
        ))

    def _parse_modules(self, controller: ET.Element) -> None:
        modules_elem = controller.find("Modules")
        if modules_elem is None:
            return
        self.sections.add(Section.MODULES)
        for module in modules_elem.findall("Module"):
            slot = parse_int(module.get("Slot"), "slot")
            ports, upstream_slot = self._module_ports(module)
            if slot is None:
                slot = upstream_slot

            connection_info = {}
            if ports:
                connection_info["ports"] = ports
            communications = module.find("Communications")
            if communications is not None:
                connection_info["communications"] = element_to_dict(communications)

            self.modules.append(IOModule(
                name=(module.get("Name") or "").strip(),
                catalog_number=module.get("CatalogNumber"),
                parent_module=module.get("ParentModule"),
                slot=slot,
                connection_info=connection_info or None,
            ))

    def _module_ports(self, module: ET.Element) -> Tuple[list, Optional[int]]:
        ports = []
        upstream_slot = None
        ports_elem = module.find("Ports")
        if ports_elem is None:
            return ports, upstream_slot
        for port in ports_elem.findall("Port"):
            ports.append(dict(port.attrib))
            if parse_bool(port.get("Upstream")) and upstream_slot is None:
                address = (port.get("Address") or "").strip()
                if address.isdigit():
                    upstream_slot = int(address)
        return ports, upstream_slot

    def _parse_tasks(self, controller: ET.Element) -> None:
        tasks_elem = controller.find("Tasks")
        if tasks_elem is None:
            return
        self.sections.add(Section.TASKS)
        for task in tasks_elem.findall("Task"):
            scheduled = []
            scheduled_elem = task.find("ScheduledPrograms")
            if scheduled_elem is not None:
                scheduled = [
                    (sp.get("Name") or "").strip()
                    for sp in scheduled_elem.findall("ScheduledProgram")
                ]
            self.tasks.append(Task(
                name=(task.get("Name") or "").strip(),
                type=(task.get("Type") or "").strip().upper(),
                priority=parse_int(task.get("Priority"), "priority"),
                rate=parse_int(task.get("Rate"), "rate"),
                watchdog=parse_int(task.get("Watchdog"), "watchdog"),
                inhibit_task=parse_bool(task.get("InhibitTask")),
                disable_update_outputs=parse_bool(task.get("DisableUpdateOutputs")),
                scheduled_programs=tuple(unique_in_order(scheduled)),
                description=_description(task),
            ))


def parse_l5x(content: bytes) -> ParsedDocument:
    """Parse L5X bytes into a ``ParsedDocument``."""
    return L5XParser(content).parse()
