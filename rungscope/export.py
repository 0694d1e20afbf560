"""
Export of parsed snapshots.

JSON (whole snapshot or selected components), CSV listings, a Markdown
project manual, and bounded-size plain-text summaries meant as context for
an external assistant.
"""

import csv
import io
import json
import logging
from collections import defaultdict
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .metrics import HealthReport
from .models import Snapshot

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_CHARS = 100_000
TRUNCATION_MARKER = "[... context truncated: {omitted} characters omitted ...]"


class ExportComponent(Enum):
    """Components that can be exported."""
    METADATA = "metadata"
    TAGS = "tags"
    UDTS = "udts"
    AOIS = "aois"
    ROUTINES = "routines"
    RUNGS = "rungs"
    MODULES = "modules"
    TASKS = "tasks"
    REFERENCES = "references"


def to_plain(value: Any) -> Any:
    """Convert dataclasses, enums and collections to JSON-ready values."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(to_plain(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    return value


def snapshot_to_dict(snapshot: Snapshot, include: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """
    Plain-dict view of a snapshot.

    Args:
        snapshot: Snapshot to export
        include: Component names to include; all components when omitted

    Returns:
        Dictionary keyed by component, plus identity fields
    """
    if include is None:
        components = list(ExportComponent)
    else:
        components = []
        for name in include:
            try:
                components.append(ExportComponent(name))
            except ValueError:
                logger.warning(f"Unknown export component: {name}")

    document = snapshot.document
    data = {
        "fileId": snapshot.file_id,
        "versionId": snapshot.version_id,
        "versionNumber": snapshot.version_number,
        "fileName": snapshot.file_name,
        "kind": snapshot.kind.value,
        "sectionsPresent": to_plain(document.sections_present),
    }
    sources = {
        ExportComponent.METADATA: document.metadata,
        ExportComponent.TAGS: document.tags,
        ExportComponent.UDTS: document.udts,
        ExportComponent.AOIS: document.aois,
        ExportComponent.ROUTINES: document.routines,
        ExportComponent.RUNGS: document.rungs,
        ExportComponent.MODULES: document.modules,
        ExportComponent.TASKS: document.tasks,
        ExportComponent.REFERENCES: snapshot.references,
    }
    for component in components:
        data[component.value] = to_plain(sources[component])
    return data


def export_json(snapshot: Snapshot, output_path: Optional[str] = None,
                include: Optional[List[str]] = None, pretty_print: bool = True) -> Dict[str, Any]:
    """
    Export a snapshot to JSON.

    Args:
        snapshot: Snapshot to export
        output_path: File to write; nothing is written when omitted
        include: Components to include (tags, rungs, references, ...)
        pretty_print: Whether to format JSON with indentation

    Returns:
        Dictionary containing the exported data
    """
    export_data = snapshot_to_dict(snapshot, include)
    export_data["exportTime"] = datetime.now().isoformat()

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            if pretty_print:
                json.dump(export_data, f, indent=2, default=str)
            else:
                json.dump(export_data, f, default=str)
        logger.info(f"Exported snapshot {snapshot.version_id} to {output_path}")

    return export_data


def _csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue()


def tags_csv(snapshots: Sequence[Snapshot]) -> str:
    """Tag definitions, sorted by name."""
    tags = sorted((t for s in snapshots for t in s.tags), key=lambda t: (t.name, t.scope))
    return _csv(
        ["Name", "Data Type", "Scope", "Description", "Usage", "Radix", "Alias For",
         "External Access", "Dimensions"],
        ([t.name, t.data_type, t.scope, t.description, t.usage, t.radix, t.alias_for,
          t.external_access, t.dimensions] for t in tags),
    )


def references_csv(snapshots: Sequence[Snapshot]) -> str:
    refs = sorted(
        (r for s in snapshots for r in s.references),
        key=lambda r: (r.tag_name, r.program_name, r.routine_name, r.rung_number),
    )
    return _csv(
        ["Tag Name", "Program", "Routine", "Rung", "Usage Type"],
        ([r.tag_name, r.program_name, r.routine_name, r.rung_number, r.usage_type.value]
         for r in refs),
    )


def routines_csv(snapshots: Sequence[Snapshot]) -> str:
    rows = []
    for snapshot in snapshots:
        for r in snapshot.routines:
            rows.append([r.name, r.program_name, r.type, r.description, r.rung_count,
                         snapshot.file_name])
    rows.sort(key=lambda row: (row[1], row[0]))
    return _csv(["Name", "Program", "Type", "Description", "Rung Count", "File"], rows)


def udts_csv(snapshots: Sequence[Snapshot]) -> str:
    """One row per UDT member; a UDT without members gets one row of its own."""
    rows = []
    for udt in sorted((u for s in snapshots for u in s.udts), key=lambda u: u.name):
        head = [udt.name, udt.family_type, udt.description]
        if not udt.members:
            rows.append(head + [None, None, None, None])
        for m in udt.members:
            rows.append(head + [m.name, m.data_type, m.dimension, m.description])
    return _csv(["UDT Name", "Family", "Description", "Member Name", "Member Type",
                 "Dimension", "Member Description"], rows)


def aois_csv(snapshots: Sequence[Snapshot]) -> str:
    """One row per AOI parameter; an AOI without parameters gets one row of its own."""
    rows = []
    for aoi in sorted((a for s in snapshots for a in s.aois), key=lambda a: a.name):
        head = [aoi.name, aoi.revision, aoi.vendor, aoi.description, aoi.created_by, aoi.edited_by]
        if not aoi.parameters:
            rows.append(head + [None] * 6)
        for p in aoi.parameters:
            rows.append(head + [p.name, p.data_type, p.usage, str(p.required).lower(),
                                str(p.visible).lower(), p.description])
    return _csv(["AOI Name", "Revision", "Vendor", "Description", "Created By", "Edited By",
                 "Parameter Name", "Parameter Type", "Parameter Usage", "Required", "Visible",
                 "Parameter Description"], rows)


def modules_csv(snapshots: Sequence[Snapshot]) -> str:
    rows = []
    for snapshot in snapshots:
        for m in snapshot.modules:
            info = json.dumps(m.connection_info, sort_keys=True) if m.connection_info else None
            rows.append([m.name, m.catalog_number, m.parent_module, m.slot,
                         snapshot.file_name, info])
    rows.sort(key=lambda row: row[0])
    return _csv(["Name", "Catalog Number", "Parent Module", "Slot", "File", "Connection Info"], rows)


CSV_EXPORTS = {
    "tags": tags_csv,
    "references": references_csv,
    "routines": routines_csv,
    "udts": udts_csv,
    "aois": aois_csv,
    "io": modules_csv,
}


def _cell(value: Any) -> str:
    if value is None or value == "":
        return "-"
    return str(value).replace("|", "\\|").replace("\n", " ")


def _table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> List[str]:
    lines = ["| " + " | ".join(headers) + " |", "|" + "---|" * len(headers)]
    lines.extend("| " + " | ".join(_cell(v) for v in row) + " |" for row in rows)
    return lines


def project_manual(snapshots: Sequence[Snapshot], project_name: str,
                   health: Optional[HealthReport] = None) -> str:
    """
    Render a Markdown project manual.

    Args:
        snapshots: Current snapshots of the project
        project_name: Title of the manual
        health: Health report for the quality section; omitted when ``None``

    Returns:
        Markdown text
    """
    tags = [t for s in snapshots for t in s.tags]
    routines = [r for s in snapshots for r in s.routines]
    rungs = [r for s in snapshots for r in s.rungs]
    udts = [u for s in snapshots for u in s.udts]
    aois = [a for s in snapshots for a in s.aois]
    modules = [m for s in snapshots for m in s.modules]
    tasks = [t for s in snapshots for t in s.tasks]
    references = [r for s in snapshots for r in s.references]
    metadata = snapshots[0].metadata if snapshots else None

    lines = [f"# {project_name}", ""]
    if metadata is not None:
        lines.append(f"- Processor: {_cell(metadata.processor_type)}")
        lines.append(f"- Software revision: {_cell(metadata.software_revision)}")
        lines.append(f"- Export date: {_cell(metadata.export_date)}")
    lines.append(f"- Generated: {datetime.now().isoformat(timespec='seconds')}")
    lines.append("")

    programs = sorted({r.program_name for r in routines})
    lines += ["## Executive Summary", ""]
    lines += _table(["Item", "Count"], [
        ["Programs", len(programs)], ["Routines", len(routines)], ["Tags", len(tags)],
        ["I/O modules", len(modules)], ["UDTs", len(udts)], ["AOIs", len(aois)],
        ["Tasks", len(tasks)], ["Rungs", len(rungs)],
    ])
    lines.append("")

    if tasks:
        lines += ["## System Architecture", ""]
        lines += _table(["Task", "Type", "Rate (ms)", "Priority", "Watchdog (ms)", "Programs"],
                        [[t.name, t.type, t.rate, t.priority, t.watchdog,
                          ", ".join(t.scheduled_programs)] for t in tasks])
        lines.append("")

    if modules:
        lines += ["## I/O Configuration", ""]
        lines += _table(["Module", "Catalog Number", "Parent", "Slot"],
                        [[m.name, m.catalog_number, m.parent_module, m.slot] for m in modules])
        lines.append("")

    if routines:
        lines += ["## Programs & Routines", ""]
        lines += _table(["Program", "Routine", "Type", "Rungs", "Description"],
                        [[r.program_name, r.name, r.type, r.rung_count, r.description]
                         for r in sorted(routines, key=lambda r: (r.program_name, r.name))])
        lines.append("")

    if tags:
        lines += ["## Tag Database", ""]
        lines += _table(["Name", "Data Type", "Scope", "Description"],
                        [[t.name, t.data_type, t.scope, t.description]
                         for t in sorted(tags, key=lambda t: (t.scope, t.name))])
        lines.append("")

    if udts:
        lines += ["## User-Defined Types", ""]
        for udt in udts:
            lines += [f"### {udt.name}", ""]
            if udt.description:
                lines += [udt.description, ""]
            lines += _table(["Member", "Data Type", "Dimension", "Description"],
                            [[m.name, m.data_type, m.dimension, m.description] for m in udt.members])
            lines.append("")

    if aois:
        lines += ["## Add-On Instructions", ""]
        for aoi in aois:
            lines += [f"### {aoi.name} (rev {_cell(aoi.revision)})", ""]
            if aoi.description:
                lines += [aoi.description, ""]
            lines += _table(["Parameter", "Data Type", "Usage", "Required", "Description"],
                            [[p.name, p.data_type, p.usage, "yes" if p.required else "no",
                              p.description] for p in aoi.parameters])
            lines.append("")

    if references:
        usage = defaultdict(lambda: [set(), set()])
        for ref in references:
            usage[ref.tag_name][0].add(f"{ref.program_name}/{ref.routine_name}")
            usage[ref.tag_name][1].add(ref.usage_type.value)
        lines += ["## Cross-Reference Summary", ""]
        lines += _table(["Tag", "Used In", "Usage"],
                        [[name, ", ".join(sorted(where)), "/".join(sorted(kinds))]
                         for name, (where, kinds) in sorted(usage.items())])
        lines.append("")

    if health is not None:
        scores = health.to_dict()
        lines += ["## Quality Metrics", ""]
        lines += _table(["Metric", "Score"], [
            ["Overall", scores["overall"]],
            ["Tag efficiency", scores["tagEfficiency"]],
            ["Documentation", scores["documentation"]],
            ["Tag usage", scores["tagUsage"]],
        ] + ([["Naming", scores["naming"]]] if "naming" in scores else []))
        if health.approximate:
            lines += ["", "_Scores are approximate: some exports are partial._"]
        lines.append("")

    return "\n".join(lines)


def truncate(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars`` at a line boundary and append a marker line."""
    if len(text) <= max_chars:
        return text
    marker = TRUNCATION_MARKER.format(omitted=len(text))
    budget = max_chars - len(marker) - 1
    if budget <= 0:
        return text[:max_chars]
    cut = text.rfind("\n", 0, budget + 1)
    if cut <= 0:
        cut = budget
    head = text[:cut]
    marker = TRUNCATION_MARKER.format(omitted=len(text) - len(head))
    return f"{head}\n{marker}"


def build_context_summary(snapshots: Sequence[Snapshot], project_name: str,
                          max_chars: int = DEFAULT_CONTEXT_CHARS) -> str:
    """
    Plain-text summary of a project for a language-model prompt.

    The output never exceeds ``max_chars``; when it would, the tail is
    dropped and a marker line states how much was omitted.
    """
    tags = [t for s in snapshots for t in s.tags]
    routines = [r for s in snapshots for r in s.routines]
    udts = [u for s in snapshots for u in s.udts]
    aois = [a for s in snapshots for a in s.aois]
    tasks = [t for s in snapshots for t in s.tasks]
    rungs = [r for s in snapshots for r in s.rungs]
    references = [r for s in snapshots for r in s.references]

    def described(name: str, details: str, description: Optional[str]) -> str:
        return f"- {name} ({details})" + (f": {description}" if description else "")

    lines = [f'PROJECT "{project_name}"', "", f"TAGS ({len(tags)}):"]
    lines += [described(t.name, f"{t.data_type}, scope: {t.scope}", t.description) for t in tags]
    lines += ["", f"ROUTINES ({len(routines)}):"]
    lines += [described(r.name, f"program: {r.program_name}, type: {r.type}, rungs: {r.rung_count}",
                        r.description) for r in routines]
    if udts:
        lines += ["", f"USER-DEFINED TYPES ({len(udts)}):"]
        lines += [f"- {u.name}" + (f": {u.description}" if u.description else "") for u in udts]
    if aois:
        lines += ["", f"ADD-ON INSTRUCTIONS ({len(aois)}):"]
        lines += [f"- {a.name}" + (f": {a.description}" if a.description else "") for a in aois]
    if tasks:
        lines += ["", f"TASKS ({len(tasks)}):"]
        for t in tasks:
            rate = f", rate: {t.rate}ms" if t.rate is not None else ""
            programs = ", ".join(t.scheduled_programs) or "none"
            lines.append(f"- {t.name} ({t.type}{rate}, priority: {t.priority}, programs: {programs})")

    lines += ["", f"LADDER LOGIC ({len(rungs)} rungs):"]
    by_routine = defaultdict(list)
    for rung in rungs:
        by_routine[f"{rung.program_name}/{rung.routine_name}"].append(rung)
    for key, routine_rungs in by_routine.items():
        lines.append(f"{key}:")
        for rung in routine_rungs:
            comment = f" [{rung.comment.strip()}]" if rung.has_comment else ""
            lines.append(f"  Rung {rung.number}{comment}: {rung.logic_text}")

    lines += ["", f"TAG CROSS-REFERENCES ({len(references)} references):"]
    usage = defaultdict(lambda: (set(), set()))
    for ref in references:
        usage[ref.tag_name][0].add(f"{ref.program_name}/{ref.routine_name}")
        usage[ref.tag_name][1].add(ref.usage_type.value)
    for name, (where, kinds) in sorted(usage.items()):
        lines.append(f"- {name}: used in {', '.join(sorted(where))} ({'/'.join(sorted(kinds))})")

    return truncate("\n".join(lines), max_chars)
