"""
Static tag-reference extraction from ladder rung text.

A rung such as ``XIC(Start)[XIO(Stop),TON(T1,?,?)]OTE(Motor.Run)`` is split
into instruction calls; every operand that names a tag becomes one
``TagReference`` classified through the instruction table. References are
not de-duplicated: two uses of a tag in one rung are two references.
"""

import re
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from .instructions import DEFAULT_TABLE, InstructionTable, OperandRole
from .models import AOI, ParsedDocument, Rung, TagReference, UsageType

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')
NUMBER_LITERAL = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')
RADIX_LITERAL = re.compile(r'^[+-]?\d+#[0-9A-Fa-f_]+$')
PLACEHOLDER = re.compile(r'^\?+$')
STRING_LITERAL = re.compile(r"^('.*'|\".*\")$", re.DOTALL)

# one level of brackets is enough inside expressions
EXPRESSION_PATH = re.compile(
    r'(?<![\w#.\\])\\?[A-Za-z_][A-Za-z0-9_]*'
    r'(?::[A-Za-z0-9_]+)*'
    r'(?:\.[A-Za-z0-9_]+|\[[^\[\]]*\])*'
)
SEGMENT = re.compile(r"[A-Za-z0-9_]+")
QUOTED = re.compile(r"'[^']*'|\"[^\"]*\"")
RADIX_IN_EXPRESSION = re.compile(r'\b\d+#[0-9A-Fa-f_]+')

EXPRESSION_KEYWORDS = {
    "ABS", "ACS", "ACOS", "AND", "ASN", "ASIN", "ATN", "ATAN", "COS", "DEG",
    "FRD", "LN", "LOG", "MOD", "NOT", "OR", "RAD", "SIN", "SQR", "SQRT",
    "TAN", "TOD", "TRN", "TRUNC", "XOR",
}


@dataclass(frozen=True)
class InstructionCall:
    """One ``MNEMONIC(op, op, ...)`` occurrence inside a rung."""
    mnemonic: str
    operands: Tuple[str, ...]


def _closing_paren(text: str, start: int) -> int:
    """Index of the ``)`` matching ``text[start] == '('``, or -1."""
    depth = 0
    quote = None
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in "'\"":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
    return -1


def split_operands(text: str) -> List[str]:
    """Split an operand list at top-level commas (``Tag[1,2]`` stays whole)."""
    operands = []
    depth = 0
    quote = None
    last = 0
    for i, ch in enumerate(text):
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in "'\"":
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif ch == "," and depth == 0:
            operands.append(text[last:i].strip())
            last = i + 1
    operands.append(text[last:].strip())
    if operands == [""]:
        return []
    return operands


def tokenize_rung(text: str) -> List[InstructionCall]:
    """
    Split rung logic text into instruction calls.

    Branch delimiters (``[``, ``]``, ``,``) between instructions are skipped.
    A call whose closing parenthesis is missing consumes the rest of the rung.
    """
    calls = []
    i = 0
    while i < len(text):
        match = IDENTIFIER.match(text, i)
        if not match:
            i += 1
            continue
        j = match.end()
        while j < len(text) and text[j].isspace():
            j += 1
        if j >= len(text) or text[j] != "(":
            i = match.end()
            continue
        close = _closing_paren(text, j)
        if close == -1:
            logger.debug(f"Unbalanced operand list after {match.group(0)} in {text!r}")
            close = len(text)
        calls.append(InstructionCall(
            mnemonic=match.group(0),
            operands=tuple(split_operands(text[j + 1:close])),
        ))
        i = close + 1
    return calls


def is_literal(operand: str) -> bool:
    return bool(
        NUMBER_LITERAL.match(operand)
        or RADIX_LITERAL.match(operand)
        or PLACEHOLDER.match(operand)
        or STRING_LITERAL.match(operand)
    )


def _tag_path_end(text: str) -> int:
    """
    Length of the tag path at the start of ``text``.

    A path is an identifier (optionally ``\\``-prefixed), ``:`` module
    segments, then any mix of ``.member``/``.bit`` and ``[index]`` parts.
    """
    i = 1 if text.startswith("\\") else 0
    match = IDENTIFIER.match(text, i)
    if not match:
        return 0
    i = match.end()
    while i < len(text) and text[i] == ":":
        seg = SEGMENT.match(text, i + 1)
        if not seg:
            return i
        i = seg.end()
    while i < len(text):
        if text[i] == ".":
            seg = SEGMENT.match(text, i + 1)
            if not seg:
                return i
            i = seg.end()
        elif text[i] == "[":
            depth = 0
            for k in range(i, len(text)):
                if text[k] == "[":
                    depth += 1
                elif text[k] == "]":
                    depth -= 1
                    if depth == 0:
                        break
            else:
                return i
            i = k + 1
        else:
            break
    return i


def is_tag_path(operand: str) -> bool:
    return bool(operand) and _tag_path_end(operand) == len(operand)


def _bracket_contents(path: str) -> List[str]:
    """Top-level ``[...]`` contents of a tag path."""
    contents = []
    depth = 0
    start = 0
    for i, ch in enumerate(path):
        if ch == "[":
            if depth == 0:
                start = i + 1
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                contents.append(path[start:i])
    return contents


def expression_tags(expression: str) -> List[str]:
    """Tag paths mentioned in an expression, in order of appearance."""
    cleaned = QUOTED.sub(" ", expression)
    cleaned = RADIX_IN_EXPRESSION.sub(" ", cleaned)
    tags = []
    for match in EXPRESSION_PATH.finditer(cleaned):
        name = match.group(0)
        if name.upper() in EXPRESSION_KEYWORDS:
            continue
        tags.append(name)
    return tags


def index_tags(path: str) -> List[str]:
    """Tags used as array indices inside a path (``Data[Idx]`` gives ``Idx``)."""
    tags = []
    for content in _bracket_contents(path):
        for part in split_operands(content):
            if not part or is_literal(part):
                continue
            for tag in expression_tags(part):
                tags.append(tag)
                tags.extend(index_tags(tag))
    return tags


def classify_operand(operand: str, role: OperandRole) -> List[Tuple[str, UsageType]]:
    """
    Resolve one operand into ``(tag_name, usage)`` pairs.

    Literals, placeholders and name-only positions give nothing; a plain tag
    path gives the path itself with the position's usage, plus a Read for
    each index tag; anything else is treated as an expression whose tags
    are all read.
    """
    operand = operand.strip()
    if not operand or role is OperandRole.NAME or is_literal(operand):
        return []

    if role is not OperandRole.EXPRESSION and is_tag_path(operand):
        refs = [(operand, role.usage_type)]
        refs.extend((tag, UsageType.READ) for tag in index_tags(operand))
        return refs

    refs = []
    for tag in expression_tags(operand):
        refs.append((tag, UsageType.READ))
        refs.extend((index, UsageType.READ) for index in index_tags(tag))
    return refs


def _rung_references(rung: Rung, table: InstructionTable,
                     file_id: Optional[str], version_id: Optional[str]) -> Tuple[List[TagReference], Set[str]]:
    references = []
    unknown = set()
    for call in tokenize_rung(rung.logic_text):
        signature = table.lookup(call.mnemonic)
        if signature is None:
            unknown.add(call.mnemonic)
        for index, operand in enumerate(call.operands):
            role = signature.role_for(index, call.operands) if signature else OperandRole.READ
            for tag_name, usage in classify_operand(operand, role):
                references.append(TagReference(
                    tag_name=tag_name,
                    program_name=rung.program_name,
                    routine_name=rung.routine_name,
                    rung_number=rung.number,
                    usage_type=usage,
                    instruction=call.mnemonic,
                    file_id=file_id,
                    version_id=version_id,
                ))
    return references, unknown


class ReferenceExtractor:
    """Extracts tag references from rungs."""

    def __init__(self, table: Optional[InstructionTable] = None,
                 aois: Sequence[AOI] = (), max_workers: int = 1):
        """
        Args:
            table: Instruction table; defaults to the built-in Logix set
            aois: AOI definitions whose ladder calls should be classified
            max_workers: Rungs are processed in a thread pool when > 1
        """
        base = table or DEFAULT_TABLE
        self.table = base.copy() if aois else base
        for aoi in aois:
            self.table.register_aoi(aoi)
        self.max_workers = max(1, max_workers)

    def extract_rung(self, rung: Rung) -> List[TagReference]:
        references, unknown = _rung_references(rung, self.table, None, None)
        self._report_unknown(unknown)
        return references

    def extract(self, rungs: Iterable[Rung], file_id: Optional[str] = None,
                version_id: Optional[str] = None) -> List[TagReference]:
        """
        Extract references for all rungs, keeping rung order.

        Args:
            rungs: Rungs of one snapshot
            file_id: Identity stamped on every reference
            version_id: Version stamped on every reference

        Returns:
            The concatenated references of every rung
        """
        rungs = list(rungs)
        work = partial(_rung_references, table=self.table, file_id=file_id, version_id=version_id)

        if self.max_workers > 1 and len(rungs) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(work, rungs))
        else:
            results = [work(rung) for rung in rungs]

        references = []
        unknown = set()
        for rung_refs, rung_unknown in results:
            references.extend(rung_refs)
            unknown |= rung_unknown
        self._report_unknown(unknown)

        logger.debug(f"Extracted {len(references)} references from {len(rungs)} rungs")
        return references

    def _report_unknown(self, mnemonics: Set[str]) -> None:
        for mnemonic in sorted(mnemonics):
            logger.warning(f"Unknown instruction {mnemonic}; treating its operands as Read")


def extract_references(document: ParsedDocument, file_id: Optional[str] = None,
                       version_id: Optional[str] = None, max_workers: int = 1) -> List[TagReference]:
    """Extract references for a parsed document, classifying its AOI calls."""
    extractor = ReferenceExtractor(aois=document.aois, max_workers=max_workers)
    return extractor.extract(document.rungs, file_id=file_id, version_id=version_id)
