"""
Ladder instruction vocabulary.

Maps each RLL mnemonic to the role of every operand position: read, write,
read/write, a non-tag name (routine, label, object class) or an expression.
The table is data, kept apart from the rung tokenizer, so vendor or
site-specific instructions can be registered without touching parsing code.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional, Sequence, Tuple

from .models import AOI, ParameterUsage, UsageType

logger = logging.getLogger(__name__)


class OperandRole(Enum):
    READ = "R"
    WRITE = "W"
    READ_WRITE = "RW"
    NAME = "N"
    EXPRESSION = "E"

    @property
    def usage_type(self) -> Optional[UsageType]:
        """The reference usage recorded for a tag in this position."""
        if self is OperandRole.WRITE:
            return UsageType.WRITE
        if self is OperandRole.READ_WRITE:
            return UsageType.READ_WRITE
        if self in (OperandRole.READ, OperandRole.EXPRESSION):
            return UsageType.READ
        return None


@dataclass(frozen=True)
class InstructionSignature:
    """
    Operand roles of one instruction, by position.

    ``count_at`` names an operand holding the number of input operands that
    follow the fixed ones (``JSR(Routine, 2, In1, In2, Ret1)``). Those inputs
    are read; only the operands after them take the ``rest`` role.
    """
    mnemonic: str
    roles: Tuple[OperandRole, ...] = ()
    rest: Optional[OperandRole] = None
    count_at: Optional[int] = None

    def role_for(self, index: int, operands: Sequence[str] = ()) -> OperandRole:
        """Role of the operand at ``index``; extra operands fall back to ``rest`` or Read."""
        if index < len(self.roles):
            return self.roles[index]
        if self.count_at is not None:
            inputs = _count_operand(operands, self.count_at)
            if inputs is None or index < len(self.roles) + inputs:
                return OperandRole.READ
        return self.rest or OperandRole.READ


def _count_operand(operands: Sequence[str], index: int) -> Optional[int]:
    if index >= len(operands):
        return None
    try:
        return int(operands[index].strip())
    except ValueError:
        return None


def _signature(mnemonic: str, roles: str = "", rest: Optional[str] = None,
               count_at: Optional[int] = None) -> InstructionSignature:
    return InstructionSignature(
        mnemonic=mnemonic,
        roles=tuple(OperandRole(r) for r in roles.split()),
        rest=OperandRole(rest) if rest else None,
        count_at=count_at,
    )


# mnemonic -> (operand roles, role of any further operands, input count position)
_BUILTIN_INSTRUCTIONS = {
    # Bit
    'XIC': ("R",),
    'XIO': ("R",),
    'OTE': ("W",),
    'OTL': ("W",),
    'OTU': ("W",),
    'ONS': ("RW",),
    'OSR': ("RW W",),
    'OSF': ("RW W",),

    # Timer / counter (structure first, then preset and accumulator)
    'TON': ("RW R R",),
    'TOF': ("RW R R",),
    'RTO': ("RW R R",),
    'CTU': ("RW R R",),
    'CTD': ("RW R R",),
    'CTUD': ("RW R R",),
    'RES': ("W",),
    'TONR': ("RW", "R"),
    'TOFR': ("RW", "R"),
    'RTOR': ("RW", "R"),

    # Compare
    'EQU': ("R R",),
    'NEQ': ("R R",),
    'LES': ("R R",),
    'LEQ': ("R R",),
    'GRT': ("R R",),
    'GEQ': ("R R",),
    'LIM': ("R R R",),
    'MEQ': ("R R R",),
    'CMP': ("E",),

    # Math
    'ADD': ("R R W",),
    'SUB': ("R R W",),
    'MUL': ("R R W",),
    'DIV': ("R R W",),
    'MOD': ("R R W",),
    'XPY': ("R R W",),
    'NEG': ("R W",),
    'ABS': ("R W",),
    'SQR': ("R W",),
    'SQRT': ("R W",),
    'SIN': ("R W",),
    'COS': ("R W",),
    'TAN': ("R W",),
    'ASN': ("R W",),
    'ACS': ("R W",),
    'ATN': ("R W",),
    'LN': ("R W",),
    'LOG': ("R W",),
    'DEG': ("R W",),
    'RAD': ("R W",),
    'TRN': ("R W",),
    'TOD': ("R W",),
    'FRD': ("R W",),
    'CPT': ("W E",),
    'SCP': ("R R R R R W",),

    # Move / logical
    'MOV': ("R W",),
    'MVM': ("R R W",),
    'BTD': ("R R RW R R",),
    'CLR': ("W",),
    'SWPB': ("R R W",),
    'AND': ("R R W",),
    'OR': ("R R W",),
    'XOR': ("R R W",),
    'NOT': ("R W",),
    'BAND': ("", "R"),
    'BOR': ("", "R"),
    'BXOR': ("", "R"),
    'BNOT': ("R",),

    # Array / file
    'COP': ("R W R",),
    'CPS': ("R W R",),
    'FLL': ("R W R",),
    'AVE': ("R R W RW R R",),
    'STD': ("R R W RW R R",),
    'SRT': ("RW R RW R R",),
    'SIZE': ("R R W",),
    'FAL': ("RW R R R W E",),
    'FSC': ("RW R R R E",),
    'BSL': ("RW RW R R",),
    'BSR': ("RW RW R R",),
    'FFL': ("R RW RW R R",),
    'FFU': ("RW W RW R R",),
    'LFL': ("R RW RW R R",),
    'LFU': ("RW W RW R R",),
    'SQO': ("R R W RW R R",),
    'SQI': ("R R R RW R R",),
    'SQL': ("W R RW R R",),
    'DDT': ("R RW W RW R R RW R R",),
    'FBC': ("R RW W RW R R RW R R",),
    'DTR': ("R R RW",),

    # Program control
    'JSR': ("N R", "W", 1),
    'JXR': ("N RW R W",),
    'SFR': ("N N",),
    'SFP': ("N N",),
    'SBR': ("", "W"),
    'RET': ("", "R"),
    'JMP': ("N",),
    'LBL': ("N",),
    'FOR': ("N RW R R R",),
    'BRK': ("",),
    'NOP': ("",),
    'AFI': ("",),
    'EOT': ("",),
    'TND': ("",),
    'MCR': ("",),
    'UID': ("",),
    'UIE': ("",),
    'EVENT': ("N",),
    'IOT': ("R",),

    # String / conversion
    'DTOS': ("R W",),
    'STOD': ("R W",),
    'RTOS': ("R W",),
    'STOR': ("R W",),
    'UPPER': ("R W",),
    'LOWER': ("R W",),
    'CONCAT': ("R R W",),
    'MID': ("R R R W",),
    'DELETE': ("R R R W",),
    'INSERT': ("R R R W",),
    'FIND': ("R R R W",),

    # Communication / system
    'MSG': ("RW",),
    'GSV': ("N N N W",),
    'SSV': ("N N N R",),

    # ASCII serial port (channel, data, control)
    'ABL': ("R RW",),
    'ACB': ("R RW",),
    'ACL': ("R R R",),
    'AHL': ("R R R RW W",),
    'ARD': ("R W RW",),
    'ARL': ("R W RW",),
    'AWA': ("R R RW",),
    'AWT': ("R R RW",),

    # Motion (axis or group, motion control, then parameters)
    'MSO': ("RW RW",),
    'MSF': ("RW RW",),
    'MASD': ("RW RW",),
    'MASR': ("RW RW",),
    'MDO': ("RW RW", "R"),
    'MDF': ("RW RW",),
    'MDS': ("RW RW", "R"),
    'MAFR': ("RW RW",),
    'MAS': ("RW RW", "R"),
    'MAH': ("RW RW",),
    'MAJ': ("RW RW", "R"),
    'MAM': ("RW RW", "R"),
    'MAG': ("RW R RW", "R"),
    'MCD': ("RW RW", "R"),
    'MRP': ("RW RW", "R"),
    'MAW': ("RW RW", "R"),
    'MDW': ("RW RW",),
    'MAR': ("RW RW", "R"),
    'MDR': ("RW RW",),
    'MAOC': ("RW R RW W", "R"),
    'MDOC': ("RW R RW",),
    'MAPC': ("RW R RW", "R"),
    'MATC': ("RW RW", "R"),
    'MDAC': ("RW R RW", "R"),
    'MGS': ("RW RW", "R"),
    'MGSD': ("RW RW",),
    'MGSR': ("RW RW",),
    'MGSP': ("RW RW",),
    'MCS': ("RW RW", "R"),
    'MCSD': ("RW RW",),
    'MCSR': ("RW RW",),
    'MCLM': ("RW RW", "R"),
    'MCCM': ("RW RW", "R"),
    'MCCD': ("RW RW", "R"),
    'MCT': ("RW RW RW", "R"),
    'MCTP': ("RW RW", "R"),

    # Process
    'PID': ("RW R R W R R R R",),
    'ALMD': ("RW R R R R R",),
    'ALMA': ("RW R R R R",),
}


class InstructionTable:
    """Mutable registry of instruction signatures."""

    def __init__(self, signatures: Iterable[InstructionSignature] = ()):
        self._signatures: Dict[str, InstructionSignature] = {}
        for signature in signatures:
            self.register(signature)

    @classmethod
    def builtin(cls) -> "InstructionTable":
        """Table with the standard Logix ladder instruction set."""
        return cls(_signature(name, *roles) for name, roles in _BUILTIN_INSTRUCTIONS.items())

    def register(self, signature: InstructionSignature) -> None:
        self._signatures[signature.mnemonic.upper()] = signature

    def register_aoi(self, aoi: AOI) -> None:
        """
        Register a ladder call signature for an add-on instruction.

        Operand 0 is the backing instance tag (read/write); the following
        operands are the required parameters in declaration order.
        """
        roles = [OperandRole.READ_WRITE]
        for param in aoi.call_parameters():
            if param.usage == ParameterUsage.OUTPUT.value:
                roles.append(OperandRole.WRITE)
            elif param.usage == ParameterUsage.IN_OUT.value:
                roles.append(OperandRole.READ_WRITE)
            else:
                roles.append(OperandRole.READ)
        self.register(InstructionSignature(mnemonic=aoi.name, roles=tuple(roles)))
        logger.debug(f"Registered AOI signature {aoi.name}: {[r.value for r in roles]}")

    def lookup(self, mnemonic: str) -> Optional[InstructionSignature]:
        return self._signatures.get(mnemonic.upper())

    def __contains__(self, mnemonic: str) -> bool:
        return mnemonic.upper() in self._signatures

    def __len__(self) -> int:
        return len(self._signatures)

    def copy(self) -> "InstructionTable":
        return InstructionTable(self._signatures.values())


DEFAULT_TABLE = InstructionTable.builtin()
