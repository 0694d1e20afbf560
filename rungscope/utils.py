"""Small helpers shared by the L5X and L5K readers."""

import logging
from typing import Any, Dict, Iterable, List, Optional
import xml.etree.ElementTree as ET

from ordered_set import OrderedSet

logger = logging.getLogger(__name__)

TRUE_VALUES = {"true", "yes", "1"}
FALSE_VALUES = {"false", "no", "0"}


def parse_int(value: Optional[str], field_name: str = "value") -> Optional[int]:
    """
    Parse an optional integer attribute.

    Absent or blank values give ``None``; they are never coerced to 0.
    Values such as ``"10.0"`` are accepted when they are whole numbers.
    """
    if value is None:
        return None
    text = str(value).strip().strip('"')
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {field_name}: {value!r}")
        return None
    if number.is_integer():
        return int(number)
    logger.warning(f"Ignoring non-integer {field_name}: {value!r}")
    return None


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse ``true``/``false`` (L5X) and ``Yes``/``No`` (L5K) flags."""
    if value is None:
        return default
    text = str(value).strip().strip('"').lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return default


def clean_text(value: Optional[str]) -> Optional[str]:
    """Trim a text value; empty strings become ``None``."""
    if value is None:
        return None
    text = value.strip()
    return text or None


def clean_logic(text: Optional[str]) -> str:
    """Trim rung text and drop the single terminating semicolon."""
    logic = (text or "").strip()
    if logic.endswith(";"):
        logic = logic[:-1].rstrip()
    return logic


def unique_in_order(names: Iterable[str]) -> List[str]:
    """De-duplicate names while keeping their first-seen order."""
    return list(OrderedSet(name for name in names if name))


def element_to_dict(elem: ET.Element) -> Dict[str, Any]:
    """Convert an XML subtree into plain dicts/lists for opaque storage."""
    result: Dict[str, Any] = dict(elem.attrib)
    text = clean_text(elem.text)
    if text is not None:
        result["#text"] = text
    for child in elem:
        result.setdefault(child.tag, []).append(element_to_dict(child))
    return result
