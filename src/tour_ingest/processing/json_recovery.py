"""Recovery of JSON objects from LLM output.

Model output is not reliably well-formed even under a response schema
(truncation at the token limit, stray prose, content parts). `repair` tries,
in order:

1. slice from the first "{" to the last "}" and parse;
2. generic repair (trailing commas, control characters, unclosed brackets)
   via the `json_repair` library;
3. salvage the complete objects of the `"tours": [...]` array and wrap them
   back into {"tours": [...]}.

It never raises; None means every strategy failed.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

import json_repair

from ..observability.logger import get_logger

logger = get_logger(__name__)

_TOURS_ARRAY = re.compile(r'"tours"\s*:\s*\[')
_AGENCY_NAME = re.compile(r'"agencyName"\s*:\s*"((?:[^"\\]|\\.)*)"')
_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class RepairResult:
    value: dict[str, Any]
    strategy: str


def _slice_braces(text: str) -> Optional[dict[str, Any]]:
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        return None
    value = json.loads(text[start : end + 1])
    return value if isinstance(value, dict) else None


def _generic_repair(text: str) -> Optional[dict[str, Any]]:
    start = text.find("{")
    if start < 0:
        return None
    value = json_repair.repair_json(text[start:], return_objects=True)
    if isinstance(value, dict) and value:
        return value
    return None


def salvage_tours_array(text: str) -> Optional[dict[str, Any]]:
    match = _TOURS_ARRAY.search(text)
    if match is None:
        return None
    array_start = match.end() - 1

    try:
        items, _ = _decoder.raw_decode(text, array_start)
    except ValueError:
        items = _complete_objects(text, match.end())

    if not isinstance(items, list) or not items:
        return None
    result: dict[str, Any] = {"tours": [t for t in items if isinstance(t, dict)]}
    if not result["tours"]:
        return None
    agency = _AGENCY_NAME.search(text)
    if agency is not None:
        result["agencyName"] = json.loads(f'"{agency.group(1)}"')
    return result


def _complete_objects(text: str, pos: int) -> list[Any]:
    """Decode array elements one by one until the first incomplete one."""
    items: list[Any] = []
    n = len(text)
    while pos < n:
        while pos < n and text[pos] in " \t\r\n,":
            pos += 1
        if pos >= n or text[pos] != "{":
            break
        try:
            obj, pos = _decoder.raw_decode(text, pos)
        except ValueError:
            break
        items.append(obj)
    return items


_STRATEGIES: tuple[tuple[str, Callable[[str], Optional[dict[str, Any]]]], ...] = (
    ("slice", _slice_braces),
    ("generic_repair", _generic_repair),
    ("tours_array", salvage_tours_array),
)


def repair_with_strategy(raw_text: Any) -> Optional[RepairResult]:
    if not isinstance(raw_text, str) or not raw_text.strip():
        return None
    for name, strategy in _STRATEGIES:
        try:
            value = strategy(raw_text)
        except Exception as e:  # each strategy may fail; the next one gets a turn
            logger.debug("json_repair_strategy_failed", strategy=name, error=str(e))
            continue
        if value is not None:
            if name != "slice":
                logger.info("json_repaired", strategy=name)
            return RepairResult(value=value, strategy=name)
    return None


def repair(raw_text: Any) -> Optional[dict[str, Any]]:
    result = repair_with_strategy(raw_text)
    return result.value if result is not None else None
