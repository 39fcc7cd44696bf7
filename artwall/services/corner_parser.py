"""Recover four labeled corners from free-form vision model output.

The model is asked for ``{"corners": [{"x": .., "y": .., "label": ..}, ...]}``
with percentage coordinates, but it wraps the JSON in prose or code fences and
sometimes emits numbers like ``87. 5`` or keys like ``" y"``. Candidates are
tried in order:

    1. first fenced code block, first balanced {...} inside it
    2. the whole text
    3. each balanced {...} in the text, first to last
    4. a regex for brace groups nested up to two levels

The first candidate that decodes to an object with a ``corners`` key wins.
"""

import json
import logging
import math
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

from artwall.errors import (
    EmptyOutput,
    InvalidCornerCount,
    InvalidCornersFormat,
    MissingCoordinate,
    NoJSONFound,
)
from artwall.meta.models import CORNER_LABELS, Corner

log = logging.getLogger(__name__)

# "87. 5", "87 .5", "87 . 5" -> "87.5"
_DECIMAL_GAP_RE = re.compile(r"(\d+)(?:\s+\.\s*|\s*\.\s+)(\d+)")

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?(.*?)(?:```|\Z)", re.DOTALL)

_LOOSE_OBJECT_RE = re.compile(r"\{[^{}]*(?:\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}[^{}]*)*\}", re.DOTALL)


def normalize_numbers(text: str) -> str:
    """Close up whitespace around decimal points inside numbers."""
    return _DECIMAL_GAP_RE.sub(r"\1.\2", text)


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index one past the brace closing text[start], honoring JSON string quoting."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def iter_balanced_objects(text: str) -> Iterator[str]:
    """Yield each balanced {...} substring, outermost first, in order of appearance."""
    pos = text.find("{")
    while pos != -1:
        end = _balanced_end(text, pos)
        if end is not None:
            yield text[pos:end]
            pos = text.find("{", end)
        else:
            pos = text.find("{", pos + 1)


def find_balanced_object(text: str) -> Optional[str]:
    """First balanced {...} substring, or None."""
    return next(iter_balanced_objects(text), None)


def first_fenced_block(text: str) -> Optional[str]:
    """Body of the first ``` fenced block (an unterminated fence runs to the end)."""
    match = _FENCE_RE.search(text)
    return match.group(1) if match else None


def _candidates(text: str) -> Iterator[Tuple[str, str]]:
    block = first_fenced_block(text)
    if block is not None:
        obj = find_balanced_object(block)
        if obj is not None:
            yield "fenced_block", obj
    yield "whole_text", text
    for obj in iter_balanced_objects(text):
        yield "balanced_object", obj
    for match in _LOOSE_OBJECT_RE.finditer(text):
        yield "regex", match.group(0)


def _decode(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(normalize_numbers(candidate.strip()))
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return {str(k).strip(): v for k, v in data.items()}


def extract_corner_payload(text: str) -> Tuple[Dict[str, Any], str]:
    """
    Find the JSON object carrying the corners in raw model output.

    Returns:
        (payload, strategy) where strategy names the candidate that matched.
        If no object has a ``corners`` key, the first decodable object is
        returned so validation can report what was found.

    Raises:
        NoJSONFound: nothing in the text decodes to a JSON object
    """
    first_object = None
    for strategy, candidate in _candidates(text):
        data = _decode(candidate)
        if data is None:
            continue
        if "corners" in data:
            log.debug("Corner payload found via %s", strategy)
            return data, strategy
        if first_object is None:
            first_object = (data, strategy)

    if first_object is not None:
        return first_object
    raise NoJSONFound("no JSON object found in model output", output_text=text)


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = normalize_numbers(value.strip()).rstrip("%").strip()
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _clamp_percent(value: float, axis: str) -> float:
    clamped = min(100.0, max(0.0, value))
    if clamped != value:
        log.warning("Corner %s=%s outside 0-100, clamped to %s", axis, value, clamped)
    return clamped


def _to_pixel(percent: float, dimension: int) -> int:
    """Round half up, so 12.5px -> 13 regardless of float parity."""
    return int(math.floor(percent * dimension / 100 + 0.5))


def _canonical_label(label: str) -> str:
    return re.sub(r"[\s_]+", "-", label.strip().lower())


def _canonical_order(entries: List[Tuple[str, float, float]]) -> List[Tuple[str, float, float]]:
    """Sort by label when the four canonical labels are all present, else label by position."""
    labels = [_canonical_label(label) for label, _, _ in entries]
    if sorted(labels) == sorted(CORNER_LABELS):
        by_label = {lab: (x, y) for lab, (_, x, y) in zip(labels, entries)}
        return [(lab, *by_label[lab]) for lab in CORNER_LABELS]
    if any(labels):
        log.warning("Unexpected corner labels %s, assigning canonical order by position", labels)
    return [(lab, x, y) for lab, (_, x, y) in zip(CORNER_LABELS, entries)]


def parse_corners(text: str, width: int, height: int) -> List[Corner]:
    """
    Parse model output into exactly 4 corners in canonical order.

    Args:
        text: Raw model output
        width, height: Image dimensions used to resolve pixel coordinates

    Returns:
        [top-left, top-right, bottom-right, bottom-left] corners

    Raises:
        EmptyOutput, NoJSONFound, InvalidCornersFormat, InvalidCornerCount, MissingCoordinate
    """
    if not text or not text.strip():
        raise EmptyOutput("model returned no output", output_text=text or "")

    payload, _ = extract_corner_payload(text)
    raw_corners = payload.get("corners")
    if not isinstance(raw_corners, list):
        raise InvalidCornersFormat(
            "parsed JSON has no corners list",
            output_text=text,
            parsed=payload,
        )
    if len(raw_corners) != 4:
        raise InvalidCornerCount(len(raw_corners), raw_corners, output_text=text)

    entries = []
    for raw in raw_corners:
        if not isinstance(raw, dict):
            raise MissingCoordinate(raw, raw_corners, output_text=text)
        corner = {str(k).strip(): v for k, v in raw.items()}
        x = _to_float(corner.get("x"))
        y = _to_float(corner.get("y"))
        if x is None or y is None:
            raise MissingCoordinate(raw, raw_corners, output_text=text)
        label = corner.get("label")
        entries.append((str(label).strip() if label is not None else "", x, y))

    corners = []
    for label, x, y in _canonical_order(entries):
        x = _clamp_percent(x, "x")
        y = _clamp_percent(y, "y")
        corners.append(Corner(
            label=label,
            x_percent=x,
            y_percent=y,
            x=_to_pixel(x, width),
            y=_to_pixel(y, height),
        ))
    return corners
